"""
File-system utilities for the JSON pattern and rule stores.

Provides helpers for creating parent directories and reading/writing
JSON payloads in UTF-8. Writes go through a temporary sibling file that
replaces the destination, so readers never observe a half-written store.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def ensure_parent(path: str | Path) -> None:
    """
    Ensure that the parent directory for the given path exists.

    Args:
      path: Target file path whose parent should be created.
    """
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def write_json(path: str | Path, obj: Any) -> None:
    """
    Write a JSON value to disk using UTF-8 encoding.

    The payload goes to a uniquely named temporary file in the same
    directory, which then replaces the destination. Concurrent writers
    never share a temporary file.

    Args:
      path: Destination file path.
      obj: JSON-serializable value to persist.
    """
    ensure_parent(path)
    target = Path(path)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=target.parent,
        prefix=f".{target.name}.",
        suffix=".tmp",
        delete=False,
    ) as f:
        tmp_path = Path(f.name)
        try:
            json.dump(obj, f, ensure_ascii=False, indent=2, default=str)
        except BaseException:
            f.close()
            tmp_path.unlink(missing_ok=True)
            raise
    try:
        os.replace(tmp_path, target)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def read_json(path: str | Path, default: Any = None) -> Any:
    """
    Read and parse a JSON file using UTF-8 encoding.

    Args:
      path: Source file path.
      default: Value returned when the file does not exist.

    Returns:
      The decoded JSON value (usually a dict or list).
    """
    if not Path(path).exists():
        return default
    with open(path, encoding="utf-8") as f:
        return json.load(f)
