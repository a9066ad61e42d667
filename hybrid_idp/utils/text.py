"""Small text helpers shared by the fingerprint, matcher and rule engine."""

from __future__ import annotations

import hashlib
import re

_WORD_SPLIT_RE = re.compile(r"[\s.,;:!?()\[\]{}\"']+")


def split_lines(text: str) -> list[str]:
    """Split on any newline convention, keeping empty lines."""
    return re.split(r"\r\n|\r|\n", text or "")


def split_words(text: str) -> list[str]:
    """Split text into non-empty words on whitespace and punctuation."""
    return [w for w in _WORD_SPLIT_RE.split(text or "") if w]


def sha1_hex(value: str) -> str:
    """Hex sha1 digest of a UTF-8 string."""
    return hashlib.sha1(value.encode("utf-8")).hexdigest()


def count_ratio(a: float, b: float) -> float:
    """Symmetric closeness of two non-negative counts.

    ``1 - |a - b| / max(a, b)``, and 1.0 when both are zero.
    """
    largest = max(a, b)
    if largest == 0:
        return 1.0
    return 1.0 - abs(a - b) / largest


def clamp01(value: float) -> float:
    """Clamp to the closed unit interval."""
    return max(0.0, min(1.0, value))
