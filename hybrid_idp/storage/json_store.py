"""
JSON-file backed pattern and rule repositories.

Each store keeps the in-memory index authoritative and rewrites its file
after every mutation. Applied outcome keys are persisted next to the
entities so idempotent learning survives a restart.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from hybrid_idp.core.config import PATTERNS_FILE, RULES_FILE
from hybrid_idp.core.exceptions import PersistenceError
from hybrid_idp.models.dto import LearnedPattern
from hybrid_idp.models.rules import MappingRule
from hybrid_idp.storage.memory import InMemoryPatternStore, InMemoryRuleStore
from hybrid_idp.utils.io_utils import read_json, write_json

logger = logging.getLogger(__name__)


def _load_payload(path: Path, store: str) -> dict:
    try:
        payload = read_json(path, default={})
    except (OSError, ValueError) as e:
        raise PersistenceError(store, "load", details={"path": str(path)}) from e
    if not isinstance(payload, dict):
        raise PersistenceError(
            store, "load", details={"path": str(path), "detail": "expected a JSON object"}
        )
    return payload


class _JsonFileMixin:
    """Rewrites the store file; the snapshot and the write share one lock."""

    path: Path
    entity_key: str

    def _restore_applied_keys(self, payload: dict) -> None:
        for entity_id, keys in payload.get("applied_keys", {}).items():
            self._applied_keys[entity_id] = dict.fromkeys(keys)

    def _persist(self) -> None:
        with self._persist_lock:
            with self._lock:
                payload = {
                    self.entity_key: [e.model_dump(mode="json") for e in self._items.values()],
                    "applied_keys": {k: list(v) for k, v in self._applied_keys.items()},
                }
            try:
                write_json(self.path, payload)
            except OSError as e:
                raise PersistenceError(
                    self.entity_key, "save", details={"path": str(self.path)}
                ) from e


class JsonPatternStore(_JsonFileMixin, InMemoryPatternStore):
    """Learned patterns persisted to ``<directory>/patterns.json``."""

    entity_key = "patterns"

    def __init__(self, directory: str | Path) -> None:
        self.path = Path(directory) / PATTERNS_FILE
        self._persist_lock = threading.Lock()
        payload = _load_payload(self.path, self.entity_key)
        try:
            patterns = [LearnedPattern.model_validate(p) for p in payload.get("patterns", [])]
        except PydanticValidationError as e:
            raise PersistenceError("patterns", "load", details={"path": str(self.path)}) from e
        super().__init__(patterns)
        self._restore_applied_keys(payload)
        logger.info("Loaded %d learned patterns from %s", len(patterns), self.path)


class JsonRuleStore(_JsonFileMixin, InMemoryRuleStore):
    """Mapping rules persisted to ``<directory>/rules.json``."""

    entity_key = "rules"

    def __init__(self, directory: str | Path) -> None:
        self.path = Path(directory) / RULES_FILE
        self._persist_lock = threading.Lock()
        payload = _load_payload(self.path, self.entity_key)
        try:
            rules = [MappingRule.model_validate(r) for r in payload.get("rules", [])]
        except PydanticValidationError as e:
            raise PersistenceError("rules", "load", details={"path": str(self.path)}) from e
        super().__init__(rules)
        self._restore_applied_keys(payload)
        logger.info("Loaded %d mapping rules from %s", len(rules), self.path)
