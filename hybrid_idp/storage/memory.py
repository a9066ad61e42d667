"""
In-memory pattern and rule repositories.

Entities live in an id-indexed dict. Readers get deep copies taken under
the store lock; counter updates take a per-entity lock for the
read-modify-write and swap the new version in under the store lock, so
concurrent batch processing never loses an update and readers never see a
half-applied one.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, TypeVar

from pydantic import BaseModel

from hybrid_idp.core.config import MAX_APPLIED_KEYS_PER_ENTITY, SUCCESS_RATE_ALPHA
from hybrid_idp.models.dto import LearnedPattern, utc_now
from hybrid_idp.models.rules import MappingRule

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def next_success_rate(rate: float, success: bool, alpha: float = SUCCESS_RATE_ALPHA) -> float:
    """Exponential moving average of outcomes (1.0 success, 0.0 failure)."""
    updated = (1.0 - alpha) * rate + alpha * (1.0 if success else 0.0)
    return max(0.0, min(1.0, updated))


class _IndexedRepository(Generic[M]):
    """Id-indexed entity storage with per-entity update locks."""

    def __init__(self) -> None:
        self._items: dict[str, M] = {}
        self._lock = threading.Lock()
        self._entity_locks: dict[str, threading.Lock] = {}
        # insertion-ordered so the oldest keys can be dropped first
        self._applied_keys: dict[str, dict[str, None]] = {}
        self.max_applied_keys = MAX_APPLIED_KEYS_PER_ENTITY

    def _entity_lock(self, entity_id: str) -> threading.Lock:
        with self._lock:
            return self._entity_locks.setdefault(entity_id, threading.Lock())

    def _get_copy(self, entity_id: str) -> M | None:
        with self._lock:
            item = self._items.get(entity_id)
            return item.model_copy(deep=True) if item is not None else None

    def _select(self, predicate: Callable[[M], bool]) -> list[M]:
        with self._lock:
            return [
                item.model_copy(deep=True)
                for item in self._items.values()
                if predicate(item)
            ]

    def _put(self, entity_id: str, item: M) -> M:
        with self._lock:
            self._items[entity_id] = item.model_copy(deep=True)
        self._persist()
        return item

    def _remove(self, entity_id: str) -> bool:
        with self._lock:
            removed = self._items.pop(entity_id, None)
            self._entity_locks.pop(entity_id, None)
            self._applied_keys.pop(entity_id, None)
        if removed is None:
            return False
        self._persist()
        return True

    def _update(
        self,
        entity_id: str,
        change: Callable[[M], dict],
        application_key: str | None = None,
    ) -> bool:
        """Apply `change` atomically for one entity.

        Returns False when the entity does not exist or `application_key`
        is among the last `max_applied_keys` keys applied to it.
        """
        with self._entity_lock(entity_id):
            with self._lock:
                current = self._items.get(entity_id)
                if current is None:
                    return False
                applied = self._applied_keys.setdefault(entity_id, {})
                if application_key is not None and application_key in applied:
                    logger.debug(
                        "Skipping duplicate outcome for %s (key %s)",
                        entity_id,
                        application_key,
                    )
                    return False
            updated = current.model_copy(update=change(current))
            with self._lock:
                if entity_id not in self._items:
                    return False
                self._items[entity_id] = updated
                if application_key is not None:
                    applied[application_key] = None
                    while len(applied) > self.max_applied_keys:
                        del applied[next(iter(applied))]
        self._persist()
        return True

    def _persist(self) -> None:
        """Hook for durable subclasses."""

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class InMemoryPatternStore(_IndexedRepository[LearnedPattern]):
    """Thread-safe learned-pattern repository."""

    def __init__(self, patterns: list[LearnedPattern] | None = None) -> None:
        super().__init__()
        for pattern in patterns or []:
            self._items[pattern.id] = pattern.model_copy(deep=True)

    def load_active_patterns(self) -> list[LearnedPattern]:
        return self._select(lambda p: p.is_active)

    def load_all_patterns(self) -> list[LearnedPattern]:
        return self._select(lambda p: True)

    def get_pattern(self, pattern_id: str) -> LearnedPattern | None:
        return self._get_copy(pattern_id)

    def save_pattern(self, pattern: LearnedPattern) -> LearnedPattern:
        return self._put(pattern.id, pattern)

    def update_usage(
        self, pattern_id: str, success: bool, application_key: str | None = None
    ) -> bool:
        def change(p: LearnedPattern) -> dict:
            return {
                "usage_count": p.usage_count + 1,
                "success_count": p.success_count + (1 if success else 0),
                "success_rate": next_success_rate(p.success_rate, success),
                "last_used_at": utc_now(),
            }

        return self._update(pattern_id, change, application_key)

    def deactivate_pattern(self, pattern_id: str) -> bool:
        return self._update(pattern_id, lambda p: {"is_active": False})


class InMemoryRuleStore(_IndexedRepository[MappingRule]):
    """Thread-safe mapping-rule repository."""

    def __init__(self, rules: list[MappingRule] | None = None) -> None:
        super().__init__()
        for rule in rules or []:
            self._items[rule.id] = rule.model_copy(deep=True)

    def load_active_rules(self) -> list[MappingRule]:
        return self._select(lambda r: r.is_active)

    def load_all_rules(self) -> list[MappingRule]:
        return self._select(lambda r: True)

    def get_rule(self, rule_id: str) -> MappingRule | None:
        return self._get_copy(rule_id)

    def save_rule(self, rule: MappingRule) -> MappingRule:
        return self._put(rule.id, rule)

    def update_rule(self, rule: MappingRule) -> MappingRule:
        rule.last_modified_at = utc_now()
        return self._put(rule.id, rule)

    def delete_rule(self, rule_id: str) -> bool:
        return self._remove(rule_id)

    def record_outcome(
        self, rule_id: str, success: bool, application_key: str | None = None
    ) -> bool:
        def change(r: MappingRule) -> dict:
            now = utc_now()
            return {
                "usage_count": r.usage_count + 1,
                "failure_count": r.failure_count + (0 if success else 1),
                "success_rate": next_success_rate(r.success_rate, success),
                "last_used_at": now,
                "last_modified_at": now,
            }

        return self._update(rule_id, change, application_key)
