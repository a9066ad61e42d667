"""PatternStore protocol for learned-pattern persistence."""

from __future__ import annotations

from typing import Protocol

from hybrid_idp.models.dto import LearnedPattern


class PatternStore(Protocol):
    """Abstraction over the learned-pattern repository.

    Implementations must serialize counter updates per pattern and raise
    `PersistenceError` on storage failures.
    """

    def load_active_patterns(self) -> list[LearnedPattern]: ...

    def get_pattern(self, pattern_id: str) -> LearnedPattern | None: ...

    def save_pattern(self, pattern: LearnedPattern) -> LearnedPattern: ...

    def update_usage(
        self, pattern_id: str, success: bool, application_key: str | None = None
    ) -> bool: ...

    def deactivate_pattern(self, pattern_id: str) -> bool: ...
