"""RuleStore protocol for mapping-rule persistence."""

from __future__ import annotations

from typing import Protocol

from hybrid_idp.models.rules import MappingRule


class RuleStore(Protocol):
    """Abstraction over the mapping-rule repository.

    Rules are returned with their conditions and actions. Outcome updates
    must be serialized per rule.
    """

    def load_active_rules(self) -> list[MappingRule]: ...

    def load_all_rules(self) -> list[MappingRule]: ...

    def get_rule(self, rule_id: str) -> MappingRule | None: ...

    def save_rule(self, rule: MappingRule) -> MappingRule: ...

    def update_rule(self, rule: MappingRule) -> MappingRule: ...

    def delete_rule(self, rule_id: str) -> bool: ...

    def record_outcome(
        self, rule_id: str, success: bool, application_key: str | None = None
    ) -> bool: ...
