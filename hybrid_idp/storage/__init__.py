"""Pattern and rule repositories."""

from hybrid_idp.storage.json_store import JsonPatternStore, JsonRuleStore
from hybrid_idp.storage.memory import InMemoryPatternStore, InMemoryRuleStore

__all__ = [
    "InMemoryPatternStore",
    "InMemoryRuleStore",
    "JsonPatternStore",
    "JsonRuleStore",
]
