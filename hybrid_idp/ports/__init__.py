"""Collaborator contracts consumed by the engine."""

from hybrid_idp.ports.assisted_analysis import AssistedAnalysis
from hybrid_idp.ports.pattern_store import PatternStore
from hybrid_idp.ports.rule_store import RuleStore

__all__ = ["AssistedAnalysis", "PatternStore", "RuleStore"]
