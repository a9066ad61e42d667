"""Hybrid document extraction engine.

Local pattern matching first, assisted analysis only when confidence is
too low, and rule-based mapping of extracted fields onto output templates.
"""

from hybrid_idp.orchestrator import HybridExtractionService

__all__ = ["HybridExtractionService"]

__version__ = "0.1.0"
