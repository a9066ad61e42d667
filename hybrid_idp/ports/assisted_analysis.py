"""AssistedAnalysis protocol for the expensive external extraction step."""

from __future__ import annotations

from typing import Protocol

from hybrid_idp.models.dto import AnalysisResult


class AssistedAnalysis(Protocol):
    """Abstraction over the assisted analysis service.

    Calls must be safe to retry: the engine only persists learned state
    after a call has fully succeeded.
    """

    async def analyze(self, document_path: str, instructions: str) -> AnalysisResult: ...
