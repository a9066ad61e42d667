"""
Facade wiring the extraction engine's components together.

`HybridExtractionService` owns construction and teardown: it builds the
matcher, learner, decision engine and rule engine around injected stores
and an assisted-analysis collaborator, and closes the collaborator's HTTP
client when used as an async context manager.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Sequence

from hybrid_idp.clients.assisted_client import AssistedAnalysisClient
from hybrid_idp.core.config import (
    BACKOFF_MULTIPLIER,
    DEFAULT_MAX_SIMILAR_RESULTS,
    DEFAULT_MIN_SIMILARITY,
    INITIAL_BACKOFF,
)
from hybrid_idp.core.logging_config import configure_structured_logging
from hybrid_idp.core.settings import EngineSettings, get_settings
from hybrid_idp.models.dto import (
    CostProjection,
    DocumentFingerprint,
    ExtractedField,
    HybridProcessingResult,
    LearnedPattern,
    PatternTestResult,
    ProcessingAnalytics,
    ProcessingOptions,
    SimilarDocumentMatch,
)
from hybrid_idp.models.rules import (
    DocumentProfile,
    MappingRule,
    RuleStatistics,
    RuleTestResult,
    TemplateFieldMapping,
)
from hybrid_idp.ports import AssistedAnalysis, PatternStore, RuleStore
from hybrid_idp.processors.decision_engine import DecisionEngine, cost_projection
from hybrid_idp.processors.fingerprint import FingerprintGenerator
from hybrid_idp.processors.pattern_learner import PatternLearner
from hybrid_idp.processors.pattern_matcher import PatternMatcher
from hybrid_idp.processors.rule_engine import RuleEngine
from hybrid_idp.processors.similarity import SimilarityScorer
from hybrid_idp.resilience import CircuitBreaker, CircuitBreakerConfig, RetryConfig
from hybrid_idp.storage import JsonPatternStore, JsonRuleStore

logger = logging.getLogger(__name__)


class HybridExtractionService:
    """Entry point for orchestration layers.

    Args:
        pattern_store: Learned-pattern repository
        rule_store: Mapping-rule repository
        assisted: Assisted analysis collaborator (None disables escalation)
        settings: Engine settings; the cached environment settings by default
    """

    def __init__(
        self,
        pattern_store: PatternStore,
        rule_store: RuleStore,
        assisted: AssistedAnalysis | None = None,
        settings: EngineSettings | None = None,
    ):
        self.settings = settings or get_settings()
        self.pattern_store = pattern_store
        self.rule_store = rule_store
        self.assisted = assisted

        self.fingerprints = FingerprintGenerator()
        self.similarity = SimilarityScorer()
        self.matcher = PatternMatcher(pattern_store)
        self.learner = PatternLearner(pattern_store)
        self.circuit_breaker = CircuitBreaker(
            "ASSISTED",
            CircuitBreakerConfig(
                failure_threshold=self.settings.CIRCUIT_FAILURE_THRESHOLD,
                timeout_seconds=self.settings.CIRCUIT_RESET_SECONDS,
            ),
        )
        self.decision_engine = DecisionEngine(
            self.matcher,
            self.learner,
            assisted=assisted,
            fingerprints=self.fingerprints,
            circuit_breaker=self.circuit_breaker,
            retry_config=RetryConfig(
                max_attempts=max(1, self.settings.ASSISTED_MAX_ATTEMPTS),
                initial_delay_seconds=INITIAL_BACKOFF,
                exponential_base=BACKOFF_MULTIPLIER,
            ),
            timeout_seconds=self.settings.ASSISTED_TIMEOUT_SECONDS,
        )
        self.rule_engine = RuleEngine(rule_store)

    @classmethod
    def from_settings(
        cls, settings: EngineSettings | None = None, configure_logging: bool = False
    ) -> "HybridExtractionService":
        """JSON-file stores under STORE_DIR and the HTTP assisted client.

        Root logging is left to the host unless `configure_logging` is set.
        """
        settings = settings or get_settings()
        if configure_logging:
            configure_structured_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)
        return cls(
            pattern_store=JsonPatternStore(settings.store_dir),
            rule_store=JsonRuleStore(settings.store_dir),
            assisted=AssistedAnalysisClient(
                endpoint_url=settings.ASSISTED_ENDPOINT_URL,
                timeout=settings.ASSISTED_CLIENT_TIMEOUT_SECONDS,
                verify=settings.ASSISTED_VERIFY_SSL,
            ),
            settings=settings,
        )

    async def __aenter__(self):
        if isinstance(self.assisted, AssistedAnalysisClient):
            await self.assisted.__aenter__()
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel in-flight assisted calls and release the HTTP client."""
        cancelled = self.decision_engine.cancel_pending()
        if cancelled:
            logger.info("Cancelled %d in-flight assisted calls", cancelled)
        if isinstance(self.assisted, AssistedAnalysisClient):
            await self.assisted.aclose()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def process_document(
        self,
        text: str,
        document_path: str = "",
        options: ProcessingOptions | None = None,
    ) -> HybridProcessingResult:
        return await self.decision_engine.process_document(text, document_path, options)

    async def process_batch(
        self,
        documents: Sequence[tuple[str, str]],
        options: ProcessingOptions | None = None,
    ) -> list[HybridProcessingResult]:
        """Process ``(text, path)`` pairs concurrently, results in input order."""
        return list(
            await asyncio.gather(
                *(self.process_document(text, path, options) for text, path in documents)
            )
        )

    def fingerprint(self, text: str, document_path: str = "") -> DocumentFingerprint:
        return self.fingerprints.fingerprint(text, document_path)

    def find_similar(
        self,
        target: DocumentFingerprint,
        candidates: Iterable[DocumentFingerprint],
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        max_results: int = DEFAULT_MAX_SIMILAR_RESULTS,
    ) -> list[SimilarDocumentMatch]:
        return self.similarity.find_similar(target, candidates, min_similarity, max_results)

    def record_confirmation(self, result: HybridProcessingResult, accepted: bool) -> int:
        return self.decision_engine.record_confirmation(result, accepted)

    def get_analytics(self) -> ProcessingAnalytics:
        return self.decision_engine.get_analytics()

    def cost_projection(self, document_count: int, assisted_share: float = 0.05) -> CostProjection:
        return cost_projection(document_count, assisted_share)

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    def add_pattern(self, pattern: LearnedPattern) -> LearnedPattern:
        return self.pattern_store.save_pattern(pattern)

    def deactivate_pattern(self, pattern_id: str) -> bool:
        return self.pattern_store.deactivate_pattern(pattern_id)

    def test_pattern(self, pattern: LearnedPattern, sample_texts: Iterable[str]) -> PatternTestResult:
        return self.matcher.test_pattern(pattern, sample_texts)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def apply_mapping_rules(
        self,
        profile: DocumentProfile,
        template_id: str,
        fields: Iterable[ExtractedField],
        application_key: str | None = None,
    ) -> list[TemplateFieldMapping]:
        return self.rule_engine.apply_mapping_rules(profile, template_id, fields, application_key)

    def test_rule(
        self, rule: MappingRule, profile: DocumentProfile, fields: Iterable[ExtractedField]
    ) -> RuleTestResult:
        return self.rule_engine.test_rule(rule, profile, fields)

    def create_rule_from_mappings(
        self,
        name: str,
        description: str,
        profile: DocumentProfile,
        mappings: Iterable[TemplateFieldMapping],
    ) -> MappingRule:
        return self.rule_engine.create_rule_from_mappings(name, description, profile, mappings)

    def activate_rule(self, rule_id: str) -> bool:
        return self.rule_engine.activate_rule(rule_id)

    def deactivate_rule(self, rule_id: str) -> bool:
        return self.rule_engine.deactivate_rule(rule_id)

    def toggle_rule_activation(self, rule_id: str) -> bool | None:
        return self.rule_engine.toggle_rule_activation(rule_id)

    def update_rule_priority(self, rule_id: str, priority: int) -> bool:
        return self.rule_engine.update_rule_priority(rule_id, priority)

    def delete_rule(self, rule_id: str) -> bool:
        return self.rule_engine.delete_rule(rule_id)

    def get_rule_statistics(self) -> RuleStatistics:
        return self.rule_engine.get_statistics()
