"""Processing strategy selection and dispatch.

The decision engine turns a local match confidence into one of four
strategies using a fixed ladder, estimates the assisted-analysis cost, and
runs the chosen strategy. The assisted call is the only suspending step;
it runs under a timeout, a circuit breaker and optional retries, and any
failure falls back to the best local result instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
import threading

from hybrid_idp.core.config import (
    ASSISTED_COST_PER_DOCUMENT,
    ASSISTED_TIMEOUT_SECONDS,
    FULL_ANALYSIS_TOKENS,
    HIGH_CONFIDENCE,
    HYBRID_CONFIDENCE_BOOST,
    HYBRID_CONFIDENCE_CAP,
    INPUT_PRICE_PER_1K_TOKENS,
    INPUT_TOKEN_SHARE,
    LOW_CONFIDENCE,
    MEDIUM_CONFIDENCE,
    OUTPUT_PRICE_PER_1K_TOKENS,
    OUTPUT_TOKEN_SHARE,
    PARTIAL_ANALYSIS_TOKENS,
    VERY_HIGH_CONFIDENCE,
)
from hybrid_idp.core.exceptions import ExternalServiceError, PersistenceError
from hybrid_idp.errors.codes import MANUAL_REVIEW_ACTION, ErrorCode, make_error
from hybrid_idp.models.dto import (
    AnalysisResult,
    CostProjection,
    ExtractedField,
    ExtractionMethod,
    HybridProcessingResult,
    LearnedPattern,
    LocalMatchResult,
    ProcessingAnalytics,
    ProcessingDecision,
    ProcessingOptions,
    ProcessingStrategy,
)
from hybrid_idp.ports.assisted_analysis import AssistedAnalysis
from hybrid_idp.processors.field_types import infer_type_from_name
from hybrid_idp.processors.fingerprint import FingerprintGenerator
from hybrid_idp.processors.pattern_learner import PatternLearner
from hybrid_idp.processors.pattern_matcher import PatternMatcher, infer_document_type
from hybrid_idp.resilience import CircuitBreaker, RetryConfig, retry_with_backoff
from hybrid_idp.utils.timing import StageTimers

logger = logging.getLogger(__name__)

ASSISTED_SERVICE = "ASSISTED"

NO_ACTION = "No action required - processed successfully"
IMPROVEMENT_ACTION = "Pattern improvements suggested - will apply to future similar documents"
LEARNED_ACTION = "New patterns learned - future similar documents will process locally"


def estimate_cost(tokens: int) -> float:
    """USD cost of an assisted call, 70% input and 30% output tokens."""
    input_cost = tokens * INPUT_TOKEN_SHARE * INPUT_PRICE_PER_1K_TOKENS / 1000
    output_cost = tokens * OUTPUT_TOKEN_SHARE * OUTPUT_PRICE_PER_1K_TOKENS / 1000
    return round(input_cost + output_cost, 6)


def confirm_action(field_count: int) -> str:
    return f"Please review the extracted {field_count} fields and confirm accuracy"


def select_strategy(local: LocalMatchResult) -> ProcessingDecision:
    """Confidence ladder, evaluated top-down."""
    c = local.confidence
    if not local.success:
        return ProcessingDecision(
            strategy=ProcessingStrategy.FULLY_ASSISTED,
            reason="No matching local patterns - full assisted analysis required",
            confidence=c,
            estimated_tokens=FULL_ANALYSIS_TOKENS,
        )
    if c >= VERY_HIGH_CONFIDENCE:
        return ProcessingDecision(
            strategy=ProcessingStrategy.FULLY_LOCAL,
            reason="Very high confidence local match",
            confidence=c,
        )
    if c >= HIGH_CONFIDENCE:
        return ProcessingDecision(
            strategy=ProcessingStrategy.FULLY_LOCAL,
            reason="High confidence local match - flagged for quality audit",
            confidence=c,
            flagged_for_audit=True,
        )
    if c >= MEDIUM_CONFIDENCE:
        return ProcessingDecision(
            strategy=ProcessingStrategy.LOCAL_WITH_CONFIRMATION,
            reason="Medium confidence local match - user confirmation required",
            confidence=c,
        )
    if c >= LOW_CONFIDENCE:
        return ProcessingDecision(
            strategy=ProcessingStrategy.HYBRID_ASSISTED_IMPROVE,
            reason="Low confidence - assisted analysis for pattern improvement",
            confidence=c,
            estimated_tokens=PARTIAL_ANALYSIS_TOKENS,
        )
    return ProcessingDecision(
        strategy=ProcessingStrategy.FULLY_ASSISTED,
        reason="Very low confidence - full assisted analysis required",
        confidence=c,
        estimated_tokens=FULL_ANALYSIS_TOKENS,
    )


def context_summary(local: LocalMatchResult, supplier: str | None = None) -> str:
    """Instructions for an improvement call, describing what was found locally."""
    parts = [
        f"Local pattern matching found {len(local.fields)} fields with "
        f"{local.confidence:.1%} confidence.",
        f"Document type: {local.document_type}.",
    ]
    if supplier:
        parts.append(f"Supplier: {supplier}.")
    if local.fields:
        found = "; ".join(f"{f.field_name}={f.value} ({f.confidence:.0%})" for f in local.fields)
        parts.append(f"Fields: {found}.")
    parts.append(
        "Improve the field extraction based on the local results. "
        "Focus on areas with low confidence."
    )
    return " ".join(parts)


def _same_value(a: str, b: str) -> bool:
    return " ".join(a.split()).lower() == " ".join(b.split()).lower()


class DecisionEngine:
    """Selects and runs a processing strategy for one document at a time.

    Independent documents may be processed concurrently; the only shared
    mutable state here is the analytics counters and the set of in-flight
    assisted calls.

    Args:
        matcher: Local pattern matcher
        learner: Pattern learner used after successful assisted calls
        assisted: Assisted analysis collaborator, or None to run local-only
        fingerprints: Fingerprint generator (a fresh one when omitted)
        circuit_breaker: Breaker guarding the assisted call
        retry_config: Retry policy for the assisted call
        timeout_seconds: Per-attempt timeout of the assisted call
    """

    def __init__(
        self,
        matcher: PatternMatcher,
        learner: PatternLearner,
        assisted: AssistedAnalysis | None = None,
        fingerprints: FingerprintGenerator | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        retry_config: RetryConfig | None = None,
        timeout_seconds: float = ASSISTED_TIMEOUT_SECONDS,
    ):
        self.matcher = matcher
        self.learner = learner
        self.assisted = assisted
        self.fingerprints = fingerprints or FingerprintGenerator()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(ASSISTED_SERVICE)
        self.retry_config = retry_config or RetryConfig(max_attempts=1)
        self.timeout_seconds = timeout_seconds
        self._pending: set[asyncio.Task] = set()
        self._stats_lock = threading.Lock()
        self._analytics = ProcessingAnalytics()

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def decide(
        self, local: LocalMatchResult, options: ProcessingOptions | None = None
    ) -> ProcessingDecision:
        options = options or ProcessingOptions()
        decision = select_strategy(local)

        if options.force_assisted:
            decision = ProcessingDecision(
                strategy=ProcessingStrategy.FULLY_ASSISTED,
                reason="Assisted analysis forced by caller",
                confidence=local.confidence,
                estimated_tokens=max(decision.estimated_tokens, PARTIAL_ANALYSIS_TOKENS),
            )

        if options.local_only and decision.strategy.uses_assisted:
            decision = ProcessingDecision(
                strategy=ProcessingStrategy.LOCAL_WITH_CONFIRMATION,
                reason=f"Local-only mode ({decision.reason})",
                confidence=local.confidence,
            )

        if (
            options.minimum_confidence is not None
            and decision.strategy == ProcessingStrategy.FULLY_LOCAL
            and local.confidence < options.minimum_confidence
        ):
            decision = ProcessingDecision(
                strategy=ProcessingStrategy.LOCAL_WITH_CONFIRMATION,
                reason=(
                    f"Confidence {local.confidence:.1%} below required "
                    f"{options.minimum_confidence:.1%} - user confirmation required"
                ),
                confidence=local.confidence,
            )

        decision.estimated_cost = estimate_cost(decision.estimated_tokens)
        return decision

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_document(
        self,
        text: str,
        document_path: str = "",
        options: ProcessingOptions | None = None,
    ) -> HybridProcessingResult:
        """Fingerprint, match, decide and dispatch one document.

        Never raises for processing failures; they come back as a result
        with ``success=False``. Cancellation of the caller propagates.
        """
        options = options or ProcessingOptions()
        timers = StageTimers()
        result = HybridProcessingResult(document_path=document_path)
        log_extra = {"run_id": result.run_id, "document_path": document_path}

        try:
            with timers.timer("fingerprint"):
                fingerprint = self.fingerprints.fingerprint(text, document_path)
            result.fingerprint = fingerprint

            with timers.timer("match"):
                local = self.matcher.try_match(text, document_path, fingerprint, options.supplier)
            result.local_match = local
            result.document_type = local.document_type
            if local.error_code:
                result.errors.append(make_error(local.error_code, local.message))

            decision = self.decide(local, options)
            result.decision = decision
            logger.info(
                "Strategy selected: %s (%s)",
                decision.strategy.value,
                decision.reason,
                extra={
                    **log_extra,
                    "strategy": decision.strategy.value,
                    "confidence": round(decision.confidence, 4),
                },
            )

            application_key = local.content_hash
            if decision.strategy == ProcessingStrategy.FULLY_LOCAL:
                self._accept_local(result, local, decision, application_key)
            elif decision.strategy == ProcessingStrategy.LOCAL_WITH_CONFIRMATION:
                self._accept_with_confirmation(result, local)
            else:
                with timers.timer("assisted"):
                    await self._run_assisted(result, text, local, decision, options)

        except PersistenceError as e:
            logger.error("Store failure while processing: %s", e, extra=log_extra)
            self._fail(result, ErrorCode.PERSISTENCE_FAILED.value.code, str(e))
        except Exception as e:
            logger.exception("Document processing failed", extra=log_extra)
            self._fail(result, ErrorCode.UNKNOWN_ERROR.value.code, str(e))

        result.duration_seconds = timers.elapsed()
        self._record_analytics(result)
        logger.info(
            "Document processed: %s",
            result.processing_method.value,
            extra={
                **log_extra,
                "duration_ms": int(result.duration_seconds * 1000),
                "stage_ms": timers.as_millis(),
            },
        )
        return result

    def _accept_local(
        self,
        result: HybridProcessingResult,
        local: LocalMatchResult,
        decision: ProcessingDecision,
        application_key: str,
    ) -> None:
        result.success = True
        result.fields = list(local.fields)
        result.final_confidence = local.confidence
        result.processing_method = ProcessingStrategy.FULLY_LOCAL
        result.message = local.message
        result.recommended_action = NO_ACTION
        if decision.flagged_for_audit:
            result.message = f"{local.message} (flagged for quality audit)"
        self.matcher.record_outcome(local.used_patterns, True, application_key)

    def _accept_with_confirmation(
        self, result: HybridProcessingResult, local: LocalMatchResult
    ) -> None:
        result.success = True
        result.fields = list(local.fields)
        result.final_confidence = local.confidence
        result.processing_method = ProcessingStrategy.LOCAL_WITH_CONFIRMATION
        result.requires_user_confirmation = True
        result.message = local.message
        result.recommended_action = confirm_action(len(result.fields))

    async def _run_assisted(
        self,
        result: HybridProcessingResult,
        text: str,
        local: LocalMatchResult,
        decision: ProcessingDecision,
        options: ProcessingOptions,
    ) -> None:
        hybrid = decision.strategy == ProcessingStrategy.HYBRID_ASSISTED_IMPROVE
        if hybrid:
            instructions = context_summary(local, options.supplier)
        else:
            instructions = options.instructions or (
                "Extract all relevant fields from this document. "
                "Return each field name, value and confidence."
            )

        try:
            analysis = await self.call_assisted(result.document_path, instructions)
        except ExternalServiceError as e:
            self._fall_back(result, local, e)
            return

        assisted_fields = [
            ExtractedField(
                field_name=f.field_name,
                value=f.value,
                confidence=f.confidence,
                extraction_method=ExtractionMethod.ASSISTED,
                field_type=f.field_type or infer_type_from_name(f.field_name),
            )
            for f in analysis.fields
            if f.field_name and f.value
        ]

        result.success = True
        result.assisted_response = analysis.content
        result.tokens_used = analysis.tokens_used or decision.estimated_tokens
        result.total_cost = analysis.cost or decision.estimated_cost
        self._score_local_patterns(local, assisted_fields, result)

        if hybrid:
            local_names = {f.field_name.lower() for f in local.fields}
            refinements = [
                f
                for f in assisted_fields
                if f.field_name.lower() not in local_names
                or not any(
                    _same_value(f.value, lf.value)
                    for lf in local.fields
                    if lf.field_name.lower() == f.field_name.lower()
                )
            ]
            result.fields = list(local.fields) + [
                f for f in assisted_fields if f.field_name.lower() not in local_names
            ]
            result.final_confidence = min(
                HYBRID_CONFIDENCE_CAP, local.confidence + HYBRID_CONFIDENCE_BOOST
            )
            result.processing_method = ProcessingStrategy.HYBRID_ASSISTED_IMPROVE
            result.message = f"Local result improved with assisted analysis ({len(refinements)} refinements)"
            to_learn = refinements
        else:
            result.fields = assisted_fields
            if analysis.confidence:
                result.final_confidence = analysis.confidence
            elif assisted_fields:
                result.final_confidence = sum(f.confidence for f in assisted_fields) / len(
                    assisted_fields
                )
            result.processing_method = ProcessingStrategy.FULLY_ASSISTED
            result.document_type = analysis.document_type or infer_document_type(
                f.field_name for f in assisted_fields
            )
            extracted = f"assisted analysis extracted {len(assisted_fields)} fields"
            if local.success:
                result.message = extracted.capitalize()
            else:
                result.message = f"{local.message}; {extracted}"
            to_learn = assisted_fields

        learned = self._learn(result, text, to_learn, options) if options.learn_patterns else []
        result.learned_patterns = learned
        if learned:
            result.recommended_action = LEARNED_ACTION
        elif hybrid:
            result.recommended_action = IMPROVEMENT_ACTION
        else:
            result.recommended_action = NO_ACTION

    def _score_local_patterns(
        self,
        local: LocalMatchResult,
        assisted_fields: list[ExtractedField],
        result: HybridProcessingResult,
    ) -> None:
        """Count a local pattern as successful when the assisted value agrees."""
        if not local.fields:
            return
        assisted = {f.field_name.lower(): f.value for f in assisted_fields}
        by_id = {p.id: p for p in local.used_patterns}
        key = local.content_hash or None
        for field in local.fields:
            pattern = by_id.get(field.source_pattern_id or "")
            expected = assisted.get(field.field_name.lower())
            if pattern is None or expected is None:
                continue
            self.matcher.record_outcome([pattern], _same_value(field.value, expected), key)

    def _learn(
        self,
        result: HybridProcessingResult,
        text: str,
        fields: list[ExtractedField],
        options: ProcessingOptions,
    ) -> list[LearnedPattern]:
        candidates = self.learner.learn_from_fields(text, fields, options.supplier)
        if not candidates:
            return []
        try:
            return self.learner.persist(candidates)
        except PersistenceError as e:
            logger.error(
                "Could not save learned patterns: %s",
                e,
                extra={"run_id": result.run_id, "error_code": e.error_code},
            )
            result.error_code = ErrorCode.PERSISTENCE_FAILED.value.code
            result.error_message = str(e)
            result.errors.append(make_error(result.error_code, details=str(e)))
            return []

    def _fall_back(
        self,
        result: HybridProcessingResult,
        local: LocalMatchResult,
        error: ExternalServiceError,
    ) -> None:
        code = (
            ErrorCode.ASSISTED_ANALYSIS_TIMEOUT
            if error.error_type == "timeout"
            else ErrorCode.ASSISTED_ANALYSIS_FAILED
        ).value
        result.error_code = code.code
        result.error_message = f"{code.message}: {error.message}"
        result.errors.append(make_error(code.code, details=error.error_type))
        result.tokens_used = 0
        result.total_cost = 0.0
        logger.warning(
            "Assisted analysis unavailable (%s), falling back",
            error.error_type,
            extra={"run_id": result.run_id, "error_code": code.code},
        )

        if local.fields:
            result.success = True
            result.fields = list(local.fields)
            result.final_confidence = local.confidence
            result.processing_method = ProcessingStrategy.LOCAL_WITH_CONFIRMATION
            result.requires_user_confirmation = True
            result.message = "Assisted analysis unavailable - using local result pending confirmation"
            result.recommended_action = confirm_action(len(result.fields))
        else:
            result.success = False
            result.fields = []
            result.processing_method = ProcessingStrategy.ERROR
            result.message = "Assisted analysis unavailable and no local result exists"
            result.recommended_action = code.recommended_action

    @staticmethod
    def _fail(result: HybridProcessingResult, code: str, message: str) -> None:
        spec = ErrorCode.get_spec(code)
        result.success = False
        result.fields = []
        result.processing_method = ProcessingStrategy.ERROR
        result.error_code = code
        result.error_message = message
        result.errors.append(make_error(code, details=message))
        result.message = spec.message
        result.recommended_action = MANUAL_REVIEW_ACTION
        result.requires_user_confirmation = False

    # ------------------------------------------------------------------
    # Assisted call
    # ------------------------------------------------------------------

    async def call_assisted(self, document_path: str, instructions: str) -> AnalysisResult:
        """Run the assisted call as a cancellable task.

        Raises:
            ExternalServiceError: On timeout, remote failure, open circuit,
                missing collaborator or cancellation via `cancel_pending`
        """
        if self.assisted is None:
            raise ExternalServiceError(
                ASSISTED_SERVICE,
                "unavailable",
                details={"detail": "no assisted analysis collaborator configured"},
            )

        task = asyncio.ensure_future(
            self.circuit_breaker.call(self._analyze_with_retry, document_path, instructions)
        )
        self._pending.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise ExternalServiceError(ASSISTED_SERVICE, "cancelled") from None
        except ExternalServiceError:
            raise
        except Exception as e:
            raise ExternalServiceError(
                ASSISTED_SERVICE, "error", details={"detail": str(e)}
            ) from e
        finally:
            self._pending.discard(task)

    async def _analyze_with_retry(self, document_path: str, instructions: str) -> AnalysisResult:
        return await retry_with_backoff(
            self._analyze_once,
            self.retry_config,
            (ExternalServiceError,),
            document_path,
            instructions,
        )

    async def _analyze_once(self, document_path: str, instructions: str) -> AnalysisResult:
        try:
            analysis = await asyncio.wait_for(
                self.assisted.analyze(document_path, instructions),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ExternalServiceError(
                ASSISTED_SERVICE,
                "timeout",
                details={"timeout_seconds": self.timeout_seconds},
            ) from e
        if not analysis.success:
            raise ExternalServiceError(
                ASSISTED_SERVICE,
                "error",
                details={"detail": analysis.error_message or "analysis unsuccessful"},
            )
        return analysis

    def cancel_pending(self) -> int:
        """Cancel in-flight assisted calls; their documents fall back locally."""
        cancelled = 0
        for task in list(self._pending):
            if not task.done():
                task.cancel()
                cancelled += 1
        return cancelled

    # ------------------------------------------------------------------
    # Confirmation and analytics
    # ------------------------------------------------------------------

    def record_confirmation(self, result: HybridProcessingResult, accepted: bool) -> int:
        """Record the user's verdict on a locally extracted result."""
        if result.local_match is None:
            return 0
        key = result.local_match.content_hash or result.run_id
        used_ids = {f.source_pattern_id for f in result.fields if f.source_pattern_id}
        patterns = [p for p in result.local_match.used_patterns if p.id in used_ids]
        return self.matcher.record_outcome(patterns, accepted, key)

    def _record_analytics(self, result: HybridProcessingResult) -> None:
        method = result.processing_method
        with self._stats_lock:
            stats = self._analytics
            stats.total_documents += 1
            stats.strategy_counts[method.value] = stats.strategy_counts.get(method.value, 0) + 1
            if method == ProcessingStrategy.ERROR:
                stats.failed_documents += 1
            elif method.uses_assisted:
                stats.assisted_documents += 1
            else:
                stats.local_documents += 1
            stats.total_tokens += result.tokens_used
            stats.total_cost = round(stats.total_cost + result.total_cost, 6)

    def get_analytics(self) -> ProcessingAnalytics:
        with self._stats_lock:
            stats = self._analytics.model_copy(deep=True)
        if stats.total_documents:
            stats.average_cost_per_document = stats.total_cost / stats.total_documents
            stats.local_share = stats.local_documents / stats.total_documents
            stats.assisted_share = stats.assisted_documents / stats.total_documents
        stats.estimated_savings = round(
            stats.total_documents * ASSISTED_COST_PER_DOCUMENT - stats.total_cost, 6
        )
        return stats

    def reset_analytics(self) -> None:
        with self._stats_lock:
            self._analytics = ProcessingAnalytics()


def cost_projection(document_count: int, assisted_share: float = 0.05) -> CostProjection:
    """Projected spend when only `assisted_share` of documents need assisted analysis."""
    share = max(0.0, min(1.0, assisted_share))
    assisted_documents = round(document_count * share)
    projected = assisted_documents * ASSISTED_COST_PER_DOCUMENT
    baseline = document_count * ASSISTED_COST_PER_DOCUMENT
    savings = baseline - projected
    return CostProjection(
        document_count=document_count,
        assisted_share=share,
        assisted_documents=assisted_documents,
        local_documents=document_count - assisted_documents,
        projected_cost=round(projected, 6),
        all_assisted_cost=round(baseline, 6),
        projected_savings=round(savings, 6),
        savings_percent=(savings / baseline * 100) if baseline else 0.0,
    )
