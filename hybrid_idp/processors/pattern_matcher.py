"""Local pattern matching against the learned-pattern cache.

Candidate patterns are the active ones, best success rate first, then most
used, capped at 10. Every candidate's regex is applied to the document;
extractions above 0.5 confidence are kept and their mean is the overall
match confidence.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from hybrid_idp.core.config import (
    ESCALATION_THRESHOLD,
    FIELD_TYPE_MISMATCH_PENALTY,
    MAX_CANDIDATE_PATTERNS,
    MAX_SUGGESTED_PATTERNS,
    MIN_FIELD_CONFIDENCE,
)
from hybrid_idp.core.exceptions import PersistenceError
from hybrid_idp.models.dto import (
    DocumentFingerprint,
    ExtractedField,
    ExtractionMethod,
    LearnedPattern,
    LocalMatchResult,
    PatternExtraction,
    PatternTestExample,
    PatternTestResult,
)
from hybrid_idp.ports.pattern_store import PatternStore
from hybrid_idp.errors.codes import ErrorCode
from hybrid_idp.processors.field_types import value_fits_type
from hybrid_idp.utils.text import sha1_hex

logger = logging.getLogger(__name__)

NO_MATCH_MESSAGE = "no matching local patterns"
PREVIEW_CHARS = 80

# (keywords in field names, document type), first hit wins
DOCUMENT_TYPE_HINTS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("tnb", "electricity"), "TNB Electricity Bill"),
    (("invoice",), "Invoice"),
    (("receipt",), "Receipt"),
    (("statement", "bank"), "Bank Statement"),
    (("utility", "water", "gas"), "Utility Bill"),
)


def compile_pattern(pattern: LearnedPattern) -> re.Pattern | None:
    try:
        return re.compile(pattern.regex_pattern, re.IGNORECASE | re.MULTILINE)
    except re.error as e:
        logger.warning(
            "Invalid regex in learned pattern: %s",
            e,
            extra={"pattern_id": pattern.id},
        )
        return None


def apply_pattern(pattern: LearnedPattern, text: str) -> PatternExtraction:
    """Run one learned pattern over a text.

    The extraction confidence is the pattern's success rate, halved when
    the captured value does not look like the pattern's expected type.
    """
    compiled = compile_pattern(pattern)
    if compiled is None:
        return PatternExtraction(success=False)

    match = compiled.search(text or "")
    if match is None:
        return PatternExtraction(success=False)

    value = match.group(1) if compiled.groups else match.group(0)
    value = (value or "").strip()
    if not value:
        return PatternExtraction(success=False)

    confidence = pattern.success_rate
    if not value_fits_type(value, pattern.expected_field_type):
        confidence *= FIELD_TYPE_MISMATCH_PENALTY
    return PatternExtraction(success=True, value=value, confidence=confidence)


def infer_document_type(field_names: Iterable[str]) -> str:
    names = [name.lower() for name in field_names]
    for hints, document_type in DOCUMENT_TYPE_HINTS:
        if any(hint in name for name in names for hint in hints):
            return document_type
    return "Unknown"


def _is_candidate(pattern: LearnedPattern, text_lower: str, supplier: str | None) -> bool:
    """Supplier-bound patterns only apply to that supplier's documents."""
    if not pattern.is_active:
        return False
    if not pattern.supplier:
        return True
    if supplier:
        return pattern.supplier.strip().lower() == supplier.strip().lower()
    return pattern.supplier.strip().lower() in text_lower


def _preview(text: str) -> str:
    flat = " ".join((text or "").split())
    return flat if len(flat) <= PREVIEW_CHARS else flat[: PREVIEW_CHARS - 3] + "..."


class PatternMatcher:
    """Extracts fields locally using learned patterns.

    Args:
        store: Learned-pattern repository
        max_candidates: Cap on patterns tried per document
    """

    def __init__(self, store: PatternStore, max_candidates: int = MAX_CANDIDATE_PATTERNS):
        self.store = store
        self.max_candidates = max_candidates

    def candidate_patterns(self, text: str, supplier: str | None = None) -> list[LearnedPattern]:
        try:
            patterns = self.store.load_active_patterns()
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError("patterns", "load") from e

        text_lower = (text or "").lower()
        candidates = [p for p in patterns if _is_candidate(p, text_lower, supplier)]
        candidates.sort(key=lambda p: (p.success_rate, p.usage_count), reverse=True)
        return candidates[: self.max_candidates]

    def try_match(
        self,
        text: str,
        document_path: str = "",
        fingerprint: DocumentFingerprint | None = None,
        supplier: str | None = None,
    ) -> LocalMatchResult:
        """Extract what the learned patterns can from a document.

        The content hash from `fingerprint` (or of the text when no
        fingerprint is given) keys outcome recording for this document.

        Raises:
            PersistenceError: If the pattern store cannot be read
        """
        if fingerprint is not None:
            content_hash = fingerprint.hash_signatures.content
        else:
            content_hash = sha1_hex(text or "")

        candidates = self.candidate_patterns(text, supplier)
        if not candidates:
            logger.info(
                "No local pattern candidates",
                extra={"document_path": document_path},
            )
            return LocalMatchResult(
                success=False,
                confidence=0.0,
                message=f"Document processed: {NO_MATCH_MESSAGE} found",
                requires_escalation=True,
                content_hash=content_hash,
                error_code=ErrorCode.NO_PATTERN_MATCH.value.code,
            )

        best: dict[str, tuple[ExtractedField, LearnedPattern]] = {}
        for pattern in candidates:
            extraction = apply_pattern(pattern, text)
            if not extraction.success or extraction.confidence <= MIN_FIELD_CONFIDENCE:
                continue
            key = pattern.field_name.lower()
            current = best.get(key)
            if current is not None and current[0].confidence >= extraction.confidence:
                continue
            field = ExtractedField(
                field_name=pattern.field_name,
                value=extraction.value or "",
                confidence=extraction.confidence,
                extraction_method=ExtractionMethod.LOCAL_PATTERN,
                field_type=pattern.expected_field_type,
                source_pattern_id=pattern.id,
            )
            best[key] = (field, pattern)

        fields = [field for field, _ in best.values()]
        used = [pattern for _, pattern in best.values()]
        confidence = sum(f.confidence for f in fields) / len(fields) if fields else 0.0
        requires_escalation = confidence < ESCALATION_THRESHOLD
        suggestions = candidates[:MAX_SUGGESTED_PATTERNS] if requires_escalation else []

        error_code = None
        if not fields:
            message = f"{len(candidates)} candidate patterns tried, none extracted a value"
            error_code = ErrorCode.NO_PATTERN_MATCH.value.code
        elif requires_escalation:
            message = f"Patterns matched with low confidence ({confidence:.1%})"
            error_code = ErrorCode.LOW_CONFIDENCE_MATCH.value.code
        else:
            message = f"Extracted {len(fields)} fields with {confidence:.1%} confidence"

        logger.info(
            "Local match: %d fields from %d candidates",
            len(fields),
            len(candidates),
            extra={"document_path": document_path, "confidence": round(confidence, 4)},
        )
        return LocalMatchResult(
            success=bool(fields),
            confidence=confidence,
            fields=fields,
            used_patterns=used,
            suggested_patterns=suggestions,
            document_type=infer_document_type(f.field_name for f in fields),
            message=message,
            requires_escalation=requires_escalation,
            content_hash=content_hash,
            error_code=error_code,
        )

    def record_outcome(
        self,
        patterns: Iterable[LearnedPattern],
        success: bool,
        application_key: str | None = None,
    ) -> int:
        """Record one application outcome per pattern; returns how many counted."""
        counted = 0
        for pattern in patterns:
            if self.store.update_usage(pattern.id, success, application_key):
                counted += 1
        return counted

    def test_pattern(self, pattern: LearnedPattern, sample_texts: Iterable[str]) -> PatternTestResult:
        """Dry-run a pattern over sample texts without recording usage."""
        result = PatternTestResult(pattern_id=pattern.id)
        confidences = []
        for text in sample_texts:
            result.total_samples += 1
            extraction = apply_pattern(pattern, text)
            example = PatternTestExample(
                text_preview=_preview(text),
                extracted_value=extraction.value,
                confidence=extraction.confidence,
            )
            if extraction.success:
                result.successful_matches += 1
                confidences.append(extraction.confidence)
                result.successes.append(example)
            else:
                result.failures.append(example)

        if result.total_samples:
            result.success_rate = result.successful_matches / result.total_samples
        if confidences:
            result.average_confidence = sum(confidences) / len(confidences)
        result.recommendation = self._recommend(pattern, result)
        return result

    @staticmethod
    def _recommend(pattern: LearnedPattern, result: PatternTestResult) -> str:
        if result.total_samples == 0:
            return "No samples provided - cannot evaluate pattern"
        if result.success_rate >= 0.9 and result.average_confidence >= pattern.minimum_confidence:
            return "Approve - pattern is reliable"
        if result.success_rate >= 0.7:
            return "Review - pattern works on most samples"
        if result.success_rate >= 0.4:
            return "Improve - pattern misses too many samples"
        return "Reject - pattern rarely matches"
