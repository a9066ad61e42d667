"""Fingerprint similarity scoring.

Overall similarity is a fixed weighted sum of five component scores:
structural 25%, pattern 30%, content 20%, layout 15%, keyword 10%.
Every component is symmetric and equals 1.0 for identical fingerprints.
"""

from __future__ import annotations

import logging
from typing import Iterable

from hybrid_idp.core.config import (
    CONTENT_WEIGHT,
    DEFAULT_MAX_SIMILAR_RESULTS,
    DEFAULT_MIN_SIMILARITY,
    HIGH_CONFIDENCE,
    KEYWORD_WEIGHT,
    LAYOUT_WEIGHT,
    LOW_CONFIDENCE,
    MATCH_REASON_THRESHOLD,
    MEDIUM_CONFIDENCE,
    PATTERN_WEIGHT,
    STRUCTURAL_WEIGHT,
    VERY_HIGH_CONFIDENCE,
)
from hybrid_idp.models.dto import (
    DocumentFingerprint,
    SimilarDocumentMatch,
    SimilarityLevel,
    SimilarityResult,
)
from hybrid_idp.utils.text import count_ratio

logger = logging.getLogger(__name__)


def _mean(values: Iterable[float]) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


def structural_similarity(a: DocumentFingerprint, b: DocumentFingerprint) -> float:
    sa, sb = a.structural, b.structural
    return _mean(
        [
            count_ratio(sa.line_count, sb.line_count),
            count_ratio(sa.total_length, sb.total_length),
            count_ratio(sa.unique_word_count, sb.unique_word_count),
        ]
    )


def pattern_similarity(a: DocumentFingerprint, b: DocumentFingerprint) -> float:
    pa, pb = a.patterns, b.patterns
    return _mean(
        [
            count_ratio(pa.number_count, pb.number_count),
            count_ratio(pa.date_count, pb.date_count),
            count_ratio(pa.currency_count, pb.currency_count),
            count_ratio(pa.email_count, pb.email_count),
            count_ratio(pa.phone_count, pb.phone_count),
        ]
    )


def content_similarity(a: DocumentFingerprint, b: DocumentFingerprint) -> float:
    ca, cb = a.content, b.content
    language = 1.0 if ca.primary_language == cb.primary_language else 0.5
    return _mean(
        [
            1.0 - abs(ca.text_density - cb.text_density),
            count_ratio(ca.average_line_length, cb.average_line_length),
            language,
        ]
    )


def layout_similarity(a: DocumentFingerprint, b: DocumentFingerprint) -> float:
    la, lb = a.layout, b.layout
    return _mean(
        [
            count_ratio(la.estimated_columns, lb.estimated_columns),
            count_ratio(la.estimated_sections, lb.estimated_sections),
            count_ratio(la.table_like_rows, lb.table_like_rows),
        ]
    )


def keyword_similarity(a: DocumentFingerprint, b: DocumentFingerprint) -> float:
    """Case-insensitive Jaccard overlap of the keyword sets."""
    ka = {k.lower() for k in a.keywords}
    kb = {k.lower() for k in b.keywords}
    if not ka and not kb:
        return 1.0
    if not ka or not kb:
        return 0.0
    return len(ka & kb) / len(ka | kb)


def similarity_level(overall: float) -> SimilarityLevel:
    if overall >= VERY_HIGH_CONFIDENCE:
        return SimilarityLevel.VERY_HIGH
    if overall >= HIGH_CONFIDENCE:
        return SimilarityLevel.HIGH
    if overall >= MEDIUM_CONFIDENCE:
        return SimilarityLevel.MEDIUM
    if overall >= LOW_CONFIDENCE:
        return SimilarityLevel.LOW
    return SimilarityLevel.VERY_LOW


def match_reason(result: SimilarityResult) -> str:
    """Short human-readable account of what made two documents similar."""
    reasons = [
        label
        for label, score in (
            ("similar structure", result.structural),
            ("similar data patterns", result.pattern),
            ("similar content", result.content),
            ("similar layout", result.layout),
            ("shared keywords", result.keyword),
        )
        if score > MATCH_REASON_THRESHOLD
    ]
    return ", ".join(reasons) if reasons else "general similarity"


class SimilarityScorer:
    """Weighted multi-metric comparison of document fingerprints."""

    def similarity(self, a: DocumentFingerprint, b: DocumentFingerprint) -> SimilarityResult:
        try:
            structural = structural_similarity(a, b)
            pattern = pattern_similarity(a, b)
            content = content_similarity(a, b)
            layout = layout_similarity(a, b)
            keyword = keyword_similarity(a, b)
        except (TypeError, ValueError, ZeroDivisionError) as e:
            logger.error("Similarity computation failed: %s", e, exc_info=True)
            return SimilarityResult(success=False, error_message=str(e))

        overall = (
            STRUCTURAL_WEIGHT * structural
            + PATTERN_WEIGHT * pattern
            + CONTENT_WEIGHT * content
            + LAYOUT_WEIGHT * layout
            + KEYWORD_WEIGHT * keyword
        )
        overall = max(0.0, min(1.0, round(overall, 10)))
        return SimilarityResult(
            overall=overall,
            structural=structural,
            pattern=pattern,
            content=content,
            layout=layout,
            keyword=keyword,
            confidence_level=similarity_level(overall),
        )

    def find_similar(
        self,
        target: DocumentFingerprint,
        candidates: Iterable[DocumentFingerprint],
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        max_results: int = DEFAULT_MAX_SIMILAR_RESULTS,
    ) -> list[SimilarDocumentMatch]:
        """Candidates at or above `min_similarity`, best first, input order on ties."""
        matches = []
        for candidate in candidates:
            result = self.similarity(target, candidate)
            if result.success and result.overall >= min_similarity:
                matches.append(
                    SimilarDocumentMatch(
                        fingerprint=candidate,
                        similarity=result,
                        match_reason=match_reason(result),
                    )
                )
        matches.sort(key=lambda m: m.similarity.overall, reverse=True)
        return matches[: max(0, max_results)]
