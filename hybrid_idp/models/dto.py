"""
Typed contracts shared across the extraction engine.

Fingerprints, extracted fields, learned patterns and the results handed
back to callers. Rule-engine contracts live in `hybrid_idp.models.rules`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from hybrid_idp.core.config import (
    DEFAULT_MINIMUM_PATTERN_CONFIDENCE,
    INITIAL_SUCCESS_RATE,
)
from hybrid_idp.utils.text import clamp01


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class FieldType(str, Enum):
    CURRENCY = "currency"
    DATE = "date"
    NUMBER = "number"
    EMAIL = "email"
    PHONE = "phone"
    TEXT = "text"


class ExtractionMethod(str, Enum):
    LOCAL_PATTERN = "local_pattern"
    ASSISTED = "assisted"


class ProcessingStrategy(str, Enum):
    """How a document is processed, from cheapest to most expensive."""

    FULLY_LOCAL = "FullyLocal"
    LOCAL_WITH_CONFIRMATION = "LocalWithConfirmation"
    HYBRID_ASSISTED_IMPROVE = "HybridAssistedImprove"
    FULLY_ASSISTED = "FullyAssisted"
    ERROR = "Error"

    @property
    def uses_assisted(self) -> bool:
        return self in (
            ProcessingStrategy.HYBRID_ASSISTED_IMPROVE,
            ProcessingStrategy.FULLY_ASSISTED,
        )


class SimilarityLevel(str, Enum):
    VERY_HIGH = "VeryHigh"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    VERY_LOW = "VeryLow"


# =============================================================================
# Fingerprint
# =============================================================================


class StructuralMetrics(BaseModel):
    model_config = {"frozen": True}

    line_count: int = 0
    total_length: int = 0
    unique_word_count: int = 0
    total_word_count: int = 0
    empty_line_count: int = 0
    max_line_length: int = 0
    min_line_length: int = 0


class PatternMetrics(BaseModel):
    """Number of lines containing each kind of value."""

    model_config = {"frozen": True}

    number_count: int = 0
    date_count: int = 0
    currency_count: int = 0
    email_count: int = 0
    phone_count: int = 0
    url_count: int = 0

    @property
    def total(self) -> int:
        return (
            self.number_count
            + self.date_count
            + self.currency_count
            + self.email_count
            + self.phone_count
            + self.url_count
        )


class ContentMetrics(BaseModel):
    model_config = {"frozen": True}

    text_density: float = 0.0
    average_line_length: float = 0.0
    primary_language: str = "Unknown"
    special_character_count: int = 0
    uppercase_ratio: float = 0.0
    numeric_ratio: float = 0.0


class LayoutMetrics(BaseModel):
    model_config = {"frozen": True}

    estimated_columns: int = 1
    estimated_sections: int = 1
    table_like_rows: int = 0
    indentation_levels: int = 1
    average_words_per_line: float = 0.0


class HashSignatures(BaseModel):
    model_config = {"frozen": True}

    content: str = ""
    structure: str = ""
    keywords: str = ""


class DocumentFingerprint(BaseModel):
    """
    Multi-metric signature of a document's text.

    Immutable once computed; the generator caches it per document path.
    """

    model_config = {"frozen": True}

    document_path: str = ""
    structural: StructuralMetrics = Field(default_factory=StructuralMetrics)
    patterns: PatternMetrics = Field(default_factory=PatternMetrics)
    content: ContentMetrics = Field(default_factory=ContentMetrics)
    layout: LayoutMetrics = Field(default_factory=LayoutMetrics)
    keywords: tuple[str, ...] = ()
    hash_signatures: HashSignatures = Field(default_factory=HashSignatures)
    created_at: datetime = Field(default_factory=utc_now)


class SimilarityResult(BaseModel):
    overall: float = 0.0
    structural: float = 0.0
    pattern: float = 0.0
    content: float = 0.0
    layout: float = 0.0
    keyword: float = 0.0
    confidence_level: SimilarityLevel = SimilarityLevel.VERY_LOW
    success: bool = True
    error_message: str | None = None

    def per_metric(self) -> dict[str, float]:
        return {
            "structural": self.structural,
            "pattern": self.pattern,
            "content": self.content,
            "layout": self.layout,
            "keyword": self.keyword,
        }


class SimilarDocumentMatch(BaseModel):
    fingerprint: DocumentFingerprint
    similarity: SimilarityResult
    match_reason: str = ""


# =============================================================================
# Fields and patterns
# =============================================================================


class BoundingBox(BaseModel):
    model_config = {"frozen": True}

    x: float
    y: float
    width: float
    height: float


class ExtractedField(BaseModel):
    """A single field value produced by one extraction attempt."""

    model_config = {"frozen": True}

    field_name: str
    value: str
    confidence: float = 0.0
    extraction_method: ExtractionMethod = ExtractionMethod.LOCAL_PATTERN
    field_type: FieldType = FieldType.TEXT
    position: BoundingBox | None = None
    source_pattern_id: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> float:
        return clamp01(float(v or 0.0))


class LearnedPattern(BaseModel):
    """
    Cached, reusable extraction rule with a tracked success rate.

    `regex_pattern` is matched case-insensitively against the whole
    document; capture group 1 (or the whole match when there is no group)
    is the extracted value.
    """

    id: str = Field(default_factory=new_id)
    supplier: str | None = None
    field_name: str
    regex_pattern: str
    description: str = ""
    example_match: str = ""
    expected_field_type: FieldType = FieldType.TEXT
    success_rate: float = Field(default=INITIAL_SUCCESS_RATE, ge=0.0, le=1.0)
    minimum_confidence: float = Field(
        default=DEFAULT_MINIMUM_PATTERN_CONFIDENCE, ge=0.0, le=1.0
    )
    usage_count: int = 0
    success_count: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    last_used_at: datetime | None = None


class PatternExtraction(BaseModel):
    """Outcome of applying one learned pattern to a text."""

    success: bool
    value: str | None = None
    confidence: float = 0.0


class LocalMatchResult(BaseModel):
    success: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    fields: list[ExtractedField] = Field(default_factory=list)
    used_patterns: list[LearnedPattern] = Field(default_factory=list)
    suggested_patterns: list[LearnedPattern] = Field(default_factory=list)
    document_type: str = "Unknown"
    message: str = ""
    requires_escalation: bool = False
    tokens_used: int = 0
    content_hash: str = ""
    error_code: str | None = None  # NO_PATTERN_MATCH or LOW_CONFIDENCE_MATCH


class PatternTestExample(BaseModel):
    text_preview: str
    extracted_value: str | None = None
    confidence: float = 0.0


class PatternTestResult(BaseModel):
    pattern_id: str
    total_samples: int = 0
    successful_matches: int = 0
    success_rate: float = 0.0
    average_confidence: float = 0.0
    successes: list[PatternTestExample] = Field(default_factory=list)
    failures: list[PatternTestExample] = Field(default_factory=list)
    recommendation: str = ""


# =============================================================================
# Assisted analysis and decisions
# =============================================================================


class AnalysisField(BaseModel):
    field_name: str
    value: str
    confidence: float = Field(default=0.9, ge=0.0, le=1.0)
    field_type: FieldType | None = None


class AnalysisResult(BaseModel):
    """What the assisted analysis collaborator returns."""

    success: bool = False
    fields: list[AnalysisField] = Field(default_factory=list)
    document_type: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    tokens_used: int = 0
    cost: float = 0.0
    content: str | None = None
    error_message: str | None = None


class ProcessingOptions(BaseModel):
    force_assisted: bool = False
    local_only: bool = False
    minimum_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    supplier: str | None = None
    instructions: str | None = None
    learn_patterns: bool = True


class ProcessingDecision(BaseModel):
    strategy: ProcessingStrategy
    reason: str
    confidence: float = 0.0
    estimated_tokens: int = 0
    estimated_cost: float = 0.0
    flagged_for_audit: bool = False


class HybridProcessingResult(BaseModel):
    """Outcome of one document; assignments are validated as the engine fills it in."""

    model_config = {"validate_assignment": True}

    run_id: str = Field(default_factory=new_id)
    document_path: str = ""
    success: bool = False
    error_message: str | None = None
    error_code: str | None = None
    errors: list[dict[str, Any]] = Field(default_factory=list)
    message: str = ""
    decision: ProcessingDecision | None = None
    fingerprint: DocumentFingerprint | None = None
    local_match: LocalMatchResult | None = None
    fields: list[ExtractedField] = Field(default_factory=list)
    final_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    processing_method: ProcessingStrategy = ProcessingStrategy.ERROR
    document_type: str = "Unknown"
    recommended_action: str = ""
    requires_user_confirmation: bool = False
    tokens_used: int = 0
    total_cost: float = 0.0
    assisted_response: str | None = None
    learned_patterns: list[LearnedPattern] = Field(default_factory=list)
    duration_seconds: float = 0.0


class ProcessingAnalytics(BaseModel):
    total_documents: int = 0
    local_documents: int = 0
    assisted_documents: int = 0
    failed_documents: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    average_cost_per_document: float = 0.0
    local_share: float = 0.0
    assisted_share: float = 0.0
    estimated_savings: float = 0.0
    strategy_counts: dict[str, int] = Field(default_factory=dict)


class CostProjection(BaseModel):
    document_count: int
    assisted_share: float
    assisted_documents: int
    local_documents: int
    projected_cost: float
    all_assisted_cost: float
    projected_savings: float
    savings_percent: float
