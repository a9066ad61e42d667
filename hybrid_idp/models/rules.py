"""
Mapping-rule contracts.

A mapping rule is a prioritized set of conditions on a document's
classification profile plus actions assigning extracted fields to target
locations of an output template.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from hybrid_idp.core.config import (
    DEFAULT_RULE_PRIORITY,
    DEFAULT_TARGET_LOCATION_TYPE,
    INITIAL_SUCCESS_RATE,
)
from hybrid_idp.models.dto import new_id, utc_now


class ConditionType(str, Enum):
    """Which attribute of the document profile a condition inspects."""

    SUPPLIER = "supplier"
    DOCUMENT_TYPE = "document_type"
    TEMPLATE_PATTERN = "template_pattern"
    TEMPLATE_CATEGORY = "template_category"
    FIELD_EXISTS = "field_exists"
    FIELD_VALUE = "field_value"


class RuleOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    MATCHES = "matches"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class RuleCondition(BaseModel):
    id: str = Field(default_factory=new_id)
    condition_type: ConditionType
    field_name: str = ""
    operator: RuleOperator = RuleOperator.EQUALS
    value: str = ""
    case_sensitive: bool = False
    is_required: bool = True
    weight: float = Field(default=1.0, ge=0.0)
    group_id: str | None = None
    logical_operator: LogicalOperator = LogicalOperator.AND
    display_order: int = 0
    description: str = ""


class RuleAction(BaseModel):
    id: str = Field(default_factory=new_id)
    source_field_name: str
    target_location: str
    target_location_type: str = DEFAULT_TARGET_LOCATION_TYPE
    transformation: str | None = None
    default_value: str | None = None
    is_required: bool = False
    display_order: int = 0
    description: str = ""


class MappingRule(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    priority: int = DEFAULT_RULE_PRIORITY
    is_active: bool = True
    success_rate: float = Field(default=INITIAL_SUCCESS_RATE, ge=0.0, le=1.0)
    usage_count: int = 0
    failure_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    last_modified_at: datetime = Field(default_factory=utc_now)
    last_used_at: datetime | None = None
    conditions: list[RuleCondition] = Field(default_factory=list)
    actions: list[RuleAction] = Field(default_factory=list)

    def sort_key(self) -> tuple[int, float]:
        return (-self.priority, -self.success_rate)


class DocumentProfile(BaseModel):
    """Classification profile of a document, the input to rule matching."""

    supplier_name: str | None = None
    document_type: str | None = None
    template_pattern: str | None = None
    template_category: str | None = None
    available_fields: list[str] = Field(default_factory=list)
    field_values: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class TemplateFieldMapping(BaseModel):
    id: str = Field(default_factory=new_id)
    template_id: str = ""
    rule_id: str | None = None
    field_name: str
    target_location: str
    location_type: str = DEFAULT_TARGET_LOCATION_TYPE
    value: str | None = None
    format_instructions: str | None = None
    description: str = ""
    is_required: bool = False
    display_order: int = 0
    created_at: datetime = Field(default_factory=utc_now)


class ConditionEvaluation(BaseModel):
    condition_id: str
    condition_type: ConditionType
    operator: RuleOperator
    group_id: str
    expected_value: str
    actual_value: str | None = None
    passed: bool = False
    confidence: float = 0.0
    is_required: bool = True
    weight: float = 1.0
    error_message: str | None = None


class RuleEvaluationResult(BaseModel):
    rule_id: str
    rule_name: str = ""
    should_apply: bool = False
    match_score: float = 0.0
    confidence: float = 0.0
    condition_results: list[ConditionEvaluation] = Field(default_factory=list)
    group_results: dict[str, bool] = Field(default_factory=dict)
    passed_conditions: int = 0
    failed_conditions: int = 0
    required_conditions_passed: int = 0
    required_conditions_total: int = 0
    explanation: str = ""


class PreviewMapping(BaseModel):
    source_field_name: str
    target_location: str
    target_location_type: str = DEFAULT_TARGET_LOCATION_TYPE
    value: str | None = None
    used_default: bool = False
    is_required: bool = False


class RuleTestResult(BaseModel):
    rule_id: str
    evaluation: RuleEvaluationResult
    would_apply: bool = False
    preview_mappings: list[PreviewMapping] = Field(default_factory=list)
    mapped_fields: list[str] = Field(default_factory=list)
    unmapped_fields: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    predicted_success: float = 0.0
    estimated_confidence: float = 0.0
    summary: str = ""


class RuleUsageSummary(BaseModel):
    rule_id: str
    name: str
    usage_count: int
    success_rate: float


class RuleStatistics(BaseModel):
    total_rules: int = 0
    active_rules: int = 0
    total_applications: int = 0
    total_failures: int = 0
    average_success_rate: float = 0.0
    most_used: list[RuleUsageSummary] = Field(default_factory=list)
