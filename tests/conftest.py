from __future__ import annotations

import pytest

from hybrid_idp.core.settings import EngineSettings
from hybrid_idp.models.dto import AnalysisField, AnalysisResult, FieldType, LearnedPattern
from hybrid_idp.storage import InMemoryPatternStore, InMemoryRuleStore


INVOICE_TEXT = """ACME Supplies Sdn Bhd
Invoice Number: INV-2024-001
Invoice Date: 15/03/2024
Customer: Jane Tan

Total Amount: RM 1,250.00
Payment due within 30 days
"""


@pytest.fixture
def invoice_text() -> str:
    return INVOICE_TEXT


@pytest.fixture
def invoice_patterns() -> list[LearnedPattern]:
    return [
        LearnedPattern(
            field_name="Invoice Number",
            regex_pattern=r"Invoice\s+Number[\s:#\-=.]*([A-Z0-9][A-Z0-9\-/]*)",
            expected_field_type=FieldType.NUMBER,
        ),
        LearnedPattern(
            field_name="Total Amount",
            regex_pattern=r"Total\s+Amount[\s:#\-=.]*((?:[$€£]|RM)?\s?\d[\d,]*(?:\.\d{1,2})?)",
            expected_field_type=FieldType.CURRENCY,
        ),
    ]


@pytest.fixture
def pattern_store(invoice_patterns) -> InMemoryPatternStore:
    return InMemoryPatternStore(invoice_patterns)


@pytest.fixture
def rule_store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


@pytest.fixture
def settings(tmp_path) -> EngineSettings:
    return EngineSettings(
        STORE_DIR=str(tmp_path),
        ASSISTED_TIMEOUT_SECONDS=0.2,
        ASSISTED_MAX_ATTEMPTS=1,
        LOG_JSON=False,
    )


@pytest.fixture
def full_analysis() -> AnalysisResult:
    return AnalysisResult(
        success=True,
        fields=[
            AnalysisField(field_name="Invoice Number", value="INV-2024-001", confidence=0.95),
            AnalysisField(field_name="Invoice Date", value="15/03/2024", confidence=0.9),
            AnalysisField(field_name="Total Amount", value="RM 1,250.00", confidence=0.92),
        ],
        document_type="Invoice",
        confidence=0.92,
        tokens_used=3500,
        cost=0.05,
        content="{}",
    )
