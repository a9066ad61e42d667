"""Learning new extraction patterns from assisted-analysis output.

For each field value the assisted service returned, find the value in the
document text, take the label that precedes it on the same line, and
build a label-anchored regex capturing a value of the field's type. A
learned regex is only kept when it reproduces the original value on the
source document.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from hybrid_idp.core.config import INITIAL_SUCCESS_RATE
from hybrid_idp.models.dto import ExtractedField, FieldType, LearnedPattern
from hybrid_idp.ports.pattern_store import PatternStore
from hybrid_idp.processors.field_types import (
    VALUE_SHAPES,
    infer_type_from_name,
    infer_type_from_value,
)
from hybrid_idp.processors.pattern_matcher import apply_pattern

logger = logging.getLogger(__name__)

MAX_LABEL_CHARS = 40
LABEL_SEPARATORS = " \t:#-=."


def _normalize(value: str) -> str:
    return " ".join((value or "").split()).lower()


def _label_regex(label: str) -> str:
    words = label.split()
    return r"\s+".join(re.escape(word) for word in words)


def find_label(text: str, value: str) -> str | None:
    """Label text preceding the first occurrence of `value` on its line."""
    match = re.search(re.escape(value.strip()), text, re.IGNORECASE)
    if match is None:
        return None
    line_start = text.rfind("\n", 0, match.start()) + 1
    label = text[line_start : match.start()].rstrip(LABEL_SEPARATORS).strip()
    if len(label) > MAX_LABEL_CHARS:
        label = label[-MAX_LABEL_CHARS:]
        if " " in label:
            label = label.split(" ", 1)[1]
    return label or None


def field_type_for(field: ExtractedField) -> FieldType:
    if field.field_type != FieldType.TEXT:
        return field.field_type
    by_name = infer_type_from_name(field.field_name)
    if by_name != FieldType.TEXT:
        return by_name
    return infer_type_from_value(field.value)


class PatternLearner:
    """Turns assisted extractions into reusable learned patterns."""

    def __init__(self, store: PatternStore):
        self.store = store

    def build_pattern(
        self, text: str, field: ExtractedField, supplier: str | None = None
    ) -> LearnedPattern | None:
        value = (field.value or "").strip()
        if not value:
            return None
        label = find_label(text, value)
        if label is None:
            logger.debug("No label found for field %s", field.field_name)
            return None

        field_type = field_type_for(field)
        shapes = [field_type, FieldType.TEXT] if field_type != FieldType.TEXT else [FieldType.TEXT]
        for shape in shapes:
            pattern = LearnedPattern(
                supplier=supplier,
                field_name=field.field_name,
                regex_pattern=_label_regex(label) + r"[\s:#\-=.]*" + VALUE_SHAPES[shape],
                description=f"Learned from label '{label}'",
                example_match=value,
                expected_field_type=field_type,
                success_rate=INITIAL_SUCCESS_RATE,
            )
            extraction = apply_pattern(pattern, text)
            if extraction.success and _normalize(extraction.value or "") == _normalize(value):
                return pattern
        logger.debug("Learned regex did not reproduce value for %s", field.field_name)
        return None

    def learn_from_fields(
        self,
        text: str,
        fields: Iterable[ExtractedField],
        supplier: str | None = None,
    ) -> list[LearnedPattern]:
        """Build candidate patterns for fields without persisting them."""
        learned = []
        seen = set()
        for field in fields:
            pattern = self.build_pattern(text, field, supplier)
            if pattern is None:
                continue
            key = (pattern.field_name.lower(), pattern.regex_pattern)
            if key not in seen:
                seen.add(key)
                learned.append(pattern)
        return learned

    def persist(self, patterns: Iterable[LearnedPattern]) -> list[LearnedPattern]:
        """Save patterns that are not already known (same field and regex)."""
        existing = {
            (p.field_name.lower(), p.regex_pattern)
            for p in self.store.load_active_patterns()
        }
        saved = []
        for pattern in patterns:
            key = (pattern.field_name.lower(), pattern.regex_pattern)
            if key in existing:
                continue
            existing.add(key)
            saved.append(self.store.save_pattern(pattern))
            logger.info(
                "Learned pattern for field %s",
                pattern.field_name,
                extra={"pattern_id": pattern.id},
            )
        return saved
