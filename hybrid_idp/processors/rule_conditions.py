"""Rule condition strategies.

Two exhaustive lookup tables drive condition evaluation: one resolves the
actual value a condition inspects from the document profile, one compares
it with the expected value. Comparators return ``(passed, confidence)``.
Exact operators stay exact; on a miss they report a partial-credit
confidence from normalized Levenshtein similarity, which is diagnostic
only and never changes ``passed``.
"""

from __future__ import annotations

import re
from typing import Callable, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from hybrid_idp.core.config import AFFIX_CREDIT, CONTAINS_CREDIT, REGEX_MISS_CREDIT
from hybrid_idp.models.rules import (
    ConditionType,
    DocumentProfile,
    RuleCondition,
    RuleOperator,
)

Resolver = Callable[[DocumentProfile, RuleCondition], Optional[str]]
Comparator = Callable[[str, str, bool], Tuple[bool, float]]


def levenshtein_similarity(a: str, b: str) -> float:
    """1 - distance / max length; 1.0 for two empty strings."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def _fold(value: str, case_sensitive: bool) -> str:
    return value if case_sensitive else value.lower()


# =============================================================================
# Actual-value resolvers
# =============================================================================


def _field_exists(profile: DocumentProfile, condition: RuleCondition) -> str:
    name = condition.field_name.lower()
    known = {f.lower() for f in profile.available_fields} | {
        f.lower() for f in profile.field_values
    }
    return "true" if name in known else "false"


def _field_value(profile: DocumentProfile, condition: RuleCondition) -> Optional[str]:
    if condition.field_name in profile.field_values:
        return profile.field_values[condition.field_name]
    name = condition.field_name.lower()
    for key, value in profile.field_values.items():
        if key.lower() == name:
            return value
    return None


RESOLVERS: dict[ConditionType, Resolver] = {
    ConditionType.SUPPLIER: lambda p, c: p.supplier_name,
    ConditionType.DOCUMENT_TYPE: lambda p, c: p.document_type,
    ConditionType.TEMPLATE_PATTERN: lambda p, c: p.template_pattern,
    ConditionType.TEMPLATE_CATEGORY: lambda p, c: p.template_category,
    ConditionType.FIELD_EXISTS: _field_exists,
    ConditionType.FIELD_VALUE: _field_value,
}


def resolve_actual_value(profile: DocumentProfile, condition: RuleCondition) -> Optional[str]:
    return RESOLVERS[condition.condition_type](profile, condition)


# =============================================================================
# Comparators
# =============================================================================


def compare_equals(actual: str, expected: str, case_sensitive: bool) -> Tuple[bool, float]:
    a, e = _fold(actual, case_sensitive), _fold(expected, case_sensitive)
    if a == e:
        return True, 1.0
    return False, levenshtein_similarity(a, e)


def compare_not_equals(actual: str, expected: str, case_sensitive: bool) -> Tuple[bool, float]:
    if _fold(actual, case_sensitive) != _fold(expected, case_sensitive):
        return True, 1.0
    return False, 0.0


def compare_contains(actual: str, expected: str, case_sensitive: bool) -> Tuple[bool, float]:
    a, e = _fold(actual, case_sensitive), _fold(expected, case_sensitive)
    if e in a:
        return True, 1.0
    return False, levenshtein_similarity(a, e) * CONTAINS_CREDIT


def compare_starts_with(actual: str, expected: str, case_sensitive: bool) -> Tuple[bool, float]:
    a, e = _fold(actual, case_sensitive), _fold(expected, case_sensitive)
    if a.startswith(e):
        return True, 1.0
    return False, levenshtein_similarity(a[: len(e)], e) * AFFIX_CREDIT


def compare_ends_with(actual: str, expected: str, case_sensitive: bool) -> Tuple[bool, float]:
    a, e = _fold(actual, case_sensitive), _fold(expected, case_sensitive)
    if a.endswith(e):
        return True, 1.0
    suffix = a[-len(e):] if e else ""
    return False, levenshtein_similarity(suffix, e) * AFFIX_CREDIT


def compare_is_empty(actual: str, expected: str, case_sensitive: bool) -> Tuple[bool, float]:
    return (True, 1.0) if not actual.strip() else (False, 0.0)


def compare_is_not_empty(actual: str, expected: str, case_sensitive: bool) -> Tuple[bool, float]:
    return (True, 1.0) if actual.strip() else (False, 0.0)


def compare_matches(actual: str, expected: str, case_sensitive: bool) -> Tuple[bool, float]:
    """Regex search; raises `re.error` for an invalid expression."""
    flags = re.MULTILINE if case_sensitive else re.IGNORECASE | re.MULTILINE
    if re.search(expected, actual, flags):
        return True, 1.0
    return False, REGEX_MISS_CREDIT


COMPARATORS: dict[RuleOperator, Comparator] = {
    RuleOperator.EQUALS: compare_equals,
    RuleOperator.NOT_EQUALS: compare_not_equals,
    RuleOperator.CONTAINS: compare_contains,
    RuleOperator.STARTS_WITH: compare_starts_with,
    RuleOperator.ENDS_WITH: compare_ends_with,
    RuleOperator.IS_EMPTY: compare_is_empty,
    RuleOperator.IS_NOT_EMPTY: compare_is_not_empty,
    RuleOperator.MATCHES: compare_matches,
}


def compare(condition: RuleCondition, actual: Optional[str]) -> Tuple[bool, float]:
    """Compare a resolved value with the condition's expectation.

    A missing value only satisfies `is_empty`.
    """
    if actual is None:
        if condition.operator == RuleOperator.IS_EMPTY:
            return True, 1.0
        return False, 0.0
    return COMPARATORS[condition.operator](actual, condition.value, condition.case_sensitive)


# =============================================================================
# Transformations
# =============================================================================

TRANSFORMS: dict[str, Callable[[str], str]] = {
    "upper": str.upper,
    "lower": str.lower,
    "title": str.title,
    "trim": str.strip,
    "remove_spaces": lambda v: "".join(v.split()),
}


def apply_transformation(value: str, transformation: Optional[str]) -> str:
    """Apply a named transformation; ``prefix:<x>`` and ``suffix:<x>`` add text.

    Raises:
        KeyError: For an unknown transformation name
    """
    if not transformation:
        return value
    name, _, argument = transformation.partition(":")
    name = name.strip().lower()
    if name == "prefix":
        return f"{argument}{value}"
    if name == "suffix":
        return f"{value}{argument}"
    return TRANSFORMS[name](value)
