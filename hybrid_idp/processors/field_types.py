"""Field type inference and value-shape checks.

Shared regular expressions for the value kinds the engine recognizes.
The same expressions feed fingerprint pattern counts, learned-pattern
validation and the value shapes used when learning new patterns.
"""

from __future__ import annotations

import re

from hybrid_idp.models.dto import FieldType

NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)*")
DATE_RE = re.compile(
    r"\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}|\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2}"
)
CURRENCY_RE = re.compile(
    r"(?:[$€£]|RM)\s?\d[\d,]*(?:\.\d{1,2})?|\d[\d,]*(?:\.\d{1,2})?\s?(?:USD|EUR|GBP|MYR)",
    re.IGNORECASE,
)
EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_RE = re.compile(
    r"\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}"
    r"|\+\d{1,3}[-.\s]?\d{1,3}[-.\s]?\d{3,4}[-.\s]?\d{3,4}"
)
URL_RE = re.compile(r"https?://\S+|www\.\S+", re.IGNORECASE)

# Regex fragments capturing one value of each type, used by the pattern learner
VALUE_SHAPES: dict[FieldType, str] = {
    FieldType.CURRENCY: r"((?:[$€£]|RM)?\s?\d[\d,]*(?:\.\d{1,2})?)",
    FieldType.DATE: r"(\d{1,4}[/\-.]\d{1,2}[/\-.]\d{1,4})",
    FieldType.NUMBER: r"([A-Z0-9][A-Z0-9\-/]*)",
    FieldType.EMAIL: r"([A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})",
    FieldType.PHONE: r"(\+?[\d()\-.\s]{7,20}\d)",
    FieldType.TEXT: r"([^\r\n]+?)\s*$",
}

_NAME_HINTS: tuple[tuple[tuple[str, ...], FieldType], ...] = (
    (("amount", "total", "cost", "price"), FieldType.CURRENCY),
    (("date", "time"), FieldType.DATE),
    (("email",), FieldType.EMAIL),
    (("phone",), FieldType.PHONE),
    (("number", "id", "account"), FieldType.NUMBER),
)


def infer_type_from_name(field_name: str) -> FieldType:
    """Guess a field type from its name, e.g. "Total Amount" -> currency."""
    name = (field_name or "").lower()
    for hints, field_type in _NAME_HINTS:
        if any(hint in name for hint in hints):
            return field_type
    return FieldType.TEXT


def infer_type_from_value(value: str) -> FieldType:
    """Guess a field type from the shape of a value."""
    value = (value or "").strip()
    if not value:
        return FieldType.TEXT
    if EMAIL_RE.fullmatch(value):
        return FieldType.EMAIL
    if DATE_RE.fullmatch(value):
        return FieldType.DATE
    if CURRENCY_RE.fullmatch(value):
        return FieldType.CURRENCY
    if PHONE_RE.fullmatch(value):
        return FieldType.PHONE
    if NUMBER_RE.fullmatch(value):
        return FieldType.NUMBER
    return FieldType.TEXT


def value_fits_type(value: str, field_type: FieldType) -> bool:
    """Whether a value plausibly belongs to the given type. Text always fits."""
    value = (value or "").strip()
    if field_type == FieldType.TEXT:
        return bool(value)
    if field_type == FieldType.CURRENCY:
        return bool(CURRENCY_RE.fullmatch(value) or NUMBER_RE.fullmatch(value))
    if field_type == FieldType.DATE:
        return bool(DATE_RE.search(value))
    if field_type == FieldType.NUMBER:
        return any(ch.isdigit() for ch in value)
    if field_type == FieldType.EMAIL:
        return bool(EMAIL_RE.fullmatch(value))
    if field_type == FieldType.PHONE:
        return sum(ch.isdigit() for ch in value) >= 7
    return False
