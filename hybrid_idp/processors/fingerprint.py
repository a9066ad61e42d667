"""Document fingerprint generation.

A fingerprint summarizes raw document text as structural, pattern,
content, layout and keyword metrics plus hash signatures. It is a pure
function of the text; the generator only caches results per document
path (or per content hash when no path is given).
"""

from __future__ import annotations

import logging
import re
import threading
from collections import Counter, OrderedDict

from hybrid_idp.core.config import FINGERPRINT_CACHE_SIZE, MAX_KEYWORDS
from hybrid_idp.models.dto import (
    ContentMetrics,
    DocumentFingerprint,
    HashSignatures,
    LayoutMetrics,
    PatternMetrics,
    StructuralMetrics,
)
from hybrid_idp.processors.field_types import (
    CURRENCY_RE,
    DATE_RE,
    EMAIL_RE,
    PHONE_RE,
    URL_RE,
)
from hybrid_idp.utils.text import sha1_hex, split_lines, split_words

logger = logging.getLogger(__name__)

DOCUMENT_KEYWORDS = (
    "invoice", "receipt", "bill", "statement", "account", "payment", "order",
    "tnb", "electricity", "electric", "utility", "water", "gas", "internet",
    "phone", "mobile", "bank", "credit", "debit", "balance", "transaction",
    "deposit", "withdrawal", "total", "amount", "due", "date", "number",
    "customer", "client", "vendor", "tax", "vat", "gst", "discount",
    "subtotal", "service", "charge", "fee",
)

# Keyword emitted when any of its indicator terms appears in the text
CURRENCY_INDICATORS = {
    "malaysian_currency": ("rm", "ringgit", "myr"),
    "us_currency": ("$", "usd", "dollar"),
    "euro_currency": ("€", "eur", "euro"),
    "british_currency": ("£", "gbp", "pound", "sterling"),
    "japanese_currency": ("¥", "jpy", "yen"),
    "indian_currency": ("₹", "inr", "rupee"),
    "singapore_currency": ("sgd",),
    "australian_currency": ("aud",),
}

LANGUAGE_KEYWORDS = {
    "English": ("and", "or", "with", "for", "is", "on", "from", "not", "the", "this",
                "that", "total", "bill", "number", "amount", "date", "account", "payment"),
    "Malay": ("dan", "atau", "dengan", "untuk", "adalah", "pada", "dari", "tidak", "yang",
              "ini", "itu", "jumlah", "bil", "nombor", "amaun", "tarikh", "akaun", "bayaran"),
    "Spanish": ("y", "con", "para", "es", "en", "el", "la", "este", "factura",
                "número", "cantidad", "fecha", "cuenta", "pago"),
    "French": ("et", "ou", "avec", "pour", "est", "sur", "le", "ce", "facture",
               "numéro", "montant", "compte", "paiement"),
    "German": ("und", "oder", "mit", "für", "ist", "auf", "von", "nicht", "der", "die",
               "das", "gesamt", "rechnung", "nummer", "betrag", "datum", "konto", "zahlung"),
    "Indonesian": ("dan", "atau", "dengan", "untuk", "adalah", "di", "dari", "tidak", "ini",
                   "total", "tagihan", "nomor", "jumlah", "tanggal", "akun", "pembayaran"),
}

_DIGIT_RE = re.compile(r"\d")


def _non_empty(lines: list[str]) -> list[str]:
    return [line for line in lines if line.strip()]


def structural_metrics(text: str) -> StructuralMetrics:
    all_lines = split_lines(text)
    lines = _non_empty(all_lines)
    words = text.split()
    return StructuralMetrics(
        line_count=len(lines),
        total_length=len(text),
        unique_word_count=len({w.lower() for w in words}),
        total_word_count=len(words),
        empty_line_count=len(all_lines) - len(lines) if text else 0,
        max_line_length=max((len(line) for line in lines), default=0),
        min_line_length=min((len(line) for line in lines), default=0),
    )


def pattern_metrics(text: str) -> PatternMetrics:
    lines = _non_empty(split_lines(text))
    return PatternMetrics(
        number_count=sum(1 for line in lines if _DIGIT_RE.search(line)),
        date_count=sum(1 for line in lines if DATE_RE.search(line)),
        currency_count=sum(1 for line in lines if CURRENCY_RE.search(line)),
        email_count=sum(1 for line in lines if EMAIL_RE.search(line)),
        phone_count=sum(1 for line in lines if PHONE_RE.search(line)),
        url_count=sum(1 for line in lines if URL_RE.search(line)),
    )


def detect_language(text: str) -> str:
    """Language with the most keyword hits; "Mixed" on a tie, "Unknown" on none."""
    words = {w.lower() for w in split_words(text)}
    scores = {
        language: sum(1 for keyword in keywords if keyword in words)
        for language, keywords in LANGUAGE_KEYWORDS.items()
    }
    ranked = Counter({k: v for k, v in scores.items() if v > 0}).most_common(2)
    if not ranked:
        return "Unknown"
    if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
        return "Mixed"
    return ranked[0][0]


def content_metrics(text: str) -> ContentMetrics:
    lines = _non_empty(split_lines(text))
    total = len(text)
    if total == 0:
        return ContentMetrics()
    return ContentMetrics(
        text_density=sum(1 for ch in text if not ch.isspace()) / total,
        average_line_length=sum(len(line) for line in lines) / len(lines) if lines else 0.0,
        primary_language=detect_language(text),
        special_character_count=sum(
            1 for ch in text if not ch.isalnum() and not ch.isspace()
        ),
        uppercase_ratio=sum(1 for ch in text if ch.isupper()) / total,
        numeric_ratio=sum(1 for ch in text if ch.isdigit()) / total,
    )


def estimate_columns(lines: list[str]) -> int:
    """Average number of double-space separated cells on lines that have them."""
    cell_counts = [
        len([cell for cell in line.split("  ") if cell.strip()])
        for line in lines
        if "  " in line.strip()
    ]
    if not cell_counts:
        return 1
    return max(1, int(sum(cell_counts) / len(cell_counts)))


def estimate_sections(all_lines: list[str]) -> int:
    blank = sum(1 for line in all_lines[:-1] if not line.strip())
    headers = sum(
        1
        for line in all_lines
        if line.strip() and len(line.strip()) < 50 and line.strip()[0].isupper()
    )
    return max(1, blank + headers)


def layout_metrics(text: str) -> LayoutMetrics:
    all_lines = split_lines(text)
    lines = _non_empty(all_lines)
    indents = {len(line) - len(line.lstrip()) for line in lines}
    return LayoutMetrics(
        estimated_columns=estimate_columns(lines),
        estimated_sections=estimate_sections(all_lines),
        table_like_rows=sum(
            1 for line in lines if line.count("|") > 2 or line.count("\t") > 2
        ),
        indentation_levels=max(1, len(indents)),
        average_words_per_line=(
            sum(len(line.split()) for line in lines) / len(lines) if lines else 0.0
        ),
    )


def extract_keywords(text: str) -> tuple[str, ...]:
    """Document-type keywords and currency indicators found in the text, max 15."""
    lower = text.lower()
    words = {w.lower() for w in split_words(text)}
    found = [kw for kw in DOCUMENT_KEYWORDS if kw in lower]
    for name, terms in CURRENCY_INDICATORS.items():
        if any((term in words) if term.isalpha() else (term in lower) for term in terms):
            found.append(name)
    return tuple(dict.fromkeys(found))[:MAX_KEYWORDS]


def hash_signatures(text: str, keywords: tuple[str, ...]) -> HashSignatures:
    lines = _non_empty(split_lines(text))
    shape = "".join(
        "L" if len(line) > 50 else "M" if len(line) > 20 else "S" for line in lines
    )
    return HashSignatures(
        content=sha1_hex(text),
        structure=sha1_hex(shape),
        keywords=sha1_hex(",".join(keywords)),
    )


def build_fingerprint(text: str, document_path: str = "") -> DocumentFingerprint:
    """Compute a fingerprint without touching any cache."""
    text = text or ""
    keywords = extract_keywords(text)
    return DocumentFingerprint(
        document_path=document_path,
        structural=structural_metrics(text),
        patterns=pattern_metrics(text),
        content=content_metrics(text),
        layout=layout_metrics(text),
        keywords=keywords,
        hash_signatures=hash_signatures(text, keywords),
    )


class FingerprintGenerator:
    """Computes fingerprints and caches them per document path.

    Documents without a path are cached by content hash.
    """

    def __init__(self, max_entries: int = FINGERPRINT_CACHE_SIZE) -> None:
        self.max_entries = max(1, max_entries)
        self._cache: OrderedDict[str, DocumentFingerprint] = OrderedDict()
        self._lock = threading.Lock()

    def fingerprint(self, text: str, document_path: str = "") -> DocumentFingerprint:
        key = document_path or f"sha1:{sha1_hex(text or '')}"
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                return cached

        fingerprint = build_fingerprint(text, document_path)
        with self._lock:
            cached = self._cache.setdefault(key, fingerprint)
            self._cache.move_to_end(key)
            # least recently used entries go first
            while len(self._cache) > self.max_entries:
                self._cache.popitem(last=False)
        logger.debug(
            "Fingerprint computed: %d lines, %d keywords",
            fingerprint.structural.line_count,
            len(fingerprint.keywords),
            extra={"document_path": document_path},
        )
        return cached

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
