"""Unit tests for fingerprint generation and similarity scoring."""

import pytest

from hybrid_idp.models.dto import SimilarityLevel
from hybrid_idp.processors.fingerprint import (
    FingerprintGenerator,
    build_fingerprint,
    detect_language,
    extract_keywords,
)
from hybrid_idp.processors.similarity import (
    SimilarityScorer,
    keyword_similarity,
    match_reason,
    similarity_level,
)

ELECTRICITY_BILL = """TNB Electricity Bill
Account Number: 220012345678
Bill Date: 01/02/2024
Amount Due: RM 245.60

Please pay before 15/02/2024
Contact: billing@tnb.com.my
"""

BANK_STATEMENT = """Maybank Statement of Account
Opening balance 10,000.00
01/01 DEPOSIT 500.00
03/01 WITHDRAWAL 200.00
Closing balance 10,300.00
"""


class TestFingerprint:
    """Tests for fingerprint metrics."""

    def test_structural_metrics(self):
        fp = build_fingerprint("Hello world\n\nHello again")
        assert fp.structural.line_count == 2
        assert fp.structural.empty_line_count == 1
        assert fp.structural.total_word_count == 4
        assert fp.structural.unique_word_count == 3
        assert fp.structural.max_line_length == 11
        assert fp.structural.min_line_length == 11

    def test_pattern_metrics_count_lines(self):
        fp = build_fingerprint(ELECTRICITY_BILL)
        assert fp.patterns.currency_count == 1
        assert fp.patterns.date_count == 2
        assert fp.patterns.email_count == 1
        assert fp.patterns.number_count >= 4

    def test_keywords_include_currency_indicator(self):
        keywords = extract_keywords(ELECTRICITY_BILL)
        assert "tnb" in keywords
        assert "electricity" in keywords
        assert "malaysian_currency" in keywords
        assert len(keywords) == len(set(keywords))
        assert len(keywords) <= 15

    def test_keywords_capped(self):
        text = " ".join(
            ["invoice receipt bill statement account payment order tnb electricity"]
            + ["utility water gas internet phone mobile bank credit debit balance"]
        )
        assert len(extract_keywords(text)) == 15

    def test_hash_signatures_stable(self):
        a = build_fingerprint(ELECTRICITY_BILL)
        b = build_fingerprint(ELECTRICITY_BILL)
        assert a.hash_signatures == b.hash_signatures
        assert a.hash_signatures.content != build_fingerprint(BANK_STATEMENT).hash_signatures.content

    def test_empty_text(self):
        fp = build_fingerprint("")
        assert fp.structural.line_count == 0
        assert fp.content.primary_language == "Unknown"
        assert fp.keywords == ()

    def test_detect_language(self):
        assert detect_language("The total amount for this bill is due") == "English"
        assert detect_language("Jumlah bil untuk akaun ini adalah") == "Malay"
        assert detect_language("12345 67890") == "Unknown"

    def test_generator_caches_by_path(self):
        generator = FingerprintGenerator()
        first = generator.fingerprint(ELECTRICITY_BILL, "bill.pdf")
        second = generator.fingerprint("different text", "bill.pdf")
        assert second is first
        assert len(generator) == 1

    def test_generator_caches_by_content_without_path(self):
        generator = FingerprintGenerator()
        first = generator.fingerprint(ELECTRICITY_BILL)
        assert generator.fingerprint(ELECTRICITY_BILL) is first
        generator.fingerprint(BANK_STATEMENT)
        assert len(generator) == 2

        generator.clear_cache()
        assert len(generator) == 0

    def test_generator_cache_is_bounded(self):
        generator = FingerprintGenerator(max_entries=2)
        first = generator.fingerprint(ELECTRICITY_BILL, "a.pdf")
        generator.fingerprint(BANK_STATEMENT, "b.pdf")
        # touching a.pdf makes b.pdf the least recently used entry
        assert generator.fingerprint("ignored", "a.pdf") is first
        generator.fingerprint("third document", "c.pdf")

        assert len(generator) == 2
        assert generator.fingerprint("ignored", "a.pdf") is first
        assert generator.fingerprint("other text", "b.pdf").structural.line_count == 1

    def test_generator_cache_survives_many_documents(self):
        generator = FingerprintGenerator(max_entries=16)
        for i in range(200):
            generator.fingerprint(f"Invoice {i}\nTotal: {i}")
        assert len(generator) == 16


class TestSimilarity:
    """Tests for weighted similarity."""

    def test_reflexive(self):
        scorer = SimilarityScorer()
        fp = build_fingerprint(ELECTRICITY_BILL)
        result = scorer.similarity(fp, fp)
        assert result.success is True
        assert result.overall == pytest.approx(1.0)
        assert all(score == pytest.approx(1.0) for score in result.per_metric().values())
        assert result.confidence_level == SimilarityLevel.VERY_HIGH

    def test_symmetric(self):
        scorer = SimilarityScorer()
        a = build_fingerprint(ELECTRICITY_BILL)
        b = build_fingerprint(BANK_STATEMENT)
        ab = scorer.similarity(a, b)
        ba = scorer.similarity(b, a)
        assert ab.overall == pytest.approx(ba.overall)
        assert ab.per_metric() == pytest.approx(ba.per_metric())

    def test_bounded(self):
        scorer = SimilarityScorer()
        result = scorer.similarity(build_fingerprint(ELECTRICITY_BILL), build_fingerprint(""))
        assert 0.0 <= result.overall <= 1.0
        for score in result.per_metric().values():
            assert 0.0 <= score <= 1.0

    def test_keyword_jaccard(self):
        a = build_fingerprint("invoice total amount")
        b = build_fingerprint("invoice receipt")
        # {invoice, total, amount} vs {invoice, receipt}
        assert keyword_similarity(a, b) == pytest.approx(1 / 4)
        assert keyword_similarity(build_fingerprint(""), build_fingerprint("")) == 1.0
        assert keyword_similarity(a, build_fingerprint("")) == 0.0

    @pytest.mark.parametrize(
        "overall,level",
        [
            (0.95, SimilarityLevel.VERY_HIGH),
            (0.90, SimilarityLevel.VERY_HIGH),
            (0.89, SimilarityLevel.HIGH),
            (0.85, SimilarityLevel.HIGH),
            (0.70, SimilarityLevel.MEDIUM),
            (0.50, SimilarityLevel.LOW),
            (0.49, SimilarityLevel.VERY_LOW),
        ],
    )
    def test_similarity_level(self, overall, level):
        assert similarity_level(overall) == level

    def test_match_reason(self):
        scorer = SimilarityScorer()
        fp = build_fingerprint(ELECTRICITY_BILL)
        reason = match_reason(scorer.similarity(fp, fp))
        assert reason == (
            "similar structure, similar data patterns, similar content, "
            "similar layout, shared keywords"
        )


class TestFindSimilar:
    """Tests for candidate ranking."""

    def test_ranked_filtered_and_truncated(self):
        scorer = SimilarityScorer()
        target = build_fingerprint(ELECTRICITY_BILL, "target.pdf")
        same = build_fingerprint(ELECTRICITY_BILL, "same.pdf")
        other = build_fingerprint(BANK_STATEMENT, "other.pdf")

        matches = scorer.find_similar(target, [other, same], min_similarity=0.0)
        assert [m.fingerprint.document_path for m in matches] == ["same.pdf", "other.pdf"]
        assert matches[0].similarity.overall >= matches[1].similarity.overall

        only_best = scorer.find_similar(target, [other, same], min_similarity=0.0, max_results=1)
        assert [m.fingerprint.document_path for m in only_best] == ["same.pdf"]

        strict = scorer.find_similar(target, [other, same], min_similarity=0.99)
        assert [m.fingerprint.document_path for m in strict] == ["same.pdf"]

    def test_ties_keep_input_order(self):
        scorer = SimilarityScorer()
        target = build_fingerprint(ELECTRICITY_BILL)
        copies = [build_fingerprint(ELECTRICITY_BILL, f"copy-{i}.pdf") for i in range(4)]

        matches = scorer.find_similar(target, copies)
        assert [m.fingerprint.document_path for m in matches] == [
            "copy-0.pdf",
            "copy-1.pdf",
            "copy-2.pdf",
            "copy-3.pdf",
        ]

    def test_no_candidates(self):
        scorer = SimilarityScorer()
        assert scorer.find_similar(build_fingerprint(ELECTRICITY_BILL), []) == []
