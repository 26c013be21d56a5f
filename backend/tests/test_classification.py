"""Unit tests for the rule-based insight classifier."""

from datetime import datetime, timezone

import pytest

from contractlens.extractors.text import ExtractedPage
from contractlens.models.schemas import ClauseType, Insight, InsightType, RiskLevel
from contractlens.services.chunking import Chunker
from contractlens.services.classification import (
    InsightClassifier,
    aggregate_risk,
    confidence_from_matches,
    insight_id_for,
)

ANALYZED_AT = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _chunks(document, text: str):
    return list(Chunker().chunk(document, [ExtractedPage(page_number=1, text=text)]))


def _by_title(insights):
    return {insight.title: insight for insight in insights}


@pytest.fixture
def classifier() -> InsightClassifier:
    return InsightClassifier()


class TestAggregateRisk:

    def _insight(self, level: RiskLevel) -> Insight:
        return Insight(
            insight_id=f"i-{level.value}",
            document_id="doc-1",
            insight_type=InsightType.RISK,
            title=level.value,
            summary="test",
            confidence=0.5,
            risk_level=level,
        )

    def test_empty_is_low(self):
        assert aggregate_risk([]) == RiskLevel.LOW

    def test_max_level_wins(self):
        insights = [self._insight(RiskLevel.LOW), self._insight(RiskLevel.HIGH), self._insight(RiskLevel.MEDIUM)]
        assert aggregate_risk(insights) == RiskLevel.HIGH
        assert aggregate_risk(insights[::2]) == RiskLevel.MEDIUM


class TestHelpers:

    def test_confidence_grows_with_evidence(self):
        assert confidence_from_matches(0) == 0.0
        assert confidence_from_matches(1) == 0.6
        assert confidence_from_matches(3) == 0.76
        assert confidence_from_matches(50) == 0.95

    def test_insight_ids_are_stable(self):
        first = insight_id_for("doc-1", InsightType.RISK, "Liability Cap")
        assert first == insight_id_for("doc-1", InsightType.RISK, "Liability Cap")
        assert first != insight_id_for("doc-2", InsightType.RISK, "Liability Cap")
        assert first != insight_id_for("doc-1", InsightType.CLAUSE, "Liability Cap")

    @pytest.mark.parametrize("text,days", [
        ("terminate with 90 days written notice", 90),
        ("upon sixty (60) days' prior written notice", 60),
        ("a notice period of at least 2 weeks", 14),
        ("on one month notice", 30),
        ("the services commence immediately", None),
    ])
    def test_notice_days(self, classifier, text, days):
        assert classifier.notice_days(text) == days


class TestInsightClassifier:

    def test_master_services_agreement(self, classifier, msa_document, msa_chunks):
        insights = classifier.classify(msa_document, msa_chunks, analyzed_at=ANALYZED_AT)
        titles = _by_title(insights)

        assert set(titles) == {
            "Termination Clause",
            "Liability Clause",
            "Payment Terms",
            "Missing Force Majeure Clause",
            "Liability Cap",
        }
        assert titles["Missing Force Majeure Clause"].risk_level == RiskLevel.HIGH
        assert titles["Liability Cap"].risk_level == RiskLevel.MEDIUM
        assert titles["Termination Clause"].risk_level == RiskLevel.LOW
        assert "90 days" in titles["Termination Clause"].summary
        assert "90 days written notice" in titles["Termination Clause"].evidence_text
        assert titles["Termination Clause"].source_section == "Termination"
        assert aggregate_risk(insights) == RiskLevel.HIGH
        assert all(i.created_at == ANALYZED_AT for i in insights)
        assert all(0.0 <= i.confidence <= 1.0 for i in insights)

    def test_clause_insights_precede_risk_insights(self, classifier, msa_document, msa_chunks):
        insights = classifier.classify(msa_document, msa_chunks, analyzed_at=ANALYZED_AT)
        types = [i.insight_type for i in insights]
        assert types == sorted(types, key=lambda t: t != InsightType.CLAUSE)

    def test_identical_chunks_give_identical_insights(self, classifier, msa_document, msa_chunks):
        first = classifier.classify(msa_document, msa_chunks, analyzed_at=ANALYZED_AT)
        second = classifier.classify(msa_document, list(reversed(msa_chunks)), analyzed_at=ANALYZED_AT)
        assert first == second

    def test_no_clauses(self, classifier, msa_document):
        chunks = _chunks(msa_document, "The parties agree to meet quarterly to review progress.")
        titles = _by_title(classifier.classify(msa_document, chunks))

        assert set(titles) == {"Missing Force Majeure Clause", "Missing Termination Clause"}
        assert titles["Missing Termination Clause"].risk_level == RiskLevel.MEDIUM
        assert titles["Missing Termination Clause"].evidence_text is None

    def test_unlimited_liability_suppresses_cap(self, classifier, msa_document):
        text = (
            "LIABILITY\n"
            "The Supplier accepts unlimited liability for data breaches. "
            "Liability for other claims is limited to the fees paid.\n"
        )
        titles = _by_title(classifier.classify(msa_document, _chunks(msa_document, text)))

        assert titles["Unlimited Liability"].risk_level == RiskLevel.HIGH
        assert titles["Unlimited Liability"].clause_type == ClauseType.LIABILITY
        assert "Liability Cap" not in titles

    def test_short_notice_and_auto_renewal(self, classifier, msa_document):
        text = (
            "1. Term\n"
            "This agreement renews automatically for successive one-year terms.\n\n"
            "2. Termination\n"
            "Either party may terminate this agreement on 15 days notice.\n\n"
            "3. Force Majeure\n"
            "Neither party is responsible for acts of God.\n"
        )
        titles = _by_title(classifier.classify(msa_document, _chunks(msa_document, text)))

        assert titles["Automatic Renewal"].risk_level == RiskLevel.MEDIUM
        assert titles["Short Termination Notice"].risk_level == RiskLevel.MEDIUM
        assert "15 days" in titles["Short Termination Notice"].summary
        assert titles["Termination Clause"].risk_level == RiskLevel.MEDIUM
        assert "Missing Force Majeure Clause" not in titles

    def test_payment_and_confidentiality_risks(self, classifier, msa_document):
        text = (
            "1. Fees\n"
            "Customer shall pay each invoice net 90. Late payments accrue a late fee of 2% per month.\n\n"
            "2. Confidentiality\n"
            "Each party shall keep the other's confidential information secret for six months.\n"
        )
        titles = _by_title(classifier.classify(msa_document, _chunks(msa_document, text)))

        payment = titles["Payment Terms"]
        assert payment.risk_level == RiskLevel.MEDIUM
        assert "2%" in payment.summary
        assert "90 days" in payment.summary

        confidentiality = titles["Confidentiality Clause"]
        assert confidentiality.risk_level == RiskLevel.MEDIUM
        assert confidentiality.clause_type == ClauseType.CONFIDENTIALITY
        assert "6 months" in confidentiality.summary
