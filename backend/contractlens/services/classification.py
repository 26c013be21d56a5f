"""
Insight and risk classification.

Rule-based and deterministic: the same chunks always produce the same
insights, ids and confidences included. Clause insights summarise the key
provisions found; risk insights flag known risk patterns, including clauses
that are missing altogether.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

from ..extractors.clauses import COMPILED_CLAUSE_PATTERNS, clause_scores
from ..extractors.deterministic import parse_number
from ..models.schemas import (
    Chunk, ClauseType, Document, Insight, InsightType, RiskLevel, utc_now
)
from .chunking import get_sentencizer

logger = logging.getLogger(__name__)


INSIGHT_NAMESPACE = uuid.UUID("6f1d2c1e-3c55-4d8e-9a51-0c7f7d0e2b6a")

CLAUSE_TITLES = {
    ClauseType.TERMINATION: "Termination Clause",
    ClauseType.LIABILITY: "Liability Clause",
    ClauseType.CONFIDENTIALITY: "Confidentiality Clause",
    ClauseType.PAYMENT: "Payment Terms",
}

_NUMBER = r"(?P<number>\d+|[a-z]+(?:-[a-z]+)?)\s*(?:\(\d+\)\s*)?"
_UNIT = r"(?P<unit>days?|weeks?|months?)"

NOTICE_PATTERNS = [
    re.compile(rf"\b{_NUMBER}{_UNIT}['’]?\s+(?:prior\s+|advance\s+)?(?:written\s+)?notice\b", re.IGNORECASE),
    re.compile(rf"\bnotice\s+(?:period\s+)?of\s+(?:at\s+least\s+|not\s+less\s+than\s+)?{_NUMBER}{_UNIT}", re.IGNORECASE),
]

UNLIMITED_LIABILITY_PATTERNS = [
    re.compile(r"\bunlimited\s+liabilit\w*", re.IGNORECASE),
    re.compile(r"\bliabilit\w*[^.]{0,80}\b(?:shall|will)\s+not\s+be\s+limited\b", re.IGNORECASE),
    re.compile(r"\bwithout\s+(?:any\s+)?limit(?:ation)?\s+(?:of|on)\s+liabilit\w*", re.IGNORECASE),
]

LIABILITY_CAP_PATTERNS = [
    re.compile(r"\b(?:liabilit\w*|liable)\b[^.]{0,120}\b(?:shall\s+not\s+exceed|not\s+to\s+exceed|limited\s+to|capped\s+at|in\s+no\s+event\s+exceed)", re.IGNORECASE),
    re.compile(r"\blimitation\s+of\s+liabilit\w*", re.IGNORECASE),
]

AUTO_RENEWAL_PATTERNS = [
    re.compile(r"\bautomatic(?:ally)?\s+renew\w*", re.IGNORECASE),
    re.compile(r"\brenew\w*\s+automatic\w*", re.IGNORECASE),
    re.compile(r"\bauto-?renew\w*", re.IGNORECASE),
]

LATE_FEE_PATTERN = re.compile(r"(?P<rate>\d+(?:\.\d+)?)\s*%[^.]{0,40}\b(?:per\s+month|monthly|late)", re.IGNORECASE)
NET_TERMS_PATTERN = re.compile(r"\bnet\s+(?P<days>\d+)\b|\bwithin\s+(?P<within>\d+)\s+days\b", re.IGNORECASE)
CONFIDENTIALITY_TERM_PATTERN = re.compile(
    rf"\b(?:for|period\s+of)\s+{_NUMBER}(?P<term_unit>years?|months?)\b", re.IGNORECASE
)

HEADING_PATTERN = re.compile(
    r"^\s*(?:(?i:section|article|clause)\s+)?(?:\d+(?:\.\d+)*\.?\s+)(?P<title>[A-Za-z][A-Za-z &/,'-]{2,60})\s*$"
    r"|^\s*(?P<caps>[A-Z][A-Z &/,'-]{3,60})\s*$",
    re.MULTILINE,
)

SHORT_NOTICE_DAYS = 30
LATE_FEE_RATE_LIMIT = 1.5
NET_TERMS_LIMIT_DAYS = 60
MIN_CONFIDENTIALITY_MONTHS = 12


def insight_id_for(document_id: str, insight_type: InsightType, title: str) -> str:
    """Stable insight id: identical inputs always map to the same id."""
    return str(uuid.uuid5(INSIGHT_NAMESPACE, f"{document_id}:{insight_type.value}:{title}"))


def aggregate_risk(insights: Iterable[Insight]) -> RiskLevel:
    """Document risk: the highest insight risk level, Low when there are none."""
    levels = [insight.risk_level for insight in insights]
    if not levels:
        return RiskLevel.LOW
    return max(levels, key=lambda level: level.rank)


def confidence_from_matches(matches: int, base: float = 0.6, step: float = 0.08, ceiling: float = 0.95) -> float:
    """Calibrated confidence that grows with the amount of supporting evidence."""
    if matches <= 0:
        return 0.0
    return round(min(ceiling, base + step * (matches - 1)), 2)


def _to_days(number: int, unit: str) -> int:
    unit = unit.lower()
    if unit.startswith("week"):
        return number * 7
    if unit.startswith("month"):
        return number * 30
    return number


@dataclass
class Evidence:
    """Best supporting passage for a finding."""
    chunk: Chunk
    sentence: str
    matches: int


class InsightClassifier:
    """Derives clause and risk insights from a document's chunks."""

    def __init__(self):
        self.nlp = get_sentencizer()

    def classify(
        self,
        document: Document,
        chunks: Sequence[Chunk],
        analyzed_at: Optional[datetime] = None,
    ) -> List[Insight]:
        """
        Classify a document.

        Args:
            document: The document the chunks belong to
            chunks: The document's chunks, in order
            analyzed_at: Timestamp stamped on every insight (defaults to now)

        Returns:
            Clause insights followed by risk insights
        """
        created_at = analyzed_at or utc_now()
        ordered = sorted(chunks, key=lambda c: c.chunk_index)

        insights = self._clause_insights(document, ordered, created_at)
        insights.extend(self._risk_insights(document, ordered, created_at))

        logger.info(
            f"Classified document {document.document_id}: {len(insights)} insights, "
            f"risk {aggregate_risk(insights).value}"
        )
        return insights

    # Evidence helpers

    def _sentences(self, text: str) -> List[str]:
        return [s.text.strip() for s in self.nlp(text).sents if s.text.strip()]

    def _best_sentence(self, text: str, patterns: Sequence[Pattern]) -> Tuple[str, int]:
        best, best_count = "", 0
        for sentence in self._sentences(text):
            count = sum(len(p.findall(sentence)) for p in patterns)
            if count > best_count:
                best, best_count = sentence, count
        return best, best_count

    def _strongest_clause(self, chunks: Sequence[Chunk], clause_type: ClauseType) -> Optional[Evidence]:
        best: Optional[Tuple[int, Chunk]] = None
        for chunk in chunks:
            count = clause_scores(chunk.text).get(clause_type, (0, 0))[0]
            if count and (best is None or count > best[0]):
                best = (count, chunk)
        if best is None:
            return None

        total = sum(clause_scores(c.text).get(clause_type, (0, 0))[0] for c in chunks)
        sentence, _ = self._best_sentence(best[1].text, COMPILED_CLAUSE_PATTERNS[clause_type])
        return Evidence(chunk=best[1], sentence=sentence or best[1].text, matches=total)

    def _first_match(self, chunks: Sequence[Chunk], patterns: Sequence[Pattern]) -> Optional[Evidence]:
        for chunk in chunks:
            count = sum(len(p.findall(chunk.text)) for p in patterns)
            if count:
                sentence, _ = self._best_sentence(chunk.text, patterns)
                total = sum(sum(len(p.findall(c.text)) for p in patterns) for c in chunks)
                return Evidence(chunk=chunk, sentence=sentence or chunk.text, matches=total)
        return None

    def source_section(self, chunk: Chunk) -> str:
        """Nearest heading inside the chunk, else its page."""
        match = HEADING_PATTERN.search(chunk.text)
        if match:
            heading = (match.group("title") or match.group("caps")).strip()
            return heading.title() if heading.isupper() else heading
        return f"Page {chunk.page_number}"

    def notice_days(self, text: str) -> Optional[int]:
        """Shortest notice period stated in the text, in days."""
        periods = []
        for pattern in NOTICE_PATTERNS:
            for match in pattern.finditer(text):
                number = parse_number(match.group("number"))
                if number:
                    periods.append(_to_days(number, match.group("unit")))
        return min(periods) if periods else None

    # Clause insights

    def _clause_insights(self, document: Document, chunks: Sequence[Chunk], created_at: datetime) -> List[Insight]:
        insights = []
        for clause_type, title in CLAUSE_TITLES.items():
            evidence = self._strongest_clause(chunks, clause_type)
            if evidence is None:
                continue

            risk_level, detail = self._clause_risk(clause_type, evidence)
            summary = f"{title} found on page {evidence.chunk.page_number}."
            if detail:
                summary = f"{summary} {detail}"

            insights.append(Insight(
                insight_id=insight_id_for(document.document_id, InsightType.CLAUSE, title),
                document_id=document.document_id,
                insight_type=InsightType.CLAUSE,
                title=title,
                summary=summary,
                confidence=confidence_from_matches(evidence.matches),
                risk_level=risk_level,
                evidence_text=evidence.sentence,
                source_section=self.source_section(evidence.chunk),
                clause_type=clause_type,
                created_at=created_at,
            ))
        return insights

    def _clause_risk(self, clause_type: ClauseType, evidence: Evidence) -> Tuple[RiskLevel, Optional[str]]:
        text = evidence.chunk.text

        if clause_type == ClauseType.TERMINATION:
            days = self.notice_days(text)
            if days is None:
                return RiskLevel.LOW, None
            level = RiskLevel.MEDIUM if days < SHORT_NOTICE_DAYS else RiskLevel.LOW
            return level, f"Notice period: {days} days."

        if clause_type == ClauseType.PAYMENT:
            findings = []
            for match in LATE_FEE_PATTERN.finditer(text):
                if float(match.group("rate")) > LATE_FEE_RATE_LIMIT:
                    findings.append(f"Late fee of {match.group('rate')}% exceeds {LATE_FEE_RATE_LIMIT}%.")
                    break
            for match in NET_TERMS_PATTERN.finditer(text):
                days = int(match.group("days") or match.group("within"))
                if days >= NET_TERMS_LIMIT_DAYS:
                    findings.append(f"Payment terms of {days} days.")
                    break
            if findings:
                return RiskLevel.MEDIUM, " ".join(findings)
            return RiskLevel.LOW, None

        if clause_type == ClauseType.CONFIDENTIALITY:
            match = CONFIDENTIALITY_TERM_PATTERN.search(text)
            if match:
                number = parse_number(match.group("number"))
                if number:
                    months = number * 12 if match.group("term_unit").lower().startswith("year") else number
                    if months < MIN_CONFIDENTIALITY_MONTHS:
                        return RiskLevel.MEDIUM, f"Confidentiality obligations last only {months} months."
                    return RiskLevel.LOW, f"Confidentiality obligations last {months} months."
            return RiskLevel.LOW, None

        return RiskLevel.LOW, None

    # Risk insights

    def _risk_insight(
        self,
        document: Document,
        title: str,
        summary: str,
        risk_level: RiskLevel,
        confidence: float,
        created_at: datetime,
        evidence: Optional[Evidence] = None,
        clause_type: Optional[ClauseType] = None,
    ) -> Insight:
        return Insight(
            insight_id=insight_id_for(document.document_id, InsightType.RISK, title),
            document_id=document.document_id,
            insight_type=InsightType.RISK,
            title=title,
            summary=summary,
            confidence=confidence,
            risk_level=risk_level,
            evidence_text=evidence.sentence if evidence else None,
            source_section=self.source_section(evidence.chunk) if evidence else None,
            clause_type=clause_type,
            created_at=created_at,
        )

    def _risk_insights(self, document: Document, chunks: Sequence[Chunk], created_at: datetime) -> List[Insight]:
        insights = []

        if self._strongest_clause(chunks, ClauseType.FORCE_MAJEURE) is None:
            insights.append(self._risk_insight(
                document,
                title="Missing Force Majeure Clause",
                summary="No force majeure provision was found. Obligations may remain enforceable during events beyond either party's control.",
                risk_level=RiskLevel.HIGH,
                confidence=0.8,
                created_at=created_at,
                clause_type=ClauseType.FORCE_MAJEURE,
            ))

        unlimited = self._first_match(chunks, UNLIMITED_LIABILITY_PATTERNS)
        if unlimited:
            insights.append(self._risk_insight(
                document,
                title="Unlimited Liability",
                summary="Liability is expressly uncapped, exposing the party to damages without limit.",
                risk_level=RiskLevel.HIGH,
                confidence=confidence_from_matches(unlimited.matches, base=0.75),
                created_at=created_at,
                evidence=unlimited,
                clause_type=ClauseType.LIABILITY,
            ))
        else:
            cap = self._first_match(chunks, LIABILITY_CAP_PATTERNS)
            if cap:
                insights.append(self._risk_insight(
                    document,
                    title="Liability Cap",
                    summary="Liability is limited by a cap. Confirm the cap is adequate for the potential exposure.",
                    risk_level=RiskLevel.MEDIUM,
                    confidence=confidence_from_matches(cap.matches, base=0.7),
                    created_at=created_at,
                    evidence=cap,
                    clause_type=ClauseType.LIABILITY,
                ))

        renewal = self._first_match(chunks, AUTO_RENEWAL_PATTERNS)
        if renewal:
            insights.append(self._risk_insight(
                document,
                title="Automatic Renewal",
                summary="The contract renews automatically unless notice is given. Track the renewal deadline.",
                risk_level=RiskLevel.MEDIUM,
                confidence=confidence_from_matches(renewal.matches, base=0.75),
                created_at=created_at,
                evidence=renewal,
                clause_type=ClauseType.RENEWAL,
            ))

        termination = self._strongest_clause(chunks, ClauseType.TERMINATION)
        if termination is None:
            insights.append(self._risk_insight(
                document,
                title="Missing Termination Clause",
                summary="No termination provision was found. Exiting the contract early may be difficult.",
                risk_level=RiskLevel.MEDIUM,
                confidence=0.7,
                created_at=created_at,
                clause_type=ClauseType.TERMINATION,
            ))
        else:
            short = self._short_notice(chunks)
            if short:
                days, evidence = short
                insights.append(self._risk_insight(
                    document,
                    title="Short Termination Notice",
                    summary=f"The contract can be terminated on {days} days' notice, less than the recommended {SHORT_NOTICE_DAYS} days.",
                    risk_level=RiskLevel.MEDIUM,
                    confidence=0.85,
                    created_at=created_at,
                    evidence=evidence,
                    clause_type=ClauseType.TERMINATION,
                ))

        return insights

    def _short_notice(self, chunks: Sequence[Chunk]) -> Optional[Tuple[int, Evidence]]:
        termination_patterns = COMPILED_CLAUSE_PATTERNS[ClauseType.TERMINATION]
        for chunk in chunks:
            for sentence in self._sentences(chunk.text):
                if not any(p.search(sentence) for p in termination_patterns):
                    continue
                days = self.notice_days(sentence)
                if days is not None and days < SHORT_NOTICE_DAYS:
                    return days, Evidence(chunk=chunk, sentence=sentence, matches=1)
        return None

