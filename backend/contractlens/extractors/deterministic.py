"""
Deterministic extractors for contract-level facts.
Rule-based extraction of parties, start and expiry dates, so that list and
detail views never depend on generated or random data.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional

import dateparser

from ..models.schemas import ContractStatus

logger = logging.getLogger(__name__)


_MONTHS = (
    "January|February|March|April|May|June|July|August|September|October|November|December|"
    "Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec"
)

DATE_PATTERN = (
    r"(?:\d{4}-\d{2}-\d{2}"
    r"|\d{1,2}[/-]\d{1,2}[/-]\d{4}"
    rf"|(?:{_MONTHS})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}"
    rf"|\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?(?:{_MONTHS})\.?,?\s+\d{{4}})"
)

_NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "twelve": 12,
    "fourteen": 14, "fifteen": 15, "eighteen": 18, "twenty": 20, "twenty-four": 24,
    "thirty": 30, "thirty-six": 36, "forty-five": 45, "sixty": 60, "ninety": 90,
}


def parse_number(token: str) -> Optional[int]:
    """Parse a digit string or a spelled-out number."""
    token = token.strip().lower()
    if token.isdigit():
        return int(token)
    return _NUMBER_WORDS.get(token)


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic, clamping the day to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    for day in (start.day, 30, 29, 28):
        try:
            return date(year, month, day)
        except ValueError:
            continue
    raise ValueError(f"Cannot add {months} months to {start}")


def contract_name_from_filename(filename: str) -> str:
    """Display name from an uploaded filename: extension stripped, '-' and '_' as spaces."""
    base = filename.rsplit("/", 1)[-1]
    name = re.sub(r"\.[^/.]+$", "", base)
    name = re.sub(r"[-_]+", " ", name).strip()
    return name or base


def derive_status(expiry_date: Optional[date], today: date, renewal_window_days: int) -> ContractStatus:
    """Lifecycle status from the expiry date."""
    if expiry_date is None:
        return ContractStatus.ACTIVE
    if expiry_date < today:
        return ContractStatus.EXPIRED
    if (expiry_date - today).days <= renewal_window_days:
        return ContractStatus.RENEWAL_DUE
    return ContractStatus.ACTIVE


@dataclass
class ContractFacts:
    """Contract-level facts extracted from the full text."""
    parties: Optional[str] = None
    start_date: Optional[date] = None
    expiry_date: Optional[date] = None


class DateExtractor:
    """Extract start and expiry dates from contract text."""

    def __init__(self):
        self.start_patterns = [
            re.compile(rf"\b(?:effective|commenc\w*|starting|start date)\s*(?:date)?\s*(?:as of|on|from|is|:)?\s*(?P<date>{DATE_PATTERN})", re.IGNORECASE),
            re.compile(rf"\b(?:dated|entered into)\s+(?:as of\s+|on\s+)?(?P<date>{DATE_PATTERN})", re.IGNORECASE),
        ]
        self.expiry_patterns = [
            re.compile(rf"\b(?:expir\w*|end\w*|terminat\w*)\s+(?:date\s*)?(?:on|is|:)?\s*(?P<date>{DATE_PATTERN})", re.IGNORECASE),
            re.compile(rf"\b(?:until|through)\s+(?P<date>{DATE_PATTERN})", re.IGNORECASE),
        ]
        self.term_pattern = re.compile(
            r"\b(?:initial\s+)?(?:term|period)\s+of\s+(?P<number>\d+|[a-z-]+)\s*(?:\(\d+\)\s*)?(?P<unit>years?|months?)\b",
            re.IGNORECASE,
        )

    def _parse_date(self, raw: str) -> Optional[date]:
        """Parse date string using dateparser."""
        parsed: Optional[datetime] = dateparser.parse(
            raw, settings={"DATE_ORDER": "MDY", "PREFER_DAY_OF_MONTH": "first"}
        )
        return parsed.date() if parsed else None

    def _first_date(self, text: str, patterns: List[re.Pattern]) -> Optional[date]:
        candidates = []
        for pattern in patterns:
            match = pattern.search(text)
            if match:
                candidates.append((match.start(), match.group("date")))
        for _, raw in sorted(candidates):
            parsed = self._parse_date(raw)
            if parsed:
                return parsed
        return None

    def extract_start(self, text: str) -> Optional[date]:
        return self._first_date(text, self.start_patterns)

    def extract_expiry(self, text: str, start_date: Optional[date]) -> Optional[date]:
        """Explicit expiry date, else start date plus the stated term."""
        explicit = self._first_date(text, self.expiry_patterns)
        if explicit:
            return explicit
        if start_date is None:
            return None

        match = self.term_pattern.search(text)
        if not match:
            return None
        number = parse_number(match.group("number"))
        if not number:
            return None
        months = number * 12 if match.group("unit").lower().startswith("year") else number
        return add_months(start_date, months)


class PartyExtractor:
    """Extract contracting parties from the agreement preamble."""

    def __init__(self):
        self.between_pattern = re.compile(
            r"\bbetween\s+(?P<first>[A-Z][\w.&',-]*(?:\s+[A-Z&][\w.&',-]*)*)"
            r"(?:\s*\([^)]*\))?\s*,?\s+and\s+"
            r"(?P<second>[A-Z][\w.&',-]*(?:\s+[A-Z&][\w.&',-]*)*)"
        )

    def extract(self, text: str) -> Optional[str]:
        match = self.between_pattern.search(text)
        if not match:
            return None
        first = match.group("first").strip(" ,.")
        second = match.group("second").strip(" ,.")
        if not first or not second:
            return None
        return f"{first} and {second}"


class ContractFactsExtractor:
    """Main coordinator for contract-level fact extraction."""

    def __init__(self):
        self.date_extractor = DateExtractor()
        self.party_extractor = PartyExtractor()

    def extract(self, text: str) -> ContractFacts:
        start_date = self.date_extractor.extract_start(text)
        facts = ContractFacts(
            parties=self.party_extractor.extract(text),
            start_date=start_date,
            expiry_date=self.date_extractor.extract_expiry(text, start_date),
        )
        logger.debug(f"Extracted contract facts: {facts}")
        return facts
