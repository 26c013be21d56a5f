"""
Keyword patterns for clause categories.
Shared by the chunker (clause tagging) and the insight classifier.
"""

import re
from typing import Dict, List, Optional, Pattern, Tuple

from ..models.schemas import ClauseType


CLAUSE_PATTERNS: Dict[ClauseType, List[str]] = {
    ClauseType.TERMINATION: [
        r"\bterminat\w*",
        r"\bcancel(?:s|led|lation)?\b",
        r"\bnotice period\b",
    ],
    ClauseType.LIABILITY: [
        r"\bliabilit\w*",
        r"\bliable\b",
        r"\bindemnif\w*",
        r"\bhold harmless\b",
        r"\bconsequential damages\b",
    ],
    ClauseType.CONFIDENTIALITY: [
        r"\bconfidential\w*",
        r"\bnon-disclosure\b",
        r"\bproprietary information\b",
        r"\btrade secrets?\b",
    ],
    ClauseType.PAYMENT: [
        r"\bpayments?\b",
        r"\bpay(?:able)?\b",
        r"\binvoices?\b",
        r"\bfees?\b",
        r"\blate (?:fee|payment|charge)s?\b",
        r"\bnet\s+\d+\b",
    ],
    ClauseType.FORCE_MAJEURE: [
        r"\bforce majeure\b",
        r"\bacts? of god\b",
        r"\bbeyond (?:its|their|the party's|a party's) reasonable control\b",
    ],
    ClauseType.RENEWAL: [
        r"\brenew\w*",
        r"\bautomatic(?:ally)? extend\w*",
    ],
    ClauseType.GOVERNING_LAW: [
        r"\bgoverning law\b",
        r"\bgoverned by\b",
        r"\bjurisdiction\b",
    ],
}

COMPILED_CLAUSE_PATTERNS: Dict[ClauseType, List[Pattern]] = {
    clause_type: [re.compile(p, re.IGNORECASE) for p in patterns]
    for clause_type, patterns in CLAUSE_PATTERNS.items()
}


def clause_scores(text: str) -> Dict[ClauseType, Tuple[int, int]]:
    """
    Score each clause category present in the text.

    Returns:
        Mapping of category to (match count, offset of first match) for every
        category with at least one match.
    """
    scores = {}
    for clause_type, patterns in COMPILED_CLAUSE_PATTERNS.items():
        count = 0
        first = len(text)
        for pattern in patterns:
            for match in pattern.finditer(text):
                count += 1
                first = min(first, match.start())
        if count:
            scores[clause_type] = (count, first)
    return scores


def detect_clause_type(text: str) -> Optional[ClauseType]:
    """Dominant clause category: most matches, earliest mention breaks ties."""
    scores = clause_scores(text)
    if not scores:
        return None
    return min(scores, key=lambda c: (-scores[c][0], scores[c][1]))
