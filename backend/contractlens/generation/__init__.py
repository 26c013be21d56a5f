"""
Generation package for ContractLens.
Grounded extractive answers and the per-query state machine.
"""

from .synthesizer import (
    NO_EVIDENCE_MESSAGE,
    QUERY_TRANSITIONS,
    AnswerSynthesizer,
    QueryRun
)

__all__ = [
    "NO_EVIDENCE_MESSAGE",
    "QUERY_TRANSITIONS",
    "AnswerSynthesizer",
    "QueryRun"
]
