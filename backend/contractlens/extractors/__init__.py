"""
Extractors package for ContractLens.
Provides text extraction, clause keyword detection and deterministic fact extraction.
"""

from .text import (
    ExtractedPage,
    TextExtractor,
    PlainTextExtractor,
    PdfTextExtractor,
    DocumentAIExtractor,
    TextExtractionService
)

from .clauses import (
    CLAUSE_PATTERNS,
    clause_scores,
    detect_clause_type
)

from .deterministic import (
    ContractFacts,
    ContractFactsExtractor,
    DateExtractor,
    PartyExtractor,
    contract_name_from_filename,
    derive_status
)

__all__ = [
    "ExtractedPage",
    "TextExtractor",
    "PlainTextExtractor",
    "PdfTextExtractor",
    "DocumentAIExtractor",
    "TextExtractionService",
    "CLAUSE_PATTERNS",
    "clause_scores",
    "detect_clause_type",
    "ContractFacts",
    "ContractFactsExtractor",
    "DateExtractor",
    "PartyExtractor",
    "contract_name_from_filename",
    "derive_status"
]
