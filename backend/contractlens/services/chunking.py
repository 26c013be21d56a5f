"""
Document chunking.

Splits extracted page text into overlapping chunks of whole sentences so that
clause boundaries rarely fall on a chunk edge. A section heading starts a new
chunk, and chunks never span pages.
"""

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator, List, Optional, Sequence

import spacy

from ..extractors.clauses import detect_clause_type
from ..extractors.text import ExtractedPage
from ..models.config import Settings, settings as default_settings
from ..models.schemas import Chunk, Document

logger = logging.getLogger(__name__)

# Numbered clauses ("7.", "7.2"), "Section 4" / "Article IV", or an all-caps heading line
SECTION_HEADING = re.compile(
    r"^[ \t]*(?:(?i:section|article|clause)[ \t]+[0-9IVXLC]+\b"
    r"|\d+(?:\.\d+)*\.[ \t]+(?=[A-Za-z])"
    r"|\d+(?:\.\d+)+[ \t]+(?=[A-Za-z])"
    r"|[A-Z][A-Z0-9 ,&'/-]{3,}[ \t]*$)",
    re.MULTILINE,
)


@lru_cache(maxsize=1)
def get_sentencizer():
    """Blank English pipeline with a rule-based sentencizer (no model download)."""
    nlp = spacy.blank("en")
    nlp.add_pipe("sentencizer")
    return nlp


@dataclass(frozen=True)
class TextUnit:
    """A sentence, or a token window of an over-long sentence."""
    char_start: int
    char_end: int
    n_tokens: int
    section_start: bool = False


def make_chunk_id(document_id: str, chunk_index: int) -> str:
    return f"{document_id}-c{chunk_index:04d}"


class Chunker:
    """Sentence-packing chunker with token overlap."""

    def __init__(self, chunk_size_tokens: int = 200, overlap_tokens: int = 30, min_section_tokens: int = 10):
        if chunk_size_tokens < 1:
            raise ValueError("chunk_size_tokens must be positive")
        if overlap_tokens < 0 or overlap_tokens >= chunk_size_tokens:
            raise ValueError("overlap_tokens must be in [0, chunk_size_tokens)")
        self.chunk_size_tokens = chunk_size_tokens
        self.overlap_tokens = overlap_tokens
        self.min_section_tokens = min_section_tokens

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "Chunker":
        config = config or default_settings
        return cls(config.CHUNK_SIZE_TOKENS, config.chunk_overlap_tokens)

    def chunk(self, document: Document, pages: Sequence[ExtractedPage]) -> "ChunkSequence":
        """Lazy, restartable chunk sequence for a document."""
        return ChunkSequence(self, document, list(pages))

    def sentences(self, text: str) -> List[str]:
        """Sentences of a chunk's text, in order."""
        return [s.text.strip() for s in get_sentencizer()(text).sents if s.text.strip()]

    def split_units(self, text: str) -> List[TextUnit]:
        """
        Sentence units for one page; over-long sentences become token windows.

        Text is first cut at section headings so that no unit straddles two
        sections; the first unit of each section is flagged.
        """
        starts = sorted({0} | {m.start() for m in SECTION_HEADING.finditer(text)})
        ends = starts[1:] + [len(text)]

        units = []
        nlp = get_sentencizer()
        for section_start, section_end in zip(starts, ends):
            first = True
            doc = nlp(text[section_start:section_end])
            for sent in doc.sents:
                tokens = [t for t in sent if not t.is_space]
                if not tokens:
                    continue
                for start in range(0, len(tokens), self.chunk_size_tokens):
                    window = tokens[start:start + self.chunk_size_tokens]
                    units.append(TextUnit(
                        char_start=section_start + window[0].idx,
                        char_end=section_start + window[-1].idx + len(window[-1].text),
                        n_tokens=len(window),
                        section_start=first,
                    ))
                    first = False
        return units

    def pack(self, units: Sequence[TextUnit]) -> Iterator[Sequence[TextUnit]]:
        """
        Group units into chunks of at most ``chunk_size_tokens`` tokens.

        A chunk closes early at a section heading once it holds at least
        ``min_section_tokens`` new tokens, and the next chunk starts fresh at that
        heading. A chunk closed for size instead makes the next one start with
        trailing units totalling at least ``overlap_tokens`` (when available).
        Every chunk contains at least one unit its predecessor did not.
        """
        start = 0
        first_new = 0
        while start < len(units):
            end = start
            total = 0
            new_tokens = 0
            while end < len(units):
                unit = units[end]
                if end > first_new:
                    if total + unit.n_tokens > self.chunk_size_tokens:
                        break
                    if unit.section_start and new_tokens >= self.min_section_tokens:
                        break
                total += unit.n_tokens
                if end >= first_new:
                    new_tokens += unit.n_tokens
                end += 1
            yield units[start:end]

            if end >= len(units):
                return

            next_start = end
            if not units[end].section_start:
                carried = 0
                while next_start - 1 > start and carried < self.overlap_tokens:
                    next_start -= 1
                    carried += units[next_start].n_tokens
            start = next_start
            first_new = end


class ChunkSequence:
    """Finite, restartable sequence of a document's chunks; every iteration re-chunks."""

    def __init__(self, chunker: Chunker, document: Document, pages: List[ExtractedPage]):
        self.chunker = chunker
        self.document = document
        self.pages = pages

    def __iter__(self) -> Iterator[Chunk]:
        chunk_index = 0
        for page in self.pages:
            for group in self.chunker.pack(self.chunker.split_units(page.text)):
                char_start = group[0].char_start
                char_end = group[-1].char_end
                text = page.text[char_start:char_end].strip()
                if not text:
                    continue

                clause_type = detect_clause_type(text)
                yield Chunk(
                    chunk_id=make_chunk_id(self.document.document_id, chunk_index),
                    document_id=self.document.document_id,
                    user_id=self.document.user_id,
                    chunk_index=chunk_index,
                    text=text,
                    page_number=page.page_number,
                    char_start=char_start,
                    char_end=char_end,
                    clause_type=clause_type,
                    metadata={
                        "contract_name": self.document.contract_name,
                        "page": page.page_number,
                        "clause_type": clause_type.value if clause_type else None,
                    },
                )
                chunk_index += 1
