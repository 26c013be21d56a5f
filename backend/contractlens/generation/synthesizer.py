"""
Answer synthesis.

Answers are extractive: they quote sentences from the cited chunks verbatim,
attributed to contract and page, so every statement is grounded in the
user's own documents. When nothing relevant enough was retrieved the result
is an explicit no-evidence outcome rather than a guess.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..exceptions import ContractLensError, InvalidStateTransition, QueryFailed
from ..models.schemas import ChunkCitation, ClauseType, QueryResult, QueryState
from ..retrieval.ranker import RankedChunk
from ..services.chunking import get_sentencizer
from ..services.embedding import concept_of, tokenize

logger = logging.getLogger(__name__)


NO_EVIDENCE_MESSAGE = (
    "I couldn't find anything in your contracts that answers this question. "
    "Try rephrasing it, or upload the contract that covers this topic."
)

QUERY_TRANSITIONS: Dict[QueryState, Set[QueryState]] = {
    QueryState.RECEIVED: {QueryState.EMBEDDING, QueryState.FAILED},
    QueryState.EMBEDDING: {QueryState.RETRIEVING, QueryState.FAILED},
    QueryState.RETRIEVING: {QueryState.SYNTHESIZING, QueryState.NO_EVIDENCE, QueryState.FAILED},
    QueryState.SYNTHESIZING: {QueryState.COMPLETED, QueryState.NO_EVIDENCE, QueryState.FAILED},
    QueryState.COMPLETED: set(),
    QueryState.NO_EVIDENCE: set(),
    QueryState.FAILED: set(),
}

_STAGE_NAMES = {
    QueryState.RECEIVED: "received",
    QueryState.EMBEDDING: "embedding",
    QueryState.RETRIEVING: "retrieving",
    QueryState.SYNTHESIZING: "synthesizing",
}


@dataclass
class QueryRun:
    """Per-request query state machine."""
    query: str
    state: QueryState = QueryState.RECEIVED
    history: List[QueryState] = field(default_factory=lambda: [QueryState.RECEIVED])

    @property
    def stage(self) -> str:
        return _STAGE_NAMES.get(self.state, self.state.value.lower())

    def advance(self, target: QueryState) -> None:
        if target not in QUERY_TRANSITIONS[self.state]:
            raise InvalidStateTransition(
                f"Query cannot move from {self.state.value} to {target.value}",
                stage=self.stage,
            )
        self.state = target
        self.history.append(target)

    def fail(self, error: Exception) -> QueryFailed:
        """Move to Failed and build the error to raise, tagged with the failing stage."""
        stage = self.stage
        cause_code = error.code if isinstance(error, ContractLensError) else type(error).__name__
        self.advance(QueryState.FAILED)
        logger.error(f"Query failed at stage {stage}: {error}")
        return QueryFailed(f"Query failed during {stage}: {error}", stage=stage, cause_code=cause_code)


def _single_line(sentence: str) -> str:
    return " ".join(sentence.split())


def query_terms(text: str) -> Tuple[Set[int], Set[str]]:
    """Concept ids and plain terms of a text."""
    concepts, terms = set(), set()
    for token in tokenize(text):
        concept = concept_of(token)
        if concept is not None:
            concepts.add(concept)
        terms.add(token)
    return concepts, terms


@dataclass
class _Candidate:
    score: float
    citation_rank: int
    position: int
    sentence: str
    hit: RankedChunk


class AnswerSynthesizer:
    """Grounded extractive answer composer."""

    def __init__(self, min_relevance: float = 0.5, max_sentences: int = 3):
        self.min_relevance = min_relevance
        self.max_sentences = max_sentences
        self.nlp = get_sentencizer()

    def no_evidence(self, query: str) -> QueryResult:
        return QueryResult(
            query=query,
            state=QueryState.NO_EVIDENCE,
            answer=NO_EVIDENCE_MESSAGE,
            citations=[],
            confidence=0.0,
        )

    def synthesize(self, query: str, hits: Sequence[RankedChunk]) -> QueryResult:
        """
        Compose an answer from ranked hits.

        Args:
            query: The user's question
            hits: Ranked chunks, best first

        Returns:
            A Completed result quoting the cited chunks, or a NoEvidence result
            when no hit reaches the relevance threshold
        """
        cited = [hit for hit in hits if hit.relevance >= self.min_relevance]
        if not cited:
            logger.info(f"No evidence above {self.min_relevance} for query '{query}'")
            return self.no_evidence(query)

        selected = self._select_sentences(query, cited)
        quotes = [_single_line(c.sentence) for c in selected]
        self._check_grounding(quotes, cited)

        lines = [
            f"- \"{quote}\" ({c.hit.entry.metadata.get('contract_name', 'Contract')}, "
            f"page {c.hit.entry.metadata.get('page_number', 1)})"
            for quote, c in zip(quotes, selected)
        ]
        answer = "Based on your contracts:\n" + "\n".join(lines)

        citations = [self._citation(hit) for hit in cited]
        confidence = round(sum(hit.relevance for hit in cited) / len(cited), 4)
        return QueryResult(
            query=query,
            state=QueryState.COMPLETED,
            answer=answer,
            citations=citations,
            confidence=confidence,
        )

    def _select_sentences(self, query: str, cited: Sequence[RankedChunk]) -> List[_Candidate]:
        query_concepts, query_tokens = query_terms(query)
        candidates = []
        for rank, hit in enumerate(cited):
            text = hit.entry.metadata.get("text", "")
            for position, span in enumerate(self.nlp(text).sents):
                sentence = span.text.strip()
                if not sentence:
                    continue
                concepts, tokens = query_terms(sentence)
                overlap = 2 * len(query_concepts & concepts) + len(query_tokens & tokens)
                candidates.append(_Candidate(overlap * hit.relevance, rank, position, sentence, hit))

        matching = [c for c in candidates if c.score > 0]
        if not matching:
            # Nothing overlaps lexically; fall back to the opening of the best chunk
            opening = [c for c in candidates if c.citation_rank == 0]
            return [c for c in opening if tokenize(c.sentence)][:1] or opening[:1]

        best = sorted(matching, key=lambda c: (-c.score, c.citation_rank, c.position))[:self.max_sentences]
        return sorted(best, key=lambda c: (c.citation_rank, c.position))

    def _check_grounding(self, quotes: Sequence[str], cited: Sequence[RankedChunk]) -> None:
        """Every quoted sentence must occur verbatim (up to whitespace) in a cited chunk."""
        cited_texts = [_single_line(hit.entry.metadata.get("text", "")) for hit in cited]
        for quote in quotes:
            if not any(quote in text for text in cited_texts):
                raise QueryFailed(
                    f"Answer sentence not found in any cited chunk: {quote[:80]!r}",
                    stage="synthesizing",
                    cause_code="grounding_failed",
                )

    def _citation(self, hit: RankedChunk) -> ChunkCitation:
        metadata = hit.entry.metadata
        clause_type: Optional[str] = metadata.get("clause_type")
        return ChunkCitation(
            chunk_id=hit.chunk_id,
            document_id=hit.document_id,
            contract_name=metadata.get("contract_name", ""),
            chunk_index=hit.entry.chunk_index,
            page_number=metadata.get("page_number", 1),
            text=metadata.get("text", ""),
            clause_type=ClauseType(clause_type) if clause_type else None,
            relevance_score=round(hit.relevance, 4),
        )
