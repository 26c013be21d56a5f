"""Unit tests for the query state machine and the extractive answer synthesizer."""

from datetime import datetime, timezone

import numpy as np
import pytest

from contractlens.exceptions import (
    EmbeddingUnavailable,
    InvalidStateTransition,
    QueryFailed,
)
from contractlens.generation.synthesizer import (
    NO_EVIDENCE_MESSAGE,
    AnswerSynthesizer,
    QueryRun,
    query_terms,
)
from contractlens.models.schemas import ClauseType, QueryState
from contractlens.retrieval.ranker import RankedChunk
from contractlens.retrieval.vector_index import IndexEntry

TERMINATION_TEXT = (
    "3. Termination\n"
    "Either party may terminate this agreement with 90 days written notice to the other party. "
    "Upon termination, Client shall pay for services performed through the termination date."
)
LAW_TEXT = "6. Governing Law\nThis agreement is governed by the laws of the State of New York."


def _hit(text: str, relevance: float, chunk_index: int = 0, clause_type=None) -> RankedChunk:
    entry = IndexEntry(
        chunk_id=f"doc-1-c{chunk_index:04d}",
        document_id="doc-1",
        chunk_index=chunk_index,
        uploaded_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        vector=np.zeros(4),
        metadata={
            "text": text,
            "page_number": 2,
            "contract_name": "Master Services Agreement",
            "clause_type": clause_type,
        },
    )
    return RankedChunk(entry=entry, relevance=relevance)


class TestQueryRun:

    def test_happy_path(self):
        run = QueryRun("question")
        for state in (QueryState.EMBEDDING, QueryState.RETRIEVING, QueryState.SYNTHESIZING, QueryState.COMPLETED):
            run.advance(state)
        assert run.history == [
            QueryState.RECEIVED,
            QueryState.EMBEDDING,
            QueryState.RETRIEVING,
            QueryState.SYNTHESIZING,
            QueryState.COMPLETED,
        ]

    def test_illegal_transition(self):
        run = QueryRun("question")
        with pytest.raises(InvalidStateTransition):
            run.advance(QueryState.SYNTHESIZING)

    def test_terminal_states_are_final(self):
        run = QueryRun("question")
        run.advance(QueryState.EMBEDDING)
        run.advance(QueryState.RETRIEVING)
        run.advance(QueryState.NO_EVIDENCE)
        with pytest.raises(InvalidStateTransition):
            run.advance(QueryState.FAILED)

    def test_fail_records_stage_and_cause(self):
        run = QueryRun("question")
        run.advance(QueryState.EMBEDDING)

        error = run.fail(EmbeddingUnavailable("timeout"))

        assert isinstance(error, QueryFailed)
        assert error.stage == "embedding"
        assert error.cause_code == "embedding_unavailable"
        assert run.state == QueryState.FAILED

    def test_fail_with_unexpected_error(self):
        run = QueryRun("question")
        run.advance(QueryState.EMBEDDING)
        run.advance(QueryState.RETRIEVING)

        error = run.fail(KeyError("boom"))

        assert error.stage == "retrieving"
        assert error.cause_code == "KeyError"


class TestQueryTerms:

    def test_concepts_and_terms(self):
        concepts, terms = query_terms("What is the termination notice period?")
        assert terms == {"termination", "notice", "period"}
        assert len(concepts) == 3


class TestAnswerSynthesizer:

    @pytest.fixture
    def synthesizer(self) -> AnswerSynthesizer:
        return AnswerSynthesizer(min_relevance=0.5, max_sentences=3)

    def test_no_hits_above_threshold(self, synthesizer):
        result = synthesizer.synthesize("What about confidentiality?", [_hit(LAW_TEXT, 0.2)])

        assert result.state == QueryState.NO_EVIDENCE
        assert result.answer == NO_EVIDENCE_MESSAGE
        assert result.citations == []
        assert result.confidence == 0.0
        assert not result.has_evidence

    def test_answer_quotes_relevant_sentence(self, synthesizer):
        hits = [_hit(TERMINATION_TEXT, 0.77, clause_type="termination"), _hit(LAW_TEXT, 0.1, chunk_index=5)]

        result = synthesizer.synthesize("What is the termination notice period?", hits)

        assert result.state == QueryState.COMPLETED
        assert result.answer.startswith("Based on your contracts:")
        assert "90 days written notice" in result.answer
        assert "(Master Services Agreement, page 2)" in result.answer
        assert "New York" not in result.answer

        assert len(result.citations) == 1
        citation = result.citations[0]
        assert citation.chunk_id == "doc-1-c0000"
        assert citation.relevance_score == pytest.approx(0.77)
        assert citation.clause_type == ClauseType.TERMINATION
        assert citation.page_number == 2
        assert result.confidence == pytest.approx(0.77)

    def test_every_quoted_sentence_is_in_a_cited_chunk(self, synthesizer):
        hits = [_hit(TERMINATION_TEXT, 0.9), _hit(LAW_TEXT, 0.6, chunk_index=5)]

        result = synthesizer.synthesize("Which law governs termination?", hits)

        quoted = [line.split('"')[1] for line in result.answer.splitlines()[1:]]
        cited_text = " ".join(" ".join(c.text.split()) for c in result.citations)
        assert quoted
        assert len(quoted) <= 3
        assert all(sentence in cited_text for sentence in quoted)
        assert [c.chunk_index for c in result.citations] == [0, 5]
        assert result.confidence == pytest.approx(0.75)

    def test_grounding_accepts_quotes_across_line_breaks(self, synthesizer):
        hits = [_hit(TERMINATION_TEXT, 0.9)]
        synthesizer._check_grounding(["3. Termination Either party may terminate this agreement"], hits)

    def test_quote_missing_from_cited_chunks_fails(self, synthesizer):
        hits = [_hit(TERMINATION_TEXT, 0.9), _hit(LAW_TEXT, 0.6, chunk_index=5)]

        with pytest.raises(QueryFailed) as exc_info:
            synthesizer._check_grounding(
                ["This agreement is governed by the laws of the State of New York.",
                 "Either party may terminate at will without notice."],
                hits,
            )

        assert exc_info.value.stage == "synthesizing"
        assert exc_info.value.cause_code == "grounding_failed"

    def test_synthesize_rejects_ungrounded_answer(self, synthesizer, monkeypatch):
        hits = [_hit(TERMINATION_TEXT, 0.9)]
        original = synthesizer._select_sentences

        def altered(query, cited):
            selected = original(query, cited)
            selected[0].sentence = "Either party may terminate at will without notice."
            return selected

        monkeypatch.setattr(synthesizer, "_select_sentences", altered)

        with pytest.raises(QueryFailed):
            synthesizer.synthesize("What is the termination notice period?", hits)

    def test_falls_back_to_best_chunk_opening(self, synthesizer):
        result = synthesizer.synthesize("Zebra?", [_hit(LAW_TEXT, 0.8, chunk_index=5)])

        assert result.state == QueryState.COMPLETED
        assert len(result.answer.splitlines()) == 2
        assert result.citations[0].chunk_index == 5

    def test_no_evidence_result(self, synthesizer):
        result = synthesizer.no_evidence("anything")
        assert result.query == "anything"
        assert result.state == QueryState.NO_EVIDENCE
