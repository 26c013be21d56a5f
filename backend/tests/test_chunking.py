"""Unit tests for the sentence-packing chunker.

Tests:
- Section headings start new chunks
- Overlap between size-bounded chunks
- Over-long sentences split into token windows
- Page boundaries, offsets and contiguous indices
- Restartable chunk sequences
"""

import pytest

from contractlens.extractors.text import ExtractedPage
from contractlens.models.schemas import ClauseType
from contractlens.services.chunking import SECTION_HEADING, Chunker, make_chunk_id


def _sentences(count: int) -> str:
    return " ".join(f"Item {i} requires the supplier to deliver goods." for i in range(count))


class TestSectionHeadings:

    @pytest.mark.parametrize("line", [
        "3. Termination",
        "4.2 Limitation of Liability",
        "Section 7 Notices",
        "ARTICLE IV",
        "GOVERNING LAW",
    ])
    def test_heading_lines_match(self, line):
        assert SECTION_HEADING.match(line)

    @pytest.mark.parametrize("line", [
        "Either party may terminate this agreement.",
        "30 days after receipt",
        "LLC",
    ])
    def test_body_lines_do_not_match(self, line):
        assert SECTION_HEADING.match(line) is None


class TestChunker:

    def test_invalid_parameters_rejected(self):
        with pytest.raises(ValueError):
            Chunker(chunk_size_tokens=0)
        with pytest.raises(ValueError):
            Chunker(chunk_size_tokens=10, overlap_tokens=10)

    def test_sentences(self):
        text = "Either party may terminate. Notice must be written.\n\n  "
        assert Chunker().sentences(text) == ["Either party may terminate.", "Notice must be written."]

    def test_each_section_becomes_a_chunk(self, msa_chunks):
        assert len(msa_chunks) == 7
        assert msa_chunks[3].text.startswith("3. Termination")
        assert "90 days written notice" in msa_chunks[3].text
        assert "Limitation" not in msa_chunks[3].text
        assert msa_chunks[4].text.startswith("4. Limitation of Liability")

    def test_clause_type_tagged(self, msa_chunks):
        assert msa_chunks[3].clause_type == ClauseType.TERMINATION
        assert msa_chunks[3].metadata["clause_type"] == "termination"
        assert msa_chunks[0].clause_type is None

    def test_metadata_and_ids(self, msa_chunks, msa_document):
        for index, chunk in enumerate(msa_chunks):
            assert chunk.chunk_index == index
            assert chunk.chunk_id == make_chunk_id(msa_document.document_id, index)
            assert chunk.user_id == msa_document.user_id
            assert chunk.metadata["contract_name"] == msa_document.contract_name
            assert chunk.metadata["page"] == 1

    def test_offsets_point_into_page_text(self, msa_chunks, msa_text):
        for chunk in msa_chunks:
            assert msa_text[chunk.char_start:chunk.char_end].strip() == chunk.text

    def test_size_bounded_chunks_overlap(self, msa_document):
        chunker = Chunker(chunk_size_tokens=20, overlap_tokens=5)
        page = ExtractedPage(page_number=1, text=_sentences(10))

        chunks = list(chunker.chunk(msa_document, [page]))

        assert len(chunks) > 1
        for chunk in chunks:
            assert chunk.text.count("Item") <= 2
        for previous, current in zip(chunks, chunks[1:]):
            assert current.char_start < previous.char_end
            assert current.char_end > previous.char_end

    def test_long_sentence_split_into_windows(self, msa_document):
        chunker = Chunker(chunk_size_tokens=10, overlap_tokens=2)
        words = " ".join(f"word{i}" for i in range(25)) + "."
        chunks = list(chunker.chunk(msa_document, [ExtractedPage(page_number=1, text=words)]))

        assert len(chunks) == 3
        assert all(len(chunk.text.split()) <= 10 for chunk in chunks)
        assert chunks[0].text.startswith("word0")
        assert chunks[-1].text.endswith("word24.")

    def test_chunks_never_cross_pages(self, msa_document):
        pages = [
            ExtractedPage(page_number=1, text="The supplier shall deliver goods."),
            ExtractedPage(page_number=3, text="The buyer shall pay on receipt."),
        ]
        chunks = list(Chunker().chunk(msa_document, pages))

        assert [c.page_number for c in chunks] == [1, 3]
        assert [c.chunk_index for c in chunks] == [0, 1]
        assert "buyer" not in chunks[0].text

    def test_sequence_is_restartable(self, msa_document, msa_text):
        sequence = Chunker().chunk(msa_document, [ExtractedPage(page_number=1, text=msa_text)])

        first = list(sequence)
        second = list(sequence)

        assert first == second
        assert len(first) > 0

    def test_blank_page_yields_nothing(self, msa_document):
        chunks = list(Chunker().chunk(msa_document, [ExtractedPage(page_number=1, text="   \n\n  ")]))
        assert chunks == []

    def test_from_settings_uses_overlap_ratio(self, test_settings):
        chunker = Chunker.from_settings(test_settings)
        assert chunker.chunk_size_tokens == test_settings.CHUNK_SIZE_TOKENS
        assert chunker.overlap_tokens == 30
