"""Unit tests for format-specific text extraction."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import fitz
import pytest
from google.api_core import exceptions as gcp_exceptions

from contractlens.exceptions import IngestionFailed
from contractlens.extractors.text import (
    DOCX,
    PDF,
    PLAIN_TEXT,
    DocumentAIExtractor,
    PdfTextExtractor,
    PlainTextExtractor,
    TextExtractionService,
)


def _pdf_bytes(*page_texts: str) -> bytes:
    pdf = fitz.open()
    for text in page_texts:
        page = pdf.new_page()
        if text:
            page.insert_text((72, 72), text)
    data = pdf.tobytes()
    pdf.close()
    return data


def _segment(start: int, end: int):
    return SimpleNamespace(start_index=start, end_index=end)


def _documentai_page(*segments):
    return SimpleNamespace(layout=SimpleNamespace(text_anchor=SimpleNamespace(text_segments=list(segments))))


class TestPlainTextExtractor:

    @pytest.mark.asyncio
    async def test_form_feed_separates_pages(self):
        pages = await PlainTextExtractor().extract(b"Page one text.\fPage two text.", PLAIN_TEXT)

        assert [p.page_number for p in pages] == [1, 2]
        assert pages[1].text == "Page two text."

    @pytest.mark.asyncio
    async def test_blank_pages_skipped_but_numbering_kept(self):
        pages = await PlainTextExtractor().extract(b"First\f  \n\fThird", PLAIN_TEXT)
        assert [p.page_number for p in pages] == [1, 3]

    @pytest.mark.asyncio
    async def test_bom_and_line_endings(self):
        pages = await PlainTextExtractor().extract(b"\xef\xbb\xbfLine one\r\nLine two", PLAIN_TEXT)
        assert pages[0].text == "Line one\nLine two"

    @pytest.mark.asyncio
    async def test_latin1_fallback(self):
        pages = await PlainTextExtractor().extract("Café terms".encode("latin-1"), PLAIN_TEXT)
        assert pages[0].text == "Café terms"


class TestPdfTextExtractor:

    @pytest.mark.asyncio
    async def test_extracts_text_per_page(self):
        data = _pdf_bytes("Termination requires notice.", "", "Payment is due monthly.")

        pages = await PdfTextExtractor().extract(data, PDF)

        assert [p.page_number for p in pages] == [1, 3]
        assert "Termination requires notice." in pages[0].text
        assert "Payment is due monthly." in pages[1].text

    @pytest.mark.asyncio
    async def test_unreadable_pdf(self):
        with pytest.raises(IngestionFailed) as exc_info:
            await PdfTextExtractor().extract(b"this is not a pdf", PDF)
        assert exc_info.value.stage == "extraction"


class TestDocumentAIExtractor:

    @pytest.fixture
    def extractor(self, test_settings) -> DocumentAIExtractor:
        test_settings.DOCUMENT_AI_PROCESSOR_ID = "processor-123"
        extractor = DocumentAIExtractor(test_settings)
        extractor._client = MagicMock()
        extractor._client.processor_path.return_value = "projects/p/locations/us/processors/processor-123"
        return extractor

    def test_reads_document_ai_config(self, test_settings):
        test_settings.DOCUMENT_AI_PROCESSOR_ID = "processor-eu"
        test_settings.DOCUMENT_AI_LOCATION = "eu"

        extractor = DocumentAIExtractor(test_settings)

        assert test_settings.document_ai_config["processor_id"] == "processor-eu"
        assert (extractor.project_id, extractor.location, extractor.processor_id) == (
            test_settings.GOOGLE_CLOUD_PROJECT, "eu", "processor-eu",
        )

    @pytest.mark.asyncio
    async def test_pages_resolved_from_text_anchors(self, extractor):
        full_text = "Page one clause.\nPage two clause."
        document = SimpleNamespace(
            text=full_text,
            pages=[_documentai_page(_segment(0, 17)), _documentai_page(_segment(17, len(full_text)))],
        )
        extractor._client.process_document.return_value = SimpleNamespace(document=document)

        pages = await extractor.extract(b"docx-bytes", DOCX)

        assert [p.text for p in pages] == ["Page one clause.\n", "Page two clause."]
        request = extractor._client.process_document.call_args.kwargs["request"]
        assert request.raw_document.mime_type == DOCX
        assert request.name == "projects/p/locations/us/processors/processor-123"

    @pytest.mark.asyncio
    async def test_api_error_fails_extraction(self, extractor):
        extractor._client.process_document.side_effect = gcp_exceptions.ServiceUnavailable("down")

        with pytest.raises(IngestionFailed) as exc_info:
            await extractor.extract(b"docx-bytes", DOCX)
        assert exc_info.value.stage == "extraction"


class TestTextExtractionService:

    def test_default_routing_without_document_ai(self, test_settings):
        service = TextExtractionService(test_settings)
        assert set(service.extractors) == {PLAIN_TEXT, PDF}
        assert service.supports(PDF)
        assert not service.supports(DOCX)

    def test_document_ai_handles_word_formats(self, test_settings):
        test_settings.DOCUMENT_AI_PROCESSOR_ID = "processor-123"
        service = TextExtractionService(test_settings)

        assert isinstance(service.extractors[DOCX], DocumentAIExtractor)
        assert isinstance(service.extractors[PDF], PdfTextExtractor)

        test_settings.DOCUMENT_AI_FOR_PDF = True
        assert isinstance(TextExtractionService(test_settings).extractors[PDF], DocumentAIExtractor)

    @pytest.mark.asyncio
    async def test_unsupported_type(self, test_settings):
        with pytest.raises(IngestionFailed) as exc_info:
            await TextExtractionService(test_settings).extract(b"data", DOCX)
        assert exc_info.value.stage == "extraction"

    @pytest.mark.asyncio
    async def test_no_text(self, test_settings):
        with pytest.raises(IngestionFailed):
            await TextExtractionService(test_settings).extract(b"   \n  ", PLAIN_TEXT)
