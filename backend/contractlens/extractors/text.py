"""
Text extraction for uploaded contracts.

Format-specific extraction is a collaborator capability: plain text is decoded
locally, PDFs go through PyMuPDF, and word-processing formats go through
Google Document AI when a processor is configured.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..exceptions import IngestionFailed
from ..models.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

PDF = "application/pdf"
PLAIN_TEXT = "text/plain"
MS_WORD = "application/msword"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@dataclass
class ExtractedPage:
    """Plain text of one source page."""
    page_number: int
    text: str


class TextExtractor(ABC):
    """Abstract base class for format-specific extractors."""

    @abstractmethod
    async def extract(self, file_bytes: bytes, content_type: str) -> List[ExtractedPage]:
        """Extract page texts from raw document bytes."""
        pass


class PlainTextExtractor(TextExtractor):
    """Decode text/plain uploads. Form feeds separate pages."""

    async def extract(self, file_bytes: bytes, content_type: str) -> List[ExtractedPage]:
        try:
            text = file_bytes.decode("utf-8-sig")
        except UnicodeDecodeError:
            text = file_bytes.decode("latin-1")

        text = text.replace("\r\n", "\n").replace("\r", "\n")
        pages = []
        for number, page_text in enumerate(text.split("\f"), 1):
            if page_text.strip():
                pages.append(ExtractedPage(page_number=number, text=page_text))
        return pages


class PdfTextExtractor(TextExtractor):
    """Extract PDF text page by page with PyMuPDF."""

    async def extract(self, file_bytes: bytes, content_type: str) -> List[ExtractedPage]:
        return await asyncio.to_thread(self._extract_sync, file_bytes)

    def _extract_sync(self, file_bytes: bytes) -> List[ExtractedPage]:
        import fitz  # PyMuPDF

        try:
            pages = []
            with fitz.open(stream=file_bytes, filetype="pdf") as pdf:
                for number, page in enumerate(pdf, 1):
                    page_text = page.get_text()
                    if page_text.strip():
                        pages.append(ExtractedPage(page_number=number, text=page_text))
            return pages
        except (RuntimeError, ValueError) as e:
            logger.error(f"PDF text extraction failed: {e}")
            raise IngestionFailed(f"Unreadable PDF: {e}", stage="extraction") from e


class DocumentAIExtractor(TextExtractor):
    """Google Document AI OCR extractor."""

    def __init__(self, config: Settings):
        document_ai = config.document_ai_config
        self.project_id = document_ai["project_id"]
        self.location = document_ai["location"]
        self.processor_id = document_ai["processor_id"]
        self._client = None

    @property
    def client(self):
        """Lazy initialization of the Document AI client."""
        if self._client is None:
            from google.cloud import documentai

            self._client = documentai.DocumentProcessorServiceClient(
                client_options={"api_endpoint": f"{self.location}-documentai.googleapis.com"}
            )
        return self._client

    async def extract(self, file_bytes: bytes, content_type: str) -> List[ExtractedPage]:
        return await asyncio.to_thread(self._extract_sync, file_bytes, content_type)

    def _extract_sync(self, file_bytes: bytes, content_type: str) -> List[ExtractedPage]:
        from google.api_core import exceptions as gcp_exceptions
        from google.cloud import documentai

        try:
            request = documentai.ProcessRequest(
                name=self.client.processor_path(self.project_id, self.location, self.processor_id),
                raw_document=documentai.RawDocument(content=file_bytes, mime_type=content_type),
            )
            logger.info("Sending document to Document AI...")
            document = self.client.process_document(request=request).document
        except gcp_exceptions.GoogleAPIError as e:
            logger.error(f"Document AI processing failed: {e}")
            raise IngestionFailed(f"Document AI processing failed: {e}", stage="extraction") from e

        pages = []
        for number, page in enumerate(document.pages, 1):
            page_text = self._layout_text(document.text, page.layout)
            if page_text.strip():
                pages.append(ExtractedPage(page_number=number, text=page_text))

        logger.info(f"Document AI processing completed: {len(document.pages)} pages")
        return pages

    @staticmethod
    def _layout_text(full_text: str, layout) -> str:
        """Resolve a layout's text anchor against the document text."""
        return "".join(
            full_text[int(segment.start_index):int(segment.end_index)]
            for segment in layout.text_anchor.text_segments
        )


class TextExtractionService:
    """Routes documents to the extractor registered for their MIME type."""

    def __init__(self, config: Optional[Settings] = None, extractors: Optional[Dict[str, TextExtractor]] = None):
        self.config = config or default_settings
        self.extractors = extractors if extractors is not None else self._default_extractors()

    def _default_extractors(self) -> Dict[str, TextExtractor]:
        extractors: Dict[str, TextExtractor] = {
            PLAIN_TEXT: PlainTextExtractor(),
            PDF: PdfTextExtractor(),
        }
        if self.config.DOCUMENT_AI_PROCESSOR_ID:
            document_ai = DocumentAIExtractor(self.config)
            extractors[MS_WORD] = document_ai
            extractors[DOCX] = document_ai
            if self.config.DOCUMENT_AI_FOR_PDF:
                extractors[PDF] = document_ai
        return extractors

    def supports(self, content_type: str) -> bool:
        """Whether an extractor is registered for the MIME type."""
        return content_type in self.extractors

    async def extract(self, file_bytes: bytes, content_type: str) -> List[ExtractedPage]:
        """
        Extract page texts for a validated upload.

        Raises:
            IngestionFailed: no extractor is configured for the type, or the
                document yields no text.
        """
        extractor = self.extractors.get(content_type)
        if extractor is None:
            raise IngestionFailed(
                f"No text extractor configured for {content_type}",
                stage="extraction",
            )

        pages = await extractor.extract(file_bytes, content_type)
        if not pages:
            raise IngestionFailed("Document contains no extractable text", stage="extraction")

        logger.debug(f"Extracted {len(pages)} pages from {content_type} document")
        return pages
