"""
Document ingestion pipeline.

Stages run strictly in order for one document: extract, chunk, embed, index,
classify. Each stage updates a status record that can be polled at any time.
A document becomes searchable only when its vectors are written to the index
in one step; any failure or cancellation before that leaves nothing indexed.
"""

import asyncio
import hashlib
import logging
import mimetypes
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..exceptions import (
    ContractLensError,
    EmbeddingUnavailable,
    IngestionCancelled,
    IngestionFailed,
    ValidationError,
)
from ..extractors.deterministic import (
    ContractFactsExtractor,
    contract_name_from_filename,
    derive_status,
)
from ..extractors.text import TextExtractionService
from ..models.config import Settings, settings as default_settings
from ..models.schemas import (
    BatchIngestionOutcome,
    Chunk,
    Document,
    IngestionState,
    IngestionStatus,
    utc_now,
)
from ..retrieval.vector_index import IndexEntry, VectorIndex
from .chunking import Chunker
from .classification import InsightClassifier
from .embedding import EmbeddingService
from .repository import DocumentRepository

logger = logging.getLogger(__name__)


STAGE_PROGRESS = {
    IngestionState.RECEIVED: 0,
    IngestionState.EXTRACTING: 10,
    IngestionState.CHUNKING: 25,
    IngestionState.EMBEDDING: 30,
    IngestionState.INDEXING: 85,
    IngestionState.INDEXED: 90,
    IngestionState.CLASSIFYING: 95,
    IngestionState.COMPLETED: 100,
}

EMBEDDING_PROGRESS_SPAN = 50


@dataclass
class UploadedFile:
    """One file of a batch upload."""
    file_bytes: bytes
    content_type: str
    filename: str


def normalize_content_type(content_type: Optional[str], filename: str) -> str:
    """Bare lowercase MIME type, guessed from the filename when the client sent none."""
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if not mime or mime == "application/octet-stream":
        guessed, _ = mimetypes.guess_type(filename)
        mime = guessed or mime
    return mime


class IngestionPipeline:
    """Runs and tracks document ingestions."""

    def __init__(
        self,
        repository: DocumentRepository,
        extraction_service: TextExtractionService,
        chunker: Chunker,
        embedding_service: EmbeddingService,
        index: VectorIndex,
        classifier: InsightClassifier,
        facts_extractor: Optional[ContractFactsExtractor] = None,
        supported_content_types: Optional[Sequence[str]] = None,
        max_file_size_bytes: int = 10 * 1024 * 1024,
        max_concurrency: int = 4,
        renewal_window_days: int = 90,
        today: Callable[[], date] = date.today,
    ):
        self.repository = repository
        self.extraction_service = extraction_service
        self.chunker = chunker
        self.embedding_service = embedding_service
        self.index = index
        self.classifier = classifier
        self.facts_extractor = facts_extractor or ContractFactsExtractor()
        self.supported_content_types = set(supported_content_types or default_settings.SUPPORTED_CONTENT_TYPES)
        self.max_file_size_bytes = max_file_size_bytes
        self.renewal_window_days = renewal_window_days
        self.today = today

        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._locks: Dict[str, asyncio.Lock] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}
        self._statuses: Dict[str, IngestionStatus] = {}

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None, **components) -> "IngestionPipeline":
        config = config or default_settings
        return cls(
            supported_content_types=config.SUPPORTED_CONTENT_TYPES,
            max_file_size_bytes=config.max_file_size_bytes,
            max_concurrency=config.INGESTION_MAX_CONCURRENCY,
            renewal_window_days=config.RENEWAL_WINDOW_DAYS,
            **components,
        )

    def lock_for(self, document_id: str) -> asyncio.Lock:
        """Per-document lock serialising ingestion, re-analysis and deletion."""
        if document_id not in self._locks:
            self._locks[document_id] = asyncio.Lock()
        return self._locks[document_id]

    # Validation and submission

    def validate(self, file_bytes: bytes, content_type: Optional[str], filename: str) -> str:
        """
        Validate an upload before anything is stored.

        Returns:
            The normalized MIME type

        Raises:
            ValidationError: empty file, file too large, or unsupported type
        """
        if not filename:
            raise ValidationError("A filename is required.", field="filename")
        if not file_bytes:
            raise ValidationError("The uploaded file is empty.", field="file")
        if len(file_bytes) > self.max_file_size_bytes:
            limit_mb = self.max_file_size_bytes / (1024 * 1024)
            raise ValidationError(
                f"File size exceeds the {limit_mb:g}MB limit.",
                field="file_size",
            )

        mime = normalize_content_type(content_type, filename)
        if mime not in self.supported_content_types:
            raise ValidationError(
                "Invalid file type. Please upload PDF, DOC, DOCX, or TXT files.",
                field="content_type",
            )
        if not self.extraction_service.supports(mime):
            raise ValidationError(
                "This file type cannot be processed right now. Please upload a PDF or TXT file.",
                field="content_type",
            )
        return mime

    async def submit(self, user_id: str, file_bytes: bytes, content_type: Optional[str], filename: str) -> Document:
        """Validate an upload and create its document record in the received state."""
        mime = self.validate(file_bytes, content_type, filename)

        document = Document(
            document_id=str(uuid.uuid4()),
            user_id=user_id,
            contract_name=contract_name_from_filename(filename),
            filename=filename,
            file_size=len(file_bytes),
            content_type=mime,
            checksum=hashlib.sha256(file_bytes).hexdigest(),
        )
        document = await self.repository.create_document(document)

        self._statuses[document.document_id] = IngestionStatus(
            document_id=document.document_id,
            user_id=user_id,
            stage=IngestionState.RECEIVED.value,
        )
        self._cancel_events[document.document_id] = asyncio.Event()

        logger.info(f"Accepted {filename} ({len(file_bytes)} bytes) as document {document.document_id}")
        return document

    async def ingest(self, user_id: str, file_bytes: bytes, content_type: Optional[str], filename: str) -> str:
        """Validate, store and fully process one file; returns the document id."""
        document = await self.submit(user_id, file_bytes, content_type, filename)
        await self.run_ingestion(document.document_id, file_bytes)
        return document.document_id

    async def ingest_batch(self, user_id: str, uploads: Sequence[UploadedFile]) -> List[BatchIngestionOutcome]:
        """Ingest several files concurrently; each file gets its own outcome."""

        async def _one(upload: UploadedFile) -> BatchIngestionOutcome:
            document_id = None
            try:
                document = await self.submit(user_id, upload.file_bytes, upload.content_type, upload.filename)
                document_id = document.document_id
                document = await self.run_ingestion(document_id, upload.file_bytes)
                return BatchIngestionOutcome(
                    filename=upload.filename,
                    document_id=document_id,
                    ingestion_state=document.ingestion_state,
                )
            except ContractLensError as e:
                status = self._statuses.get(document_id) if document_id else None
                return BatchIngestionOutcome(
                    filename=upload.filename,
                    document_id=document_id,
                    ingestion_state=status.state if status else None,
                    error_code=e.code,
                    error=e.user_message,
                )

        outcomes = await asyncio.gather(*(_one(upload) for upload in uploads))
        failed = sum(1 for outcome in outcomes if outcome.error_code)
        logger.info(f"Batch ingestion for user {user_id}: {len(outcomes) - failed} succeeded, {failed} failed")
        return list(outcomes)

    async def retry_ingestion(self, user_id: str, document_id: str, file_bytes: bytes) -> Document:
        """Re-run a failed or cancelled ingestion with the original file."""
        document = await self.repository.get_document(document_id, user_id)
        if document.ingestion_state not in (IngestionState.FAILED, IngestionState.CANCELLED):
            raise ValidationError(
                f"Only failed or cancelled ingestions can be retried (current state: {document.ingestion_state.value}).",
                field="document_id",
            )
        if hashlib.sha256(file_bytes).hexdigest() != document.checksum:
            raise ValidationError("The file does not match the original upload.", field="file")

        document.error_message = None
        document.ingestion_state = IngestionState.RECEIVED
        await self.repository.update_document(document)
        self._statuses[document_id] = IngestionStatus(
            document_id=document_id,
            user_id=user_id,
            stage=IngestionState.RECEIVED.value,
        )
        self._cancel_events[document_id] = asyncio.Event()

        logger.info(f"Retrying ingestion of document {document_id}")
        return await self.run_ingestion(document_id, file_bytes)

    # Status and cancellation

    def get_status(self, document_id: str) -> Optional[IngestionStatus]:
        status = self._statuses.get(document_id)
        return status.model_copy() if status else None

    def cancel(self, document_id: str) -> bool:
        """
        Request cooperative cancellation.

        The pipeline stops before its next embedding batch or before the index
        write, whichever comes first.

        Returns:
            True if a running or pending ingestion was signalled
        """
        event = self._cancel_events.get(document_id)
        status = self._statuses.get(document_id)
        if event is None or (status is not None and status.state.is_terminal):
            return False
        event.set()
        logger.info(f"Cancellation requested for document {document_id}")
        return True

    def _check_cancelled(self, document_id: str, stage: str) -> None:
        event = self._cancel_events.get(document_id)
        if event is not None and event.is_set():
            raise IngestionCancelled(f"Ingestion of document {document_id} was cancelled", stage=stage)

    def forget(self, document_id: str) -> None:
        """Drop tracking state for a deleted document."""
        self._statuses.pop(document_id, None)
        self._cancel_events.pop(document_id, None)
        lock = self._locks.get(document_id)
        if lock is not None and not lock.locked():
            del self._locks[document_id]

    # Pipeline

    def _update_status(self, document_id: str, **fields) -> IngestionStatus:
        status = self._statuses.get(document_id)
        if status is None:
            status = IngestionStatus(document_id=document_id, user_id=fields.pop("user_id", ""))
            self._statuses[document_id] = status
        for key, value in fields.items():
            setattr(status, key, value)
        status.updated_at = utc_now()
        return status

    async def _set_state(self, document: Document, state: IngestionState) -> Document:
        self._update_status(
            document.document_id,
            user_id=document.user_id,
            state=state,
            stage=state.value,
            progress=STAGE_PROGRESS.get(state, 0),
        )
        document.ingestion_state = state
        logger.info(f"Document {document.document_id} -> {state.value}")
        return await self.repository.update_document(document)

    @asynccontextmanager
    async def _stage(self, document: Document, state: IngestionState):
        """Enter a stage; unexpected errors inside it become IngestionFailed tagged with the stage."""
        await self._set_state(document, state)
        try:
            yield
        except ContractLensError:
            raise
        except Exception as e:
            logger.exception(f"Stage {state.value} failed for document {document.document_id}")
            raise IngestionFailed(
                f"{state.value} failed: {e}",
                stage=state.value,
                cause_code=type(e).__name__,
            ) from e

    async def run_ingestion(self, document_id: str, file_bytes: bytes) -> Document:
        """
        Process a submitted document through every stage.

        Raises:
            IngestionFailed: a dependency failed; the document is left failed and unindexed
            IngestionCancelled: cancellation was requested; nothing is indexed
            SchemaError: embedding dimension mismatch
        """
        async with self._semaphore:
            async with self.lock_for(document_id):
                document = await self.repository.get_document(document_id)
                try:
                    return await self._process(document, file_bytes)
                except IngestionCancelled as e:
                    await self._abort(document, IngestionState.CANCELLED, e)
                    raise
                except ContractLensError as e:
                    await self._abort(document, IngestionState.FAILED, e)
                    raise

    async def _abort(self, document: Document, state: IngestionState, error: ContractLensError) -> None:
        await self.index.delete_document(document.user_id, document.document_id)
        self._update_status(
            document.document_id,
            state=state,
            error_code=error.code,
            error_message=str(error),
        )
        logger.warning(f"Ingestion of document {document.document_id} ended {state.value}: {error}")

        document.ingestion_state = state
        document.error_message = error.user_message
        try:
            await self.repository.update_document(document)
        except ContractLensError as storage_error:
            logger.error(f"Could not record {state.value} state for document {document.document_id}: {storage_error}")

    async def _process(self, document: Document, file_bytes: bytes) -> Document:
        document_id = document.document_id
        self._check_cancelled(document_id, IngestionState.RECEIVED.value)

        async with self._stage(document, IngestionState.EXTRACTING):
            pages = await self.extraction_service.extract(file_bytes, document.content_type)
            facts = self.facts_extractor.extract("\n".join(page.text for page in pages))
            document.page_count = len(pages)
            document.parties = facts.parties
            document.start_date = facts.start_date
            document.expiry_date = facts.expiry_date
            document.status = derive_status(facts.expiry_date, self.today(), self.renewal_window_days)

        async with self._stage(document, IngestionState.CHUNKING):
            chunks = list(self.chunker.chunk(document, pages))
            if not chunks:
                raise IngestionFailed("Document produced no chunks", stage="chunking", cause_code="empty_text")
            self._update_status(document_id, chunks_total=len(chunks), chunks_embedded=0)

        async with self._stage(document, IngestionState.EMBEDDING):
            vectors, sentence_vectors = await self._embed_chunks(document_id, chunks)

        self._check_cancelled(document_id, IngestionState.INDEXING.value)

        async with self._stage(document, IngestionState.INDEXING):
            chunks = [
                chunk.model_copy(update={"embedding": vector.tolist()})
                for chunk, vector in zip(chunks, vectors)
            ]
            await self.repository.replace_chunks(document_id, chunks)
            await self.index.upsert_document(
                document.user_id,
                document_id,
                [
                    self._index_entry(document, chunk, vector, sentences)
                    for chunk, vector, sentences in zip(chunks, vectors, sentence_vectors)
                ],
            )
            document.chunk_count = len(chunks)

        document = await self._set_state(document, IngestionState.INDEXED)

        async with self._stage(document, IngestionState.CLASSIFYING):
            analyzed_at = utc_now()
            insights = self.classifier.classify(document, chunks, analyzed_at=analyzed_at)
            await self.repository.replace_insights(document_id, insights)
            document.analyzed_at = analyzed_at
            document.error_message = None

        document = await self._set_state(document, IngestionState.COMPLETED)
        self._cancel_events.pop(document_id, None)
        logger.info(
            f"Ingested document {document_id}: {document.page_count} pages, "
            f"{document.chunk_count} chunks, risk {document.risk_label.value}"
        )
        return document

    async def _embed_texts(
        self,
        document_id: str,
        texts: List[str],
        on_batch: Optional[Callable[[int], None]] = None,
    ) -> List[np.ndarray]:
        """Embed texts batch by batch, checking for cancellation before each batch."""
        vectors: List[np.ndarray] = []
        for batch in self.embedding_service.batches(texts):
            self._check_cancelled(document_id, IngestionState.EMBEDDING.value)
            try:
                vectors.extend(await self.embedding_service.embed_texts(batch))
            except EmbeddingUnavailable as e:
                raise IngestionFailed(str(e.message), stage="embedding", cause_code=e.code) from e
            if on_batch is not None:
                on_batch(len(vectors))
        return vectors

    async def _embed_chunks(
        self, document_id: str, chunks: List[Chunk]
    ) -> Tuple[List[np.ndarray], List[Optional[np.ndarray]]]:
        """
        Chunk vectors, then per-sentence vectors for every multi-sentence chunk.

        Returns:
            The chunk vectors and, per chunk, a sentence matrix or None
        """
        total = len(chunks)

        def chunk_progress(embedded: int) -> None:
            self._update_status(
                document_id,
                chunks_embedded=embedded,
                progress=STAGE_PROGRESS[IngestionState.EMBEDDING] + EMBEDDING_PROGRESS_SPAN * embedded // total,
            )

        vectors = await self._embed_texts(document_id, [chunk.text for chunk in chunks], chunk_progress)

        groups = []
        for chunk in chunks:
            sentences = self.chunker.sentences(chunk.text)
            groups.append(sentences if len(sentences) > 1 else [])
        flat_vectors = await self._embed_texts(document_id, [s for group in groups for s in group])

        sentence_vectors: List[Optional[np.ndarray]] = []
        offset = 0
        for group in groups:
            sentence_vectors.append(np.vstack(flat_vectors[offset:offset + len(group)]) if group else None)
            offset += len(group)
        return vectors, sentence_vectors

    @staticmethod
    def _index_entry(document: Document, chunk: Chunk, vector, sentence_vectors=None) -> IndexEntry:
        return IndexEntry(
            chunk_id=chunk.chunk_id,
            document_id=document.document_id,
            chunk_index=chunk.chunk_index,
            uploaded_at=document.uploaded_at,
            vector=vector,
            sentence_vectors=sentence_vectors,
            metadata={
                "text": chunk.text,
                "page_number": chunk.page_number,
                "contract_name": document.contract_name,
                "clause_type": chunk.clause_type.value if chunk.clause_type else None,
            },
        )

    # Re-analysis

    async def reanalyze(self, user_id: str, document_id: str) -> Document:
        """Re-run classification and lifecycle status over the stored chunks."""
        async with self.lock_for(document_id):
            document = await self.repository.get_document(document_id, user_id)
            if not document.ingestion_state.is_queryable:
                raise ValidationError(
                    f"Document {document_id} has not been indexed yet (state: {document.ingestion_state.value}).",
                    field="document_id",
                )

            chunks = await self.repository.list_chunks(document_id)
            analyzed_at = utc_now()
            insights = self.classifier.classify(document, chunks, analyzed_at=analyzed_at)
            document = await self.repository.replace_insights(document_id, insights)

            document.status = derive_status(document.expiry_date, self.today(), self.renewal_window_days)
            document.analyzed_at = analyzed_at
            document = await self.repository.update_document(document)
            logger.info(f"Re-analyzed document {document_id}: risk {document.risk_label.value}")
            return document
