"""
ContractLens engine.
Facade wiring ingestion, retrieval, classification and answering behind the
operations exposed to the HTTP layer. All collaborators are injected.
"""

import logging
from datetime import date, timedelta
from typing import Callable, List, Optional, Sequence

from ..exceptions import ContractLensError, QueryFailed, ValidationError
from ..extractors.text import TextExtractionService
from ..generation.synthesizer import AnswerSynthesizer, QueryRun
from ..models.config import Settings, settings as default_settings
from ..models.schemas import (
    BatchIngestionOutcome,
    Chunk,
    ContractStatus,
    Document,
    DocumentListResponse,
    Insight,
    IngestionStatus,
    PortfolioStats,
    QueryResult,
    QueryState,
    RiskLevel,
    TopRisk,
    UserInsight,
)
from ..retrieval.ranker import RetrievalRanker
from ..retrieval.vector_index import InMemoryVectorIndex, VectorIndex
from .chunking import Chunker
from .classification import InsightClassifier
from .embedding import EmbeddingService
from .ingestion import IngestionPipeline, UploadedFile
from .repository import DocumentRepository, create_repository

logger = logging.getLogger(__name__)

TOP_RISKS_LIMIT = 5


class ContractEngine:
    """Contract retrieval and answering engine."""

    def __init__(
        self,
        repository: DocumentRepository,
        index: VectorIndex,
        embedding_service: EmbeddingService,
        pipeline: IngestionPipeline,
        ranker: RetrievalRanker,
        synthesizer: AnswerSynthesizer,
        renewal_window_days: int = 90,
        today: Callable[[], date] = date.today,
    ):
        self.repository = repository
        self.index = index
        self.embedding_service = embedding_service
        self.pipeline = pipeline
        self.ranker = ranker
        self.synthesizer = synthesizer
        self.renewal_window_days = renewal_window_days
        self.today = today

    # Ingestion

    async def submit(self, user_id: str, file_bytes: bytes, content_type: Optional[str], filename: str) -> Document:
        """Validate and register an upload; processing is started with ``run_ingestion``."""
        return await self.pipeline.submit(user_id, file_bytes, content_type, filename)

    async def run_ingestion(self, document_id: str, file_bytes: bytes) -> Document:
        return await self.pipeline.run_ingestion(document_id, file_bytes)

    async def run_ingestion_in_background(self, document_id: str, file_bytes: bytes) -> None:
        """Background-task entry point; the outcome is recorded in the status record."""
        try:
            await self.pipeline.run_ingestion(document_id, file_bytes)
        except ContractLensError as e:
            logger.warning(f"Background ingestion of {document_id} ended with {e.code}: {e}")

    async def ingest(self, user_id: str, file_bytes: bytes, content_type: Optional[str], filename: str) -> str:
        """
        Ingest one contract end to end.

        Returns:
            The new document id

        Raises:
            ValidationError: rejected before any record is created
            IngestionFailed: a dependency failed; the document is left failed
            SchemaError: embedding dimension mismatch
        """
        return await self.pipeline.ingest(user_id, file_bytes, content_type, filename)

    async def ingest_batch(self, user_id: str, uploads: Sequence[UploadedFile]) -> List[BatchIngestionOutcome]:
        return await self.pipeline.ingest_batch(user_id, uploads)

    async def retry_ingestion(self, user_id: str, document_id: str, file_bytes: bytes) -> Document:
        return await self.pipeline.retry_ingestion(user_id, document_id, file_bytes)

    async def cancel(self, user_id: str, document_id: str) -> bool:
        await self.repository.get_document(document_id, user_id)
        return self.pipeline.cancel(document_id)

    async def get_status(self, user_id: str, document_id: str) -> IngestionStatus:
        document = await self.repository.get_document(document_id, user_id)
        status = self.pipeline.get_status(document_id)
        if status is not None:
            return status
        # Not tracked by this process (e.g. after a restart): report the persisted state
        return IngestionStatus(
            document_id=document_id,
            user_id=user_id,
            state=document.ingestion_state,
            stage=document.ingestion_state.value,
            progress=100 if document.ingestion_state.is_terminal else 0,
            chunks_total=document.chunk_count,
            chunks_embedded=document.chunk_count,
            error_message=document.error_message,
        )

    # Documents

    async def get_document(self, user_id: str, document_id: str) -> Document:
        return await self.repository.get_document(document_id, user_id)

    async def list_documents(
        self,
        user_id: str,
        search: Optional[str] = None,
        status: Optional[ContractStatus] = None,
        risk: Optional[RiskLevel] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> DocumentListResponse:
        """List a user's contracts, newest first, with search, filters and pagination."""
        documents = await self.repository.list_documents(user_id)

        if search:
            needle = search.strip().lower()
            documents = [
                d for d in documents
                if needle in d.contract_name.lower()
                or needle in (d.parties or "").lower()
                or needle in d.filename.lower()
            ]
        if status:
            documents = [d for d in documents if d.status == status]
        if risk:
            documents = [d for d in documents if d.risk_label == risk]

        documents.sort(key=lambda d: (d.uploaded_at, d.document_id), reverse=True)

        page = max(1, page)
        page_size = max(1, page_size)
        total = len(documents)
        start = (page - 1) * page_size
        return DocumentListResponse(
            documents=documents[start:start + page_size],
            total=total,
            pagination={
                "page": page,
                "page_size": page_size,
                "total_pages": (total + page_size - 1) // page_size,
                "has_next": start + page_size < total,
            },
        )

    async def list_chunks(self, user_id: str, document_id: str) -> List[Chunk]:
        await self.repository.get_document(document_id, user_id)
        return await self.repository.list_chunks(document_id)

    async def delete_document(self, user_id: str, document_id: str) -> None:
        """Delete a contract, its chunks, insights and index vectors."""
        await self.repository.get_document(document_id, user_id)
        self.pipeline.cancel(document_id)

        async with self.pipeline.lock_for(document_id):
            await self.repository.get_document(document_id, user_id)
            await self.index.delete_document(user_id, document_id)
            await self.repository.delete_document(document_id, user_id)

        self.pipeline.forget(document_id)
        logger.info(f"User {user_id} deleted document {document_id}")

    async def reanalyze(self, user_id: str, document_id: str) -> Document:
        return await self.pipeline.reanalyze(user_id, document_id)

    # Insights

    async def get_insights(self, document_id: str, user_id: Optional[str] = None) -> List[Insight]:
        await self.repository.get_document(document_id, user_id)
        return await self.repository.list_insights(document_id)

    async def add_insight(self, user_id: str, insight: Insight) -> Document:
        """Attach an insight; the document's risk label follows automatically."""
        await self.repository.get_document(insight.document_id, user_id)
        document = await self.repository.add_insight(insight)
        logger.info(f"Added {insight.risk_level.value} insight to {insight.document_id}; risk now {document.risk_label.value}")
        return document

    async def list_user_insights(self, user_id: str, limit: Optional[int] = None) -> List[UserInsight]:
        """All of a user's insights, newest first, with contract names."""
        rows = []
        for document in await self.repository.list_documents(user_id):
            for insight in await self.repository.list_insights(document.document_id):
                rows.append(UserInsight(insight=insight, contract_name=document.contract_name))

        rows.sort(key=lambda row: (row.insight.created_at, row.insight.insight_id), reverse=True)
        return rows[:limit] if limit else rows

    async def portfolio_stats(self, user_id: str) -> PortfolioStats:
        documents = await self.repository.list_documents(user_id)
        today = self.today()
        horizon = today + timedelta(days=self.renewal_window_days)

        expiring = [d for d in documents if d.expiry_date and today <= d.expiry_date <= horizon]
        expired = [d for d in documents if d.expiry_date and d.expiry_date < today]
        active = [
            d for d in documents
            if d.status == ContractStatus.ACTIVE and (d.expiry_date is None or d.expiry_date >= today)
        ]
        high_risk = [d for d in documents if d.risk_label == RiskLevel.HIGH]
        avg_risk = sum(d.risk_label.rank for d in documents) / len(documents) if documents else 0.0

        # Soonest expiry first; open-ended contracts last
        high_risk.sort(key=lambda d: (d.expiry_date is None, d.expiry_date or date.max, d.contract_name, d.document_id))
        top_risks = [
            TopRisk(
                document_id=d.document_id,
                contract_name=d.contract_name,
                risk_level=d.risk_label,
                expiry_date=d.expiry_date,
            )
            for d in high_risk[:TOP_RISKS_LIMIT]
        ]

        return PortfolioStats(
            total_contracts=len(documents),
            active_contracts=len(active),
            expired_contracts=len(expired),
            high_risk_contracts=len(high_risk),
            expiring_contracts=len(expiring),
            avg_risk_score=round(avg_risk, 2),
            risk_distribution={
                level.value.lower(): sum(1 for d in documents if d.risk_label == level)
                for level in (RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW)
            },
            top_risks=top_risks,
        )

    # Query

    async def query(self, user_id: str, question: str, top_k: Optional[int] = None) -> QueryResult:
        """
        Answer a question from the user's own contracts.

        Returns:
            A Completed result with citations, or a NoEvidence result

        Raises:
            ValidationError: empty question
            QueryFailed: a stage failed; no partial answer is returned
        """
        question = (question or "").strip()
        if not question:
            raise ValidationError("Please enter a question.", field="question")

        run = QueryRun(question)
        try:
            run.advance(QueryState.EMBEDDING)
            query_vector = await self.embedding_service.embed_query(question)

            run.advance(QueryState.RETRIEVING)
            hits = self.ranker.rank(user_id, query_vector, top_k)
            if not hits:
                run.advance(QueryState.NO_EVIDENCE)
                return self.synthesizer.no_evidence(question)

            run.advance(QueryState.SYNTHESIZING)
            result = self.synthesizer.synthesize(question, hits)
            run.advance(result.state)
        except QueryFailed:
            run.advance(QueryState.FAILED)
            raise
        except ContractLensError as e:
            raise run.fail(e) from e
        except Exception as e:
            logger.exception(f"Unexpected error answering query for user {user_id}")
            raise run.fail(e) from e

        logger.info(
            f"Query for user {user_id} ended {result.state.value} with {len(result.citations)} citations"
        )
        return result


def create_engine(
    config: Optional[Settings] = None,
    repository: Optional[DocumentRepository] = None,
    embedding_service: Optional[EmbeddingService] = None,
    index: Optional[VectorIndex] = None,
    extraction_service: Optional[TextExtractionService] = None,
    today: Callable[[], date] = date.today,
) -> ContractEngine:
    """Build an engine from settings, with any collaborator overridable."""
    config = config or default_settings
    repository = repository or create_repository(config)
    embedding_service = embedding_service or EmbeddingService.from_settings(config)
    index = index or InMemoryVectorIndex(dimension=embedding_service.dimension)

    pipeline = IngestionPipeline.from_settings(
        config,
        repository=repository,
        extraction_service=extraction_service or TextExtractionService(config),
        chunker=Chunker.from_settings(config),
        embedding_service=embedding_service,
        index=index,
        classifier=InsightClassifier(),
        today=today,
    )

    logger.info(
        f"ContractLens engine ready (storage={config.STORAGE_BACKEND}, "
        f"embeddings={embedding_service.provider.name}/{embedding_service.dimension})"
    )
    return ContractEngine(
        repository=repository,
        index=index,
        embedding_service=embedding_service,
        pipeline=pipeline,
        ranker=RetrievalRanker(index, default_top_k=config.RETRIEVAL_TOP_K),
        synthesizer=AnswerSynthesizer(
            min_relevance=config.MIN_RELEVANCE_THRESHOLD,
            max_sentences=config.ANSWER_MAX_SENTENCES,
        ),
        renewal_window_days=config.RENEWAL_WINDOW_DAYS,
        today=today,
    )
