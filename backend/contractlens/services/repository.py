"""
Document persistence.

Documents, chunks and insights are stored through a ``DocumentRepository``.
Chunks and insights are only written for documents that exist, deleting a
document cascades to both, and a document's risk label is always recomputed
from its stored insights rather than set directly.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..exceptions import DocumentNotFound, StorageError
from ..models.config import Settings, settings as default_settings
from ..models.schemas import Chunk, Document, Insight
from .classification import aggregate_risk

logger = logging.getLogger(__name__)


class DocumentRepository(ABC):
    """Abstract persistence collaborator."""

    @abstractmethod
    async def create_document(self, document: Document) -> Document:
        pass

    @abstractmethod
    async def get_document(self, document_id: str, user_id: Optional[str] = None) -> Document:
        """
        Fetch a document.

        Raises:
            DocumentNotFound: unknown id, or the document belongs to another user.
        """
        pass

    @abstractmethod
    async def list_documents(self, user_id: str) -> List[Document]:
        pass

    @abstractmethod
    async def update_document(self, document: Document) -> Document:
        """Persist document fields; the risk label is re-derived from stored insights."""
        pass

    @abstractmethod
    async def delete_document(self, document_id: str, user_id: Optional[str] = None) -> None:
        """Delete a document together with its chunks and insights."""
        pass

    @abstractmethod
    async def replace_chunks(self, document_id: str, chunks: List[Chunk]) -> None:
        pass

    @abstractmethod
    async def list_chunks(self, document_id: str) -> List[Chunk]:
        pass

    @abstractmethod
    async def replace_insights(self, document_id: str, insights: List[Insight]) -> Document:
        """Replace a document's insights and return the document with its new risk label."""
        pass

    @abstractmethod
    async def add_insight(self, insight: Insight) -> Document:
        """Append one insight and return the document with its new risk label."""
        pass

    @abstractmethod
    async def list_insights(self, document_id: str) -> List[Insight]:
        pass

    @staticmethod
    def _check_owner(document: Optional[Document], document_id: str, user_id: Optional[str]) -> Document:
        if document is None or (user_id is not None and document.user_id != user_id):
            raise DocumentNotFound(document_id)
        return document


class InMemoryRepository(DocumentRepository):
    """Process-local repository used for development and tests."""

    def __init__(self):
        self.documents: Dict[str, Document] = {}
        self.chunks: Dict[str, List[Chunk]] = {}
        self.insights: Dict[str, List[Insight]] = {}

    async def create_document(self, document: Document) -> Document:
        if document.document_id in self.documents:
            raise StorageError(f"Document {document.document_id} already exists", stage="storage")
        stored = document.model_copy(update={"risk_label": aggregate_risk([])}, deep=True)
        self.documents[stored.document_id] = stored
        self.chunks[stored.document_id] = []
        self.insights[stored.document_id] = []
        logger.info(f"Stored document {stored.document_id} for user {stored.user_id}")
        return stored.model_copy(deep=True)

    async def get_document(self, document_id: str, user_id: Optional[str] = None) -> Document:
        document = self._check_owner(self.documents.get(document_id), document_id, user_id)
        return document.model_copy(deep=True)

    async def list_documents(self, user_id: str) -> List[Document]:
        return [d.model_copy(deep=True) for d in self.documents.values() if d.user_id == user_id]

    async def update_document(self, document: Document) -> Document:
        if document.document_id not in self.documents:
            raise DocumentNotFound(document.document_id)
        stored = document.model_copy(
            update={"risk_label": aggregate_risk(self.insights[document.document_id])},
            deep=True,
        )
        self.documents[document.document_id] = stored
        return stored.model_copy(deep=True)

    async def delete_document(self, document_id: str, user_id: Optional[str] = None) -> None:
        self._check_owner(self.documents.get(document_id), document_id, user_id)
        del self.documents[document_id]
        self.chunks.pop(document_id, None)
        self.insights.pop(document_id, None)
        logger.info(f"Deleted document {document_id} with its chunks and insights")

    async def replace_chunks(self, document_id: str, chunks: List[Chunk]) -> None:
        if document_id not in self.documents:
            raise DocumentNotFound(document_id)
        self.chunks[document_id] = [c.model_copy(deep=True) for c in chunks]

    async def list_chunks(self, document_id: str) -> List[Chunk]:
        if document_id not in self.documents:
            raise DocumentNotFound(document_id)
        return sorted((c.model_copy(deep=True) for c in self.chunks[document_id]), key=lambda c: c.chunk_index)

    async def replace_insights(self, document_id: str, insights: List[Insight]) -> Document:
        if document_id not in self.documents:
            raise DocumentNotFound(document_id)
        self.insights[document_id] = [i.model_copy(deep=True) for i in insights]
        return await self._refresh_risk(document_id)

    async def add_insight(self, insight: Insight) -> Document:
        if insight.document_id not in self.documents:
            raise DocumentNotFound(insight.document_id)
        self.insights[insight.document_id].append(insight.model_copy(deep=True))
        return await self._refresh_risk(insight.document_id)

    async def list_insights(self, document_id: str) -> List[Insight]:
        if document_id not in self.documents:
            raise DocumentNotFound(document_id)
        return [i.model_copy(deep=True) for i in self.insights[document_id]]

    async def _refresh_risk(self, document_id: str) -> Document:
        document = self.documents[document_id]
        document.risk_label = aggregate_risk(self.insights[document_id])
        return document.model_copy(deep=True)


class FirestoreRepository(DocumentRepository):
    """Google Cloud Firestore repository."""

    # Firestore caps a write batch at 500 operations
    BATCH_LIMIT = 400

    def __init__(self, config: Optional[Settings] = None):
        config = config or default_settings
        self.config = config.firestore_config
        self._client = None

    @property
    def client(self):
        """Lazy initialization of Firestore client."""
        if self._client is None:
            from google.cloud import firestore
            self._client = firestore.Client(
                project=self.config["project"],
                database=self.config["database"],
            )
        return self._client

    def _documents(self):
        return self.client.collection(self.config["documents_collection"])

    def _chunks(self):
        return self.client.collection(self.config["chunks_collection"])

    def _insights(self):
        return self.client.collection(self.config["insights_collection"])

    async def _run(self, func, *args, **kwargs):
        """Run a blocking Firestore call off the event loop, mapping API failures to StorageError."""
        from google.api_core import exceptions as gcp_exceptions

        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except gcp_exceptions.GoogleAPIError as e:
            logger.error(f"Firestore operation failed: {e}")
            raise StorageError(f"Firestore operation failed: {e}", stage="storage") from e

    def _load_document(self, document_id: str) -> Optional[Document]:
        snapshot = self._documents().document(document_id).get()
        if not snapshot.exists:
            return None
        return Document(**snapshot.to_dict())

    def _query_children(self, collection, document_id: str) -> List[dict]:
        return [s.to_dict() for s in collection.where("document_id", "==", document_id).stream()]

    def _delete_children(self, collection, document_id: str) -> None:
        refs = [s.reference for s in collection.where("document_id", "==", document_id).stream()]
        for start in range(0, len(refs), self.BATCH_LIMIT):
            batch = self.client.batch()
            for ref in refs[start:start + self.BATCH_LIMIT]:
                batch.delete(ref)
            batch.commit()

    def _write_children(self, collection, key: str, records: List[dict]) -> None:
        for start in range(0, len(records), self.BATCH_LIMIT):
            batch = self.client.batch()
            for record in records[start:start + self.BATCH_LIMIT]:
                batch.set(collection.document(record[key]), record)
            batch.commit()

    async def _require(self, document_id: str) -> Document:
        document = await self._run(self._load_document, document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        return document

    async def _refresh_risk(self, document_id: str) -> Document:
        insights = await self.list_insights(document_id)
        risk_label = aggregate_risk(insights)
        await self._run(self._documents().document(document_id).update, {"risk_label": risk_label.value})
        document = await self._require(document_id)
        return document

    async def create_document(self, document: Document) -> Document:
        stored = document.model_copy(update={"risk_label": aggregate_risk([])})
        await self._run(self._documents().document(stored.document_id).create, stored.model_dump(mode="json"))
        logger.info(f"Saved document metadata to Firestore: {stored.document_id}")
        return stored

    async def get_document(self, document_id: str, user_id: Optional[str] = None) -> Document:
        document = await self._run(self._load_document, document_id)
        return self._check_owner(document, document_id, user_id)

    async def list_documents(self, user_id: str) -> List[Document]:
        def _list():
            query = self._documents().where("user_id", "==", user_id)
            return [Document(**s.to_dict()) for s in query.stream()]

        return await self._run(_list)

    async def update_document(self, document: Document) -> Document:
        await self._require(document.document_id)
        insights = await self.list_insights(document.document_id)
        stored = document.model_copy(update={"risk_label": aggregate_risk(insights)})
        await self._run(self._documents().document(stored.document_id).set, stored.model_dump(mode="json"))
        return stored

    async def delete_document(self, document_id: str, user_id: Optional[str] = None) -> None:
        self._check_owner(await self._run(self._load_document, document_id), document_id, user_id)
        await self._run(self._delete_children, self._chunks(), document_id)
        await self._run(self._delete_children, self._insights(), document_id)
        await self._run(self._documents().document(document_id).delete)
        logger.info(f"Deleted document {document_id} from Firestore")

    async def replace_chunks(self, document_id: str, chunks: List[Chunk]) -> None:
        await self._require(document_id)
        await self._run(self._delete_children, self._chunks(), document_id)
        await self._run(
            self._write_children, self._chunks(), "chunk_id", [c.model_dump(mode="json") for c in chunks]
        )

    async def list_chunks(self, document_id: str) -> List[Chunk]:
        await self._require(document_id)
        records = await self._run(self._query_children, self._chunks(), document_id)
        return sorted((Chunk(**r) for r in records), key=lambda c: c.chunk_index)

    async def replace_insights(self, document_id: str, insights: List[Insight]) -> Document:
        await self._require(document_id)
        await self._run(self._delete_children, self._insights(), document_id)
        await self._run(
            self._write_children, self._insights(), "insight_id", [i.model_dump(mode="json") for i in insights]
        )
        return await self._refresh_risk(document_id)

    async def add_insight(self, insight: Insight) -> Document:
        await self._require(insight.document_id)
        await self._run(self._insights().document(insight.insight_id).set, insight.model_dump(mode="json"))
        return await self._refresh_risk(insight.document_id)

    async def list_insights(self, document_id: str) -> List[Insight]:
        records = await self._run(self._query_children, self._insights(), document_id)
        return sorted((Insight(**r) for r in records), key=lambda i: (i.created_at, i.insight_id))


def create_repository(config: Optional[Settings] = None) -> DocumentRepository:
    """Build the configured repository."""
    config = config or default_settings
    backend = config.STORAGE_BACKEND.lower()
    if backend == "memory":
        return InMemoryRepository()
    if backend == "firestore":
        return FirestoreRepository(config)
    raise ValueError(f"Unknown storage backend: {config.STORAGE_BACKEND}")
