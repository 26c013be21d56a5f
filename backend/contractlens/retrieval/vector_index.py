"""
Per-user vector index.
Chunk vectors are partitioned by user; a document's vectors are written and
removed as one unit so readers never observe a half-indexed document.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np

from ..exceptions import SchemaError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexEntry:
    """One chunk vector with the metadata needed for ranking and citation."""
    chunk_id: str
    document_id: str
    chunk_index: int
    uploaded_at: datetime
    vector: np.ndarray
    metadata: Dict[str, Any] = field(default_factory=dict)
    # One row per sentence of a multi-sentence chunk
    sentence_vectors: Optional[np.ndarray] = None


class VectorIndex(ABC):
    """Abstract base class for vector indexes."""

    dimension: Optional[int]

    @abstractmethod
    async def upsert_document(self, user_id: str, document_id: str, entries: List[IndexEntry]) -> None:
        """Replace all vectors of a document in one step."""
        pass

    @abstractmethod
    async def delete_document(self, user_id: str, document_id: str) -> int:
        """Remove a document's vectors; returns how many were removed."""
        pass

    @abstractmethod
    def entries_for_user(self, user_id: str) -> List[IndexEntry]:
        """Snapshot of every entry visible to a user."""
        pass


class InMemoryVectorIndex(VectorIndex):
    """Process-local vector index keyed by user, then document."""

    def __init__(self, dimension: Optional[int] = None):
        self.dimension = dimension
        self._entries: Dict[str, Dict[str, List[IndexEntry]]] = {}
        self._write_lock = asyncio.Lock()

    def _check_dimension(self, vector: np.ndarray) -> None:
        if vector.ndim != 1:
            raise SchemaError(f"Expected a 1-d vector, got shape {vector.shape}", stage="indexing")
        if self.dimension is None:
            return
        if vector.shape[0] != self.dimension:
            raise SchemaError(
                f"Vector dimension {vector.shape[0]} does not match index dimension {self.dimension}",
                stage="indexing",
            )

    async def upsert_document(self, user_id: str, document_id: str, entries: List[IndexEntry]) -> None:
        for entry in entries:
            if entry.document_id != document_id:
                raise ValueError(f"Entry {entry.chunk_id} belongs to {entry.document_id}, not {document_id}")
            self._check_dimension(entry.vector)
            if self.dimension is None:
                self.dimension = entry.vector.shape[0]
                logger.info(f"Vector index dimension fixed at {self.dimension}")
            if entry.sentence_vectors is not None:
                for sentence_vector in entry.sentence_vectors:
                    self._check_dimension(sentence_vector)

        async with self._write_lock:
            # Copy-on-write so concurrent readers keep their snapshot
            user_docs = dict(self._entries.get(user_id, {}))
            if entries:
                user_docs[document_id] = list(entries)
            else:
                user_docs.pop(document_id, None)
            self._entries[user_id] = user_docs

        logger.info(f"Indexed {len(entries)} vectors for document {document_id}")

    async def delete_document(self, user_id: str, document_id: str) -> int:
        async with self._write_lock:
            user_docs = dict(self._entries.get(user_id, {}))
            removed = user_docs.pop(document_id, [])
            self._entries[user_id] = user_docs

        if removed:
            logger.info(f"Removed {len(removed)} vectors for document {document_id}")
        return len(removed)

    def entries_for_user(self, user_id: str) -> List[IndexEntry]:
        user_docs = self._entries.get(user_id, {})
        return [entry for doc_entries in user_docs.values() for entry in doc_entries]

    def get_vector(self, user_id: str, chunk_id: str) -> Optional[np.ndarray]:
        for entry in self.entries_for_user(user_id):
            if entry.chunk_id == chunk_id:
                return entry.vector
        return None

    def document_ids(self, user_id: str) -> List[str]:
        return list(self._entries.get(user_id, {}))

    def count(self, user_id: Optional[str] = None) -> int:
        if user_id is not None:
            return len(self.entries_for_user(user_id))
        return sum(len(entries) for docs in self._entries.values() for entries in docs.values())
