"""
Retrieval ranker.
Top-K cosine ranking over a single user's index partition.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from ..exceptions import SchemaError
from .vector_index import IndexEntry, VectorIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankedChunk:
    """A retrieved chunk and its relevance in [0, 1]."""
    entry: IndexEntry
    relevance: float

    @property
    def chunk_id(self) -> str:
        return self.entry.chunk_id

    @property
    def document_id(self) -> str:
        return self.entry.document_id


def cosine_scores(query_vector: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one vector against each row; zero vectors score 0."""
    query_norm = np.linalg.norm(query_vector)
    row_norms = np.linalg.norm(matrix, axis=1)
    denominators = row_norms * query_norm
    dots = matrix @ query_vector
    scores = np.zeros(len(matrix))
    nonzero = denominators > 0
    scores[nonzero] = dots[nonzero] / denominators[nonzero]
    return scores


class RetrievalRanker:
    """Cosine ranking with deterministic tie-breaks."""

    def __init__(self, index: VectorIndex, default_top_k: int = 5):
        self.index = index
        self.default_top_k = default_top_k

    def rank(self, user_id: str, query_vector: np.ndarray, top_k: Optional[int] = None) -> List[RankedChunk]:
        """
        Rank the user's chunks against a query vector.

        A chunk's relevance is the best cosine of the chunk or of any one of
        its sentences, so unrelated clauses packed into the same chunk do not
        dilute a matching sentence. Ties are broken by newest document upload,
        then lower chunk index, then chunk id.

        Returns:
            At most ``top_k`` hits, best first; empty when the user has no chunks.
        """
        if top_k is None:
            top_k = self.default_top_k
        entries = self.index.entries_for_user(user_id)
        if not entries or top_k <= 0:
            return []

        query_vector = np.asarray(query_vector, dtype=float)
        if self.index.dimension is not None and query_vector.shape != (self.index.dimension,):
            raise SchemaError(
                f"Query dimension {query_vector.shape} does not match index dimension {self.index.dimension}",
                stage="retrieving",
            )

        matrix = np.vstack([entry.vector for entry in entries])
        scores = cosine_scores(query_vector, matrix)
        for i, entry in enumerate(entries):
            if entry.sentence_vectors is not None and len(entry.sentence_vectors):
                best_sentence = float(cosine_scores(query_vector, entry.sentence_vectors).max())
                scores[i] = max(scores[i], best_sentence)

        order = sorted(
            range(len(entries)),
            key=lambda i: (
                -round(float(scores[i]), 9),
                -entries[i].uploaded_at.timestamp(),
                entries[i].chunk_index,
                entries[i].chunk_id,
            ),
        )

        results = [
            RankedChunk(entry=entries[i], relevance=min(1.0, max(0.0, float(scores[i]))))
            for i in order[:top_k]
        ]
        logger.debug(f"Ranked {len(entries)} chunks for user {user_id}, returning {len(results)}")
        return results
