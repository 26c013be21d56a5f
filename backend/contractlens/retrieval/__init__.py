"""
Retrieval package for ContractLens.
Per-user vector index and cosine ranking.
"""

from .vector_index import IndexEntry, VectorIndex, InMemoryVectorIndex
from .ranker import RankedChunk, RetrievalRanker, cosine_scores

__all__ = [
    "IndexEntry",
    "VectorIndex",
    "InMemoryVectorIndex",
    "RankedChunk",
    "RetrievalRanker",
    "cosine_scores"
]
