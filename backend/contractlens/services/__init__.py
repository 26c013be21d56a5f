"""
Services package for ContractLens.
Chunking, embeddings, classification, persistence and ingestion.
The engine facade lives in ``services.engine``.
"""

from .chunking import Chunker, ChunkSequence
from .embedding import (
    EmbeddingProvider,
    LexicalEmbeddingModel,
    VertexEmbeddingProvider,
    EmbeddingService,
    create_embedding_provider
)
from .classification import InsightClassifier, aggregate_risk
from .repository import (
    DocumentRepository,
    InMemoryRepository,
    FirestoreRepository,
    create_repository
)
from .ingestion import IngestionPipeline, UploadedFile

__all__ = [
    "Chunker",
    "ChunkSequence",
    "EmbeddingProvider",
    "LexicalEmbeddingModel",
    "VertexEmbeddingProvider",
    "EmbeddingService",
    "create_embedding_provider",
    "InsightClassifier",
    "aggregate_risk",
    "DocumentRepository",
    "InMemoryRepository",
    "FirestoreRepository",
    "create_repository",
    "IngestionPipeline",
    "UploadedFile"
]
