"""
Configuration management for the ContractLens engine.
Environment-driven settings covering ingestion limits, chunking, embeddings,
retrieval thresholds and the Google Cloud collaborators.
"""

from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "ContractLens"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # API Configuration
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080
    USER_ID_HEADER: str = "X-User-Id"

    # CORS Configuration - for frontend integration
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    ALLOW_CREDENTIALS: bool = True

    # Upload validation
    MAX_FILE_SIZE_MB: int = 10
    SUPPORTED_CONTENT_TYPES: List[str] = [
        "application/pdf",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ]

    # Chunking
    CHUNK_SIZE_TOKENS: int = 200
    CHUNK_OVERLAP_RATIO: float = 0.15

    # Embeddings
    EMBEDDING_PROVIDER: str = "lexical"  # lexical | vertex
    EMBEDDING_DIMENSIONS: int = 256
    EMBEDDING_BATCH_SIZE: int = 16
    EMBEDDING_MAX_RETRIES: int = 3
    EMBEDDING_BACKOFF_BASE_SECONDS: float = 0.5
    EMBEDDING_BACKOFF_MAX_SECONDS: float = 8.0

    # Retrieval and answering
    RETRIEVAL_TOP_K: int = 5
    MIN_RELEVANCE_THRESHOLD: float = 0.5
    ANSWER_MAX_SENTENCES: int = 3

    # Ingestion
    INGESTION_MAX_CONCURRENCY: int = 4
    RENEWAL_WINDOW_DAYS: int = 90

    # Persistence
    STORAGE_BACKEND: str = "memory"  # memory | firestore
    FIRESTORE_DATABASE: str = "(default)"
    FIRESTORE_COLLECTION_DOCUMENTS: str = "documents"
    FIRESTORE_COLLECTION_CHUNKS: str = "document_chunks"
    FIRESTORE_COLLECTION_INSIGHTS: str = "contract_insights"

    # Google Cloud Platform
    GOOGLE_CLOUD_PROJECT: str = "contractlens-dev"

    # Document AI
    DOCUMENT_AI_PROCESSOR_ID: Optional[str] = None
    DOCUMENT_AI_LOCATION: str = "us"
    DOCUMENT_AI_FOR_PDF: bool = False

    # Vertex AI
    VERTEX_AI_LOCATION: str = "us-central1"
    VERTEX_EMBEDDING_MODEL: str = "text-embedding-004"

    @property
    def max_file_size_bytes(self) -> int:
        """Upload ceiling in bytes."""
        return self.MAX_FILE_SIZE_MB * 1024 * 1024

    @property
    def chunk_overlap_tokens(self) -> int:
        """Minimum number of tokens carried over between adjacent chunks."""
        return max(1, int(round(self.CHUNK_SIZE_TOKENS * self.CHUNK_OVERLAP_RATIO)))

    @property
    def vertex_ai_config(self) -> Dict[str, str]:
        """Vertex AI configuration."""
        return {
            "project": self.GOOGLE_CLOUD_PROJECT,
            "location": self.VERTEX_AI_LOCATION,
            "embedding_model": self.VERTEX_EMBEDDING_MODEL,
        }

    @property
    def document_ai_config(self) -> Dict[str, Any]:
        """Document AI configuration."""
        return {
            "project_id": self.GOOGLE_CLOUD_PROJECT,
            "location": self.DOCUMENT_AI_LOCATION,
            "processor_id": self.DOCUMENT_AI_PROCESSOR_ID,
        }

    @property
    def firestore_config(self) -> Dict[str, str]:
        """Firestore Native configuration."""
        return {
            "project": self.GOOGLE_CLOUD_PROJECT,
            "database": self.FIRESTORE_DATABASE,
            "documents_collection": self.FIRESTORE_COLLECTION_DOCUMENTS,
            "chunks_collection": self.FIRESTORE_COLLECTION_CHUNKS,
            "insights_collection": self.FIRESTORE_COLLECTION_INSIGHTS,
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
