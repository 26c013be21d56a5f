"""
ContractLens models package.
"""

from .schemas import (
    RiskLevel,
    ContractStatus,
    InsightType,
    ClauseType,
    IngestionState,
    QueryState,
    Document,
    Chunk,
    Insight,
    ChunkCitation,
    QueryResult,
    IngestionStatus,
    DocumentUploadResponse,
    BatchIngestionOutcome,
    BatchUploadResponse,
    DocumentListResponse,
    QueryRequest,
    InsightCreateRequest,
    UserInsight,
    PortfolioStats,
    TopRisk,
    HealthCheckResponse,
    ErrorResponse,
    utc_now
)

from .config import (
    settings,
    get_settings,
    Settings
)

__all__ = [
    # Schemas
    "RiskLevel",
    "ContractStatus",
    "InsightType",
    "ClauseType",
    "IngestionState",
    "QueryState",
    "Document",
    "Chunk",
    "Insight",
    "ChunkCitation",
    "QueryResult",
    "IngestionStatus",
    "DocumentUploadResponse",
    "BatchIngestionOutcome",
    "BatchUploadResponse",
    "DocumentListResponse",
    "QueryRequest",
    "InsightCreateRequest",
    "UserInsight",
    "PortfolioStats",
    "TopRisk",
    "HealthCheckResponse",
    "ErrorResponse",
    "utc_now",

    # Configuration
    "settings",
    "get_settings",
    "Settings"
]
