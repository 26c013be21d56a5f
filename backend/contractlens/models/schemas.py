"""
Core data models for ContractLens.
Documents, chunks, insights, query results and ingestion status records,
plus the request/response models used by the HTTP layer.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class RiskLevel(str, Enum):
    """Risk assessment levels for contracts and insights."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @property
    def rank(self) -> int:
        """Numeric severity (Low=1, Medium=2, High=3)."""
        return _RISK_RANKS[self]


_RISK_RANKS = {RiskLevel.LOW: 1, RiskLevel.MEDIUM: 2, RiskLevel.HIGH: 3}


class ContractStatus(str, Enum):
    """Contract lifecycle status."""
    ACTIVE = "Active"
    EXPIRED = "Expired"
    RENEWAL_DUE = "RenewalDue"


class InsightType(str, Enum):
    """Kinds of derived insight."""
    RISK = "risk"
    CLAUSE = "clause"


class ClauseType(str, Enum):
    """Clause categories recognised by the classifier."""
    TERMINATION = "termination"
    LIABILITY = "liability"
    CONFIDENTIALITY = "confidentiality"
    PAYMENT = "payment"
    FORCE_MAJEURE = "force_majeure"
    RENEWAL = "renewal"
    GOVERNING_LAW = "governing_law"


class IngestionState(str, Enum):
    """Document ingestion pipeline states."""
    RECEIVED = "received"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    INDEXING = "indexing"
    INDEXED = "indexed"
    CLASSIFYING = "classifying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (IngestionState.COMPLETED, IngestionState.FAILED, IngestionState.CANCELLED)

    @property
    def is_queryable(self) -> bool:
        """Whether the document's vectors have been fully written to the index."""
        return self in (IngestionState.INDEXED, IngestionState.CLASSIFYING, IngestionState.COMPLETED)


class QueryState(str, Enum):
    """Per-request query states."""
    RECEIVED = "Received"
    EMBEDDING = "Embedding"
    RETRIEVING = "Retrieving"
    SYNTHESIZING = "Synthesizing"
    COMPLETED = "Completed"
    NO_EVIDENCE = "NoEvidence"
    FAILED = "Failed"


# Core Entity Models

class Document(BaseModel):
    """A contract owned by one user."""
    document_id: str = Field(..., description="Unique document identifier")
    user_id: str = Field(..., description="Owning user (tenancy boundary)")
    contract_name: str = Field(..., description="Display name derived from the filename")
    filename: str = Field(..., description="Original uploaded filename")
    file_size: int = Field(..., ge=0, description="File size in bytes")
    content_type: str = Field(..., description="MIME type")
    checksum: str = Field(..., description="SHA-256 of the uploaded bytes")
    uploaded_at: datetime = Field(default_factory=utc_now, description="Upload timestamp")
    status: ContractStatus = Field(default=ContractStatus.ACTIVE, description="Lifecycle status")
    risk_label: RiskLevel = Field(default=RiskLevel.LOW, description="Max risk level across insights")
    parties: Optional[str] = Field(None, description="Contracting parties")
    start_date: Optional[date] = Field(None, description="Contract start date")
    expiry_date: Optional[date] = Field(None, description="Contract expiry date")
    page_count: int = Field(default=0, ge=0)
    chunk_count: int = Field(default=0, ge=0)
    ingestion_state: IngestionState = Field(default=IngestionState.RECEIVED)
    error_message: Optional[str] = None
    analyzed_at: Optional[datetime] = None


class Chunk(BaseModel):
    """A contiguous slice of a document's extracted text."""
    chunk_id: str = Field(..., description="Unique chunk identifier")
    document_id: str = Field(..., description="Parent document")
    user_id: str = Field(..., description="Owner of the parent document")
    chunk_index: int = Field(..., ge=0, description="Position within the document")
    text: str = Field(..., min_length=1, description="Chunk text")
    page_number: int = Field(..., ge=1, description="Source page (1-indexed)")
    char_start: int = Field(..., ge=0, description="Start offset within the page text")
    char_end: int = Field(..., ge=0, description="End offset within the page text")
    clause_type: Optional[ClauseType] = Field(None, description="Dominant clause category")
    embedding: Optional[List[float]] = Field(None, description="Embedding vector")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Insight(BaseModel):
    """A structured finding derived from a document's chunks."""
    insight_id: str = Field(..., description="Deterministic insight identifier")
    document_id: str = Field(..., description="Parent document")
    insight_type: InsightType
    title: str
    summary: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    risk_level: RiskLevel
    evidence_text: Optional[str] = None
    source_section: Optional[str] = None
    clause_type: Optional[ClauseType] = None
    created_at: datetime = Field(default_factory=utc_now)


class ChunkCitation(BaseModel):
    """A cited chunk in a query answer."""
    chunk_id: str
    document_id: str
    contract_name: str
    chunk_index: int
    page_number: int
    text: str
    clause_type: Optional[ClauseType] = None
    relevance_score: float = Field(..., ge=0.0, le=1.0)


class QueryResult(BaseModel):
    """Outcome of a question over a user's contracts."""
    query: str
    state: QueryState
    answer: str
    citations: List[ChunkCitation] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def has_evidence(self) -> bool:
        return self.state == QueryState.COMPLETED


class IngestionStatus(BaseModel):
    """Pipeline progress record, queryable independently of any client connection."""
    document_id: str
    user_id: str
    state: IngestionState = IngestionState.RECEIVED
    stage: Optional[str] = None
    progress: int = Field(default=0, ge=0, le=100)
    chunks_total: int = 0
    chunks_embedded: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    updated_at: datetime = Field(default_factory=utc_now)


# API Request/Response Models

class DocumentUploadResponse(BaseModel):
    """Response for an accepted upload."""
    document_id: str
    filename: str
    contract_name: str
    ingestion_state: IngestionState
    message: str


class BatchIngestionOutcome(BaseModel):
    """Per-file outcome of a batch ingestion."""
    filename: str
    document_id: Optional[str] = None
    ingestion_state: Optional[IngestionState] = None
    error_code: Optional[str] = None
    error: Optional[str] = None


class BatchUploadResponse(BaseModel):
    results: List[BatchIngestionOutcome]
    succeeded: int
    failed: int


class DocumentListResponse(BaseModel):
    documents: List[Document]
    total: int
    pagination: Dict[str, Any]


class QueryRequest(BaseModel):
    """Natural-language question over the caller's contracts."""
    question: str = Field(..., min_length=1, max_length=1000)
    top_k: Optional[int] = Field(default=None, ge=1, le=20)


class InsightCreateRequest(BaseModel):
    """Manually attached insight (e.g. from a reviewer)."""
    insight_type: InsightType = InsightType.RISK
    title: str = Field(..., min_length=1, max_length=200)
    summary: str = Field(..., min_length=1)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    risk_level: RiskLevel
    evidence_text: Optional[str] = None
    source_section: Optional[str] = None
    clause_type: Optional[ClauseType] = None


class UserInsight(BaseModel):
    """Insight joined with its contract name for the insights dashboard."""
    insight: Insight
    contract_name: str


class TopRisk(BaseModel):
    """A high-risk contract listed on the reports page."""
    document_id: str
    contract_name: str
    risk_level: RiskLevel
    expiry_date: Optional[date] = None


class PortfolioStats(BaseModel):
    """Dashboard and report statistics across a user's contracts."""
    total_contracts: int
    active_contracts: int = 0
    expired_contracts: int = 0
    high_risk_contracts: int
    expiring_contracts: int
    avg_risk_score: float
    risk_distribution: Dict[str, int] = Field(
        default_factory=lambda: {"high": 0, "medium": 0, "low": 0},
        description="Contract count per risk level",
    )
    top_risks: List[TopRisk] = Field(default_factory=list, description="High-risk contracts, soonest expiry first")


class HealthCheckResponse(BaseModel):
    status: str
    version: str
    services: Dict[str, str]


class ErrorResponse(BaseModel):
    """API error response."""
    error: str
    code: str
    status_code: int
    stage: Optional[str] = None
    timestamp: datetime
