"""
ContractLens HTTP API.
FastAPI application exposing contract upload, browsing, insights and
question answering. The caller's user id is supplied by the upstream auth
provider in a request header; no authentication happens here.
"""

import logging
from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..exceptions import ContractLensError, ValidationError
from ..models.config import settings
from ..models.schemas import (
    BatchUploadResponse,
    Chunk,
    ContractStatus,
    Document,
    DocumentListResponse,
    DocumentUploadResponse,
    ErrorResponse,
    HealthCheckResponse,
    IngestionStatus,
    Insight,
    InsightCreateRequest,
    PortfolioStats,
    QueryRequest,
    QueryResult,
    RiskLevel,
    UserInsight,
    utc_now,
)
from ..services.classification import insight_id_for
from ..services.engine import ContractEngine, create_engine
from ..services.ingestion import UploadedFile

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


ERROR_STATUS_CODES: Dict[str, int] = {
    "validation_error": 400,
    "ingestion_failed": 502,
    "schema_error": 500,
    "embedding_unavailable": 503,
    "storage_error": 503,
    "query_failed": 502,
    "not_found": 404,
    "ingestion_cancelled": 409,
}


def status_code_for(error: ContractLensError) -> int:
    if isinstance(error, ValidationError) and error.field == "file_size":
        return 413
    return ERROR_STATUS_CODES.get(error.code, 500)


@lru_cache()
def get_engine() -> ContractEngine:
    """Process-wide engine instance."""
    return create_engine(settings)


def get_user_id(request: Request) -> str:
    """User id asserted by the auth provider."""
    user_id = request.headers.get(settings.USER_ID_HEADER, "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail=f"Missing {settings.USER_ID_HEADER} header")
    return user_id


# Initialize FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Contract retrieval, insight and question answering API",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=settings.ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", response_model=HealthCheckResponse)
@app.get("/health", response_model=HealthCheckResponse)
async def health_check(engine: ContractEngine = Depends(get_engine)):
    """Health check endpoint."""
    return HealthCheckResponse(
        status="healthy",
        version=settings.APP_VERSION,
        services={
            "storage": settings.STORAGE_BACKEND,
            "embeddings": f"{engine.embedding_service.provider.name}:{engine.embedding_service.dimension}",
            "document_ai": "configured" if settings.DOCUMENT_AI_PROCESSOR_ID else "disabled",
        }
    )


# Documents

@app.post("/api/v1/documents/upload", response_model=DocumentUploadResponse)
async def upload_document(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    """Upload a contract; it is processed in the background."""
    content = await file.read()
    document = await engine.submit(user_id, content, file.content_type, file.filename or "")

    background_tasks.add_task(engine.run_ingestion_in_background, document.document_id, content)

    return DocumentUploadResponse(
        document_id=document.document_id,
        filename=document.filename,
        contract_name=document.contract_name,
        ingestion_state=document.ingestion_state,
        message="Document uploaded successfully and is being processed",
    )


@app.post("/api/v1/documents/batch-upload", response_model=BatchUploadResponse)
async def batch_upload_documents(
    files: List[UploadFile] = File(...),
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    """Upload and process several contracts; each file reports its own outcome."""
    uploads = [
        UploadedFile(file_bytes=await f.read(), content_type=f.content_type, filename=f.filename or "")
        for f in files
    ]
    results = await engine.ingest_batch(user_id, uploads)
    failed = sum(1 for r in results if r.error_code)
    return BatchUploadResponse(results=results, succeeded=len(results) - failed, failed=failed)


@app.get("/api/v1/documents", response_model=DocumentListResponse)
async def list_documents(
    search: Optional[str] = Query(None, description="Match contract name, parties or filename"),
    status: Optional[ContractStatus] = Query(None),
    risk: Optional[RiskLevel] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    return await engine.list_documents(user_id, search=search, status=status, risk=risk, page=page, page_size=page_size)


@app.get("/api/v1/documents/{document_id}", response_model=Document)
async def get_document(
    document_id: str,
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    return await engine.get_document(user_id, document_id)


@app.get("/api/v1/documents/{document_id}/status", response_model=IngestionStatus)
async def get_document_status(
    document_id: str,
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    """Get document processing status."""
    return await engine.get_status(user_id, document_id)


@app.get("/api/v1/documents/{document_id}/chunks", response_model=List[Chunk])
async def get_document_chunks(
    document_id: str,
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    chunks = await engine.list_chunks(user_id, document_id)
    return [chunk.model_copy(update={"embedding": None}) for chunk in chunks]


@app.get("/api/v1/documents/{document_id}/insights", response_model=List[Insight])
async def get_document_insights(
    document_id: str,
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    return await engine.get_insights(document_id, user_id)


@app.post("/api/v1/documents/{document_id}/insights", response_model=Document)
async def add_document_insight(
    document_id: str,
    request: InsightCreateRequest,
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    """Attach an insight; returns the document with its updated risk label."""
    insight = Insight(
        insight_id=insight_id_for(document_id, request.insight_type, request.title),
        document_id=document_id,
        **request.model_dump(),
    )
    return await engine.add_insight(user_id, insight)


@app.post("/api/v1/documents/{document_id}/reanalyze", response_model=Document)
async def reanalyze_document(
    document_id: str,
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    return await engine.reanalyze(user_id, document_id)


@app.post("/api/v1/documents/{document_id}/cancel")
async def cancel_ingestion(
    document_id: str,
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    cancelled = await engine.cancel(user_id, document_id)
    return {"document_id": document_id, "cancelled": cancelled}


@app.post("/api/v1/documents/{document_id}/retry", response_model=Document)
async def retry_ingestion(
    document_id: str,
    file: UploadFile = File(...),
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    """Re-run a failed or cancelled ingestion with the original file."""
    content = await file.read()
    return await engine.retry_ingestion(user_id, document_id, content)


@app.delete("/api/v1/documents/{document_id}")
async def delete_document(
    document_id: str,
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    await engine.delete_document(user_id, document_id)
    return {"document_id": document_id, "deleted": True}


# Questions and insights

@app.post("/api/v1/query", response_model=QueryResult)
async def query_contracts(
    request: QueryRequest,
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    """Answer a question from the caller's contracts."""
    return await engine.query(user_id, request.question, top_k=request.top_k)


@app.get("/api/v1/insights", response_model=List[UserInsight])
async def list_insights(
    limit: Optional[int] = Query(None, ge=1, le=500),
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    return await engine.list_user_insights(user_id, limit=limit)


@app.get("/api/v1/stats", response_model=PortfolioStats)
async def portfolio_stats(
    user_id: str = Depends(get_user_id),
    engine: ContractEngine = Depends(get_engine),
):
    return await engine.portfolio_stats(user_id)


# Error handling

def _error_response(status_code: int, error: str, code: str, stage: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        code=code,
        status_code=status_code,
        stage=stage,
        timestamp=utc_now(),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(ContractLensError)
async def contractlens_exception_handler(request: Request, exc: ContractLensError):
    """Map engine errors to stable HTTP responses."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return _error_response(status_code, exc.user_message, exc.code, exc.stage)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Custom HTTP exception handler."""
    return _error_response(exc.status_code, str(exc.detail), "http_error")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "contractlens.api.app:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
