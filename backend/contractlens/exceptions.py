"""
Error taxonomy for the ContractLens engine.

Every error carries a stable ``code``, the pipeline ``stage`` it was raised in
(when known) and a ``user_message`` safe to show to end users.
"""

from typing import Optional


class ContractLensError(Exception):
    """Base class for all engine errors."""

    code = "internal_error"
    default_message = "An unexpected error occurred."

    def __init__(
        self,
        message: Optional[str] = None,
        stage: Optional[str] = None,
        user_message: Optional[str] = None,
    ):
        self.message = message or self.default_message
        self.stage = stage
        self.user_message = user_message or self.default_message
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class ValidationError(ContractLensError):
    """Rejected input (type, size, emptiness). Raised before any side effect."""

    code = "validation_error"
    default_message = "The uploaded file was rejected."

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, stage="validation", user_message=message)
        self.field = field


class IngestionFailed(ContractLensError):
    """A dependency of the ingestion pipeline failed for good."""

    code = "ingestion_failed"
    default_message = "We could not process this document. Please try again later."

    def __init__(self, message: str, stage: str, cause_code: Optional[str] = None):
        super().__init__(message, stage=stage)
        self.cause_code = cause_code


class SchemaError(ContractLensError):
    """Embedding dimension mismatch. Fatal, never coerced."""

    code = "schema_error"
    default_message = "The embedding configuration is inconsistent with the index."


class EmbeddingUnavailable(ContractLensError):
    """Transient failure of the embedding provider."""

    code = "embedding_unavailable"
    default_message = "The embedding service is temporarily unavailable."


class StorageError(ContractLensError):
    """Failure of the persistence collaborator."""

    code = "storage_error"
    default_message = "Contract storage is temporarily unavailable."


class DocumentNotFound(ContractLensError):
    """Unknown document, or a document owned by another user."""

    code = "not_found"
    default_message = "Contract not found."

    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class IngestionCancelled(ContractLensError):
    """Ingestion stopped cooperatively before the next chunk batch."""

    code = "ingestion_cancelled"
    default_message = "Processing of this document was cancelled."


class QueryFailed(ContractLensError):
    """The query pipeline reached the Failed state."""

    code = "query_failed"
    default_message = "We could not answer this question right now. Please try again."

    def __init__(self, message: str, stage: str, cause_code: str):
        super().__init__(message, stage=stage)
        self.cause_code = cause_code


class InvalidStateTransition(ContractLensError):
    """A state machine was asked to make a transition it does not allow."""

    code = "invalid_state_transition"
