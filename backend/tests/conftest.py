"""Pytest configuration and shared fixtures."""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from contractlens.api.app import app
from contractlens.extractors.text import ExtractedPage
from contractlens.models.config import Settings
from contractlens.models.schemas import Document
from contractlens.services.chunking import Chunker
from contractlens.services.engine import ContractEngine, create_engine

TODAY = date(2024, 6, 1)

MSA_TEXT = """MASTER SERVICES AGREEMENT

This Master Services Agreement is entered into as of January 15, 2024 between Acme Corporation and Globex Industries LLC.

1. Services
Globex Industries LLC shall provide software development and support services as described in each statement of work.

2. Payment
Client shall pay each invoice within 30 days of receipt. Late payments accrue interest at 1% per month.

3. Termination
Either party may terminate this agreement with 90 days written notice to the other party. Upon termination, Client shall pay for services performed through the termination date.

4. Limitation of Liability
In no event shall either party's aggregate liability exceed the fees paid under this agreement in the twelve months preceding the claim.

5. Term
This agreement has an initial term of two (2) years from the effective date.

6. Governing Law
This agreement is governed by the laws of the State of New York.
"""

CONSULTING_TEXT = """CONSULTING AGREEMENT

This Consulting Agreement is dated March 1, 2024 between Initech Inc and Jane Consulting LLC.

1. Services
Consultant shall provide strategy consulting services to the Company.

2. Termination
Either party may terminate this agreement upon sixty (60) days written notice.

3. Force Majeure
Neither party shall be liable for delays caused by events beyond its reasonable control, including acts of God.
"""

SUPPLY_TEXT = """SUPPLY AGREEMENT

This Supply Agreement is entered into as of July 15, 2023 between Vandelay Industries and Kramerica Inc, and expires on July 15, 2024.

1. Termination
Either party may cancel this agreement with 10 days notice.
"""


@pytest.fixture
def test_settings() -> Settings:
    """Settings for an in-process engine: memory storage, lexical embeddings, no backoff.

    Returns:
        Settings: Test configuration
    """
    return Settings(
        STORAGE_BACKEND="memory",
        EMBEDDING_PROVIDER="lexical",
        EMBEDDING_BACKOFF_BASE_SECONDS=0.0,
        EMBEDDING_BACKOFF_MAX_SECONDS=0.0,
        DOCUMENT_AI_PROCESSOR_ID=None,
    )


@pytest.fixture
def engine(test_settings) -> ContractEngine:
    """Engine with a fixed calendar date.

    Returns:
        ContractEngine: Fully wired engine
    """
    return create_engine(test_settings, today=lambda: TODAY)


@pytest.fixture
def test_client(engine) -> TestClient:
    """FastAPI test client backed by the test engine."""
    from contractlens.api.app import get_engine

    app.dependency_overrides[get_engine] = lambda: engine
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def msa_text() -> str:
    return MSA_TEXT


@pytest.fixture
def consulting_text() -> str:
    return CONSULTING_TEXT


@pytest.fixture
def msa_bytes() -> bytes:
    return MSA_TEXT.encode("utf-8")


@pytest.fixture
def consulting_bytes() -> bytes:
    return CONSULTING_TEXT.encode("utf-8")


@pytest.fixture
def supply_bytes() -> bytes:
    return SUPPLY_TEXT.encode("utf-8")


@pytest.fixture
def msa_document() -> Document:
    """Document record for the master services agreement."""
    return Document(
        document_id="doc-msa",
        user_id="user-1",
        contract_name="Master Services Agreement",
        filename="Master_Services_Agreement.txt",
        file_size=len(MSA_TEXT),
        content_type="text/plain",
        checksum="0" * 64,
    )


@pytest.fixture
def msa_chunks(msa_document):
    """Chunks of the master services agreement with the default chunker."""
    return list(Chunker().chunk(msa_document, [ExtractedPage(page_number=1, text=MSA_TEXT)]))
