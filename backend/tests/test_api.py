"""API tests for the ContractLens FastAPI application."""

import pytest

from contractlens.api.app import status_code_for
from contractlens.exceptions import DocumentNotFound, EmbeddingUnavailable, ValidationError

HEADERS = {"X-User-Id": "user-1"}


def _upload(client, data: bytes, filename: str = "Master_Services_Agreement.txt", content_type: str = "text/plain", headers=HEADERS):
    return client.post(
        "/api/v1/documents/upload",
        files={"file": (filename, data, content_type)},
        headers=headers,
    )


class TestHealth:

    def test_health(self, test_client):
        response = test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"]["storage"] == "memory"
        assert body["services"]["embeddings"] == "lexical:256"


class TestDocuments:

    def test_upload_processes_in_background(self, test_client, msa_bytes):
        response = _upload(test_client, msa_bytes)

        assert response.status_code == 200
        body = response.json()
        assert body["contract_name"] == "Master Services Agreement"
        assert body["ingestion_state"] == "received"

        status = test_client.get(f"/api/v1/documents/{body['document_id']}/status", headers=HEADERS)
        assert status.status_code == 200
        assert status.json()["state"] == "completed"
        assert status.json()["progress"] == 100

        document = test_client.get(f"/api/v1/documents/{body['document_id']}", headers=HEADERS).json()
        assert document["risk_label"] == "High"
        assert document["parties"] == "Acme Corporation and Globex Industries LLC"
        assert document["expiry_date"] == "2026-01-15"

    def test_missing_user_header(self, test_client, msa_bytes):
        response = _upload(test_client, msa_bytes, headers={})

        assert response.status_code == 401
        assert response.json()["code"] == "http_error"

    def test_unsupported_type(self, test_client):
        response = _upload(test_client, b"\x89PNG", filename="scan.png", content_type="image/png")

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "validation_error"
        assert body["stage"] == "validation"
        assert "PDF, DOC, DOCX, or TXT" in body["error"]

    def test_oversized_upload(self, test_client, engine):
        response = _upload(test_client, b"a" * (engine.pipeline.max_file_size_bytes + 1), filename="big.txt")

        assert response.status_code == 413
        assert test_client.get("/api/v1/documents", headers=HEADERS).json()["total"] == 0

    def test_list_and_filter(self, test_client, msa_bytes, consulting_bytes):
        _upload(test_client, msa_bytes)
        _upload(test_client, consulting_bytes, filename="Consulting_Agreement.txt")

        response = test_client.get("/api/v1/documents", params={"risk": "Low"}, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["documents"][0]["contract_name"] == "Consulting Agreement"

        other_user = test_client.get("/api/v1/documents", headers={"X-User-Id": "user-2"}).json()
        assert other_user["total"] == 0

    def test_chunks_omit_embeddings(self, test_client, msa_bytes):
        document_id = _upload(test_client, msa_bytes).json()["document_id"]

        chunks = test_client.get(f"/api/v1/documents/{document_id}/chunks", headers=HEADERS).json()

        assert len(chunks) == 7
        assert all(chunk["embedding"] is None for chunk in chunks)
        assert [chunk["chunk_index"] for chunk in chunks] == list(range(7))

    def test_insights_and_manual_insight(self, test_client, consulting_bytes):
        document_id = _upload(test_client, consulting_bytes, filename="Consulting_Agreement.txt").json()["document_id"]

        insights = test_client.get(f"/api/v1/documents/{document_id}/insights", headers=HEADERS).json()
        assert {i["risk_level"] for i in insights} == {"Low"}

        response = test_client.post(
            f"/api/v1/documents/{document_id}/insights",
            json={"title": "Uncapped Indemnity", "summary": "Indemnity has no cap.", "risk_level": "High"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["risk_label"] == "High"

        dashboard = test_client.get("/api/v1/insights", headers=HEADERS).json()
        assert any(row["insight"]["title"] == "Uncapped Indemnity" for row in dashboard)

    def test_delete(self, test_client, msa_bytes):
        document_id = _upload(test_client, msa_bytes).json()["document_id"]

        assert test_client.delete(f"/api/v1/documents/{document_id}", headers={"X-User-Id": "user-2"}).status_code == 404

        response = test_client.delete(f"/api/v1/documents/{document_id}", headers=HEADERS)
        assert response.status_code == 200
        assert response.json() == {"document_id": document_id, "deleted": True}

        missing = test_client.get(f"/api/v1/documents/{document_id}", headers=HEADERS)
        assert missing.status_code == 404
        assert missing.json()["code"] == "not_found"

    def test_batch_upload(self, test_client, msa_bytes):
        response = test_client.post(
            "/api/v1/documents/batch-upload",
            files=[
                ("files", ("msa.txt", msa_bytes, "text/plain")),
                ("files", ("empty.txt", b"", "text/plain")),
            ],
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["succeeded"] == 1
        assert body["failed"] == 1
        assert body["results"][1]["error_code"] == "validation_error"


class TestQueryAndStats:

    def test_query(self, test_client, msa_bytes):
        _upload(test_client, msa_bytes)

        response = test_client.post(
            "/api/v1/query",
            json={"question": "What is the termination notice period?"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["state"] == "Completed"
        assert "90 days written notice" in body["answer"]
        assert body["citations"][0]["relevance_score"] >= 0.5

    def test_query_without_documents(self, test_client):
        response = test_client.post("/api/v1/query", json={"question": "Any renewal terms?"}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["state"] == "NoEvidence"
        assert response.json()["citations"] == []

    def test_blank_question(self, test_client):
        response = test_client.post("/api/v1/query", json={"question": "   "}, headers=HEADERS)
        assert response.status_code == 400

    def test_stats(self, test_client, msa_bytes, consulting_bytes):
        _upload(test_client, msa_bytes)
        _upload(test_client, consulting_bytes, filename="Consulting_Agreement.txt")

        stats = test_client.get("/api/v1/stats", headers=HEADERS).json()

        assert stats["total_contracts"] == 2
        assert stats["active_contracts"] == 2
        assert stats["expired_contracts"] == 0
        assert stats["high_risk_contracts"] == 1
        assert stats["expiring_contracts"] == 0
        assert stats["avg_risk_score"] == 2.0
        assert stats["risk_distribution"] == {"high": 1, "medium": 0, "low": 1}
        [top] = stats["top_risks"]
        assert top["contract_name"] == "Master Services Agreement"
        assert top["risk_level"] == "High"
        assert top["expiry_date"] == "2026-01-15"


class TestErrorMapping:

    @pytest.mark.parametrize("error,status_code", [
        (ValidationError("bad type", field="content_type"), 400),
        (ValidationError("too big", field="file_size"), 413),
        (DocumentNotFound("doc-1"), 404),
        (EmbeddingUnavailable("down"), 503),
    ])
    def test_status_codes(self, error, status_code):
        assert status_code_for(error) == status_code
