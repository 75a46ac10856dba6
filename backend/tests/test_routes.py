"""
DocRelay Backend - API Route Tests
===================================

What:  End-to-end HTTP tests through the FastAPI app with the AI provider faked.
How:   The `test_client` fixture overrides get_llm_service; PDF flows also
       override get_text_extractor with the stub extractor.

What we test:
    ✅ Health and status endpoints
    ✅ Prompt resolution order for the enhanced envelope endpoint
    ✅ X-Request-ID generation and echo
    ✅ Boundary errors (empty body, size limit, request validation) use the error envelope
    ✅ Pipeline errors keep their status code and Retry-After header
    ✅ DocScript JSON endpoints
"""

import json

import pytest

from docrelay.config import settings
from docrelay.services.text_extractor import get_text_extractor

TEXT_HEADERS = {"Content-Type": "text/plain"}


def _record(payload: str) -> str:
    return f"notes.txt;text/plain;{payload}"


async def _chunked(body: bytes, size: int = 512):
    for start in range(0, len(body), size):
        yield body[start:start + size]


class TestHealthRoutes:
    """Tests for /health and /api/v1/status."""

    @pytest.mark.asyncio
    async def test_health(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["provider"] == "fake"
        assert data["provider_status"] == "available"
        assert data["version"] == "1.0.0"

    @pytest.mark.asyncio
    async def test_health_degraded_when_circuit_open(self, test_client, fake_llm):
        fake_llm.circuit_breaker.record_failure()
        fake_llm.circuit_breaker.record_failure()

        data = (await test_client.get("/health")).json()
        assert data["status"] == "degraded"
        assert data["provider_status"] == "circuit_open"

    @pytest.mark.asyncio
    async def test_status(self, test_client):
        response = await test_client.get("/api/v1/status")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "operational"
        assert set(data["services"]) == {"gemini", "openai", "anthropic"}
        assert data["services"]["gemini"] is True
        assert data["configuration"]["default_provider"] == "gemini"
        assert data["configuration"]["max_body_size_mb"] == 50
        assert data["configuration"]["base64_policy"] == "strict"


class TestEnhancedEnvelopeRoute:
    """Tests for POST /api/v1/process-multiline-enhanced."""

    URL = "/api/v1/process-multiline-enhanced"

    @pytest.mark.asyncio
    async def test_success_with_query_prompt(self, test_client, fake_llm, text_payload):
        response = await test_client.post(
            self.URL,
            params={"prompt": "Summarize"},
            content=_record(text_payload),
            headers=TEXT_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["source_info"]["filename"] == "notes.txt"
        assert data["ai_response"]["content"] == "Analysis complete"
        assert len(response.headers["X-Request-ID"]) == 8
        assert data["request_id"] == response.headers["X-Request-ID"]
        assert fake_llm.messages[0].startswith("Summarize\n\n")

    @pytest.mark.asyncio
    async def test_prompt_from_header(self, test_client, fake_llm, text_payload):
        await test_client.post(
            self.URL,
            content=_record(text_payload),
            headers={**TEXT_HEADERS, "X-Prompt": "From header"},
        )
        assert fake_llm.messages[0].startswith("From header\n\n")

    @pytest.mark.asyncio
    async def test_query_prompt_wins_over_header(self, test_client, fake_llm, text_payload):
        await test_client.post(
            self.URL,
            params={"prompt": "From query"},
            content=_record(text_payload),
            headers={**TEXT_HEADERS, "X-Prompt": "From header"},
        )
        assert fake_llm.messages[0].startswith("From query\n\n")

    @pytest.mark.asyncio
    async def test_client_request_id_is_echoed(self, test_client, text_payload):
        response = await test_client.post(
            self.URL,
            content=_record(text_payload),
            headers={**TEXT_HEADERS, "X-Request-ID": "client-42"},
        )
        assert response.headers["X-Request-ID"] == "client-42"
        assert response.json()["request_id"] == "client-42"

    @pytest.mark.asyncio
    async def test_parse_json_camel_case_flag(self, test_client, fake_llm, text_payload):
        fake_llm.content = '{"growth": "12%"}'
        response = await test_client.post(
            self.URL,
            params={"parseJson": "true"},
            content=_record(text_payload),
            headers=TEXT_HEADERS,
        )
        assert response.json()["ai_response"]["parsed_content"] == {"growth": "12%"}

    @pytest.mark.asyncio
    async def test_empty_body(self, test_client, fake_llm):
        response = await test_client.post(self.URL, content="  \n ", headers=TEXT_HEADERS)

        assert response.status_code == 400
        data = response.json()
        assert data["status"] == "error"
        assert data["error"]["code"] == "INVALID_INPUT"
        assert data["error"]["message"] == "Expected raw text data"
        assert data["error"]["details"]["field"] == "body"
        assert fake_llm.messages == []

    @pytest.mark.asyncio
    async def test_body_over_limit(self, test_client, monkeypatch, text_payload):
        monkeypatch.setattr(settings, "max_body_size", 100)

        response = await test_client.post(
            self.URL, content=_record(text_payload) + "A" * 200, headers=TEXT_HEADERS
        )

        assert response.status_code == 413
        assert response.json()["error"]["code"] == "PAYLOAD_TOO_LARGE"

    @pytest.mark.asyncio
    async def test_chunked_text_body_over_limit(self, test_client, monkeypatch, text_payload):
        monkeypatch.setattr(settings, "max_body_size", 100)
        body = (_record(text_payload) + "A" * 200).encode()

        response = await test_client.post(self.URL, content=_chunked(body, 64), headers=TEXT_HEADERS)

        assert response.status_code == 413
        assert response.json()["error"]["code"] == "PAYLOAD_TOO_LARGE"

    @pytest.mark.asyncio
    async def test_invalid_gzip_header(self, test_client):
        payload = "cGxhaW4gdGV4dCB0aGF0IHdhcyBuZXZlciBjb21wcmVzc2Vk"
        response = await test_client.post(self.URL, content=_record(payload), headers=TEXT_HEADERS)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_GZIP_HEADER"
        assert error["stage"] == "decompress"

    @pytest.mark.asyncio
    async def test_open_circuit_sets_retry_after(self, test_client, fake_llm, text_payload):
        fake_llm.circuit_breaker.record_failure()
        fake_llm.circuit_breaker.record_failure()

        response = await test_client.post(self.URL, content=_record(text_payload), headers=TEXT_HEADERS)

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "COMPLETION_UNAVAILABLE"
        assert int(response.headers["Retry-After"]) > 0


class TestMultilineRoutes:
    """Tests for /process-multiline and /convert-multiline-to-json."""

    @pytest.mark.asyncio
    async def test_prompt_inside_body(self, test_client, fake_llm, text_payload):
        body = f"prompt: Extract the revenue figure\ndata:{_record(text_payload)}"
        response = await test_client.post(
            "/api/v1/process-multiline", content=body, headers=TEXT_HEADERS
        )

        assert response.status_code == 200
        data = response.json()
        assert data["prompt_info"]["preview"] == "Extract the revenue figure"
        assert fake_llm.messages[0].startswith("Extract the revenue figure\n\n")

    @pytest.mark.asyncio
    async def test_prompt_without_data(self, test_client):
        response = await test_client.post(
            "/api/v1/process-multiline", content="prompt: Nothing attached", headers=TEXT_HEADERS
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "NO_DATA"

    @pytest.mark.asyncio
    async def test_convert(self, test_client, fake_llm, text_payload):
        response = await test_client.post(
            "/api/v1/convert-multiline-to-json",
            params={"prompt": "Summarize"},
            content=_record(text_payload),
            headers=TEXT_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["converted_payload"]["DocScript"] == [{"base64script": [text_payload]}]
        assert data["converted_payload"]["prompt"] == "Summarize"
        assert fake_llm.messages == []


class TestDocumentRoutes:
    """Tests for the DocScript JSON endpoints."""

    @pytest.mark.asyncio
    async def test_process_document(
        self, test_client, fake_llm, stub_extractor, encode_document, build_pdf
    ):
        from docrelay.main import app

        app.dependency_overrides[get_text_extractor] = lambda: stub_extractor
        payload = encode_document(build_pdf("Invoice"))
        # Triple wrapped across lines the way RPA tools emit it
        wrapped = "\n".join(payload[i:i + 60] for i in range(0, len(payload), 60))

        response = await test_client.post(
            "/api/v1/process-document",
            json={
                "DocScript": [{"base64script": [f"invoice.pdf;application/pdf;{wrapped}"]}],
                "prompt": "List the totals",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["source_info"]["mimetype"] == "application/pdf"
        assert data["source_info"]["original_base64_length"] == len(payload)
        assert data["document_info"]["pages"] == 2
        assert fake_llm.messages == ["List the totals\n\nDocument content:\nExtracted PDF text"]

    @pytest.mark.asyncio
    async def test_missing_prompt(self, test_client, text_payload):
        response = await test_client.post(
            "/api/v1/process-document",
            json={"DocScript": [{"base64script": [text_payload]}]},
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_INPUT"
        assert error["message"] == "Request validation failed"
        assert {"field": "prompt", "message": "Field required"} in error["details"]["errors"]

    @pytest.mark.asyncio
    async def test_validate_valid(self, test_client, fake_llm, text_payload):
        response = await test_client.post(
            "/api/v1/validate",
            json={"DocScript": [{"base64script": [text_payload]}], "prompt": "Summarize"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "valid"
        assert response.json()["message"] == "Input validation passed"
        assert fake_llm.messages == []

    @pytest.mark.asyncio
    async def test_validate_rejects_invalid_base64(self, test_client):
        response = await test_client.post(
            "/api/v1/validate",
            json={"DocScript": [{"base64script": ["not base64 at all!"]}], "prompt": "Summarize"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_json_body_over_limit(self, test_client, monkeypatch, text_payload):
        monkeypatch.setattr(settings, "max_body_size", 50)

        response = await test_client.post(
            "/api/v1/process-document",
            json={"DocScript": [{"base64script": [text_payload]}], "prompt": "Summarize"},
        )
        assert response.status_code == 413

    @pytest.mark.asyncio
    async def test_chunked_json_body_over_limit(self, test_client, monkeypatch, fake_llm, text_payload):
        """A chunked upload declares no Content-Length; the received bytes are counted."""
        monkeypatch.setattr(settings, "max_body_size", 2048)
        body = json.dumps(
            {"DocScript": [{"base64script": [text_payload] * 60}], "prompt": "Summarize"}
        ).encode()
        assert len(body) > 2048

        response = await test_client.post(
            "/api/v1/validate",
            content=_chunked(body),
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 413
        error = response.json()["error"]
        assert error["code"] == "PAYLOAD_TOO_LARGE"
        assert error["details"]["max_size_bytes"] == 2048
        assert fake_llm.messages == []

    @pytest.mark.asyncio
    async def test_chunked_json_body_within_limit(self, test_client, text_payload):
        """The body read for the size check is the one FastAPI validates."""
        body = json.dumps(
            {"DocScript": [{"base64script": [text_payload]}], "prompt": "Summarize"}
        ).encode()

        response = await test_client.post(
            "/api/v1/validate",
            content=_chunked(body),
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "valid"
