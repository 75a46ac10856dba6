"""
DocRelay Backend - Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Provides reusable test infrastructure (payload builders, fake AI
       provider, pipeline, API client) so no test touches the network.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped):
    ├── encode_document: bytes → gzip+base64 payload string
    ├── build_pdf: text → minimal single-page PDF bytes
    ├── text_payload: gzip+base64 of a short plain-text document
    ├── fake_llm: FakeLLMService recording every user message it receives
    ├── stub_extractor: AsyncMock extractor returning fixed text
    ├── pipeline: DocumentPipeline(default config, real extractor, fake_llm)
    └── test_client: HTTPX AsyncClient with get_llm_service overridden
"""

import base64
import gzip
import os

# Override settings for testing BEFORE any docrelay imports
os.environ["AI_PROVIDER"] = "gemini"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RETRY_MAX_ATTEMPTS"] = "1"

from typing import List, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from docrelay.models.envelope import CompletionResult, ExtractedDocument, PipelineConfig
from docrelay.services.llm_base import CircuitBreaker, LLMService
from docrelay.services.pipeline_service import DocumentPipeline
from docrelay.services.text_extractor import TextExtractor

SAMPLE_TEXT = b"Quarterly revenue grew 12% while operating costs stayed flat."


class FakeLLMService(LLMService):
    """LLMService that answers locally; records the user messages it receives."""

    provider_name = "fake"

    def __init__(self, content: str = "Analysis complete", error: Optional[Exception] = None):
        super().__init__(
            model_name="fake-model",
            system_prompt="You are a test assistant.",
            circuit_breaker=CircuitBreaker(failure_threshold=2, recovery_timeout=60),
        )
        self.content = content
        self.error = error
        self.messages: List[str] = []

    async def _generate(self, message: str, request_id: str) -> CompletionResult:
        self.messages.append(message)
        if self.error is not None:
            raise self.error
        return CompletionResult(
            provider=self.provider_name,
            model=self.model_name,
            content=self.content,
            tokens_used=42,
        )

    async def health_check(self) -> bool:
        return True


def _encode_document(content: bytes) -> str:
    return base64.b64encode(gzip.compress(content)).decode("ascii")


def _build_pdf(text: str) -> bytes:
    """Single-page PDF with one line of Helvetica text and a valid xref table."""
    content = f"BT /F1 24 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        (
            b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>"
        ),
        b"<< /Length %d >>\nstream\n" % len(content) + content + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    out = b"%PDF-1.4\n"
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_position = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\n" % (len(objects) + 1)
    out += b"startxref\n%d\n%%%%EOF\n" % xref_position
    return out


@pytest.fixture
def encode_document():
    """Returns a function turning raw document bytes into a gzip+base64 payload."""
    return _encode_document


@pytest.fixture
def build_pdf():
    return _build_pdf


@pytest.fixture
def text_payload():
    return _encode_document(SAMPLE_TEXT)


@pytest.fixture
def sample_text():
    return SAMPLE_TEXT.decode("utf-8")


@pytest.fixture
def fake_llm():
    return FakeLLMService()


@pytest.fixture
def stub_extractor():
    """
    Extractor stand-in for flows whose payload is labelled as PDF.

    Usage:
        pipeline = DocumentPipeline(PipelineConfig(), stub_extractor, fake_llm)
    """
    extractor = AsyncMock()
    extractor.extract = AsyncMock(
        return_value=ExtractedDocument(text="Extracted PDF text", pages=2)
    )
    return extractor


@pytest.fixture
def pipeline(fake_llm):
    return DocumentPipeline(
        config=PipelineConfig(),
        extractor=TextExtractor(),
        llm_service=fake_llm,
    )


@pytest_asyncio.fixture
async def test_client(fake_llm):
    """
    Provides an async HTTP test client for endpoint testing.

    The completion provider is replaced by `fake_llm`; tests that need a
    different extractor add their own dependency override.
    """
    from docrelay.main import app
    from docrelay.services.providers import get_llm_service

    app.dependency_overrides[get_llm_service] = lambda: fake_llm
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
