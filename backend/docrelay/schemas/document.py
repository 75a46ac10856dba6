"""
DocRelay Backend - Pydantic Request/Response Schemas
=====================================================

What:  Pydantic models defining the API contract of the processing endpoints.
Why:   Strict input validation, automatic serialization, and OpenAPI doc generation.
How:   DocumentPipeline builds these models; routes serialize them with
       `model_dump(mode="json", by_alias=True, exclude_unset=True)`, so optional
       sections (prompt_info, parsed_content) only appear when the flow set them.
Who:   Used by the pipeline, the route handlers and the global exception handlers.

Envelope shapes:
    success: status, timestamp, request_id, source_info, [prompt_info],
             document_info, ai_response, processing_time_ms, error=null
    error:   status, timestamp, request_id, error{code, message, stage, details},
             [processing_time_ms]
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Padded base64 only; the JSON contract is stricter than the text envelopes
_BASE64_STRICT = re.compile(r"^(?:[A-Za-z0-9+/]{4})*(?:[A-Za-z0-9+/]{2}==|[A-Za-z0-9+/]{3}=)?$")


def preprocess_base64_script(value: str) -> str:
    """
    Collapse a hard-wrapped base64script entry into one line.

    When the joined value is a `filename;mimetype;base64` triple (exactly
    three `;` parts), only the base64 part is kept.
    """
    cleaned = "".join(line.strip() for line in value.split("\n"))
    parts = cleaned.split(";")
    if len(parts) == 3:
        return parts[2].strip()
    return cleaned


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class DocScriptEntry(BaseModel):
    """One DocScript item; only the first base64script entry is processed."""

    base64script: List[str] = Field(min_length=1, description="Gzip+base64 document payloads")

    @field_validator("base64script")
    @classmethod
    def validate_base64script(cls, v: List[str]) -> List[str]:
        processed = []
        for index, item in enumerate(v):
            cleaned = preprocess_base64_script(item)
            if not cleaned:
                raise ValueError(f"base64script[{index}] is empty")
            if not _BASE64_STRICT.match(cleaned):
                raise ValueError(f"base64script[{index}] must be a valid base64 string")
            processed.append(cleaned)
        return processed


class DocumentRequest(BaseModel):
    """
    What:  JSON body of POST /api/v1/process-document and /api/v1/validate.

    Example:
        {"DocScript": [{"base64script": ["H4sIAAAA..."]}], "prompt": "Summarize"}
    """

    model_config = ConfigDict(populate_by_name=True)

    doc_script: List[DocScriptEntry] = Field(alias="DocScript", min_length=1)
    prompt: str = Field(min_length=1, max_length=2000)

    @property
    def payload(self) -> str:
        return self.doc_script[0].base64script[0]


# ══════════════════════════════════════════════════════════════════════════
# Processing Envelope
# ══════════════════════════════════════════════════════════════════════════


class SourceInfo(BaseModel):
    filename: str
    mimetype: str
    original_base64_length: int = Field(description="Payload length before normalization")


class PromptInfo(BaseModel):
    """Summary of the prompt recovered by the prompt/data splitter."""

    length: int
    preview: str = Field(description="First 200 characters of the prompt")
    lines: int


class DocumentInfo(BaseModel):
    size_bytes: int = Field(description="Decompressed document size")
    extracted_text_length: int
    pages: Optional[int] = None


class AIResponse(BaseModel):
    provider: str
    model: str
    content: str
    tokens_used: Optional[int] = None
    parsed_content: Optional[Any] = Field(
        default=None,
        description="Present when parse_json=true and the content was valid JSON",
    )
    parse_error: Optional[str] = None


class ErrorDetail(BaseModel):
    code: str = Field(description="Machine-readable error code, e.g. MALFORMED_BASE64")
    message: str
    stage: Optional[str] = Field(default=None, description="Pipeline stage that failed")
    details: Dict[str, Any] = Field(default_factory=dict)


class ProcessSuccessResponse(BaseModel):
    status: Literal["success"] = "success"
    timestamp: datetime
    request_id: str
    source_info: SourceInfo
    prompt_info: Optional[PromptInfo] = None
    document_info: DocumentInfo
    ai_response: AIResponse
    processing_time_ms: int
    error: None = None


class ErrorResponse(BaseModel):
    """
    Standardized error envelope for every failure, pipeline or boundary.

    Example:
        {
            "status": "error",
            "timestamp": "2024-01-15T12:00:00Z",
            "request_id": "a1b2c3d4",
            "error": {
                "code": "INVALID_GZIP_HEADER",
                "message": "Invalid gzip header - expected 1f8b, got 2550",
                "stage": "decompress",
                "details": {"leading_bytes": "2550"}
            },
            "processing_time_ms": 3
        }
    """

    status: Literal["error"] = "error"
    timestamp: datetime
    request_id: str
    error: ErrorDetail
    processing_time_ms: Optional[int] = None


# ══════════════════════════════════════════════════════════════════════════
# Conversion & Validation
# ══════════════════════════════════════════════════════════════════════════


class ConvertedDocScript(BaseModel):
    base64script: List[str]


class ConvertedPayload(BaseModel):
    """A text envelope re-expressed as a process-document request body."""

    model_config = ConfigDict(populate_by_name=True)

    doc_script: List[ConvertedDocScript] = Field(alias="DocScript")
    prompt: str


class ConversionValidation(BaseModel):
    base64_valid: bool
    gzip_valid: bool
    error: Optional[str] = None


class ConversionResponse(BaseModel):
    status: Literal["success", "warning"]
    timestamp: datetime
    request_id: str
    source_info: SourceInfo
    converted_payload: ConvertedPayload
    validation: ConversionValidation


class ValidationResponse(BaseModel):
    status: Literal["valid"] = "valid"
    timestamp: datetime
    request_id: str
    message: str = "Input validation passed"


# ══════════════════════════════════════════════════════════════════════════
# Service Status
# ══════════════════════════════════════════════════════════════════════════


class HealthResponse(BaseModel):
    """
    What:  Liveness report for load balancers and monitoring.

    status:  healthy | degraded (provider unreachable or circuit open)
    """

    status: str
    version: str
    provider: str
    provider_status: str = Field(description="available, unavailable or circuit_open")
    uptime_seconds: float


class StatusConfiguration(BaseModel):
    default_provider: str
    model: str
    max_body_size_mb: int
    base64_policy: str
    retry_max_attempts: int


class StatusResponse(BaseModel):
    status: Literal["operational"] = "operational"
    timestamp: datetime
    services: Dict[str, bool] = Field(description="Whether each provider has an API key")
    configuration: StatusConfiguration
