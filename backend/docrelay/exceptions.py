"""
DocRelay Backend - Exception Hierarchy
=======================================

What:  Application-specific exceptions for every pipeline stage and for the
       HTTP boundary.
Why:   Each failure carries a machine-readable code, the pipeline stage it
       came from and its HTTP status, so the orchestrator and the global
       handlers can render one uniform error envelope.
How:   Each exception stores a message and an optional context dict. The
       orchestrator converts stage errors into error envelopes; handlers in
       main.py render boundary errors in the same shape.
Who:   Raised by the decoder, the parsers, the collaborators and the routes.

Exception Hierarchy:
    DocRelayError (base)                         → 500 PROCESSING_FAILED
    ├── ValidationError                          → 400 INVALID_INPUT
    ├── PayloadTooLargeError                     → 413 PAYLOAD_TOO_LARGE
    └── PipelineStageError
        ├── NoValidEntryError        (parse)      → 400 NO_VALID_ENTRY
        ├── NoDataError              (parse)      → 400 NO_DATA
        ├── MalformedBase64Error     (normalize)  → 400 MALFORMED_BASE64
        ├── InvalidGzipHeaderError   (decompress) → 400 INVALID_GZIP_HEADER
        ├── TruncatedGzipStreamError (decompress) → 400 TRUNCATED_GZIP_STREAM
        ├── CorruptGzipStreamError   (decompress) → 400 CORRUPT_GZIP_STREAM
        ├── ExtractionFailedError    (extract)    → 500 EXTRACTION_FAILED
        └── CompletionFailedError    (complete)   → 500 COMPLETION_FAILED
            └── CircuitBreakerOpenError           → 503 COMPLETION_UNAVAILABLE

400-class codes are caller-fixable input problems. 500-class codes are
internal or provider failures, distinguishable only by `code`.
"""

from enum import Enum
from typing import Any, Dict, Optional


class PipelineStage(str, Enum):
    """Pipeline stage a failure originated from."""

    PARSE = "parse"
    NORMALIZE = "normalize"
    DECOMPRESS = "decompress"
    EXTRACT = "extract"
    COMPLETE = "complete"


class DocRelayError(Exception):
    """
    Base exception for all DocRelay application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional detail returned as `error.details`
        code:     Machine-readable error code
        status_code: HTTP status used when the error reaches the boundary
    """

    code = "PROCESSING_FAILED"
    status_code = 500
    stage: Optional[PipelineStage] = None

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(DocRelayError):
    """
    Raised when the request body itself is unusable.

    When:    Empty body, body that is not text.
    HTTP:    400 Bad Request
    """

    code = "INVALID_INPUT"
    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class PayloadTooLargeError(DocRelayError):
    """
    Raised by the HTTP boundary when a request body exceeds MAX_BODY_SIZE.

    HTTP:    413 Payload Too Large
    """

    code = "PAYLOAD_TOO_LARGE"
    status_code = 413

    def __init__(self, size: int, limit: int):
        limit_mb = limit / (1024 * 1024)
        super().__init__(
            message=f"Request body exceeds maximum of {limit_mb:.0f}MB.",
            context={"size_bytes": size, "max_size_bytes": limit},
        )


class PipelineStageError(DocRelayError):
    """
    Base for failures raised inside one stage of the decode pipeline.

    The orchestrator catches these at its boundary and turns them into an
    error envelope; they never escape as unhandled faults.
    """


# ── Parse stage ───────────────────────────────────────────────────────────


class NoValidEntryError(PipelineStageError):
    """No `filename;mimetype;base64` record and no bare base64 blob found."""

    code = "NO_VALID_ENTRY"
    status_code = 400
    stage = PipelineStage.PARSE

    def __init__(
        self,
        message: str = (
            "No valid data found in input. "
            "Expected format: filename;mimetype;base64data"
        ),
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NoDataError(PipelineStageError):
    """The prompt/data splitter found a prompt but no payload."""

    code = "NO_DATA"
    status_code = 400
    stage = PipelineStage.PARSE

    def __init__(
        self,
        message: str = "No base64 data found in input",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


# ── Normalize stage ───────────────────────────────────────────────────────


class MalformedBase64Error(PipelineStageError):
    """
    Raised when the payload cannot be turned into valid base64 bytes.

    When:    Too short after cleanup, invalid characters under the strict
             policy, or the decoder rejects the string.
    """

    code = "MALFORMED_BASE64"
    status_code = 400
    stage = PipelineStage.NORMALIZE


# ── Decompress stage ──────────────────────────────────────────────────────


class InvalidGzipHeaderError(PipelineStageError):
    """Decoded bytes do not start with the gzip magic number 1f 8b."""

    code = "INVALID_GZIP_HEADER"
    status_code = 400
    stage = PipelineStage.DECOMPRESS

    def __init__(self, leading_bytes: bytes):
        actual = leading_bytes.hex() if len(leading_bytes) >= 2 else "buffer too short"
        super().__init__(
            message=f"Invalid gzip header - expected 1f8b, got {actual}",
            context={"leading_bytes": leading_bytes.hex()},
        )


class TruncatedGzipStreamError(PipelineStageError):
    """Inflate hit the end of input before the end-of-stream marker."""

    code = "TRUNCATED_GZIP_STREAM"
    status_code = 400
    stage = PipelineStage.DECOMPRESS

    def __init__(
        self,
        message: str = (
            "Incomplete gzip data - truncated file or corruption detected. "
            "Try re-uploading the complete file."
        ),
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class CorruptGzipStreamError(PipelineStageError):
    """Checksum mismatch, corrupt deflate data, or any other inflate error."""

    code = "CORRUPT_GZIP_STREAM"
    status_code = 400
    stage = PipelineStage.DECOMPRESS


# ── Collaborator stages ───────────────────────────────────────────────────


class ExtractionFailedError(PipelineStageError):
    """
    Raised when the decompressed document yields no usable text.

    HTTP:    500 Internal Server Error
    """

    code = "EXTRACTION_FAILED"
    status_code = 500
    stage = PipelineStage.EXTRACT


class CompletionFailedError(PipelineStageError):
    """
    Raised when the LLM provider call fails.

    Nothing is retried beyond the configured attempts; clients retry
    transient provider failures themselves, guided by `retry_after`.
    """

    code = "COMPLETION_FAILED"
    status_code = 500
    stage = PipelineStage.COMPLETE

    def __init__(
        self,
        message: str = "AI processing failed",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(CompletionFailedError):
    """
    Raised when the provider circuit breaker is OPEN.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for M seconds)
        → After M seconds → HALF-OPEN (allow one test call)
        → Test succeeds → CLOSED; test fails → OPEN again
    """

    code = "COMPLETION_UNAVAILABLE"
    status_code = 503

    def __init__(self, recovery_time: int = 60):
        super().__init__(
            message=(
                "AI service is temporarily unavailable due to repeated failures. "
                f"The service will automatically retry in approximately {recovery_time} seconds."
            ),
            retry_after=recovery_time,
            context={"recovery_time": recovery_time},
        )
        self.recovery_time = recovery_time
