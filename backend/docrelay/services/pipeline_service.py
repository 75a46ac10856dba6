"""
DocRelay Backend - Document Pipeline (Orchestrator)
====================================================

What:  Runs parse → normalize → decompress → extract → complete for every
       processing endpoint and renders the result as one response envelope.
Why:   All input formats share the same decode and AI stages; only the
       parse step differs. Keeping failure handling in one place guarantees
       every endpoint reports errors identically.
How:   Each flow runs its stages through a StageTracker. The first stage
       failure short-circuits; it is caught here, tagged with its stage and
       elapsed time, logged, and returned as an error envelope. Nothing is
       retried.
Who:   Created per request by get_pipeline(); called by routes/process.py and
       routes/documents.py.

Orchestration Flow:
    ┌─────────┐   ┌───────────┐   ┌────────────┐   ┌─────────┐   ┌──────────┐
    │  parse  │──▶│ normalize │──▶│ decompress │──▶│ extract │──▶│ complete │
    └─────────┘   └───────────┘   └────────────┘   └─────────┘   └──────────┘
     envelope /     base64          gzip            TextExtractor   LLMService
     splitter /     policy
     DocScript

Failure Mapping:
    PipelineStageError       → its own code/status, stage from the exception
    other DocRelayError      → its own code/status, stage in progress
    unexpected in extract    → EXTRACTION_FAILED (500)
    unexpected in complete   → COMPLETION_FAILED (500)
    anything else            → PROCESSING_FAILED (500), stage in progress
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import Depends

from docrelay.config import settings
from docrelay.exceptions import (
    CompletionFailedError,
    DocRelayError,
    ExtractionFailedError,
    NoDataError,
    NoValidEntryError,
    PipelineStage,
)
from docrelay.models.envelope import (
    DEFAULT_FILENAME,
    DEFAULT_MIMETYPE,
    CompletionResult,
    ErrorRecord,
    ExtractedDocument,
    ParsedEntry,
    PipelineConfig,
)
from docrelay.schemas.document import (
    AIResponse,
    ConversionResponse,
    ConversionValidation,
    ConvertedDocScript,
    ConvertedPayload,
    DocumentInfo,
    ErrorDetail,
    ErrorResponse,
    ProcessSuccessResponse,
    PromptInfo,
    SourceInfo,
)
from docrelay.services.envelope_parser import parse_envelope
from docrelay.services.llm_base import LLMService
from docrelay.services.payload_decoder import decode_base64, decompress_gzip
from docrelay.services.prompt_splitter import split_prompt_and_data
from docrelay.services.providers import get_llm_service
from docrelay.services.response_parser import try_parse_json_content
from docrelay.services.text_extractor import TextExtractor, get_text_extractor

logger = logging.getLogger(__name__)

PROMPT_PREVIEW_LENGTH = 200


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def error_record_from(exc: DocRelayError, stage: Optional[PipelineStage]) -> ErrorRecord:
    return ErrorRecord(
        code=exc.code,
        message=exc.message,
        stage=exc.stage or stage,
        details=dict(exc.context),
    )


def render_error(
    record: ErrorRecord,
    request_id: str,
    processing_time_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """Error envelope body, shared with the global exception handlers."""
    fields: Dict[str, Any] = {
        "timestamp": utc_now(),
        "request_id": request_id,
        "error": ErrorDetail(
            code=record.code,
            message=record.message,
            stage=record.stage.value if record.stage else None,
            details=record.details,
        ),
    }
    if processing_time_ms is not None:
        fields["processing_time_ms"] = processing_time_ms
    return ErrorResponse(status="error", **fields).model_dump(
        mode="json", by_alias=True, exclude_unset=True
    )


def retry_after_headers(exc: DocRelayError) -> Dict[str, str]:
    retry_after = getattr(exc, "retry_after", None)
    return {"Retry-After": str(retry_after)} if retry_after else {}


@dataclass
class PipelineResult:
    """HTTP-ready outcome of one flow: status code, JSON body, extra headers."""

    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code < 400


@dataclass
class StageTracker:
    """Records which stage is running so unexpected errors can be tagged."""

    request_id: str
    start: float = field(default_factory=time.perf_counter)
    stage: Optional[PipelineStage] = None

    def enter(self, stage: PipelineStage) -> None:
        self.stage = stage
        logger.debug("[%s] Entering stage %s", self.request_id, stage.value)


class DocumentPipeline:
    """
    Orchestrates the decode pipeline and the two collaborators.

    The pipeline holds no request state; every flow builds its own
    StageTracker, so one instance may serve concurrent requests.
    """

    def __init__(
        self,
        config: PipelineConfig,
        extractor: TextExtractor,
        llm_service: LLMService,
    ):
        self.config = config
        self.extractor = extractor
        self.llm_service = llm_service

    # ── Public flows ──────────────────────────────────────────────────────

    async def process_envelope(
        self,
        raw: str,
        prompt: Optional[str] = None,
        request_id: str = "",
        parse_json: bool = False,
    ) -> PipelineResult:
        """
        Envelope-parser flow: `filename;mimetype;base64` record or bare blob.

        `prompt` is the override resolved by the HTTP layer; blank means the
        configured default prompt.
        """

        async def flow(tracker: StageTracker) -> Dict[str, Any]:
            tracker.enter(PipelineStage.PARSE)
            entry = parse_envelope(raw)
            logger.info(
                "[%s] Parsed envelope: filename=%s mimetype=%s payload=%d chars",
                request_id,
                entry.filename,
                entry.mimetype,
                len(entry.payload),
            )
            return await self._process_entry(
                tracker, entry, self._resolve_prompt(prompt), parse_json
            )

        return await self._run(flow, request_id)

    async def process_prompt_envelope(
        self,
        raw: str,
        request_id: str = "",
        parse_json: bool = False,
    ) -> PipelineResult:
        """
        Prompt/data splitter flow: the prompt travels inside the body.

        The payload may itself be a `;` record, which supplies filename and
        mimetype; otherwise it is treated as a bare PDF payload.
        """

        async def flow(tracker: StageTracker) -> Dict[str, Any]:
            tracker.enter(PipelineStage.PARSE)
            pair = split_prompt_and_data(raw, default_prompt=self.config.default_prompt)
            if not pair.payload:
                raise NoDataError(context={"input_length": len(raw)})

            try:
                entry = parse_envelope(pair.payload)
            except NoValidEntryError:
                entry = ParsedEntry(
                    filename=DEFAULT_FILENAME,
                    mimetype=DEFAULT_MIMETYPE,
                    payload=pair.payload,
                )

            prompt = self._resolve_prompt(pair.prompt)
            logger.info(
                "[%s] Split envelope: prompt=%d chars, filename=%s payload=%d chars",
                request_id,
                len(prompt),
                entry.filename,
                len(entry.payload),
            )
            return await self._process_entry(
                tracker,
                entry,
                prompt,
                parse_json,
                prompt_info=PromptInfo(
                    length=len(prompt),
                    preview=prompt[:PROMPT_PREVIEW_LENGTH],
                    lines=len(prompt.split("\n")),
                ),
            )

        return await self._run(flow, request_id)

    async def process_docscript(
        self,
        payload: str,
        prompt: str,
        request_id: str = "",
        parse_json: bool = False,
    ) -> PipelineResult:
        """JSON DocScript flow; the payload is always treated as a PDF."""

        async def flow(tracker: StageTracker) -> Dict[str, Any]:
            tracker.enter(PipelineStage.PARSE)
            entry = ParsedEntry(
                filename=DEFAULT_FILENAME,
                mimetype=DEFAULT_MIMETYPE,
                payload=payload,
            )
            return await self._process_entry(
                tracker, entry, self._resolve_prompt(prompt), parse_json
            )

        return await self._run(flow, request_id)

    async def convert_envelope(
        self,
        raw: str,
        prompt: Optional[str] = None,
        request_id: str = "",
    ) -> PipelineResult:
        """
        Re-express a text envelope as a DocScript JSON body.

        The payload is trial-decoded so the caller learns whether it would be
        accepted; a decode failure yields status "warning", not an error.
        Neither collaborator is called.
        """

        async def flow(tracker: StageTracker) -> Dict[str, Any]:
            tracker.enter(PipelineStage.PARSE)
            entry = parse_envelope(raw)

            base64_valid = False
            gzip_valid = False
            validation_error = None
            try:
                tracker.enter(PipelineStage.NORMALIZE)
                decoded = self._decode(entry.payload)
                base64_valid = True
                tracker.enter(PipelineStage.DECOMPRESS)
                await asyncio.to_thread(decompress_gzip, decoded)
                gzip_valid = True
            except DocRelayError as e:
                validation_error = e.message
                logger.warning(
                    "[%s] Converted payload does not decode (%s): %s",
                    request_id,
                    e.code,
                    e.message,
                )

            validation_fields: Dict[str, Any] = {
                "base64_valid": base64_valid,
                "gzip_valid": gzip_valid,
            }
            if validation_error is not None:
                validation_fields["error"] = validation_error

            return ConversionResponse(
                status="success" if gzip_valid else "warning",
                timestamp=utc_now(),
                request_id=request_id,
                source_info=self._source_info(entry),
                converted_payload=ConvertedPayload(
                    DocScript=[ConvertedDocScript(base64script=[entry.payload])],
                    prompt=self._resolve_prompt(prompt),
                ),
                validation=ConversionValidation(**validation_fields),
            ).model_dump(mode="json", by_alias=True, exclude_unset=True)

        return await self._run(flow, request_id)

    # ── Stages ────────────────────────────────────────────────────────────

    def _resolve_prompt(self, prompt: Optional[str]) -> str:
        if prompt is None or not prompt.strip():
            return self.config.default_prompt
        return prompt

    def _decode(self, payload: str) -> bytes:
        return decode_base64(
            payload,
            policy=self.config.base64_policy,
            min_length=self.config.min_base64_length,
        )

    @staticmethod
    def _source_info(entry: ParsedEntry) -> SourceInfo:
        return SourceInfo(
            filename=entry.filename,
            mimetype=entry.mimetype,
            original_base64_length=len(entry.payload),
        )

    async def _extract(
        self, content: bytes, mimetype: str, request_id: str
    ) -> ExtractedDocument:
        try:
            return await self.extractor.extract(content, mimetype, request_id)
        except DocRelayError:
            raise
        except Exception as e:
            raise ExtractionFailedError(
                message=f"Unable to extract text from document: {e}",
                context={"mimetype": mimetype, "error_type": type(e).__name__},
            )

    async def _complete(self, text: str, prompt: str, request_id: str) -> CompletionResult:
        try:
            return await self.llm_service.complete(text, prompt, request_id)
        except DocRelayError:
            raise
        except Exception as e:
            raise CompletionFailedError(
                message=f"AI processing failed: {e}",
                context={"error_type": type(e).__name__},
            )

    async def _process_entry(
        self,
        tracker: StageTracker,
        entry: ParsedEntry,
        prompt: str,
        parse_json: bool,
        prompt_info: Optional[PromptInfo] = None,
    ) -> Dict[str, Any]:
        request_id = tracker.request_id

        tracker.enter(PipelineStage.NORMALIZE)
        decoded = self._decode(entry.payload)

        tracker.enter(PipelineStage.DECOMPRESS)
        document_bytes = await asyncio.to_thread(decompress_gzip, decoded)

        tracker.enter(PipelineStage.EXTRACT)
        document = await self._extract(document_bytes, entry.mimetype, request_id)

        tracker.enter(PipelineStage.COMPLETE)
        completion = await self._complete(document.text, prompt, request_id)

        ai_fields: Dict[str, Any] = {
            "provider": completion.provider,
            "model": completion.model,
            "content": completion.content,
            "tokens_used": completion.tokens_used,
        }
        if parse_json:
            parsed, parse_error = try_parse_json_content(completion.content)
            ai_fields["parsed_content"] = parsed
            ai_fields["parse_error"] = parse_error
            if parse_error:
                logger.warning("[%s] Failed to parse AI response as JSON: %s", request_id, parse_error)

        response_fields: Dict[str, Any] = {
            "status": "success",
            "timestamp": utc_now(),
            "request_id": request_id,
            "source_info": self._source_info(entry),
            "document_info": DocumentInfo(
                size_bytes=len(document_bytes),
                extracted_text_length=len(document.text),
                pages=document.pages,
            ),
            "ai_response": AIResponse(**ai_fields),
            "processing_time_ms": elapsed_ms(tracker.start),
            "error": None,
        }
        if prompt_info is not None:
            response_fields["prompt_info"] = prompt_info

        logger.info(
            "[%s] Pipeline completed in %dms: %d bytes, %d chars extracted",
            request_id,
            response_fields["processing_time_ms"],
            len(document_bytes),
            len(document.text),
        )
        return ProcessSuccessResponse(**response_fields).model_dump(
            mode="json", by_alias=True, exclude_unset=True
        )

    # ── Failure boundary ──────────────────────────────────────────────────

    async def _run(
        self,
        flow: Callable[[StageTracker], Awaitable[Dict[str, Any]]],
        request_id: str,
    ) -> PipelineResult:
        tracker = StageTracker(request_id=request_id)
        try:
            body = await flow(tracker)
        except DocRelayError as e:
            return self._failure(e, tracker)
        except Exception as e:
            logger.error(
                "[%s] Unexpected error in stage %s: %s",
                request_id,
                tracker.stage.value if tracker.stage else "none",
                str(e),
                exc_info=True,
            )
            wrapped = DocRelayError(
                message="An unexpected error occurred while processing the document",
                context={"error_type": type(e).__name__},
            )
            return self._failure(wrapped, tracker)
        return PipelineResult(status_code=200, body=body)

    def _failure(self, exc: DocRelayError, tracker: StageTracker) -> PipelineResult:
        record = error_record_from(exc, tracker.stage)
        duration = elapsed_ms(tracker.start)
        log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            log_level,
            "[%s] Pipeline failed at stage %s after %dms: %s %s",
            tracker.request_id,
            record.stage.value if record.stage else "none",
            duration,
            record.code,
            record.message,
        )
        return PipelineResult(
            status_code=exc.status_code,
            body=render_error(record, tracker.request_id, processing_time_ms=duration),
            headers=retry_after_headers(exc),
        )


def get_pipeline(
    extractor: TextExtractor = Depends(get_text_extractor),
    llm_service: LLMService = Depends(get_llm_service),
) -> DocumentPipeline:
    """FastAPI dependency: a pipeline wired from the process settings."""
    return DocumentPipeline(
        config=settings.pipeline_config(),
        extractor=extractor,
        llm_service=llm_service,
    )
