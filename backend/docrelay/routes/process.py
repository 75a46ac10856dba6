"""
DocRelay Backend - Text Envelope Routes
========================================

What:  Endpoints accepting a raw text/plain envelope.
Why:   Low-code clients (PowerShell, RPA tools) cannot build JSON reliably but
       can post a hard-wrapped `filename;mimetype;base64` text blob.
How:   Read the body within the size limit, hand it to DocumentPipeline,
       return whatever envelope and status the pipeline produced.

Route Inventory:
    POST /api/v1/process-multiline-enhanced   envelope parser flow
                                              prompt: ?prompt → X-Prompt → default
    POST /api/v1/process-multiline            prompt/data splitter flow
                                              prompt travels inside the body
    POST /api/v1/convert-multiline-to-json    envelope → DocScript JSON + decode check
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse

from docrelay.dependencies import (
    TEXT_BODY_OPENAPI,
    get_request_id,
    parse_json_flag,
    read_text_body,
)
from docrelay.schemas.document import ConversionResponse, ErrorResponse, ProcessSuccessResponse
from docrelay.services.pipeline_service import DocumentPipeline, PipelineResult, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Processing"])

_ERROR_RESPONSES = {
    400: {"description": "Malformed envelope or payload", "model": ErrorResponse},
    413: {"description": "Body exceeds MAX_BODY_SIZE", "model": ErrorResponse},
    500: {"description": "Extraction or AI processing failed", "model": ErrorResponse},
    503: {"description": "AI provider circuit open", "model": ErrorResponse},
}


def _to_response(result: PipelineResult) -> JSONResponse:
    return JSONResponse(
        status_code=result.status_code,
        content=result.body,
        headers=result.headers or None,
    )


def _resolve_prompt(query_prompt: Optional[str], header_prompt: Optional[str]) -> Optional[str]:
    # Query parameter wins over the header; None lets the pipeline default apply
    return query_prompt or header_prompt or None


@router.post(
    "/process-multiline-enhanced",
    response_model=ProcessSuccessResponse,
    responses=_ERROR_RESPONSES,
    summary="Process a filename;mimetype;base64 text envelope",
    openapi_extra=TEXT_BODY_OPENAPI,
)
async def process_multiline_enhanced(
    request: Request,
    prompt: Optional[str] = Query(default=None, max_length=2000),
    x_prompt: Optional[str] = Header(default=None, alias="X-Prompt"),
    parse_json: bool = Depends(parse_json_flag),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> JSONResponse:
    raw = await read_text_body(request)
    request_id = get_request_id(request)
    logger.info("[%s] Enhanced multiline request: %d chars", request_id, len(raw))

    result = await pipeline.process_envelope(
        raw,
        prompt=_resolve_prompt(prompt, x_prompt),
        request_id=request_id,
        parse_json=parse_json,
    )
    return _to_response(result)


@router.post(
    "/process-multiline",
    response_model=ProcessSuccessResponse,
    responses=_ERROR_RESPONSES,
    summary="Process a text envelope carrying its own prompt",
    description=(
        "The body holds a prompt and a payload, marked by ---PROMPT-START--- / "
        "---DATA-START--- blocks, `prompt-multiline:`, `prompt:` or `data:` "
        "prefixes, or an unprefixed `;` record / long base64 line."
    ),
    openapi_extra=TEXT_BODY_OPENAPI,
)
async def process_multiline(
    request: Request,
    parse_json: bool = Depends(parse_json_flag),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> JSONResponse:
    raw = await read_text_body(request)
    request_id = get_request_id(request)
    logger.info("[%s] Multiline request: %d chars", request_id, len(raw))

    result = await pipeline.process_prompt_envelope(
        raw,
        request_id=request_id,
        parse_json=parse_json,
    )
    return _to_response(result)


@router.post(
    "/convert-multiline-to-json",
    response_model=ConversionResponse,
    responses={
        400: _ERROR_RESPONSES[400],
        413: _ERROR_RESPONSES[413],
    },
    summary="Convert a text envelope to a process-document JSON body",
    openapi_extra=TEXT_BODY_OPENAPI,
)
async def convert_multiline_to_json(
    request: Request,
    prompt: Optional[str] = Query(default=None, max_length=2000),
    x_prompt: Optional[str] = Header(default=None, alias="X-Prompt"),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> JSONResponse:
    raw = await read_text_body(request)
    request_id = get_request_id(request)
    logger.info("[%s] Conversion request: %d chars", request_id, len(raw))

    result = await pipeline.convert_envelope(
        raw,
        prompt=_resolve_prompt(prompt, x_prompt),
        request_id=request_id,
    )
    return _to_response(result)
