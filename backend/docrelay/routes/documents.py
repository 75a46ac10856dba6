"""
DocRelay Backend - JSON Document Routes
========================================

What:  Endpoints accepting the JSON `DocScript` request body.
How:   SizeLimitedRoute reads the body within MAX_BODY_SIZE (chunked uploads
       included) before FastAPI validates it against DocumentRequest (which also
       collapses hard-wrapped base64 and `;` triples); failures are rendered
       as INVALID_INPUT error envelopes by the global handler.

Route Inventory:
    POST /api/v1/process-document   decode, extract and complete the first payload
    POST /api/v1/validate           validation only, no processing
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from docrelay.dependencies import SizeLimitedRoute, get_request_id, parse_json_flag
from docrelay.schemas.document import (
    DocumentRequest,
    ErrorResponse,
    ProcessSuccessResponse,
    ValidationResponse,
)
from docrelay.services.pipeline_service import DocumentPipeline, get_pipeline, utc_now

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1",
    tags=["Documents"],
    route_class=SizeLimitedRoute,
)


@router.post(
    "/process-document",
    response_model=ProcessSuccessResponse,
    responses={
        400: {"description": "Invalid request or payload", "model": ErrorResponse},
        413: {"description": "Body exceeds MAX_BODY_SIZE", "model": ErrorResponse},
        500: {"description": "Extraction or AI processing failed", "model": ErrorResponse},
        503: {"description": "AI provider circuit open", "model": ErrorResponse},
    },
    summary="Process a gzip+base64 PDF sent as DocScript JSON",
)
async def process_document(
    request: Request,
    document: DocumentRequest,
    parse_json: bool = Depends(parse_json_flag),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> JSONResponse:
    request_id = get_request_id(request)
    logger.info(
        "[%s] Document request: %d DocScript entries, payload=%d chars",
        request_id,
        len(document.doc_script),
        len(document.payload),
    )

    result = await pipeline.process_docscript(
        document.payload,
        prompt=document.prompt,
        request_id=request_id,
        parse_json=parse_json,
    )
    return JSONResponse(
        status_code=result.status_code,
        content=result.body,
        headers=result.headers or None,
    )


@router.post(
    "/validate",
    response_model=ValidationResponse,
    responses={400: {"description": "Validation failed", "model": ErrorResponse}},
    summary="Validate a DocScript request without processing it",
)
async def validate_document(request: Request, document: DocumentRequest) -> ValidationResponse:
    return ValidationResponse(timestamp=utc_now(), request_id=get_request_id(request))
