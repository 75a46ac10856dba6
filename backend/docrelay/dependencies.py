"""
DocRelay Backend - Shared Route Dependencies
=============================================

What:  FastAPI dependencies used by more than one router: body size guard,
       raw text body reader, size-limited route class for JSON bodies,
       request id, and the parse_json flag.
Why:   The body size limit must be enforced before the pipeline sees any
       data, identically for text and JSON endpoints.
How:   Content-Length is checked first; the body is then streamed and the
       limit re-checked against the bytes actually received. Text routes do
       this in read_text_body, JSON routes through SizeLimitedRoute.
"""

import logging
from typing import Any, Callable, Coroutine, Optional

from fastapi import Query, Request, Response
from fastapi.routing import APIRoute

from docrelay.config import settings
from docrelay.exceptions import PayloadTooLargeError, ValidationError
from docrelay.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

TEXT_BODY_OPENAPI = {
    "requestBody": {
        "required": True,
        "content": {"text/plain": {"schema": {"type": "string"}}},
    }
}


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "") or request_id_var.get("")


def enforce_content_length(content_length: Optional[str]) -> None:
    """Reject requests whose declared size exceeds MAX_BODY_SIZE."""
    if content_length and content_length.isdigit():
        declared = int(content_length)
        if declared > settings.max_body_size:
            raise PayloadTooLargeError(size=declared, limit=settings.max_body_size)


async def read_body_within_limit(request: Request) -> bytes:
    """
    Read the whole body, failing as soon as it exceeds MAX_BODY_SIZE.

    Content-Length is checked first; chunked uploads carry none, so the
    running total of received bytes is checked as well.
    """
    enforce_content_length(request.headers.get("content-length"))

    limit = settings.max_body_size
    received = 0
    chunks = []
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise PayloadTooLargeError(size=received, limit=limit)
        chunks.append(chunk)
    return b"".join(chunks)


class SizeLimitedRequest(Request):
    """Request whose body() is read within MAX_BODY_SIZE and then cached."""

    async def body(self) -> bytes:
        if not hasattr(self, "_body"):
            self._body = await read_body_within_limit(self)
        return self._body


class SizeLimitedRoute(APIRoute):
    """
    Route class for endpoints whose body FastAPI parses itself (JSON).

    The body is read before the endpoint's own parsing starts, so an
    oversized upload is answered with 413 instead of a body parsing error.
    """

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        original_route_handler = super().get_route_handler()

        async def size_limited_route_handler(request: Request) -> Response:
            request = SizeLimitedRequest(request.scope, request.receive)
            await request.body()
            return await original_route_handler(request)

        return size_limited_route_handler


async def read_text_body(request: Request) -> str:
    """
    Read the request body as UTF-8 text within the size limit.

    Raises:
        PayloadTooLargeError: declared or actual size exceeds MAX_BODY_SIZE.
        ValidationError: body is empty, whitespace only, or not UTF-8.
    """
    body = await read_body_within_limit(request)
    if not body.strip():
        raise ValidationError(message="Expected raw text data", field="body")

    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError(
            message="Request body must be UTF-8 text",
            field="body",
            context={"position": e.start},
        )


def parse_json_flag(
    parse_json: bool = Query(
        default=False,
        description="Parse the AI answer as JSON into ai_response.parsed_content",
    ),
    parse_json_camel: bool = Query(default=False, alias="parseJson", include_in_schema=False),
) -> bool:
    return parse_json or parse_json_camel
