"""
DocRelay Backend - Request ID Middleware
=========================================

What:  Assigns a correlation ID to each request and returns it in X-Request-ID.
Why:   Every log line and every response envelope of one request carries the
       same ID, so a client-reported failure can be found in the logs.
How:   Reuses the client's X-Request-ID when present, otherwise generates an
       8-character UUID prefix; stores it in a ContextVar and request.state.
When:  Outermost application middleware (runs before logging).
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def new_request_id() -> str:
    return str(uuid.uuid4())[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware that assigns a unique ID to each request for tracing."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get("X-Request-ID") or new_request_id()

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
