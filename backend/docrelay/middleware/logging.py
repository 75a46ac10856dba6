"""
DocRelay Backend - Request Logging Middleware
==============================================

What:  One access log line per HTTP request with status and duration.
Why:   Processing latency is dominated by the AI provider; per-request
       duration and status class make slow or failing providers visible.
How:   Measures wall time around call_next; the level follows the status
       class (5xx ERROR, 4xx WARNING, else INFO).
When:  Runs inside RequestIDMiddleware, so the request ID is available.

What we log vs what we DON'T log:
    ✅ Log: method, path, status, duration, declared body size, client IP, request ID
    ❌ Don't log: request body (documents and prompts may contain PII)
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from docrelay.middleware.request_id import request_id_var

logger = logging.getLogger("docrelay.access")

# Polled every few seconds by load balancers
_QUIET_PATHS = {"/health"}


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access line per request: method, path, status, duration, body size."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in _QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        rid = request_id_var.get("")
        body_size = request.headers.get("content-length", "-")
        client_ip = request.client.host if request.client else "unknown"
        logger.log(
            level_for_status(response.status_code),
            "[%s] %s %s -> %d in %.1fms (body=%s bytes, client=%s)",
            rid,
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            body_size,
            client_ip,
            extra={
                "request_id": rid,
                "status": response.status_code,
                "duration_ms": round(elapsed_ms, 2),
                "body_size": body_size,
            },
        )
        return response
