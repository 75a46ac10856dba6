"""
DocRelay Backend - FastAPI Application Factory
===============================================

What:  Builds the DocRelay ASGI app: logging, middleware, error handlers, routers.
Why:   Every endpoint must answer in the same envelope shape, including
       failures that never reach the pipeline (body limits, bad JSON).
How:   create_app() wires the pieces; the module-level `app` is what uvicorn serves.
Who:   Called by uvicorn to start the server (uvicorn docrelay.main:app).

Application Architecture:
    ┌───────────────────────────────────────────────────────────┐
    │                        FastAPI App                        │
    │                                                           │
    │  Middleware Chain:                                        │
    │  ┌──────────┐ ┌─────────┐ ┌──────┐ ┌──────┐               │
    │  │  Req ID  │→│ Logging │→│ GZip │→│ CORS │               │
    │  └──────────┘ └─────────┘ └──────┘ └──────┘               │
    │                                                           │
    │  Routes:                                                  │
    │  ┌────────────────────┐ ┌──────────────────┐ ┌─────────┐  │
    │  │ text envelopes     │ │ DocScript JSON   │ │ health  │  │
    │  └────────────────────┘ └──────────────────┘ └─────────┘  │
    │                                                           │
    │  Exception Handlers (all render the error envelope):      │
    │  DocRelayError → own status │ request validation → 400 │  │
    │  anything else → 500                                      │
    └───────────────────────────────────────────────────────────┘
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from docrelay import __version__
from docrelay.config import settings
from docrelay.exceptions import DocRelayError, ValidationError
from docrelay.middleware.logging import RequestLoggingMiddleware
from docrelay.middleware.request_id import RequestIDMiddleware, request_id_var
from docrelay.models.envelope import ErrorRecord
from docrelay.routes import documents, health, process
from docrelay.services.pipeline_service import (
    error_record_from,
    render_error,
    retry_after_headers,
)

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Services prefix their messages with [request_id] for correlation.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party libraries log every HTTP call at INFO/DEBUG
    for noisy in ("uvicorn.access", "httpcore", "httpx", "openai", "anthropic", "pypdf"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("%s Backend %s starting up...", settings.app_name, __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: /health and /api/v1/status still report the problem
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    logger.info(
        "AI provider: %s (model=%s), base64 policy: %s, max body: %d bytes",
        settings.ai_provider,
        settings.active_model,
        settings.base64_policy.value,
        settings.max_body_size,
    )
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("%s Backend shutting down...", settings.app_name)


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _request_id(request: Request) -> str:
    return request_id_var.get("") or getattr(request.state, "request_id", "")


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers rendering the error envelope.

    Handler hierarchy:
        DocRelayError           → exc.status_code (boundary: 400 / 413)
        RequestValidationError  → 400 INVALID_INPUT with per-field details
        Exception (fallback)    → 500 PROCESSING_FAILED, details logged only
    """

    @app.exception_handler(DocRelayError)
    async def handle_docrelay_error(request: Request, exc: DocRelayError):
        rid = _request_id(request)
        log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(log_level, "[%s] %s: %s", rid, exc.code, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=render_error(error_record_from(exc, exc.stage), rid),
            headers=retry_after_headers(exc) or None,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        rid = _request_id(request)
        errors = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
                "message": error.get("msg", ""),
            }
            for error in exc.errors()
        ]
        logger.warning("[%s] Request validation failed: %s", rid, errors)
        boundary_error = ValidationError(
            message="Request validation failed",
            context={"errors": errors},
        )
        return JSONResponse(
            status_code=boundary_error.status_code,
            content=render_error(error_record_from(boundary_error, None), rid),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all; the stack trace is logged server-side only."""
        rid = _request_id(request)
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        record = ErrorRecord(
            code=DocRelayError.code,
            message="An unexpected error occurred. Please try again or contact support.",
            stage=None,
        )
        return JSONResponse(status_code=500, content=render_error(record, rid))


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="DocRelay API",
        description=(
            "Decodes gzip+base64 documents sent as tolerant text envelopes or "
            "DocScript JSON, extracts their text and forwards it with a prompt "
            "to the configured AI provider."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in REVERSE order of addition:
    # RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(process.router)
    app.include_router(documents.router)
    app.include_router(health.router)

    return app


app = create_app()
