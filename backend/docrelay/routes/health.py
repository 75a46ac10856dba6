"""
DocRelay Backend - Health & Status Routes
==========================================

What:  Liveness check and configuration summary.
Why:   Load balancers need a cheap health signal; operators need to see which
       provider and limits a running instance uses.
How:   /health asks the selected provider for a lightweight health check
       (skipped while its circuit is open); /api/v1/status reads settings only.

Status levels:
    - healthy:   provider reachable (HTTP 200)
    - degraded:  provider unreachable or circuit open (HTTP 200, flag for monitoring)
"""

import logging
import time

from fastapi import APIRouter, Depends

from docrelay import __version__
from docrelay.config import SUPPORTED_PROVIDERS, settings
from docrelay.schemas.document import HealthResponse, StatusConfiguration, StatusResponse
from docrelay.services.llm_base import CircuitBreaker, LLMService
from docrelay.services.pipeline_service import utc_now
from docrelay.services.providers import get_llm_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(llm_service: LLMService = Depends(get_llm_service)) -> HealthResponse:
    provider_status = "available"
    overall = "healthy"

    if llm_service.circuit_breaker.state == CircuitBreaker.OPEN:
        provider_status = "circuit_open"
        overall = "degraded"
    elif not await llm_service.health_check():
        provider_status = "unavailable"
        overall = "degraded"
        logger.warning("Health check: %s unreachable", llm_service.provider_name)

    return HealthResponse(
        status=overall,
        version=__version__,
        provider=llm_service.provider_name,
        provider_status=provider_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )


@router.get(
    "/api/v1/status",
    response_model=StatusResponse,
    summary="Configured providers and limits",
)
async def service_status() -> StatusResponse:
    return StatusResponse(
        timestamp=utc_now(),
        services={provider: settings.provider_configured(provider) for provider in SUPPORTED_PROVIDERS},
        configuration=StatusConfiguration(
            default_provider=settings.ai_provider,
            model=settings.active_model,
            max_body_size_mb=settings.max_body_size // (1024 * 1024),
            base64_policy=settings.base64_policy.value,
            retry_max_attempts=settings.retry_max_attempts,
        ),
    )
