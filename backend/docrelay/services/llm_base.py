"""
DocRelay Backend - Abstract LLM Service Interface
===================================================

What:  Abstract base class for the completion collaborator, plus the circuit
       breaker and retry policy shared by every provider.
Why:   The pipeline asks for "a completion of this text under this prompt" and
       must not care whether Gemini, OpenAI or Anthropic answers it.
How:   Concrete implementations inherit from LLMService and implement
       _generate(). complete() wraps it with the circuit breaker, tenacity
       retry and error translation into CompletionFailedError.
Who:   Called by DocumentPipeline during the `complete` stage.
When:  After text extraction, as the last stage of every processing flow.

Error Handling Chain:
    circuit OPEN                  → CircuitBreakerOpenError (503), no call made
    provider raises               → tenacity retries up to RETRY_MAX_ATTEMPTS
    all attempts fail             → record failure, CompletionFailedError (500)
    threshold consecutive failures → circuit OPEN for CB_RECOVERY_TIMEOUT seconds
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from docrelay.config import settings
from docrelay.exceptions import CircuitBreakerOpenError, CompletionFailedError
from docrelay.models.envelope import CompletionResult

logger = logging.getLogger(__name__)


def build_user_message(prompt: str, text: str) -> str:
    """The single user turn sent to every provider."""
    return f"{prompt}\n\nDocument content:\n{text}"


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Implements the circuit breaker pattern to prevent cascade failures.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow ONE request through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Thread Safety:
        Not thread-safe. Each uvicorn worker process keeps its own breaker;
        requests inside one process run on a single event loop.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Check if a request is allowed through the circuit breaker.

        Raises:
            CircuitBreakerOpenError if circuit is OPEN and recovery timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker transitioning to HALF_OPEN after %.1fs",
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = max(1, int(self.recovery_timeout - elapsed))
            raise CircuitBreakerOpenError(recovery_time=remaining)

        # HALF_OPEN: allow the test request through
        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (service recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# LLM Service Base
# ══════════════════════════════════════════════════════════════════════════

class LLMService(ABC):
    """
    Abstract completion collaborator.

    Contract:
        - complete() returns a CompletionResult or raises CompletionFailedError
          (CircuitBreakerOpenError when the circuit is open)
        - Provider SDK exceptions never escape complete()
        - Subclasses only translate one request/response pair in _generate()

    Implementations:
        - GeminiService:    google-generativeai
        - OpenAIService:    openai async SDK (also OpenAI-compatible servers)
        - AnthropicService: anthropic async SDK
    """

    provider_name: str = ""

    def __init__(
        self,
        model_name: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout: Optional[int] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.model_name = model_name
        self.system_prompt = system_prompt if system_prompt is not None else settings.system_prompt
        self.max_tokens = max_tokens if max_tokens is not None else settings.completion_max_tokens
        self.temperature = (
            temperature if temperature is not None else settings.completion_temperature
        )
        self.timeout = timeout if timeout is not None else settings.completion_timeout
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    async def complete(self, text: str, prompt: str, request_id: str = "") -> CompletionResult:
        """
        Ask the provider to answer `prompt` about the document `text`.

        Flow:
            1. Check circuit breaker → may raise CircuitBreakerOpenError
            2. Call provider with retry logic
            3. Record success/failure in circuit breaker

        Raises:
            CircuitBreakerOpenError: Circuit is open (too many recent failures)
            CompletionFailedError: Provider failed after all attempts
        """
        self.circuit_breaker.can_execute()

        logger.info(
            "[%s] Requesting %s completion: model=%s prompt=%d chars text=%d chars",
            request_id,
            self.provider_name,
            self.model_name,
            len(prompt),
            len(text),
        )

        try:
            result = await self._call_with_retry(build_user_message(prompt, text), request_id)
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] %s completion failed: %s",
                request_id,
                self.provider_name,
                str(e),
                exc_info=True,
            )
            raise CompletionFailedError(
                message=f"AI processing failed: {e}",
                context={
                    "provider": self.provider_name,
                    "model": self.model_name,
                    "error_type": type(e).__name__,
                },
            )

        self.circuit_breaker.record_success()
        return result

    @retry(
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _call_with_retry(self, message: str, request_id: str) -> CompletionResult:
        """
        Makes the provider call with retry decoration.

        Kept apart from complete() so the circuit breaker check is not retried.
        """
        start_time = time.perf_counter()
        try:
            result = await self._generate(message, request_id)
        except Exception as e:
            logger.warning(
                "[%s] %s API call failed after %.0fms: %s",
                request_id,
                self.provider_name,
                (time.perf_counter() - start_time) * 1000,
                str(e),
            )
            raise

        logger.info(
            "[%s] %s completion finished in %.0fms, %d chars, tokens=%s",
            request_id,
            self.provider_name,
            (time.perf_counter() - start_time) * 1000,
            len(result.content),
            result.tokens_used,
        )
        return result

    @abstractmethod
    async def _generate(self, message: str, request_id: str) -> CompletionResult:
        """Send one user message to the provider and normalize its answer."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the provider is reachable and operational.

        Lightweight connectivity test that does not consume completion quota.
        Returns True if reachable, False otherwise. Never raises.
        """
        ...
