"""
DocRelay Backend - Google Gemini Service Implementation
========================================================

What:  Completion collaborator backed by the Google Gemini API.
Why:   Gemini offers a free tier and long context windows, which suits whole
       extracted documents. It is the default AI_PROVIDER.
How:   The system prompt goes into `system_instruction`; the prompt plus the
       document text is sent as one user turn via generate_content_async.
       Retry, circuit breaker and error translation live in LLMService.
Who:   Created once per process by get_llm_service() when AI_PROVIDER=gemini.
"""

import logging
from typing import Optional

import google.generativeai as genai

from docrelay.config import settings
from docrelay.models.envelope import CompletionResult
from docrelay.services.llm_base import LLMService

logger = logging.getLogger(__name__)


class GeminiService(LLMService):
    """Google Gemini implementation of the completion collaborator."""

    provider_name = "gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(model_name or settings.gemini_model, **kwargs)

        # The SDK keeps auth in module-level state
        api_key = api_key if api_key is not None else settings.gemini_api_key
        if api_key and api_key != "your_gemini_api_key_here":
            genai.configure(api_key=api_key)

        self.model = genai.GenerativeModel(
            self.model_name,
            system_instruction=self.system_prompt,
        )

        logger.info(
            "GeminiService initialized with model=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            self.model_name,
            self.circuit_breaker.failure_threshold,
            self.circuit_breaker.recovery_timeout,
        )

    async def _generate(self, message: str, request_id: str) -> CompletionResult:
        response = await self.model.generate_content_async(
            message,
            generation_config={
                "max_output_tokens": self.max_tokens,
                "temperature": self.temperature,
            },
            request_options={"timeout": self.timeout},
        )

        content = response.text.strip() if response.text else ""

        tokens_used = None
        usage = getattr(response, "usage_metadata", None)
        if usage is not None:
            tokens_used = getattr(usage, "total_token_count", None)

        return CompletionResult(
            provider=self.provider_name,
            model=self.model_name,
            content=content,
            tokens_used=tokens_used,
        )

    async def health_check(self) -> bool:
        """
        Check if Gemini API is reachable.

        How:     Lists available models (no token cost).
        Returns: True if reachable and authenticated, False otherwise.
        """
        try:
            model_names = [m.name for m in genai.list_models()]
            target = f"models/{self.model_name}"
            if target not in model_names:
                logger.warning("Configured model %s not found in available models", target)
            return True
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False
