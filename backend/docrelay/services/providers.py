"""
DocRelay Backend - Completion Provider Factory
===============================================

What:  Selects and caches the LLMService named by AI_PROVIDER.
Why:   The circuit breaker state lives on the service instance, so every
       request in a process must share the same one.
How:   lru_cache on a zero-argument factory; used as a FastAPI dependency and
       overridden in tests through app.dependency_overrides.
"""

import logging
from functools import lru_cache

from docrelay.config import settings
from docrelay.services.llm_base import LLMService

logger = logging.getLogger(__name__)


def create_llm_service(provider: str) -> LLMService:
    """Instantiate the service for `provider` (gemini, openai or anthropic)."""
    # Imported lazily so only the selected provider's SDK is initialized
    if provider == "gemini":
        from docrelay.services.gemini_service import GeminiService

        return GeminiService()
    if provider == "openai":
        from docrelay.services.openai_service import OpenAIService

        return OpenAIService()
    if provider == "anthropic":
        from docrelay.services.anthropic_service import AnthropicService

        return AnthropicService()
    raise ValueError(f"Unsupported AI provider: {provider}")


@lru_cache
def get_llm_service() -> LLMService:
    logger.info("Creating completion service for provider=%s", settings.ai_provider)
    return create_llm_service(settings.ai_provider)
