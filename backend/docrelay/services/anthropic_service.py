"""
DocRelay Backend - Anthropic Service Implementation
====================================================

What:  Completion collaborator backed by the Anthropic Messages API.
How:   Lazy AsyncAnthropic client; the system prompt is passed as the
       top-level `system` parameter, the prompt plus document as one user turn.
"""

import logging
from typing import Optional

from anthropic import AsyncAnthropic

from docrelay.config import settings
from docrelay.models.envelope import CompletionResult
from docrelay.services.llm_base import LLMService

logger = logging.getLogger(__name__)


class AnthropicService(LLMService):
    """Anthropic Claude implementation of the completion collaborator."""

    provider_name = "anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(model_name or settings.anthropic_model, **kwargs)
        self._api_key = api_key if api_key is not None else settings.anthropic_api_key
        self._client: Optional[AsyncAnthropic] = None

        logger.info("AnthropicService initialized with model=%s", self.model_name)

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self._api_key, timeout=self.timeout)
        return self._client

    async def _generate(self, message: str, request_id: str) -> CompletionResult:
        response = await self.client.messages.create(
            model=self.model_name,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=self.system_prompt,
            messages=[{"role": "user", "content": message}],
        )

        # Only text blocks carry the answer
        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )

        tokens_used = None
        if response.usage is not None:
            tokens_used = response.usage.input_tokens + response.usage.output_tokens

        return CompletionResult(
            provider=self.provider_name,
            model=self.model_name,
            content=content.strip(),
            tokens_used=tokens_used,
        )

    async def health_check(self) -> bool:
        try:
            await self.client.models.list(limit=1)
            return True
        except Exception as e:
            logger.warning("Anthropic health check failed: %s", str(e))
            return False
