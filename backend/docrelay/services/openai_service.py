"""
DocRelay Backend - OpenAI Service Implementation
=================================================

What:  Completion collaborator backed by the OpenAI chat completions API.
Why:   Lets deployments use GPT models, or any OpenAI-compatible server
       (vLLM, Featherless, Azure proxies) by setting OPENAI_BASE_URL.
How:   The async client is built lazily on first use, so a missing key only
       fails the requests that actually need OpenAI.
"""

import logging
from typing import Optional

from openai import AsyncOpenAI

from docrelay.config import settings
from docrelay.models.envelope import CompletionResult
from docrelay.services.llm_base import LLMService

logger = logging.getLogger(__name__)


class OpenAIService(LLMService):
    """OpenAI implementation of the completion collaborator."""

    provider_name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        base_url: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(model_name or settings.openai_model, **kwargs)
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self._base_url = base_url or settings.openai_base_url or None
        self._client: Optional[AsyncOpenAI] = None

        logger.info(
            "OpenAIService initialized with model=%s base_url=%s",
            self.model_name,
            self._base_url or "default",
        )

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self.timeout,
            )
        return self._client

    async def _generate(self, message: str, request_id: str) -> CompletionResult:
        response = await self.client.chat.completions.create(
            model=self.model_name,
            messages=[
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": message},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

        content = response.choices[0].message.content or ""
        tokens_used = response.usage.total_tokens if response.usage else None

        return CompletionResult(
            provider=self.provider_name,
            model=self.model_name,
            content=content.strip(),
            tokens_used=tokens_used,
        )

    async def health_check(self) -> bool:
        try:
            await self.client.models.list()
            return True
        except Exception as e:
            logger.warning("OpenAI health check failed: %s", str(e))
            return False
