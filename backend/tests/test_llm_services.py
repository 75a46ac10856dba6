"""
DocRelay Backend - LLM Service Unit Tests (Mocked)
===================================================

What:  Tests for the completion collaborator with every provider SDK mocked.
Why:   Tests should not make real API calls (costs money, requires network).
How:   Patches each SDK entry point in the module that imports it.

What we test:
    ✅ Circuit breaker state machine
    ✅ complete() translates provider errors and feeds the breaker
    ✅ Open circuit rejects calls without reaching the provider
    ✅ Gemini, OpenAI and Anthropic responses are normalized
    ✅ Provider factory
    ❌ Real API calls (use integration tests for that)
"""

import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import FakeLLMService
from docrelay.exceptions import CircuitBreakerOpenError, CompletionFailedError
from docrelay.services.llm_base import CircuitBreaker, build_user_message
from docrelay.services.providers import create_llm_service


class TestCircuitBreaker:
    """Tests for the CircuitBreaker resilience pattern."""

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        assert cb.state == CircuitBreaker.CLOSED
        assert cb.failure_count == 0

    def test_stays_closed_under_threshold(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        for _ in range(4):
            cb.record_failure()
        assert cb.state == CircuitBreaker.CLOSED
        assert cb.can_execute() is True

    def test_opens_at_threshold_and_rejects(self):
        """OPEN circuit reports the seconds left before it may be retried."""
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == CircuitBreaker.OPEN

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            cb.can_execute()
        assert 0 < exc_info.value.retry_after <= 60
        assert exc_info.value.status_code == 503

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()

        cb.record_success()
        assert cb.failure_count == 0
        assert cb.state == CircuitBreaker.CLOSED

    def test_half_open_after_recovery_timeout(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        time.sleep(0.01)

        assert cb.can_execute() is True
        assert cb.state == CircuitBreaker.HALF_OPEN

    def test_half_open_failure_reopens(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        cb.can_execute()

        cb.record_failure()
        assert cb.state == CircuitBreaker.OPEN


class TestComplete:
    """Tests for LLMService.complete shared by every provider."""

    def test_user_message_format(self):
        assert build_user_message("Summarize", "Body") == "Summarize\n\nDocument content:\nBody"

    @pytest.mark.asyncio
    async def test_success_records_success(self):
        llm = FakeLLMService(content="ok")
        llm.circuit_breaker.record_failure()

        result = await llm.complete("text", "prompt", "req1")

        assert result.content == "ok"
        assert result.tokens_used == 42
        assert llm.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_provider_error_is_translated(self):
        llm = FakeLLMService(error=ConnectionError("connection reset"))

        with pytest.raises(CompletionFailedError) as exc_info:
            await llm.complete("text", "prompt")

        error = exc_info.value
        assert error.code == "COMPLETION_FAILED"
        assert error.message == "AI processing failed: connection reset"
        assert error.context == {
            "provider": "fake",
            "model": "fake-model",
            "error_type": "ConnectionError",
        }
        assert llm.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_open_circuit_skips_provider(self):
        llm = FakeLLMService(error=RuntimeError("down"))
        for _ in range(2):
            with pytest.raises(CompletionFailedError):
                await llm.complete("text", "prompt")

        with pytest.raises(CircuitBreakerOpenError):
            await llm.complete("text", "prompt")
        assert len(llm.messages) == 2


class TestGeminiService:
    """GeminiService with the google-generativeai module patched."""

    @pytest.mark.asyncio
    async def test_generate(self):
        with patch("docrelay.services.gemini_service.genai") as mock_genai:
            response = MagicMock()
            response.text = "  Gemini answer  "
            response.usage_metadata.total_token_count = 17
            model = MagicMock()
            model.generate_content_async = AsyncMock(return_value=response)
            mock_genai.GenerativeModel.return_value = model

            from docrelay.services.gemini_service import GeminiService

            service = GeminiService(api_key="key", model_name="gemini-test", system_prompt="sys")
            result = await service.complete("Doc text", "Summarize")

        mock_genai.configure.assert_called_once_with(api_key="key")
        mock_genai.GenerativeModel.assert_called_once_with("gemini-test", system_instruction="sys")
        args, kwargs = model.generate_content_async.call_args
        assert args[0] == "Summarize\n\nDocument content:\nDoc text"
        assert kwargs["generation_config"]["max_output_tokens"] == service.max_tokens
        assert result.provider == "gemini"
        assert result.model == "gemini-test"
        assert result.content == "Gemini answer"
        assert result.tokens_used == 17

    @pytest.mark.asyncio
    async def test_health_check_failure(self):
        with patch("docrelay.services.gemini_service.genai") as mock_genai:
            mock_genai.list_models.side_effect = Exception("Network error")

            from docrelay.services.gemini_service import GeminiService

            service = GeminiService(api_key="key")
            assert await service.health_check() is False


class TestOpenAIService:
    """OpenAIService with AsyncOpenAI patched."""

    @pytest.mark.asyncio
    async def test_generate(self):
        with patch("docrelay.services.openai_service.AsyncOpenAI") as mock_client_cls:
            response = MagicMock()
            response.choices = [MagicMock()]
            response.choices[0].message.content = " OpenAI answer\n"
            response.usage.total_tokens = 99
            client = mock_client_cls.return_value
            client.chat.completions.create = AsyncMock(return_value=response)

            from docrelay.services.openai_service import OpenAIService

            service = OpenAIService(
                api_key="sk-test",
                model_name="gpt-test",
                base_url="http://localhost:8000/v1",
                system_prompt="sys",
            )
            result = await service.complete("Doc text", "Summarize")

        mock_client_cls.assert_called_once_with(
            api_key="sk-test",
            base_url="http://localhost:8000/v1",
            timeout=service.timeout,
        )
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "Summarize\n\nDocument content:\nDoc text"},
        ]
        assert result.content == "OpenAI answer"
        assert result.tokens_used == 99
        assert result.provider == "openai"

    @pytest.mark.asyncio
    async def test_health_check(self):
        with patch("docrelay.services.openai_service.AsyncOpenAI") as mock_client_cls:
            mock_client_cls.return_value.models.list = AsyncMock(return_value=[])

            from docrelay.services.openai_service import OpenAIService

            assert await OpenAIService(api_key="sk-test").health_check() is True


class TestAnthropicService:
    """AnthropicService with AsyncAnthropic patched."""

    @pytest.mark.asyncio
    async def test_generate_joins_text_blocks(self):
        with patch("docrelay.services.anthropic_service.AsyncAnthropic") as mock_client_cls:
            text_block = MagicMock(type="text", text="Claude answer")
            tool_block = MagicMock(type="tool_use", text="ignored")
            response = MagicMock(content=[text_block, tool_block])
            response.usage.input_tokens = 10
            response.usage.output_tokens = 5
            client = mock_client_cls.return_value
            client.messages.create = AsyncMock(return_value=response)

            from docrelay.services.anthropic_service import AnthropicService

            service = AnthropicService(api_key="key", model_name="claude-test", system_prompt="sys")
            result = await service.complete("Doc text", "Summarize")

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["messages"] == [
            {"role": "user", "content": "Summarize\n\nDocument content:\nDoc text"}
        ]
        assert result.content == "Claude answer"
        assert result.tokens_used == 15
        assert result.provider == "anthropic"

    @pytest.mark.asyncio
    async def test_sdk_error_becomes_completion_failed(self):
        with patch("docrelay.services.anthropic_service.AsyncAnthropic") as mock_client_cls:
            mock_client_cls.return_value.messages.create = AsyncMock(
                side_effect=TimeoutError("read timed out")
            )

            from docrelay.services.anthropic_service import AnthropicService

            service = AnthropicService(api_key="key")
            with pytest.raises(CompletionFailedError) as exc_info:
                await service.complete("Doc text", "Summarize")

        assert exc_info.value.context["provider"] == "anthropic"
        assert exc_info.value.context["error_type"] == "TimeoutError"


class TestProviderFactory:
    """Tests for create_llm_service."""

    def test_creates_openai(self):
        from docrelay.services.openai_service import OpenAIService

        assert isinstance(create_llm_service("openai"), OpenAIService)

    def test_creates_anthropic(self):
        from docrelay.services.anthropic_service import AnthropicService

        assert isinstance(create_llm_service("anthropic"), AnthropicService)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unsupported AI provider"):
            create_llm_service("cohere")
