"""
DocRelay Backend - Application Configuration
=============================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Type-safe environment variable loading with validation on startup.
       A typo in AI_PROVIDER or BASE64_POLICY fails at boot, not mid-request.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by main.py, the routes and the provider factory.
When:  Loaded once at module import time; validated before app starts.

The decode pipeline itself never imports `settings`. It receives an explicit
PipelineConfig built by `settings.pipeline_config()`.
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from docrelay.models.envelope import (
    DEFAULT_PROMPT,
    MIN_BASE64_LENGTH,
    Base64Policy,
    PipelineConfig,
)

SUPPORTED_PROVIDERS = ("gemini", "openai", "anthropic")

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that analyzes documents and provides "
    "insights based on user prompts."
)

_PLACEHOLDER_KEYS = {"", "your_api_key_here", "your_gemini_api_key_here"}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development.
    Production deployments MUST set the API key of the selected provider.

    Attributes are grouped by concern for readability.
    """

    app_name: str = Field(default="DocRelay")

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)

    # Comma-separated list, parsed by cors_origins_list
    cors_origins: str = Field(default="*")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # Valid: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Request Limits ────────────────────────────────────────────────────
    # Default: 50MB = 50 * 1024 * 1024. Enforced at the HTTP boundary only.
    max_body_size: int = Field(default=52_428_800, ge=1_024, le=524_288_000)

    # ── Decode Pipeline ───────────────────────────────────────────────────
    default_prompt: str = Field(default=DEFAULT_PROMPT, min_length=1)

    # strict: reject base64 with characters outside the alphabet (default)
    # permissive: strip them and continue
    base64_policy: Base64Policy = Field(default=Base64Policy.STRICT)

    min_base64_length: int = Field(default=MIN_BASE64_LENGTH, ge=4, le=1024)

    # ── AI Provider ───────────────────────────────────────────────────────
    ai_provider: str = Field(default="gemini")

    @field_validator("ai_provider")
    @classmethod
    def validate_ai_provider(cls, v: str) -> str:
        lower = v.lower()
        if lower not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Invalid ai_provider '{v}'. Must be one of: {SUPPORTED_PROVIDERS}"
            )
        return lower

    # Google Gemini (https://aistudio.google.com/app/apikey)
    gemini_api_key: str = Field(default="")
    gemini_model: str = Field(default="gemini-1.5-flash")

    # OpenAI, or any server speaking its chat completions API via base_url
    openai_api_key: str = Field(default="")
    openai_model: str = Field(default="gpt-4-turbo-preview")
    openai_base_url: str = Field(default="")

    anthropic_api_key: str = Field(default="")
    anthropic_model: str = Field(default="claude-3-sonnet-20240229")

    # ── Completion Parameters ─────────────────────────────────────────────
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT)
    completion_max_tokens: int = Field(default=4000, ge=1, le=200_000)
    completion_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    completion_timeout: int = Field(default=60, ge=1, le=600)

    # ── Retry Configuration ───────────────────────────────────────────────
    # One attempt by default: the pipeline never retries a stage, clients do.
    # Raise above 1 to let tenacity retry transient provider errors.
    retry_max_attempts: int = Field(default=1, ge=1, le=10)
    retry_min_wait: int = Field(default=2, ge=1, le=30)
    retry_max_wait: int = Field(default=10, ge=5, le=120)

    # ── Circuit Breaker ───────────────────────────────────────────────────
    # After N consecutive provider failures, reject calls for M seconds
    cb_failure_threshold: int = Field(default=5, ge=2, le=20)
    cb_recovery_timeout: int = Field(default=60, ge=10, le=300)

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @property
    def active_model(self) -> str:
        """Model name of the selected provider."""
        return {
            "gemini": self.gemini_model,
            "openai": self.openai_model,
            "anthropic": self.anthropic_model,
        }[self.ai_provider]

    def provider_configured(self, provider: str) -> bool:
        key = getattr(self, f"{provider}_api_key", "")
        return key not in _PLACEHOLDER_KEYS

    def pipeline_config(self) -> PipelineConfig:
        """Snapshot of the settings the decode pipeline needs."""
        return PipelineConfig(
            default_prompt=self.default_prompt,
            base64_policy=self.base64_policy,
            min_base64_length=self.min_base64_length,
        )

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that critical settings are configured.
        When:  Called during app startup (lifespan).
        How:   Checks the API key of the selected provider and raises
               ValueError with guidance.
        """
        errors = []
        if not self.provider_configured(self.ai_provider):
            errors.append(
                f"{self.ai_provider.upper()}_API_KEY is not set "
                f"but AI_PROVIDER={self.ai_provider}."
            )
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Singleton instance, imported throughout the application
settings = Settings()
