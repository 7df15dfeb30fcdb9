"""Run configuration: explicit values, then QADIGEST_* environment, then defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass

from qadigest.core.errors import ConfigurationError

MAX_CHUNK_SIZE = 500
CHUNKING_STRATEGIES = ("simple", "smart")


def redact_api_key(key: str | None) -> str | None:
    """Redact an API key, showing only the first 4 and last 4 characters.

    Returns None if the key is None, or the redacted string otherwise.
    Short keys (8 chars or fewer) are fully redacted as '****'.
    """
    if key is None:
        return None
    if len(key) <= 8:
        return "****"
    return f"{key[:4]}...{key[-4:]}"


@dataclass
class LLMConfig:
    """Configuration for the LLM provider.

    Supports four providers:
    - "openai": OpenAI GPT models (default)
    - "anthropic": Anthropic Claude models
    - "deepseek": DeepSeek models (uses OpenAI SDK with DeepSeek base URL)
    - "openai-compatible": Any OpenAI-compatible API (Ollama, vLLM, etc.)

    Config precedence: explicit config > env vars > defaults.

    Environment variables:
    - QADIGEST_LLM_PROVIDER: override provider
    - QADIGEST_LLM_MODEL: override model
    - QADIGEST_LLM_BASE_URL: override base_url
    - OPENAI_API_KEY / ANTHROPIC_API_KEY / DEEPSEEK_API_KEY: per-provider keys
    """

    provider: str = "openai"
    model: str = "gpt-4o"
    temperature: float = 0.0
    max_tokens: int = 4096
    base_url: str | None = None
    api_key: str | None = None
    request_timeout: float = 30.0  # seconds, enforced by the SDK

    @classmethod
    def from_dict(cls, data: dict) -> LLMConfig:
        """Create LLMConfig from a dict, applying env var overrides.

        Config precedence: explicit dict values > env vars > class defaults.
        """
        config = cls()

        env_provider = os.environ.get("QADIGEST_LLM_PROVIDER")
        if env_provider:
            config.provider = env_provider
        env_model = os.environ.get("QADIGEST_LLM_MODEL")
        if env_model:
            config.model = env_model
        env_base_url = os.environ.get("QADIGEST_LLM_BASE_URL")
        if env_base_url:
            config.base_url = env_base_url

        for key in ("provider", "model", "temperature", "max_tokens", "base_url",
                    "api_key", "request_timeout"):
            if data.get(key) is not None:
                setattr(config, key, data[key])

        config.validate()
        return config

    def validate(self) -> None:
        if not 0 <= self.temperature <= 2:
            raise ConfigurationError(
                "temperature", self.temperature, "Temperature must be between 0 and 2"
            )
        if not 1 <= self.request_timeout <= 300:
            raise ConfigurationError(
                "request_timeout",
                self.request_timeout,
                "Request timeout must be between 1s and 300s",
            )

    def resolve_api_key(self) -> str | None:
        """Resolve the API key: explicit > env var per provider."""
        if self.api_key:
            return self.api_key
        if self.provider == "anthropic":
            return os.environ.get("ANTHROPIC_API_KEY")
        if self.provider == "deepseek":
            return os.environ.get("DEEPSEEK_API_KEY")
        # openai and openai-compatible both use OPENAI_API_KEY
        return os.environ.get("OPENAI_API_KEY")


@dataclass
class AnalyzerConfig:
    """Run-time knobs for one pipeline run."""

    chunk_size: int = 50
    concurrency_limit: int = 5
    max_retries: int = 2
    backoff_base_ms: int = 1000
    backoff_multiplier: float = 2.0
    max_backoff_ms: int = 30_000
    chunking_strategy: str = "simple"
    min_relationship_score: int = 75
    max_chunk_overflow: float = 1.5

    @classmethod
    def from_dict(cls, data: dict) -> AnalyzerConfig:
        """Create an AnalyzerConfig, ignoring None values so CLI flags can be optional."""
        config = cls()
        for key in cls.__dataclass_fields__:
            if data.get(key) is not None:
                setattr(config, key, data[key])
        config.validate()
        return config

    @classmethod
    def from_settings(cls, overrides: dict | None = None) -> AnalyzerConfig:
        """Build from ``QADIGEST_*`` settings, then apply explicit overrides."""
        from qadigest.config import get_settings

        settings = get_settings()
        data = {
            "chunk_size": settings.chunk_size,
            "concurrency_limit": settings.concurrency,
            "max_retries": settings.max_retries,
            "backoff_base_ms": settings.backoff_base_ms,
            "chunking_strategy": settings.chunking_strategy,
            "min_relationship_score": settings.min_relationship_score,
        }
        data.update({k: v for k, v in (overrides or {}).items() if v is not None})
        return cls.from_dict(data)

    def validate(self) -> None:
        if not 1 <= self.chunk_size <= MAX_CHUNK_SIZE:
            raise ConfigurationError(
                "chunk_size", self.chunk_size, f"Chunk size must be between 1 and {MAX_CHUNK_SIZE}"
            )
        if self.concurrency_limit < 1:
            raise ConfigurationError(
                "concurrency_limit", self.concurrency_limit, "Concurrency must be at least 1"
            )
        if not 0 <= self.max_retries <= 10:
            raise ConfigurationError(
                "max_retries", self.max_retries, "Max retries must be between 0 and 10"
            )
        if self.backoff_base_ms < 0 or self.max_backoff_ms < self.backoff_base_ms:
            raise ConfigurationError(
                "backoff_base_ms",
                self.backoff_base_ms,
                "Backoff base must be non-negative and not exceed max_backoff_ms",
            )
        if self.backoff_multiplier < 1:
            raise ConfigurationError(
                "backoff_multiplier", self.backoff_multiplier, "Multiplier must be >= 1"
            )
        if self.chunking_strategy not in CHUNKING_STRATEGIES:
            raise ConfigurationError(
                "chunking_strategy",
                self.chunking_strategy,
                f"Strategy must be one of {', '.join(CHUNKING_STRATEGIES)}",
            )
        if not 0 <= self.min_relationship_score <= 100:
            raise ConfigurationError(
                "min_relationship_score",
                self.min_relationship_score,
                "Relationship score must be between 0 and 100",
            )
        if self.max_chunk_overflow < 1:
            raise ConfigurationError(
                "max_chunk_overflow", self.max_chunk_overflow, "Overflow factor must be >= 1"
            )

    def retry_policy(self):
        from qadigest.build.retry import RetryPolicy

        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.backoff_base_ms / 1000,
            multiplier=self.backoff_multiplier,
            max_delay=self.max_backoff_ms / 1000,
        )
