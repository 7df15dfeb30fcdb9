"""Environment-backed settings for qadigest.

Values here are defaults for a run; CLI flags and explicit
``AnalyzerConfig``/``LLMConfig`` values take precedence.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="QADIGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Where JSONL run logs go; empty disables file logging
    log_dir: Path | None = Field(default=None)

    # Chunking / scheduling
    chunk_size: int = 50
    concurrency: int = 5
    chunking_strategy: str = "simple"
    min_relationship_score: int = 75

    # Retry
    max_retries: int = 2
    backoff_base_ms: int = 1000

    # LLM settings
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o"
    llm_base_url: str | None = None
    llm_temperature: float = 0.0
    request_timeout: float = 30.0


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings cache (useful for testing)."""
    global _settings
    _settings = None
