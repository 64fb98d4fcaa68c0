"""
Application configuration via environment variables.

Uses Pydantic BaseSettings to load and validate all config from env vars
or a .env.local file. Every setting has a sensible default so the
pipeline can be imported and run with minimal configuration.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment selector."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Central configuration for the intake extraction pipeline.

    Values are loaded from environment variables first, falling back
    to a `.env.local` file in the project root. Secrets should NEVER
    be committed; use `.env.example` as the template.
    """

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────
    environment: Environment = Environment.DEVELOPMENT

    # ── LLM backend ──────────────────────────────────────────────
    openai_api_key: str = Field(default="", description="OpenAI API key for extraction")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of an OpenAI-compatible chat completions API",
    )
    extraction_model: str = Field(default="gpt-4o", description="Model used for section extraction")
    extraction_temperature: float = Field(default=0.1, ge=0.0, le=2.0, description="Sampling temperature")
    extraction_timeout_seconds: float = Field(default=60.0, gt=0, description="Per-request HTTP timeout")

    # ── Chunking ─────────────────────────────────────────────────
    max_chunk_tokens: int = Field(default=30000, ge=1, description="Token budget per transcript chunk")
    overlap_tokens: int = Field(default=2000, ge=0, description="Approximate overlap between chunks")
    tokens_per_char: float = Field(default=0.25, gt=0, description="Heuristic tokens-per-character ratio")
    chunk_break_lookback_chars: int = Field(
        default=200, ge=0, description="How far back to search for a natural break point"
    )

    # ── Orchestration ────────────────────────────────────────────
    chunk_retry_attempts: int = Field(default=1, ge=0, le=10, description="Retries per failed chunk")
    chunk_retry_delay_seconds: float = Field(
        default=0.0, ge=0.0, description="Base delay before a chunk retry (doubles per attempt)"
    )
    max_concurrent_chunks: int = Field(
        default=1, ge=1, le=32, description="Chunks extracted at once (1 = sequential)"
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Root log level")

    # ── Derived helpers ──────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return cached Settings instance.

    Using lru_cache ensures we read env vars exactly once, and every
    module that calls ``get_settings()`` gets the same object.
    """
    return Settings()
