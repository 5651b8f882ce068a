"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class OverlayBackend(str, Enum):
    memory = "memory"
    redis = "redis"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Deal progress persistence
    OVERLAY_BACKEND: OverlayBackend = OverlayBackend.memory
    OVERLAY_KEY: str = "dealsOverlay"  # Redis hash holding one entry per deal id
    REDIS_URL: str = "redis://localhost:6379/0"

    # Base deal catalog (JSON array of deals)
    DEAL_CATALOG_PATH: str = "data/deals.json"

    # Stage gate
    OUTREACH_MIN_RESPONSES: int = 0  # 0 disables the minimum-response rule

    # Deferred payout after approval (seconds)
    PAYOUT_SETTLEMENT_DELAY: float = 0.3

    # Brief analysis (OpenAI-compatible chat completions)
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    LLM_TIMEOUT: int = 30
    BRIEF_ANALYSIS_CACHE_SIZE: int = 256

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
