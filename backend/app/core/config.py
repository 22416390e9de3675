"""
Application Configuration

All settings loaded from environment variables.
"""

from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "MarketDesk Backend"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Document store (SQLite via aiosqlite by default)
    database_url: Optional[str] = None  # Defaults to ./data/marketdesk.db

    # Redis
    redis_url: str = "redis://localhost:6379"

    # CORS (Frontend URL)
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Exchange APIs
    nse_base_url: str = "https://www.nseindia.com"
    bse_base_url: str = "https://api.bseindia.com"
    exchange_timeout_seconds: float = 30.0
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

    # Retries (exchange calls and rate-limited writes)
    retry_attempts: int = 3
    retry_base_delay: float = 0.5
    retry_max_delay: float = 8.0

    # LLM Providers (intent classification only)
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    llm_primary_provider: str = "gemini"  # Options: gemini, anthropic, openai
    anthropic_model: str = "claude-3-5-haiku-latest"
    openai_model: str = "gpt-4o-mini"
    gemini_model: str = "gemini-2.5-flash"
    llm_timeout_seconds: float = 20.0


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
