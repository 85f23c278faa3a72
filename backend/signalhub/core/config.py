"""
Application configuration using Pydantic Settings.

Loads configuration from environment variables and .env files.
"""

from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "SignalHub"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["local", "development", "staging", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./signals.db"
    DB_ECHO: bool = False
    DB_AUTO_CREATE: bool = True

    # Signal ingestion
    # Empty means ingestion is not configured and every request is refused.
    SIGNAL_API_KEY: str = ""
    DEFAULT_SIGNAL_SOURCE: str = "RiskCompass"

    # Broadcast
    BROADCAST_BACKEND: Literal["memory", "redis"] = "memory"
    BROADCAST_CHANNEL: str = "signal-events"
    VIEWER_QUEUE_SIZE: int = 256
    SSE_PING_SECONDS: int = 15

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    @property
    def sync_database_url(self) -> str:
        """Get synchronous database URL for Alembic migrations."""
        return self.DATABASE_URL.replace("+aiosqlite", "").replace("+asyncpg", "")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


# Global settings instance
settings = Settings()
