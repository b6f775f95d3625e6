"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from reliefwatch.core.config import settings
    print(settings.FEED_BASE_URL)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "ReliefWatch Disaster Monitor"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RELOAD: bool = True  # auto-reload on file changes (dev only)

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Alert feed ──
    FEED_BASE_URL: str = "http://localhost:5000/api"
    FEED_TIMEOUT_SECONDS: float = 10.0
    FEED_MAX_RETRIES: int = 1
    FEED_RETRY_BACKOFF_SECONDS: float = 1.0  # actual wait = base * 2^(attempt-1)

    # ── Campaign backend ──
    CAMPAIGN_BASE_URL: str = "http://localhost:5000/api"
    CAMPAIGN_TIMEOUT_SECONDS: float = 10.0

    # ── Polling ──
    REFRESH_INTERVAL_SECONDS: float = 15 * 60
    POLLING_ENABLED: bool = True
    DEMO_MODE_DEFAULT: bool = False

    # ── Detection & escalation ──
    DETECTION_STRATEGY: str = "count"  # count | keyset
    ESCALATION_SEVERITIES: List[str] = ["CRITICAL", "HIGH"]
    ESCALATION_RETRY_CAPACITY: int = 50
    ESCALATION_MAX_ATTEMPTS: int = 3

    # ── Map ──
    MAP_FIT_PADDING: float = 0.15
    MAP_DEFAULT_CENTER_LAT: float = 30.3753  # Pakistan centroid
    MAP_DEFAULT_CENTER_LON: float = 69.3451
    MAP_DEFAULT_ZOOM: int = 6

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
