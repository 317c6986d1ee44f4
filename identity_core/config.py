"""
Unified configuration for the Identity Server.

This module provides a single Settings class that consolidates all
environment variables used by the authorization core and its HTTP shell.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Unified settings for the Identity Server.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    # Service identification
    SERVICE_NAME: str = "identity-server"
    LOG_LEVEL: str = "INFO"

    # Store
    STORE_BACKEND: str = "memory"  # memory | postgres
    POSTGRES_DSN: str = "host=localhost port=5432 dbname=identity user=postgres password=postgres"
    POSTGRES_INIT_SCHEMA: bool = True  # create missing tables on startup

    # Events / notifications
    EVENTS_BACKEND: str = "log"  # log | redis
    REDIS_URL: str = "redis://localhost:6379/0"
    EVENTS_CHANNEL_PREFIX: str = "is.events"
    NOTIFICATIONS_URL: str = ""
    NOTIFICATIONS_TIMEOUT: float = 5.0

    # Cluster peers authenticate with an HS256 token in X-Cluster-Auth
    CLUSTER_AUTH_SECRET: str = ""
    CLUSTER_AUTH_ISSUER: str = "cluster"

    # Authorization
    ADMIN_RIGHTS_ALL: bool = True
    AUTH_CACHE_MEMBERSHIP_TTL: float = 0.0
    AUTH_CACHE_MAX_SIZE: int = 10_000
    REQUIRE_CONTACT_VALIDATION: bool = False
    ALLOW_LEGACY_API_KEY_DELETE: bool = True
    ID_BLOCKLIST: list[str] = ["admin", "administrator", "root", "system", "support", "identity-server"]

    # Pagination
    MAX_PAGE_LIMIT: int = 1000

    # Rate limiting
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    RATE_LIMIT_CREATE_API_KEY: str = "20/minute"

    # Telemetry
    ENABLE_TELEMETRY: bool = False
    OTEL_EXPORTER_OTLP_ENDPOINT: str = ""

    # App host/port
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8000

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
