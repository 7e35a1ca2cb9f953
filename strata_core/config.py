"""
Unified configuration for strata services.

This module provides a single Settings class that consolidates all
environment variables used by the storage layer and its HTTP surface.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Unified settings for all strata services.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    # Service identification
    SERVICE_NAME: str = "strata"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL (provider configuration store)
    POSTGRES_DSN: str = "host=localhost port=5432 dbname=postgres user=postgres password=postgres"

    # Local fallback provider
    STORAGE_FALLBACK_ROOT: str = "./Storage/local"

    # Fernet key protecting sensitive provider config fields at rest
    STORAGE_ENCRYPTION_KEY: str = ""

    # Object storage
    MINIO_POOL_SIZE: int = 10
    MINIO_SECURE: bool = False

    # Session-based transfers
    FTP_TIMEOUT_SECONDS: float = 30.0
    SFTP_TIMEOUT_SECONDS: float = 30.0
    STORAGE_CONNECT_MAX_ATTEMPTS: int = 3

    # Persisted provider config size bound
    PROVIDER_CONFIG_MAX_BYTES: int = 4000

    # App host/port
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8081

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore"
    )


# Global settings instance
settings = Settings()  # type: ignore
