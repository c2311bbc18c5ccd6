"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class CredentialBackend(str, Enum):
    memory = "memory"
    redis = "redis"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Credential store
    CRM_SETTINGS_STORE: CredentialBackend = CredentialBackend.memory
    CRM_SETTINGS_TTL_DAYS: int = 30  # Sliding expiry, refreshed on every read

    # Import job
    CRM_IMPORT_PAGE_SIZE: int = 100
    CRM_IMPORT_PAGE_DELAY_SECONDS: float = 0.1

    # Provider HTTP
    CRM_HTTP_TIMEOUT: float = 30.0
    REX_BASE_URL: str = "https://api.rexsoftware.com/v1"
    AGENTBOX_BASE_URL: str = "https://platform.reapit.cloud"
    VAULTRE_BASE_URL: str = "https://api.vaultre.com.au/api/v1.3"


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
