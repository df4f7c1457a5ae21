"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"
    test = "test"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Service
    SERVICE_NAME: str = "prolibu-salesforce-sync"
    SERVICE_VERSION: str = "1.0.0"

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Salesforce
    SF_LOGIN_DOMAIN: str = "login"  # "test" for sandboxes
    SF_USERNAME: str = ""
    SF_PASSWORD: str = ""
    SF_SECURITY_TOKEN: str = ""
    SF_EXTERNAL_ID_FIELD: str = "Prolibu_External_Id__c"
    SF_API_VERSION: str = ""  # empty = simple-salesforce default
    SF_CONNECT_MAX_RETRIES: int = 3
    SF_OPERATION_MAX_ATTEMPTS: int = 2
    SF_OPERATION_RETRY_DELAY: float = 1.0

    # Sync
    SYNC_SERIALIZE_PER_PROPOSAL: bool = False

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Monitoring
    SENTRY_DSN: str = ""

    def missing_salesforce_settings(self) -> list[str]:
        """Names of required Salesforce credentials that are unset."""
        required = {
            "SF_USERNAME": self.SF_USERNAME,
            "SF_PASSWORD": self.SF_PASSWORD,
            "SF_SECURITY_TOKEN": self.SF_SECURITY_TOKEN,
        }
        return [name for name, value in required.items() if not value]

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ALLOWED_ORIGINS.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
