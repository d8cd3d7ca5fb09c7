from functools import lru_cache
from threading import Lock
from typing import Optional

import structlog
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Environment Constants
ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for Jusbill.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "Jusbill"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False
    # Number of trusted reverse-proxy hops when resolving client IP from XFF.
    TRUSTED_PROXY_HOPS: int = 1

    # Database
    DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_STATEMENT_TIMEOUT_MS: int = 15000

    # Asaas gateway
    ASAAS_WEBHOOK_SECRET: Optional[str] = None
    # Comma-separated; empty disables the origin check.
    ASAAS_WEBHOOK_ALLOWED_IPS: str = ""
    ASAAS_WEBHOOK_PUBLIC_URL: Optional[str] = None
    ASAAS_ALLOW_LEGACY_CREDENTIAL_FALLBACK: bool = False
    ASAAS_ENVIRONMENT: Optional[str] = None
    ASAAS_API_URL: Optional[str] = None
    ASAAS_ACCESS_TOKEN: Optional[str] = None
    ASAAS_API_KEY: Optional[str] = None
    ASAAS_HTTP_TIMEOUT_SECONDS: float = 20.0
    PLAN_PAYMENT_ACCOUNT_ID: Optional[int] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )
        if self.TESTING:
            return self

        self._validate_billing_config()
        return self

    def _validate_billing_config(self) -> None:
        if self.ASAAS_HTTP_TIMEOUT_SECONDS <= 0:
            raise ValueError("ASAAS_HTTP_TIMEOUT_SECONDS must be positive.")

        if self.is_production and not self.ASAAS_WEBHOOK_SECRET:
            structlog.get_logger().warning(
                "asaas_webhook_secret_not_configured",
                msg="Deliveries for charges without a credential secret will be dropped.",
            )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}

    @property
    def asaas_webhook_allowed_ips(self) -> set[str]:
        return {
            part.strip()
            for part in self.ASAAS_WEBHOOK_ALLOWED_IPS.split(",")
            if part.strip()
        }

    @property
    def asaas_fallback_token(self) -> Optional[str]:
        for candidate in (self.ASAAS_ACCESS_TOKEN, self.ASAAS_API_KEY):
            if candidate and candidate.strip():
                return candidate.strip()
        return None
