"""
Project Portal Core - Configuration Management

Centralized configuration for environment variables and deployment settings.
This module ensures:
- No hardcoded secrets in production
- Environment-specific settings (dev/staging/prod)
- A single place for integrity-layer tunables (privileged identity, reconciler)
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)

DEFAULT_PRIVILEGED_PASSWORD = "change-me-now"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./portal.db",
        description="Async SQLAlchemy URL (postgresql+asyncpg://... in production)"
    )
    DB_ECHO: bool = Field(default=False, description="Echo SQL statements")
    DB_POOL_SIZE: int = Field(default=5)
    DB_MAX_OVERFLOW: int = Field(default=10)

    # ==================== CREDENTIALS ====================
    CREDENTIAL_SCHEMES: str = Field(
        default="bcrypt",
        description="Comma-separated passlib schemes; the first one hashes new credentials"
    )
    MIN_PASSWORD_LENGTH: int = Field(default=6)

    # ==================== BACKFILL ====================
    PRIVILEGED_EMAIL: str = Field(
        default="admin@portal.local",
        description="Email of the designated privileged identity ensured by the backfill"
    )
    PRIVILEGED_PASSWORD: str = Field(
        default=DEFAULT_PRIVILEGED_PASSWORD,
        description="Known credential of the privileged identity"
    )
    PRIVILEGED_DISPLAY_NAME: str = Field(default="Portal Admin")

    # ==================== RECONCILIATION ====================
    RECONCILE_WRITE_COUNTERS: bool = Field(
        default=True,
        description="Write recomputed dashboard counters onto administrator records"
    )

    # ==================== INTERNAL API ====================
    INTERNAL_API_KEY: str = Field(
        default="",
        description="Key required in X-Internal-Api-Key for integrity endpoints"
    )

    # ==================== OBSERVABILITY ====================
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )
    LOG_JSON: bool = Field(default=False, description="Emit JSON log lines")

    API_TITLE: str = Field(default="Project Portal Core API")
    API_VERSION: str = Field(default="1.0.0")

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def credential_schemes_list(self) -> List[str]:
        schemes = [s.strip() for s in self.CREDENTIAL_SCHEMES.split(",") if s.strip()]
        return schemes or ["bcrypt"]

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required")

        if self.is_production:
            if self.DATABASE_URL.startswith("sqlite"):
                errors.append("DATABASE_URL cannot be SQLite in production")
            if self.PRIVILEGED_PASSWORD == DEFAULT_PRIVILEGED_PASSWORD:
                errors.append("PRIVILEGED_PASSWORD must be changed from default value")
            if not self.INTERNAL_API_KEY:
                errors.append("INTERNAL_API_KEY is required in production")
            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors

    def get_database_url(self) -> str:
        """Get the async database URL, upgrading bare postgres URLs to asyncpg."""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings
