"""
Application Configuration Module

Settings come from the environment (or .env) through pydantic-settings.
Persistence runs in one of two modes, decided once at startup:
    - REMOTE: PostgreSQL (SQLAlchemy async) + Redis change notifications
    - LOCAL: JSON files on disk with an in-memory mirror (no setup needed)

The remote mode is used whenever a database URL is available, either from
REMOTE_DATABASE_URL or from a config previously saved by staff. The
ENV_MODE variable only controls which report generator is instantiated.

Usage:
    from app.core.config import get_settings

    settings = get_settings()
    if settings.default_database_url:
        # A checked-in / injected remote database is available

Version: 1.0.0
"""

import logging
import sys
from enum import Enum
from typing import Optional
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Marker left in .env.example; a URL containing it was never filled in.
CONFIG_PLACEHOLDER = "CHANGE_ME"


class EnvironmentMode(str, Enum):
    """
    Deployment stage of the process.

    Attributes:
        DEVELOPMENT: Local testing, mock report generator
        PRODUCTION: Live environment with the Gemini report generator
        STAGING: Pre-production testing with real APIs but test keys
    """
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class Settings(BaseSettings):
    """
    Every tunable of the service, overridable through the environment or .env.
    Sensitive values (database URLs, API keys) should NEVER be committed.

    Attributes:
        env_mode: Current environment (development/production/staging)
        debug: Enable verbose logging and error details

        # Remote database
        remote_database_url: SQLAlchemy async URL of the shared database
        remote_redis_url: Redis URL used for change notifications
        max_document_bytes: Largest serialized product the remote accepts

        # Local fallback store
        data_directory: Root directory for local files
        local_poll_interval_seconds: Subscription refresh period

        # Reports
        gemini_api_key: Google Gemini API key
        venue_name: Display name used in reports
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Application environment mode"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="Table Ordering System",
        description="Application display name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8001,
        description="API server port"
    )

    # ==========================================================================
    # REMOTE DATABASE
    # ==========================================================================

    remote_database_url: Optional[str] = Field(
        default=None,
        description="Default remote database URL (postgresql+psycopg://...)"
    )
    remote_redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for change notifications"
    )
    remote_project_id: Optional[str] = Field(
        default=None,
        description="Label identifying the remote deployment"
    )
    remote_echo_sql: bool = Field(
        default=False,
        description="Log every SQL statement"
    )
    max_document_bytes: int = Field(
        default=1_048_576,
        description="Maximum serialized size of a product written remotely"
    )
    change_feed_namespace: str = Field(
        default="venue",
        description="Prefix of the Redis change channels"
    )

    # ==========================================================================
    # LOCAL FALLBACK STORE
    # ==========================================================================

    data_directory: str = Field(
        default="data",
        description="Directory for data files"
    )
    local_key_prefix: str = Field(
        default="venue_app",
        description="Prefix of the local store keys"
    )
    local_lock_timeout: float = Field(
        default=5.0,
        description="Seconds to wait for a local store file lock"
    )
    local_poll_interval_seconds: float = Field(
        default=2.0,
        description="Refresh period of local-mode subscriptions"
    )

    # ==========================================================================
    # REPORTS (GOOGLE GEMINI)
    # ==========================================================================

    gemini_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("gemini_api_key", "api_key"),
        description="Google Gemini API key"
    )
    gemini_model: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model used for reports"
    )

    # ==========================================================================
    # BUSINESS CONFIGURATION
    # ==========================================================================

    venue_name: str = Field(
        default="Barraca de Praia entre Família",
        description="Venue display name"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        """Convert string to EnvironmentMode enum."""
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    @field_validator("local_poll_interval_seconds")
    @classmethod
    def validate_poll_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("local_poll_interval_seconds must be positive")
        return v

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env_mode == EnvironmentMode.PRODUCTION

    @property
    def is_staging(self) -> bool:
        """Check if running in staging mode."""
        return self.env_mode == EnvironmentMode.STAGING

    @property
    def use_real_services(self) -> bool:
        """Check if real external services should be used."""
        return self.env_mode in (EnvironmentMode.PRODUCTION, EnvironmentMode.STAGING)

    @property
    def default_database_url(self) -> Optional[str]:
        """
        Remote database URL shipped with the deployment, if usable.

        Empty values and values still holding the placeholder marker
        are treated as "not configured".
        """
        url = (self.remote_database_url or "").strip()
        if not url or CONFIG_PLACEHOLDER in url:
            return None
        return url

    @property
    def local_store_directory(self) -> Path:
        """Directory holding the local fallback store files."""
        return Path(self.data_directory) / "local_store"

    # ==========================================================================
    # VALIDATION METHODS
    # ==========================================================================

    def validate_production_config(self) -> list[str]:
        """
        Validate that all required production settings are configured.

        Returns:
            List of missing configuration keys (empty if all present)
        """
        missing = []

        if self.use_real_services:
            if not self.gemini_api_key:
                missing.append("GEMINI_API_KEY")
            if not self.default_database_url:
                missing.append("REMOTE_DATABASE_URL")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Settings of this process, read once.

    Tests clear the cache after changing the environment.

    Returns:
        Settings: Configured application settings

    Example:
        >>> settings = get_settings()
        >>> print(settings.env_mode)
        EnvironmentMode.DEVELOPMENT
    """
    return Settings()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure stdout logging for the whole process.

    DEBUG=true forces the DEBUG level whatever ``level`` says.
    """
    settings = get_settings()

    # Set level based on debug mode
    if settings.debug:
        level = logging.DEBUG

    log_format = "%(asctime)s │ %(levelname)-8s │ %(name)-25s │ %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("filelock").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)

    return logging.getLogger("app")

