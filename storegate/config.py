"""
Configuration module for the storegate trust-boundary service.

This module uses Pydantic Settings to load and validate environment variables
for the platform app credentials, session cookie signing, webhook verification,
CORS origin allowlisting and background task execution.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Platform credentials, session secrets, webhook and CORS policy flags
    are all defined here.
    """

    # =========================================================================
    # Platform App Credentials
    # =========================================================================

    PLATFORM: str = Field(
        default="bigcommerce",
        description="Platform variant this deployment integrates with (bigcommerce or shopify)",
    )

    PLATFORM_CLIENT_ID: str = Field(
        ...,
        description="App client ID issued by the platform",
        min_length=1,
    )

    PLATFORM_CLIENT_SECRET: str = Field(
        ...,
        description="App client secret; signs load/uninstall JWTs and webhooks",
        min_length=1,
    )

    APP_URL: str = Field(
        ...,
        description="Public base URL of this service (e.g., https://app.example.com)",
        min_length=1,
    )

    # =========================================================================
    # Database
    # =========================================================================

    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./storegate.db",
        description="SQLAlchemy async database URL (postgresql+asyncpg://... in production)",
    )

    # =========================================================================
    # Session Cookie
    # =========================================================================

    SESSION_SECRETS: str = Field(
        ...,
        description="Comma-separated cookie signing secrets, newest first (rotation list)",
        min_length=32,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="__storegate_session",
        description="Name of the HTTP-only admin session cookie",
    )

    SESSION_MAX_AGE_SECONDS: int = Field(
        default=60 * 60 * 24,
        description="Session cookie lifetime in seconds",
        ge=300,
        le=60 * 60 * 24 * 7,
    )

    # =========================================================================
    # Environment & Policy Flags
    # =========================================================================

    ENVIRONMENT: str = Field(
        default="production",
        description="Deployment environment name (production, staging, development, test)",
    )

    ALLOW_UNSIGNED_WEBHOOKS: bool = Field(
        default=False,
        description="Accept webhook deliveries without signature headers (ignored in production)",
    )

    ALLOW_DEV_ORIGINS: bool = Field(
        default=False,
        description="Accept localhost/tunnel CORS origins (ignored in production)",
    )

    SIGNED_PAYLOAD_ENFORCE_CLAIMS: Optional[bool] = Field(
        default=None,
        description="Override the platform default for audience/issuer enforcement on signed payloads",
    )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    WEBHOOK_SECRET: Optional[str] = Field(
        default=None,
        description="Standard Webhooks signing secret (defaults to the client secret)",
    )

    WEBHOOK_TOLERANCE_SECONDS: int = Field(
        default=300,
        description="Maximum allowed clock skew for webhook timestamps",
        ge=30,
        le=3600,
    )

    WEBHOOK_SHARED_HEADER_SECRET: Optional[str] = Field(
        default=None,
        description="Optional value registered as x-webhook-secret on each hook",
    )

    # =========================================================================
    # CORS Origin Cache
    # =========================================================================

    ORIGIN_CACHE_TTL_SECONDS: int = Field(
        default=300,
        description="How long a tenant's allowed origins are cached",
        ge=10,
        le=3600,
    )

    ORIGIN_CACHE_MAX_ENTRIES: int = Field(
        default=4096,
        description="Most tenants whose allowed origins are cached at once",
        ge=1,
    )

    # =========================================================================
    # Background Tasks & Upstream Calls
    # =========================================================================

    TASK_WORKERS: int = Field(
        default=2,
        description="Number of background workers for post-install setup",
        ge=1,
        le=32,
    )

    TASK_MAX_ATTEMPTS: int = Field(
        default=3,
        description="Attempts per background job before it is recorded as failed",
        ge=1,
        le=10,
    )

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for calls to the platform API",
        gt=0,
        le=120,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def session_secrets_list(self) -> List[str]:
        """
        Parse SESSION_SECRETS into an ordered list.

        Returns:
            Secrets with the newest (signing) secret first.
        """
        return [s.strip() for s in self.SESSION_SECRETS.split(",") if s.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"

    @property
    def unsigned_webhooks_allowed(self) -> bool:
        """Unsigned deliveries need the explicit flag AND a non-production environment."""
        return self.ALLOW_UNSIGNED_WEBHOOKS and not self.is_production

    @property
    def dev_origins_allowed(self) -> bool:
        return self.ALLOW_DEV_ORIGINS and not self.is_production

    @property
    def webhook_secret(self) -> str:
        return self.WEBHOOK_SECRET or self.PLATFORM_CLIENT_SECRET

    @property
    def app_url_str(self) -> str:
        """App URL without trailing slash."""
        return self.APP_URL.rstrip("/")

    @property
    def install_callback_url(self) -> str:
        return f"{self.app_url_str}/auth/install"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("PLATFORM")
    @classmethod
    def validate_platform(cls, v: str) -> str:
        """
        Validate that PLATFORM names a supported platform variant.

        Raises:
            ValueError: If the platform is unknown
        """
        v = v.strip().lower()
        if v not in ("bigcommerce", "shopify"):
            raise ValueError(f"PLATFORM must be 'bigcommerce' or 'shopify', got: {v}")
        return v

    @field_validator("SESSION_SECRETS")
    @classmethod
    def validate_session_secrets(cls, v: str) -> str:
        """
        Every secret in the rotation list must be at least 32 characters.

        Args:
            v: Raw comma-separated secrets string

        Returns:
            Validated secrets string

        Raises:
            ValueError: If the list is empty or any secret is too short
        """
        secrets = [s.strip() for s in v.split(",") if s.strip()]
        if not secrets:
            raise ValueError("SESSION_SECRETS must contain at least one secret")
        for index, secret in enumerate(secrets):
            if len(secret) < 32:
                raise ValueError(
                    f"SESSION_SECRETS entry {index} is too short (minimum 32 characters)"
                )
        return v

    @field_validator("APP_URL")
    @classmethod
    def validate_app_url(cls, v: str) -> str:
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("APP_URL must start with http:// or https://")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup; errors are logged and warnings
    surfaced so that misconfigured policy flags are visible in deploy logs.

    Returns:
        Dictionary with validation status and any warnings.
    """
    errors = []
    warnings = []

    if settings.is_production and not settings.APP_URL.startswith("https://"):
        errors.append("APP_URL must use https in production")

    if settings.is_production and "sqlite" in settings.DATABASE_URL:
        warnings.append("DATABASE_URL points to SQLite in production")

    if settings.ALLOW_UNSIGNED_WEBHOOKS:
        if settings.is_production:
            warnings.append("ALLOW_UNSIGNED_WEBHOOKS is set but ignored in production")
        else:
            warnings.append("Unsigned webhook deliveries will be accepted (non-production)")

    if settings.ALLOW_DEV_ORIGINS and settings.is_production:
        warnings.append("ALLOW_DEV_ORIGINS is set but ignored in production")

    if len(settings.session_secrets_list) > 3:
        warnings.append("More than 3 session secrets configured; retire old ones")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "platform": settings.PLATFORM,
        "environment": settings.ENVIRONMENT,
    }
