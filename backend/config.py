"""
Membership Reconciliation - Configuration Management

Centralized configuration for environment variables and deployment settings.
This module covers:
- Database and environment settings
- Fingerprint secret for dedup keys and account hashing
- CRM (GoHighLevel) and CMS (WordPress) credentials
- Retry/timeout policy for external calls
- Matching thresholds and membership fee tiers
"""

from decimal import Decimal
from typing import Dict, List
from pydantic import Field
from pydantic_settings import BaseSettings
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

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
        default="",
        description="Async SQLAlchemy URL, e.g. postgresql+asyncpg://..."
    )
    DEV_DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./reconciliation.db",
        description="Fallback database used outside production when DATABASE_URL is unset"
    )

    # ==================== SECURITY ====================
    INTERNAL_API_KEY: str = Field(
        default="",
        description="Primary key accepted in the X-Internal-Api-Key header"
    )
    INTERNAL_API_KEYS: str = Field(
        default="",
        description="Comma-separated additional keys (rotation)"
    )
    FINGERPRINT_SECRET: str = Field(
        default="",
        description="Key for transaction fingerprints and account identifier hashes"
    )

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== CRM (GOHIGHLEVEL) ====================
    GHL_API_BASE_URL: str = Field(default="https://rest.gohighlevel.com/v1")
    GHL_API_KEY: str = Field(default="", description="GoHighLevel API key (Bearer)")
    GHL_RENEWAL_DATE_FIELD_ID: str = Field(default="cWMPNiNAfReHOumOhBB2")
    GHL_MEMBERSHIP_TYPE_FIELD_ID: str = Field(default="gH97LlNC9Y4PlkKVlY8V")
    GHL_PAID_TAG: str = Field(default="paid")

    # ==================== CMS (WORDPRESS) ====================
    WORDPRESS_API_URL: str = Field(
        default="",
        description="WordPress REST base, e.g. https://example.org/wp-json/wp/v2"
    )
    WORDPRESS_USERNAME: str = Field(default="")
    WORDPRESS_APP_PASSWORD: str = Field(default="", description="WordPress application password")

    # ==================== EXTERNAL CALLS ====================
    EXTERNAL_TIMEOUT_SECONDS: float = Field(default=10.0)
    RETRY_MAX_ATTEMPTS: int = Field(default=3, description="Attempts per collaborator call, first one included")
    RETRY_INITIAL_DELAY_SECONDS: float = Field(default=1.0)
    RETRY_MAX_DELAY_SECONDS: float = Field(default=10.0)
    RETRY_BACKOFF_MULTIPLIER: float = Field(default=2.0)

    # ==================== MATCHING ====================
    MATCH_MIN_CONFIDENCE: float = Field(
        default=0.3,
        description="Suggestions below this confidence are dropped"
    )
    MATCH_MAX_SUGGESTIONS: int = Field(default=5)
    MATCH_MIN_IDENTITY_SCORE: float = Field(
        default=0.5,
        description="Best email, name or payment-source score a contact needs before amount counts"
    )
    MATCH_AMOUNT_TOLERANCE: Decimal = Field(
        default=Decimal("0.01"),
        description="Difference treated as an exact fee match"
    )
    MATCH_AMOUNT_CUTOFF: Decimal = Field(
        default=Decimal("10.00"),
        description="Difference at which the amount score reaches zero"
    )
    MATCH_NARROW_ACCEPT_CONFIDENCE: float = Field(
        default=0.8,
        description="Skip the full-directory pass when the narrowed pool reaches this"
    )
    MATCH_RECENTLY_RECONCILED_DAYS: int = Field(
        default=30,
        description="Contacts reconciled within this window are not suggested (0 disables)"
    )
    MEMBERSHIP_FEES: Dict[str, Decimal] = Field(
        default={
            "Full": Decimal("50.00"),
            "Associate": Decimal("30.00"),
            "Newsletter Only": Decimal("10.00"),
        },
        description="Canonical membership type -> annual fee (JSON in env)"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(default="Membership Reconciliation API")
    API_VERSION: str = Field(default="1.0.0")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

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
    def cors_origins_list(self) -> List[str]:
        origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip() and o.strip() != "*"]
        if not self.is_production:
            origins.extend(["http://localhost:3000", "http://127.0.0.1:3000"])
        return sorted(set(origins))

    @property
    def internal_api_keys(self) -> List[str]:
        keys = []
        if self.INTERNAL_API_KEY:
            keys.append(self.INTERNAL_API_KEY)
        keys.extend(k.strip() for k in self.INTERNAL_API_KEYS.split(",") if k.strip())
        return keys

    @property
    def ghl_configured(self) -> bool:
        return bool(self.GHL_API_KEY)

    @property
    def wordpress_configured(self) -> bool:
        return bool(self.WORDPRESS_API_URL and self.WORDPRESS_USERNAME and self.WORDPRESS_APP_PASSWORD)

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if self.is_production:
            if not self.DATABASE_URL:
                errors.append("DATABASE_URL is required")
            elif self.DATABASE_URL.startswith("sqlite"):
                errors.append("DATABASE_URL cannot be sqlite in production")

            if not self.FINGERPRINT_SECRET:
                errors.append("FINGERPRINT_SECRET is required")
            elif len(self.FINGERPRINT_SECRET) < 32:
                errors.append("FINGERPRINT_SECRET should be at least 32 characters")

            if not self.internal_api_keys:
                errors.append("INTERNAL_API_KEY is required")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        if not 0.0 <= self.MATCH_MIN_CONFIDENCE <= 1.0:
            errors.append("MATCH_MIN_CONFIDENCE must be between 0 and 1")

        if not 0.0 <= self.MATCH_MIN_IDENTITY_SCORE <= 1.0:
            errors.append("MATCH_MIN_IDENTITY_SCORE must be between 0 and 1")

        if self.MATCH_AMOUNT_CUTOFF <= self.MATCH_AMOUNT_TOLERANCE:
            errors.append("MATCH_AMOUNT_CUTOFF must be greater than MATCH_AMOUNT_TOLERANCE")

        return errors

    def get_database_url(self) -> str:
        """Get the appropriate database URL"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if self.is_production:
            raise ValueError("No database configuration found. Set DATABASE_URL.")

        return self.DEV_DATABASE_URL


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


# ==================== CORS CONFIGURATION ====================

def get_cors_config() -> dict:
    """Get CORS middleware configuration."""
    settings = get_settings()

    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": [
            "Content-Type",
            "Accept",
            "X-Internal-Api-Key",
            "X-Request-ID",
        ],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,
    }


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment() -> dict:
    """
    Validate required and optional environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    optional_vars = [
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking disabled"),
        ("GHL_API_KEY", settings.GHL_API_KEY, "CRM propagation will fail until GHL_API_KEY is set"),
        ("WORDPRESS_API_URL", settings.WORDPRESS_API_URL, "CMS role updates are skipped until WordPress is configured"),
        ("FINGERPRINT_SECRET", settings.FINGERPRINT_SECRET, "Fingerprints use an empty key"),
        ("INTERNAL_API_KEY", settings.INTERNAL_API_KEY, "Mutating endpoints are unavailable"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            status["warnings"].append(warning)
            status["variables"][name] = "not set"
        else:
            status["variables"][name] = "set"

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(errors)
        status["valid"] = False

    return status


# Export settings instance for convenience
settings = get_settings()
