"""
Runtime configuration loaded from environment variables.

Settings are read once into an immutable dataclass. Secrets are never logged;
only their presence is reported (see log_config_status).
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEVELOPMENT_ENVIRONMENTS = ("development", "dev", "local", "test")

DEFAULT_DATABASE_URL = "sqlite:///./kasiviral.db"
DEFAULT_GRACE_DAYS = 30


def _bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "y", "on")


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Invalid float in environment, using default", extra={"var": name})
        return default


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid integer in environment, using default", extra={"var": name})
        return default


def normalize_database_url(url: str) -> str:
    """Heroku/Render style postgres:// URLs are not accepted by SQLAlchemy 2."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


@dataclass(frozen=True)
class Settings:
    """Service configuration."""

    app_env: str = "production"
    database_url: str = DEFAULT_DATABASE_URL

    # Identity provider
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None
    identity_timeout_seconds: float = 5.0

    # Entitlements
    entitlement_lookup_timeout_seconds: float = 3.0
    default_grace_days: int = DEFAULT_GRACE_DAYS

    # Billing collaborator
    billing_webhook_secret: Optional[str] = None

    # Thread generation
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_fallback_model: str = "gpt-3.5-turbo"
    openai_timeout_seconds: float = 60.0

    # Rate limiting
    redis_url: str = "redis://localhost:6379/0"
    rate_limit_enabled: bool = True
    rate_limit_threads_per_window: int = 20
    rate_limit_window_seconds: int = 3600

    @property
    def is_development(self) -> bool:
        return self.app_env.strip().lower() in DEVELOPMENT_ENVIRONMENTS

    @property
    def activation_shortcut_enabled(self) -> bool:
        """The unsigned activation endpoint is only ever registered outside production."""
        return self.is_development

    @classmethod
    def from_env(cls) -> "Settings":
        """Load configuration from environment variables."""
        return cls(
            app_env=os.getenv("APP_ENV", "production"),
            database_url=normalize_database_url(os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)),
            supabase_url=(os.getenv("SUPABASE_URL") or "").rstrip("/") or None,
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY") or None,
            supabase_jwt_secret=os.getenv("SUPABASE_JWT_SECRET") or None,
            identity_timeout_seconds=_float_env("IDENTITY_TIMEOUT_SECONDS", 5.0),
            entitlement_lookup_timeout_seconds=_float_env("ENTITLEMENT_LOOKUP_TIMEOUT_SECONDS", 3.0),
            default_grace_days=_int_env("DEFAULT_GRACE_DAYS", DEFAULT_GRACE_DAYS),
            billing_webhook_secret=os.getenv("BILLING_WEBHOOK_SECRET") or None,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            openai_fallback_model=os.getenv("OPENAI_FALLBACK_MODEL", "gpt-3.5-turbo"),
            openai_timeout_seconds=_float_env("OPENAI_TIMEOUT_SECONDS", 60.0),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            rate_limit_enabled=_bool_env("RATE_LIMIT_ENABLED", default=True),
            rate_limit_threads_per_window=_int_env("RATE_LIMIT_THREADS_PER_WINDOW", 20),
            rate_limit_window_seconds=_int_env("RATE_LIMIT_WINDOW_SECONDS", 3600),
        )

    def log_config_status(self) -> None:
        """
        Log configuration status on startup (NO secrets).

        Logs which settings are present without exposing their values.
        """
        logger.info("Configuration status", extra={
            "app_env": self.app_env,
            "activation_shortcut_enabled": self.activation_shortcut_enabled,
            "identity_provider_configured": bool(self.supabase_url and self.supabase_anon_key),
            "local_jwt_verification": bool(self.supabase_jwt_secret),
            "billing_webhook_configured": bool(self.billing_webhook_secret),
            "thread_generation_configured": bool(self.openai_api_key),
        })

        if not (self.supabase_jwt_secret or (self.supabase_url and self.supabase_anon_key)):
            logger.warning("Identity provider not configured; all authenticated routes will return 401")
        if not self.is_development and not self.billing_webhook_secret:
            logger.warning("BILLING_WEBHOOK_SECRET missing; subscriptions cannot be activated")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the process-wide settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
