"""
Gatehouse — Application Configuration
=======================================

What:  Centralized configuration for the request-governance layer, loaded with
       Pydantic Settings.
How:   Pydantic Settings reads environment variables (or a .env file),
       coerces and validates them, and exposes a singleton `settings` object.
Who:   Imported by the application factory and by tests that build apps with
       custom settings.
When:  Loaded once at import time. Origin policy is validated here so that a
       wildcard origin never makes it past startup.

Configuration surface:
    APP_ENV                 development | test | staging | production
    CORS_ORIGINS            Comma-separated allowed origins (no "*")
    CORS_ALLOW_CREDENTIALS  Emit Access-Control-Allow-Credentials for allowed origins
    API_RATE_LIMIT          Requests admitted per client per window
    THROTTLE_TTL            Window duration in milliseconds
    TRUSTED_PROXY_HOPS      How many X-Forwarded-For hops to trust (0 = ignore header)
    LOG_LEVEL               DEBUG, INFO, WARNING, ERROR, CRITICAL

Rate-limit values never fail startup: anything that is not a positive integer
falls back to the default with a warning.
"""

import logging
from functools import lru_cache
from typing import Any, List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 100
DEFAULT_RATE_WINDOW_MS = 60_000

DEVELOPMENT_ENVIRONMENTS = frozenset({"development", "dev", "local"})
TEST_ENVIRONMENTS = frozenset({"test", "testing"})


def _positive_int_or_default(value: Any, default: int, name: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s value %r; falling back to %d", name, value, default)
        return default
    if parsed <= 0:
        logger.warning("Non-positive %s value %r; falling back to %d", name, value, default)
        return default
    return parsed


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Defaults are production-safe: an unconfigured deployment allows no
    cross-origin callers and never exposes stack traces.
    """

    # ── Environment ───────────────────────────────────────────────────────
    environment: str = Field(
        default="production",
        validation_alias=AliasChoices("APP_ENV", "environment"),
        description="Running environment; drives default origins and stack-trace exposure",
    )

    # ── CORS ──────────────────────────────────────────────────────────────
    # Format: comma-separated scheme://host[:port] values
    cors_origins: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CORS_ORIGINS", "cors_origins"),
    )
    cors_allow_credentials: bool = Field(
        default=False,
        validation_alias=AliasChoices("CORS_ALLOW_CREDENTIALS", "cors_allow_credentials"),
    )

    # ── Rate Limiting ─────────────────────────────────────────────────────
    rate_limit_requests: int = Field(
        default=DEFAULT_RATE_LIMIT,
        validation_alias=AliasChoices("API_RATE_LIMIT", "rate_limit_requests"),
    )
    rate_limit_window_ms: int = Field(
        default=DEFAULT_RATE_WINDOW_MS,
        validation_alias=AliasChoices("THROTTLE_TTL", "rate_limit_window_ms"),
    )
    trusted_proxy_hops: int = Field(
        default=0,
        ge=0,
        le=10,
        validation_alias=AliasChoices("TRUSTED_PROXY_HOPS", "trusted_proxy_hops"),
    )

    # ── Logging ───────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("environment")
    @classmethod
    def normalize_environment(cls, v: str) -> str:
        return (v or "production").strip().lower()

    @field_validator("cors_origins")
    @classmethod
    def reject_wildcard_origin(cls, v: Optional[str]) -> Optional[str]:
        """A literal "*" would make every origin trusted; refuse to start with it."""
        if v is None:
            return None
        if any(part.strip() == "*" for part in v.split(",")):
            raise ValueError("CORS_ORIGINS must list explicit origins; '*' is not allowed")
        return v

    @field_validator("rate_limit_requests", mode="before")
    @classmethod
    def fallback_rate_limit(cls, v: Any) -> int:
        return _positive_int_or_default(v, DEFAULT_RATE_LIMIT, "API_RATE_LIMIT")

    @field_validator("rate_limit_window_ms", mode="before")
    @classmethod
    def fallback_rate_window(cls, v: Any) -> int:
        return _positive_int_or_default(v, DEFAULT_RATE_WINDOW_MS, "THROTTLE_TTL")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Configured origins as a list; empty when CORS_ORIGINS is unset or blank.
        """
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        """Development-like mode: stack traces may appear in error details."""
        return self.environment in DEVELOPMENT_ENVIRONMENTS

    @property
    def allows_dev_origins(self) -> bool:
        """Whether the localhost fallback origins apply when none are configured."""
        return self.environment in DEVELOPMENT_ENVIRONMENTS | TEST_ENVIRONMENTS

    @property
    def diagnostics_enabled(self) -> bool:
        """Whether the deliberately failing /test-error routes are mounted."""
        return self.environment in DEVELOPMENT_ENVIRONMENTS | TEST_ENVIRONMENTS


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
