"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Settings are grouped by concern (app, store, quota, log), each with its own
environment prefix.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


GLOBAL_CATEGORY = "global"


class PolicyConfig(BaseModel):
    """Quota policy as supplied through configuration."""

    max: int = Field(..., ge=1, description="Maximum events per window")
    window_ms: int = Field(..., ge=1, description="Window length in milliseconds")
    message: str = Field(..., description="Human-readable denial message")
    description: str | None = Field(
        None,
        description="Short text shown by the limits endpoint",
    )


def _default_policies() -> dict[str, PolicyConfig]:
    return {
        "text": PolicyConfig(
            max=20,
            window_ms=60_000,
            message=(
                "You sent too many text messages. Wait 1 minute before sending "
                "more. Limit: 20 messages per minute."
            ),
            description="20 text messages per minute",
        ),
        "audio": PolicyConfig(
            max=5,
            window_ms=60_000,
            message=(
                "You sent too many audio messages. Wait 1 minute before sending "
                "more. Limit: 5 audio messages per minute."
            ),
            description="5 audio messages per minute",
        ),
        "image": PolicyConfig(
            max=10,
            window_ms=60_000,
            message=(
                "You sent too many images. Wait 1 minute before sending more. "
                "Limit: 10 images per minute."
            ),
            description="10 images per minute",
        ),
        "document": PolicyConfig(
            max=3,
            window_ms=60_000,
            message=(
                "You sent too many documents. Wait 1 minute before sending more. "
                "Limit: 3 documents per minute."
            ),
            description="3 documents per minute",
        ),
    }


def _default_global_policy() -> PolicyConfig:
    return PolicyConfig(
        max=50,
        window_ms=60_000,
        message=(
            "You reached the global message limit. Wait 1 minute before sending "
            "more. Limit: 50 messages per minute."
        ),
        description="50 messages in total per minute",
    )


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_store_settings() -> "StoreSettings":
    return StoreSettings()  # type: ignore[call-arg]


def _build_quota_settings() -> "QuotaSettings":
    return QuotaSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    admission_enabled: bool = Field(
        True,
        description="Enforce message quotas on the inbound webhook",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers alongside Retry-After when throttling",
    )
    admin_api_key_required: bool = Field(
        True,
        description="Whether the administrative endpoints require an API key",
    )
    admin_api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for the administrative endpoints",
    )
    subject_pattern: str = Field(
        r"^\+?[1-9]\d{1,14}$",
        description="Regular expression a subject identifier must fully match (E.164 by default)",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Shared counter store configuration."""

    backend: str = Field(
        "redis",
        description="Counter store backend: 'redis' or 'memory' (single process only)",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    operation_timeout_seconds: float = Field(
        0.5,
        description="Upper bound for every store call; a timeout counts as unavailable",
        gt=0,
    )
    connect_timeout_seconds: float = Field(
        1.0,
        description="Socket connect timeout for the Redis client",
        gt=0,
    )
    probe_interval_seconds: float = Field(
        2.0,
        description="How long an availability probe result is reused",
        ge=0,
    )
    key_prefix: str = Field(
        "ratelimit",
        description="Namespace prefix of every counter key",
    )
    scan_batch_size: int = Field(
        500,
        description="COUNT hint used when scanning keys by prefix",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class QuotaSettings(BaseSettings):
    """Quota policy table.

    ``policies`` and ``global_policy`` accept JSON from the environment, e.g.
    ``QUOTA_POLICIES='{"text": {"max": 20, "window_ms": 60000, "message": "..."}}'``.
    """

    policies: dict[str, PolicyConfig] = Field(
        default_factory=_default_policies,
        description="Per-category quota policies",
    )
    global_policy: PolicyConfig = Field(
        default_factory=_default_global_policy,
        description="Policy aggregating every category for a subject",
    )
    whitelist: str | None = Field(
        None,
        description="Comma-separated subjects exempt from all limits at startup",
    )

    model_config = SettingsConfigDict(
        env_prefix="QUOTA_",
        case_sensitive=False,
    )

    @field_validator("policies")
    @classmethod
    def _reject_reserved_category(
        cls, value: dict[str, PolicyConfig]
    ) -> dict[str, PolicyConfig]:
        if GLOBAL_CATEGORY in value:
            raise ValueError(
                f"'{GLOBAL_CATEGORY}' is reserved; configure it via QUOTA_GLOBAL_POLICY"
            )
        if not value:
            raise ValueError("at least one category policy is required")
        return value


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="'json' or 'plain'")
    output: str = Field("stdout", description="'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    store: StoreSettings = Field(default_factory=_build_store_settings)
    quota: QuotaSettings = Field(default_factory=_build_quota_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
