"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename
_env_file = str(_env_path) if _env_path.is_file() else None

# Nested BaseSettings don't inherit env_file, so populate os.environ first.
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


DEFAULT_RATE_LIMIT_MESSAGE = "Too many requests, please try again later."


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Static type checkers treat BaseSettings fields as constructor arguments,
    which is not how BaseSettings is meant to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class RouteLimitSettings(BaseModel):
    """One entry of the per-procedure rate limit table."""

    window_ms: int | None = Field(None, ge=1)
    limit: int | None = Field(None, ge=1)


class AppSettings(BaseSettings):
    """Rate limiting and RPC routing configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    workers: int = Field(
        1,
        description="Number of server worker processes (used for diagnostics only)",
        ge=1,
    )
    rpc_path_prefix: str = Field(
        "rpc",
        description="First path segment of RPC calls, e.g. 'rpc' for /rpc/posts.create",
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable rate limiting on RPC procedures",
    )
    rate_limit_mode: Literal["single", "multi"] = Field(
        "single",
        description="'single' applies one window/limit everywhere, 'multi' uses rate_limit_routes",
    )
    rate_limit_window_ms: int = Field(
        60_000,
        description="Window length in milliseconds (single mode)",
        ge=1,
    )
    rate_limit_requests: int = Field(
        10,
        description="Maximum number of requests allowed per window (single mode)",
        ge=1,
    )
    rate_limit_routes: dict[str, RouteLimitSettings] = Field(
        default_factory=dict,
        description="JSON map of procedure path (or 'default') to {window_ms, limit} (multi mode)",
    )
    rate_limit_store: str = Field(
        "memory",
        description="Counter backend: 'memory' or 'remote'",
    )
    rate_limit_prefix: str = Field(
        "rl:",
        description="Prefix prepended to keys by the store",
    )
    rate_limit_sweep_interval_ms: int | None = Field(
        None,
        description="Expired-window sweep interval for the memory store (defaults to the window length)",
        ge=1,
    )
    rate_limit_message: str = Field(
        DEFAULT_RATE_LIMIT_MESSAGE,
        description="Message returned to throttled clients",
    )
    rate_limit_status_code: int = Field(
        429,
        description="HTTP status reported on rejection",
        ge=400,
        le=599,
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    rate_limit_trusted_ip_header: str = Field(
        "cf-connecting-ip",
        description="Header set by the trusted edge proxy with the client address",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )

    @field_validator("rate_limit_store")
    @classmethod
    def _normalize_store(cls, value: str) -> str:
        return value.strip().lower()


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log output format")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to accept and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()
