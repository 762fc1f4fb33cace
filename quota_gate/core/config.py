"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

The quota table and counting mode are read once at startup. There is no
on-the-fly reconfiguration: a new quota table requires a restart.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


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

# Only load from file if it exists and we're not under test
_env_file = (
    str(_env_path)
    if _env_path.is_file() and os.getenv("TESTING", "").lower() != "true"
    else None
)


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


# Route table served by the query API. Every route may be hit up to its limit
# (exclusive) for the lifetime of the counter state.
DEFAULT_ROUTE_QUOTAS: dict[str, int] = {
    "/": 10,
    "/events/hourly": 1000,
    "/events/daily": 1000,
    "/stats/hourly": 1000,
    "/stats/daily": 1000,
    "/poi": 1000,
    "/poi/events/hourly": 1000,
    "/poi/events/daily": 1000,
    "/poi/stats/hourly": 1000,
    "/poi/stats/daily": 1000,
}

AdmissionMode = Literal["local", "shared"]
SharedStrategyName = Literal["check_then_increment", "increment_then_compare"]


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    Static type checkers treat fields as constructor arguments, which is not
    how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()  # type: ignore[call-arg]


def _build_admission_settings() -> "AdmissionSettings":
    """Build admission control settings from environment."""

    return AdmissionSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    name: str = Field(
        "Route Quota Gate",
        description="Service name shown in the OpenAPI docs",
    )
    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration (format, destination, correlation header)."""

    level: str = Field(
        "INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR)",
    )
    format: str = Field(
        "json",
        description="Log line format: 'json' or 'plain'",
    )
    output: str = Field(
        "stdout",
        description="Log destination: 'stdout' or 'file'",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file'",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header carrying the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class _ExplicitValuesFirst(PydanticBaseSettingsSource):
    """Wraps a settings source, dropping fields that were passed to the constructor.

    Sources are deep-merged, so a dict passed as ``quotas=...`` would otherwise
    be combined key by key with ``ADMISSION_QUOTAS``. An explicit value
    replaces the environment value as a whole.
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        source: PydanticBaseSettingsSource,
        explicit_fields: set[str],
    ) -> None:
        super().__init__(settings_cls)
        self._source = source
        self._explicit_fields = explicit_fields

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self._source.get_field_value(field, field_name)

    def __call__(self) -> dict[str, Any]:
        return {
            name: value
            for name, value in self._source().items()
            if name not in self._explicit_fields
        }


class AdmissionSettings(BaseSettings):
    """Per-route admission control configuration.

    Quotas are a JSON object in the environment, e.g.
    ``ADMISSION_QUOTAS='{"/": 10, "/poi": 1000}'``.
    """

    mode: AdmissionMode = Field(
        "local",
        description="'local' keeps counters in process memory, 'shared' keeps them in Redis",
    )
    quotas: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_ROUTE_QUOTAS),
        description="Route path to maximum number of admitted requests",
    )
    store_url: str | None = Field(
        None,
        description="Redis connection URL, required in shared mode",
    )
    store_timeout_seconds: float = Field(
        2.0,
        description="Timeout applied to every store call and to connecting",
        gt=0,
    )
    key_prefix: str = Field(
        "routeCounts",
        description="Namespace for counter keys ('<prefix>:<path>')",
    )
    shared_strategy: SharedStrategyName = Field(
        "check_then_increment",
        description=(
            "Shared-mode admission sequence. 'check_then_increment' allows a bounded "
            "overshoot across instances; 'increment_then_compare' never over-admits"
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="ADMISSION_",
        case_sensitive=False,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        explicit = set(getattr(init_settings, "init_kwargs", {}))
        return (
            init_settings,
            _ExplicitValuesFirst(settings_cls, env_settings, explicit),
            _ExplicitValuesFirst(settings_cls, dotenv_settings, explicit),
            file_secret_settings,
        )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    admission: AdmissionSettings = Field(default_factory=_build_admission_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
