"""Centralized application configuration with schema validation.

This module is intentionally compatibility-first:
- Supports legacy flat environment names (for example ``METRICS_TABLE``).
- Supports nested names (for example ``PROFILER__METRICS_TABLE``) for consistency.
- Optionally reads a local ``.env`` file before process env values.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from threading import Lock

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _normalize_bool(value: object, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return default


class AWSConfig(BaseModel):
    """AWS client defaults used by service factories."""

    model_config = ConfigDict(frozen=True)

    default_region: str = Field(default="us-east-1")
    max_retries: int = Field(default=5, ge=1, le=25)
    timeout: int = Field(default=10, ge=1, le=300)
    connect_timeout: int = Field(default=5, ge=1, le=60)


class APIConfig(BaseModel):
    """Flask API runtime configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000, ge=1, le=65535)
    version: str = Field(default="v1")
    debug_errors: bool = Field(default=False)
    bearer_token: str = Field(default="")
    identity_header: str = Field(default="X-Tenant-Id")

    @field_validator("version")
    @classmethod
    def _normalize_version(cls, value: str) -> str:
        text = str(value or "").strip().lower()
        if re.match(r"^v\d+$", text):
            return text
        return "v1"

    @field_validator("debug_errors", mode="before")
    @classmethod
    def _normalize_debug_errors(cls, value: object) -> bool:
        return _normalize_bool(value, default=False)

    @field_validator("identity_header", mode="before")
    @classmethod
    def _normalize_identity_header(cls, value: object) -> str:
        return str(value or "").strip() or "X-Tenant-Id"


class LoggingSettings(BaseModel):
    """Repository-wide logging settings."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)
    override_root_handlers: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        text = str(value or "").strip().upper()
        if text in _LOG_LEVELS:
            return text
        return "INFO"


class ProfilerConfig(BaseModel):
    """Metrics aggregation and cost estimation settings."""

    model_config = ConfigDict(frozen=True)

    tenants_table: str = Field(default="ProfilerUsers")
    pricing_table: str = Field(default="ProfilerPricing")
    metrics_table: str = Field(default="ProfilerMetrics")
    control_region: str = Field(default="us-east-1")

    fallback_invocation_cost: float = Field(default=0.0000002, ge=0.0)
    fallback_duration_cost_per_gb_second: float = Field(default=0.00001667, ge=0.0)
    fallback_memory_mb: int = Field(default=128, ge=1)

    default_window_seconds: int = Field(default=3600, ge=60)
    metric_period_seconds: int = Field(default=300, ge=60)
    max_queries_per_call: int = Field(default=500, ge=3, le=500)
    max_concurrency: int = Field(default=8, ge=1, le=64)
    log_max_pages: int = Field(default=20, ge=1)
    session_duration_seconds: int = Field(default=900, ge=900, le=43200)
    request_timeout_seconds: float = Field(default=25.0, gt=0.0)
    deadline_margin_seconds: float = Field(default=1.0, ge=0.0)
    local_mode: bool = Field(default=False)

    @field_validator("local_mode", mode="before")
    @classmethod
    def _normalize_local_mode(cls, value: object) -> bool:
        return _normalize_bool(value, default=False)


class Settings(BaseModel):
    """Top-level settings model."""

    model_config = ConfigDict(frozen=True)

    aws: AWSConfig = Field(default_factory=AWSConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    profiler: ProfilerConfig = Field(default_factory=ProfilerConfig)

    @classmethod
    def from_env(
        cls,
        *,
        env: Mapping[str, str] | None = None,
        env_file: str = ".env",
    ) -> Settings:
        """Build settings from `.env` then environment variables."""
        runtime_env = os.environ if env is None else env
        merged_env = _merge_env(_load_dotenv(Path(env_file)), runtime_env)
        payload = _build_payload(merged_env)
        return cls.model_validate(payload)


def _load_dotenv(path: Path) -> dict[str, str]:
    """Parse a minimal `.env` file format."""
    if not path.exists() or not path.is_file():
        return {}

    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, raw_value = line.split("=", 1)
        key_clean = key.strip()
        value = raw_value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        if key_clean:
            values[key_clean] = value
    return values


def _merge_env(dotenv_values: Mapping[str, str], runtime_env: Mapping[str, str]) -> dict[str, str]:
    """Return env map where process env overrides `.env` values."""
    merged = {str(k): str(v) for k, v in dotenv_values.items()}
    for key, value in runtime_env.items():
        merged[str(key)] = str(value)
    return merged


def _first_non_empty(env: Mapping[str, str], *keys: str) -> str | None:
    """Return the first non-empty value for the provided keys."""
    for key in keys:
        value = str(env.get(key, "")).strip()
        if value:
            return value
    return None


def _build_payload(env: Mapping[str, str]) -> dict[str, object]:
    """Build nested settings payload from env values."""
    aws = {
        "default_region": _first_non_empty(env, "AWS__DEFAULT_REGION", "AWS_DEFAULT_REGION", "AWS_REGION"),
        "max_retries": _first_non_empty(env, "AWS__MAX_RETRIES", "AWS_MAX_RETRIES"),
        "timeout": _first_non_empty(env, "AWS__TIMEOUT", "AWS_TIMEOUT"),
        "connect_timeout": _first_non_empty(env, "AWS__CONNECT_TIMEOUT", "AWS_CONNECT_TIMEOUT"),
    }
    api = {
        "host": _first_non_empty(env, "API__HOST", "API_HOST", "HOST"),
        "port": _first_non_empty(env, "API__PORT", "API_PORT", "PORT"),
        "version": _first_non_empty(env, "API__VERSION", "API_VERSION"),
        "debug_errors": _first_non_empty(env, "API__DEBUG_ERRORS", "API_DEBUG_ERRORS"),
        "bearer_token": _first_non_empty(env, "API__BEARER_TOKEN", "API_BEARER_TOKEN"),
        "identity_header": _first_non_empty(env, "API__IDENTITY_HEADER", "API_IDENTITY_HEADER"),
    }
    logging_settings = {
        "level": _first_non_empty(env, "LOGGING__LEVEL", "PROFILER_LOG_LEVEL", "LOG_LEVEL"),
        "json_logs": _first_non_empty(env, "LOGGING__JSON_LOGS", "PROFILER_LOG_JSON"),
        "override_root_handlers": _first_non_empty(
            env, "LOGGING__OVERRIDE_ROOT_HANDLERS", "PROFILER_LOG_OVERRIDE"
        ),
    }
    profiler = {
        "tenants_table": _first_non_empty(env, "PROFILER__TENANTS_TABLE", "TENANTS_TABLE", "USERS_TABLE"),
        "pricing_table": _first_non_empty(env, "PROFILER__PRICING_TABLE", "PRICING_TABLE"),
        "metrics_table": _first_non_empty(env, "PROFILER__METRICS_TABLE", "METRICS_TABLE"),
        "control_region": _first_non_empty(env, "PROFILER__CONTROL_REGION", "CONTROL_REGION"),
        "fallback_invocation_cost": _first_non_empty(
            env, "PROFILER__FALLBACK_INVOCATION_COST", "FALLBACK_INVOCATION_COST"
        ),
        "fallback_duration_cost_per_gb_second": _first_non_empty(
            env, "PROFILER__FALLBACK_DURATION_COST_PER_GB_SECOND", "FALLBACK_DURATION_COST_PER_GB_SECOND"
        ),
        "fallback_memory_mb": _first_non_empty(env, "PROFILER__FALLBACK_MEMORY_MB", "FALLBACK_MEMORY_MB"),
        "default_window_seconds": _first_non_empty(env, "PROFILER__DEFAULT_WINDOW_SECONDS"),
        "metric_period_seconds": _first_non_empty(env, "PROFILER__METRIC_PERIOD_SECONDS"),
        "max_queries_per_call": _first_non_empty(env, "PROFILER__MAX_QUERIES_PER_CALL"),
        "max_concurrency": _first_non_empty(env, "PROFILER__MAX_CONCURRENCY", "MAX_CONCURRENCY"),
        "log_max_pages": _first_non_empty(env, "PROFILER__LOG_MAX_PAGES"),
        "session_duration_seconds": _first_non_empty(env, "PROFILER__SESSION_DURATION_SECONDS"),
        "request_timeout_seconds": _first_non_empty(
            env, "PROFILER__REQUEST_TIMEOUT_SECONDS", "REQUEST_TIMEOUT_SECONDS"
        ),
        "deadline_margin_seconds": _first_non_empty(env, "PROFILER__DEADLINE_MARGIN_SECONDS"),
        "local_mode": _first_non_empty(env, "PROFILER__LOCAL_MODE", "IS_LOCAL"),
    }
    return {
        "aws": {k: v for k, v in aws.items() if v is not None},
        "api": {k: v for k, v in api.items() if v is not None},
        "logging": {k: v for k, v in logging_settings.items() if v is not None},
        "profiler": {k: v for k, v in profiler.items() if v is not None},
    }


_SETTINGS_LOCK = Lock()
_SETTINGS_CACHE: Settings | None = None


def get_settings(*, reload: bool = False) -> Settings:
    """Return cached settings, optionally forcing reload from env."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        if reload or _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = Settings.from_env()
        return _SETTINGS_CACHE


def clear_settings_cache() -> None:
    """Clear in-process settings cache."""
    global _SETTINGS_CACHE
    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


__all__ = [
    "APIConfig",
    "AWSConfig",
    "LoggingSettings",
    "ProfilerConfig",
    "Settings",
    "get_settings",
    "clear_settings_cache",
    "ValidationError",
]
