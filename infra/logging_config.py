"""Centralized logging configuration.

The profiler supports both human-friendly text logs and structured JSON logs.
Entry points (Flask app, Lambda handler, CLI) call :func:`setup_logging` once;
request handlers attach tenant/request identifiers with
:func:`set_request_context` so every line of one request can be correlated.

Delegated credentials must never be logged. Any structured field whose name looks
like a secret is masked by the formatter.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Mapping
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from infra.config import get_settings

# Context that follows requests through the system
# Use set_request_context() to populate, clear_request_context() to reset
request_ctx: ContextVar[dict[str, Any] | None] = ContextVar("request_ctx", default=None)

_SENSITIVE_KEYS = frozenset(
    {
        "secret_access_key",
        "secretaccesskey",
        "session_token",
        "sessiontoken",
        "credentials",
        "authorization",
        "bearer_token",
    }
)
_REDACTED = "***"


def set_request_context(**kwargs: Any) -> None:
    """Set context values that will be included in all subsequent log entries."""
    current = request_ctx.get()
    if current is None:
        current = {}
    else:
        current = dict(current)
    current.update(kwargs)
    request_ctx.set(current)


def clear_request_context() -> None:
    """Clear the request context (typically at the start of a new request)."""
    request_ctx.set({})


def get_request_context() -> dict[str, Any]:
    """Get a copy of the current request context."""
    ctx = request_ctx.get()
    return dict(ctx) if ctx else {}


def redact(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``fields`` with secret-looking values masked."""
    out: dict[str, Any] = {}
    for key, value in fields.items():
        if str(key).strip().lower() in _SENSITIVE_KEYS:
            out[key] = _REDACTED
        else:
            out[key] = value
    return out


def _utc_iso8601() -> str:
    # Example: 2026-01-24T18:03:12.123Z
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    """
    Safe JSON formatter:
      - Always outputs valid JSON (message escaped via json.dumps)
      - Adds common infra fields and the current request context
      - Masks secret-looking structured fields
    """

    _STANDARD = frozenset(
        {
            "name", "msg", "args", "levelname", "levelno", "pathname", "filename", "module",
            "exc_info", "exc_text", "stack_info", "lineno", "funcName", "created", "msecs",
            "relativeCreated", "thread", "threadName", "processName", "process", "taskName",
            "message",
        }
    )

    def __init__(self, *, extra_fields: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self._extra_fields = dict(extra_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "timestamp": _utc_iso8601(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }

        for k, v in redact(self._extract_extras(record)).items():
            if k not in base:
                base[k] = v

        for k, v in self._extra_fields.items():
            base.setdefault(k, v)

        if record.exc_info:
            base["exception"] = self.formatException(record.exc_info)

        ctx = request_ctx.get()
        if ctx:
            for k, v in redact(ctx).items():
                if k not in base:
                    base[k] = v

        return json.dumps(base, ensure_ascii=False, default=str)

    @classmethod
    def _extract_extras(cls, record: logging.LogRecord) -> dict[str, Any]:
        # Anything not in standard LogRecord attributes was passed via `extra=`
        return {key: value for key, value in record.__dict__.items() if key not in cls._STANDARD}


class TextFormatter(logging.Formatter):
    """
    Human-friendly logs, but UTC timestamps.
    """
    converter = time.gmtime  # UTC

    def __init__(self) -> None:
        super().__init__("%(asctime)sZ | %(levelname)s | %(name)s | %(message)s")


class StructuredLogger:
    """
    JSON-structured logger with automatic context injection.

    Usage:
        from infra.logging_config import StructuredLogger, set_request_context

        logger = StructuredLogger(__name__)

        set_request_context(tenant_id="abc", request_id="123")
        logger.info("metric_batch_fetched", queries=30)
        # Output: {"timestamp": "...", "level": "INFO", "event": "metric_batch_fetched",
        #          "tenant_id": "abc", "request_id": "123", "queries": 30, ...}

        clear_request_context()
    """

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event: str, *, exc_info: bool = False, **kwargs: Any) -> None:
        extra = {"event": event, **redact(kwargs)}
        self._logger.log(level, event, extra=extra, exc_info=exc_info)

    def debug(self, event: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._log(logging.INFO, event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, event, **kwargs)

    def exception(self, event: str, **kwargs: Any) -> None:
        """Log an exception (with traceback) and the current context."""
        self._log(logging.ERROR, event, exc_info=True, **kwargs)


def get_logger(name: str) -> StructuredLogger:
    """Return a structured logger namespaced under the engine logger."""
    return StructuredLogger(f"lambdaprofiler.{name}")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    json_logs: bool = False
    override_root_handlers: bool = False
    extra_fields: Mapping[str, Any] | None = None


def setup_logging(
    *,
    level: str | None = None,
    json_logs: bool | None = None,
    override_root_handlers: bool | None = None,
    extra_fields: Mapping[str, Any] | None = None,
) -> None:
    """
    Central logging setup for the repo.

    Env vars:
      - LOGGING__LEVEL / PROFILER_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR (default INFO)
      - LOGGING__JSON_LOGS / PROFILER_LOG_JSON: 1/0 (default 0)
      - LOGGING__OVERRIDE_ROOT_HANDLERS / PROFILER_LOG_OVERRIDE: 1/0 (default 0)
         If 1, replaces any pre-configured root handlers.
         If 0, only configures logging if root has no handlers.

    Note:
      - Won't break Flask/Gunicorn/Lambda runtimes that already configure root.
      - UTC timestamps for both text and JSON logs.
    """
    config = get_settings(reload=True).logging

    cfg = LoggingConfig(
        level=(level or config.level).upper(),
        json_logs=json_logs if json_logs is not None else bool(config.json_logs),
        override_root_handlers=override_root_handlers
        if override_root_handlers is not None
        else bool(config.override_root_handlers),
        extra_fields=extra_fields,
    )

    root = logging.getLogger()
    root.setLevel(getattr(logging, cfg.level, logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if cfg.json_logs:
        handler.setFormatter(JsonFormatter(extra_fields=cfg.extra_fields))
    else:
        handler.setFormatter(TextFormatter())

    if cfg.override_root_handlers:
        for h in list(root.handlers):
            root.removeHandler(h)
        root.addHandler(handler)
    elif not root.handlers:
        root.addHandler(handler)

    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
