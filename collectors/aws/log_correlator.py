"""
collectors/aws/log_correlator.py

Counts Lambda cold starts from CloudWatch Logs.

A cold start shows up as a ``REPORT`` line carrying an ``Init Duration`` field:

  REPORT RequestId: 3f1c... Duration: 12.3 ms Billed Duration: 13 ms
  Memory Size: 128 MB Max Memory Used: 70 MB Init Duration: 180.2 ms

Failures (missing log group, access denied, throttling) are degradations: they
are logged as warnings and count as zero cold starts.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from collectors.aws._common import failure_reason, fetch_or_default
from contracts.profiler_contracts import FunctionWindow
from infra.logging_config import get_logger

_LOGGER = get_logger("log_correlator")

COLD_START_MARKER = "Init Duration"
COLD_START_FILTER_PATTERN = '"Init Duration"'  # exact phrase match
DEFAULT_MAX_PAGES = 20


def log_group_for(function_name: str) -> str:
    return f"/aws/lambda/{function_name}"


def is_cold_start_event(entry: Any) -> bool:
    """Return True when a log event records an initialization duration."""

    if not isinstance(entry, Mapping):
        return False
    message = entry.get("message")
    if not isinstance(message, str):
        return False
    return COLD_START_MARKER in message


class LogCorrelator:
    """Per-function cold-start counter."""

    def __init__(self, logs_client: Any, *, max_pages: int = DEFAULT_MAX_PAGES) -> None:
        self._logs = logs_client
        self._max_pages = max(1, int(max_pages))

    def cold_starts(self, function_name: str, window: FunctionWindow) -> int | None:
        """Return the cold-start count, or None when the logs could not be read."""
        try:
            return self._count(function_name, window)
        except (ClientError, BotoCoreError, KeyError, TypeError, ValueError) as exc:
            _LOGGER.warning(
                "cold_start_lookup_degraded",
                function_name=function_name,
                reason=failure_reason(exc),
            )
            return None

    def _count(self, function_name: str, window: FunctionWindow) -> int:
        count = 0
        pages = 0
        next_token: str | None = None
        while True:
            request: dict[str, Any] = {
                "logGroupName": log_group_for(function_name),
                "startTime": window.start_ms,
                "endTime": window.end_ms,
                "filterPattern": COLD_START_FILTER_PATTERN,
            }
            if next_token:
                request["nextToken"] = next_token
            response = self._logs.filter_log_events(**request)
            pages += 1

            for event in fetch_or_default(response, "events", []) or []:
                if is_cold_start_event(event):
                    count += 1

            next_token_raw = fetch_or_default(response, "nextToken", None)
            next_token = str(next_token_raw) if next_token_raw else None
            if not next_token:
                break
            if pages >= self._max_pages:
                _LOGGER.info("cold_start_scan_truncated", function_name=function_name, pages=pages)
                break
        return count
