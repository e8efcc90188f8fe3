"""API Gateway (REST, Lambda proxy integration) entry point.

The authorizer in front of the API has already verified the caller; its ``sub``
claim is the tenant identity. Query parameters match the Flask API:
``functionNames`` (required), ``startTime`` and ``endTime`` (optional, ISO-8601).

The request deadline follows the invocation's remaining time minus
``PROFILER__DEADLINE_MARGIN_SECONDS`` so the handler always answers (504 at
worst) before the runtime kills it.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, Optional

from infra.config import get_settings
from infra.logging_config import get_logger, setup_logging
from runner import MetricsResponse, ProfilerRunner

_LOGGER = get_logger("lambda_api")

_JSON_HEADERS = {
    "Content-Type": "application/json",
    "Cache-Control": "no-store",
}

_LOGGING_READY = False


def _ensure_logging() -> None:
    global _LOGGING_READY
    if not _LOGGING_READY:
        setup_logging()
        _LOGGING_READY = True


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def identity_from_event(event: Any) -> Optional[str]:
    """Return ``requestContext.authorizer.claims.sub`` or None."""
    claims = _mapping(_mapping(_mapping(_mapping(event).get("requestContext")).get("authorizer")).get("claims"))
    sub = claims.get("sub")
    if sub is None:
        return None
    text = str(sub).strip()
    return text or None


def query_param(event: Any, name: str) -> Optional[str]:
    value = _mapping(_mapping(event).get("queryStringParameters")).get(name)
    if value is None or value == "":
        return None
    return str(value)


def timeout_from_context(context: Any, *, margin_seconds: float) -> Optional[float]:
    """Seconds left for this request, or None when the context cannot tell."""
    remaining = getattr(context, "get_remaining_time_in_millis", None)
    if not callable(remaining):
        return None
    try:
        seconds = float(remaining()) / 1000.0
    except (TypeError, ValueError):
        return None
    return max(0.0, seconds - float(margin_seconds))


def to_proxy_response(response: MetricsResponse) -> dict[str, Any]:
    """Render a runner response in the API Gateway proxy format."""
    body: dict[str, Any] = {"ok": response.ok}
    body.update(response.body)
    return {
        "statusCode": int(response.status_code),
        "headers": dict(_JSON_HEADERS),
        "body": json.dumps(body, ensure_ascii=False, default=str),
    }


def lambda_handler(event: Any, context: Any, *, runner: Optional[ProfilerRunner] = None) -> dict[str, Any]:
    _ensure_logging()
    settings = get_settings()
    active = runner or ProfilerRunner(settings=settings)
    response = active.handle(
        identity=identity_from_event(event),
        function_names=query_param(event, "functionNames"),
        start_time=query_param(event, "startTime"),
        end_time=query_param(event, "endTime"),
        timeout_seconds=timeout_from_context(context, margin_seconds=settings.profiler.deadline_margin_seconds),
        debug_errors=settings.api.debug_errors,
    )
    _LOGGER.info(
        "lambda_request",
        status=response.status_code,
        aws_request_id=getattr(context, "aws_request_id", None),
    )
    return to_proxy_response(response)
