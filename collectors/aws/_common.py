"""Shared helpers for AWS collectors and control-plane services.

The collector layer tends to repeat a few patterns:
- read a field from an AWS response with an explicit, documented fallback
- unwrap DynamoDB attribute values
- classify botocore errors (access denied, not found, throttling)

Keeping these helpers in one place keeps fallback behavior consistent.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from botocore.exceptions import ClientError

ACCESS_DENIED_CODES = frozenset(
    {
        "AccessDenied",
        "AccessDeniedException",
        "UnauthorizedOperation",
        "UnrecognizedClientException",
    }
)
NOT_FOUND_CODES = frozenset({"ResourceNotFoundException", "ResourceNotFound"})
THROTTLING_CODES = frozenset(
    {"Throttling", "ThrottlingException", "TooManyRequestsException", "RequestLimitExceeded"}
)


def error_code(exc: BaseException) -> str:
    """Return the AWS error code of a ClientError (empty string otherwise)."""

    if not isinstance(exc, ClientError):
        return ""
    try:
        return str(exc.response.get("Error", {}).get("Code", "") or "")
    except (TypeError, ValueError, AttributeError):
        return ""


def failure_reason(exc: BaseException) -> str:
    """Short, log-safe classification of a dependency failure."""

    code = error_code(exc)
    if code in ACCESS_DENIED_CODES:
        return "access_denied"
    if code in NOT_FOUND_CODES:
        return "not_found"
    if code in THROTTLING_CODES:
        return "throttled"
    if code:
        return code
    return type(exc).__name__


def fetch_or_default(mapping: Any, key: str, fallback: Any) -> Any:
    """Return ``mapping[key]`` or ``fallback`` when absent, None or not a mapping."""

    if not isinstance(mapping, Mapping):
        return fallback
    value = mapping.get(key)
    if value is None:
        return fallback
    return value


def parse_finite_float(value: Any) -> float | None:
    """Parse ``value`` as a finite float, else None (rejects NaN, inf and bools)."""

    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed


def fetch_int_or_default(mapping: Any, key: str, fallback: int, *, minimum: int = 1) -> int:
    """Return an integer field >= ``minimum`` or ``fallback``."""

    parsed = parse_finite_float(fetch_or_default(mapping, key, None))
    if parsed is None or parsed < minimum:
        return int(fallback)
    return int(parsed)


def ddb_attr(item: Any, name: str) -> str | None:
    """Unwrap a scalar DynamoDB attribute (``{"S": ...}`` or ``{"N": ...}``)."""

    raw = fetch_or_default(item, name, None)
    if not isinstance(raw, Mapping):
        return None
    for type_key in ("S", "N"):
        value = raw.get(type_key)
        if value is not None:
            text = str(value).strip()
            return text or None
    return None
