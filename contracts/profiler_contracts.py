"""
profiler_contracts.py

Request-scoped data model and error taxonomy for the serverless function profiler.

Everything here lives for exactly one request. The only thing that outlives a
request is the persisted :class:`FunctionMetricResult` record, which is written by
:mod:`services.results_store`.

Design goals:
- Immutable, side-effect free value objects
- Fallback values are named constants, not incidental defaults
- Errors carry their HTTP mapping so every surface answers the same way
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


# -----------------------------
# Contract constants
# -----------------------------

LAMBDA_NAMESPACE = "AWS/Lambda"
FUNCTION_NAME_DIMENSION = "FunctionName"
METRIC_PERIOD_SECONDS = 300
DEFAULT_WINDOW_SECONDS = 3600

FALLBACK_INVOCATION_COST = 0.0000002  # USD per request ($0.20 / million)
FALLBACK_DURATION_COST_PER_GB_SECOND = 0.00001667  # USD per GB-second
FALLBACK_MEMORY_MB = 128
MEMORY_UNIT_NORMALIZER = 1024.0  # MB -> GB

COST_DECIMALS = 6

DEGRADED_COLD_STARTS = "cold_starts"
DEGRADED_MEMORY = "memory_allocation"

_SESSION_NAME_INVALID = re.compile(r"[^\w+=,.@-]")


# -----------------------------
# Exceptions
# -----------------------------


class ProfilerError(RuntimeError):
    """Base class for request-level failures that reach the caller."""

    status_code: int = 500
    error_code: str = "internal_error"


class RequestValidationError(ProfilerError):
    """Malformed or unauthenticated request. Raised before any external call."""

    status_code = 400
    error_code = "bad_request"

    def __init__(self, message: str, *, status_code: int = 400, error_code: str = "bad_request") -> None:
        super().__init__(message)
        self.status_code = int(status_code)
        self.error_code = str(error_code)


class AuthorizationError(ProfilerError):
    """No configured role, or the tenant's role delegation was rejected."""

    status_code = 400
    error_code = "authorization_failed"


class FatalInfrastructureError(ProfilerError):
    """A prerequisite dependency failed; the caller must retry the whole request."""

    status_code = 500
    error_code = "internal_error"


class RequestTimeoutError(ProfilerError):
    """The request deadline elapsed before every function was processed."""

    status_code = 504
    error_code = "timeout"


def missing_identity_error() -> RequestValidationError:
    return RequestValidationError("Unauthorized", status_code=401, error_code="unauthorized")


# -----------------------------
# Value objects
# -----------------------------


@dataclass(frozen=True)
class Tenant:
    """Tenant record as read from the tenant configuration store."""

    tenant_id: str
    role_reference: str
    region: str

    def session_name(self) -> str:
        """Return an STS session label that identifies the tenant in CloudTrail."""
        raw = f"ProfilerSession-{self.tenant_id}"
        return _SESSION_NAME_INVALID.sub("-", raw)[:64]


@dataclass(frozen=True)
class PricingProfile:
    """Unit prices for one region.

    ``source`` is ``"table"`` when resolved from the pricing table and
    ``"fallback"`` when the documented default pair was substituted.
    """

    region: str
    invocation_cost: float
    duration_cost_per_resource_second: float
    source: str = "table"

    @classmethod
    def fallback(
        cls,
        region: str,
        *,
        invocation_cost: float = FALLBACK_INVOCATION_COST,
        duration_cost_per_resource_second: float = FALLBACK_DURATION_COST_PER_GB_SECOND,
    ) -> PricingProfile:
        return cls(
            region=str(region or ""),
            invocation_cost=float(invocation_cost),
            duration_cost_per_resource_second=float(duration_cost_per_resource_second),
            source="fallback",
        )


@dataclass(frozen=True)
class DelegatedCredentials:
    """Short-lived credentials for one tenant session. Never persisted or logged."""

    access_key_id: str
    secret_access_key: str = field(repr=False)
    session_token: str = field(repr=False)
    expiration: Optional[datetime] = None

    def as_boto3_kwargs(self) -> Dict[str, str]:
        return {
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "aws_session_token": self.session_token,
        }


class MetricKind(str, Enum):
    """The three CloudWatch series fetched per function."""

    LATENCY = "latency"
    ERRORS = "errors"
    INVOCATIONS = "invocations"

    @property
    def metric_name(self) -> str:
        return _METRIC_NAMES[self]

    @property
    def stat(self) -> str:
        return _METRIC_STATS[self]


_METRIC_NAMES = {
    MetricKind.LATENCY: "Duration",
    MetricKind.ERRORS: "Errors",
    MetricKind.INVOCATIONS: "Invocations",
}
_METRIC_STATS = {
    MetricKind.LATENCY: "Average",
    MetricKind.ERRORS: "Sum",
    MetricKind.INVOCATIONS: "Sum",
}


def query_id_for(kind: MetricKind, index: int) -> str:
    """Return the query id for ``kind`` of the function at ``index`` in the request."""
    return f"{kind.value}{int(index)}"


@dataclass(frozen=True)
class MetricQuerySpec:
    """One CloudWatch metric data query (function x metric kind)."""

    query_id: str
    function_name: str
    kind: MetricKind
    namespace: str = LAMBDA_NAMESPACE
    period: int = METRIC_PERIOD_SECONDS

    @property
    def metric_name(self) -> str:
        return self.kind.metric_name

    @property
    def stat(self) -> str:
        return self.kind.stat

    def to_query(self) -> Dict[str, Any]:
        """Return the ``MetricDataQueries`` entry for GetMetricData."""
        return {
            "Id": self.query_id,
            "MetricStat": {
                "Metric": {
                    "Namespace": self.namespace,
                    "MetricName": self.metric_name,
                    "Dimensions": [{"Name": FUNCTION_NAME_DIMENSION, "Value": self.function_name}],
                },
                "Period": int(self.period),
                "Stat": self.stat,
            },
            "ReturnData": True,
        }


@dataclass(frozen=True)
class FunctionWindow:
    """Inclusive request window in epoch seconds."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if int(self.start) > int(self.end):
            raise RequestValidationError("startTime must not be after endTime")

    @property
    def start_ms(self) -> int:
        return int(self.start) * 1000

    @property
    def end_ms(self) -> int:
        return int(self.end) * 1000

    def start_datetime(self) -> datetime:
        return datetime.fromtimestamp(int(self.start), tz=timezone.utc)

    def end_datetime(self) -> datetime:
        return datetime.fromtimestamp(int(self.end), tz=timezone.utc)


def round_cost(amount: float) -> float:
    """Round a cost to the contract precision (6 decimals)."""
    value = round(float(amount), COST_DECIMALS)
    if value == 0.0 or math.isnan(value):
        return 0.0
    return value


@dataclass(frozen=True)
class FunctionMetricResult:
    """Per-function answer. One per requested function, always."""

    function_name: str
    latency: float = 0.0
    errors: float = 0.0
    invocations: float = 0.0
    cold_starts: int = 0
    memory_allocation: int = FALLBACK_MEMORY_MB
    cost: float = 0.0
    degraded: Tuple[str, ...] = ()

    def to_response(self) -> Dict[str, Any]:
        """Public response shape (camelCase, as consumed by the dashboard)."""
        return {
            "functionName": self.function_name,
            "latency": self.latency,
            "errors": self.errors,
            "invocations": self.invocations,
            "coldStarts": self.cold_starts,
            "cost": self.cost,
            "memoryAllocation": self.memory_allocation,
        }
