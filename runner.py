"""
runner.py

Request flow for the serverless function profiler.

One call to :meth:`ProfilerRunner.handle` is one unit of work:

  received -> authorizing -> (authorized | rejected)
    -> fetching_pricing_and_credentials -> fetching_metrics
      -> fanning_out -> aggregating -> responding

Terminal outcomes are ``responded_200``, ``responded_4xx`` (validation or
authorization) and ``responded_5xx`` (infrastructure failure or timeout). No
step is retried automatically; the caller resubmits on failure.

The Flask API, the API Gateway Lambda handler and the CLI all go through
:meth:`ProfilerRunner.handle`.

Run once from a shell (uses the runtime's AWS credentials for the control plane):
python runner.py --tenant acme --functions fnA,fnB
"""

from __future__ import annotations

import argparse
import contextvars
import json
import sys
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple, TypeVar

from collectors.aws.metric_fetcher import MetricFetcher, MetricSeries
from contracts.profiler_contracts import (
    DEFAULT_WINDOW_SECONDS,
    FunctionMetricResult,
    FunctionWindow,
    PricingProfile,
    ProfilerError,
    RequestTimeoutError,
    RequestValidationError,
    missing_identity_error,
)
from contracts.services import ControlPlaneServices, RequestContext, ServicesFactory
from infra.aws_config import SDK_CONFIG, STS_CONFIG
from infra.config import Settings, get_settings
from infra.logging_config import clear_request_context, get_logger, set_request_context, setup_logging
from pipeline.aggregator import ResultAggregator
from pipeline.cost_estimator import estimate_cost
from services.credential_broker import CredentialBroker
from services.pricing_service import PricingResolver
from services.results_store import DynamoDbResultsSink, LoggingResultsSink, MetricRecord, now_ms
from services.tenant_store import TenantStore

_LOGGER = get_logger("runner")

_T = TypeVar("_T")


class RequestState(str, Enum):
    RECEIVED = "received"
    AUTHORIZING = "authorizing"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"
    FETCHING_PRICING_AND_CREDENTIALS = "fetching_pricing_and_credentials"
    FETCHING_METRICS = "fetching_metrics"
    FANNING_OUT = "fanning_out"
    AGGREGATING = "aggregating"
    RESPONDING = "responding"
    RESPONDED_200 = "responded_200"
    RESPONDED_4XX = "responded_4xx"
    RESPONDED_5XX = "responded_5xx"


# -----------------------------
# Request parsing
# -----------------------------


def parse_function_names(raw: Optional[str]) -> List[str]:
    """Split a comma-separated list, dropping blank entries."""
    if raw is None:
        return []
    return [part.strip() for part in str(raw).split(",") if part.strip()]


def parse_iso8601_epoch(value: Optional[str], *, field_name: str) -> Optional[int]:
    """Parse an ISO-8601 timestamp (trailing 'Z' accepted) into epoch seconds."""
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError as exc:
        raise RequestValidationError(f"Invalid {field_name} (expected ISO-8601): {s!r}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp())


@dataclass(frozen=True)
class MetricsRequest:
    """A validated inbound request."""

    tenant_id: str
    function_names: List[str]
    window: FunctionWindow


def build_metrics_request(
    *,
    identity: Optional[str],
    function_names: Optional[str],
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    default_window_seconds: int = DEFAULT_WINDOW_SECONDS,
    now: Optional[int] = None,
) -> MetricsRequest:
    """Validate inbound parameters. Raises RequestValidationError (401/400)."""
    tenant_id = str(identity or "").strip()
    if not tenant_id:
        raise missing_identity_error()

    names = parse_function_names(function_names)
    if not names:
        raise RequestValidationError("Missing functionNames")

    current = int(now) if now is not None else int(time.time())
    start = parse_iso8601_epoch(start_time, field_name="startTime")
    end = parse_iso8601_epoch(end_time, field_name="endTime")
    if end is None:
        end = current
    if start is None:
        start = end - int(default_window_seconds)
    return MetricsRequest(tenant_id=tenant_id, function_names=names, window=FunctionWindow(start=start, end=end))


# -----------------------------
# Response
# -----------------------------


@dataclass(frozen=True)
class MetricsResponse:
    status_code: int
    body: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code < 400


def success_body(tenant_id: str, results: Sequence[FunctionMetricResult]) -> dict:
    return {"tenantId": tenant_id, "metrics": [r.to_response() for r in results]}


def error_response(exc: ProfilerError) -> MetricsResponse:
    return MetricsResponse(
        status_code=int(exc.status_code),
        body={"error": exc.error_code, "message": str(exc)},
    )


def internal_error_response(*, detail: Optional[str] = None) -> MetricsResponse:
    body: dict[str, Any] = {"error": "internal_error", "message": "Internal server error"}
    if detail:
        body["detail"] = detail
    return MetricsResponse(status_code=500, body=body)


def _terminal_state(status_code: int) -> RequestState:
    if status_code < 400:
        return RequestState.RESPONDED_200
    if status_code < 500:
        return RequestState.RESPONDED_4XX
    return RequestState.RESPONDED_5XX


# -----------------------------
# Runner
# -----------------------------


class ProfilerRunner:
    """Builds request-scoped collaborators and drives one request to completion."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        factory: Optional[ServicesFactory] = None,
        control: Optional[ControlPlaneServices] = None,
        sink: Any = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._factory = factory or ServicesFactory(sdk_config=SDK_CONFIG, sts_config=STS_CONFIG)
        self._control = control
        self._sink = sink

    @property
    def settings(self) -> Settings:
        return self._settings

    def _transition(self, state: RequestState, **fields: Any) -> None:
        _LOGGER.info("request_state", state=state.value, **fields)

    def handle(
        self,
        *,
        identity: Optional[str],
        function_names: Optional[str],
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        debug_errors: bool = False,
    ) -> MetricsResponse:
        """Answer one metrics request. Never raises."""
        request_id = uuid.uuid4().hex
        clear_request_context()
        set_request_context(request_id=request_id)
        self._transition(RequestState.RECEIVED)
        try:
            response = self._handle(
                identity=identity,
                function_names=function_names,
                start_time=start_time,
                end_time=end_time,
                timeout_seconds=timeout_seconds,
                request_id=request_id,
            )
        except ProfilerError as exc:
            response = error_response(exc)
        except Exception as exc:  # pylint: disable=broad-except
            _LOGGER.exception("unhandled_exception", reason=type(exc).__name__)
            response = internal_error_response(detail=str(exc) if debug_errors else None)
        self._transition(_terminal_state(response.status_code), status=response.status_code)
        clear_request_context()
        return response

    def _handle(
        self,
        *,
        identity: Optional[str],
        function_names: Optional[str],
        start_time: Optional[str],
        end_time: Optional[str],
        timeout_seconds: Optional[float],
        request_id: str,
    ) -> MetricsResponse:
        cfg = self._settings.profiler
        timeout = float(timeout_seconds) if timeout_seconds is not None else float(cfg.request_timeout_seconds)
        deadline = time.monotonic() + max(0.0, timeout)

        self._transition(RequestState.AUTHORIZING)
        try:
            request = build_metrics_request(
                identity=identity,
                function_names=function_names,
                start_time=start_time,
                end_time=end_time,
                default_window_seconds=cfg.default_window_seconds,
            )
        except RequestValidationError:
            self._transition(RequestState.REJECTED)
            raise
        set_request_context(tenant_id=request.tenant_id)

        if cfg.local_mode:
            results = self.local_results(request)
        else:
            results = self.execute(request, deadline=deadline, request_id=request_id)

        self._transition(RequestState.RESPONDING, functions=len(results))
        return MetricsResponse(status_code=200, body=success_body(request.tenant_id, results))

    def execute(
        self,
        request: MetricsRequest,
        *,
        deadline: Optional[float] = None,
        request_id: str = "",
    ) -> List[FunctionMetricResult]:
        """Run the full pipeline for a validated request. Raises ProfilerError."""
        ctx, metrics = _run_bounded(deadline, self._prepare, request, deadline, request_id)

        self._transition(RequestState.FANNING_OUT, concurrency=ctx.settings.max_concurrency)
        results = ResultAggregator(ctx).run(request.function_names, metrics)

        self._transition(RequestState.AGGREGATING, results=len(results))
        return results

    def _prepare(
        self,
        request: MetricsRequest,
        deadline: Optional[float],
        request_id: str,
    ) -> Tuple[RequestContext, MetricSeries]:
        """Tenant, pricing, delegation and the metric batch: everything before fan-out."""
        cfg = self._settings.profiler
        control = self._control or self._factory.control_plane(cfg.control_region)

        tenants = TenantStore(
            dynamodb_client=control.dynamodb,
            table_name=cfg.tenants_table,
            default_region=self._settings.aws.default_region,
        )
        try:
            tenant = tenants.get(request.tenant_id)
        except ProfilerError:
            self._transition(RequestState.REJECTED)
            raise
        self._transition(RequestState.AUTHORIZED, region=tenant.region)
        _check_deadline(deadline)

        self._transition(RequestState.FETCHING_PRICING_AND_CREDENTIALS)
        pricing = PricingResolver(
            dynamodb_client=control.dynamodb,
            table_name=cfg.pricing_table,
            fallback_invocation_cost=cfg.fallback_invocation_cost,
            fallback_duration_cost=cfg.fallback_duration_cost_per_gb_second,
        ).resolve(tenant.region)
        credentials = CredentialBroker(
            sts_client=control.sts,
            duration_seconds=cfg.session_duration_seconds,
        ).delegate(tenant)
        tenant_services = self._factory.for_tenant(credentials, region=tenant.region)
        _check_deadline(deadline)

        sink = self._sink or DynamoDbResultsSink(dynamodb_client=control.dynamodb, table_name=cfg.metrics_table)
        ctx = RequestContext(
            request_id=request_id,
            tenant=tenant,
            window=request.window,
            pricing=pricing,
            services=tenant_services,
            sink=sink,
            settings=cfg,
            deadline=deadline,
        )

        self._transition(RequestState.FETCHING_METRICS, functions=len(request.function_names))
        metrics = MetricFetcher(
            tenant_services.cloudwatch,
            max_queries_per_call=cfg.max_queries_per_call,
            period=cfg.metric_period_seconds,
        ).fetch(request.function_names, request.window, deadline=deadline)
        _check_deadline(deadline)
        return ctx, metrics

    def local_results(self, request: MetricsRequest) -> List[FunctionMetricResult]:
        """Canned sample results for local development; no AWS calls."""
        cfg = self._settings.profiler
        pricing = PricingProfile.fallback(
            self._settings.aws.default_region,
            invocation_cost=cfg.fallback_invocation_cost,
            duration_cost_per_resource_second=cfg.fallback_duration_cost_per_gb_second,
        )
        sink = self._sink or LoggingResultsSink()
        results: List[FunctionMetricResult] = []
        for name in request.function_names:
            result = FunctionMetricResult(
                function_name=name,
                latency=300.0,
                errors=5.0,
                invocations=1000.0,
                cold_starts=10,
                memory_allocation=int(cfg.fallback_memory_mb),
                cost=estimate_cost(
                    invocations=1000.0,
                    avg_latency_ms=300.0,
                    memory_allocation=cfg.fallback_memory_mb,
                    pricing=pricing,
                ),
            )
            sink.put(MetricRecord.from_result(request.tenant_id, result, timestamp_ms=now_ms()))
            results.append(result)
        return results


def _check_deadline(deadline: Optional[float]) -> None:
    if deadline is not None and time.monotonic() >= deadline:
        raise RequestTimeoutError("request deadline exceeded")


def _run_bounded(deadline: Optional[float], fn: Callable[..., _T], *args: Any) -> _T:
    """Run ``fn`` on a worker thread and stop waiting for it once the deadline elapses.

    A blocked AWS call cannot be interrupted, so on timeout the worker is left
    to finish on its own and :class:`RequestTimeoutError` is raised at once.
    """
    if deadline is None:
        return fn(*args)
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise RequestTimeoutError("request deadline exceeded")

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="profiler-prepare")
    try:
        future = executor.submit(contextvars.copy_context().run, fn, *args)
        try:
            return future.result(timeout=remaining)
        except FuturesTimeoutError as exc:
            _LOGGER.warning("prepare_abandoned", timeout_seconds=round(remaining, 3))
            raise RequestTimeoutError("request deadline exceeded") from exc
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


# -----------------------------
# Command line
# -----------------------------


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Profile Lambda functions of one tenant")
    parser.add_argument("--tenant", required=True, help="Tenant identifier (as issued by the authorizer)")
    parser.add_argument("--functions", required=True, help="Comma-separated Lambda function names")
    parser.add_argument("--start", default=None, help="Window start (ISO-8601). Default: one hour ago")
    parser.add_argument("--end", default=None, help="Window end (ISO-8601). Default: now")
    parser.add_argument("--timeout", type=float, default=None, help="Request deadline in seconds")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(list(argv) if argv is not None else sys.argv[1:])
    setup_logging()
    runner = ProfilerRunner()
    response = runner.handle(
        identity=args.tenant,
        function_names=args.functions,
        start_time=args.start,
        end_time=args.end,
        timeout_seconds=args.timeout,
    )
    print(json.dumps(response.body, indent=2, ensure_ascii=False))
    return 0 if response.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
