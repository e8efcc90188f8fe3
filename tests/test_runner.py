"""End-to-end tests of the request flow with fake AWS collaborators."""

from __future__ import annotations

import threading
import time
from typing import Any

import pytest

from contracts.profiler_contracts import RequestValidationError
from contracts.services import ControlPlaneServices
from runner import ProfilerRunner, build_metrics_request, parse_function_names, parse_iso8601_epoch
from services.results_store import InMemoryResultsSink
from tests.aws_mocks import (
    METRICS_TABLE,
    PRICING_TABLE,
    TENANTS_TABLE,
    FakeCloudWatchClient,
    FakeDynamoDbClient,
    FakeLambdaClient,
    FakeLogsClient,
    FakeServicesFactory,
    FakeStsClient,
    cold_start_event,
    make_client_error,
    make_settings,
    make_tenant_services,
    pricing_item,
    tenant_item,
)


class _Env:
    """Wired fakes for one runner."""

    def __init__(
        self,
        *,
        tenant: dict[str, Any] | None = None,
        pricing: dict[str, Any] | None = None,
        sts: FakeStsClient | None = None,
        logs: Any = None,
        cloudwatch: Any = None,
        on_control: Any = None,
        **settings: Any,
    ) -> None:
        tables: dict[str, dict[str, Any]] = {
            TENANTS_TABLE: {"acme": tenant if tenant is not None else tenant_item(region="r1")},
            PRICING_TABLE: {"r1": pricing if pricing is not None else pricing_item("0.0000002", "0.00001667")},
        }
        self.ddb = FakeDynamoDbClient(tables=tables)
        self.sts = sts or FakeStsClient()
        self.cloudwatch = cloudwatch or FakeCloudWatchClient(
            values={"latency0": [300.0, 280.0], "errors0": [5.0], "invocations0": [1000.0]}
        )
        self.logs = logs or FakeLogsClient(
            pages_by_group={"/aws/lambda/fnA": [[cold_start_event()]]},
            errors_by_group={"/aws/lambda/fnB": make_client_error("FilterLogEvents")},
        )
        self.lambda_client = FakeLambdaClient(
            memory_by_function={"fnA": 128},
            errors_by_function={"fnB": make_client_error("GetFunctionConfiguration")},
        )
        self.factory = FakeServicesFactory(
            control=ControlPlaneServices(dynamodb=self.ddb, sts=self.sts, region="us-east-1"),
            tenant=make_tenant_services(cloudwatch=self.cloudwatch, logs=self.logs, lambda_client=self.lambda_client),
            on_control=on_control,
        )
        self.runner = ProfilerRunner(settings=make_settings(**settings), factory=self.factory)

    def handle(self, **kwargs: Any):  # type: ignore[no-untyped-def]
        params = {"identity": "acme", "function_names": "fnA,fnB"}
        params.update(kwargs)
        return self.runner.handle(**params)


def test_parse_function_names_drops_blanks() -> None:
    assert parse_function_names(" fnA, ,fnB ,") == ["fnA", "fnB"]
    assert parse_function_names(None) == []


def test_parse_iso8601_accepts_trailing_z() -> None:
    assert parse_iso8601_epoch("2024-01-01T00:00:00Z", field_name="startTime") == 1704067200
    assert parse_iso8601_epoch("2024-01-01T01:00:00+01:00", field_name="startTime") == 1704067200
    assert parse_iso8601_epoch("", field_name="startTime") is None


def test_parse_iso8601_rejects_garbage() -> None:
    with pytest.raises(RequestValidationError):
        parse_iso8601_epoch("yesterday", field_name="startTime")


def test_window_defaults_to_last_hour() -> None:
    request = build_metrics_request(identity="acme", function_names="fnA", now=1_000_000)
    assert (request.window.start, request.window.end) == (996_400, 1_000_000)


def test_reference_scenario() -> None:
    env = _Env()
    response = env.handle()

    assert response.status_code == 200
    assert response.body["tenantId"] == "acme"
    fn_a, fn_b = response.body["metrics"]
    assert fn_a == {
        "functionName": "fnA",
        "latency": 300.0,
        "errors": 5.0,
        "invocations": 1000.0,
        "coldStarts": 1,
        "cost": pytest.approx(0.000825),
        "memoryAllocation": 128,
    }
    assert fn_b["functionName"] == "fnB"
    assert fn_b["coldStarts"] == 0
    assert fn_b["memoryAllocation"] == 128
    assert fn_b["invocations"] == 0.0
    assert fn_b["cost"] == 0.0

    assert env.sts.calls[0]["RoleSessionName"] == "ProfilerSession-acme"
    assert env.factory.tenant_calls[0][1] == "r1"
    assert len(env.cloudwatch.calls) == 1
    assert len(env.ddb.items_for(METRICS_TABLE)) == 2


def test_missing_identity_is_401_without_collaborator_calls() -> None:
    env = _Env()
    response = env.handle(identity=None)

    assert response.status_code == 401
    assert response.body["error"] == "unauthorized"
    assert env.factory.control_calls == []
    assert env.ddb.get_calls == []
    assert env.sts.calls == []
    assert env.cloudwatch.calls == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"function_names": None},
        {"function_names": " , "},
        {"start_time": "not-a-date"},
        {"start_time": "2024-01-02T00:00:00Z", "end_time": "2024-01-01T00:00:00Z"},
    ],
)
def test_invalid_request_is_400_without_collaborator_calls(kwargs: dict[str, Any]) -> None:
    env = _Env()
    response = env.handle(**kwargs)

    assert response.status_code == 400
    assert response.body["error"] == "bad_request"
    assert env.factory.control_calls == []


def test_tenant_without_role_is_400() -> None:
    env = _Env(tenant=tenant_item(role=None))
    response = env.handle()

    assert response.status_code == 400
    assert response.body == {"error": "authorization_failed", "message": "No IAM role configured"}
    assert env.sts.calls == []


def test_rejected_delegation_is_400() -> None:
    env = _Env(sts=FakeStsClient(error=make_client_error("AssumeRole", code="AccessDenied")))
    response = env.handle()

    assert response.status_code == 400
    assert response.body["error"] == "authorization_failed"
    assert env.cloudwatch.calls == []


def test_malformed_pricing_costs_like_fallback_pricing() -> None:
    malformed = _Env(pricing=pricing_item("n/a", "free")).handle()
    fallback = _Env().handle()

    assert malformed.status_code == 200
    assert malformed.body["metrics"] == fallback.body["metrics"]


def test_metric_failure_is_500() -> None:
    env = _Env()
    env.cloudwatch._error = make_client_error("GetMetricData", code="InternalServiceError")
    response = env.handle()

    assert response.status_code == 500
    assert response.body["error"] == "internal_error"
    assert env.ddb.items_for(METRICS_TABLE) == []


def test_unexpected_error_is_generic_500() -> None:
    def _boom() -> None:
        raise RuntimeError("boom")

    env = _Env(on_control=_boom)
    assert env.handle().body == {"error": "internal_error", "message": "Internal server error"}
    assert env.handle(debug_errors=True).body["detail"] == "boom"


class _BlockingLogs:
    def __init__(self) -> None:
        self.release = threading.Event()

    def filter_log_events(self, **kwargs: Any) -> dict[str, Any]:
        self.release.wait(5.0)
        return {"events": []}


def test_deadline_elapsed_is_504_with_no_partial_result() -> None:
    logs = _BlockingLogs()
    env = _Env(logs=logs)
    try:
        response = env.handle(timeout_seconds=0.3)
    finally:
        logs.release.set()

    assert response.status_code == 504
    assert response.body["error"] == "timeout"
    assert "metrics" not in response.body


def _discarded(caplog: pytest.LogCaptureFixture) -> int:
    return sum(1 for r in caplog.records if r.getMessage() == "function_result_discarded")


def test_late_results_are_not_persisted_after_504(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("INFO", logger="lambdaprofiler.aggregator")
    logs = _BlockingLogs()
    env = _Env(logs=logs)

    response = env.handle(timeout_seconds=0.3)
    assert response.status_code == 504

    logs.release.set()
    end = time.monotonic() + 3.0
    while _discarded(caplog) < 2 and time.monotonic() < end:
        time.sleep(0.02)

    assert _discarded(caplog) == 2
    assert env.ddb.items_for(METRICS_TABLE) == []


class _SlowCloudWatch(FakeCloudWatchClient):
    def get_metric_data(self, **kwargs: Any) -> dict[str, Any]:
        time.sleep(1.5)
        return super().get_metric_data(**kwargs)


def test_slow_metric_query_is_bounded_by_deadline() -> None:
    env = _Env(cloudwatch=_SlowCloudWatch())

    started = time.monotonic()
    response = env.handle(timeout_seconds=0.3)
    elapsed = time.monotonic() - started

    assert response.status_code == 504
    assert response.body["error"] == "timeout"
    assert elapsed < 1.0
    assert env.ddb.items_for(METRICS_TABLE) == []


def test_zero_timeout_is_504() -> None:
    response = _Env().handle(timeout_seconds=0.0)
    assert response.status_code == 504


def test_same_request_twice_persists_independent_identical_records() -> None:
    env = _Env()
    window = {"start_time": "2024-01-01T00:00:00Z", "end_time": "2024-01-01T01:00:00Z"}
    first = env.handle(**window)
    second = env.handle(**window)

    assert first.body == second.body
    items = env.ddb.items_for(METRICS_TABLE)
    assert len(items) == 4
    for name in ("fnA", "fnB"):
        rows = [i for i in items if i["functionName"]["S"] == name]
        assert len(rows) == 2
        strip = ("timestamp", "recordId")
        assert {k: v for k, v in rows[0].items() if k not in strip} == {
            k: v for k, v in rows[1].items() if k not in strip
        }


def test_local_mode_returns_sample_metrics_without_aws() -> None:
    sink = InMemoryResultsSink()
    env = _Env(local_mode=True)
    runner = ProfilerRunner(settings=make_settings(local_mode=True), factory=env.factory, sink=sink)

    response = runner.handle(identity="acme", function_names="fnA,fnB")

    assert response.status_code == 200
    assert [m["functionName"] for m in response.body["metrics"]] == ["fnA", "fnB"]
    assert response.body["metrics"][0]["cost"] == pytest.approx(0.000825)
    assert env.factory.control_calls == []
    assert [r.function_name for r in sink.records()] == ["fnA", "fnB"]
