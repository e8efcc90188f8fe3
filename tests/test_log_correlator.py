"""Unit tests for cold-start counting from CloudWatch Logs."""

from __future__ import annotations

from botocore.exceptions import EndpointConnectionError

from collectors.aws.log_correlator import COLD_START_MARKER, LogCorrelator, is_cold_start_event, log_group_for
from contracts.profiler_contracts import FunctionWindow
from tests.aws_mocks import FakeLogsClient, cold_start_event, make_client_error

_WINDOW = FunctionWindow(start=1_700_000_000, end=1_700_003_600)


def test_is_cold_start_event() -> None:
    assert is_cold_start_event(cold_start_event())
    assert is_cold_start_event({"message": f"... {COLD_START_MARKER}: 1 ms"})
    assert not is_cold_start_event({"message": "REPORT RequestId: x Duration: 1 ms"})
    assert not is_cold_start_event({"message": None})
    assert not is_cold_start_event("Init Duration")


def test_counts_events_across_pages() -> None:
    group = log_group_for("fnA")
    logs = FakeLogsClient(
        pages_by_group={
            group: [
                [cold_start_event("a"), {"message": "START RequestId: b"}],
                [cold_start_event("c")],
            ]
        }
    )

    assert LogCorrelator(logs).cold_starts("fnA", _WINDOW) == 2
    assert len(logs.calls) == 2
    first = logs.calls[0]
    assert first["logGroupName"] == "/aws/lambda/fnA"
    assert first["startTime"] == _WINDOW.start_ms
    assert first["endTime"] == _WINDOW.end_ms
    assert first["filterPattern"] == '"Init Duration"'
    assert "nextToken" not in first
    assert logs.calls[1]["nextToken"] == "1"


def test_page_cap_truncates_scan() -> None:
    group = log_group_for("busy")
    logs = FakeLogsClient(pages_by_group={group: [[cold_start_event()] for _ in range(5)]})

    assert LogCorrelator(logs, max_pages=2).cold_starts("busy", _WINDOW) == 2
    assert len(logs.calls) == 2


def test_no_events_is_zero_not_degraded() -> None:
    logs = FakeLogsClient(pages_by_group={log_group_for("fnA"): [[]]})
    assert LogCorrelator(logs).cold_starts("fnA", _WINDOW) == 0


def test_missing_log_group_degrades_to_none() -> None:
    assert LogCorrelator(FakeLogsClient()).cold_starts("never-invoked", _WINDOW) is None


def test_access_denied_degrades_to_none() -> None:
    logs = FakeLogsClient(errors_by_group={log_group_for("fnA"): make_client_error("FilterLogEvents")})
    assert LogCorrelator(logs).cold_starts("fnA", _WINDOW) is None


def test_transport_failure_degrades_to_none() -> None:
    error = EndpointConnectionError(endpoint_url="https://logs.us-east-1.amazonaws.com")
    logs = FakeLogsClient(errors_by_group={log_group_for("fnA"): error})
    assert LogCorrelator(logs).cold_starts("fnA", _WINDOW) is None
