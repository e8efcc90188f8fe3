"""Unit tests for the batched CloudWatch metric fetcher."""

from __future__ import annotations

import time
from typing import Any

import pytest

from collectors.aws.metric_fetcher import MetricFetcher, MetricSeries, build_query_specs, chunk_specs
from contracts.profiler_contracts import FatalInfrastructureError, FunctionWindow, MetricKind, RequestTimeoutError
from tests.aws_mocks import FakeCloudWatchClient, make_client_error

_WINDOW = FunctionWindow(start=1_700_000_000, end=1_700_003_600)


def test_query_specs_are_three_per_function_in_request_order() -> None:
    specs = build_query_specs(["fnA", "fnB"])

    assert [s.query_id for s in specs] == ["latency0", "errors0", "invocations0", "latency1", "errors1", "invocations1"]
    assert [s.function_name for s in specs] == ["fnA"] * 3 + ["fnB"] * 3
    assert [(s.metric_name, s.stat) for s in specs[:3]] == [
        ("Duration", "Average"),
        ("Errors", "Sum"),
        ("Invocations", "Sum"),
    ]


def test_query_shape_matches_get_metric_data() -> None:
    query = build_query_specs(["fnA"], period=300)[0].to_query()
    assert query == {
        "Id": "latency0",
        "MetricStat": {
            "Metric": {
                "Namespace": "AWS/Lambda",
                "MetricName": "Duration",
                "Dimensions": [{"Name": "FunctionName", "Value": "fnA"}],
            },
            "Period": 300,
            "Stat": "Average",
        },
        "ReturnData": True,
    }


def test_chunk_specs_respects_limit() -> None:
    specs = build_query_specs([f"fn{i}" for i in range(167)])
    chunks = chunk_specs(specs, 500)
    assert [len(c) for c in chunks] == [500, 1]


def test_single_call_when_queries_fit() -> None:
    cw = FakeCloudWatchClient(values={"latency0": [300.0, 250.0], "errors0": [5.0], "invocations0": [1000.0]})
    series = MetricFetcher(cw).fetch(["fnA"], _WINDOW)

    assert len(cw.calls) == 1
    call = cw.calls[0]
    assert call["ScanBy"] == "TimestampDescending"
    assert call["StartTime"] == _WINDOW.start_datetime()
    assert call["EndTime"] == _WINDOW.end_datetime()
    assert series.value(MetricKind.LATENCY, 0) == 300.0
    assert series.value(MetricKind.ERRORS, 0) == 5.0
    assert series.value(MetricKind.INVOCATIONS, 0) == 1000.0


def test_more_than_166_functions_split_across_calls_and_merge() -> None:
    names = [f"fn{i}" for i in range(170)]
    values = {f"invocations{i}": [float(i)] for i in range(170)}
    cw = FakeCloudWatchClient(values=values)

    series = MetricFetcher(cw, max_queries_per_call=500).fetch(names, _WINDOW)

    assert cw.query_counts == [500, 10]
    assert len(series) == 510
    assert series.value(MetricKind.INVOCATIONS, 0) == 0.0
    assert series.value(MetricKind.INVOCATIONS, 169) == 169.0


def test_next_token_pages_are_followed() -> None:
    values = {"latency0": [1.0], "errors0": [2.0], "invocations0": [3.0], "latency1": [4.0]}
    cw = FakeCloudWatchClient(values=values, page_size=2)

    series = MetricFetcher(cw).fetch(["fnA", "fnB"], _WINDOW)

    assert len(cw.calls) == 3
    assert cw.calls[1]["NextToken"] == "2"
    assert series.value(MetricKind.INVOCATIONS, 0) == 3.0
    assert series.value(MetricKind.LATENCY, 1) == 4.0


def test_missing_series_read_as_zero() -> None:
    series = MetricFetcher(FakeCloudWatchClient()).fetch(["quiet"], _WINDOW)

    assert "latency0" in series
    assert series.samples("latency0") == []
    assert series.value(MetricKind.LATENCY, 0) == 0.0


def test_negative_and_non_finite_samples_are_dropped() -> None:
    cw = FakeCloudWatchClient(values={"latency0": [float("nan"), -1.0, 12.5]})
    series = MetricFetcher(cw).fetch(["fnA"], _WINDOW)
    assert series.samples("latency0") == [12.5]


def test_unknown_ids_are_ignored() -> None:
    series = MetricSeries({"latency0": [1.0]})
    assert series.first_sample("latency9") == 0.0


def test_empty_function_list_makes_no_call() -> None:
    cw = FakeCloudWatchClient()
    assert len(MetricFetcher(cw).fetch([], _WINDOW)) == 0
    assert cw.calls == []


def test_cloudwatch_failure_is_fatal() -> None:
    cw = FakeCloudWatchClient(error=make_client_error("GetMetricData", code="ThrottlingException"))
    with pytest.raises(FatalInfrastructureError):
        MetricFetcher(cw).fetch(["fnA"], _WINDOW)


def test_elapsed_deadline_makes_no_call() -> None:
    cw = FakeCloudWatchClient()
    with pytest.raises(RequestTimeoutError):
        MetricFetcher(cw).fetch(["fnA"], _WINDOW, deadline=time.monotonic() - 1.0)
    assert cw.calls == []


class _SlowCloudWatchClient(FakeCloudWatchClient):
    def get_metric_data(self, **kwargs: Any) -> dict[str, Any]:
        time.sleep(0.1)
        return super().get_metric_data(**kwargs)


def test_deadline_is_checked_between_pages() -> None:
    cw = _SlowCloudWatchClient(page_size=2)

    with pytest.raises(RequestTimeoutError):
        MetricFetcher(cw).fetch(["fnA", "fnB"], _WINDOW, deadline=time.monotonic() + 0.05)

    assert len(cw.calls) == 1
