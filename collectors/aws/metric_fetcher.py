"""
collectors/aws/metric_fetcher.py

Batched CloudWatch fetcher for Lambda latency, errors and invocations.

Design notes
------------
- Builds exactly three queries per function (3 x N), ids ``<kind><index>`` where
  ``index`` is the function's position in the request.
- One GetMetricData round trip when 3 x N fits the per-call query limit (500);
  otherwise sequential batches merged by query id.
- ``ScanBy=TimestampDescending`` so the first sample of each series is the most
  recent 5-minute bucket. Only that first sample is consumed downstream.
- Any failure here is fatal for the request: without metrics there is nothing to
  report.
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from collectors.aws._common import failure_reason, fetch_or_default, parse_finite_float
from contracts.profiler_contracts import (
    METRIC_PERIOD_SECONDS,
    FatalInfrastructureError,
    FunctionWindow,
    MetricKind,
    MetricQuerySpec,
    RequestTimeoutError,
    query_id_for,
)
from infra.logging_config import get_logger

_LOGGER = get_logger("metric_fetcher")

# CloudWatch GetMetricData limit: 500 queries per request.
MAX_QUERIES_PER_CALL = 500


class MetricSeries:
    """Read-only view of fetched series, keyed by query id."""

    def __init__(self, series: Mapping[str, Sequence[float]]) -> None:
        self._series = {str(k): list(v) for k, v in series.items()}

    def __len__(self) -> int:
        return len(self._series)

    def __contains__(self, query_id: object) -> bool:
        return query_id in self._series

    def samples(self, query_id: str) -> list[float]:
        return list(self._series.get(query_id, []))

    def first_sample(self, query_id: str) -> float:
        """Most recent bucket value, or 0 when the series is empty or missing."""
        values = self._series.get(query_id) or []
        if not values:
            return 0.0
        return float(values[0])

    def value(self, kind: MetricKind, index: int) -> float:
        return self.first_sample(query_id_for(kind, index))


def build_query_specs(
    function_names: Sequence[str],
    *,
    period: int = METRIC_PERIOD_SECONDS,
) -> list[MetricQuerySpec]:
    """Return 3 x N specs in (function order, latency/errors/invocations) order."""

    specs: list[MetricQuerySpec] = []
    for index, fn_name in enumerate(function_names):
        for kind in (MetricKind.LATENCY, MetricKind.ERRORS, MetricKind.INVOCATIONS):
            specs.append(
                MetricQuerySpec(
                    query_id=query_id_for(kind, index),
                    function_name=str(fn_name),
                    kind=kind,
                    period=int(period),
                )
            )
    return specs


def chunk_specs(specs: Sequence[MetricQuerySpec], max_per_call: int) -> list[list[MetricQuerySpec]]:
    """Split specs into batches of at most ``max_per_call`` queries."""

    size = max(1, int(max_per_call))
    return [list(specs[i:i + size]) for i in range(0, len(specs), size)]


class MetricFetcher:
    """Issues the batched GetMetricData calls for one request."""

    def __init__(
        self,
        cloudwatch: Any,
        *,
        max_queries_per_call: int = MAX_QUERIES_PER_CALL,
        period: int = METRIC_PERIOD_SECONDS,
    ) -> None:
        self._cloudwatch = cloudwatch
        self._max_queries_per_call = min(MAX_QUERIES_PER_CALL, max(1, int(max_queries_per_call)))
        self._period = int(period)

    def fetch(
        self,
        function_names: Sequence[str],
        window: FunctionWindow,
        *,
        deadline: float | None = None,
    ) -> MetricSeries:
        """Fetch all series for ``function_names`` over ``window``.

        ``deadline`` is a ``time.monotonic()`` instant checked before every call.

        Raises:
            FatalInfrastructureError: any CloudWatch failure.
            RequestTimeoutError: the deadline elapsed between calls.
        """
        specs = build_query_specs(function_names, period=self._period)
        if not specs:
            return MetricSeries({})

        batches = chunk_specs(specs, self._max_queries_per_call)
        out: dict[str, list[float]] = {spec.query_id: [] for spec in specs}
        for batch_no, batch in enumerate(batches):
            try:
                self._fetch_batch(batch, window, out, deadline)
            except (ClientError, BotoCoreError) as exc:
                _LOGGER.error(
                    "metric_query_failed",
                    batch=batch_no,
                    batches=len(batches),
                    reason=failure_reason(exc),
                )
                raise FatalInfrastructureError("metric query failed") from exc

        _LOGGER.info(
            "metric_batches_fetched",
            functions=len(function_names),
            queries=len(specs),
            calls=len(batches),
        )
        return MetricSeries(out)

    def _fetch_batch(
        self,
        batch: Sequence[MetricQuerySpec],
        window: FunctionWindow,
        out: dict[str, list[float]],
        deadline: float | None = None,
    ) -> None:
        queries = [spec.to_query() for spec in batch]
        wanted = {spec.query_id for spec in batch}

        next_token: str | None = None
        while True:
            request: dict[str, Any] = {
                "MetricDataQueries": queries,
                "StartTime": window.start_datetime(),
                "EndTime": window.end_datetime(),
                "ScanBy": "TimestampDescending",
            }
            if next_token:
                request["NextToken"] = next_token
            if deadline is not None and time.monotonic() >= deadline:
                raise RequestTimeoutError("request deadline exceeded")
            response = self._cloudwatch.get_metric_data(**request)

            for row in fetch_or_default(response, "MetricDataResults", []) or []:
                query_id = str(fetch_or_default(row, "Id", ""))
                if query_id not in wanted:
                    continue
                series = out.setdefault(query_id, [])
                for value in fetch_or_default(row, "Values", []) or []:
                    as_float = parse_finite_float(value)
                    if as_float is not None and as_float >= 0.0:
                        series.append(as_float)

            next_token_raw = fetch_or_default(response, "NextToken", None)
            next_token = str(next_token_raw) if next_token_raw else None
            if not next_token:
                break
