"""Per-function fan-out and ordered join.

One task per requested function runs the sub-pipeline

  cold starts (logs) -> memory (configuration) -> cost -> persist

with a bounded number of tasks in flight. Each task reads only its own query
ids from the shared :class:`MetricSeries` and writes its own record, so tasks
share no mutable state.

Degradations inside a task (logs or configuration unavailable) become fallback
values. Fatal task failures (persistence) are captured per task, siblings are
allowed to finish, and the first failure in input order is re-raised. When the
request deadline elapses, in-flight tasks are abandoned (they finish in the
background but never persist) and :class:`RequestTimeoutError` is raised.
"""

from __future__ import annotations

import asyncio
import contextvars
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from collectors.aws.config_fetcher import ConfigurationFetcher
from collectors.aws.log_correlator import LogCorrelator
from collectors.aws.metric_fetcher import MetricSeries
from contracts.profiler_contracts import (
    DEGRADED_COLD_STARTS,
    DEGRADED_MEMORY,
    FunctionMetricResult,
    MetricKind,
    RequestTimeoutError,
)
from contracts.services import RequestContext
from infra.logging_config import get_logger
from pipeline.cost_estimator import estimate_cost
from services.results_store import MetricRecord, now_ms

_LOGGER = get_logger("aggregator")


class ResultAggregator:
    """Runs the per-function sub-pipeline for every requested function."""

    def __init__(self, ctx: RequestContext, *, max_concurrency: Optional[int] = None) -> None:
        limit = int(max_concurrency if max_concurrency is not None else ctx.settings.max_concurrency)
        if limit < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._ctx = ctx
        self._max_concurrency = limit
        self._logs = LogCorrelator(ctx.services.logs, max_pages=ctx.settings.log_max_pages)
        self._config = ConfigurationFetcher(ctx.services.lambda_client)
        # Set once the deadline elapses; abandoned tasks must not persist.
        self._abandoned = threading.Event()

    def process_function(self, index: int, function_name: str, metrics: MetricSeries) -> FunctionMetricResult:
        """Build, persist and return the result for one function."""
        ctx = self._ctx
        degraded: list[str] = []

        latency = metrics.value(MetricKind.LATENCY, index)
        errors = metrics.value(MetricKind.ERRORS, index)
        invocations = metrics.value(MetricKind.INVOCATIONS, index)

        cold_starts = self._logs.cold_starts(function_name, ctx.window)
        if cold_starts is None:
            cold_starts = 0
            degraded.append(DEGRADED_COLD_STARTS)

        memory = self._config.memory_allocation(function_name)
        if memory is None:
            memory = int(ctx.settings.fallback_memory_mb)
            degraded.append(DEGRADED_MEMORY)

        cost = estimate_cost(
            invocations=invocations,
            avg_latency_ms=latency,
            memory_allocation=memory,
            pricing=ctx.pricing,
        )
        result = FunctionMetricResult(
            function_name=function_name,
            latency=latency,
            errors=errors,
            invocations=invocations,
            cold_starts=int(cold_starts),
            memory_allocation=int(memory),
            cost=cost,
            degraded=tuple(degraded),
        )

        if self._abandoned.is_set() or ctx.remaining_seconds() == 0.0:
            _LOGGER.info("function_result_discarded", function_name=function_name)
            return result
        ctx.sink.put(MetricRecord.from_result(ctx.tenant.tenant_id, result, timestamp_ms=now_ms()))
        if degraded:
            _LOGGER.info("function_result_degraded", function_name=function_name, degraded=list(degraded))
        return result

    async def run_many(
        self,
        function_names: Sequence[str],
        metrics: MetricSeries,
        *,
        executor: ThreadPoolExecutor,
    ) -> list[FunctionMetricResult]:
        """Process every function concurrently with stable ordering."""
        semaphore = asyncio.Semaphore(self._max_concurrency)
        loop = asyncio.get_running_loop()

        async def _run_one(index: int, function_name: str) -> FunctionMetricResult:
            async with semaphore:
                call_ctx = contextvars.copy_context()
                return await loop.run_in_executor(
                    executor, call_ctx.run, self.process_function, index, function_name, metrics
                )

        tasks = [_run_one(index, name) for index, name in enumerate(function_names)]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results: list[FunctionMetricResult] = []
        for name, outcome in zip(function_names, outcomes):
            if isinstance(outcome, BaseException):
                _LOGGER.error("function_task_failed", function_name=name, reason=type(outcome).__name__)
                raise outcome
            results.append(outcome)
        return results

    def run(self, function_names: Sequence[str], metrics: MetricSeries) -> list[FunctionMetricResult]:
        """Blocking entry point bounded by the request deadline."""
        timeout = self._ctx.remaining_seconds()
        executor = ThreadPoolExecutor(
            max_workers=self._max_concurrency,
            thread_name_prefix="profiler-fn",
        )
        try:
            return asyncio.run(self._run_with_deadline(function_names, metrics, executor, timeout))
        except asyncio.TimeoutError as exc:
            _LOGGER.error("fan_out_deadline_exceeded", functions=len(function_names), timeout_s=timeout)
            raise RequestTimeoutError("request deadline exceeded") from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    async def _run_with_deadline(
        self,
        function_names: Sequence[str],
        metrics: MetricSeries,
        executor: ThreadPoolExecutor,
        timeout: Optional[float],
    ) -> list[FunctionMetricResult]:
        if timeout is not None and timeout <= 0.0:
            self._abandoned.set()
            raise asyncio.TimeoutError()
        try:
            return await asyncio.wait_for(self.run_many(function_names, metrics, executor=executor), timeout)
        except asyncio.TimeoutError:
            self._abandoned.set()
            raise
