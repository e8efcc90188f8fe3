"""Append-only sinks for per-function metric records.

Each request writes one record per function. Records are keyed by
(tenant, function, timestamp) so concurrent writers never conflict and no
read-modify-write is ever needed.
"""

from __future__ import annotations

import threading
import time
from typing import Any, NamedTuple, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from collectors.aws._common import failure_reason
from contracts.profiler_contracts import (
    COST_DECIMALS,
    FatalInfrastructureError,
    FunctionMetricResult,
)
from infra.logging_config import get_logger

_LOGGER = get_logger("results_store")


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class MetricRecord(NamedTuple):
    """Immutable persisted metric record."""

    tenant_id: str
    timestamp_ms: int
    function_name: str
    latency: float
    errors: float
    invocations: float
    cold_starts: int
    cost: float
    memory_allocation: int

    @classmethod
    def from_result(cls, tenant_id: str, result: FunctionMetricResult, *, timestamp_ms: int) -> MetricRecord:
        return cls(
            tenant_id=str(tenant_id),
            timestamp_ms=int(timestamp_ms),
            function_name=result.function_name,
            latency=float(result.latency),
            errors=float(result.errors),
            invocations=float(result.invocations),
            cold_starts=int(result.cold_starts),
            cost=float(result.cost),
            memory_allocation=int(result.memory_allocation),
        )

    @property
    def record_id(self) -> str:
        return f"{self.function_name}#{self.timestamp_ms}"

    def to_item(self) -> dict[str, dict[str, str]]:
        """Return the DynamoDB low-level item."""
        return {
            "userId": {"S": self.tenant_id},
            "timestamp": {"N": str(self.timestamp_ms)},
            "recordId": {"S": self.record_id},
            "functionName": {"S": self.function_name},
            "latency": {"N": _num(self.latency)},
            "errors": {"N": _num(self.errors)},
            "invocations": {"N": _num(self.invocations)},
            "coldStarts": {"N": str(self.cold_starts)},
            "cost": {"N": f"{self.cost:.{COST_DECIMALS}f}"},
            "memoryAllocation": {"N": str(self.memory_allocation)},
        }


def _num(value: float) -> str:
    as_float = float(value)
    if as_float.is_integer():
        return str(int(as_float))
    return repr(as_float)


class ResultsSink(Protocol):
    """Protocol for metric record sinks."""

    def sink_name(self) -> str:
        """Return deterministic sink name for diagnostics."""

    def put(self, record: MetricRecord) -> None:
        """Append one record. Raises FatalInfrastructureError on failure."""


class DynamoDbResultsSink:
    """Writes records into the metrics table with ``PutItem``."""

    def __init__(self, *, dynamodb_client: Any, table_name: str) -> None:
        self._client = dynamodb_client
        self._table = str(table_name)

    def sink_name(self) -> str:
        return f"dynamodb:{self._table}"

    def put(self, record: MetricRecord) -> None:
        try:
            self._client.put_item(TableName=self._table, Item=record.to_item())
        except (ClientError, BotoCoreError) as exc:
            _LOGGER.error(
                "metric_record_write_failed",
                function_name=record.function_name,
                reason=failure_reason(exc),
            )
            raise FatalInfrastructureError("metric record write failed") from exc


class InMemoryResultsSink:
    """In-memory sink for deterministic unit tests."""

    def __init__(self) -> None:
        self._records: list[MetricRecord] = []
        self._lock = threading.Lock()

    def sink_name(self) -> str:
        return "in_memory"

    def put(self, record: MetricRecord) -> None:
        with self._lock:
            self._records.append(record)

    def records(self) -> list[MetricRecord]:
        """Return a copy of recorded rows in write order."""
        with self._lock:
            return list(self._records)


class LoggingResultsSink:
    """Local-mode sink: logs the record that would have been written."""

    def sink_name(self) -> str:
        return "log"

    def put(self, record: MetricRecord) -> None:
        _LOGGER.info("metric_record_mock_write", **record._asdict())
