"""Lambda memory allocation lookup (cost input).

Any failure, or a missing/non-positive ``MemorySize``, is a degradation: the
caller substitutes the documented fallback allocation.
"""

from __future__ import annotations

from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from collectors.aws._common import failure_reason, fetch_int_or_default
from infra.logging_config import get_logger

_LOGGER = get_logger("config_fetcher")


class ConfigurationFetcher:
    """Reads ``MemorySize`` through ``lambda:GetFunctionConfiguration``."""

    def __init__(self, lambda_client: Any) -> None:
        self._lambda = lambda_client

    def memory_allocation(self, function_name: str) -> int | None:
        """Return the configured memory in MB, or None when unavailable."""
        try:
            response = self._lambda.get_function_configuration(FunctionName=function_name)
        except (ClientError, BotoCoreError, KeyError, TypeError, ValueError) as exc:
            _LOGGER.warning(
                "memory_lookup_degraded",
                function_name=function_name,
                reason=failure_reason(exc),
            )
            return None

        memory = fetch_int_or_default(response, "MemorySize", 0, minimum=1)
        if memory <= 0:
            _LOGGER.warning("memory_lookup_degraded", function_name=function_name, reason="missing_memory_size")
            return None
        return memory
