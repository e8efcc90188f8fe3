"""Lambda cost estimate from metrics, configuration and pricing.

Pure computation, no I/O:

  memory_fraction        = memory_mb / 1024
  total_duration_seconds = (avg_latency_ms / 1000) * invocations
  cost = invocations * invocation_cost
       + total_duration_seconds * memory_fraction * duration_cost_per_gb_second

The result is rounded to 6 decimals. Inputs are trusted to be non-negative:
the fetchers only ever hand over non-negative values or fallbacks.
"""

from __future__ import annotations

from contracts.profiler_contracts import MEMORY_UNIT_NORMALIZER, PricingProfile, round_cost


def estimate_cost(
    *,
    invocations: float,
    avg_latency_ms: float,
    memory_allocation: float,
    pricing: PricingProfile,
) -> float:
    """Return the estimated USD cost for the window."""

    if invocations == 0:
        return 0.0
    memory_fraction = float(memory_allocation) / MEMORY_UNIT_NORMALIZER
    total_duration_seconds = (float(avg_latency_ms) / 1000.0) * float(invocations)
    request_cost = float(invocations) * pricing.invocation_cost
    compute_cost = total_duration_seconds * memory_fraction * pricing.duration_cost_per_resource_second
    return round_cost(request_cost + compute_cost)
