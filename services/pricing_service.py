"""
services/pricing_service.py

Tenant-region pricing resolver
==============================

Goals:
- Resolve (invocation cost, duration cost per GB-second) for a tenant's region
- Let operators override list prices per region through the pricing table
- Be resilient: a missing record, a failed read or a malformed value never fails
  the request; the documented fallback pair is used instead

Pricing table item shape (DynamoDB, low-level attribute values):
  {
    "region": {"S": "eu-west-1"},
    "invocationCost": {"S": "0.0000002"},
    "durationCostPerUnitSecond": {"S": "0.0000166667"}
  }

Minimal IAM permission (profiler account):
- dynamodb:GetItem on the pricing table
"""

from __future__ import annotations

from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from collectors.aws._common import ddb_attr, failure_reason, fetch_or_default, parse_finite_float
from contracts.profiler_contracts import (
    FALLBACK_DURATION_COST_PER_GB_SECOND,
    FALLBACK_INVOCATION_COST,
    PricingProfile,
)
from infra.logging_config import get_logger

_LOGGER = get_logger("pricing_service")

INVOCATION_COST_ATTR = "invocationCost"
DURATION_COST_ATTR = "durationCostPerUnitSecond"


class PricingResolver:
    """
    Resolves a :class:`PricingProfile` for a region from the pricing table.

    ``resolve`` is total over any region string: it always returns a profile.
    """

    def __init__(
        self,
        *,
        dynamodb_client: Any,
        table_name: str,
        fallback_invocation_cost: float = FALLBACK_INVOCATION_COST,
        fallback_duration_cost: float = FALLBACK_DURATION_COST_PER_GB_SECOND,
    ) -> None:
        self._client = dynamodb_client
        self._table = str(table_name)
        self._fallback_invocation_cost = float(fallback_invocation_cost)
        self._fallback_duration_cost = float(fallback_duration_cost)

    def fallback(self, region: str) -> PricingProfile:
        return PricingProfile.fallback(
            region,
            invocation_cost=self._fallback_invocation_cost,
            duration_cost_per_resource_second=self._fallback_duration_cost,
        )

    def resolve(self, region: str) -> PricingProfile:
        """Return the pricing profile for ``region`` or the fallback profile."""
        reg = str(region or "").strip()
        if not reg:
            _LOGGER.warning("pricing_fallback", region=reg, reason="empty_region")
            return self.fallback(reg)

        try:
            response = self._client.get_item(TableName=self._table, Key={"region": {"S": reg}})
        except (ClientError, BotoCoreError) as exc:
            _LOGGER.warning("pricing_fallback", region=reg, reason=failure_reason(exc))
            return self.fallback(reg)

        item = fetch_or_default(response, "Item", None)
        if not item:
            _LOGGER.warning("pricing_fallback", region=reg, reason="missing_record")
            return self.fallback(reg)

        profile = self._profile_from_item(reg, item)
        if profile is None:
            _LOGGER.warning("pricing_fallback", region=reg, reason="malformed_record")
            return self.fallback(reg)

        _LOGGER.debug(
            "pricing_resolved",
            region=reg,
            invocation_cost=profile.invocation_cost,
            duration_cost=profile.duration_cost_per_resource_second,
        )
        return profile

    @staticmethod
    def _profile_from_item(region: str, item: Any) -> Optional[PricingProfile]:
        invocation_cost = parse_finite_float(ddb_attr(item, INVOCATION_COST_ATTR))
        duration_cost = parse_finite_float(ddb_attr(item, DURATION_COST_ATTR))
        if invocation_cost is None or duration_cost is None:
            return None
        return PricingProfile(
            region=region,
            invocation_cost=invocation_cost,
            duration_cost_per_resource_second=duration_cost,
            source="table",
        )
