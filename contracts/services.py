"""
contracts/services.py

Request-scoped client containers + factory (DI-friendly).

Goals:
- No process-wide AWS clients: a factory is built for each request and every
  client it hands out dies with that request.
- Control-plane clients (profiler account: tenant/pricing/metrics tables, STS)
  and tenant clients (delegated credentials: CloudWatch, Logs, Lambda) are kept
  in separate containers so tenant credentials never touch profiler tables.
- Tests inject fakes by building the containers directly.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.config import Config

from contracts.profiler_contracts import DelegatedCredentials, FunctionWindow, PricingProfile, Tenant
from infra.config import ProfilerConfig


@dataclass(frozen=True)
class ControlPlaneServices:
    """Clients in the profiler's own account."""

    dynamodb: Any
    sts: Any
    region: str = ""


@dataclass(frozen=True)
class TenantServices:
    """Clients bound to one tenant's delegated credentials and region."""

    cloudwatch: Any
    logs: Any
    lambda_client: Any
    region: str = ""


@dataclass(frozen=True)
class RequestContext:
    """
    Everything one request needs once its prerequisites are resolved.

    Built after tenant lookup, pricing resolution and credential delegation, then
    passed explicitly to the metric fetcher and every per-function task.
    """

    request_id: str
    tenant: Tenant
    window: FunctionWindow
    pricing: PricingProfile
    services: TenantServices
    sink: Any
    settings: ProfilerConfig
    deadline: Optional[float] = None  # time.monotonic() based

    def remaining_seconds(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


class ServicesFactory:
    """
    Creates AWS SDK clients for one request.

    Usage:
      factory = ServicesFactory(sdk_config=SDK_CONFIG, sts_config=STS_CONFIG)
      control = factory.control_plane("us-east-1")
      tenant = factory.for_tenant(credentials, region="eu-west-3")
    """

    def __init__(
        self,
        *,
        session_factory: Callable[..., Any] = boto3.Session,
        sdk_config: Config | None = None,
        sts_config: Config | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._sdk_config = sdk_config
        self._sts_config = sts_config or sdk_config

    @staticmethod
    def _client(session: Any, service: str, *, region: str | None, config: Config | None) -> Any:
        kwargs: dict[str, Any] = {}
        if region:
            kwargs["region_name"] = region
        if config is not None:
            kwargs["config"] = config
        return session.client(service, **kwargs)

    def control_plane(self, region: str) -> ControlPlaneServices:
        """Clients using the runtime's own credentials."""
        reg = str(region or "").strip()
        if not reg:
            raise ValueError("region must be a non-empty string")
        session = self._session_factory()
        return ControlPlaneServices(
            dynamodb=self._client(session, "dynamodb", region=reg, config=self._sdk_config),
            sts=self._client(session, "sts", region=reg, config=self._sts_config),
            region=reg,
        )

    def for_tenant(self, credentials: DelegatedCredentials, *, region: str) -> TenantServices:
        """Clients scoped to the tenant account/region via delegated credentials."""
        reg = str(region or "").strip()
        if not reg:
            raise ValueError("region must be a non-empty string")
        session = self._session_factory(region_name=reg, **credentials.as_boto3_kwargs())
        return TenantServices(
            cloudwatch=self._client(session, "cloudwatch", region=reg, config=self._sdk_config),
            logs=self._client(session, "logs", region=reg, config=self._sdk_config),
            lambda_client=self._client(session, "lambda", region=reg, config=self._sdk_config),
            region=reg,
        )
