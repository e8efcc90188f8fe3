"""
services/tenant_store.py

Read-only access to the tenant configuration table.

Item shape (DynamoDB, low-level attribute values):
  {
    "userId": {"S": "<tenant id>"},
    "roleArn": {"S": "arn:aws:iam::123456789012:role/ProfilerReadOnly"},
    "region": {"S": "eu-west-1"}        # optional
  }

``roleReference`` is accepted as an alias of ``roleArn``.
"""

from __future__ import annotations

from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from collectors.aws._common import ddb_attr, failure_reason, fetch_or_default
from contracts.profiler_contracts import AuthorizationError, FatalInfrastructureError, Tenant
from infra.logging_config import get_logger

_LOGGER = get_logger("tenant_store")

TENANT_KEY_ATTR = "userId"
ROLE_ATTRS = ("roleArn", "roleReference")
REGION_ATTR = "region"


class TenantStore:
    """Looks up a tenant's delegated role reference and home region."""

    def __init__(self, *, dynamodb_client: Any, table_name: str, default_region: str) -> None:
        self._client = dynamodb_client
        self._table = str(table_name)
        self._default_region = str(default_region)

    def get(self, tenant_id: str) -> Tenant:
        """Return the tenant record.

        Raises:
            AuthorizationError: the tenant has no configured role.
            FatalInfrastructureError: the configuration store could not be read.
        """
        try:
            response = self._client.get_item(
                TableName=self._table,
                Key={TENANT_KEY_ATTR: {"S": str(tenant_id)}},
            )
        except (ClientError, BotoCoreError) as exc:
            _LOGGER.error("tenant_lookup_failed", reason=failure_reason(exc))
            raise FatalInfrastructureError("tenant configuration lookup failed") from exc

        item = fetch_or_default(response, "Item", {})
        role = None
        for attr in ROLE_ATTRS:
            role = ddb_attr(item, attr)
            if role:
                break
        if not role:
            _LOGGER.warning("tenant_role_missing")
            raise AuthorizationError("No IAM role configured")

        region = ddb_attr(item, REGION_ATTR) or self._default_region
        return Tenant(tenant_id=str(tenant_id), role_reference=role, region=region)
