"""Unit tests for tenant configuration lookup."""

from __future__ import annotations

import pytest

from contracts.profiler_contracts import AuthorizationError, FatalInfrastructureError
from services.tenant_store import TenantStore
from tests.aws_mocks import TENANTS_TABLE, FakeDynamoDbClient, make_client_error, tenant_item


def _store(ddb: FakeDynamoDbClient) -> TenantStore:
    return TenantStore(dynamodb_client=ddb, table_name=TENANTS_TABLE, default_region="us-east-1")


def test_returns_role_and_region() -> None:
    ddb = FakeDynamoDbClient(tables={TENANTS_TABLE: {"acme": tenant_item(region="eu-west-3")}})
    tenant = _store(ddb).get("acme")

    assert tenant.tenant_id == "acme"
    assert tenant.role_reference == "arn:aws:iam::123456789012:role/ProfilerReadOnly"
    assert tenant.region == "eu-west-3"
    assert ddb.get_calls[0]["Key"] == {"userId": {"S": "acme"}}


def test_missing_region_uses_default_region() -> None:
    ddb = FakeDynamoDbClient(tables={TENANTS_TABLE: {"acme": tenant_item(region=None)}})
    assert _store(ddb).get("acme").region == "us-east-1"


def test_role_reference_alias_is_accepted() -> None:
    item = {"roleReference": {"S": "arn:aws:iam::210987654321:role/Other"}}
    ddb = FakeDynamoDbClient(tables={TENANTS_TABLE: {"acme": item}})
    assert _store(ddb).get("acme").role_reference == "arn:aws:iam::210987654321:role/Other"


@pytest.mark.parametrize("item", [None, tenant_item(role=None), tenant_item(role="  ")])
def test_unconfigured_role_is_authorization_error(item: dict | None) -> None:
    tables = {TENANTS_TABLE: {"acme": item}} if item is not None else {}
    with pytest.raises(AuthorizationError, match="No IAM role configured") as exc_info:
        _store(FakeDynamoDbClient(tables=tables)).get("acme")
    assert exc_info.value.status_code == 400


def test_read_failure_is_fatal() -> None:
    ddb = FakeDynamoDbClient(get_errors={TENANTS_TABLE: make_client_error("GetItem", code="InternalServerError")})
    with pytest.raises(FatalInfrastructureError) as exc_info:
        _store(ddb).get("acme")
    assert exc_info.value.status_code == 500
