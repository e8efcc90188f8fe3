"""
services/credential_broker.py

Exchanges a tenant-owned role reference for short-lived delegated credentials.

The broker never retries: an authorization failure with identical inputs cannot
succeed on a second attempt, and the STS client is built with a single attempt.
Credentials are returned to the caller only; they are never logged or persisted.

Minimal IAM permission (profiler account):
- sts:AssumeRole on the tenant roles (the tenant trust policy must allow it)
"""

from __future__ import annotations

from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from collectors.aws._common import error_code, failure_reason, fetch_or_default
from contracts.profiler_contracts import (
    AuthorizationError,
    DelegatedCredentials,
    FatalInfrastructureError,
    Tenant,
)
from infra.logging_config import get_logger

_LOGGER = get_logger("credential_broker")

# STS answers these when the tenant role is invalid, revoked or does not trust us.
# ExpiredToken refers to the profiler's own credentials: an infrastructure failure.
DELEGATION_REJECTED_CODES = frozenset(
    {
        "AccessDenied",
        "AccessDeniedException",
        "InvalidClientTokenId",
        "MalformedPolicyDocument",
        "ValidationError",
        "RegionDisabledException",
    }
)


class CredentialBroker:
    """STS AssumeRole wrapper producing :class:`DelegatedCredentials`."""

    def __init__(self, *, sts_client: Any, duration_seconds: int = 900) -> None:
        self._sts = sts_client
        self._duration_seconds = int(duration_seconds)

    def delegate(self, tenant: Tenant) -> DelegatedCredentials:
        """Assume the tenant role and return its credentials.

        Raises:
            AuthorizationError: STS rejected the delegation.
            FatalInfrastructureError: STS could not be reached or answered oddly.
        """
        session_name = tenant.session_name()
        try:
            response = self._sts.assume_role(
                RoleArn=tenant.role_reference,
                RoleSessionName=session_name,
                DurationSeconds=self._duration_seconds,
            )
        except ClientError as exc:
            if error_code(exc) in DELEGATION_REJECTED_CODES:
                _LOGGER.warning("delegation_rejected", session_name=session_name, reason=error_code(exc))
                raise AuthorizationError("Role delegation rejected") from exc
            _LOGGER.error("delegation_failed", session_name=session_name, reason=failure_reason(exc))
            raise FatalInfrastructureError("credential exchange failed") from exc
        except BotoCoreError as exc:
            _LOGGER.error("delegation_failed", session_name=session_name, reason=failure_reason(exc))
            raise FatalInfrastructureError("credential exchange failed") from exc

        creds = fetch_or_default(response, "Credentials", {})
        access_key = fetch_or_default(creds, "AccessKeyId", "")
        secret_key = fetch_or_default(creds, "SecretAccessKey", "")
        token = fetch_or_default(creds, "SessionToken", "")
        if not access_key or not secret_key or not token:
            _LOGGER.error("delegation_failed", session_name=session_name, reason="incomplete_credentials")
            raise FatalInfrastructureError("credential exchange returned incomplete credentials")

        _LOGGER.info("delegation_granted", session_name=session_name)
        return DelegatedCredentials(
            access_key_id=str(access_key),
            secret_access_key=str(secret_key),
            session_token=str(token),
            expiration=fetch_or_default(creds, "Expiration", None),
        )
