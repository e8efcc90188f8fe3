"""AWS SDK configuration for the profiler.

Request-scoped client factories import from this module to keep AWS/client tuning
in one place. Only immutable botocore ``Config`` objects live here; clients are
always built per request.
"""

from __future__ import annotations

from botocore.config import Config

from infra.config import AWSConfig, get_settings
from version import ENGINE_NAME, ENGINE_VERSION


def build_sdk_config(aws_cfg: AWSConfig) -> Config:
    """Return the botocore config used for telemetry and storage clients."""
    return Config(
        retries={"max_attempts": int(aws_cfg.max_retries), "mode": "adaptive"},
        user_agent_extra=f"{ENGINE_NAME}/{ENGINE_VERSION}",
        connect_timeout=int(aws_cfg.connect_timeout),
        read_timeout=int(aws_cfg.timeout),
    )


def build_sts_config(aws_cfg: AWSConfig) -> Config:
    """STS config: a rejected delegation is never retried."""
    return Config(
        retries={"max_attempts": 1, "mode": "standard"},
        user_agent_extra=f"{ENGINE_NAME}/{ENGINE_VERSION}",
        connect_timeout=int(aws_cfg.connect_timeout),
        read_timeout=int(aws_cfg.timeout),
    )


_AWS_CFG = get_settings().aws

SDK_CONFIG = build_sdk_config(_AWS_CFG)
STS_CONFIG = build_sts_config(_AWS_CFG)
