"""Health and metadata endpoints Blueprint.

Provides health check, OpenAPI spec, and version endpoints.
"""

from typing import Any

from flask import Blueprint, jsonify

from apps.flask_api.utils import _json
from version import COST_MODEL_VERSION, ENGINE_NAME, ENGINE_VERSION

# Create the blueprint
health_bp = Blueprint("health", __name__)


# API version - will be set from main app
_API_VERSION: str = "v1"
_API_PREFIX: str = "/api/v1"


def init_blueprint(api_version: str, api_prefix: str) -> None:
    """Initialize blueprint with API version settings.

    Args:
        api_version: API version string (e.g., 'v1')
        api_prefix: API prefix string (e.g., '/api/v1')
    """
    global _API_VERSION, _API_PREFIX
    _API_VERSION = api_version
    _API_PREFIX = api_prefix


@health_bp.route("/health", methods=["GET"])
def health() -> Any:
    """Basic health check endpoint.

    Returns:
        JSON response with ok: true
    """
    return jsonify({"ok": True})


@health_bp.route("/api/openapi.json", methods=["GET"])
def api_openapi() -> Any:
    """OpenAPI 3.0 specification under API base."""
    return _json(_build_openapi_spec())


@health_bp.route("/api/version", methods=["GET"])
def api_version() -> Any:
    """API version metadata and supported versions."""
    return _json(
        {
            "engine": ENGINE_NAME,
            "engine_version": ENGINE_VERSION,
            "cost_model_version": COST_MODEL_VERSION,
            "version": _API_VERSION,
            "prefix": _API_PREFIX,
            "supported_versions": [_API_VERSION],
            "legacy_prefix": "/api",
        }
    )


def _build_openapi_spec() -> dict:
    """Build the OpenAPI spec for the public endpoints."""
    metric_item = {
        "type": "object",
        "properties": {
            "functionName": {"type": "string"},
            "latency": {"type": "number", "description": "Average duration (ms), latest 5-minute bucket"},
            "errors": {"type": "number"},
            "invocations": {"type": "number"},
            "coldStarts": {"type": "integer"},
            "cost": {"type": "number", "description": "Estimated USD, 6 decimals"},
            "memoryAllocation": {"type": "integer", "description": "MB"},
        },
    }
    return {
        "openapi": "3.0.0",
        "info": {
            "title": "Lambda Profiler API",
            "version": _API_VERSION,
            "description": "Cross-account Lambda metrics and cost estimates",
        },
        "servers": [{"url": _API_PREFIX}],
        "paths": {
            "/metrics": {
                "get": {
                    "summary": "Metrics and cost for a list of functions",
                    "parameters": [
                        {"name": "functionNames", "in": "query", "required": True, "schema": {"type": "string"}},
                        {"name": "startTime", "in": "query", "required": False, "schema": {"type": "string"}},
                        {"name": "endTime", "in": "query", "required": False, "schema": {"type": "string"}},
                    ],
                    "responses": {
                        "200": {
                            "description": "OK",
                            "content": {
                                "application/json": {
                                    "schema": {
                                        "type": "object",
                                        "properties": {
                                            "tenantId": {"type": "string"},
                                            "metrics": {"type": "array", "items": metric_item},
                                        },
                                    }
                                }
                            },
                        },
                        "400": {"description": "Validation or authorization error"},
                        "401": {"description": "Missing identity"},
                        "500": {"description": "Infrastructure failure"},
                        "504": {"description": "Request deadline exceeded"},
                    },
                }
            },
            "/health": {
                "get": {
                    "summary": "Basic health check",
                    "responses": {"200": {"description": "OK"}},
                }
            },
            "/version": {
                "get": {
                    "summary": "API version info",
                    "responses": {"200": {"description": "OK"}},
                }
            },
        },
    }
