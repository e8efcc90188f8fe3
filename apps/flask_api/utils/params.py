"""Query and header parameter helpers for Flask API.

Provides utilities for extracting request parameters from query strings and
headers set by the authenticating proxy.
"""

from flask import request


def _q(name: str, default: str | None = None) -> str | None:
    """Get a query parameter value with optional default.

    Args:
        name: Parameter name
        default: Default value if not present

    Returns:
        Parameter value or default
    """
    v = request.args.get(name)
    if v is None or v == "":
        return default
    return v


def _identity(header_name: str) -> str | None:
    """Return the verified tenant identity forwarded by the authenticating proxy.

    The identity is an opaque string; blank values count as absent.

    Args:
        header_name: Header carrying the identity claim (e.g. 'X-Tenant-Id')

    Returns:
        Identity or None
    """
    value = request.headers.get(header_name)
    if value is None:
        return None
    value = value.strip()
    return value or None
