"""Flask API utilities package.

This package contains shared utilities for the Flask API, organized into focused modules:
- responses: Standardized HTTP response helpers
- params: Query and identity header parsing
"""

# Re-export commonly used functions for convenience
from apps.flask_api.utils.params import _identity, _q
from apps.flask_api.utils.responses import _err, _json, _ok

__all__ = [
    # responses
    "_ok",
    "_err",
    "_json",
    # params
    "_q",
    "_identity",
]
