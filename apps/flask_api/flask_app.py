"""flask_app.py

HTTP API for the Lambda profiler.

Core concepts
-------------
- The tenant identity is asserted by the authenticating proxy in front of this
  app and forwarded in a header (``X-Tenant-Id`` by default). It is treated as
  an opaque string.
- Every request builds its own AWS clients; nothing AWS-related is shared
  between requests.
- Optional bearer token for service-to-service calls (``API__BEARER_TOKEN``).

Run
---
FLASK_APP=apps/flask_api/flask_app.py flask run --host=0.0.0.0 --port=5000

The module-level ``app`` (for ``flask run``) reads settings once, at import.
``lambdaprofiler serve`` builds its own app from the settings it binds with.
"""

from __future__ import annotations

import hmac
import time
import traceback
from typing import Any, Optional

from flask import Flask, Response, abort, request

from apps.flask_api.blueprints import health_bp, metrics_bp
from apps.flask_api.blueprints.health import init_blueprint
from apps.flask_api.utils import _err
from infra.config import Settings, get_settings
from infra.logging_config import get_logger, setup_logging

_LOGGER = get_logger("flask_api")


def _merge_vary_header(current: Optional[str], token: str) -> str:
    """Return a Vary header value that includes token exactly once."""
    items = [x.strip() for x in str(current or "").split(",") if x.strip()]
    token_norm = token.strip()
    if token_norm and token_norm.lower() not in {x.lower() for x in items}:
        items.append(token_norm)
    return ", ".join(items)


def create_app(settings: Optional[Settings] = None) -> Flask:
    """Build the Flask application."""
    cfg = settings or get_settings()
    flask_app = Flask(__name__)
    flask_app.config["API_SETTINGS"] = cfg.api

    api_prefix = f"/api/{cfg.api.version}"
    init_blueprint(cfg.api.version, api_prefix)
    flask_app.register_blueprint(health_bp)
    flask_app.register_blueprint(metrics_bp, url_prefix="/api")
    flask_app.register_blueprint(metrics_bp, url_prefix=api_prefix, name="metrics_versioned")

    _install_hooks(flask_app)
    return flask_app


def _install_hooks(flask_app: Flask) -> None:
    @flask_app.before_request
    def _start_timer() -> None:
        request.environ["_profiler_t0"] = time.monotonic()

    @flask_app.before_request
    def _enforce_api_auth() -> None:
        """Enforce bearer auth for /api/* routes when a token is configured."""
        path = request.path or ""
        if not path.startswith("/api/"):
            return
        _check_bearer_token(flask_app.config["API_SETTINGS"].bearer_token)

    @flask_app.after_request
    def _log_request(resp: Response) -> Response:
        t0 = float(request.environ.get("_profiler_t0") or 0.0)
        ms = int(max(0.0, (time.monotonic() - t0) * 1000.0)) if t0 else None
        _LOGGER.info(
            "http_request",
            method=request.method,
            path=request.path,
            status=int(getattr(resp, "status_code", 0) or 0),
            ms=ms,
            ip=request.headers.get("X-Forwarded-For", request.remote_addr),
        )

        # Metrics are per-tenant and time-sensitive: never serve from shared caches.
        if (request.path or "").startswith("/api/"):
            resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
            resp.headers["Pragma"] = "no-cache"
            resp.headers["Expires"] = "0"
            resp.headers["Vary"] = _merge_vary_header(resp.headers.get("Vary"), "Authorization")
        return resp

    @flask_app.errorhandler(401)
    def _err_401(_: Exception) -> Any:
        return _err("unauthorized", "Unauthorized", status=401)

    @flask_app.errorhandler(403)
    def _err_403(_: Exception) -> Any:
        return _err("forbidden", "Forbidden", status=403)

    @flask_app.errorhandler(404)
    def _err_404(_: Exception) -> Any:
        return _err("not_found", "not found", status=404)

    @flask_app.errorhandler(500)
    def _err_500(exc: Exception) -> Any:
        if flask_app.config["API_SETTINGS"].debug_errors:
            tb = traceback.format_exc()
            _LOGGER.error("unhandled_exception", path=request.path, detail=str(exc), traceback=tb)
            return _err("internal_error", "internal error", status=500, extra={"detail": str(exc), "traceback": tb})
        _LOGGER.error("unhandled_exception", path=request.path, detail=str(exc))
        return _err("internal_error", "internal error", status=500)


def _check_bearer_token(expected: str) -> None:
    """Abort the request if the bearer token is missing/invalid.

    If no token is configured, authentication is disabled (local dev).
    """
    if not expected:
        return

    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        abort(401)

    token = auth[len("Bearer "):].strip()
    # constant-time comparison
    if not hmac.compare_digest(token, expected):
        abort(403)


app = create_app()


if __name__ == "__main__":
    setup_logging()
    _settings = get_settings()
    create_app(_settings).run(host=_settings.api.host, port=_settings.api.port)
