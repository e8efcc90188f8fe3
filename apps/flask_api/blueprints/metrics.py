"""Function metrics endpoint Blueprint.

GET /metrics?functionNames=a,b[&startTime=...&endTime=...]

The tenant identity is read from the header configured in ``API__IDENTITY_HEADER``
(set by the authenticating proxy). The request itself is answered by
:class:`runner.ProfilerRunner`; this module only adapts Flask in and out.
"""

from typing import Any, Callable

from flask import Blueprint, current_app

from apps.flask_api.utils import _err, _identity, _ok, _q
from infra.config import get_settings
from runner import ProfilerRunner

metrics_bp = Blueprint("metrics", __name__)

RUNNER_FACTORY_KEY = "PROFILER_RUNNER_FACTORY"


def _runner() -> ProfilerRunner:
    """Return a fresh runner for this request (tests inject a factory)."""
    factory: Callable[[], ProfilerRunner] | None = current_app.config.get(RUNNER_FACTORY_KEY)
    if factory is not None:
        return factory()
    return ProfilerRunner(settings=get_settings())


@metrics_bp.route("/metrics", methods=["GET"])
def api_metrics() -> Any:
    """Latency, errors, invocations, cold starts and cost per function.

    Returns:
        200 with ``{tenantId, metrics: [...]}`` in request order, or an error
        payload with 400/401/500/504.
    """
    api = current_app.config.get("API_SETTINGS") or get_settings().api
    runner = _runner()
    response = runner.handle(
        identity=_identity(api.identity_header),
        function_names=_q("functionNames"),
        start_time=_q("startTime"),
        end_time=_q("endTime"),
        debug_errors=api.debug_errors,
    )
    if response.ok:
        return _ok(response.body, status=response.status_code)

    body = dict(response.body)
    code = str(body.pop("error", "internal_error"))
    message = str(body.pop("message", "internal error"))
    return _err(code, message, status=response.status_code, extra=body or None)
