"""Unit tests for the command line entry points."""

from __future__ import annotations

from typing import Any

import pytest

import cli
from infra.config import Settings


class _FakeApp:
    def __init__(self) -> None:
        self.run_calls: list[dict[str, Any]] = []

    def run(self, **kwargs: Any) -> None:
        self.run_calls.append(kwargs)


def test_serve_builds_app_from_the_settings_it_binds_with(monkeypatch: pytest.MonkeyPatch) -> None:
    settings = Settings.model_validate({"api": {"host": "127.0.0.9", "port": 5099}})
    app = _FakeApp()
    built_with: list[Any] = []

    def _create_app(cfg: Any = None) -> _FakeApp:
        built_with.append(cfg)
        return app

    monkeypatch.setattr("apps.flask_api.flask_app.create_app", _create_app)
    monkeypatch.setattr("infra.config.get_settings", lambda: settings)
    monkeypatch.setattr("infra.logging_config.setup_logging", lambda: None)

    cli.main(["serve"])

    assert built_with == [settings]
    assert app.run_calls == [{"host": "127.0.0.9", "port": 5099}]


def test_serve_flags_override_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    settings = Settings.model_validate({"api": {"host": "127.0.0.9", "port": 5099}})
    app = _FakeApp()

    monkeypatch.setattr("apps.flask_api.flask_app.create_app", lambda cfg=None: app)
    monkeypatch.setattr("infra.config.get_settings", lambda: settings)
    monkeypatch.setattr("infra.logging_config.setup_logging", lambda: None)

    cli.main(["serve", "--host", "0.0.0.0", "--port", "8080"])

    assert app.run_calls == [{"host": "0.0.0.0", "port": 8080}]


def test_metrics_requires_functions(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TENANT_ID", raising=False)
    with pytest.raises(SystemExit, match="--functions"):
        cli.main(["metrics", "--tenant", "acme"])
