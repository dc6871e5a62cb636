# FILE: test_unit_cli.py

from apicopilot import cli


def test_main_runs_uvicorn_with_settings_defaults(monkeypatch):
    calls = []
    monkeypatch.setattr(cli.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    cli.main([])

    app, kwargs = calls[0]
    assert app == "apicopilot.app:app"
    assert kwargs["host"] == cli.settings.API_HOST
    assert kwargs["port"] == cli.settings.API_PORT
    assert kwargs["log_level"] == cli.settings.LOG_LEVEL.lower()


def test_main_flags_override_settings(monkeypatch):
    calls = []
    monkeypatch.setattr(cli.uvicorn, "run", lambda app, **kwargs: calls.append(kwargs))

    cli.main(["--host", "127.0.0.1", "--port", "9100", "--reload", "--log-level", "DEBUG"])

    assert calls[0] == {"host": "127.0.0.1", "port": 9100, "reload": True, "log_level": "debug"}
