"""Tests for the doauth.main entry point."""

from __future__ import annotations

from unittest.mock import patch


def test_main_calls_uvicorn_run(monkeypatch) -> None:
    """main() delegates to uvicorn.run with the app factory."""
    monkeypatch.delenv("DOAUTH_SERVER__PORT", raising=False)
    monkeypatch.delenv("DOAUTH_RELOAD", raising=False)
    with patch("doauth.main.uvicorn.run") as mock_run:
        from doauth.main import main

        main()
        mock_run.assert_called_once()
        call_kwargs = mock_run.call_args
        assert call_kwargs[0][0] == "doauth.api.app:create_app"
        assert call_kwargs[1]["factory"] is True
        assert call_kwargs[1]["port"] == 3000
        assert call_kwargs[1]["reload"] is False


def test_reload_from_env(monkeypatch) -> None:
    monkeypatch.setenv("DOAUTH_RELOAD", "yes")
    with patch("doauth.main.uvicorn.run") as mock_run:
        from doauth.main import main

        main()
        assert mock_run.call_args[1]["reload"] is True
