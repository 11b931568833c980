"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from spacc.config import Settings


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.debug is False
        assert s.port == 8000
        assert s.mtime_tolerance_ms == 2000
        assert s.repair_max_concurrency == 4
        assert s.project_files_names == ["project files", "archivos de proyecto"]
        assert s.progress_abort_on_disconnect is False

    def test_custom_settings(self, tmp_path: Path) -> None:
        s = Settings(
            _env_file=None,
            debug=True,
            reports_dir=tmp_path / "reports",
            repair_max_concurrency=8,
        )
        assert s.debug is True
        assert s.reports_dir == tmp_path / "reports"
        assert s.repair_max_concurrency == 8

    def test_settings_from_fixture(self, test_settings: Settings) -> None:
        assert test_settings.debug is True
        assert test_settings.progress_throttle_ms == 0

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MTIME_TOLERANCE_MS", "5000")
        monkeypatch.setenv("PROGRESS_ABORT_ON_DISCONNECT", "true")
        s = Settings(_env_file=None)
        assert s.mtime_tolerance_ms == 5000
        assert s.progress_abort_on_disconnect is True

    def test_concurrency_floor(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, repair_max_concurrency=0)


class TestRuntimeSecurity:
    def test_debug_skips_checks(self) -> None:
        Settings(_env_file=None, debug=True).validate_runtime_security()

    def test_production_requires_tokens(self) -> None:
        with pytest.raises(ValueError, match="GRAPH_ACCESS_TOKEN") as exc_info:
            Settings(_env_file=None).validate_runtime_security()
        assert "APS_ACCESS_TOKEN" in str(exc_info.value)

    def test_production_with_tokens(self) -> None:
        settings = Settings(_env_file=None, graph_access_token="g", aps_access_token="a")
        settings.validate_runtime_security()


class TestCliEntry:
    def test_cli_entry_uses_app_settings(self) -> None:
        """cli_entry() should use the global app's settings, not create a new Settings()."""
        from spacc.main import app, cli_entry

        original_settings = getattr(app.state, "settings", None)
        app.state.settings = Settings(_env_file=None, host="127.0.0.1", port=9999, debug=True)

        try:
            with patch("uvicorn.run") as mock_run:
                cli_entry()

            mock_run.assert_called_once_with(
                "spacc.main:app",
                host="127.0.0.1",
                port=9999,
                reload=True,
            )
        finally:
            if original_settings is None:
                del app.state.settings
            else:
                app.state.settings = original_settings
