"""Unit tests for feed_engine.config."""

from __future__ import annotations

import pytest
from feed_engine.config import FeedEnv, Settings, load_settings
from pydantic import ValidationError

# ---------------------------------------------------------------------------
# Settings - default values
# ---------------------------------------------------------------------------


class TestSettingsDefaults:
    def test_default_env(self):
        assert Settings().env == FeedEnv.DEV

    def test_default_database_url_is_local_sqlite(self):
        settings = Settings()
        assert settings.database_url.startswith("sqlite+aiosqlite:///")
        assert "history.db" in settings.database_url

    def test_default_delays_not_scaled(self):
        assert Settings().simulated_delay_scale == 1.0

    def test_no_deadline_by_default(self):
        assert Settings().stage_deadline_seconds is None

    def test_default_http_timeouts(self):
        settings = Settings()
        assert settings.http_connect_timeout_ms == 10000
        assert settings.http_request_timeout_ms == 10000

    def test_job_one_runs_stocks(self):
        settings = Settings()
        assert settings.jobs == {1: "stocks"}
        assert settings.pipeline_for(1) == "stocks"
        assert settings.pipeline_for(2) is None


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------


class TestSettingsEnvOverrides:
    def test_env_var_overrides_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("FEED_ENV", "prod")
        assert Settings().env == FeedEnv.PROD

    def test_env_var_overrides_delay_scale(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("FEED_SIMULATED_DELAY_SCALE", "0")
        assert Settings().simulated_delay_scale == 0.0

    def test_env_var_overrides_jobs(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("FEED_JOBS", '{"7": "simulated", "1": "stocks"}')
        settings = Settings()
        assert settings.pipeline_for(7) == "simulated"

    def test_env_var_default_pipeline(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("FEED_DEFAULT_PIPELINE", "simulated")
        assert Settings().pipeline_for(123) == "simulated"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestSettingsValidation:
    def test_negative_delay_scale_rejected(self):
        with pytest.raises(ValidationError):
            Settings(simulated_delay_scale=-1)

    def test_zero_deadline_rejected(self):
        with pytest.raises(ValidationError):
            Settings(stage_deadline_seconds=0)

    def test_log_level_normalised(self):
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError, match="Unknown log level"):
            Settings(log_level="chatty")


class TestLoadSettings:
    def test_overrides_applied(self):
        settings = load_settings(database_url="sqlite+aiosqlite:///tmp/x.db", debug=True)
        assert settings.database_url == "sqlite+aiosqlite:///tmp/x.db"
        assert settings.debug is True
