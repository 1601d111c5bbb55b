"""Tests for configuration settings."""

import pytest


def test_settings_loads_from_env(monkeypatch):
    """Test that settings loads from environment variables."""
    from arq_cashflow.config.settings import get_settings

    monkeypatch.setenv("SERIES_HORIZON_YEARS", "3")
    monkeypatch.setenv("DAY_OF_MONTH_POLICY", "rollover")
    get_settings.cache_clear()

    settings = get_settings()

    assert settings.database_url == "sqlite+aiosqlite://"
    assert settings.series_horizon_years == 3
    assert settings.day_of_month_policy == "rollover"
    get_settings.cache_clear()


def test_settings_has_defaults():
    """Test that settings has sensible defaults."""
    from arq_cashflow.config.settings import get_settings

    get_settings.cache_clear()
    settings = get_settings()

    assert settings.series_horizon_years == 2
    assert settings.series_max_occurrences == 100
    assert settings.transaction_timeout_seconds == 15.0
    assert settings.day_of_month_policy == "clamp"
    assert settings.log_level == "INFO"
    assert settings.database_echo is False


def test_settings_reject_invalid_values(monkeypatch):
    """Test that out-of-range values fail validation."""
    from pydantic import ValidationError

    from arq_cashflow.config.settings import Settings

    monkeypatch.setenv("DAY_OF_MONTH_POLICY", "nearest")
    with pytest.raises(ValidationError):
        Settings()


def test_settings_are_cached():
    """Test that get_settings returns cached instance."""
    from arq_cashflow.config.settings import get_settings

    get_settings.cache_clear()

    settings1 = get_settings()
    settings2 = get_settings()

    assert settings1 is settings2
