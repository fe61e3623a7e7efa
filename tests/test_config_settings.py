"""Test process settings."""

from pathlib import Path

import pytest

from esbev.config import (
    EsbevSettings,
    get_settings,
    reset_settings,
    update_settings,
)


def test_settings_defaults(monkeypatch):
    """Test default settings values."""
    for name in ("ESBEV_DATA_DIR", "ESBEV_STORAGE_PATH", "ESBEV_LOG_LEVEL", "ESBEV_TELEGRAM_TOKEN"):
        monkeypatch.delenv(name, raising=False)

    settings = EsbevSettings()

    assert settings.log_level == "INFO"
    assert settings.telegram_token is None
    assert settings.storage_path is None
    assert settings.database_path == settings.data_dir / "esbev.sqlite3"


def test_settings_from_env(monkeypatch, tmp_path):
    """Test settings from environment variables."""
    monkeypatch.setenv("ESBEV_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("ESBEV_LOG_LEVEL", "debug")
    monkeypatch.setenv("ESBEV_TELEGRAM_CHAT_ID", "-100")

    settings = EsbevSettings()

    assert settings.data_dir == tmp_path
    assert settings.log_level == "debug"
    assert settings.telegram_chat_id == "-100"
    assert settings.database_path == tmp_path / "esbev.sqlite3"


def test_explicit_storage_path_wins(monkeypatch, tmp_path):
    monkeypatch.setenv("ESBEV_STORAGE_PATH", str(tmp_path / "bets.db"))
    assert EsbevSettings().database_path == Path(tmp_path / "bets.db")


def test_get_settings():
    """Test getting global settings."""
    assert isinstance(get_settings(), EsbevSettings)


def test_update_and_reset_settings(monkeypatch):
    """Test updating then resetting settings."""
    monkeypatch.delenv("ESBEV_LOG_LEVEL", raising=False)
    update_settings(log_level="WARNING")
    assert get_settings().log_level == "WARNING"

    reset_settings()
    assert get_settings().log_level == "INFO"


def test_update_settings_invalid_key():
    """Test updating settings with an invalid key."""
    with pytest.raises(ValueError, match="Unknown setting"):
        update_settings(invalid_key="value")
