"""Process-level settings for esbev."""

from pathlib import Path

from platformdirs import user_data_dir
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EsbevSettings(BaseSettings):
    """Settings read from ``ESBEV_*`` environment variables or ``.env``."""

    data_dir: Path = Field(
        default_factory=lambda: Path(user_data_dir("esbev")),
        description="Directory holding raw feeds and the database",
        alias="ESBEV_DATA_DIR",
    )

    storage_path: Path | None = Field(
        default=None,
        description="SQLite database path; defaults to <data_dir>/esbev.sqlite3",
        alias="ESBEV_STORAGE_PATH",
    )

    # Notifications
    telegram_token: str | None = Field(
        default=None,
        description="Telegram bot token",
        alias="ESBEV_TELEGRAM_TOKEN",
    )

    telegram_chat_id: str | None = Field(
        default=None,
        description="Telegram chat receiving play alerts",
        alias="ESBEV_TELEGRAM_CHAT_ID",
    )

    log_level: str = Field(
        default="INFO",
        description="Root log level",
        alias="ESBEV_LOG_LEVEL",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def database_path(self) -> Path:
        return self.storage_path or self.data_dir / "esbev.sqlite3"


# Global settings instance
settings = EsbevSettings()


def get_settings() -> EsbevSettings:
    """Get the current settings."""
    return settings


def update_settings(**kwargs) -> None:
    """Update settings in place."""
    global settings
    for key, value in kwargs.items():
        if hasattr(settings, key):
            setattr(settings, key, value)
        else:
            raise ValueError(f"Unknown setting: {key}")


def reset_settings() -> None:
    """Reset settings to defaults."""
    global settings
    settings = EsbevSettings()
