"""
Configuration management using Pydantic Settings.
Values come from the environment and an optional .env file.
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings with environment-based configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Referral Ledger"
    app_version: str = "0.1.0"
    environment: str = "development"

    # Telegram
    telegram_bot_token: str = ""

    # Tabular store
    spreadsheet_id: str = ""
    google_credentials_path: str = "credentials.json"
    store_timeout_seconds: int = 30

    # Sheet names of the production spreadsheet
    referrers_sheet: str = "Рефоводы"
    invited_sheet: str = "Приглашенные"
    ledger_sheet: str = "Рефералы"
    withdrawals_sheet: str = "Выводы"

    # Reconciliation
    sync_interval_hours: int = Field(default=2, ge=1)
    sync_initial_delay_seconds: int = 60
    bonus_rate: float = Field(default=0.10, gt=0, lt=1)

    # Balance repair
    repair_interval_seconds: int = Field(default=3600, ge=1)
    repair_initial_delay_seconds: int = 300
    balance_repair_mode: str = "watermark"

    # Periodic task supervision
    task_restart_cooldown_seconds: int = 300

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # json or console
    log_file: Optional[str] = None

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ["development", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in ("json", "console"):
            raise ValueError("Log format must be 'json' or 'console'")
        return v

    @field_validator("balance_repair_mode")
    @classmethod
    def validate_repair_mode(cls, v: str) -> str:
        if v not in ("watermark", "legacy"):
            raise ValueError("Balance repair mode must be 'watermark' or 'legacy'")
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def sync_interval_seconds(self) -> int:
        return self.sync_interval_hours * 3600

    def ensure_complete(self, require_bot: bool = True) -> None:
        """
        Check the values the process cannot start without.

        Raises:
            ConfigurationError: if a required value is missing
        """
        if require_bot and not self.telegram_bot_token:
            raise ConfigurationError("TELEGRAM_BOT_TOKEN is not set")

        if not self.spreadsheet_id:
            raise ConfigurationError("SPREADSHEET_ID is not set")

        if not os.path.isfile(self.google_credentials_path):
            raise ConfigurationError(
                f"Credentials file not found: {self.google_credentials_path}",
                {"path": self.google_credentials_path}
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return Settings()
