"""
Test settings loading and validation.
"""

import pytest
from pydantic import ValidationError

from refledger.core.config import Settings
from refledger.core.exceptions import ConfigurationError


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.referrers_sheet == "Рефоводы"
    assert settings.invited_sheet == "Приглашенные"
    assert settings.ledger_sheet == "Рефералы"
    assert settings.withdrawals_sheet == "Выводы"
    assert settings.sync_interval_seconds == 7200
    assert settings.bonus_rate == 0.10
    assert settings.balance_repair_mode == "watermark"
    assert settings.is_development


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SYNC_INTERVAL_HOURS", "3")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("BALANCE_REPAIR_MODE", "legacy")

    settings = Settings(_env_file=None)

    assert settings.sync_interval_seconds == 3 * 3600
    assert settings.log_level == "DEBUG"
    assert settings.balance_repair_mode == "legacy"


@pytest.mark.parametrize("field, value", [
    ("environment", "moon"),
    ("log_level", "LOUD"),
    ("log_format", "xml"),
    ("balance_repair_mode", "sometimes"),
    ("sync_interval_hours", 0),
    ("bonus_rate", 1.5),
])
def test_invalid_values(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_ensure_complete(tmp_path):
    credentials = tmp_path / "credentials.json"
    credentials.write_text("{}")

    settings = Settings(
        _env_file=None,
        telegram_bot_token="123456:TEST",
        spreadsheet_id="sheet-id",
        google_credentials_path=str(credentials),
    )

    settings.ensure_complete()


@pytest.mark.parametrize("overrides, message", [
    ({"telegram_bot_token": ""}, "TELEGRAM_BOT_TOKEN"),
    ({"spreadsheet_id": ""}, "SPREADSHEET_ID"),
    ({"google_credentials_path": "/nonexistent/credentials.json"}, "Credentials file"),
])
def test_ensure_complete_reports_missing_values(tmp_path, overrides, message):
    credentials = tmp_path / "credentials.json"
    credentials.write_text("{}")
    values = {
        "telegram_bot_token": "123456:TEST",
        "spreadsheet_id": "sheet-id",
        "google_credentials_path": str(credentials),
    }
    values.update(overrides)

    with pytest.raises(ConfigurationError) as exc_info:
        Settings(_env_file=None, **values).ensure_complete()

    assert message in exc_info.value.message
    assert exc_info.value.code == "CONFIGURATION_ERROR"


def test_bot_token_optional_for_jobs_only(tmp_path):
    credentials = tmp_path / "credentials.json"
    credentials.write_text("{}")

    settings = Settings(_env_file=None, spreadsheet_id="sheet-id", google_credentials_path=str(credentials))

    settings.ensure_complete(require_bot=False)
