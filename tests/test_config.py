"""Tests for settings loading."""

from datetime import time
from decimal import Decimal

import pytest

from subtrackr.config import Settings, load_settings
from subtrackr.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Run from an empty directory with the database under tmp_path."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "data" / "subtrackr.db"))
    for name in ("REMOTE_BASE_URL", "DEVICE_ID", "BASE_CURRENCY", "EXCHANGE_RATES"):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    """Environment-driven configuration."""

    def test_defaults(self, tmp_path):
        """Defaults apply and the database directory is created."""
        settings = load_settings()

        assert settings.base_currency == "USD"
        assert settings.reminder_lead_days == [3, 1]
        assert settings.reminder_time == time(9, 0)
        assert not settings.sync_enabled
        assert (tmp_path / "data").is_dir()

    def test_environment_overrides(self, monkeypatch):
        """Values come from environment variables, case-insensitively."""
        monkeypatch.setenv("base_currency", "eur")
        monkeypatch.setenv("EXCHANGE_RATES", '{"gbp": "0.85"}')
        monkeypatch.setenv("REMOTE_BASE_URL", "https://remote.test")
        monkeypatch.setenv("REMINDER_LEAD_DAYS", "[7, 2]")

        settings = Settings()

        assert settings.base_currency == "EUR"
        assert settings.exchange_rates == {"GBP": Decimal("0.85")}
        assert settings.sync_enabled
        assert settings.reminder_lead_days == [7, 2]

    def test_dotenv_file(self, tmp_path):
        """A .env file in the working directory is read."""
        (tmp_path / ".env").write_text("DEVICE_ID=laptop\nHTTP_TIMEOUT=5\n")

        settings = Settings()

        assert settings.device_id == "laptop"
        assert settings.http_timeout == 5.0

    def test_invalid_settings(self, monkeypatch):
        """Bad values surface as ConfigurationError."""
        monkeypatch.setenv("REMINDER_LEAD_DAYS", "[-1]")

        with pytest.raises(ConfigurationError):
            load_settings()
