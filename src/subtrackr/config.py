"""Configuration management for SubTrackr."""

from datetime import time
from decimal import Decimal
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Device identity (generated and persisted in the database when unset)
    device_id: str | None = None

    # Remote document store (sync is disabled when no base URL is set)
    remote_base_url: str | None = None
    remote_api_key: str | None = None
    remote_collection: str = "subscriptions"
    http_timeout: float = 30.0

    # Currency settings
    base_currency: str = "USD"
    exchange_rates: dict[str, Decimal] = {}  # units of currency per 1 base unit

    # Reminder settings
    reminder_lead_days: list[int] = [3, 1]
    reminder_time: time = time(9, 0)
    reminder_horizon_days: int = 30

    # Local store settings
    change_log_limit: int = 1000
    tombstone_retention_days: int = 90

    # Background sync settings
    sync_interval_seconds: float = 300.0
    sync_backoff_initial_seconds: float = 5.0
    sync_backoff_max_seconds: float = 600.0

    # Database path
    database_path: Path = Path.home() / ".subtrackr" / "subtrackr.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    @field_validator("base_currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("exchange_rates")
    @classmethod
    def _upper_rate_codes(cls, value: dict[str, Decimal]) -> dict[str, Decimal]:
        return {code.strip().upper(): rate for code, rate in value.items()}

    @field_validator("reminder_lead_days")
    @classmethod
    def _non_negative_leads(cls, value: list[int]) -> list[int]:
        if any(days < 0 for days in value):
            raise ValueError("reminder_lead_days must not contain negative values")
        return value

    @property
    def sync_enabled(self) -> bool:
        """Whether a remote store is configured."""
        return bool(self.remote_base_url)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check your environment and .env file.\n"
            f"Error: {e}"
        ) from e
