"""Configuration management for Trip Ledger."""

from decimal import Decimal
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .models import Currency


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Settlement
    settlement_currency: Currency = Currency.GBP  # Fixed per deployment

    # FX rate service
    fx_api_base_url: str = "https://api.frankfurter.app"
    fx_timeout_seconds: float = 10.0
    fx_cache_ttl_hours: int = 24  # Durable cache TTL, measured from insertion

    # Tolerances (currency units)
    split_tolerance: Decimal = Decimal("0.01")
    balance_tolerance: Decimal = Decimal("0.01")

    # Database path
    database_path: Path = Path.home() / ".trip_ledger" / "trip_ledger.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check the variables in your .env file "
            f"(e.g. SETTLEMENT_CURRENCY=GBP). See .env.example for reference.\n"
            f"Error: {e}"
        ) from e
