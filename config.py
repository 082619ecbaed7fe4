"""
Service configuration.

All settings loaded from environment variables (or a local .env file).
"""

from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from indicators import ATR_PERIOD, RSI_PERIOD


class Settings(BaseSettings):
    """Service settings from environment variables."""

    # Application
    app_name: str = "Indicator Stream Service"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 5000
    allowed_origins: List[str] = ["*"]

    # Market data
    market_data_source: str = "binance"  # Options: binance, simulated
    binance_base_url: str = "https://fapi.binance.com"
    request_timeout_seconds: float = 10.0
    kline_limit: int = 100
    quote_asset: str = "USDT"
    simulated_symbols: List[str] = ["BTCUSDT", "ETHUSDT", "SOLUSDT", "BNBUSDT", "XRPUSDT"]

    # Scanning / streaming
    default_interval: str = "30m"
    stream_interval_seconds: float = 8.0
    scan_concurrency: int = 25

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @field_validator("kline_limit")
    @classmethod
    def _enough_history(cls, value: int) -> int:
        minimum = max(RSI_PERIOD, ATR_PERIOD) + 1
        if value < minimum:
            raise ValueError(f"kline_limit must be >= {minimum}")
        return value

    @field_validator("market_data_source")
    @classmethod
    def _known_source(cls, value: str) -> str:
        value = value.lower()
        if value not in ("binance", "simulated"):
            raise ValueError("market_data_source must be 'binance' or 'simulated'")
        return value

    @field_validator("scan_concurrency")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("scan_concurrency must be > 0")
        return value


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
