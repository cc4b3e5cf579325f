"""
Configuration settings for Finnhub ingestion, scoring and storage
"""

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv
load_dotenv()


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


@dataclass
class ScreenerConfig:
    """Configuration class for the value screener"""

    # API Configuration
    API_KEY: Optional[str] = os.getenv("FINNHUB_API_KEY")
    BASE_URL: str = os.getenv("FINNHUB_BASE_URL", "https://finnhub.io/api/v1")

    # Rate Limiting (provider publishes 30/s and 60/min)
    REQUESTS_PER_SECOND: int = int(os.getenv("FINNHUB_REQUESTS_PER_SECOND", "20"))
    REQUESTS_PER_MINUTE: int = int(os.getenv("FINNHUB_REQUESTS_PER_MINUTE", "50"))
    DISABLE_RATE_LIMITING: bool = _env_bool("DISABLE_RATE_LIMITING")

    # Retry / HTTP
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))
    RETRY_DELAY: float = float(os.getenv("RETRY_DELAY", "2.0"))
    REQUEST_TIMEOUT: int = int(os.getenv("REQUEST_TIMEOUT", "30"))
    CONNECTION_TIMEOUT: int = int(os.getenv("CONNECTION_TIMEOUT", "10"))

    # Ingestion
    REPORTING_CURRENCY: str = os.getenv("REPORTING_CURRENCY", "USD")
    STALENESS_HOURS: float = float(os.getenv("UPDATE_THRESHOLD_HOURS", "12"))
    MARKET_CAP_THRESHOLD_MILLIONS: float = float(os.getenv("MARKET_CAP_THRESHOLD_MILLIONS", "100"))
    BATCH_SIZE: int = int(os.getenv("BATCH_SIZE", "20"))
    CONCURRENCY: int = int(os.getenv("CONCURRENCY", "5"))
    UNIVERSE_EXCHANGE: str = os.getenv("UNIVERSE_EXCHANGE", "US")
    UNDERVALUED_MIN_MARGIN: float = float(os.getenv("UNDERVALUED_MIN_MARGIN", "20"))

    # Database Configuration
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_PORT: int = int(os.getenv("DB_PORT", "5432"))
    DB_NAME: str = os.getenv("DB_NAME", "stock_data")
    DB_USER: str = os.getenv("DB_USER", "postgres")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", "")

    @property
    def staleness_threshold(self) -> timedelta:
        return timedelta(hours=self.STALENESS_HOURS)

    @property
    def market_cap_floor(self) -> float:
        """Market cap floor in reporting currency units (not millions)"""
        return self.MARKET_CAP_THRESHOLD_MILLIONS * 1_000_000

    def validate(self) -> None:
        """Raise ValueError for settings the pipeline cannot run with."""
        positive = {
            "REQUESTS_PER_SECOND": self.REQUESTS_PER_SECOND,
            "REQUESTS_PER_MINUTE": self.REQUESTS_PER_MINUTE,
            "MAX_RETRIES": self.MAX_RETRIES,
            "BATCH_SIZE": self.BATCH_SIZE,
            "CONCURRENCY": self.CONCURRENCY,
            "MARKET_CAP_THRESHOLD_MILLIONS": self.MARKET_CAP_THRESHOLD_MILLIONS,
        }
        for name, value in positive.items():
            if value is None or value <= 0:
                raise ValueError(f"{name} must be positive, got {value!r}")
        if self.RETRY_DELAY < 0:
            raise ValueError(f"RETRY_DELAY must not be negative, got {self.RETRY_DELAY!r}")

    @classmethod
    def from_env(cls) -> "ScreenerConfig":
        """Create configuration from environment variables"""
        return cls(
            API_KEY=os.getenv("FINNHUB_API_KEY"),
            BASE_URL=os.getenv("FINNHUB_BASE_URL", "https://finnhub.io/api/v1"),
            REQUESTS_PER_SECOND=int(os.getenv("FINNHUB_REQUESTS_PER_SECOND", "20")),
            REQUESTS_PER_MINUTE=int(os.getenv("FINNHUB_REQUESTS_PER_MINUTE", "50")),
            DISABLE_RATE_LIMITING=_env_bool("DISABLE_RATE_LIMITING"),
            MAX_RETRIES=int(os.getenv("MAX_RETRIES", "3")),
            RETRY_DELAY=float(os.getenv("RETRY_DELAY", "2.0")),
            REQUEST_TIMEOUT=int(os.getenv("REQUEST_TIMEOUT", "30")),
            CONNECTION_TIMEOUT=int(os.getenv("CONNECTION_TIMEOUT", "10")),
            REPORTING_CURRENCY=os.getenv("REPORTING_CURRENCY", "USD"),
            STALENESS_HOURS=float(os.getenv("UPDATE_THRESHOLD_HOURS", "12")),
            MARKET_CAP_THRESHOLD_MILLIONS=float(os.getenv("MARKET_CAP_THRESHOLD_MILLIONS", "100")),
            BATCH_SIZE=int(os.getenv("BATCH_SIZE", "20")),
            CONCURRENCY=int(os.getenv("CONCURRENCY", "5")),
            UNIVERSE_EXCHANGE=os.getenv("UNIVERSE_EXCHANGE", "US"),
            UNDERVALUED_MIN_MARGIN=float(os.getenv("UNDERVALUED_MIN_MARGIN", "20")),
            DB_HOST=os.getenv("DB_HOST", "localhost"),
            DB_PORT=int(os.getenv("DB_PORT", "5432")),
            DB_NAME=os.getenv("DB_NAME", "stock_data"),
            DB_USER=os.getenv("DB_USER", "postgres"),
            DB_PASSWORD=os.getenv("DB_PASSWORD", ""),
        )


# Global configuration instance
config = ScreenerConfig.from_env()
