"""
Finnhub data collection: rate limiting, the API client, currency
normalization and the identifier universe loader.
"""

from .currency import CurrencyNormalizer
from .finnhub_client import FinnhubClient
from .rate_limiter import NoOpRateLimiter, RateLimiter, get_rate_limiter
from .universe import UniverseLoader

__all__ = [
    "CurrencyNormalizer",
    "FinnhubClient",
    "NoOpRateLimiter",
    "RateLimiter",
    "UniverseLoader",
    "get_rate_limiter",
]
