"""
Currency normalization of price and market cap into the reporting currency
"""

from typing import Dict, Optional, Protocol

from value_screener.config import ScreenerConfig, config as default_config
from value_screener.exceptions import NormalizationError, ProviderError
from value_screener.models import NormalizedQuote
from value_screener.utils.logger import get_logger

logger = get_logger(__name__, utility="pipeline")


class ExchangeRateSource(Protocol):
    async def get_exchange_rate(self, from_currency: str, to_currency: str = "USD") -> float:
        ...


class CurrencyNormalizer:
    """
    Converts listing-currency figures to the reporting currency.

    Only price and market cap are converted here. Per-share fundamentals are
    converted at scoring time with the same rate (``NormalizedQuote.rate_used``).
    Rates are cached per normalizer, so one instance per run fetches each
    currency at most once.
    """

    def __init__(self, provider: ExchangeRateSource, cfg: Optional[ScreenerConfig] = None) -> None:
        self.provider = provider
        self.config = cfg or default_config
        self._rates: Dict[str, float] = {}

    async def get_rate(self, listing_currency: str, reporting_currency: str) -> float:
        if listing_currency == reporting_currency:
            return 1.0

        key = f"{listing_currency}{reporting_currency}"
        if key in self._rates:
            return self._rates[key]

        try:
            rate = await self.provider.get_exchange_rate(listing_currency, reporting_currency)
        except ProviderError as e:
            if e.error_category == "invalid_rate":
                raise NormalizationError(
                    listing_currency, (e.response_data or {}).get("rate"), str(e)
                ) from e
            raise

        if rate is None or rate <= 0:
            raise NormalizationError(listing_currency, rate)

        self._rates[key] = rate
        return rate

    async def normalize(
        self,
        raw_price: float,
        raw_market_cap: float,
        listing_currency: Optional[str],
        reporting_currency: Optional[str] = None,
    ) -> NormalizedQuote:
        """
        Convert price and market cap, keeping the originals.

        Args:
            raw_price: Price in the listing currency
            raw_market_cap: Market cap in listing currency units (not millions)
            listing_currency: ISO code; None means the reporting currency
            reporting_currency: Defaults to ``REPORTING_CURRENCY``

        Raises:
            NormalizationError: the fetched rate is missing or non-positive
            ProviderError: the rate could not be fetched
        """
        reporting = (reporting_currency or self.config.REPORTING_CURRENCY).upper()
        listing = (listing_currency or reporting).upper()

        if listing == reporting:
            return NormalizedQuote(
                price=raw_price,
                market_cap=raw_market_cap,
                rate_used=1.0,
                original_price=raw_price,
                original_market_cap=raw_market_cap,
                listing_currency=listing,
                reporting_currency=reporting,
            )

        rate = await self.get_rate(listing, reporting)
        normalized = NormalizedQuote(
            price=round(raw_price * rate, 2),
            market_cap=round(raw_market_cap * rate, 2),
            rate_used=rate,
            original_price=raw_price,
            original_market_cap=raw_market_cap,
            listing_currency=listing,
            reporting_currency=reporting,
        )
        logger.debug(
            f"Converted {listing} -> {reporting} at {rate}: price {raw_price} -> {normalized.price}, "
            f"market cap {raw_market_cap:,.0f} -> {normalized.market_cap:,.0f}"
        )
        return normalized
