"""
Identifier universe loader

Refreshes the ``available_stocks`` table from the Finnhub symbol list for one
exchange. Symbols that disappear from the listing are marked inactive rather
than deleted, so their stored records stay queryable.
"""

from typing import Any, Dict, List, Optional, Protocol

from value_screener.config import ScreenerConfig, config as default_config
from value_screener.models import ExchangeListing
from value_screener.utils.logger import get_logger

logger = get_logger(__name__, utility="finnhub")


class IdentifierSource(Protocol):
    async def list_identifiers(self, exchange: str = "US") -> List[ExchangeListing]: ...


class UniverseStore(Protocol):
    def upsert_universe(self, listings: List[ExchangeListing], exchange: Optional[str] = None) -> int: ...

    def deactivate_missing(self, symbols: List[str], exchange: Optional[str] = None) -> int: ...


class UniverseLoader:
    def __init__(
        self,
        provider: IdentifierSource,
        repository: UniverseStore,
        cfg: Optional[ScreenerConfig] = None,
    ) -> None:
        self.provider = provider
        self.repository = repository
        self.config = cfg or default_config

    async def refresh(self, exchange: Optional[str] = None) -> Dict[str, Any]:
        """
        Load the exchange listing and sync it into the universe table.

        Returns:
            Dict with ``exchange``, ``fetched``, ``upserted`` and ``deactivated`` counts

        Raises:
            ProviderError: the listing could not be fetched
            PersistenceError: the universe could not be written
        """
        exchange = exchange or self.config.UNIVERSE_EXCHANGE
        logger.info(f"Refreshing identifier universe for exchange {exchange}")

        listings = await self.provider.list_identifiers(exchange)
        # Later duplicates win, matching upsert semantics
        unique = list({listing.symbol: listing for listing in listings}.values())

        upserted = self.repository.upsert_universe(unique, exchange)
        deactivated = (
            self.repository.deactivate_missing([listing.symbol for listing in unique], exchange) if unique else 0
        )

        result = {
            "exchange": exchange,
            "fetched": len(listings),
            "upserted": upserted,
            "deactivated": deactivated,
        }
        logger.info(f"Universe refresh complete: {result}")
        return result
