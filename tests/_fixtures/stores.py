"""In-memory stand-ins for the stock repository and the Finnhub client."""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set

from value_screener.exceptions import PersistenceError, ProviderError
from value_screener.models import (
    CompanyProfile,
    ExchangeListing,
    FundamentalSnapshot,
    Quote,
    StockRecord,
    utc_now,
)


class FakeStockRepository:
    """Dict-backed repository with the same selection rules as the SQL one."""

    def __init__(self, universe: Iterable[str] = (), exchange: str = "US"):
        self.exchange = exchange
        self.records: Dict[str, StockRecord] = {}
        self.universe: Dict[str, bool] = {s.upper(): True for s in universe}
        self.universe_exchange: Dict[str, str] = {s: exchange for s in self.universe}
        self.upserts: List[StockRecord] = []
        self.fail_upsert: Set[str] = set()
        self.fail_select: Optional[BaseException] = None
        self.schema_ensured = 0

    def ensure_schema(self) -> None:
        self.schema_ensured += 1

    def list_stale(self, threshold: timedelta) -> List[str]:
        if self.fail_select is not None:
            raise self.fail_select
        cutoff = utc_now() - threshold
        return [
            symbol
            for symbol, active in sorted(self.universe.items())
            if active and self.universe_exchange.get(symbol, self.exchange) == self.exchange
            and (symbol not in self.records or self.records[symbol].last_updated < cutoff)
        ]

    def upsert(self, record: StockRecord) -> None:
        if record.symbol in self.fail_upsert:
            raise PersistenceError(f"Failed to upsert {record.symbol}: disk full", "upsert", record.symbol)
        self.upserts.append(record)
        self.records[record.symbol] = record

    def get(self, symbol: str) -> Optional[StockRecord]:
        return self.records.get(symbol.upper())

    def query_by_min_margin_of_safety(self, threshold: float = 20.0) -> List[StockRecord]:
        found = [
            r for r in self.records.values()
            if r.skip_reason is None and r.margin_of_safety is not None and r.margin_of_safety >= threshold
        ]
        return sorted(found, key=lambda r: r.margin_of_safety, reverse=True)

    def list_records(self) -> List[StockRecord]:
        if self.fail_select is not None:
            raise self.fail_select
        return [self.records[s] for s in sorted(self.records)]

    def latest_update(self) -> Optional[datetime]:
        if not self.records:
            return None
        return max(r.last_updated for r in self.records.values())

    def upsert_universe(self, listings: Iterable[ExchangeListing], exchange: Optional[str] = None) -> int:
        count = 0
        for listing in listings:
            self.universe[listing.symbol] = True
            self.universe_exchange[listing.symbol] = exchange or self.exchange
            count += 1
        return count

    def deactivate_missing(self, symbols: Iterable[str], exchange: Optional[str] = None) -> int:
        exchange = exchange or self.exchange
        keep = {s.upper() for s in symbols}
        affected = 0
        for symbol, active in self.universe.items():
            if active and self.universe_exchange.get(symbol, self.exchange) == exchange and symbol not in keep:
                self.universe[symbol] = False
                affected += 1
        return affected


class FakeFinnhubProvider:
    """Serves canned quote/profile/metric payloads per symbol and records calls."""

    def __init__(self):
        self.quotes: Dict[str, Dict[str, Any]] = {}
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.metrics: Dict[str, Dict[str, Any]] = {}
        self.rates: Dict[str, Any] = {}
        self.errors: Dict[str, BaseException] = {}
        self.listings: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []

    def add_stock(
        self,
        symbol: str,
        price: Optional[float] = 100.0,
        market_cap_millions: Optional[float] = 5_000.0,
        currency: str = "USD",
        eps: Optional[float] = 8.0,
        book_value_per_share: Optional[float] = 40.0,
        current_ratio: Optional[float] = 2.5,
        debt_to_equity: Optional[float] = 0.3,
        growth: Optional[float] = 10.0,
        dividend_yield: Optional[float] = 2.0,
        name: Optional[str] = None,
    ) -> None:
        symbol = symbol.upper()
        self.quotes[symbol] = {"c": price if price is not None else 0, "pc": price}
        self.profiles[symbol] = {
            "ticker": symbol,
            "name": name or f"{symbol} Corp",
            "currency": currency,
            "exchange": "NASDAQ",
            "finnhubIndustry": "Technology",
        }
        self.metrics[symbol] = {
            "metric": {
                "epsBasicExclExtraItemsTTM": eps,
                "bookValuePerShareAnnual": book_value_per_share,
                "currentRatioAnnual": current_ratio,
                "longTermDebt/equityAnnual": debt_to_equity,
                "epsGrowth5Y": growth,
                "dividendYieldIndicatedAnnual": dividend_yield,
                "marketCapitalization": market_cap_millions,
            }
        }

    def _check(self, operation: str, symbol: str) -> None:
        self.calls.append((operation, symbol))
        if symbol in self.errors:
            raise self.errors[symbol]

    async def get_quote(self, symbol: str) -> Quote:
        self._check("getQuote", symbol)
        return Quote.model_validate(self.quotes.get(symbol, {"c": 0}))

    async def get_profile(self, symbol: str) -> CompanyProfile:
        self._check("getProfile", symbol)
        return CompanyProfile.model_validate(self.profiles.get(symbol, {}))

    async def get_fundamentals(self, symbol: str) -> FundamentalSnapshot:
        self._check("getFundamentals", symbol)
        return FundamentalSnapshot.from_metric_payload(self.metrics.get(symbol, {}))

    async def get_exchange_rate(self, from_currency: str, to_currency: str = "USD") -> float:
        self.calls.append(("getExchangeRate", f"{from_currency}{to_currency}"))
        if from_currency == to_currency:
            return 1.0
        rate = self.rates.get(from_currency)
        if not isinstance(rate, (int, float)) or rate <= 0:
            raise ProviderError(
                f"Invalid forex rate received for {from_currency}/{to_currency}: {rate!r}",
                "getExchangeRate",
                response_data={"rate": rate},
                error_category="invalid_rate",
            )
        return float(rate)

    async def list_identifiers(self, exchange: str = "US") -> List[ExchangeListing]:
        self.calls.append(("listIdentifiers", exchange))
        return [ExchangeListing.model_validate(row) for row in self.listings]

    def call_count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)
