"""
Stock repository: persisted per-symbol records and the identifier universe.

Only SQL and transactions live here. Upserts are keyed by symbol with
last-write-wins semantics, so concurrent writes for different symbols need
no coordination.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

import psycopg

from value_screener.database.connection import execute, fetch_all, fetch_one, run_in_transaction
from value_screener.exceptions import PersistenceError, SelectionError
from value_screener.models import ExchangeListing, StockRecord, utc_now
from value_screener.utils.logger import get_logger

logger = get_logger(__name__, utility="database")

DB_ERRORS = (psycopg.Error, RuntimeError)

STOCKS_DDL = """
    CREATE TABLE IF NOT EXISTS stocks (
        symbol VARCHAR(20) PRIMARY KEY,
        name TEXT NULL,
        price NUMERIC(18, 4) NOT NULL DEFAULT 0,
        market_cap NUMERIC(24, 2) NOT NULL DEFAULT 0,
        currency VARCHAR(3) NOT NULL DEFAULT 'USD',
        original_price NUMERIC(18, 4) NULL,
        original_market_cap NUMERIC(24, 2) NULL,
        forex_rate NUMERIC(20, 10) NOT NULL DEFAULT 1,
        is_price_usd BOOLEAN NOT NULL DEFAULT TRUE,
        industry TEXT NULL,
        exchange TEXT NULL,
        eps NUMERIC(18, 4) NULL,
        book_value_per_share NUMERIC(18, 4) NULL,
        current_ratio NUMERIC(12, 4) NULL,
        long_term_debt_to_equity NUMERIC(12, 4) NULL,
        earnings_growth_5y NUMERIC(12, 4) NULL,
        dividend_yield NUMERIC(12, 4) NULL,
        graham_number NUMERIC(18, 2) NULL,
        margin_of_safety NUMERIC(14, 2) NULL,
        safety_score NUMERIC(5, 2) NULL,
        value_score NUMERIC(5, 2) NULL,
        pe_ratio NUMERIC(18, 2) NULL,
        pb_ratio NUMERIC(18, 2) NULL,
        verdict VARCHAR(16) NULL,
        last_updated TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        skip_reason VARCHAR(32) NULL
            CHECK (skip_reason IN ('no_price_data', 'invalid_market_cap', 'market_cap_too_small')),
        CONSTRAINT stocks_scoreable CHECK (skip_reason IS NOT NULL OR (price > 0 AND market_cap > 0))
    );
    CREATE INDEX IF NOT EXISTS idx_stocks_last_updated ON stocks(last_updated);
    CREATE INDEX IF NOT EXISTS idx_stocks_margin_of_safety
        ON stocks(margin_of_safety DESC) WHERE skip_reason IS NULL;
"""

UNIVERSE_DDL = """
    CREATE TABLE IF NOT EXISTS available_stocks (
        symbol VARCHAR(20) PRIMARY KEY,
        description TEXT NULL,
        exchange VARCHAR(10) NOT NULL,
        type VARCHAR(40) NULL,
        currency VARCHAR(3) NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        last_seen TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    );
    CREATE INDEX IF NOT EXISTS idx_available_stocks_exchange ON available_stocks(exchange, is_active);
"""

STOCK_COLUMNS: Sequence[str] = (
    "symbol", "name", "price", "market_cap", "currency", "original_price", "original_market_cap",
    "forex_rate", "is_price_usd", "industry", "exchange", "eps", "book_value_per_share",
    "current_ratio", "long_term_debt_to_equity", "earnings_growth_5y", "dividend_yield",
    "graham_number", "margin_of_safety", "safety_score", "value_score", "pe_ratio", "pb_ratio",
    "verdict", "last_updated", "skip_reason",
)

UPSERT_STOCK_SQL = (
    f"INSERT INTO stocks ({', '.join(STOCK_COLUMNS)}) "
    f"VALUES ({', '.join(f'%({c})s' for c in STOCK_COLUMNS)}) "
    "ON CONFLICT (symbol) DO UPDATE SET "
    + ", ".join(f"{c} = EXCLUDED.{c}" for c in STOCK_COLUMNS if c != "symbol")
)

SELECT_STOCK_SQL = f"SELECT {', '.join(STOCK_COLUMNS)} FROM stocks"

STALE_SYMBOLS_SQL = """
    SELECT u.symbol
    FROM available_stocks u
    LEFT JOIN stocks s ON s.symbol = u.symbol
    WHERE u.is_active = TRUE
        AND u.exchange = %(exchange)s
        AND (s.last_updated IS NULL OR s.last_updated < %(cutoff)s)
    ORDER BY u.symbol
"""

UPSERT_UNIVERSE_SQL = """
    INSERT INTO available_stocks (symbol, description, exchange, type, currency, is_active, last_seen)
    VALUES (%s, %s, %s, %s, %s, TRUE, %s)
    ON CONFLICT (symbol) DO UPDATE SET
        description = EXCLUDED.description,
        exchange = EXCLUDED.exchange,
        type = EXCLUDED.type,
        currency = EXCLUDED.currency,
        is_active = TRUE,
        last_seen = EXCLUDED.last_seen
"""


class StockRepository(Protocol):
    """Operations the pipelines need from persistent storage"""

    def list_stale(self, threshold: timedelta) -> List[str]: ...

    def upsert(self, record: StockRecord) -> None: ...

    def get(self, symbol: str) -> Optional[StockRecord]: ...

    def query_by_min_margin_of_safety(self, threshold: float) -> List[StockRecord]: ...

    def list_records(self) -> List[StockRecord]: ...

    def latest_update(self) -> Optional[datetime]: ...


def _row_to_record(row: Dict[str, Any]) -> StockRecord:
    return StockRecord.model_validate({k: row[k] for k in STOCK_COLUMNS if k in row})


def _record_params(record: StockRecord) -> Dict[str, Any]:
    params = record.model_dump()
    params["skip_reason"] = record.skip_reason.value if record.skip_reason else None
    return params


class PostgresStockRepository:
    """PostgreSQL implementation of ``StockRepository`` on the global pool."""

    def __init__(self, exchange: str = "US") -> None:
        self.exchange = exchange

    def ensure_schema(self) -> None:
        def _create(conn, cur):
            cur.execute(UNIVERSE_DDL)
            cur.execute(STOCKS_DDL)

        try:
            run_in_transaction(_create)
        except DB_ERRORS as e:
            raise PersistenceError(f"Failed to create schema: {e}", "ensure_schema") from e
        logger.info("Ensured stocks and available_stocks schema")

    def list_stale(self, threshold: timedelta) -> List[str]:
        """Active universe symbols with no record or a record older than ``threshold``."""
        cutoff = utc_now() - threshold
        try:
            rows = fetch_all(STALE_SYMBOLS_SQL, {"exchange": self.exchange, "cutoff": cutoff})
        except DB_ERRORS as e:
            logger.error(f"Failed to select stale symbols: {e}")
            raise SelectionError(f"Cannot select stale symbols: {e}") from e
        symbols = [r["symbol"] for r in (rows or [])]
        logger.info(f"Found {len(symbols)} symbols older than {threshold} on {self.exchange}")
        return symbols

    def upsert(self, record: StockRecord) -> None:
        try:
            execute(UPSERT_STOCK_SQL, _record_params(record))
        except DB_ERRORS as e:
            logger.error(f"Failed to upsert {record.symbol}: {e}")
            raise PersistenceError(f"Failed to upsert {record.symbol}: {e}", "upsert", record.symbol) from e

    def get(self, symbol: str) -> Optional[StockRecord]:
        try:
            row = fetch_one(f"{SELECT_STOCK_SQL} WHERE symbol = %s", (symbol.upper(),))
        except DB_ERRORS as e:
            raise PersistenceError(f"Failed to read {symbol}: {e}", "get", symbol) from e
        return _row_to_record(row) if row else None

    def query_by_min_margin_of_safety(self, threshold: float = 20.0) -> List[StockRecord]:
        """Scored records with margin of safety >= threshold, best first."""
        try:
            rows = fetch_all(
                f"{SELECT_STOCK_SQL} WHERE skip_reason IS NULL AND margin_of_safety >= %s "
                "ORDER BY margin_of_safety DESC",
                (threshold,),
            )
        except DB_ERRORS as e:
            raise SelectionError(f"Cannot query undervalued stocks: {e}") from e
        return [_row_to_record(r) for r in (rows or [])]

    def list_records(self) -> List[StockRecord]:
        try:
            rows = fetch_all(f"{SELECT_STOCK_SQL} ORDER BY symbol")
        except DB_ERRORS as e:
            raise SelectionError(f"Cannot list stored stocks: {e}") from e
        return [_row_to_record(r) for r in (rows or [])]

    def latest_update(self) -> Optional[datetime]:
        try:
            row = fetch_one("SELECT MAX(last_updated) AS last_updated FROM stocks")
        except DB_ERRORS as e:
            raise PersistenceError(f"Failed to read last update: {e}", "latest_update") from e
        return row["last_updated"] if row else None

    def upsert_universe(self, listings: Iterable[ExchangeListing], exchange: Optional[str] = None) -> int:
        """Insert or reactivate listings for ``exchange`` (defaults to this repository's exchange)."""
        exchange = exchange or self.exchange
        seen_at = utc_now()
        rows = [
            (listing.symbol, listing.description, exchange, listing.type, listing.currency, seen_at)
            for listing in listings
        ]
        if not rows:
            return 0

        def _write(conn, cur):
            cur.executemany(UPSERT_UNIVERSE_SQL, rows)
            return len(rows)

        try:
            count = run_in_transaction(_write)
        except DB_ERRORS as e:
            raise PersistenceError(f"Failed to upsert universe: {e}", "upsert_universe") from e
        logger.info(f"Upserted {count} universe symbols for {exchange}")
        return count

    def deactivate_missing(self, symbols: Iterable[str], exchange: Optional[str] = None) -> int:
        """Mark active members of ``exchange`` that are not in ``symbols`` inactive."""
        exchange = exchange or self.exchange
        current = sorted({s.upper() for s in symbols})
        try:
            affected = execute(
                "UPDATE available_stocks SET is_active = FALSE "
                "WHERE exchange = %s AND is_active = TRUE AND NOT (symbol = ANY(%s))",
                (exchange, current),
            )
        except DB_ERRORS as e:
            raise PersistenceError(f"Failed to deactivate symbols: {e}", "deactivate_missing") from e
        if affected:
            logger.info(f"Marked {affected} delisted symbols inactive on {exchange}")
        return affected
