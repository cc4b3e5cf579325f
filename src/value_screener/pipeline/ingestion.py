"""
Ingestion orchestrator

Selects stale identifiers, processes them in sequential batches with bounded
concurrency inside each batch, classifies every identifier as updated,
skipped or error, persists the result and reports progress.

Run states: SELECTING -> BATCHING -> (per batch: FETCHING -> SCORING ->
PERSISTING) -> DONE. Failures are per identifier; only selection failures
abort a run.
"""

import asyncio
import inspect
import random
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Union

from value_screener.config import ScreenerConfig, config as default_config
from value_screener.data_collector.currency import CurrencyNormalizer
from value_screener.database.repository import StockRepository
from value_screener.exceptions import SelectionError
from value_screener.models import (
    CompanyProfile,
    FundamentalSnapshot,
    NormalizedQuote,
    ProgressEvent,
    Quote,
    RunSummary,
    SkipReason,
    StockRecord,
    utc_now,
)
from value_screener.pipeline.stats import BatchJobState
from value_screener.scoring.graham import ScoringEngine
from value_screener.utils.logger import get_logger

logger = get_logger(__name__, utility="pipeline")

# Finnhub reports market cap in millions; above $1T is logged as suspicious
MAX_REASONABLE_MARKET_CAP = 1_000_000 * 1_000_000

ProgressSink = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class RunState(str, Enum):
    SELECTING = "selecting"
    BATCHING = "batching"
    FETCHING = "fetching"
    SCORING = "scoring"
    PERSISTING = "persisting"
    DONE = "done"


class StockDataProvider(Protocol):
    async def get_quote(self, symbol: str) -> Quote: ...

    async def get_profile(self, symbol: str) -> CompanyProfile: ...

    async def get_fundamentals(self, symbol: str) -> FundamentalSnapshot: ...

    async def get_exchange_rate(self, from_currency: str, to_currency: str = "USD") -> float: ...


@dataclass
class FetchedIdentifier:
    """Provider data gathered for one symbol during FETCHING"""
    symbol: str
    quote: Quote
    profile: CompanyProfile
    fundamentals: FundamentalSnapshot
    normalized: Optional[NormalizedQuote] = None


async def emit_progress(progress: Optional[ProgressSink], event: ProgressEvent) -> None:
    """Hand an event to the sink; a failing sink never breaks the run."""
    if progress is None:
        return
    try:
        result = progress(event)
        if inspect.isawaitable(result):
            await result
    except Exception as e:  # noqa: BLE001
        logger.warning(f"Progress sink failed: {e}")


class IngestionOrchestrator:
    """Drives provider fetch, currency normalization, scoring and persistence"""

    def __init__(
        self,
        provider: StockDataProvider,
        repository: StockRepository,
        cfg: Optional[ScreenerConfig] = None,
        normalizer: Optional[CurrencyNormalizer] = None,
        engine: Optional[ScoringEngine] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = cfg or default_config
        self.config.validate()
        self.provider = provider
        self.repository = repository
        self.normalizer = normalizer or CurrencyNormalizer(provider, self.config)
        self.engine = engine or ScoringEngine()
        self.rng = rng or random.Random()
        self.state = RunState.DONE

    # Selection

    def select_candidates(self, symbols: Optional[Sequence[str]] = None) -> List[str]:
        """Stale symbols from the repository (or the given list), deduplicated and shuffled."""
        self.state = RunState.SELECTING
        if symbols is None:
            try:
                symbols = self.repository.list_stale(self.config.staleness_threshold)
            except SelectionError:
                raise
            except Exception as e:
                raise SelectionError(f"Cannot select candidates: {e}") from e

        candidates = list(dict.fromkeys(s.strip().upper() for s in symbols if s and s.strip()))
        # Random order avoids hitting the provider with alphabetically adjacent symbols
        self.rng.shuffle(candidates)
        return candidates

    @staticmethod
    def _should_stop(cancel_event: Optional[asyncio.Event], deadline: Optional[datetime]) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return deadline is not None and utc_now() >= deadline

    # Run

    async def run(
        self,
        symbols: Optional[Sequence[str]] = None,
        progress: Optional[ProgressSink] = None,
        cancel_event: Optional[asyncio.Event] = None,
        deadline: Optional[datetime] = None,
    ) -> RunSummary:
        """
        Run one ingestion pass.

        Args:
            symbols: Explicit symbols to process instead of the stale selection
            progress: Callback (sync or async) receiving a ProgressEvent per identifier
            cancel_event: When set, no new identifier is started
            deadline: UTC time after which no new identifier is started

        Returns:
            RunSummary with updated/skipped/errors/total counts

        Raises:
            SelectionError: the candidate set could not be determined
        """
        logger.info("=== Starting stock update run ===")
        candidates = self.select_candidates(symbols)
        stats = BatchJobState(total=len(candidates))

        if not candidates:
            logger.info("No stocks need updating at this time")
            stats.finish()
            self.state = RunState.DONE
            await emit_progress(progress, stats.progress("No stocks need updating", completed=True))
            return stats.summary()

        self.state = RunState.BATCHING
        batch_size = self.config.BATCH_SIZE
        batches = [candidates[i:i + batch_size] for i in range(0, len(candidates), batch_size)]
        semaphore = asyncio.Semaphore(self.config.CONCURRENCY)
        logger.info(
            f"Processing {len(candidates)} stocks in {len(batches)} batches of {batch_size} "
            f"(concurrency {self.config.CONCURRENCY})"
        )

        for index, batch in enumerate(batches, 1):
            if self._should_stop(cancel_event, deadline):
                remaining = sum(len(b) for b in batches[index - 1:])
                stats.mark_cancelled(remaining)
                logger.warning(f"Run stopped before batch {index}/{len(batches)}; {remaining} stocks not started")
                break

            start = (index - 1) * batch_size + 1
            logger.info(
                f"Processing batch {index}/{len(batches)} "
                f"({start}-{start + len(batch) - 1} of {len(candidates)})"
            )
            await self._process_batch(batch, stats, semaphore, progress, cancel_event, deadline)
            logger.info(
                f"Batch {index}/{len(batches)} complete: {stats.updated} updated, "
                f"{stats.skipped} skipped, {stats.errors} errors"
            )

        stats.finish()
        self.state = RunState.DONE
        summary = stats.summary()
        logger.info(
            f"=== Stock update completed === updated={summary.updated} skipped={summary.skipped} "
            f"({summary.skip_reasons}) errors={summary.errors} total={summary.total} "
            f"success rate {stats.success_rate:.1f}% in {summary.duration_seconds:.1f}s"
        )
        if stats.error_messages:
            logger.warning(f"First errors: {stats.error_messages[:10]}")
        message = "Stock update stopped early" if stats.cancelled else "Stock update completed"
        await emit_progress(progress, stats.progress(message, completed=True))
        return summary

    async def _process_batch(
        self,
        batch: List[str],
        stats: BatchJobState,
        semaphore: asyncio.Semaphore,
        progress: Optional[ProgressSink],
        cancel_event: Optional[asyncio.Event],
        deadline: Optional[datetime],
    ) -> None:
        self.state = RunState.FETCHING
        results = await asyncio.gather(
            *(self._fetch_guarded(symbol, semaphore, cancel_event, deadline) for symbol in batch),
            return_exceptions=True,
        )

        fetched: List[FetchedIdentifier] = []
        for symbol, result in zip(batch, results):
            if result is None:
                stats.mark_cancelled(1)
            elif isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                await self._record_error(symbol, result, stats, progress)
            else:
                fetched.append(result)

        self.state = RunState.SCORING
        records: List[StockRecord] = []
        for item in fetched:
            try:
                records.append(self.build_record(item))
            except Exception as e:  # noqa: BLE001
                await self._record_error(item.symbol, e, stats, progress)

        self.state = RunState.PERSISTING
        for record in records:
            try:
                self.repository.upsert(record)
            except Exception as e:  # noqa: BLE001
                await self._record_error(record.symbol, e, stats, progress)
                continue

            if record.skip_reason is None:
                stats.add_updated(record.symbol)
                message = (
                    f"Updated {record.symbol}: ${record.price} "
                    f"(MC: ${record.market_cap / 1_000_000:,.2f}M, MoS: {record.margin_of_safety}%)"
                )
                logger.info(message)
            else:
                stats.add_skipped(record.symbol, record.skip_reason)
                message = f"Skipped {record.symbol}: {record.skip_reason.value}"
                logger.info(message)
            await emit_progress(progress, stats.progress(message))

    async def _record_error(
        self, symbol: str, error: Exception, stats: BatchJobState, progress: Optional[ProgressSink]
    ) -> None:
        stats.add_error(symbol, error)
        message = f"Error processing {symbol}: {error}"
        logger.error(message)
        await emit_progress(progress, stats.progress(message))

    # Per identifier

    async def _fetch_guarded(
        self,
        symbol: str,
        semaphore: asyncio.Semaphore,
        cancel_event: Optional[asyncio.Event],
        deadline: Optional[datetime],
    ) -> Optional[FetchedIdentifier]:
        async with semaphore:
            if self._should_stop(cancel_event, deadline):
                return None
            return await self.fetch_identifier(symbol)

    async def fetch_identifier(self, symbol: str) -> FetchedIdentifier:
        """Fetch quote, profile and fundamentals; normalize currency when scoreable."""
        logger.debug(f"Fetching {symbol}")
        results = await asyncio.gather(
            self.provider.get_quote(symbol),
            self.provider.get_profile(symbol),
            self.provider.get_fundamentals(symbol),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        quote, profile, fundamentals = results

        fetched = FetchedIdentifier(symbol, quote, profile, fundamentals)
        market_cap_millions = fundamentals.market_capitalization
        if quote.has_price and market_cap_millions is not None and market_cap_millions > 0:
            fetched.normalized = await self.normalizer.normalize(
                quote.current_price,
                market_cap_millions * 1_000_000,
                profile.currency,
                self.config.REPORTING_CURRENCY,
            )
        return fetched

    def build_record(self, fetched: FetchedIdentifier) -> StockRecord:
        """Classify a fetched identifier and build the record to persist."""
        symbol = fetched.symbol
        quote, profile, fundamentals = fetched.quote, fetched.profile, fetched.fundamentals
        now = utc_now()
        descriptive: Dict[str, Any] = {
            "name": profile.name,
            "industry": profile.industry,
            "exchange": profile.exchange,
            "last_updated": now,
        }

        if not quote.has_price:
            return StockRecord.skipped(symbol, SkipReason.NO_PRICE_DATA, **descriptive)

        market_cap_millions = fundamentals.market_capitalization
        if market_cap_millions is None or market_cap_millions <= 0 or fetched.normalized is None:
            # No rate was fetched, so the price stays in the listing currency
            reporting = self.config.REPORTING_CURRENCY.upper()
            listing = profile.currency or reporting
            return StockRecord.skipped(
                symbol,
                SkipReason.INVALID_MARKET_CAP,
                price=quote.current_price,
                currency=listing,
                original_price=quote.current_price,
                is_price_usd=listing == reporting,
                **descriptive,
            )

        normalized = fetched.normalized
        if normalized.price <= 0:
            return StockRecord.skipped(symbol, SkipReason.NO_PRICE_DATA, **descriptive)

        currency_fields = {
            "currency": normalized.listing_currency,
            "original_price": normalized.original_price,
            "original_market_cap": normalized.original_market_cap,
            "forex_rate": normalized.rate_used,
            "is_price_usd": not normalized.is_converted,
        }

        if normalized.market_cap < self.config.market_cap_floor:
            logger.info(
                f"Skipping {symbol} - Market cap too small: ${normalized.market_cap / 1_000_000:,.2f}M "
                f"(threshold: ${self.config.MARKET_CAP_THRESHOLD_MILLIONS:,.0f}M)"
            )
            return StockRecord.skipped(
                symbol,
                SkipReason.MARKET_CAP_TOO_SMALL,
                price=normalized.price,
                market_cap=normalized.market_cap,
                **currency_fields,
                **descriptive,
            )

        if normalized.market_cap > MAX_REASONABLE_MARKET_CAP:
            logger.warning(
                f"Warning: {symbol} has unusually large market cap: "
                f"${normalized.market_cap / 1_000_000:,.0f}M"
            )

        metrics = self.engine.score(normalized.price, fundamentals, normalized.rate_used)
        record = StockRecord(
            symbol=symbol,
            price=normalized.price,
            market_cap=normalized.market_cap,
            eps=fundamentals.eps,
            book_value_per_share=fundamentals.book_value_per_share,
            current_ratio=fundamentals.current_ratio,
            long_term_debt_to_equity=fundamentals.long_term_debt_to_equity,
            earnings_growth_5y=fundamentals.earnings_growth_5y,
            dividend_yield=fundamentals.dividend_yield,
            **currency_fields,
            **descriptive,
        )
        return record.with_metrics(metrics)
