#!/usr/bin/env python3
"""
Value Screener Runner

Command line entry point for the ingestion, rescoring and universe jobs.

Usage:
    python -m value_screener.pipeline.runner ingest [--symbols AAPL MSFT] [--max-seconds 3600]
    python -m value_screener.pipeline.runner rescore
    python -m value_screener.pipeline.runner load-universe [--exchange US]
    python -m value_screener.pipeline.runner undervalued [--min-margin 20]
    python -m value_screener.pipeline.runner last-updated
"""

import argparse
import asyncio
import json
import sys
import traceback
from datetime import timedelta
from typing import List, Optional

from value_screener.config import ScreenerConfig, config as default_config
from value_screener.data_collector import FinnhubClient, UniverseLoader, get_rate_limiter
from value_screener.database import PostgresStockRepository, close_global_pool
from value_screener.exceptions import ValueScreenerError
from value_screener.models import ProgressEvent, utc_now
from value_screener.pipeline.ingestion import IngestionOrchestrator
from value_screener.pipeline.rescoring import RescoringPipeline
from value_screener.utils.logger import get_logger, shutdown_logging

logger = get_logger(__name__, utility="pipeline")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def log_progress(event: ProgressEvent) -> None:
    logger.info(json.dumps(event.to_event()))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="value-screener",
        description="Finnhub ingestion and Graham value scoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
            Examples:
            # Update every stale symbol of the configured exchange
            python -m value_screener.pipeline.runner ingest

            # Update selected symbols, stop starting new ones after ten minutes
            python -m value_screener.pipeline.runner ingest --symbols AAPL MSFT --max-seconds 600

            # List stocks with at least 30% margin of safety
            python -m value_screener.pipeline.runner undervalued --min-margin 30
    """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Fetch, score and store stale symbols")
    ingest.add_argument("--symbols", nargs="+", help="Process these symbols instead of the stale selection")
    ingest.add_argument(
        "--max-seconds", type=float, default=None,
        help="Stop starting new symbols after this many seconds",
    )

    subparsers.add_parser("rescore", help="Recompute metrics from stored fundamentals")

    universe = subparsers.add_parser("load-universe", help="Refresh the symbol universe from Finnhub")
    universe.add_argument("--exchange", default=None, help="Exchange code (default: UNIVERSE_EXCHANGE)")

    undervalued = subparsers.add_parser("undervalued", help="List stocks above a margin of safety")
    undervalued.add_argument(
        "--min-margin", type=float, default=None,
        help="Minimum margin of safety in percent (default: UNDERVALUED_MIN_MARGIN)",
    )

    subparsers.add_parser("last-updated", help="Show the most recent update time")
    return parser


def _repository(cfg: ScreenerConfig) -> PostgresStockRepository:
    repository = PostgresStockRepository(exchange=cfg.UNIVERSE_EXCHANGE)
    repository.ensure_schema()
    return repository


async def run_command(args: argparse.Namespace, cfg: Optional[ScreenerConfig] = None) -> int:
    cfg = cfg or default_config
    cfg.validate()
    repository = _repository(cfg)

    if args.command == "ingest":
        deadline = utc_now() + timedelta(seconds=args.max_seconds) if args.max_seconds else None
        async with FinnhubClient(rate_limiter=get_rate_limiter(cfg), cfg=cfg) as client:
            orchestrator = IngestionOrchestrator(client, repository, cfg)
            summary = await orchestrator.run(symbols=args.symbols, progress=log_progress, deadline=deadline)
        print(json.dumps(summary.to_dict(), indent=2))
        return EXIT_OK

    if args.command == "rescore":
        summary = await RescoringPipeline(repository).run(progress=log_progress)
        print(json.dumps(summary.to_dict(), indent=2))
        return EXIT_OK

    if args.command == "load-universe":
        async with FinnhubClient(rate_limiter=get_rate_limiter(cfg), cfg=cfg) as client:
            result = await UniverseLoader(client, repository, cfg).refresh(args.exchange)
        print(json.dumps(result, indent=2))
        return EXIT_OK

    if args.command == "undervalued":
        threshold = cfg.UNDERVALUED_MIN_MARGIN if args.min_margin is None else args.min_margin
        records = repository.query_by_min_margin_of_safety(threshold)
        print(f"{len(records)} stocks with margin of safety >= {threshold}%")
        for record in records:
            print(
                f"  {record.symbol:<8} ${record.price:>10,.2f}  Graham ${record.graham_number or 0:>10,.2f}  "
                f"MoS {record.margin_of_safety:>7.2f}%  value {record.value_score:>5.1f}  "
                f"safety {record.safety_score:>5.1f}  {record.verdict or '-'}"
            )
        return EXIT_OK

    if args.command == "last-updated":
        latest = repository.latest_update()
        print(latest.isoformat() if latest else "never")
        return EXIT_OK

    raise ValueError(f"Unknown command: {args.command}")


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    logger.info(f"🚀 Value screener starting: {args.command}")
    try:
        return await run_command(args)
    except (ValueScreenerError, ValueError) as e:
        logger.error(f"❌ {args.command} failed: {e}")
        return EXIT_FAILED
    except Exception as e:
        logger.error(f"❌ Unexpected error: {e}")
        logger.error(traceback.format_exc())
        return EXIT_FAILED
    finally:
        close_global_pool()


def cli(argv: Optional[List[str]] = None) -> int:
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        logger.info("🛑 Run interrupted by user")
        return EXIT_INTERRUPTED
    finally:
        shutdown_logging()


if __name__ == "__main__":
    sys.exit(cli())
