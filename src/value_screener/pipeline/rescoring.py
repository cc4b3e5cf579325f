"""
Rescoring pipeline

Recomputes derived metrics for every stored record from its stored
fundamentals and stored exchange rate. No provider calls are made, so a
change to the scoring rules can be applied to the whole table offline.
"""

from typing import List, Optional

from value_screener.database.repository import StockRepository
from value_screener.exceptions import SelectionError
from value_screener.models import RunSummary, StockRecord
from value_screener.pipeline.ingestion import ProgressSink, emit_progress
from value_screener.pipeline.stats import BatchJobState
from value_screener.scoring.graham import ScoringEngine
from value_screener.utils.logger import get_logger

logger = get_logger(__name__, utility="pipeline")


class RescoringPipeline:
    def __init__(self, repository: StockRepository, engine: Optional[ScoringEngine] = None) -> None:
        self.repository = repository
        self.engine = engine or ScoringEngine()

    def _load_records(self) -> List[StockRecord]:
        try:
            return self.repository.list_records()
        except SelectionError:
            raise
        except Exception as e:
            raise SelectionError(f"Cannot load stored stocks: {e}") from e

    def rescore(self, record: StockRecord) -> StockRecord:
        """Return ``record`` with metrics recomputed; ``last_updated`` is kept."""
        metrics = self.engine.score(record.price, record.fundamentals(), record.forex_rate)
        return record.with_metrics(metrics)

    async def run(self, progress: Optional[ProgressSink] = None) -> RunSummary:
        """
        Rescore all stored records.

        Skipped records are counted as skipped under their stored reason and
        left untouched. A failing record is counted as an error and the run
        continues.
        """
        logger.info("=== Starting rescoring run ===")
        records = self._load_records()
        stats = BatchJobState(total=len(records))

        for record in records:
            if not record.is_scoreable:
                stats.add_skipped(record.symbol, record.skip_reason)
                await emit_progress(progress, stats.progress(f"Skipped {record.symbol}: {record.skip_reason.value}"))
                continue

            try:
                rescored = self.rescore(record)
                self.repository.upsert(rescored)
            except Exception as e:  # noqa: BLE001
                stats.add_error(record.symbol, e)
                message = f"Error rescoring {record.symbol}: {e}"
                logger.error(message)
            else:
                stats.add_updated(record.symbol)
                message = (
                    f"Rescored {record.symbol}: MoS {record.margin_of_safety} -> {rescored.margin_of_safety}, "
                    f"value {rescored.value_score}, safety {rescored.safety_score}"
                )
                logger.debug(message)
            await emit_progress(progress, stats.progress(message))

        stats.finish()
        summary = stats.summary()
        logger.info(
            f"=== Rescoring completed === updated={summary.updated} skipped={summary.skipped} "
            f"errors={summary.errors} total={summary.total}"
        )
        await emit_progress(progress, stats.progress("Rescoring completed", completed=True))
        return summary
