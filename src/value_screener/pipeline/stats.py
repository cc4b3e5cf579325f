"""
Statistics tracking for ingestion and rescoring runs
"""

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from value_screener.models import ProgressEvent, RunSummary, SkipReason


class BatchJobState:
    """Counters for one run. Owned by the orchestrator; only ever increases."""

    def __init__(self, total: int = 0):
        self.start_time = datetime.now(timezone.utc)
        self.end_time: Optional[datetime] = None
        self.total = total
        self.processed = 0
        self.updated = 0
        self.skipped = 0
        self.errors = 0
        self.not_started = 0
        self.cancelled = False
        self.skip_reasons: Counter = Counter({reason.value: 0 for reason in SkipReason})
        self.error_causes: Counter = Counter()
        self.error_messages: List[str] = []

    def add_updated(self, symbol: str) -> None:
        self.processed += 1
        self.updated += 1

    def add_skipped(self, symbol: str, reason: SkipReason) -> None:
        self.processed += 1
        self.skipped += 1
        self.skip_reasons[reason.value] += 1

    def add_error(self, symbol: str, error: BaseException) -> None:
        self.processed += 1
        self.errors += 1
        self.error_causes[type(error).__name__] += 1
        self.error_messages.append(f"{symbol}: {error}")

    def mark_cancelled(self, remaining: int) -> None:
        self.cancelled = True
        self.not_started += remaining

    def finish(self) -> None:
        self.end_time = datetime.now(timezone.utc)

    @property
    def duration(self) -> timedelta:
        end = self.end_time or datetime.now(timezone.utc)
        return end - self.start_time

    @property
    def success_rate(self) -> float:
        if self.processed == 0:
            return 0.0
        return (self.updated / self.processed) * 100

    def progress(self, message: str, completed: Optional[bool] = None) -> ProgressEvent:
        return ProgressEvent(
            current=self.processed,
            total=self.total,
            success=self.updated,
            errors=self.errors,
            skipped=self.skipped,
            message=message,
            completed=completed,
        )

    def summary(self) -> RunSummary:
        return RunSummary(
            updated=self.updated,
            skipped=self.skipped,
            errors=self.errors,
            total=self.total,
            skip_reasons=dict(self.skip_reasons),
            error_causes=dict(self.error_causes),
            not_started=self.not_started,
            cancelled=self.cancelled,
            started_at=self.start_time,
            finished_at=self.end_time,
            duration_seconds=self.duration.total_seconds(),
        )
