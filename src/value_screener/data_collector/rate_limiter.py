"""
Rate limiting for Finnhub API requests

One limiter instance is shared by every concurrent worker of a run. It is
constructed explicitly and handed to the client, never looked up globally.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional, Union

from value_screener.config import ScreenerConfig, config as default_config
from value_screener.utils.logger import get_logger

logger = get_logger(__name__, utility="finnhub")

SECOND_WINDOW = 1.0
MINUTE_WINDOW = 60.0


@dataclass
class RateLimiter:
    """
    Two-window rate limiter (per second and per minute) for async callers

    A call to ``acquire`` never fails: when either ceiling is reached the
    caller sleeps until that window resets. Counter updates happen under an
    ``asyncio.Lock`` so concurrent workers share one budget.

    Attributes:
        requests_per_second: Ceiling for the 1 second window
        requests_per_minute: Ceiling for the 60 second window
        second_count: Requests granted in the current second window
        minute_count: Requests granted in the current minute window
    """

    requests_per_second: int = 20
    requests_per_minute: int = 50
    second_count: int = 0
    minute_count: int = 0
    second_window_start: float = 0.0
    minute_window_start: float = 0.0
    total_requests: int = 0
    total_wait_seconds: float = 0.0
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self):
        if self.requests_per_second <= 0 or self.requests_per_minute <= 0:
            raise ValueError("Rate limiter ceilings must be positive")
        now = time.time()
        self.second_window_start = now
        self.minute_window_start = now

    def _reset_windows_if_needed(self, now: float) -> None:
        if now - self.second_window_start >= SECOND_WINDOW:
            self.second_window_start = now
            self.second_count = 0
        if now - self.minute_window_start >= MINUTE_WINDOW:
            self.minute_window_start = now
            self.minute_count = 0
            logger.debug("Minute rate limit window reset")

    def _required_wait(self, now: float) -> float:
        wait = 0.0
        if self.minute_count >= self.requests_per_minute:
            wait = max(wait, MINUTE_WINDOW - (now - self.minute_window_start))
        if self.second_count >= self.requests_per_second:
            wait = max(wait, SECOND_WINDOW - (now - self.second_window_start))
        return wait

    async def acquire(self, operation: str = "request") -> None:
        """Block until a request slot is available, then take it."""
        async with self._lock:
            while True:
                now = time.time()
                self._reset_windows_if_needed(now)
                wait = self._required_wait(now)
                if wait <= 0:
                    break
                window = "Minute" if self.minute_count >= self.requests_per_minute else "Second"
                logger.info(
                    f"[{operation}] {window} rate limit reached "
                    f"({self.second_count}/{self.requests_per_second}s, "
                    f"{self.minute_count}/{self.requests_per_minute}m). Sleeping for {wait:.2f} seconds"
                )
                self.total_wait_seconds += wait
                await asyncio.sleep(wait)

            self.second_count += 1
            self.minute_count += 1
            self.total_requests += 1

    def get_remaining_requests(self) -> int:
        """Requests that can be granted right now without waiting"""
        now = time.time()
        second_left = (
            self.requests_per_second
            if now - self.second_window_start >= SECOND_WINDOW
            else self.requests_per_second - self.second_count
        )
        minute_left = (
            self.requests_per_minute
            if now - self.minute_window_start >= MINUTE_WINDOW
            else self.requests_per_minute - self.minute_count
        )
        return max(0, min(second_left, minute_left))

    def get_time_until_reset(self) -> float:
        """Seconds until the minute window resets"""
        elapsed = time.time() - self.minute_window_start
        if elapsed >= MINUTE_WINDOW:
            return 0.0
        return MINUTE_WINDOW - elapsed

    def reset(self) -> None:
        """Manually reset both windows"""
        now = time.time()
        self.second_window_start = now
        self.minute_window_start = now
        self.second_count = 0
        self.minute_count = 0
        logger.info("Rate limiter manually reset")

    def __str__(self) -> str:
        return (
            f"RateLimiter(second: {self.second_count}/{self.requests_per_second}, "
            f"minute: {self.minute_count}/{self.requests_per_minute}, "
            f"remaining: {self.get_remaining_requests()}, "
            f"reset_in: {self.get_time_until_reset():.1f}s)"
        )


class NoOpRateLimiter:
    """Rate limiter that never waits; used when rate limiting is disabled."""

    def __init__(self) -> None:
        self.total_requests = 0
        self.total_wait_seconds = 0.0

    async def acquire(self, operation: str = "request") -> None:
        self.total_requests += 1

    def get_remaining_requests(self) -> int:
        return 1_000_000

    def get_time_until_reset(self) -> float:
        return 0.0

    def reset(self) -> None:
        return None


def get_rate_limiter(cfg: Optional[ScreenerConfig] = None) -> Union[RateLimiter, NoOpRateLimiter]:
    """Build the shared limiter for one process or run from configuration."""
    cfg = cfg or default_config
    if cfg.DISABLE_RATE_LIMITING:
        logger.warning("Client-side rate limiting is disabled")
        return NoOpRateLimiter()
    return RateLimiter(
        requests_per_second=cfg.REQUESTS_PER_SECOND,
        requests_per_minute=cfg.REQUESTS_PER_MINUTE,
    )
