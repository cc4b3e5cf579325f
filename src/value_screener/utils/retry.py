"""
Retry helpers for provider calls.

Bounded attempts with a configurable delay between them. The provider
configuration uses a fixed delay (``backoff_factor=1.0`` and no jitter);
exponential backoff with jitter only needs a different ``RetryConfig``.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Type, TypeVar

import aiohttp

from value_screener.utils.logger import get_logger

logger = get_logger(__name__, utility="finnhub")

T = TypeVar("T")

NETWORK_EXCEPTIONS: tuple[Type[Exception], ...] = (
    aiohttp.ClientConnectionError,
    asyncio.TimeoutError,
    ConnectionError,
    TimeoutError,
)


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 2.0  # seconds
    max_delay: float = 60.0
    backoff_factor: float = 1.0  # 1.0 keeps the delay fixed
    jitter: bool = False
    retryable_exceptions: tuple[Type[Exception], ...] = NETWORK_EXCEPTIONS
    non_retryable_exceptions: tuple[Type[Exception], ...] = ()


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before the next attempt; ``attempt`` is zero based."""
    delay = min(config.base_delay * (config.backoff_factor ** attempt), config.max_delay)

    if config.jitter:
        jitter_range = delay * 0.25
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0.0, delay)


def is_retryable_exception(exception: Exception, config: RetryConfig) -> bool:
    """Check if an exception should trigger a retry."""
    if isinstance(exception, config.non_retryable_exceptions):
        return False

    if isinstance(exception, config.retryable_exceptions):
        return True

    # Provider errors classify themselves
    return getattr(exception, "error_category", None) == "retryable"


async def _execute_with_async_retry(
    func: Callable[..., Awaitable[T]],
    config: RetryConfig,
    *args: Any,
    **kwargs: Any,
) -> T:
    last_exception: Optional[Exception] = None

    for attempt in range(config.max_attempts):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            last_exception = e

            if not is_retryable_exception(e, config):
                logger.debug(f"Non-retryable exception: {type(e).__name__}: {e}")
                raise

            if attempt < config.max_attempts - 1:
                delay = calculate_delay(attempt, config)
                logger.warning(
                    f"Attempt {attempt + 1}/{config.max_attempts} failed "
                    f"({type(e).__name__}). Retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)
            else:
                logger.error(
                    f"All {config.max_attempts} attempts failed. "
                    f"Last error: {type(e).__name__}: {e}"
                )

    raise RetryError(
        f"Async operation failed after {config.max_attempts} attempts",
        last_exception,
        config.max_attempts,
    )


def async_retry(config: Optional[RetryConfig] = None) -> Callable:
    """
    Decorator for coroutine functions with bounded retry.

    Example:
        @async_retry(config=RetryConfig(max_attempts=3, base_delay=2.0))
        async def fetch():
            return await session.get(url)
    """
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await _execute_with_async_retry(func, config, *args, **kwargs)

        return wrapper

    return decorator
