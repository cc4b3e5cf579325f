import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from value_screener.exceptions import ProviderError
from value_screener.utils.retry import (
    RetryConfig,
    RetryError,
    async_retry,
    calculate_delay,
    is_retryable_exception,
)


def _run(coro):
    return asyncio.run(coro)


@pytest.mark.unit
def test_fixed_delay_does_not_grow():
    config = RetryConfig(base_delay=2.0, backoff_factor=1.0, jitter=False)
    assert [calculate_delay(a, config) for a in range(3)] == [2.0, 2.0, 2.0]


@pytest.mark.unit
def test_exponential_delay_is_capped():
    config = RetryConfig(base_delay=1.0, backoff_factor=2.0, max_delay=5.0, jitter=False)
    assert [calculate_delay(a, config) for a in range(4)] == [1.0, 2.0, 4.0, 5.0]


@pytest.mark.unit
def test_retryable_classification():
    config = RetryConfig()
    assert is_retryable_exception(ConnectionError("reset"), config)
    assert is_retryable_exception(ProviderError("Rate limit exceeded", "getQuote", 429), config)
    assert not is_retryable_exception(ProviderError("HTTP 404", "getQuote", 404), config)
    assert not is_retryable_exception(ValueError("bad"), config)


@pytest.mark.unit
def test_async_retry_succeeds_after_transient_failures():
    calls = {"n": 0}

    @async_retry(RetryConfig(max_attempts=3, base_delay=2.0))
    async def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise ConnectionError("reset")
        return "ok"

    with patch("asyncio.sleep", new=AsyncMock(return_value=None)) as sleep:
        assert _run(flaky()) == "ok"

    assert calls["n"] == 3
    assert sleep.await_count == 2


@pytest.mark.unit
def test_async_retry_exhaustion_keeps_last_exception():
    @async_retry(RetryConfig(max_attempts=2, base_delay=0.0))
    async def always_down():
        raise TimeoutError("slow")

    with patch("asyncio.sleep", new=AsyncMock(return_value=None)):
        with pytest.raises(RetryError) as exc:
            _run(always_down())

    assert exc.value.attempts == 2
    assert isinstance(exc.value.last_exception, TimeoutError)


@pytest.mark.unit
def test_non_retryable_error_raises_immediately():
    calls = {"n": 0}

    @async_retry(RetryConfig(max_attempts=3))
    async def broken():
        calls["n"] += 1
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        _run(broken())
    assert calls["n"] == 1
