import asyncio
from contextlib import contextmanager

import pytest

_real_async_sleep = asyncio.sleep


class FrozenClock:
    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self.sleeps = []

    def time(self) -> float:
        return self._now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(float(seconds))
        self._now += float(seconds)

    async def async_sleep(self, seconds: float, result=None):
        self.sleep(seconds)
        # yield to the loop so other tasks still interleave
        await _real_async_sleep(0)
        return result


@pytest.fixture
def frozen_time(mocker):
    """Freeze ``time.time`` and make ``time.sleep``/``asyncio.sleep`` advance the clock.

    Usage in tests:
        def test_x(frozen_time):
            clock = frozen_time(start=0.0)
    """

    def _freeze(start: float = 0.0):
        clock = FrozenClock(start=start)
        mocker.patch("time.time", clock.time)
        mocker.patch("time.sleep", clock.sleep)
        mocker.patch("asyncio.sleep", clock.async_sleep)
        return clock

    return _freeze


@contextmanager
def freeze_time(mocker, start: float = 0.0):
    clock = FrozenClock(start=start)
    patches = [
        mocker.patch("time.time", clock.time),
        mocker.patch("time.sleep", clock.sleep),
        mocker.patch("asyncio.sleep", clock.async_sleep),
    ]
    try:
        yield clock
    finally:
        for p in patches:
            mocker.stop(p)
