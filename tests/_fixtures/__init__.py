"""Fixtures package for tests.

Re-export the canonical fakes and factories for convenient imports from
``tests._fixtures``.
"""

from .db import ConnectionFake, CursorFake, PoolFake, patch_global_pool
from .factories import FundamentalSnapshotFactory, StockRecordFactory, faker
from .frozen_time import FrozenClock, freeze_time
from .remote_api_responses import FakeResponse, FakeSession, canned_response
from .stores import FakeFinnhubProvider, FakeStockRepository

__all__ = [
    "ConnectionFake",
    "CursorFake",
    "FakeFinnhubProvider",
    "FakeResponse",
    "FakeSession",
    "FakeStockRepository",
    "FrozenClock",
    "FundamentalSnapshotFactory",
    "PoolFake",
    "StockRecordFactory",
    "canned_response",
    "faker",
    "freeze_time",
    "patch_global_pool",
]
