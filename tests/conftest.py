import os
import time

import pytest

# Keep test runs from writing per-utility log files
os.environ.setdefault("LOG_TO_FILE", "0")

# Load shared fixtures from tests._fixtures so pytest discovers them
pytest_plugins = [
    "tests._fixtures.conftest",
    "tests._fixtures.frozen_time",
]


@pytest.fixture(autouse=True)
def no_sleep(mocker):
    """Prevent actual sleeping in tests to speed up retry/backoff paths."""
    mocker.patch.object(time, "sleep", lambda s: None)


@pytest.fixture(autouse=True)
def patch_global_db_pool(mocker):
    """Patch global pool helpers to use a fake Postgres-like pool.

    Ensures `init_global_pool`, `get_global_pool`, and `close_global_pool` in
    `value_screener.database.connection` operate against a test-controlled
    fake pool so tests never touch a real database connection. The active
    pool is returned for tests that want to inspect executed SQL.
    """
    from tests._fixtures import PoolFake

    pool_ref = {"pool": None}

    def init_global_pool_fake(minconn: int = 1, maxconn: int = 10, cfg=None):
        if pool_ref["pool"] is None:
            pool_ref["pool"] = PoolFake(minconn=minconn, maxconn=maxconn)
        return pool_ref["pool"]

    def get_global_pool_fake():
        return init_global_pool_fake()

    def close_global_pool_fake():
        pool_ref["pool"] = None

    mocker.patch("value_screener.database.connection.init_global_pool", init_global_pool_fake)
    mocker.patch("value_screener.database.connection.get_global_pool", get_global_pool_fake)
    mocker.patch("value_screener.database.connection.close_global_pool", close_global_pool_fake)
    yield get_global_pool_fake


@pytest.fixture(autouse=True)
def block_real_http(mocker):
    """Autouse fixture: prevent any test from performing real network calls"""
    from tests._fixtures import FakeSession

    mocker.patch("aiohttp.ClientSession", lambda *a, **k: FakeSession([]))
    yield
