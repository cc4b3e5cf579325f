import pytest

from value_screener.config import ScreenerConfig

from .db import ConnectionFake, PoolFake
from .factories import set_factory_seed
from .stores import FakeFinnhubProvider, FakeStockRepository


# Central deterministic seed fixture for all tests (Faker + Polyfactory + random)
@pytest.fixture(scope="session", autouse=True)
def factory_seed():
    seed = 42
    set_factory_seed(seed)
    return seed


@pytest.fixture
def pool_fake():
    return PoolFake()


@pytest.fixture
def connection_fake():
    return ConnectionFake()


@pytest.fixture
def screener_config():
    """Explicit config so tests never depend on the developer's environment."""
    return ScreenerConfig(
        API_KEY="test-key",
        BASE_URL="https://finnhub.test/api/v1",
        REQUESTS_PER_SECOND=20,
        REQUESTS_PER_MINUTE=50,
        DISABLE_RATE_LIMITING=False,
        MAX_RETRIES=3,
        RETRY_DELAY=2.0,
        REPORTING_CURRENCY="USD",
        STALENESS_HOURS=12,
        MARKET_CAP_THRESHOLD_MILLIONS=100,
        BATCH_SIZE=20,
        CONCURRENCY=5,
        UNIVERSE_EXCHANGE="US",
        UNDERVALUED_MIN_MARGIN=20,
        DB_PASSWORD="test-password",
    )


@pytest.fixture
def fake_repository():
    return FakeStockRepository()


@pytest.fixture
def fake_provider():
    return FakeFinnhubProvider()
