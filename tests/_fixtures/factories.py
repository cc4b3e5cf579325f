from datetime import timedelta
from typing import Optional

from faker import Faker
from polyfactory.factories.pydantic_factory import ModelFactory

from value_screener.models import FundamentalSnapshot, SkipReason, StockRecord, utc_now

# Central Faker instance used by factories (seed via `set_factory_seed`)
faker = Faker()


def set_factory_seed(seed: int = 42) -> None:
    """Seed Faker, Polyfactory and ``random`` for deterministic test output."""
    import random

    faker.seed_instance(seed)
    ModelFactory.seed_random(seed)
    random.seed(seed)


def _symbol() -> str:
    return faker.unique.lexify("????").upper()


class FundamentalSnapshotFactory(ModelFactory[FundamentalSnapshot]):
    __model__ = FundamentalSnapshot

    @classmethod
    def build(cls, **overrides):
        """Fundamentals of a plausible profitable company."""
        values = {
            "eps": round(faker.pyfloat(min_value=0.5, max_value=20.0, right_digits=2), 2),
            "book_value_per_share": round(faker.pyfloat(min_value=1.0, max_value=80.0, right_digits=2), 2),
            "current_ratio": round(faker.pyfloat(min_value=0.5, max_value=4.0, right_digits=2), 2),
            "long_term_debt_to_equity": round(faker.pyfloat(min_value=0.0, max_value=2.5, right_digits=2), 2),
            "earnings_growth_5y": round(faker.pyfloat(min_value=-20.0, max_value=40.0, right_digits=2), 2),
            "dividend_yield": round(faker.pyfloat(min_value=0.0, max_value=6.0, right_digits=2), 2),
            "market_capitalization": round(faker.pyfloat(min_value=150.0, max_value=500_000.0, right_digits=2), 2),
        }
        values.update(overrides)
        return super().build(**values)


class StockRecordFactory(ModelFactory[StockRecord]):
    __model__ = StockRecord

    @classmethod
    def build(cls, age_hours: Optional[float] = None, **overrides):
        """Scored USD record; ``age_hours`` backdates ``last_updated``."""
        fundamentals = FundamentalSnapshotFactory.build()
        values = {
            "symbol": _symbol(),
            "name": faker.company(),
            "price": round(faker.pyfloat(min_value=5.0, max_value=500.0, right_digits=2), 2),
            "market_cap": fundamentals.market_capitalization * 1_000_000,
            "currency": "USD",
            "original_price": None,
            "original_market_cap": None,
            "forex_rate": 1.0,
            "is_price_usd": True,
            "industry": "Technology",
            "exchange": "NASDAQ",
            "eps": fundamentals.eps,
            "book_value_per_share": fundamentals.book_value_per_share,
            "current_ratio": fundamentals.current_ratio,
            "long_term_debt_to_equity": fundamentals.long_term_debt_to_equity,
            "earnings_growth_5y": fundamentals.earnings_growth_5y,
            "dividend_yield": fundamentals.dividend_yield,
            "graham_number": None,
            "margin_of_safety": None,
            "safety_score": None,
            "value_score": None,
            "pe_ratio": None,
            "pb_ratio": None,
            "verdict": None,
            "last_updated": utc_now() - timedelta(hours=age_hours or 0),
            "skip_reason": None,
        }
        values["original_price"] = values["price"]
        values["original_market_cap"] = values["market_cap"]
        values.update(overrides)
        return super().build(**values)

    @classmethod
    def build_skipped(cls, reason: SkipReason = SkipReason.MARKET_CAP_TOO_SMALL, **overrides):
        return StockRecord.skipped(overrides.pop("symbol", _symbol()), reason, **overrides)
