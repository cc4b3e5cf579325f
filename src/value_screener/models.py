"""
Pydantic data models for Finnhub payloads and persisted stock records

Provider payloads are mapped into explicit models at the client boundary so
that "missing field means None" is decided in one place.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Finnhub /stock/metric keys per snapshot field, first usable value wins
METRIC_KEYS: Dict[str, Tuple[str, ...]] = {
    "eps": ("epsBasicExclExtraItemsTTM", "epsAnnual", "epsTTM"),
    "book_value_per_share": ("bookValuePerShareAnnual", "bookValuePerShareQuarterly"),
    "current_ratio": ("currentRatioAnnual", "currentRatioQuarterly"),
    "long_term_debt_to_equity": (
        "longTermDebt/equityAnnual",
        "longTermDebtToEquityAnnual",
        "longTermDebt/equityQuarterly",
    ),
    "earnings_growth_5y": ("epsGrowth5Y",),
    "dividend_yield": ("dividendYieldIndicatedAnnual", "currentDividendYieldTTM"),
    "market_capitalization": ("marketCapitalization",),
}


class SkipReason(str, Enum):
    """Why an identifier was persisted without scoring"""
    NO_PRICE_DATA = "no_price_data"
    INVALID_MARKET_CAP = "invalid_market_cap"
    MARKET_CAP_TOO_SMALL = "market_cap_too_small"


def _finite_or_none(v: Any) -> Optional[float]:
    """Coerce provider numbers; anything non-numeric or non-finite becomes None"""
    if v is None or isinstance(v, bool):
        return None
    try:
        number = float(v)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Quote(BaseModel):
    """Model for the /quote endpoint"""
    model_config = ConfigDict(populate_by_name=True)

    current_price: Optional[float] = Field(None, alias="c")
    change: Optional[float] = Field(None, alias="d")
    percent_change: Optional[float] = Field(None, alias="dp")
    high: Optional[float] = Field(None, alias="h")
    low: Optional[float] = Field(None, alias="l")
    open: Optional[float] = Field(None, alias="o")
    previous_close: Optional[float] = Field(None, alias="pc")
    timestamp: Optional[int] = Field(None, alias="t")

    @field_validator(
        "current_price", "change", "percent_change", "high", "low", "open", "previous_close",
        mode="before",
    )
    @classmethod
    def parse_number(cls, v):
        return _finite_or_none(v)

    @property
    def has_price(self) -> bool:
        return self.current_price is not None and self.current_price > 0


class CompanyProfile(BaseModel):
    """Model for the /stock/profile2 endpoint"""
    model_config = ConfigDict(populate_by_name=True)

    ticker: Optional[str] = None
    name: Optional[str] = None
    currency: Optional[str] = None
    exchange: Optional[str] = None
    industry: Optional[str] = Field(None, alias="finnhubIndustry")
    country: Optional[str] = None

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_currency(cls, v):
        if isinstance(v, str) and v.strip():
            return v.strip().upper()
        return None


class FundamentalSnapshot(BaseModel):
    """Per-share and balance sheet fundamentals used for scoring.

    Every field is optional. ``market_capitalization`` is expressed in
    millions of the listing currency, as Finnhub reports it.
    """

    eps: Optional[float] = None
    book_value_per_share: Optional[float] = None
    current_ratio: Optional[float] = None
    long_term_debt_to_equity: Optional[float] = None
    earnings_growth_5y: Optional[float] = None
    dividend_yield: Optional[float] = None
    market_capitalization: Optional[float] = None

    @field_validator("*", mode="before")
    @classmethod
    def parse_number(cls, v):
        return _finite_or_none(v)

    @classmethod
    def from_metric_payload(cls, payload: Optional[Dict[str, Any]]) -> "FundamentalSnapshot":
        """Map a /stock/metric response (``{"metric": {...}}``) into a snapshot."""
        metric = (payload or {}).get("metric") or {}
        values: Dict[str, Any] = {}
        for field_name, keys in METRIC_KEYS.items():
            values[field_name] = next(
                (metric[k] for k in keys if _finite_or_none(metric.get(k)) is not None), None
            )
        return cls(**values)

    @property
    def missing_fields(self) -> List[str]:
        return [name for name, value in self.model_dump().items() if value is None]


class ExchangeListing(BaseModel):
    """One row of the /stock/symbol endpoint"""
    model_config = ConfigDict(populate_by_name=True)

    symbol: str
    description: Optional[str] = None
    display_symbol: Optional[str] = Field(None, alias="displaySymbol")
    type: Optional[str] = None
    currency: Optional[str] = None
    mic: Optional[str] = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be empty")
        return v


class NormalizedQuote(BaseModel):
    """Price and market cap converted to the reporting currency"""

    price: float
    market_cap: float
    rate_used: float
    original_price: float
    original_market_cap: float
    listing_currency: str
    reporting_currency: str

    @property
    def is_converted(self) -> bool:
        return self.listing_currency != self.reporting_currency


class DerivedMetrics(BaseModel):
    """Scoring output. Margin of safety is signed, scores are bounded."""

    graham_number: float = Field(ge=0)
    margin_of_safety: float
    safety_score: float = Field(ge=0, le=100)
    value_score: float = Field(ge=0, le=100)
    pe_ratio: Optional[float] = None
    pb_ratio: Optional[float] = None
    verdict: Optional[str] = None


class StockRecord(BaseModel):
    """Persisted per-identifier record, keyed by symbol"""

    symbol: str
    name: Optional[str] = None
    price: float = 0.0
    market_cap: float = 0.0
    currency: str = "USD"
    original_price: Optional[float] = None
    original_market_cap: Optional[float] = None
    forex_rate: float = 1.0
    is_price_usd: bool = True
    industry: Optional[str] = None
    exchange: Optional[str] = None

    # Raw fundamentals, listing currency
    eps: Optional[float] = None
    book_value_per_share: Optional[float] = None
    current_ratio: Optional[float] = None
    long_term_debt_to_equity: Optional[float] = None
    earnings_growth_5y: Optional[float] = None
    dividend_yield: Optional[float] = None

    # Derived metrics, reporting currency
    graham_number: Optional[float] = None
    margin_of_safety: Optional[float] = None
    safety_score: Optional[float] = None
    value_score: Optional[float] = None
    pe_ratio: Optional[float] = None
    pb_ratio: Optional[float] = None
    verdict: Optional[str] = None

    last_updated: datetime = Field(default_factory=utc_now)
    skip_reason: Optional[SkipReason] = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be empty")
        return v

    @model_validator(mode="after")
    def check_scoreable(self) -> "StockRecord":
        if self.skip_reason is None and (self.price <= 0 or self.market_cap <= 0):
            raise ValueError(
                f"{self.symbol}: price and market_cap must be positive when skip_reason is unset"
            )
        return self

    @property
    def is_scoreable(self) -> bool:
        return self.skip_reason is None

    def fundamentals(self) -> FundamentalSnapshot:
        """Stored fundamentals as a snapshot for rescoring"""
        return FundamentalSnapshot(
            eps=self.eps,
            book_value_per_share=self.book_value_per_share,
            current_ratio=self.current_ratio,
            long_term_debt_to_equity=self.long_term_debt_to_equity,
            earnings_growth_5y=self.earnings_growth_5y,
            dividend_yield=self.dividend_yield,
        )

    def with_metrics(self, metrics: DerivedMetrics) -> "StockRecord":
        return self.model_copy(update={
            "graham_number": round(metrics.graham_number, 2),
            "margin_of_safety": round(metrics.margin_of_safety, 2),
            "safety_score": metrics.safety_score,
            "value_score": metrics.value_score,
            "pe_ratio": round(metrics.pe_ratio, 2) if metrics.pe_ratio is not None else None,
            "pb_ratio": round(metrics.pb_ratio, 2) if metrics.pb_ratio is not None else None,
            "verdict": metrics.verdict,
        })

    @classmethod
    def skipped(
        cls,
        symbol: str,
        reason: SkipReason,
        price: float = 0.0,
        market_cap: float = 0.0,
        **extra: Any,
    ) -> "StockRecord":
        """Record that marks a symbol as processed without scoring it"""
        return cls(symbol=symbol, price=price, market_cap=market_cap, skip_reason=reason, **extra)


class ProgressEvent(BaseModel):
    """One entry of the progress feed emitted during a run"""

    current: int
    total: int
    success: int
    errors: int
    skipped: int
    message: str
    completed: Optional[bool] = None

    def to_event(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class RunSummary(BaseModel):
    """Completion summary returned by ingestion and rescoring runs"""

    updated: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0
    skip_reasons: Dict[str, int] = Field(default_factory=dict)
    error_causes: Dict[str, int] = Field(default_factory=dict)
    not_started: int = 0
    cancelled: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    @property
    def processed(self) -> int:
        return self.updated + self.skipped + self.errors

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
