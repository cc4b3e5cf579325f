"""
Graham-style Scoring Engine

This module computes the Graham number (fair-value estimate), the signed
margin of safety and two fixed-scale composite scores:

- Safety score (0-100): current ratio 25, long-term debt to equity 35,
  5-year earnings growth 20, dividend presence 20
- Value score (0-100): P/E 30, P/B 30, margin of safety 40

Every function is pure and total. Missing inputs (None or NaN) earn zero
credit for their sub-score; the composite is never renormalized.
"""

import math
from enum import Enum
from typing import Optional

from value_screener.models import DerivedMetrics, FundamentalSnapshot
from value_screener.utils.logger import get_logger

logger = get_logger(__name__, utility="scoring")

GRAHAM_MULTIPLIER = 22.5

# Safety score thresholds and weights
CURRENT_RATIO_FULL, CURRENT_RATIO_HALF, CURRENT_RATIO_WEIGHT = 2.0, 1.5, 25.0
DEBT_TO_EQUITY_FULL, DEBT_TO_EQUITY_HALF, DEBT_TO_EQUITY_WEIGHT = 0.5, 1.0, 35.0
GROWTH_WEIGHT = 20.0
DIVIDEND_WEIGHT = 20.0

# Value score thresholds and weights
PE_FULL, PE_HALF, PE_WEIGHT = 15.0, 20.0, 30.0
PB_FULL, PB_HALF, PB_WEIGHT = 1.2, 1.5, 30.0
MOS_FULL, MOS_HALF, MOS_WEIGHT = 35.0, 20.0, 40.0


class GrahamVerdict(str, Enum):
    STRONG_BUY = "Strong Buy"
    BUY = "Buy"
    HOLD = "Hold"
    SELL = "Sell"
    STRONG_SELL = "Strong Sell"


def _usable(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _tiered(value: Optional[float], full: float, half: float, weight: float, lower_is_better: bool) -> float:
    """Full weight past ``full``, half weight past ``half``, otherwise zero."""
    if value is None:
        return 0.0
    if lower_is_better:
        if value <= full:
            return weight
        if value <= half:
            return weight / 2
        return 0.0
    if value >= full:
        return weight
    if value >= half:
        return weight / 2
    return 0.0


class ScoringEngine:
    """Deterministic valuation and safety scoring. No I/O."""

    @staticmethod
    def graham_number(eps: Optional[float], book_value_per_share: Optional[float], rate: float = 1.0) -> float:
        """
        sqrt(22.5 * EPS * BVPS) with both inputs converted by ``rate``

        Returns 0 when either converted input is missing or not positive.
        """
        eps, bvps, rate = _usable(eps), _usable(book_value_per_share), _usable(rate)
        if eps is None or bvps is None or rate is None or rate <= 0:
            return 0.0
        eps_converted = eps * rate
        bvps_converted = bvps * rate
        if eps_converted <= 0 or bvps_converted <= 0:
            return 0.0
        return math.sqrt(GRAHAM_MULTIPLIER * eps_converted * bvps_converted)

    @staticmethod
    def margin_of_safety(price: Optional[float], fair_value: Optional[float]) -> float:
        """
        Signed percentage spread (fair_value - price) / fair_value * 100

        Negative means overvalued; 0 when fair value is not positive.
        Callers that want a floored margin should clamp the result themselves.
        """
        price, fair_value = _usable(price), _usable(fair_value)
        if fair_value is None or fair_value <= 0 or price is None:
            return 0.0
        return (fair_value - price) / fair_value * 100

    @staticmethod
    def pe_ratio(price: Optional[float], eps: Optional[float]) -> float:
        """Price / EPS; infinite when EPS is missing or not positive."""
        price, eps = _usable(price), _usable(eps)
        if price is None or eps is None or eps <= 0:
            return math.inf
        return price / eps

    @staticmethod
    def pb_ratio(price: Optional[float], book_value_per_share: Optional[float]) -> float:
        """Price / book value per share; infinite when BVPS is missing or not positive."""
        price, bvps = _usable(price), _usable(book_value_per_share)
        if price is None or bvps is None or bvps <= 0:
            return math.inf
        return price / bvps

    @staticmethod
    def safety_score(
        current_ratio: Optional[float],
        debt_to_equity: Optional[float],
        earnings_growth_5y: Optional[float],
        dividend_yield: Optional[float],
    ) -> float:
        score = _tiered(
            _usable(current_ratio), CURRENT_RATIO_FULL, CURRENT_RATIO_HALF, CURRENT_RATIO_WEIGHT,
            lower_is_better=False,
        )

        score += _tiered(
            _usable(debt_to_equity), DEBT_TO_EQUITY_FULL, DEBT_TO_EQUITY_HALF, DEBT_TO_EQUITY_WEIGHT,
            lower_is_better=True,
        )

        growth = _usable(earnings_growth_5y)
        if growth is not None:
            if growth > 0:
                score += GROWTH_WEIGHT
            elif growth == 0:
                score += GROWTH_WEIGHT / 2

        dividend = _usable(dividend_yield)
        if dividend is not None and dividend > 0:
            score += DIVIDEND_WEIGHT

        return score

    @staticmethod
    def value_score(pe: Optional[float], pb: Optional[float], margin_of_safety: Optional[float]) -> float:
        pe, pb = _usable(pe), _usable(pb)
        score = 0.0
        if pe is not None and pe > 0:
            score += _tiered(pe, PE_FULL, PE_HALF, PE_WEIGHT, lower_is_better=True)
        if pb is not None and pb > 0:
            score += _tiered(pb, PB_FULL, PB_HALF, PB_WEIGHT, lower_is_better=True)
        score += _tiered(_usable(margin_of_safety), MOS_FULL, MOS_HALF, MOS_WEIGHT, lower_is_better=False)
        return score

    @staticmethod
    def verdict(value_score: float, safety_score: float, margin_of_safety: float) -> GrahamVerdict:
        if value_score >= 80 and safety_score >= 70 and margin_of_safety >= 35:
            return GrahamVerdict.STRONG_BUY
        if value_score >= 60 and safety_score >= 50 and margin_of_safety >= 20:
            return GrahamVerdict.BUY
        if value_score >= 40 and safety_score >= 30 and margin_of_safety >= 0:
            return GrahamVerdict.HOLD
        if value_score < 40 or safety_score < 30:
            return GrahamVerdict.SELL
        return GrahamVerdict.STRONG_SELL

    def score(self, price: float, snapshot: FundamentalSnapshot, rate: float = 1.0) -> DerivedMetrics:
        """
        Score one identifier.

        Args:
            price: Price in the reporting currency
            snapshot: Fundamentals in the listing currency
            rate: Listing-to-reporting exchange rate applied to EPS and BVPS
        """
        rate_value = _usable(rate)
        rate_value = rate_value if rate_value is not None and rate_value > 0 else 1.0
        eps = snapshot.eps * rate_value if snapshot.eps is not None else None
        bvps = snapshot.book_value_per_share * rate_value if snapshot.book_value_per_share is not None else None

        fair_value = self.graham_number(snapshot.eps, snapshot.book_value_per_share, rate_value)
        margin = self.margin_of_safety(price, fair_value)
        pe = self.pe_ratio(price, eps)
        pb = self.pb_ratio(price, bvps)

        safety = self.safety_score(
            snapshot.current_ratio,
            snapshot.long_term_debt_to_equity,
            snapshot.earnings_growth_5y,
            snapshot.dividend_yield,
        )
        value = self.value_score(pe, pb, margin)

        return DerivedMetrics(
            graham_number=fair_value,
            margin_of_safety=margin,
            safety_score=safety,
            value_score=value,
            pe_ratio=pe if math.isfinite(pe) else None,
            pb_ratio=pb if math.isfinite(pb) else None,
            verdict=self.verdict(value, safety, margin).value,
        )
