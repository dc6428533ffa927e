"""Trade size and price impact signal.

Large trades that move the price are the classic footprint of someone who
knows the outcome. Size contributes up to 50 points on a log scale above
the minimum notional; the price move around the trade contributes up to
another 50.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from datetime import timedelta

from polymarket_forensics.detector.models import (
    PriceImpact,
    ScoringContext,
    SignalReason,
    SignalResult,
    TradeSizeDetails,
)
from polymarket_forensics.ingestor.models import AggregatedTrade, PricePoint

logger = logging.getLogger(__name__)

SIGNAL_NAME = "trade_size"
DEFAULT_WEIGHT = 40.0

DEFAULT_MIN_ABSOLUTE_USD = 5000.0
DEFAULT_MIN_IMPACT_PERCENT = 2.0
DEFAULT_IMPACT_WINDOW_MINUTES = 5

MAX_SIZE_SCORE = 50.0
MAX_IMPACT_SCORE = 50.0


def find_price_impact(
    trade: AggregatedTrade,
    prices: Sequence[PricePoint],
    window: timedelta,
) -> PriceImpact | None:
    """Return the price move across a trade, or None without a usable pair.

    `before` is the latest observation strictly before the trade and
    `after` the earliest strictly after it; both must fall strictly inside
    the window around the trade timestamp.
    """
    if len(prices) < 2:
        return None

    ts = trade.timestamp
    before: PricePoint | None = None
    after: PricePoint | None = None
    for point in prices:
        if ts - window < point.timestamp < ts:
            if before is None or point.timestamp > before.timestamp:
                before = point
        elif ts < point.timestamp < ts + window:
            if after is None or point.timestamp < after.timestamp:
                after = point

    if before is None or after is None or before.price <= 0:
        return None

    change = (after.price - before.price) / before.price * 100
    return PriceImpact(before=before.price, after=after.price, change_percent=change)


class TradeSizeSignal:
    """Scores a trade by its USD size and the price move it caused.

    Example:
        ```python
        signal = TradeSizeSignal(min_absolute_usd=10_000)
        result = signal.calculate(trade, ScoringContext(prices=tuple(prices)))
        ```
    """

    name = SIGNAL_NAME

    def __init__(
        self,
        *,
        weight: float = DEFAULT_WEIGHT,
        min_absolute_usd: float = DEFAULT_MIN_ABSOLUTE_USD,
        min_impact_percent: float = DEFAULT_MIN_IMPACT_PERCENT,
        impact_window_minutes: int = DEFAULT_IMPACT_WINDOW_MINUTES,
    ) -> None:
        """Initialize the signal.

        Args:
            weight: Weight in the aggregate score.
            min_absolute_usd: Trades below this notional score 0.
            min_impact_percent: Price moves below this earn no impact points.
            impact_window_minutes: Half-width of the window searched for prices.
        """
        if min_absolute_usd <= 0:
            raise ValueError("min_absolute_usd must be > 0")
        if min_impact_percent <= 0:
            raise ValueError("min_impact_percent must be > 0")
        self.weight = weight
        self._min_absolute_usd = min_absolute_usd
        self._min_impact_percent = min_impact_percent
        self._window = timedelta(minutes=impact_window_minutes)

    @property
    def impact_window(self) -> timedelta:
        return self._window

    def calculate(self, trade: AggregatedTrade, context: ScoringContext) -> SignalResult:
        value = trade.total_value_usd
        if value < self._min_absolute_usd:
            return SignalResult(
                name=self.name,
                score=0,
                weight=self.weight,
                reason=SignalReason.BELOW_THRESHOLD,
                details=TradeSizeDetails(
                    value_usd=value,
                    fill_count=trade.fill_count,
                    min_absolute_usd=self._min_absolute_usd,
                ),
            )

        size_score = min(MAX_SIZE_SCORE, math.log10(value / self._min_absolute_usd) * 25 + 25)

        price_impact = find_price_impact(trade, context.prices, self._window)
        impact = abs(price_impact.change_percent) if price_impact else 0.0
        impact_score = 0.0
        if impact >= self._min_impact_percent:
            impact_score = min(MAX_IMPACT_SCORE, impact / self._min_impact_percent * 25)

        score = min(100, round(size_score + impact_score))
        logger.debug(
            "Trade size %s: value=%.2f size=%.1f impact=%.2f%% score=%d",
            trade.transaction_hash,
            value,
            size_score,
            impact,
            score,
        )
        return SignalResult(
            name=self.name,
            score=score,
            weight=self.weight,
            reason=SignalReason.SCORED,
            details=TradeSizeDetails(
                value_usd=value,
                size_score=round(size_score),
                impact_percent=impact,
                impact_score=round(impact_score),
                fill_count=trade.fill_count,
                price_impact=price_impact,
            ),
        )
