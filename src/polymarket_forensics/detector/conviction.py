"""Conviction signal.

Measures how much of a wallet's trading volume a single trade represents.
Putting most of one's activity into one bet is the low-diversification
signature of someone who expects to be right.
"""

from __future__ import annotations

import logging

from polymarket_forensics.detector.models import (
    ConvictionDetails,
    ScoringContext,
    SignalReason,
    SignalResult,
)
from polymarket_forensics.ingestor.models import AggregatedTrade

logger = logging.getLogger(__name__)

SIGNAL_NAME = "conviction"
DEFAULT_WEIGHT = 25.0

FIRST_TRADE_SCORE = 100
NO_HISTORY_SCORE = 80


def score_concentration(concentration_percent: float) -> float:
    """Map trade value as a percent of prior volume onto 0-100."""
    c = concentration_percent
    if c >= 50:
        return 100.0
    if c >= 25:
        return 70 + (c - 25) * 1.2
    if c >= 10:
        return 40 + (c - 10) * 2
    if c >= 5:
        return 20 + (c - 5) * 4
    return c * 4


class ConvictionSignal:
    """Scores a trade by its share of the wallet's prior volume."""

    name = SIGNAL_NAME

    def __init__(self, *, weight: float = DEFAULT_WEIGHT) -> None:
        self.weight = weight

    def calculate(self, trade: AggregatedTrade, context: ScoringContext) -> SignalResult:
        value = trade.total_value_usd
        state = context.historical_state
        history = context.account_history

        if state is not None and state.volume_usd == 0:
            return SignalResult(
                name=self.name,
                score=FIRST_TRADE_SCORE,
                weight=self.weight,
                reason=SignalReason.FIRST_TRADE,
                details=ConvictionDetails(
                    trade_value_usd=value,
                    prior_volume_usd=0.0,
                    using_historical_state=True,
                ),
            )

        prior_volume: float | None = None
        if state is not None:
            prior_volume = state.volume_usd
        elif history is not None:
            prior_volume = history.total_volume_usd

        if prior_volume is None or prior_volume <= 0:
            return SignalResult(
                name=self.name,
                score=NO_HISTORY_SCORE,
                weight=self.weight,
                reason=SignalReason.NO_HISTORY,
                details=ConvictionDetails(trade_value_usd=value),
            )

        concentration = value / prior_volume * 100
        score = min(100, round(score_concentration(concentration)))
        return SignalResult(
            name=self.name,
            score=score,
            weight=self.weight,
            reason=SignalReason.SCORED,
            details=ConvictionDetails(
                trade_value_usd=value,
                prior_volume_usd=prior_volume,
                concentration_percent=round(concentration, 1),
                using_historical_state=state is not None,
            ),
        )
