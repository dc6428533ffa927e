"""Composite suspicion scorer combining all trade signals.

This module provides the SignalAggregator, which folds per-signal scores
into one weighted 0-100 total, and the TradeScorer, which runs every
signal against a trade and aggregates the results.

Scoring Formula:
    total = round(sum(signal.score * signal.weight) / sum(signal.weight))
    is_alert = total >= alert_threshold
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from polymarket_forensics.detector.account_history import AccountHistorySignal
from polymarket_forensics.detector.conviction import ConvictionSignal
from polymarket_forensics.detector.models import (
    AggregatedScore,
    ScoringContext,
    SignalResult,
)
from polymarket_forensics.detector.trade_size import TradeSizeSignal
from polymarket_forensics.ingestor.models import AggregatedTrade

logger = logging.getLogger(__name__)

DEFAULT_ALERT_THRESHOLD = 70


class Signal(Protocol):
    name: str
    weight: float

    def calculate(self, trade: AggregatedTrade, context: ScoringContext) -> SignalResult: ...


class SignalAggregator:
    """Weighted mean of signal scores with an alert threshold."""

    def __init__(self, *, alert_threshold: int = DEFAULT_ALERT_THRESHOLD) -> None:
        if not 0 <= alert_threshold <= 100:
            raise ValueError("alert_threshold must be within [0, 100]")
        self._alert_threshold = alert_threshold

    @property
    def alert_threshold(self) -> int:
        return self._alert_threshold

    def aggregate(self, signals: Sequence[SignalResult]) -> AggregatedScore:
        """Combine signal results.

        Args:
            signals: Results from each scorer.

        Returns:
            AggregatedScore with total in [0, 100]; 0 when no weight is present.
        """
        total_weight = sum(s.weight for s in signals)
        if total_weight <= 0:
            total = 0
        else:
            weighted_sum = sum(s.score * s.weight for s in signals)
            total = round(weighted_sum / total_weight)
        total = max(0, min(100, total))
        return AggregatedScore(
            total=total,
            signals=tuple(signals),
            is_alert=total >= self._alert_threshold,
        )


class TradeScorer:
    """Runs the signal set against trades.

    Example:
        ```python
        scorer = TradeScorer()
        score = scorer.score(trade, ScoringContext(account_history=history))
        if score.is_alert:
            ...
        ```
    """

    def __init__(
        self,
        signals: Sequence[Signal] | None = None,
        *,
        aggregator: SignalAggregator | None = None,
    ) -> None:
        self._signals: tuple[Signal, ...] = tuple(signals) if signals is not None else (
            TradeSizeSignal(),
            AccountHistorySignal(),
            ConvictionSignal(),
        )
        self._aggregator = aggregator or SignalAggregator()

    @property
    def signals(self) -> tuple[Signal, ...]:
        return self._signals

    @property
    def alert_threshold(self) -> int:
        return self._aggregator.alert_threshold

    def score(self, trade: AggregatedTrade, context: ScoringContext) -> AggregatedScore:
        results = [signal.calculate(trade, context) for signal in self._signals]
        aggregated = self._aggregator.aggregate(results)
        logger.debug(
            "Scored %s for %s: total=%d alert=%s (%s)",
            trade.transaction_hash,
            trade.wallet,
            aggregated.total,
            aggregated.is_alert,
            ", ".join(f"{r.name}={r.score}" for r in results),
        )
        return aggregated

    def get_weights(self) -> dict[str, float]:
        return {s.name: s.weight for s in self._signals}
