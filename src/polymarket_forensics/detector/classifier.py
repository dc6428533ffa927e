"""Threshold labels for scored trades."""

from __future__ import annotations

from datetime import datetime, timedelta

from polymarket_forensics.detector.models import ScoredTrade, TradeTag

DEFAULT_WHALE_USD = 25_000.0
DEFAULT_SNIPER_MIN_SCORE = 80
DEFAULT_SNIPER_MIN_IMPACT_PERCENT = 2.0
DEFAULT_DUMP_MIN_IMPACT_PERCENT = 5.0
DEFAULT_EARLY_WINDOW_HOURS = 48.0


class TradeClassifier:
    """Attach non-exclusive tags to a scored trade.

    - WHALE: value at or above the whale threshold.
    - SNIPER: high score and a meaningful price move on a non-whale trade.
    - DUMPING: a sell followed by a large price drop.
    - EARLY_MOVER: traded within the early window after market creation.
    """

    def __init__(
        self,
        *,
        whale_usd: float = DEFAULT_WHALE_USD,
        sniper_min_score: int = DEFAULT_SNIPER_MIN_SCORE,
        sniper_min_impact_percent: float = DEFAULT_SNIPER_MIN_IMPACT_PERCENT,
        dump_min_impact_percent: float = DEFAULT_DUMP_MIN_IMPACT_PERCENT,
        early_window_hours: float = DEFAULT_EARLY_WINDOW_HOURS,
    ) -> None:
        self._whale_usd = whale_usd
        self._sniper_min_score = sniper_min_score
        self._sniper_min_impact = sniper_min_impact_percent
        self._dump_min_impact = dump_min_impact_percent
        self._early_window = timedelta(hours=early_window_hours)

    def classify(
        self,
        scored: ScoredTrade,
        market_created_at: datetime | None = None,
    ) -> list[TradeTag]:
        trade = scored.trade
        value = trade.total_value_usd
        impact = scored.price_impact.change_percent if scored.price_impact else 0.0

        tags: list[TradeTag] = []
        if value >= self._whale_usd:
            tags.append(TradeTag.WHALE)

        if (
            scored.score.total >= self._sniper_min_score
            and abs(impact) >= self._sniper_min_impact
            and value < self._whale_usd
        ):
            tags.append(TradeTag.SNIPER)

        if trade.side == "SELL" and impact <= -self._dump_min_impact:
            tags.append(TradeTag.DUMPING)

        if market_created_at is not None:
            diff = trade.timestamp - market_created_at
            if timedelta(0) <= diff <= self._early_window:
                tags.append(TradeTag.EARLY_MOVER)

        return tags
