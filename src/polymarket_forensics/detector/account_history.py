"""Account history signal.

Fresh, barely used or long-dormant wallets that suddenly place a large bet
are suspicious, as are young wallets with an unusually high hit rate. The
score is the sum of up to four sub-scores computed from the wallet's state
as of the trade, falling back to live account aggregates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from polymarket_forensics.detector.models import (
    AccountHistoryDetails,
    ScoringContext,
    SignalReason,
    SignalResult,
)
from polymarket_forensics.ingestor.models import AggregatedTrade

logger = logging.getLogger(__name__)

SIGNAL_NAME = "account_history"
DEFAULT_WEIGHT = 35.0

DEFAULT_MAX_LIFETIME_TRADES = 10
DEFAULT_MAX_ACCOUNT_AGE_DAYS = 30
DEFAULT_MIN_DORMANCY_DAYS = 60

NO_HISTORY_SCORE = 100
SKIPPED_BUDGET_SCORE = 50

# Sub-score maxima
WITH_PROFIT_MAX = 25.0
TRADE_COUNT_MAX = 33.0
AGE_MAX = 33.0
DORMANCY_MAX = 34.0

PROFIT_MAX_AGE_DAYS = 90
PROFIT_BANDS = ((0.50, 1.0), (0.30, 0.8), (0.20, 0.6), (0.10, 0.4))
LARGE_PROFIT_USD = 10_000.0
LARGE_PROFIT_FACTOR = 0.2

VOLUME_BONUS_MAX = 25.0
VOLUME_BONUS_MAX_AGE_DAYS = 30
VOLUME_BONUS_MIN_USD = 10_000.0
VOLUME_BONUS_FULL_USD = 50_000.0
VOLUME_BONUS_SCALE = 0.75

SECONDS_PER_DAY = 86_400


def _days_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // SECONDS_PER_DAY)


@dataclass(frozen=True)
class _Inputs:
    trade_count: int
    first_trade_at: datetime | None
    age_reference: datetime | None
    last_trade_before: datetime | None
    volume_usd: float
    profit_usd: float | None
    using_historical_state: bool
    approximate: bool


def score_trade_count(count: int, max_lifetime_trades: int, max_score: float) -> float:
    """1 trade scores max; up to half the limit 90%..70%; past that 70% decays to 0 at 5x the limit."""
    edge = max(2, max_lifetime_trades // 2)
    zero_at = max_lifetime_trades * 5
    if count <= 1:
        return max_score
    if count <= edge:
        fraction = (count - 2) / (edge - 2) if edge > 2 else 0.0
        return max_score * (0.9 - 0.2 * fraction)
    if count >= zero_at:
        return 0.0
    decay_from = edge + 1
    if count <= decay_from:
        return max_score * 0.7
    return max_score * 0.7 * (1 - (count - decay_from) / (zero_at - decay_from))


def score_account_age(days: int, max_account_age_days: int, max_score: float) -> float:
    if days <= max_account_age_days:
        return max_score
    if days >= max_account_age_days * 12:
        return 0.0
    return max_score * (1 - (days - max_account_age_days) / (max_account_age_days * 11))


def score_dormancy(days: int, min_dormancy_days: int, max_score: float) -> float:
    if days < min_dormancy_days:
        return 0.0
    return min(max_score, (days - min_dormancy_days) / min_dormancy_days * max_score)


def score_profit(profit_usd: float, volume_usd: float, age_days: int, max_score: float) -> float:
    """Positive profit on a young account, banded by profit as a share of volume."""
    if profit_usd <= 0 or age_days > PROFIT_MAX_AGE_DAYS:
        return 0.0
    rate = profit_usd / volume_usd if volume_usd > 0 else 0.0
    for floor, factor in PROFIT_BANDS:
        if rate > floor:
            return max_score * factor
    if profit_usd > LARGE_PROFIT_USD:
        return max_score * LARGE_PROFIT_FACTOR
    return 0.0


def score_volume_bonus(volume_usd: float) -> float:
    return VOLUME_BONUS_MAX * min(1.0, volume_usd / VOLUME_BONUS_FULL_USD)


class AccountHistorySignal:
    """Scores how unusual the trading wallet's history is.

    Example:
        ```python
        signal = AccountHistorySignal()
        result = signal.calculate(trade, ScoringContext(account_history=history))
        ```
    """

    name = SIGNAL_NAME

    def __init__(
        self,
        *,
        weight: float = DEFAULT_WEIGHT,
        max_lifetime_trades: int = DEFAULT_MAX_LIFETIME_TRADES,
        max_account_age_days: int = DEFAULT_MAX_ACCOUNT_AGE_DAYS,
        min_dormancy_days: int = DEFAULT_MIN_DORMANCY_DAYS,
    ) -> None:
        if max_lifetime_trades < 1 or max_account_age_days < 1 or min_dormancy_days < 1:
            raise ValueError("account history thresholds must be >= 1")
        self.weight = weight
        self._max_lifetime_trades = max_lifetime_trades
        self._max_account_age_days = max_account_age_days
        self._min_dormancy_days = min_dormancy_days

    def calculate(self, trade: AggregatedTrade, context: ScoringContext) -> SignalResult:
        if context.account_lookup_skipped:
            return self._fixed(SKIPPED_BUDGET_SCORE, SignalReason.SKIPPED_BUDGET)

        # A wallet the provider reports as never having traded outranks any cached state.
        history = context.account_history
        if history is not None and history.first_trade_date is None:
            return self._fixed(NO_HISTORY_SCORE, SignalReason.NO_HISTORY)

        inputs = self._resolve_inputs(trade, context)
        if inputs is None or inputs.first_trade_at is None:
            return self._fixed(NO_HISTORY_SCORE, SignalReason.NO_HISTORY)

        age_reference = inputs.age_reference or inputs.first_trade_at
        age_days = max(0, _days_between(age_reference, trade.timestamp))
        dormancy_days = 0
        if inputs.last_trade_before is not None:
            dormancy_days = max(0, _days_between(inputs.last_trade_before, trade.timestamp))

        profit_score: float | None = None
        volume_bonus: float | None = None
        if inputs.profit_usd is not None:
            count_max = age_max = dormancy_max = WITH_PROFIT_MAX
            profit_score = score_profit(inputs.profit_usd, inputs.volume_usd, age_days, WITH_PROFIT_MAX)
        else:
            count_max, age_max, dormancy_max = TRADE_COUNT_MAX, AGE_MAX, DORMANCY_MAX
            if age_days < VOLUME_BONUS_MAX_AGE_DAYS and inputs.volume_usd > VOLUME_BONUS_MIN_USD:
                volume_bonus = score_volume_bonus(inputs.volume_usd)
                count_max *= VOLUME_BONUS_SCALE
                age_max *= VOLUME_BONUS_SCALE
                dormancy_max *= VOLUME_BONUS_SCALE

        trade_count_score = score_trade_count(inputs.trade_count, self._max_lifetime_trades, count_max)
        age_score = score_account_age(age_days, self._max_account_age_days, age_max)
        dormancy_score = score_dormancy(dormancy_days, self._min_dormancy_days, dormancy_max)

        total = trade_count_score + age_score + dormancy_score + (profit_score or 0.0) + (volume_bonus or 0.0)
        score = min(100, round(total))

        return SignalResult(
            name=self.name,
            score=score,
            weight=self.weight,
            reason=SignalReason.SCORED,
            details=AccountHistoryDetails(
                total_trades=inputs.trade_count,
                account_age_days=age_days,
                dormancy_days=dormancy_days,
                trade_count_score=round(trade_count_score),
                age_score=round(age_score),
                dormancy_score=round(dormancy_score),
                profit_score=round(profit_score) if profit_score is not None else None,
                volume_bonus=round(volume_bonus) if volume_bonus is not None else None,
                using_historical_state=inputs.using_historical_state,
                approximate=inputs.approximate,
            ),
        )

    def _fixed(self, score: int, reason: SignalReason) -> SignalResult:
        return SignalResult(
            name=self.name,
            score=score,
            weight=self.weight,
            reason=reason,
            details=AccountHistoryDetails(),
        )

    @staticmethod
    def _resolve_inputs(trade: AggregatedTrade, context: ScoringContext) -> _Inputs | None:
        history = context.account_history
        state = context.historical_state

        if state is not None:
            first_trade_at = state.first_trade_at
            if first_trade_at is None and history is not None:
                first_trade_at = history.first_trade_date
            return _Inputs(
                trade_count=state.trade_count + 1,
                first_trade_at=first_trade_at,
                age_reference=state.first_trade_at
                or (history.creation_date if history else None)
                or first_trade_at,
                last_trade_before=state.last_trade_at,
                volume_usd=state.volume_usd,
                profit_usd=state.pnl_usd,
                using_historical_state=True,
                approximate=state.approximate,
            )

        if history is None:
            return None

        last_before = history.last_trade_date
        if last_before is not None and last_before >= trade.timestamp:
            # Live aggregates only know the latest trade, which may be this one.
            last_before = None
        return _Inputs(
            trade_count=history.total_trades,
            first_trade_at=history.first_trade_date,
            age_reference=history.creation_date or history.first_trade_date,
            last_trade_before=last_before,
            volume_usd=history.total_volume_usd,
            profit_usd=history.profit_usd,
            using_historical_state=False,
            approximate=False,
        )
