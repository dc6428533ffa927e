"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum

from polymarket_forensics.ingestor.models import AggregatedTrade, PricePoint
from polymarket_forensics.profiler.models import AccountHistory, HistoricalState


class SignalReason(Enum):
    """Why a signal produced the score it did."""

    SCORED = "scored"
    BELOW_THRESHOLD = "below_threshold"
    NO_HISTORY = "no_history"
    SKIPPED_BUDGET = "skipped_budget"
    FIRST_TRADE = "first_trade"


class TradeTag(Enum):
    """Post-hoc labels attached to alerting trades."""

    WHALE = "WHALE"
    SNIPER = "SNIPER"
    DUMPING = "DUMPING"
    EARLY_MOVER = "EARLY_MOVER"


@dataclass(frozen=True)
class PriceImpact:
    """Price move around a trade.

    Attributes:
        before: Latest price before the trade.
        after: Earliest price after the trade.
        change_percent: Signed move relative to `before`.
    """

    before: float
    after: float
    change_percent: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class TradeSizeDetails:
    value_usd: float
    size_score: int = 0
    impact_percent: float = 0.0
    impact_score: int = 0
    fill_count: int = 0
    min_absolute_usd: float | None = None
    price_impact: PriceImpact | None = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "value_usd": self.value_usd,
            "size_score": self.size_score,
            "impact_percent": self.impact_percent,
            "impact_score": self.impact_score,
            "fill_count": self.fill_count,
        }
        if self.min_absolute_usd is not None:
            data["min_absolute_usd"] = self.min_absolute_usd
        if self.price_impact is not None:
            data["price_impact"] = self.price_impact.to_dict()
        return data


@dataclass(frozen=True)
class AccountHistoryDetails:
    total_trades: int | None = None
    account_age_days: int | None = None
    dormancy_days: int | None = None
    trade_count_score: int = 0
    age_score: int = 0
    dormancy_score: int = 0
    profit_score: int | None = None
    volume_bonus: int | None = None
    using_historical_state: bool = False
    approximate: bool = False

    def to_dict(self) -> dict[str, object]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class ConvictionDetails:
    trade_value_usd: float
    prior_volume_usd: float | None = None
    concentration_percent: float | None = None
    using_historical_state: bool = False

    def to_dict(self) -> dict[str, object]:
        return {k: v for k, v in asdict(self).items() if v is not None}


SignalDetails = TradeSizeDetails | AccountHistoryDetails | ConvictionDetails


@dataclass(frozen=True)
class SignalResult:
    """Output of one scorer.

    Attributes:
        name: Signal identifier.
        score: Integer in [0, 100].
        weight: Relative weight in the aggregate.
        reason: Tag explaining the score.
        details: Signal-specific breakdown.
    """

    name: str
    score: int
    weight: float
    reason: SignalReason
    details: SignalDetails

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "score": self.score,
            "weight": self.weight,
            "reason": self.reason.value,
            "details": self.details.to_dict(),
        }


@dataclass(frozen=True)
class AggregatedScore:
    total: int
    signals: tuple[SignalResult, ...]
    is_alert: bool

    def signal(self, name: str) -> SignalResult | None:
        return next((s for s in self.signals if s.name == name), None)

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "is_alert": self.is_alert,
            "signals": [s.to_dict() for s in self.signals],
        }


@dataclass(frozen=True)
class ScoringContext:
    """Everything a scorer may look at besides the trade itself.

    Attributes:
        account_history: Live wallet aggregates, if fetched.
        account_lookup_skipped: True when the history lookup was skipped to
            stay within the lookup budget.
        historical_state: Point-in-time state before the trade, if persisted.
        prices: Price series for the trade's outcome token.
    """

    account_history: AccountHistory | None = None
    account_lookup_skipped: bool = False
    historical_state: HistoricalState | None = None
    prices: tuple[PricePoint, ...] = ()


@dataclass(frozen=True)
class ScoredTrade:
    """One row of an analysis report."""

    trade: AggregatedTrade
    score: AggregatedScore
    account_history: AccountHistory | None = None
    price_impact: PriceImpact | None = None
    classifications: tuple[TradeTag, ...] = ()

    @property
    def wallet(self) -> str:
        return self.trade.wallet

    def to_dict(self) -> dict[str, object]:
        """Serialize for the JSONL report."""
        return {
            "trade": self.trade.to_dict(),
            "score": self.score.to_dict(),
            "account_history": self.account_history.to_dict() if self.account_history else None,
            "price_impact": self.price_impact.to_dict() if self.price_impact else None,
            "classifications": [c.value for c in self.classifications],
        }

