"""Data models for wallet profiling."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

DataSource = Literal["subgraph", "subgraph-estimated", "database", "cache"]


@dataclass(frozen=True)
class AccountHistory:
    """Lifetime aggregates for a wallet, as reported by an upstream provider.

    These are the wallet's *current* totals. Scorers prefer a
    `HistoricalState` when one is available to avoid lookahead.
    """

    wallet: str
    total_trades: int
    first_trade_date: datetime | None
    last_trade_date: datetime | None
    total_volume_usd: float
    creation_date: datetime | None = None
    profit_usd: float | None = None
    data_source: DataSource = "subgraph"

    def to_dict(self) -> dict[str, Any]:
        return {
            "wallet": self.wallet,
            "total_trades": self.total_trades,
            "first_trade_date": self.first_trade_date.isoformat() if self.first_trade_date else None,
            "last_trade_date": self.last_trade_date.isoformat() if self.last_trade_date else None,
            "total_volume_usd": self.total_volume_usd,
            "creation_date": self.creation_date.isoformat() if self.creation_date else None,
            "profit_usd": self.profit_usd,
            "data_source": self.data_source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountHistory:
        def _dt(value: Any) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        profit = data.get("profit_usd")
        return cls(
            wallet=str(data["wallet"]),
            total_trades=int(data["total_trades"]),
            first_trade_date=_dt(data.get("first_trade_date")),
            last_trade_date=_dt(data.get("last_trade_date")),
            total_volume_usd=float(data["total_volume_usd"]),
            creation_date=_dt(data.get("creation_date")),
            profit_usd=float(profit) if profit is not None else None,
            data_source=data.get("data_source", "cache"),
        )


@dataclass(frozen=True)
class HistoricalState:
    """Wallet activity reconstructed strictly before a point in time.

    Attributes:
        trade_count: Distinct transactions before the timestamp.
        volume_usd: USD traded before the timestamp.
        pnl_usd: Trading cash flow (sell proceeds minus buy cost).
        approximate: True when persisted history is not known to be complete
            up to the timestamp. Approximate data is still used for scoring.
        first_trade_at: Earliest persisted fill before the timestamp.
        last_trade_at: Latest persisted fill before the timestamp.
    """

    trade_count: int
    volume_usd: float
    pnl_usd: float
    approximate: bool
    first_trade_at: datetime | None = None
    last_trade_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "trade_count": self.trade_count,
            "volume_usd": self.volume_usd,
            "pnl_usd": self.pnl_usd,
            "approximate": self.approximate,
            "first_trade_at": self.first_trade_at.isoformat() if self.first_trade_at else None,
            "last_trade_at": self.last_trade_at.isoformat() if self.last_trade_at else None,
        }
