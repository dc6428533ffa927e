"""Data models for the ingestor module."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Literal

Outcome = Literal["YES", "NO"]
TradeSide = Literal["BUY", "SELL"]
FillSide = Literal["Buy", "Sell"]
Role = Literal["maker", "taker"]

# On-chain collateral amounts carry 6 decimals.
USD_SCALE = 1_000_000


def _parse_datetime(raw: Any) -> datetime | None:
    """Parse an ISO string or unix timestamp (seconds or millis) into UTC."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)):
        ts = float(raw)
        if ts > 1e12:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    with contextlib.suppress(ValueError, AttributeError):
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    return None


@dataclass(frozen=True)
class Token:
    """Represents an outcome token in a Polymarket market."""

    token_id: str
    outcome: str
    price: Decimal | None = None
    winner: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Token:
        """Create a Token from a dictionary."""
        price = data.get("price")
        return cls(
            token_id=str(data["token_id"]),
            outcome=str(data["outcome"]),
            price=Decimal(str(price)) if price is not None else None,
            winner=bool(data.get("winner", False)),
        )


@dataclass(frozen=True)
class Market:
    """Represents a Polymarket prediction market."""

    condition_id: str
    question: str
    tokens: tuple[Token, ...]
    market_slug: str = ""
    created_at: datetime | None = None
    end_date: datetime | None = None
    active: bool = True
    closed: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Market:
        """Create a Market from a CLOB market response."""
        tokens = tuple(Token.from_dict(t) for t in data.get("tokens", []))
        created_at = _parse_datetime(
            data.get("accepting_order_timestamp")
            or data.get("created_at")
            or data.get("createdAt")
            or data.get("start_date_iso")
        )
        return cls(
            condition_id=str(data["condition_id"]),
            question=str(data.get("question", "")),
            tokens=tokens,
            market_slug=str(data.get("market_slug", "")),
            created_at=created_at,
            end_date=_parse_datetime(data.get("end_date_iso")),
            active=bool(data.get("active", True)),
            closed=bool(data.get("closed", False)),
        )

    @property
    def winning_outcome(self) -> Outcome | None:
        """Return YES/NO for the winning token on a resolved market."""
        for index, token in enumerate(self.tokens):
            if token.winner:
                return "YES" if index == 0 else "NO"
        return None

    @property
    def token_ids(self) -> list[str]:
        return [t.token_id for t in self.tokens]


@dataclass(frozen=True)
class RawFill:
    """One on-chain order-fill event as reported by the indexer.

    Attributes:
        id: Unique fill identifier.
        transaction_hash: Hash of the settling transaction.
        timestamp: Unix seconds.
        maker: Resting order owner.
        taker: Crossing order owner.
        market_token: Outcome token id that was traded.
        side: Direction of the maker's order.
        size_units: USD value in 6-decimal fixed point.
        price: Outcome price in [0, 1].
    """

    id: str
    transaction_hash: str
    timestamp: int
    maker: str
    taker: str
    market_token: str
    side: FillSide
    size_units: int
    price: Decimal

    @classmethod
    def from_subgraph(cls, data: dict[str, Any]) -> RawFill:
        """Create a RawFill from an `enrichedOrderFilled` GraphQL entity."""
        maker = data.get("maker") or {}
        taker = data.get("taker") or {}
        market = data.get("market") or {}
        side: FillSide = "Buy" if str(data.get("side", "Buy")).lower() == "buy" else "Sell"
        return cls(
            id=str(data["id"]),
            transaction_hash=str(data.get("transactionHash", "")),
            timestamp=int(data.get("timestamp", 0)),
            maker=str(maker.get("id", "")).lower() if isinstance(maker, dict) else str(maker).lower(),
            taker=str(taker.get("id", "")).lower() if isinstance(taker, dict) else str(taker).lower(),
            market_token=str(market.get("id", "")) if isinstance(market, dict) else str(market),
            side=side,
            size_units=int(Decimal(str(data.get("size", 0)))),
            price=Decimal(str(data.get("price", 0))),
        )

    @property
    def value_usd(self) -> float:
        """Return the USD value of the fill."""
        return self.size_units / USD_SCALE

    @property
    def dt(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=UTC)


@dataclass(frozen=True)
class Position:
    """Net holding of a wallet in one outcome token."""

    market_token: str
    net_quantity: Decimal
    net_value_usd: float = 0.0

    @classmethod
    def from_subgraph(cls, data: dict[str, Any]) -> Position:
        market = data.get("market") or {}
        return cls(
            market_token=str(market.get("id", "")) if isinstance(market, dict) else str(market),
            net_quantity=Decimal(str(data.get("netQuantity", 0))),
            net_value_usd=float(Decimal(str(data.get("netValue") or 0)) / USD_SCALE),
        )


@dataclass(frozen=True)
class TradeFill:
    """A fill kept on an aggregated trade for audit, tagged with the wallet's role."""

    id: str
    size: float
    price: float
    value_usd: float
    timestamp: int
    maker: str
    taker: str
    role: Role

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "size": self.size,
            "price": self.price,
            "value_usd": self.value_usd,
            "timestamp": self.timestamp,
            "maker": self.maker,
            "taker": self.taker,
            "role": self.role,
        }


@dataclass(frozen=True)
class AggregatedTrade:
    """One economically meaningful trade for one wallet.

    Attributes:
        transaction_hash: Settling transaction.
        market_id: Outcome token id of the first constituent fill.
        wallet: Lower-cased wallet address.
        side: The wallet's actual action.
        outcome: YES or NO.
        total_size: Shares across all fills.
        total_value_usd: USD across all fills.
        avg_price: Value-weighted average price (0 when no shares).
        timestamp: Earliest constituent fill.
        fills: Role-tagged constituent fills.
        role: The wallet's primary role in the transaction.
        had_complementary_fills: True when a hedge leg was discarded.
        complementary_value_usd: USD of the discarded leg.
    """

    transaction_hash: str
    market_id: str
    wallet: str
    side: TradeSide
    outcome: Outcome
    total_size: float
    total_value_usd: float
    avg_price: float
    timestamp: datetime
    fills: tuple[TradeFill, ...] = ()
    role: Role = "taker"
    had_complementary_fills: bool = False
    complementary_value_usd: float | None = None

    @property
    def fill_count(self) -> int:
        return len(self.fills)

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-friendly dictionary."""
        return {
            "transaction_hash": self.transaction_hash,
            "market_id": self.market_id,
            "wallet": self.wallet,
            "side": self.side,
            "outcome": self.outcome,
            "total_size": self.total_size,
            "total_value_usd": self.total_value_usd,
            "avg_price": self.avg_price,
            "timestamp": self.timestamp.isoformat(),
            "role": self.role,
            "fill_count": self.fill_count,
            "fills": [f.to_dict() for f in self.fills],
            "had_complementary_fills": self.had_complementary_fills,
            "complementary_value_usd": self.complementary_value_usd,
        }


@dataclass(frozen=True)
class PricePoint:
    """A single observation of an outcome token's price."""

    timestamp: datetime
    price: float


@dataclass(frozen=True)
class TradeEvent:
    """Represents a trade event from the Polymarket activity WebSocket feed."""

    market_id: str  # conditionId
    trade_id: str  # transactionHash
    wallet_address: str  # proxyWallet

    side: TradeSide
    outcome: str
    outcome_index: int
    price: Decimal
    size: Decimal  # shares
    timestamp: datetime

    asset_id: str  # outcome token id

    market_slug: str = ""
    event_slug: str = ""
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_websocket_message(cls, data: dict[str, Any]) -> TradeEvent:
        """Create a TradeEvent from an activity/trades payload.

        Args:
            data: The payload from a WebSocket trade message.

        Returns:
            TradeEvent instance.
        """
        timestamp = _parse_datetime(data.get("timestamp")) or datetime.now(UTC)

        side_raw = str(data.get("side", "BUY")).upper()
        side: TradeSide = "BUY" if side_raw == "BUY" else "SELL"

        return cls(
            market_id=str(data.get("conditionId") or data.get("condition_id") or ""),
            trade_id=str(data.get("transactionHash") or data.get("transaction_hash") or ""),
            wallet_address=str(data.get("proxyWallet") or data.get("proxy_wallet") or "").lower(),
            side=side,
            outcome=str(data.get("outcome", "")),
            outcome_index=int(data.get("outcomeIndex", data.get("outcome_index", 0))),
            price=Decimal(str(data.get("price", 0))),
            size=Decimal(str(data.get("size", 0))),
            timestamp=timestamp,
            asset_id=str(data.get("asset") or data.get("asset_id") or ""),
            market_slug=str(data.get("slug", "")),
            event_slug=str(data.get("eventSlug", "")),
        )

    @property
    def notional_value(self) -> Decimal:
        """Return the USD value of the trade (shares * price)."""
        return self.size * self.price

    def to_aggregated_trade(self) -> AggregatedTrade:
        """Express the live event in the shape the scorers consume."""
        outcome: Outcome = "YES" if self.outcome_index == 0 else "NO"
        if self.outcome.upper() in ("YES", "NO"):
            outcome = "YES" if self.outcome.upper() == "YES" else "NO"
        value = float(self.notional_value)
        size = float(self.size)
        return AggregatedTrade(
            transaction_hash=self.trade_id,
            market_id=self.asset_id,
            wallet=self.wallet_address,
            side=self.side,
            outcome=outcome,
            total_size=size,
            total_value_usd=value,
            avg_price=float(self.price),
            timestamp=self.timestamp,
        )
