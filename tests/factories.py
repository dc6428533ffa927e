"""Factory helpers shared by the test suite."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from polymarket_forensics.ingestor.models import AggregatedTrade, Market, RawFill, Token

WALLET = "0x1234567890abcdef1234567890abcdef12345678"
OTHER_WALLET = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
YES_TOKEN = "111"
NO_TOKEN = "222"
BASE_TS = int(datetime(2024, 6, 1, 12, 0, tzinfo=UTC).timestamp())


def make_fill(
    *,
    fill_id: str = "fill-1",
    tx: str = "0xtx1",
    timestamp: int = BASE_TS,
    maker: str = OTHER_WALLET,
    taker: str = WALLET,
    token: str = YES_TOKEN,
    side: str = "Sell",
    usd: float = 100.0,
    price: str = "0.5",
) -> RawFill:
    """Create a RawFill for testing. `side` is the maker's order direction."""
    return RawFill(
        id=fill_id,
        transaction_hash=tx,
        timestamp=timestamp,
        maker=maker,
        taker=taker,
        market_token=token,
        side=side,  # type: ignore[arg-type]
        size_units=int(Decimal(str(usd)) * 1_000_000),
        price=Decimal(price),
    )


def make_market(
    *,
    condition_id: str = "0xcondition",
    winner: int | None = None,
    created_at: datetime | None = None,
) -> Market:
    """Create a binary market with YES/NO tokens."""
    return Market(
        condition_id=condition_id,
        question="Will it happen?",
        tokens=(
            Token(token_id=YES_TOKEN, outcome="Yes", winner=winner == 0),
            Token(token_id=NO_TOKEN, outcome="No", winner=winner == 1),
        ),
        market_slug="will-it-happen",
        created_at=created_at,
    )


def make_trade(
    *,
    wallet: str = WALLET,
    tx: str = "0xtx1",
    value_usd: float = 10_000.0,
    price: float = 0.5,
    side: str = "BUY",
    outcome: str = "YES",
    timestamp: datetime | None = None,
) -> AggregatedTrade:
    """Create an AggregatedTrade for testing."""
    return AggregatedTrade(
        transaction_hash=tx,
        market_id=YES_TOKEN if outcome == "YES" else NO_TOKEN,
        wallet=wallet,
        side=side,  # type: ignore[arg-type]
        outcome=outcome,  # type: ignore[arg-type]
        total_size=value_usd / price,
        total_value_usd=value_usd,
        avg_price=price,
        timestamp=timestamp or datetime.fromtimestamp(BASE_TS, tz=UTC),
    )

