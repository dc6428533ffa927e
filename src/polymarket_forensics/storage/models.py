"""SQLAlchemy models for persistent storage.

This module defines the database schema for raw order fills, the sync
bookkeeping that tracks which ranges are cached, price series, and the
wallet backfill queue.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class FillModel(Base):
    """Raw on-chain order fills (durable truth)."""

    __tablename__ = "order_fills"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    maker: Mapped[str] = mapped_column(String(42), nullable=False)
    taker: Mapped[str] = mapped_column(String(42), nullable=False)
    market_token: Mapped[str] = mapped_column(String(100), nullable=False)
    side: Mapped[str] = mapped_column(String(4), nullable=False)  # maker's order side
    # USD in 6-decimal fixed point, as emitted on-chain.
    size_units: Mapped[Decimal] = mapped_column(Numeric(40, 0), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(20, 10), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_order_fills_maker_ts", "maker", "ts"),
        Index("idx_order_fills_taker_ts", "taker", "ts"),
        Index("idx_order_fills_market_ts", "market_token", "ts"),
        Index("idx_order_fills_tx", "transaction_hash"),
    )


class AccountModel(Base):
    """Per-wallet aggregates and fill-sync bookkeeping."""

    __tablename__ = "accounts"

    wallet: Mapped[str] = mapped_column(String(42), primary_key=True)
    creation_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trade_count_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    collateral_volume_usd: Mapped[Decimal | None] = mapped_column(Numeric(30, 6), nullable=True)
    profit_usd: Mapped[Decimal | None] = mapped_column(Numeric(30, 6), nullable=True)

    synced_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    has_complete_history: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class MarketTokenModel(Base):
    """Outcome token metadata and fill-sync bookkeeping."""

    __tablename__ = "market_tokens"

    token_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    condition_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    question: Mapped[str | None] = mapped_column(Text, nullable=True)
    outcome: Mapped[str | None] = mapped_column(String(64), nullable=True)
    outcome_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    synced_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    has_complete_history: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (Index("idx_market_tokens_condition", "condition_id"),)


class PriceSyncModel(Base):
    """Price-series sync bookkeeping per outcome token."""

    __tablename__ = "price_sync"

    token_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    synced_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    has_complete_history: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PricePointModel(Base):
    """Historical outcome-token prices."""

    __tablename__ = "price_history"

    token_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    price: Mapped[Decimal] = mapped_column(Numeric(20, 10), nullable=False)


class BackfillQueueModel(Base):
    """Wallets waiting for a full history backfill."""

    __tablename__ = "backfill_queue"

    wallet: Mapped[str] = mapped_column(String(42), primary_key=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_backfill_queue_pending", "completed_at", "priority"),)
