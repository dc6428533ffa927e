"""Repository pattern implementations for data access.

This module provides data access abstractions for raw fills, sync
bookkeeping, wallet aggregates, price series and the backfill queue.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from polymarket_forensics.ingestor.models import USD_SCALE, Market, PricePoint, RawFill
from polymarket_forensics.profiler.models import HistoricalState
from polymarket_forensics.storage.coverage import SyncRecord, SyncScope, history_is_complete_at
from polymarket_forensics.storage.models import (
    AccountModel,
    BackfillQueueModel,
    FillModel,
    MarketTokenModel,
    PricePointModel,
    PriceSyncModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Rows per INSERT statement; keeps SQLite under its bound-parameter limit.
INSERT_CHUNK_SIZE = 500


def _utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on round-trip; everything stored here is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _insert_for(session: AsyncSession) -> Any:
    bind = session.bind
    dialect = bind.dialect.name if bind is not None else "postgresql"
    return pg_insert if dialect == "postgresql" else sqlite_insert


def _chunks(rows: list[dict[str, Any]], size: int = INSERT_CHUNK_SIZE) -> list[list[dict[str, Any]]]:
    return [rows[i : i + size] for i in range(0, len(rows), size)]


def _fill_from_model(model: FillModel) -> RawFill:
    side = "Buy" if model.side == "Buy" else "Sell"
    ts = _utc(model.ts)
    assert ts is not None
    return RawFill(
        id=model.id,
        transaction_hash=model.transaction_hash,
        timestamp=int(ts.timestamp()),
        maker=model.maker,
        taker=model.taker,
        market_token=model.market_token,
        side=side,
        size_units=int(model.size_units),
        price=Decimal(str(model.price)),
    )


class FillRepository:
    """Repository for persisted raw fills."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def save_fills(self, fills: Sequence[RawFill]) -> int:
        """Insert fills, ignoring ones already stored (idempotent on fill id).

        Returns:
            Number of fills newly inserted.
        """
        unique: dict[str, RawFill] = {f.id: f for f in fills}
        if not unique:
            return 0

        now = datetime.now(UTC)
        rows = [
            {
                "id": f.id,
                "transaction_hash": f.transaction_hash,
                "ts": datetime.fromtimestamp(f.timestamp, tz=UTC),
                "maker": f.maker.lower(),
                "taker": f.taker.lower(),
                "market_token": f.market_token,
                "side": f.side,
                "size_units": Decimal(f.size_units),
                "price": f.price,
                "created_at": now,
            }
            for f in unique.values()
        ]
        insert = _insert_for(self.session)
        inserted = 0
        for chunk in _chunks(rows):
            stmt = insert(FillModel).values(chunk).on_conflict_do_nothing(index_elements=["id"])
            result = await self.session.execute(stmt)
            inserted += max(result.rowcount, 0)
        await self.session.flush()
        return inserted

    async def list_for_tokens(
        self,
        token_ids: Sequence[str],
        *,
        after: datetime | None = None,
        before: datetime | None = None,
    ) -> list[RawFill]:
        """Return fills on the given outcome tokens within [after, before], oldest first."""
        if not token_ids:
            return []
        stmt = select(FillModel).where(FillModel.market_token.in_(list(token_ids)))
        if after is not None:
            stmt = stmt.where(FillModel.ts >= after)
        if before is not None:
            stmt = stmt.where(FillModel.ts <= before)
        result = await self.session.execute(stmt.order_by(FillModel.ts.asc(), FillModel.id.asc()))
        return [_fill_from_model(m) for m in result.scalars().all()]

    async def list_for_wallet(
        self,
        wallet: str,
        *,
        after: datetime | None = None,
        before: datetime | None = None,
    ) -> list[RawFill]:
        """Return fills where the wallet is maker or taker, oldest first."""
        w = wallet.lower()
        stmt = select(FillModel).where(sa.or_(FillModel.maker == w, FillModel.taker == w))
        if after is not None:
            stmt = stmt.where(FillModel.ts >= after)
        if before is not None:
            stmt = stmt.where(FillModel.ts <= before)
        result = await self.session.execute(stmt.order_by(FillModel.ts.asc(), FillModel.id.asc()))
        return [_fill_from_model(m) for m in result.scalars().all()]

    async def get_state_at(self, wallet: str, timestamp: datetime) -> HistoricalState | None:
        """Rebuild a wallet's activity strictly before `timestamp`.

        Returns:
            The point-in-time state, or None when nothing is persisted for the
            wallet (no sync record and no fills).
        """
        if timestamp.tzinfo is None:
            raise ValueError("timestamp must be timezone-aware")
        w = wallet.lower()

        is_maker = FillModel.maker == w
        wallet_buys = sa.or_(
            sa.and_(is_maker, FillModel.side == "Buy"),
            sa.and_(FillModel.maker != w, FillModel.side == "Sell"),
        )
        cash_flow = sa.case((wallet_buys, -FillModel.size_units), else_=FillModel.size_units)

        result = await self.session.execute(
            select(
                func.count(func.distinct(FillModel.transaction_hash)),
                func.coalesce(func.sum(FillModel.size_units), 0),
                func.coalesce(func.sum(cash_flow), 0),
                func.min(FillModel.ts),
                func.max(FillModel.ts),
            ).where(
                sa.or_(FillModel.maker == w, FillModel.taker == w),
                FillModel.ts < timestamp,
            )
        )
        trade_count, volume_units, pnl_units, first_ts, last_ts = result.one()

        record = await SyncRecordRepository(self.session).get(SyncScope.WALLET, w)
        if record is None and not trade_count:
            return None

        return HistoricalState(
            trade_count=int(trade_count or 0),
            volume_usd=float(Decimal(str(volume_units))) / USD_SCALE,
            pnl_usd=float(Decimal(str(pnl_units))) / USD_SCALE,
            approximate=not history_is_complete_at(record, timestamp),
            first_trade_at=_utc(first_ts),
            last_trade_at=_utc(last_ts),
        )

    async def oldest_timestamp_for_wallet(self, wallet: str) -> datetime | None:
        w = wallet.lower()
        result = await self.session.execute(
            select(func.min(FillModel.ts)).where(sa.or_(FillModel.maker == w, FillModel.taker == w))
        )
        return _utc(result.scalar_one_or_none())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(FillModel))
        return int(result.scalar_one())


_SYNC_MODELS: dict[SyncScope, type[AccountModel] | type[MarketTokenModel] | type[PriceSyncModel]] = {
    SyncScope.MARKET: MarketTokenModel,
    SyncScope.WALLET: AccountModel,
    SyncScope.PRICE: PriceSyncModel,
}


def _sync_key(scope: SyncScope, key: str) -> str:
    return key.lower() if scope is SyncScope.WALLET else key


class SyncRecordRepository:
    """Reads and advances sync bookkeeping for markets, wallets and price series."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, scope: SyncScope, key: str) -> SyncRecord | None:
        model = await self.session.get(_SYNC_MODELS[scope], _sync_key(scope, key))
        if model is None:
            return None
        return SyncRecord(
            scope=scope,
            key=_sync_key(scope, key),
            synced_from=_utc(model.synced_from),
            synced_to=_utc(model.synced_to),
            synced_at=_utc(model.synced_at),
            has_complete_history=bool(model.has_complete_history),
        )

    async def update(
        self,
        scope: SyncScope,
        key: str,
        *,
        synced_from: datetime | None,
        synced_to: datetime | None,
        synced_at: datetime,
        has_complete_history: bool | None = None,
    ) -> SyncRecord:
        """Widen the covered bounds and stamp the refresh time.

        Call this only after the fills for the range have been saved in the
        same session, so a reader never sees bounds without their rows.
        """
        model_cls = _SYNC_MODELS[scope]
        normalized = _sync_key(scope, key)
        model = await self.session.get(model_cls, normalized)
        if model is None:
            pk = "wallet" if scope is SyncScope.WALLET else "token_id"
            model = model_cls(**{pk: normalized}, has_complete_history=False)
            self.session.add(model)

        current_from = _utc(model.synced_from)
        current_to = _utc(model.synced_to)
        if synced_from is not None:
            model.synced_from = synced_from if current_from is None else min(current_from, synced_from)
        if synced_to is not None:
            model.synced_to = synced_to if current_to is None else max(current_to, synced_to)
        model.synced_at = synced_at
        if has_complete_history is not None:
            model.has_complete_history = bool(model.has_complete_history) or has_complete_history

        await self.session.flush()
        logger.debug(
            "Sync record %s:%s now [%s, %s] at %s",
            scope.value,
            normalized,
            model.synced_from,
            model.synced_to,
            synced_at,
        )
        record = await self.get(scope, normalized)
        assert record is not None
        return record


@dataclass
class AccountDTO:
    """Data transfer object for wallet aggregates."""

    wallet: str
    creation_at: datetime | None
    trade_count_total: int | None
    collateral_volume_usd: Decimal | None
    profit_usd: Decimal | None
    has_complete_history: bool = False

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountDTO:
        return cls(
            wallet=model.wallet,
            creation_at=_utc(model.creation_at),
            trade_count_total=model.trade_count_total,
            collateral_volume_usd=model.collateral_volume_usd,
            profit_usd=model.profit_usd,
            has_complete_history=bool(model.has_complete_history),
        )


class AccountRepository:
    """Repository for upstream wallet aggregates."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, wallet: str) -> AccountDTO | None:
        model = await self.session.get(AccountModel, wallet.lower())
        return AccountDTO.from_model(model) if model else None

    async def upsert(self, dto: AccountDTO) -> AccountDTO:
        """Store upstream aggregates without touching sync bookkeeping."""
        model = await self.session.get(AccountModel, dto.wallet.lower())
        if model is None:
            model = AccountModel(wallet=dto.wallet.lower(), has_complete_history=False)
            self.session.add(model)
        model.creation_at = dto.creation_at
        model.trade_count_total = dto.trade_count_total
        model.collateral_volume_usd = dto.collateral_volume_usd
        model.profit_usd = dto.profit_usd
        await self.session.flush()
        return AccountDTO.from_model(model)


class MarketTokenRepository:
    """Repository for outcome token metadata."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_market(self, market: Market) -> None:
        for index, token in enumerate(market.tokens):
            model = await self.session.get(MarketTokenModel, token.token_id)
            if model is None:
                model = MarketTokenModel(token_id=token.token_id, has_complete_history=False)
                self.session.add(model)
            model.condition_id = market.condition_id
            model.question = market.question
            model.outcome = token.outcome
            model.outcome_index = index
        await self.session.flush()


class PriceHistoryRepository:
    """Repository for cached outcome-token price series."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def save_prices(self, token_id: str, points: Sequence[PricePoint]) -> int:
        if not points:
            return 0
        by_ts = {p.timestamp: p for p in points}
        rows = [
            {"token_id": token_id, "ts": p.timestamp, "price": Decimal(str(p.price))}
            for p in by_ts.values()
        ]
        insert = _insert_for(self.session)
        for chunk in _chunks(rows):
            stmt = insert(PricePointModel).values(chunk)
            stmt = stmt.on_conflict_do_update(
                index_elements=["token_id", "ts"],
                set_={"price": stmt.excluded.price},
            )
            await self.session.execute(stmt)
        await self.session.flush()
        return len(rows)

    async def list_prices(
        self,
        token_id: str,
        *,
        after: datetime,
        before: datetime,
    ) -> list[PricePoint]:
        result = await self.session.execute(
            select(PricePointModel)
            .where(
                (PricePointModel.token_id == token_id)
                & (PricePointModel.ts >= after)
                & (PricePointModel.ts <= before)
            )
            .order_by(PricePointModel.ts.asc())
        )
        points: list[PricePoint] = []
        for model in result.scalars().all():
            ts = _utc(model.ts)
            assert ts is not None
            points.append(PricePoint(timestamp=ts, price=float(model.price)))
        return points


@dataclass
class BackfillItemDTO:
    wallet: str
    priority: int
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_error: str | None = None

    @classmethod
    def from_model(cls, model: BackfillQueueModel) -> BackfillItemDTO:
        created_at = _utc(model.created_at)
        assert created_at is not None
        return cls(
            wallet=model.wallet,
            priority=model.priority,
            created_at=created_at,
            started_at=_utc(model.started_at),
            completed_at=_utc(model.completed_at),
            last_error=model.last_error,
        )


class BackfillQueueRepository:
    """Repository for wallets queued for a full history backfill."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def enqueue(self, wallet: str, *, priority: int = 0) -> None:
        """Queue a wallet; re-queueing a pending wallet keeps the higher priority."""
        w = wallet.lower()
        model = await self.session.get(BackfillQueueModel, w)
        now = datetime.now(UTC)
        if model is None:
            self.session.add(BackfillQueueModel(wallet=w, priority=priority, created_at=now))
        elif model.completed_at is None:
            model.priority = max(model.priority, priority)
        else:
            model.priority = priority
            model.created_at = now
            model.started_at = None
            model.completed_at = None
            model.last_error = None
        await self.session.flush()

    async def next_batch(self, limit: int) -> list[BackfillItemDTO]:
        result = await self.session.execute(
            select(BackfillQueueModel)
            .where(BackfillQueueModel.completed_at.is_(None))
            .order_by(BackfillQueueModel.priority.desc(), BackfillQueueModel.created_at.asc())
            .limit(limit)
        )
        return [BackfillItemDTO.from_model(m) for m in result.scalars().all()]

    async def mark_started(self, wallet: str) -> None:
        await self.session.execute(
            update(BackfillQueueModel)
            .where(BackfillQueueModel.wallet == wallet.lower())
            .values(started_at=datetime.now(UTC))
        )

    async def mark_completed(self, wallet: str) -> None:
        await self.session.execute(
            update(BackfillQueueModel)
            .where(BackfillQueueModel.wallet == wallet.lower())
            .values(completed_at=datetime.now(UTC), last_error=None)
        )

    async def mark_failed(self, wallet: str, *, error: str) -> None:
        await self.session.execute(
            update(BackfillQueueModel)
            .where(BackfillQueueModel.wallet == wallet.lower())
            .values(last_error=error[:2000])
        )

    async def pending_count(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(BackfillQueueModel)
            .where(BackfillQueueModel.completed_at.is_(None))
        )
        return int(result.scalar_one())
