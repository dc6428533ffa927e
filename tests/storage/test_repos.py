"""Tests for storage repositories."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from factories import BASE_TS, NO_TOKEN, OTHER_WALLET, WALLET, YES_TOKEN, make_fill, make_market
from sqlalchemy.ext.asyncio import AsyncSession

from polymarket_forensics.ingestor.models import PricePoint
from polymarket_forensics.storage.coverage import SyncScope
from polymarket_forensics.storage.repos import (
    AccountDTO,
    AccountRepository,
    BackfillQueueRepository,
    FillRepository,
    MarketTokenRepository,
    PriceHistoryRepository,
    SyncRecordRepository,
)

BASE_DT = datetime.fromtimestamp(BASE_TS, tz=UTC)


# ============================================================================
# FillRepository
# ============================================================================


class TestFillRepository:
    async def test_save_is_idempotent(self, async_session: AsyncSession) -> None:
        repo = FillRepository(async_session)
        fill = make_fill()

        assert await repo.save_fills([fill, fill]) == 1
        assert await repo.save_fills([fill]) == 0

        assert await repo.count() == 1

    async def test_save_empty(self, async_session: AsyncSession) -> None:
        assert await FillRepository(async_session).save_fills([]) == 0

    async def test_list_for_tokens_respects_range(self, async_session: AsyncSession) -> None:
        repo = FillRepository(async_session)
        await repo.save_fills(
            [
                make_fill(fill_id="a", timestamp=BASE_TS),
                make_fill(fill_id="b", timestamp=BASE_TS + 60),
                make_fill(fill_id="c", timestamp=BASE_TS + 120, token=NO_TOKEN),
                make_fill(fill_id="d", timestamp=BASE_TS + 600),
            ]
        )

        fills = await repo.list_for_tokens(
            [YES_TOKEN, NO_TOKEN],
            after=BASE_DT,
            before=BASE_DT + timedelta(seconds=120),
        )

        assert [f.id for f in fills] == ["a", "b", "c"]

    async def test_round_trip_preserves_fields(self, async_session: AsyncSession) -> None:
        repo = FillRepository(async_session)
        original = make_fill(usd=1234.5, price="0.37")
        await repo.save_fills([original])

        [stored] = await repo.list_for_tokens([YES_TOKEN])

        assert stored.timestamp == original.timestamp
        assert stored.size_units == original.size_units
        assert stored.price == Decimal("0.37")
        assert stored.side == "Sell"

    async def test_list_for_wallet_matches_either_side(self, async_session: AsyncSession) -> None:
        repo = FillRepository(async_session)
        await repo.save_fills(
            [
                make_fill(fill_id="taker", maker=OTHER_WALLET, taker=WALLET),
                make_fill(fill_id="maker", maker=WALLET, taker=OTHER_WALLET, timestamp=BASE_TS + 1),
                make_fill(fill_id="other", maker=OTHER_WALLET, taker="0xbbbb", timestamp=BASE_TS + 2),
            ]
        )

        fills = await repo.list_for_wallet(WALLET.upper().replace("0X", "0x"))

        assert [f.id for f in fills] == ["taker", "maker"]

    async def test_state_at_is_strictly_before(self, async_session: AsyncSession) -> None:
        repo = FillRepository(async_session)
        await repo.save_fills(
            [
                # Taker against a maker sell: the wallet buys $100
                make_fill(fill_id="a", tx="0xtx1", timestamp=BASE_TS, usd=100),
                # Maker selling: the wallet receives $50
                make_fill(
                    fill_id="b",
                    tx="0xtx2",
                    timestamp=BASE_TS + 60,
                    maker=WALLET,
                    taker=OTHER_WALLET,
                    usd=50,
                ),
            ]
        )

        assert await repo.get_state_at(WALLET, BASE_DT) is None

        state = await repo.get_state_at(WALLET, BASE_DT + timedelta(seconds=60))
        assert state is not None
        assert state.trade_count == 1
        assert state.volume_usd == pytest.approx(100)

        state = await repo.get_state_at(WALLET, BASE_DT + timedelta(seconds=61))
        assert state is not None
        assert state.trade_count == 2
        assert state.volume_usd == pytest.approx(150)
        assert state.pnl_usd == pytest.approx(-50)
        assert state.first_trade_at == BASE_DT
        assert state.last_trade_at == BASE_DT + timedelta(seconds=60)
        assert state.approximate

    async def test_state_counts_transactions_not_fills(self, async_session: AsyncSession) -> None:
        repo = FillRepository(async_session)
        await repo.save_fills(
            [
                make_fill(fill_id="a", tx="0xsame"),
                make_fill(fill_id="b", tx="0xsame"),
            ]
        )

        state = await repo.get_state_at(WALLET, BASE_DT + timedelta(hours=1))

        assert state is not None
        assert state.trade_count == 1

    async def test_state_exact_with_complete_history(self, async_session: AsyncSession) -> None:
        repo = FillRepository(async_session)
        await repo.save_fills([make_fill()])
        await SyncRecordRepository(async_session).update(
            SyncScope.WALLET,
            WALLET,
            synced_from=BASE_DT - timedelta(days=1),
            synced_to=BASE_DT + timedelta(days=1),
            synced_at=BASE_DT + timedelta(days=1),
            has_complete_history=True,
        )

        state = await repo.get_state_at(WALLET, BASE_DT + timedelta(hours=1))

        assert state is not None
        assert not state.approximate

    async def test_state_with_record_but_no_fills(self, async_session: AsyncSession) -> None:
        await SyncRecordRepository(async_session).update(
            SyncScope.WALLET,
            WALLET,
            synced_from=BASE_DT - timedelta(days=1),
            synced_to=BASE_DT + timedelta(days=1),
            synced_at=BASE_DT + timedelta(days=1),
            has_complete_history=True,
        )

        state = await FillRepository(async_session).get_state_at(WALLET, BASE_DT)

        assert state is not None
        assert state.trade_count == 0
        assert state.first_trade_at is None

    async def test_state_requires_aware_timestamp(self, async_session: AsyncSession) -> None:
        with pytest.raises(ValueError):
            await FillRepository(async_session).get_state_at(WALLET, datetime(2024, 6, 1))

    async def test_oldest_timestamp(self, async_session: AsyncSession) -> None:
        repo = FillRepository(async_session)
        assert await repo.oldest_timestamp_for_wallet(WALLET) is None

        await repo.save_fills(
            [
                make_fill(fill_id="a", timestamp=BASE_TS + 100),
                make_fill(fill_id="b", timestamp=BASE_TS),
            ]
        )

        assert await repo.oldest_timestamp_for_wallet(WALLET) == BASE_DT


# ============================================================================
# SyncRecordRepository
# ============================================================================


class TestSyncRecordRepository:
    async def test_get_unknown(self, async_session: AsyncSession) -> None:
        assert await SyncRecordRepository(async_session).get(SyncScope.PRICE, YES_TOKEN) is None

    async def test_update_widens_bounds(self, async_session: AsyncSession) -> None:
        repo = SyncRecordRepository(async_session)
        await repo.update(
            SyncScope.MARKET,
            YES_TOKEN,
            synced_from=BASE_DT,
            synced_to=BASE_DT + timedelta(days=1),
            synced_at=BASE_DT + timedelta(days=1),
        )

        record = await repo.update(
            SyncScope.MARKET,
            YES_TOKEN,
            synced_from=BASE_DT + timedelta(hours=1),
            synced_to=BASE_DT + timedelta(days=2),
            synced_at=BASE_DT + timedelta(days=2),
        )

        assert record.synced_from == BASE_DT
        assert record.synced_to == BASE_DT + timedelta(days=2)
        assert record.synced_at == BASE_DT + timedelta(days=2)

    async def test_complete_history_is_sticky(self, async_session: AsyncSession) -> None:
        repo = SyncRecordRepository(async_session)
        await repo.update(
            SyncScope.WALLET,
            WALLET,
            synced_from=BASE_DT,
            synced_to=BASE_DT,
            synced_at=BASE_DT,
            has_complete_history=True,
        )

        record = await repo.update(
            SyncScope.WALLET,
            WALLET,
            synced_from=None,
            synced_to=BASE_DT + timedelta(days=1),
            synced_at=BASE_DT + timedelta(days=1),
            has_complete_history=False,
        )

        assert record.has_complete_history

    async def test_wallet_keys_are_lowercased(self, async_session: AsyncSession) -> None:
        repo = SyncRecordRepository(async_session)
        await repo.update(
            SyncScope.WALLET,
            "0xABCDEF",
            synced_from=BASE_DT,
            synced_to=BASE_DT,
            synced_at=BASE_DT,
        )

        record = await repo.get(SyncScope.WALLET, "0xabcdef")

        assert record is not None
        assert record.key == "0xabcdef"


# ============================================================================
# Accounts, market tokens and prices
# ============================================================================


class TestAccountRepository:
    async def test_upsert_and_get(self, async_session: AsyncSession) -> None:
        repo = AccountRepository(async_session)
        dto = AccountDTO(
            wallet=WALLET,
            creation_at=BASE_DT,
            trade_count_total=3,
            collateral_volume_usd=Decimal("1500.5"),
            profit_usd=Decimal("-20"),
        )

        await repo.upsert(dto)
        await repo.upsert(AccountDTO(WALLET, BASE_DT, 4, Decimal("1600"), Decimal("0")))
        stored = await repo.get(WALLET)

        assert stored is not None
        assert stored.trade_count_total == 4
        assert stored.creation_at == BASE_DT
        assert not stored.has_complete_history

    async def test_upsert_keeps_sync_bookkeeping(self, async_session: AsyncSession) -> None:
        await SyncRecordRepository(async_session).update(
            SyncScope.WALLET,
            WALLET,
            synced_from=BASE_DT,
            synced_to=BASE_DT,
            synced_at=BASE_DT,
            has_complete_history=True,
        )

        stored = await AccountRepository(async_session).upsert(AccountDTO(WALLET, None, 1, None, None))

        assert stored.has_complete_history


class TestMarketTokenRepository:
    async def test_upsert_market_creates_unsynced_records(self, async_session: AsyncSession) -> None:
        await MarketTokenRepository(async_session).upsert_market(make_market())

        sync = SyncRecordRepository(async_session)
        yes = await sync.get(SyncScope.MARKET, YES_TOKEN)
        no = await sync.get(SyncScope.MARKET, NO_TOKEN)

        assert yes is not None and yes.synced_at is None
        assert no is not None and not no.has_complete_history


class TestPriceHistoryRepository:
    async def test_save_and_list_in_range(self, async_session: AsyncSession) -> None:
        repo = PriceHistoryRepository(async_session)
        points = [PricePoint(timestamp=BASE_DT + timedelta(minutes=i), price=0.1 * (i + 1)) for i in range(5)]
        assert await repo.save_prices(YES_TOKEN, points) == 5

        listed = await repo.list_prices(
            YES_TOKEN,
            after=BASE_DT + timedelta(minutes=1),
            before=BASE_DT + timedelta(minutes=3),
        )

        assert [p.timestamp for p in listed] == [BASE_DT + timedelta(minutes=i) for i in (1, 2, 3)]
        assert listed[0].price == pytest.approx(0.2)

    async def test_save_overwrites_same_timestamp(self, async_session: AsyncSession) -> None:
        repo = PriceHistoryRepository(async_session)
        await repo.save_prices(YES_TOKEN, [PricePoint(timestamp=BASE_DT, price=0.4)])
        await repo.save_prices(YES_TOKEN, [PricePoint(timestamp=BASE_DT, price=0.6)])

        [point] = await repo.list_prices(YES_TOKEN, after=BASE_DT, before=BASE_DT)

        assert point.price == pytest.approx(0.6)


# ============================================================================
# BackfillQueueRepository
# ============================================================================


class TestBackfillQueueRepository:
    async def test_enqueue_keeps_higher_priority(self, async_session: AsyncSession) -> None:
        repo = BackfillQueueRepository(async_session)
        await repo.enqueue(WALLET, priority=80)
        await repo.enqueue(WALLET, priority=40)

        [item] = await repo.next_batch(10)

        assert item.wallet == WALLET
        assert item.priority == 80

    async def test_next_batch_orders_by_priority(self, async_session: AsyncSession) -> None:
        repo = BackfillQueueRepository(async_session)
        await repo.enqueue("0x01", priority=10)
        await repo.enqueue("0x02", priority=90)
        await repo.enqueue("0x03", priority=50)

        batch = await repo.next_batch(2)

        assert [i.wallet for i in batch] == ["0x02", "0x03"]

    async def test_completed_items_leave_the_queue(self, async_session: AsyncSession) -> None:
        repo = BackfillQueueRepository(async_session)
        await repo.enqueue(WALLET)
        await repo.mark_started(WALLET)
        await repo.mark_completed(WALLET)

        assert await repo.pending_count() == 0
        assert await repo.next_batch(10) == []

    async def test_failed_items_stay_pending(self, async_session: AsyncSession) -> None:
        repo = BackfillQueueRepository(async_session)
        await repo.enqueue(WALLET)
        await repo.mark_failed(WALLET, error="boom")

        [item] = await repo.next_batch(10)

        assert item.last_error == "boom"
        assert await repo.pending_count() == 1

    async def test_requeue_after_completion(self, async_session: AsyncSession) -> None:
        repo = BackfillQueueRepository(async_session)
        await repo.enqueue(WALLET, priority=90)
        await repo.mark_completed(WALLET)
        await repo.enqueue(WALLET, priority=10)

        [item] = await repo.next_batch(10)

        assert item.priority == 10
        assert item.completed_at is None
