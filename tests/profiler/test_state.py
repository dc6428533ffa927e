"""Tests for point-in-time wallet state resolution."""

from datetime import UTC, datetime, timedelta

from factories import BASE_TS, OTHER_WALLET, WALLET, make_fill, make_trade

from polymarket_forensics.profiler.state import PointInTimeResolver
from polymarket_forensics.storage.database import DatabaseManager
from polymarket_forensics.storage.repos import FillRepository

BASE_DT = datetime.fromtimestamp(BASE_TS, tz=UTC)


async def _seed(db: DatabaseManager) -> None:
    async with db.get_async_session() as session:
        await FillRepository(session).save_fills(
            [
                make_fill(fill_id="a", tx="0xold", timestamp=BASE_TS - 86400, usd=2000),
                make_fill(fill_id="b", tx="0xnew", timestamp=BASE_TS, usd=500),
            ]
        )


class TestPointInTimeResolver:
    async def test_ignores_the_future(self, db: DatabaseManager) -> None:
        await _seed(db)
        resolver = PointInTimeResolver(db)

        state = await resolver.state_at(WALLET, BASE_DT)

        assert state is not None
        assert state.trade_count == 1
        assert state.volume_usd == 2000
        assert state.last_trade_at == BASE_DT - timedelta(days=1)

    async def test_unknown_wallet(self, db: DatabaseManager) -> None:
        assert await PointInTimeResolver(db).state_at("0xnobody", BASE_DT) is None

    async def test_states_for_trades(self, db: DatabaseManager) -> None:
        await _seed(db)
        trades = [
            make_trade(tx="0xnew", timestamp=BASE_DT),
            make_trade(tx="0xnew", timestamp=BASE_DT),
            make_trade(tx="0xlater", timestamp=BASE_DT + timedelta(hours=1)),
            make_trade(wallet="0xnobody", tx="0xother", timestamp=BASE_DT),
        ]

        states = await PointInTimeResolver(db).states_for_trades(trades)

        assert set(states) == {(WALLET, "0xnew"), (WALLET, "0xlater")}
        assert states[(WALLET, "0xnew")].trade_count == 1
        assert states[(WALLET, "0xlater")].trade_count == 2
        assert states[(WALLET, "0xlater")].approximate

    async def test_counterparty_sees_its_own_history(self, db: DatabaseManager) -> None:
        await _seed(db)

        state = await PointInTimeResolver(db).state_at(OTHER_WALLET, BASE_DT + timedelta(seconds=1))

        assert state is not None
        # Maker selling into the taker's buys: proceeds are positive.
        assert state.pnl_usd == 2500
