"""Tests for single-wallet investigation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from factories import BASE_TS, NO_TOKEN, WALLET, YES_TOKEN, make_fill

from polymarket_forensics.alerter.formatter import format_wallet_report
from polymarket_forensics.ingestor.models import Position
from polymarket_forensics.ingestor.subgraph import SubgraphClient, SubgraphError
from polymarket_forensics.profiler.accounts import AccountFetcher
from polymarket_forensics.profiler.models import AccountHistory
from polymarket_forensics.scan.investigate import (
    NO_FACTORS,
    NO_HISTORY_FACTOR,
    InvestigateError,
    WalletInvestigator,
    analyze_suspicion_factors,
)
from polymarket_forensics.storage.coverage import SyncScope
from polymarket_forensics.storage.database import DatabaseManager
from polymarket_forensics.storage.repos import FillRepository, SyncRecordRepository

NOW = datetime(2024, 6, 10, tzinfo=UTC)


def _history(
    *,
    age_days: float | None = 400,
    total_trades: int = 500,
    volume_usd: float = 1_000_000.0,
    profit_usd: float | None = None,
) -> AccountHistory:
    created = NOW - timedelta(days=age_days) if age_days is not None else None
    return AccountHistory(
        wallet=WALLET,
        total_trades=total_trades if created else 0,
        first_trade_date=created,
        last_trade_date=NOW - timedelta(days=1) if created else None,
        total_volume_usd=volume_usd,
        creation_date=created,
        profit_usd=profit_usd,
    )


def _position(token: str, value_usd: float = 100.0) -> Position:
    return Position(market_token=token, net_quantity=Decimal("10"), net_value_usd=value_usd)


MANY_POSITIONS = [_position(str(i)) for i in range(5)]


class TestSuspicionFactors:
    def test_unknown_wallet(self) -> None:
        assert analyze_suspicion_factors(None, [], NOW) == [NO_HISTORY_FACTOR]

    def test_never_traded(self) -> None:
        assert analyze_suspicion_factors(_history(age_days=None), [], NOW) == [NO_HISTORY_FACTOR]

    def test_seasoned_wallet_has_nothing_to_report(self) -> None:
        assert analyze_suspicion_factors(_history(), MANY_POSITIONS, NOW) == [NO_FACTORS]

    @pytest.mark.parametrize(
        ("age_days", "expected"),
        [(3, "Very new account (3 days old)"), (12, "New account (12 days old)")],
    )
    def test_account_age(self, age_days: int, expected: str) -> None:
        factors = analyze_suspicion_factors(_history(age_days=age_days), MANY_POSITIONS, NOW)
        assert factors == [expected]

    def test_thirty_days_is_not_new(self) -> None:
        assert analyze_suspicion_factors(_history(age_days=30), MANY_POSITIONS, NOW) == [NO_FACTORS]

    def test_low_trade_count(self) -> None:
        factors = analyze_suspicion_factors(_history(total_trades=4), MANY_POSITIONS, NOW)
        assert factors == ["Low trade count (4 trades)"]

    def test_high_profit_rate_on_new_account(self) -> None:
        history = _history(age_days=10, volume_usd=100_000, profit_usd=45_000)

        factors = analyze_suspicion_factors(history, MANY_POSITIONS, NOW)

        assert "High profit rate on new account (45.0% return in 10 days)" in factors

    def test_profit_rate_ignored_on_old_account(self) -> None:
        history = _history(volume_usd=100_000, profit_usd=45_000)
        assert analyze_suspicion_factors(history, MANY_POSITIONS, NOW) == [NO_FACTORS]

    def test_single_market_concentration(self) -> None:
        positions = [_position(YES_TOKEN), _position(YES_TOKEN)]
        assert analyze_suspicion_factors(_history(), positions, NOW) == ["Single market concentration"]

    def test_low_diversification(self) -> None:
        positions = [_position(YES_TOKEN), _position(NO_TOKEN)]
        assert analyze_suspicion_factors(_history(), positions, NOW) == ["Low diversification (2 markets)"]

    def test_large_positions_with_few_trades(self) -> None:
        positions = [_position(str(i), value_usd=-3_000) for i in range(5)]

        factors = analyze_suspicion_factors(_history(total_trades=15), positions, NOW)

        assert factors == ["Large positions ($15,000) with few trades (15)"]

    def test_large_positions_on_busy_wallet(self) -> None:
        positions = [_position(str(i), value_usd=50_000) for i in range(5)]
        assert analyze_suspicion_factors(_history(), positions, NOW) == [NO_FACTORS]


@pytest.fixture
def subgraph() -> AsyncMock:
    mock = AsyncMock(spec=SubgraphClient)
    mock.get_positions.return_value = [_position(YES_TOKEN, value_usd=25_000)]
    mock.get_fills_by_wallet.return_value = [make_fill(fill_id="f1", usd=25_000)]
    return mock


@pytest.fixture
def account_fetcher() -> AsyncMock:
    mock = AsyncMock(spec=AccountFetcher)
    mock.get_account_history.return_value = _history(age_days=2, total_trades=3)
    return mock


class TestWalletInvestigator:
    async def test_collects_report(self, subgraph: AsyncMock, account_fetcher: AsyncMock) -> None:
        report = await WalletInvestigator(subgraph, account_fetcher).investigate(WALLET.upper(), now=NOW)

        assert report.wallet == WALLET.lower()
        assert report.suspicion_factors == (
            "Very new account (2 days old)",
            "Low trade count (3 trades)",
            "Single market concentration",
            "Large positions ($25,000) with few trades (3)",
        )
        assert [f.id for f in report.recent_fills] == ["f1"]
        assert report.total_position_value_usd == 25_000
        assert report.persisted is None
        assert report.errors == ()
        subgraph.get_fills_by_wallet.assert_awaited_once_with(WALLET.lower(), limit=20, order="desc")

    async def test_trade_limit_is_forwarded(self, subgraph: AsyncMock, account_fetcher: AsyncMock) -> None:
        await WalletInvestigator(subgraph, account_fetcher).investigate(WALLET, trade_limit=5, now=NOW)

        assert subgraph.get_fills_by_wallet.await_args.kwargs["limit"] == 5

    async def test_subgraph_failure_still_reports(self, subgraph: AsyncMock, account_fetcher: AsyncMock) -> None:
        subgraph.get_positions.side_effect = SubgraphError("bad indexers")

        report = await WalletInvestigator(subgraph, account_fetcher).investigate(WALLET, now=NOW)

        assert report.positions == ()
        assert report.recent_fills == ()
        assert report.errors == ("bad indexers",)
        assert "Very new account (2 days old)" in report.suspicion_factors

    async def test_unavailable_account_history(self, subgraph: AsyncMock, account_fetcher: AsyncMock) -> None:
        account_fetcher.get_account_history.return_value = None

        report = await WalletInvestigator(subgraph, account_fetcher).investigate(WALLET, now=NOW)

        assert report.suspicion_factors == (NO_HISTORY_FACTOR,)
        assert report.data_source == "unavailable"

    @pytest.mark.parametrize(("wallet", "limit"), [("  ", 20), (WALLET, 0)])
    async def test_rejects_bad_arguments(
        self, subgraph: AsyncMock, account_fetcher: AsyncMock, wallet: str, limit: int
    ) -> None:
        with pytest.raises(InvestigateError):
            await WalletInvestigator(subgraph, account_fetcher).investigate(wallet, trade_limit=limit)

    async def test_reports_persisted_history(
        self, subgraph: AsyncMock, account_fetcher: AsyncMock, db: DatabaseManager
    ) -> None:
        earliest = datetime.fromtimestamp(BASE_TS, tz=UTC)
        async with db.get_async_session() as session:
            await FillRepository(session).save_fills(
                [
                    make_fill(fill_id="old", timestamp=BASE_TS),
                    make_fill(fill_id="new", timestamp=BASE_TS + 3600),
                ]
            )
            await SyncRecordRepository(session).update(
                SyncScope.WALLET,
                WALLET,
                synced_from=None,
                synced_to=NOW,
                synced_at=NOW,
                has_complete_history=True,
            )

        report = await WalletInvestigator(subgraph, account_fetcher, db=db).investigate(WALLET, now=NOW)

        assert report.persisted is not None
        assert report.persisted.earliest_fill_at == earliest
        assert report.persisted.has_complete_history

    async def test_wallet_without_stored_fills(
        self, subgraph: AsyncMock, account_fetcher: AsyncMock, db: DatabaseManager
    ) -> None:
        report = await WalletInvestigator(subgraph, account_fetcher, db=db).investigate(WALLET, now=NOW)

        assert report.persisted is not None
        assert report.persisted.earliest_fill_at is None
        assert not report.persisted.has_complete_history


class TestFormatWalletReport:
    async def test_lists_factors_and_activity(self, subgraph: AsyncMock, account_fetcher: AsyncMock) -> None:
        report = await WalletInvestigator(subgraph, account_fetcher).investigate(WALLET, now=NOW)

        text = format_wallet_report(report)

        assert f"Wallet: {WALLET}" in text
        assert "Account: 3 trades" in text
        assert "Positions: 1 ($25,000.00 net value)" in text
        assert "Recent fills: 1" in text
        assert " taker Sell @ 0.500 | $25,000.00" in text
        assert "  - Single market concentration" in text

    async def test_unavailable_history(self, subgraph: AsyncMock, account_fetcher: AsyncMock) -> None:
        account_fetcher.get_account_history.return_value = None
        subgraph.get_positions.side_effect = SubgraphError("timeout")

        text = format_wallet_report(
            await WalletInvestigator(subgraph, account_fetcher).investigate(WALLET, now=NOW)
        )

        assert "Account history unavailable." in text
        assert f"  - {NO_HISTORY_FACTOR}" in text
        assert "Warning: timeout" in text
