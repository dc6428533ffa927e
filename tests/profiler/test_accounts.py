"""Tests for live wallet aggregates."""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from factories import WALLET

from polymarket_forensics.ingestor.subgraph import SubgraphClient, SubgraphError
from polymarket_forensics.profiler.accounts import AccountFetcher, account_history_from_subgraph
from polymarket_forensics.profiler.models import AccountHistory
from polymarket_forensics.storage.database import DatabaseManager
from polymarket_forensics.storage.repos import AccountRepository

RAW_ACCOUNT = {
    "id": WALLET,
    "creationTimestamp": "1717243200",
    "lastSeenTimestamp": "1717329600",
    "collateralVolume": "12500000000",
    "numTrades": "7",
    "profit": "-250000000",
}


@pytest.fixture
def subgraph() -> AsyncMock:
    mock = AsyncMock(spec=SubgraphClient)
    mock.get_account.return_value = RAW_ACCOUNT
    return mock


@pytest.fixture
def mock_redis() -> AsyncMock:
    redis = AsyncMock()
    redis.get.return_value = None
    return redis


class TestAccountHistoryFromSubgraph:
    def test_parses_aggregates(self) -> None:
        history = account_history_from_subgraph(WALLET.upper().replace("0X", "0x"), RAW_ACCOUNT)

        assert history.wallet == WALLET
        assert history.total_trades == 7
        assert history.total_volume_usd == 12500
        assert history.profit_usd == -250
        assert history.first_trade_date == datetime(2024, 6, 1, 12, 0, tzinfo=UTC)
        assert history.last_trade_date == datetime(2024, 6, 2, 12, 0, tzinfo=UTC)

    def test_unknown_wallet_is_empty(self) -> None:
        history = account_history_from_subgraph(WALLET, None)
        assert history.total_trades == 0
        assert history.first_trade_date is None

    def test_account_without_trades_has_no_first_trade(self) -> None:
        history = account_history_from_subgraph(WALLET, {**RAW_ACCOUNT, "numTrades": "0"})
        assert history.first_trade_date is None
        assert history.creation_date is not None

    def test_round_trips_through_dict(self) -> None:
        history = account_history_from_subgraph(WALLET, RAW_ACCOUNT)
        assert AccountHistory.from_dict(history.to_dict()) == history


class TestAccountFetcher:
    async def test_fetches_and_caches(self, subgraph: AsyncMock, mock_redis: AsyncMock) -> None:
        fetcher = AccountFetcher(subgraph, redis=mock_redis, cache_ttl_seconds=60)

        history = await fetcher.get_account_history(WALLET)

        assert history is not None
        assert history.data_source == "subgraph"
        mock_redis.set.assert_awaited_once()
        key, payload = mock_redis.set.await_args.args
        assert key == f"account_history:{WALLET}"
        assert json.loads(payload)["total_trades"] == 7
        assert mock_redis.set.await_args.kwargs == {"ex": 60}

    async def test_cache_hit_skips_subgraph(self, subgraph: AsyncMock, mock_redis: AsyncMock) -> None:
        cached = account_history_from_subgraph(WALLET, RAW_ACCOUNT)
        mock_redis.get.return_value = json.dumps(cached.to_dict()).encode()
        fetcher = AccountFetcher(subgraph, redis=mock_redis)

        history = await fetcher.get_account_history(WALLET)

        assert history is not None
        assert history.data_source == "cache"
        assert history.total_trades == 7
        subgraph.get_account.assert_not_awaited()

    async def test_force_refresh_bypasses_cache(self, subgraph: AsyncMock, mock_redis: AsyncMock) -> None:
        mock_redis.get.return_value = b"{}"
        fetcher = AccountFetcher(subgraph, redis=mock_redis)

        await fetcher.get_account_history(WALLET, force_refresh=True)

        mock_redis.get.assert_not_awaited()
        subgraph.get_account.assert_awaited_once()

    async def test_corrupt_cache_entry_is_refetched(self, subgraph: AsyncMock, mock_redis: AsyncMock) -> None:
        mock_redis.get.return_value = b"not json"
        fetcher = AccountFetcher(subgraph, redis=mock_redis)

        history = await fetcher.get_account_history(WALLET)

        assert history is not None
        assert history.data_source == "subgraph"

    async def test_subgraph_failure_returns_none(self, subgraph: AsyncMock) -> None:
        subgraph.get_account.side_effect = SubgraphError("down")
        assert await AccountFetcher(subgraph).get_account_history(WALLET) is None

    async def test_persists_to_database(self, subgraph: AsyncMock, db: DatabaseManager) -> None:
        await AccountFetcher(subgraph, db=db).get_account_history(WALLET)

        async with db.get_async_session() as session:
            stored = await AccountRepository(session).get(WALLET)
        assert stored is not None
        assert stored.trade_count_total == 7
