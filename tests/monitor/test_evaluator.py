"""Tests for live trade evaluation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from factories import WALLET, YES_TOKEN

from polymarket_forensics.detector.models import TradeTag
from polymarket_forensics.detector.scorer import TradeScorer
from polymarket_forensics.ingestor.models import TradeEvent
from polymarket_forensics.monitor.evaluator import MonitorEvaluator
from polymarket_forensics.profiler.accounts import AccountFetcher
from polymarket_forensics.profiler.models import AccountHistory

CONDITION_ID = "0x" + "c" * 64


def _event(*, size: str = "100000", price: str = "0.5") -> TradeEvent:
    return TradeEvent(
        market_id=CONDITION_ID,
        trade_id="0x" + "a" * 64,
        wallet_address=WALLET,
        side="BUY",
        outcome="Yes",
        outcome_index=0,
        price=Decimal(price),
        size=Decimal(size),
        timestamp=datetime(2024, 6, 1, 12, 0, tzinfo=UTC),
        asset_id=YES_TOKEN,
        market_slug="test-market",
    )


def _history(total_trades: int, age_days: int = 0) -> AccountHistory:
    now = datetime(2024, 6, 1, tzinfo=UTC)
    return AccountHistory(
        wallet=WALLET,
        total_trades=total_trades,
        first_trade_date=now - timedelta(days=age_days) if total_trades else None,
        last_trade_date=now - timedelta(days=1) if total_trades else None,
        total_volume_usd=total_trades * 10_000.0,
    )


@pytest.fixture
def account_fetcher() -> AsyncMock:
    mock = AsyncMock(spec=AccountFetcher)
    mock.get_account_history.return_value = _history(0)
    return mock


@pytest.fixture
def redis() -> AsyncMock:
    mock = AsyncMock()
    mock.set.return_value = True
    return mock


class TestShouldEvaluate:
    def test_minimum_notional(self, account_fetcher: AsyncMock) -> None:
        evaluator = MonitorEvaluator(TradeScorer(), account_fetcher, min_trade_usd=5000)

        assert evaluator.should_evaluate(_event(size="10000", price="0.5"))
        assert not evaluator.should_evaluate(_event(size="9998", price="0.5"))


class TestEvaluate:
    async def test_new_wallet_whale_alerts(self, account_fetcher: AsyncMock, redis: AsyncMock) -> None:
        evaluator = MonitorEvaluator(TradeScorer(), account_fetcher, redis=redis)

        result = await evaluator.evaluate(_event())

        assert result.should_alert
        assert not result.is_duplicate
        # trade_size 50, account_history 100, conviction 80
        assert result.scored.score.total == 75
        assert TradeTag.WHALE in result.scored.classifications
        account_fetcher.get_account_history.assert_awaited_once_with(WALLET)
        redis.set.assert_awaited_once()
        key = redis.set.await_args.args[0]
        assert key == f"polymarket:dedup:{WALLET}:{CONDITION_ID}"
        assert redis.set.await_args.kwargs == {"nx": True, "ex": 3600}

    async def test_veteran_does_not_alert(self, account_fetcher: AsyncMock, redis: AsyncMock) -> None:
        account_fetcher.get_account_history.return_value = _history(1000, age_days=400)
        evaluator = MonitorEvaluator(TradeScorer(), account_fetcher, redis=redis)

        result = await evaluator.evaluate(_event())

        assert not result.should_alert
        assert result.scored.score.total < 70
        redis.set.assert_not_awaited()

    async def test_repeat_alert_is_suppressed(self, account_fetcher: AsyncMock, redis: AsyncMock) -> None:
        redis.set.return_value = None
        evaluator = MonitorEvaluator(TradeScorer(), account_fetcher, redis=redis)

        result = await evaluator.evaluate(_event())

        assert result.is_duplicate
        assert not result.should_alert
        assert result.scored.score.is_alert

    async def test_failed_lookup_scores_as_skipped(self, account_fetcher: AsyncMock) -> None:
        account_fetcher.get_account_history.return_value = None
        evaluator = MonitorEvaluator(TradeScorer(), account_fetcher)

        result = await evaluator.evaluate(_event())

        assert result.scored.account_history is None

    async def test_without_redis_never_duplicates(self, account_fetcher: AsyncMock) -> None:
        evaluator = MonitorEvaluator(TradeScorer(), account_fetcher)

        first = await evaluator.evaluate(_event())
        second = await evaluator.evaluate(_event())

        assert first.should_alert
        assert second.should_alert

    async def test_to_dict(self, account_fetcher: AsyncMock) -> None:
        evaluator = MonitorEvaluator(TradeScorer(), account_fetcher)

        data = (await evaluator.evaluate(_event())).to_dict()

        assert data["market_id"] == CONDITION_ID
        assert data["market_slug"] == "test-market"
        assert data["should_alert"] is True
        assert data["is_duplicate"] is False


class TestClearDedup:
    async def test_deletes_key(self, account_fetcher: AsyncMock, redis: AsyncMock) -> None:
        redis.delete.return_value = 1
        evaluator = MonitorEvaluator(TradeScorer(), account_fetcher, redis=redis, key_prefix="test:")

        assert await evaluator.clear_dedup(WALLET, CONDITION_ID)
        redis.delete.assert_awaited_once_with(f"test:{WALLET}:{CONDITION_ID}")

    async def test_without_redis(self, account_fetcher: AsyncMock) -> None:
        evaluator = MonitorEvaluator(TradeScorer(), account_fetcher)

        assert not await evaluator.clear_dedup(WALLET, CONDITION_ID)
