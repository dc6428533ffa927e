"""Tests for plain-text alert and report formatting."""

from __future__ import annotations

from datetime import UTC, datetime

from factories import WALLET, make_market, make_trade

from polymarket_forensics.alerter.formatter import (
    format_alert,
    format_report,
    format_trade,
    format_usd,
    get_risk_level,
    truncate_address,
)
from polymarket_forensics.detector.models import PriceImpact, ScoredTrade, ScoringContext, TradeTag
from polymarket_forensics.detector.scorer import TradeScorer
from polymarket_forensics.profiler.models import AccountHistory
from polymarket_forensics.scan.runner import AnalysisReport


def _scored(**kwargs) -> ScoredTrade:
    trade = make_trade(value_usd=50_000)
    return ScoredTrade(trade=trade, score=TradeScorer().score(trade, ScoringContext()), **kwargs)


def _report(*suspicious: ScoredTrade, queued: tuple[str, ...] = ()) -> AnalysisReport:
    return AnalysisReport(
        market=make_market(winner=0),
        total_trades=12,
        analyzed_trades=10,
        suspicious_trades=suspicious,
        analyzed_at=datetime(2024, 6, 2, tzinfo=UTC),
        account_lookups=3,
        backfill_queued=queued,
    )


class TestHelpers:
    def test_truncate_address(self) -> None:
        assert truncate_address(WALLET) == "0x1234...5678"
        assert truncate_address("0xabc") == "0xabc"

    def test_format_usd(self) -> None:
        assert format_usd(1234567.891) == "$1,234,567.89"

    def test_risk_levels(self) -> None:
        assert get_risk_level(90) == "HIGH"
        assert get_risk_level(85) == "HIGH"
        assert get_risk_level(70) == "MEDIUM"
        assert get_risk_level(69) == "LOW"


class TestFormatTrade:
    def test_core_lines(self) -> None:
        text = format_trade(_scored(), rank=1)

        first = text.splitlines()[0]
        assert first.startswith("#1 Score ")
        assert "0x1234...5678" in first
        assert "BUY YES @ 0.500 | $50,000.00" in text
        assert "trade_size=50" in text
        assert f"https://polygonscan.com/address/{WALLET}" in text
        assert "https://polygonscan.com/tx/0xtx1" in text
        assert "Market:" not in text

    def test_optional_sections(self) -> None:
        history = AccountHistory(
            wallet=WALLET,
            total_trades=3,
            first_trade_date=None,
            last_trade_date=None,
            total_volume_usd=1500.0,
            profit_usd=-20.0,
        )
        scored = _scored(
            account_history=history,
            price_impact=PriceImpact(before=0.5, after=0.55, change_percent=10.0),
            classifications=(TradeTag.WHALE, TradeTag.EARLY_MOVER),
        )

        text = format_trade(scored, market_slug="will-it-happen")

        assert "Impact: 0.500 -> 0.550 (+10.00%)" in text
        assert "Account: 3 trades, $1,500.00 volume, profit $-20.00" in text
        assert "Tags: Whale, Early Mover" in text
        assert "https://polymarket.com/event/will-it-happen" in text


class TestFormatAlert:
    def test_header(self) -> None:
        text = format_alert(_scored(), market_slug="will-it-happen")

        assert text.startswith("SUSPICIOUS ACTIVITY DETECTED\n")
        assert "will-it-happen" in text


class TestFormatReport:
    def test_empty_report(self) -> None:
        text = format_report(_report())

        assert "Winning outcome: YES" in text
        assert "Trades: 12 total, 10 analyzed, 3 account lookups" in text
        assert "No suspicious trades found." in text
        assert "Queued" not in text

    def test_ranked_trades_and_backfill(self) -> None:
        text = format_report(_report(_scored(), _scored(), queued=(WALLET,)))

        assert "Top 2 suspicious trades:" in text
        assert "#1 Score" in text
        assert "#2 Score" in text
        assert "Queued 1 wallets for history backfill." in text
