"""Plain-text formatting for alerts and analysis reports."""

from __future__ import annotations

from polymarket_forensics.detector.models import ScoredTrade, TradeTag
from polymarket_forensics.scan.investigate import WalletReport
from polymarket_forensics.scan.runner import AnalysisReport

# Polymarket URLs
POLYMARKET_MARKET_URL = "https://polymarket.com/event/{slug}"
POLYGONSCAN_ADDRESS_URL = "https://polygonscan.com/address/{address}"
POLYGONSCAN_TX_URL = "https://polygonscan.com/tx/{tx}"

# Risk level thresholds (aggregate score, 0-100)
HIGH_RISK_THRESHOLD = 85
MEDIUM_RISK_THRESHOLD = 70

_TAG_LABELS = {
    TradeTag.WHALE: "Whale",
    TradeTag.SNIPER: "Sniper",
    TradeTag.EARLY_MOVER: "Early Mover",
    TradeTag.DUMPING: "Dumping",
}


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate an Ethereum address to 0x1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def format_usd(amount: float) -> str:
    """Format a USD amount with commas and 2 decimal places."""
    return f"${amount:,.2f}"


def get_risk_level(score: int) -> str:
    """Get human-readable risk level from an aggregate score."""
    if score >= HIGH_RISK_THRESHOLD:
        return "HIGH"
    if score >= MEDIUM_RISK_THRESHOLD:
        return "MEDIUM"
    return "LOW"


def format_signals(scored: ScoredTrade) -> str:
    return ", ".join(f"{s.name}={s.score}" for s in scored.score.signals)


def format_trade(scored: ScoredTrade, *, market_slug: str = "", rank: int | None = None) -> str:
    """Render one scored trade as a block of plain-text lines."""
    trade = scored.trade
    score = scored.score.total
    header = f"#{rank} " if rank is not None else ""
    lines = [
        f"{header}Score {score} ({get_risk_level(score)}) - wallet {truncate_address(trade.wallet)}",
        f"  Trade: {trade.side} {trade.outcome} @ {trade.avg_price:.3f} | {format_usd(trade.total_value_usd)}"
        f" | {trade.fill_count} fills | {trade.timestamp.isoformat()}",
        f"  Signals: {format_signals(scored)}",
    ]
    if scored.price_impact is not None:
        impact = scored.price_impact
        lines.append(
            f"  Impact: {impact.before:.3f} -> {impact.after:.3f} ({impact.change_percent:+.2f}%)"
        )
    history = scored.account_history
    if history is not None:
        lines.append(
            f"  Account: {history.total_trades} trades, {format_usd(history.total_volume_usd)} volume"
            + (f", profit {format_usd(history.profit_usd)}" if history.profit_usd is not None else "")
        )
    if scored.classifications:
        lines.append(f"  Tags: {', '.join(_TAG_LABELS[t] for t in scored.classifications)}")
    lines.append(f"  Wallet: {POLYGONSCAN_ADDRESS_URL.format(address=trade.wallet)}")
    lines.append(f"  Tx: {POLYGONSCAN_TX_URL.format(tx=trade.transaction_hash)}")
    if market_slug:
        lines.append(f"  Market: {POLYMARKET_MARKET_URL.format(slug=market_slug)}")
    return "\n".join(lines)


def format_alert(scored: ScoredTrade, *, market_slug: str = "") -> str:
    """Build plain text for a live alert."""
    lines = [
        "SUSPICIOUS ACTIVITY DETECTED",
        "=" * 30,
        format_trade(scored, market_slug=market_slug),
    ]
    return "\n".join(lines)


def format_report(report: AnalysisReport) -> str:
    """Build the plain-text summary printed after an analysis run."""
    market = report.market
    lines = [
        f"Market: {market.question or market.condition_id}",
        f"Condition: {market.condition_id}",
        f"Winning outcome: {market.winning_outcome or 'unresolved'}",
        f"Trades: {report.total_trades} total, {report.analyzed_trades} analyzed,"
        f" {report.account_lookups} account lookups",
    ]
    if report.target_wallet:
        lines.append(f"Wallet filter: {report.target_wallet}")
    lines.append("")

    if not report.suspicious_trades:
        lines.append("No suspicious trades found.")
    else:
        lines.append(f"Top {len(report.suspicious_trades)} suspicious trades:")
        for rank, scored in enumerate(report.suspicious_trades, start=1):
            lines.append(format_trade(scored, market_slug=market.market_slug, rank=rank))
    if report.backfill_queued:
        lines.append("")
        lines.append(f"Queued {len(report.backfill_queued)} wallets for history backfill.")
    return "\n".join(lines)


def format_wallet_report(report: WalletReport) -> str:
    """Build the plain-text summary printed by `investigate`."""
    lines = [
        f"Wallet: {report.wallet}",
        f"  {POLYGONSCAN_ADDRESS_URL.format(address=report.wallet)}",
        f"Data source: {report.data_source}",
        "",
    ]
    history = report.account_history
    if history is None:
        lines.append("Account history unavailable.")
    else:
        first = history.first_trade_date.date().isoformat() if history.first_trade_date else "never"
        last = history.last_trade_date.date().isoformat() if history.last_trade_date else "never"
        lines.append(
            f"Account: {history.total_trades} trades, {format_usd(history.total_volume_usd)} volume"
            + (f", profit {format_usd(history.profit_usd)}" if history.profit_usd is not None else "")
        )
        lines.append(f"  First trade: {first} | Last trade: {last}")

    persisted = report.persisted
    if persisted is not None and persisted.earliest_fill_at is not None:
        status = "complete" if persisted.has_complete_history else "partial"
        lines.append(f"  Stored fills since {persisted.earliest_fill_at.isoformat()} ({status})")

    lines.append("")
    lines.append(
        f"Positions: {len(report.positions)} ({format_usd(report.total_position_value_usd)} net value)"
    )
    for position in report.positions:
        lines.append(
            f"  {truncate_address(position.market_token, 6)}: {position.net_quantity} shares,"
            f" {format_usd(position.net_value_usd)}"
        )

    lines.append(f"Recent fills: {len(report.recent_fills)}")
    for fill in report.recent_fills:
        role = "maker" if fill.maker.lower() == report.wallet else "taker"
        lines.append(
            f"  {fill.dt.isoformat()} {role} {fill.side} @ {float(fill.price):.3f}"
            f" | {format_usd(fill.value_usd)} | {POLYGONSCAN_TX_URL.format(tx=fill.transaction_hash)}"
        )

    lines.append("")
    lines.append("Suspicion factors:")
    lines.extend(f"  - {factor}" for factor in report.suspicion_factors)
    for error in report.errors:
        lines.append(f"Warning: {error}")
    return "\n".join(lines)
