"""Command-line entry point.

Usage:
    python -m polymarket_forensics analyze 0xCONDITION --after 2024-01-01 --output report.jsonl
    python -m polymarket_forensics analyze 0xCONDITION --wallet 0xWALLET
    python -m polymarket_forensics backfill --max-wallets 25
    python -m polymarket_forensics investigate 0xWALLET --trades 50
    python -m polymarket_forensics monitor will-x-happen another-market-slug
    python -m polymarket_forensics init-db
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Literal

import click
from pydantic import ValidationError

from polymarket_forensics import __version__
from polymarket_forensics.alerter.formatter import format_report, format_wallet_report
from polymarket_forensics.config import Settings, get_settings
from polymarket_forensics.ingestor.models import Outcome
from polymarket_forensics.monitor.pipeline import MonitorPipeline
from polymarket_forensics.scan.backfill import BackfillError, run_backfill
from polymarket_forensics.scan.investigate import DEFAULT_TRADE_LIMIT, InvestigateError, run_investigate
from polymarket_forensics.scan.runner import AnalyzeError, run_analyze
from polymarket_forensics.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

_DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


def _load_settings(verbose: bool) -> Settings:
    try:
        settings = get_settings()
    except ValidationError as e:
        click.echo(f"Invalid configuration:\n{e}", err=True)
        sys.exit(2)

    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.get_logging_level(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    logger.debug("Settings: %s", settings.redacted_summary())
    return settings


def _require(settings: Settings, command: Literal["analyze", "backfill", "monitor", "investigate"]) -> None:
    try:
        settings.validate_requirements(command=command)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging (DEBUG level)")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Forensic analysis of Polymarket trades for signs of insider activity."""
    ctx.obj = _load_settings(verbose)


@cli.command()
@click.argument("condition_id")
@click.option("--after", type=click.DateTime(formats=_DATE_FORMATS), default=None, help="Only trades at or after (UTC)")
@click.option("--before", type=click.DateTime(formats=_DATE_FORMATS), default=None, help="Only trades at or before (UTC)")
@click.option(
    "--outcome",
    type=click.Choice(["YES", "NO"], case_sensitive=False),
    default=None,
    help="Outcome to analyze (defaults to the winner on resolved markets)",
)
@click.option("--wallet", type=str, default=None, help="Only analyze trades by this wallet")
@click.option("--max-trades", type=click.IntRange(min=1), default=None, help="Cap on fills fetched per outcome token")
@click.option("--output", "-o", type=click.Path(path_type=Path), default=None, help="Write a JSONL report here")
@click.pass_obj
def analyze(
    settings: Settings,
    condition_id: str,
    after: datetime | None,
    before: datetime | None,
    outcome: Outcome | None,
    wallet: str | None,
    max_trades: int | None,
    output: Path | None,
) -> None:
    """Score the trades on a market and list the most suspicious ones."""
    _require(settings, "analyze")
    try:
        report = asyncio.run(
            run_analyze(
                settings=settings,
                condition_id=condition_id,
                after=_as_utc(after),
                before=_as_utc(before),
                outcome=outcome,
                wallet=wallet,
                max_trades=max_trades,
                output_path=output,
            )
        )
    except AnalyzeError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("Analysis interrupted by user", err=True)
        sys.exit(130)

    click.echo(format_report(report))
    if output is not None:
        click.echo(f"\nReport written to {output}")


@cli.command()
@click.option("--max-wallets", type=click.IntRange(min=1), default=None, help="Wallets processed in this run")
@click.option("--max-minutes", type=click.FloatRange(min=0, min_open=True), default=None, help="Stop after this long")
@click.pass_obj
def backfill(settings: Settings, max_wallets: int | None, max_minutes: float | None) -> None:
    """Fetch full trade history for wallets queued by analysis runs."""
    _require(settings, "backfill")
    try:
        result = asyncio.run(
            run_backfill(
                settings=settings,
                max_wallets=max_wallets,
                max_time=timedelta(minutes=max_minutes) if max_minutes else None,
            )
        )
    except BackfillError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(
        f"Backfilled {result.wallets_processed} wallets "
        f"({result.wallets_completed} complete, {result.fills_saved} new fills); "
        f"{result.remaining} still queued"
    )
    for w in result.wallets:
        if w.error:
            click.echo(f"  {w.wallet}: {w.error}", err=True)


@cli.command()
@click.argument("wallet")
@click.option(
    "--trades",
    "trade_limit",
    type=click.IntRange(min=1),
    default=DEFAULT_TRADE_LIMIT,
    show_default=True,
    help="Recent fills to list",
)
@click.pass_obj
def investigate(settings: Settings, wallet: str, trade_limit: int) -> None:
    """Profile one wallet and list what makes it look suspicious."""
    _require(settings, "investigate")
    try:
        report = asyncio.run(run_investigate(settings=settings, wallet=wallet, trade_limit=trade_limit))
    except InvestigateError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(format_wallet_report(report))


@cli.command()
@click.argument("market_slugs", nargs=-1, required=True)
@click.option("--alerts", type=click.Path(path_type=Path), default=None, help="Append alerts as JSONL")
@click.pass_obj
def monitor(settings: Settings, market_slugs: tuple[str, ...], alerts: Path | None) -> None:
    """Watch markets live and print alerts as suspicious trades arrive."""
    _require(settings, "monitor")
    if alerts is not None:
        settings.monitor.alerts_path = alerts

    pipeline = MonitorPipeline(market_slugs, settings)
    try:
        asyncio.run(pipeline.run())
    except KeyboardInterrupt:
        click.echo("\nMonitor stopped", err=True)
    stats = pipeline.stats
    click.echo(
        f"Trades received: {stats.trades_received}, evaluated: {stats.trades_evaluated}, "
        f"alerts: {stats.alerts_sent}"
    )


@cli.command("init-db")
@click.pass_obj
def init_db(settings: Settings) -> None:
    """Create the database schema (use Alembic for managed deployments)."""

    async def _init() -> None:
        db = DatabaseManager(settings.database.url)
        try:
            await db.init_schema_async()
        finally:
            await db.dispose_async()

    asyncio.run(_init())
    click.echo(f"Schema ready at {Settings._redact_url(settings.database.url)}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
