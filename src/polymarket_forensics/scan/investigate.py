"""Single-wallet investigation.

This module implements the `investigate <wallet>` command: it pulls the
wallet's lifetime aggregates, open positions and most recent fills, and
lists the traits that commonly show up on insider accounts (a fresh
account, few trades, an outsized return, concentration in one market).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from redis.asyncio import Redis

from polymarket_forensics.config import Settings
from polymarket_forensics.ingestor.models import Position, RawFill
from polymarket_forensics.ingestor.subgraph import SubgraphClient, SubgraphError
from polymarket_forensics.profiler.accounts import AccountFetcher
from polymarket_forensics.profiler.models import AccountHistory
from polymarket_forensics.storage.coverage import SyncScope
from polymarket_forensics.storage.database import DatabaseManager
from polymarket_forensics.storage.repos import FillRepository, SyncRecordRepository

logger = logging.getLogger(__name__)

DEFAULT_TRADE_LIMIT = 20

VERY_NEW_ACCOUNT_DAYS = 7
NEW_ACCOUNT_DAYS = 30
LOW_TRADE_COUNT = 10
HIGH_PROFIT_RATE = 0.3
MAX_CONCENTRATED_MARKETS = 3
LARGE_POSITION_USD = 10_000.0
LARGE_POSITION_MAX_TRADES = 20

NO_HISTORY_FACTOR = "No trading history found"
NO_FACTORS = "No obvious suspicion factors detected"


class InvestigateError(RuntimeError):
    pass


@dataclass(frozen=True)
class PersistedHistory:
    """What the local fill store knows about a wallet."""

    earliest_fill_at: datetime | None
    has_complete_history: bool


@dataclass(frozen=True)
class WalletReport:
    wallet: str
    account_history: AccountHistory | None
    positions: tuple[Position, ...]
    recent_fills: tuple[RawFill, ...]
    suspicion_factors: tuple[str, ...]
    investigated_at: datetime
    persisted: PersistedHistory | None = None
    errors: tuple[str, ...] = field(default_factory=tuple)

    @property
    def data_source(self) -> str:
        return self.account_history.data_source if self.account_history else "unavailable"

    @property
    def total_position_value_usd(self) -> float:
        return sum(abs(p.net_value_usd) for p in self.positions)


def _age_days(since: datetime, now: datetime) -> int:
    return int((now - since).total_seconds() // 86400)


def analyze_suspicion_factors(
    history: AccountHistory | None,
    positions: Sequence[Position],
    now: datetime,
) -> list[str]:
    """Return human-readable suspicion factors for a wallet.

    Always returns at least one entry: either the factors found, a note
    that the wallet has no history, or a note that nothing stood out.
    """
    if history is None or history.first_trade_date is None:
        return [NO_HISTORY_FACTOR]

    factors: list[str] = []
    created = history.creation_date or history.first_trade_date
    age_days = _age_days(created, now)
    if age_days < VERY_NEW_ACCOUNT_DAYS:
        factors.append(f"Very new account ({age_days} days old)")
    elif age_days < NEW_ACCOUNT_DAYS:
        factors.append(f"New account ({age_days} days old)")

    if history.total_trades < LOW_TRADE_COUNT:
        factors.append(f"Low trade count ({history.total_trades} trades)")

    if history.profit_usd is not None and history.total_volume_usd > 0 and history.creation_date:
        profit_rate = history.profit_usd / history.total_volume_usd
        creation_age = _age_days(history.creation_date, now)
        if creation_age < NEW_ACCOUNT_DAYS and profit_rate > HIGH_PROFIT_RATE:
            factors.append(
                f"High profit rate on new account ({profit_rate * 100:.1f}% return in {creation_age} days)"
            )

    markets = {p.market_token for p in positions}
    if len(markets) == 1:
        factors.append("Single market concentration")
    elif 0 < len(markets) <= MAX_CONCENTRATED_MARKETS:
        factors.append(f"Low diversification ({len(markets)} markets)")

    position_value = sum(abs(p.net_value_usd) for p in positions)
    if position_value > LARGE_POSITION_USD and history.total_trades < LARGE_POSITION_MAX_TRADES:
        factors.append(
            f"Large positions (${position_value:,.0f}) with few trades ({history.total_trades})"
        )

    return factors or [NO_FACTORS]


class WalletInvestigator:
    """Collects everything known about one wallet.

    Example:
        ```python
        investigator = WalletInvestigator(subgraph, AccountFetcher(subgraph), db=db)
        report = await investigator.investigate("0xabc...")
        for factor in report.suspicion_factors:
            print(factor)
        ```
    """

    def __init__(
        self,
        subgraph: SubgraphClient,
        account_fetcher: AccountFetcher,
        *,
        db: DatabaseManager | None = None,
    ) -> None:
        self._subgraph = subgraph
        self._accounts = account_fetcher
        self._db = db

    async def _persisted(self, wallet: str) -> PersistedHistory | None:
        if self._db is None:
            return None
        async with self._db.get_async_session() as session:
            earliest = await FillRepository(session).oldest_timestamp_for_wallet(wallet)
            record = await SyncRecordRepository(session).get(SyncScope.WALLET, wallet)
        return PersistedHistory(
            earliest_fill_at=earliest,
            has_complete_history=bool(record and record.has_complete_history),
        )

    async def investigate(
        self,
        wallet: str,
        *,
        trade_limit: int = DEFAULT_TRADE_LIMIT,
        now: datetime | None = None,
    ) -> WalletReport:
        w = wallet.strip().lower()
        if not w:
            raise InvestigateError("wallet address is required")
        if trade_limit < 1:
            raise InvestigateError("trade_limit must be >= 1")
        now = now or datetime.now(UTC)

        history = await self._accounts.get_account_history(w)

        errors: list[str] = []
        positions: list[Position] = []
        fills: list[RawFill] = []
        try:
            positions, fills = await asyncio.gather(
                self._subgraph.get_positions(w),
                self._subgraph.get_fills_by_wallet(w, limit=trade_limit, order="desc"),
            )
        except SubgraphError as e:
            logger.warning("Subgraph query failed for %s: %s", w, e)
            errors.append(str(e))

        factors = analyze_suspicion_factors(history, positions, now)
        logger.info(
            "Investigated %s: %d positions, %d fills, %d factors", w, len(positions), len(fills), len(factors)
        )
        return WalletReport(
            wallet=w,
            account_history=history,
            positions=tuple(positions),
            recent_fills=tuple(fills),
            suspicion_factors=tuple(factors),
            investigated_at=now,
            persisted=await self._persisted(w),
            errors=tuple(errors),
        )


async def run_investigate(
    *,
    settings: Settings,
    wallet: str,
    trade_limit: int = DEFAULT_TRADE_LIMIT,
) -> WalletReport:
    settings.validate_requirements(command="investigate")

    api_key = settings.polymarket.subgraph_api_key
    assert api_key is not None
    redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
    db = DatabaseManager(settings.database.url)
    subgraph = SubgraphClient(
        api_key.get_secret_value(),
        subgraph_id=settings.polymarket.subgraph_id,
        gateway_url=settings.polymarket.subgraph_gateway_url,
        timeout=settings.polymarket.http_timeout_seconds,
        max_retries=settings.polymarket.http_max_retries,
    )
    try:
        investigator = WalletInvestigator(
            subgraph,
            AccountFetcher(
                subgraph,
                redis=redis,
                db=db,
                cache_ttl_seconds=settings.cache.account_ttl_seconds,
            ),
            db=db,
        )
        return await investigator.investigate(wallet, trade_limit=trade_limit)
    finally:
        await subgraph.close()
        if redis is not None:
            await redis.aclose()
        await db.dispose_async()
