"""Live wallet aggregates from the subgraph, cached in Redis."""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from redis.asyncio import Redis

from polymarket_forensics.ingestor.models import USD_SCALE
from polymarket_forensics.ingestor.subgraph import SubgraphClient, SubgraphError
from polymarket_forensics.profiler.models import AccountHistory
from polymarket_forensics.storage.database import DatabaseManager
from polymarket_forensics.storage.repos import AccountDTO, AccountRepository

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_CACHE_TTL = 300  # 5 minutes


def _ts(raw: Any) -> datetime | None:
    if raw in (None, "", "0", 0):
        return None
    return datetime.fromtimestamp(int(raw), tz=UTC)


def account_history_from_subgraph(wallet: str, raw: dict[str, Any] | None) -> AccountHistory:
    """Build an AccountHistory from a subgraph `account` entity.

    A wallet the subgraph has never seen gets an empty history (no
    first-trade date), which scorers treat as a brand-new account.
    """
    normalized = wallet.lower()
    if raw is None:
        return AccountHistory(
            wallet=normalized,
            total_trades=0,
            first_trade_date=None,
            last_trade_date=None,
            total_volume_usd=0.0,
        )

    num_trades = int(raw.get("numTrades") or 0)
    created = _ts(raw.get("creationTimestamp"))
    profit_raw = raw.get("profit")
    return AccountHistory(
        wallet=normalized,
        total_trades=num_trades,
        # The subgraph creates the account on its first fill.
        first_trade_date=created if num_trades > 0 else None,
        last_trade_date=_ts(raw.get("lastSeenTimestamp")),
        total_volume_usd=float(Decimal(str(raw.get("collateralVolume") or 0)) / USD_SCALE),
        creation_date=created,
        profit_usd=float(Decimal(str(profit_raw)) / USD_SCALE) if profit_raw is not None else None,
        data_source="subgraph",
    )


class AccountFetcher:
    """Fetches lifetime wallet aggregates.

    Results are cached in Redis for a short TTL and, when a database is
    configured, stored on the wallet's account row.
    """

    def __init__(
        self,
        subgraph: SubgraphClient,
        *,
        redis: Redis | None = None,
        db: DatabaseManager | None = None,
        cache_ttl_seconds: int = DEFAULT_ACCOUNT_CACHE_TTL,
    ) -> None:
        self._subgraph = subgraph
        self._redis = redis
        self._db = db
        self._cache_ttl = cache_ttl_seconds
        self._cache_prefix = "account_history:"

    def _cache_key(self, wallet: str) -> str:
        return f"{self._cache_prefix}{wallet.lower()}"

    async def _get_cached(self, wallet: str) -> AccountHistory | None:
        if not self._redis:
            return None
        try:
            cached = await self._redis.get(self._cache_key(wallet))
            if cached is None:
                return None
            data = json.loads(cached if isinstance(cached, str) else cached.decode())
            history = AccountHistory.from_dict(data)
        except Exception as e:
            logger.warning("Failed to parse cached account history for %s: %s", wallet, e)
            return None
        return replace(history, data_source="cache")

    async def _cache(self, history: AccountHistory) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(
                self._cache_key(history.wallet),
                json.dumps(history.to_dict()),
                ex=self._cache_ttl,
            )
        except Exception as e:
            logger.warning("Failed to cache account history for %s: %s", history.wallet, e)

    async def _persist(self, history: AccountHistory) -> None:
        if self._db is None:
            return
        async with self._db.get_async_session() as session:
            await AccountRepository(session).upsert(
                AccountDTO(
                    wallet=history.wallet,
                    creation_at=history.creation_date,
                    trade_count_total=history.total_trades,
                    collateral_volume_usd=Decimal(str(history.total_volume_usd)),
                    profit_usd=Decimal(str(history.profit_usd)) if history.profit_usd is not None else None,
                )
            )

    async def get_account_history(
        self,
        wallet: str,
        *,
        force_refresh: bool = False,
    ) -> AccountHistory | None:
        """Return the wallet's aggregates, or None when the subgraph is unavailable."""
        if not force_refresh:
            cached = await self._get_cached(wallet)
            if cached is not None:
                return cached

        try:
            raw = await self._subgraph.get_account(wallet)
        except SubgraphError as e:
            logger.warning("Account lookup failed for %s: %s", wallet, e)
            return None

        history = account_history_from_subgraph(wallet, raw)
        await self._cache(history)
        await self._persist(history)
        return history
