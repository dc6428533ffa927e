"""Cache-aware fill loading for market analysis.

Fills are immutable once indexed, so the database keeps every fill it has
seen plus the covered time range per outcome token. Only the part of a
request the cache cannot answer goes to the subgraph.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from polymarket_forensics.ingestor.models import Market, RawFill
from polymarket_forensics.ingestor.subgraph import DEFAULT_MARKET_LIMIT, SubgraphClient
from polymarket_forensics.storage.coverage import (
    DEFAULT_STALE_SECONDS,
    CoverageDecision,
    FetchReason,
    SyncScope,
    check_coverage,
)
from polymarket_forensics.storage.database import DatabaseManager
from polymarket_forensics.storage.repos import (
    FillRepository,
    MarketTokenRepository,
    SyncRecordRepository,
)

logger = logging.getLogger(__name__)

# A stale refresh can expose an older gap; one fetch per reason is enough.
MAX_COVERAGE_PASSES = 3

_FORWARD_REASONS = (FetchReason.STALE, FetchReason.PARTIAL_NEWER)


def _fetch_range(
    decision: CoverageDecision,
    *,
    after: datetime | None,
    before: datetime | None,
) -> tuple[datetime | None, datetime | None]:
    if decision.reason is FetchReason.MISSING:
        return after, before
    if decision.reason is FetchReason.STALE:
        return decision.fetch_after, before
    return decision.fetch_after, decision.fetch_before


class TradeFetcher:
    """Load raw fills for a market's outcome tokens.

    Example:
        ```python
        fetcher = TradeFetcher(subgraph, db=db)
        fills = await fetcher.get_fills_for_market(market, after=start)
        ```
    """

    def __init__(
        self,
        subgraph: SubgraphClient,
        *,
        db: DatabaseManager | None = None,
        stale_after: timedelta = timedelta(seconds=DEFAULT_STALE_SECONDS),
    ) -> None:
        self._subgraph = subgraph
        self._db = db
        self._stale_after = stale_after

    async def get_fills_for_market(
        self,
        market: Market,
        *,
        after: datetime | None = None,
        before: datetime | None = None,
        max_fills: int = DEFAULT_MARKET_LIMIT,
    ) -> list[RawFill]:
        """Return fills on every outcome token of the market, oldest first."""
        if self._db is not None:
            async with self._db.get_async_session() as session:
                await MarketTokenRepository(session).upsert_market(market)

        fills: list[RawFill] = []
        for token_id in market.token_ids:
            fills.extend(
                await self.get_fills_for_token(token_id, after=after, before=before, max_fills=max_fills)
            )
        fills.sort(key=lambda f: (f.timestamp, f.id))
        logger.info(
            "Loaded %d fills for market %s across %d tokens",
            len(fills),
            market.condition_id[:12],
            len(market.token_ids),
        )
        return fills

    async def get_fills_for_token(
        self,
        token_id: str,
        *,
        after: datetime | None = None,
        before: datetime | None = None,
        max_fills: int = DEFAULT_MARKET_LIMIT,
        now: datetime | None = None,
    ) -> list[RawFill]:
        if self._db is None:
            return await self._subgraph.get_fills_by_market(
                token_id, after=after, before=before, limit=max_fills
            )

        now = now or datetime.now(UTC)
        for _ in range(MAX_COVERAGE_PASSES):
            async with self._db.get_async_session() as session:
                record = await SyncRecordRepository(session).get(SyncScope.MARKET, token_id)
            decision = check_coverage(record, after=after, before=before, ttl=self._stale_after, now=now)
            if not decision.needs_fetch:
                break
            fetch_after, fetch_before = _fetch_range(decision, after=after, before=before)
            logger.debug(
                "Fill cache for %s: %s, fetching [%s, %s]",
                token_id[:12],
                decision.reason.value,
                fetch_after,
                fetch_before,
            )
            await self._sync_range(token_id, decision.reason, fetch_after, fetch_before, max_fills, now)

        async with self._db.get_async_session() as session:
            return await FillRepository(session).list_for_tokens([token_id], after=after, before=before)

    async def _sync_range(
        self,
        token_id: str,
        reason: FetchReason,
        fetch_after: datetime | None,
        fetch_before: datetime | None,
        max_fills: int,
        now: datetime,
    ) -> None:
        assert self._db is not None
        # Refreshes extend known coverage forward, so they page oldest first and a
        # capped page still joins the existing range without a hole.
        forward = reason in _FORWARD_REASONS and fetch_after is not None
        fills = await self._subgraph.get_fills_by_market(
            token_id,
            after=fetch_after,
            before=fetch_before,
            limit=max_fills,
            order="asc" if forward else "desc",
        )
        truncated = bool(fills) and len(fills) >= max_fills

        synced_to = min(fetch_before, now) if fetch_before is not None else now
        synced_from = fetch_after
        if truncated:
            # Bounds are inclusive: the boundary second may hold fills past the cap.
            if forward:
                assert fetch_after is not None
                newest = max(f.dt for f in fills)
                synced_to = max(fetch_after, newest - timedelta(seconds=1))
            else:
                oldest = min(f.dt for f in fills)
                synced_from = min(oldest + timedelta(seconds=1), synced_to)
        elif fetch_after is None:
            synced_from = min((f.dt for f in fills), default=synced_to)
        complete = fetch_after is None and not truncated

        async with self._db.get_async_session() as session:
            await FillRepository(session).save_fills(fills)
            await SyncRecordRepository(session).update(
                SyncScope.MARKET,
                token_id,
                synced_from=synced_from,
                synced_to=synced_to,
                synced_at=now,
                has_complete_history=complete,
            )
