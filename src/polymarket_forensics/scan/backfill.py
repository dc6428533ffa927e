"""Operational backfill of wallet trade history.

Wallets flagged during analysis are queued because their persisted fills
do not reach back to their first trade. This workflow drains the queue:
- Pages each wallet's fills from the subgraph, newest to oldest
- Saves every page before widening the wallet's sync bounds
- Marks the wallet complete only after the oldest page was reached
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from polymarket_forensics.config import Settings
from polymarket_forensics.ingestor.subgraph import SubgraphClient, SubgraphError
from polymarket_forensics.profiler.accounts import account_history_from_subgraph
from polymarket_forensics.storage.coverage import SyncScope
from polymarket_forensics.storage.database import DatabaseManager
from polymarket_forensics.storage.repos import (
    AccountDTO,
    AccountRepository,
    BackfillQueueRepository,
    FillRepository,
    SyncRecordRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_WALLETS = 10
DEFAULT_MAX_PAGES = 500


class BackfillError(RuntimeError):
    pass


@dataclass(frozen=True)
class WalletBackfillResult:
    wallet: str
    fills_saved: int
    pages: int
    complete: bool
    error: str | None = None


@dataclass(frozen=True)
class BackfillResult:
    wallets_processed: int
    wallets_completed: int
    fills_saved: int
    remaining: int
    wallets: tuple[WalletBackfillResult, ...] = ()


class BackfillRunner:
    """Drain the wallet backfill queue.

    Example:
        ```python
        runner = BackfillRunner(subgraph, db)
        result = await runner.run(max_wallets=25)
        ```
    """

    def __init__(
        self,
        subgraph: SubgraphClient,
        db: DatabaseManager,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_pages_per_wallet: int = DEFAULT_MAX_PAGES,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self._subgraph = subgraph
        self._db = db
        self._batch_size = batch_size
        self._max_pages = max_pages_per_wallet

    async def run(
        self,
        *,
        max_wallets: int = DEFAULT_MAX_WALLETS,
        max_time: timedelta | None = None,
    ) -> BackfillResult:
        async with self._db.get_async_session() as session:
            queue = await BackfillQueueRepository(session).next_batch(max_wallets)
        logger.info("Backfill: %d wallets queued for this run", len(queue))

        started = datetime.now(UTC)
        results: list[WalletBackfillResult] = []
        for item in queue:
            if max_time is not None and datetime.now(UTC) - started > max_time:
                logger.info("Backfill time limit reached after %d wallets", len(results))
                break
            results.append(await self.backfill_wallet(item.wallet))

        async with self._db.get_async_session() as session:
            remaining = await BackfillQueueRepository(session).pending_count()

        return BackfillResult(
            wallets_processed=len(results),
            wallets_completed=sum(1 for r in results if r.complete),
            fills_saved=sum(r.fills_saved for r in results),
            remaining=remaining,
            wallets=tuple(results),
        )

    async def backfill_wallet(self, wallet: str) -> WalletBackfillResult:
        """Fetch a wallet's full fill history.

        Errors are recorded on the queue entry and the wallet stays queued.
        """
        w = wallet.lower()
        async with self._db.get_async_session() as session:
            await BackfillQueueRepository(session).mark_started(w)

        saved = 0
        pages = 0
        try:
            await self._ensure_account(w)
            async with self._db.get_async_session() as session:
                record = await SyncRecordRepository(session).get(SyncScope.WALLET, w)
            cursor = record.synced_from if record is not None else None

            while True:
                if pages >= self._max_pages:
                    raise BackfillError(f"page limit {self._max_pages} reached for {w}")
                fills = await self._subgraph.get_fills_by_wallet(
                    w, before=cursor, limit=self._batch_size, order="desc"
                )
                pages += 1
                if not fills:
                    break

                now = datetime.now(UTC)
                oldest = min(f.dt for f in fills)
                newest = max(f.dt for f in fills)
                async with self._db.get_async_session() as session:
                    saved += await FillRepository(session).save_fills(fills)
                    await SyncRecordRepository(session).update(
                        SyncScope.WALLET,
                        w,
                        synced_from=oldest,
                        synced_to=newest,
                        synced_at=now,
                    )

                if len(fills) < self._batch_size:
                    break
                # Time bounds are inclusive; a full page on a single second must not repeat.
                cursor = oldest if cursor is None or oldest < cursor else cursor - timedelta(seconds=1)

            async with self._db.get_async_session() as session:
                await SyncRecordRepository(session).update(
                    SyncScope.WALLET,
                    w,
                    synced_from=None,
                    synced_to=None,
                    synced_at=datetime.now(UTC),
                    has_complete_history=True,
                )
                await BackfillQueueRepository(session).mark_completed(w)
        except (SubgraphError, BackfillError) as e:
            logger.warning("Backfill failed for %s after %d pages: %s", w, pages, e)
            async with self._db.get_async_session() as session:
                await BackfillQueueRepository(session).mark_failed(w, error=str(e))
            return WalletBackfillResult(wallet=w, fills_saved=saved, pages=pages, complete=False, error=str(e))

        logger.info("Backfilled %s: %d new fills over %d pages", w, saved, pages)
        return WalletBackfillResult(wallet=w, fills_saved=saved, pages=pages, complete=True)

    async def _ensure_account(self, wallet: str) -> None:
        async with self._db.get_async_session() as session:
            existing = await AccountRepository(session).get(wallet)
        if existing is not None:
            return
        history = account_history_from_subgraph(wallet, await self._subgraph.get_account(wallet))
        async with self._db.get_async_session() as session:
            await AccountRepository(session).upsert(
                AccountDTO(
                    wallet=wallet,
                    creation_at=history.creation_date,
                    trade_count_total=history.total_trades,
                    collateral_volume_usd=Decimal(str(history.total_volume_usd)),
                    profit_usd=Decimal(str(history.profit_usd)) if history.profit_usd is not None else None,
                )
            )


async def run_backfill(
    *,
    settings: Settings,
    max_wallets: int | None = None,
    max_time: timedelta | None = None,
) -> BackfillResult:
    settings.validate_requirements(command="backfill")
    api_key = settings.polymarket.subgraph_api_key
    assert api_key is not None

    db = DatabaseManager(settings.database.url)
    subgraph = SubgraphClient(
        api_key.get_secret_value(),
        subgraph_id=settings.polymarket.subgraph_id,
        gateway_url=settings.polymarket.subgraph_gateway_url,
        timeout=settings.polymarket.http_timeout_seconds,
        max_retries=settings.polymarket.http_max_retries,
    )
    try:
        runner = BackfillRunner(
            subgraph,
            db,
            batch_size=settings.backfill.batch_size,
            max_pages_per_wallet=settings.backfill.max_pages_per_wallet,
        )
        return await runner.run(
            max_wallets=max_wallets or settings.backfill.max_wallets,
            max_time=max_time,
        )
    finally:
        await subgraph.close()
        await db.dispose_async()
