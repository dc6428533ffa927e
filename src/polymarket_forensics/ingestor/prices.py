"""Historical outcome-token prices from the CLOB `/prices-history` endpoint.

Price series back the impact part of the trade size signal. Missing
prices only cost impact points, so every failure here degrades to an
empty series instead of raising.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import httpx

from polymarket_forensics.ingestor.models import PricePoint
from polymarket_forensics.storage.coverage import (
    DEFAULT_STALE_SECONDS,
    SyncScope,
    check_coverage,
)
from polymarket_forensics.storage.database import DatabaseManager
from polymarket_forensics.storage.repos import PriceHistoryRepository, SyncRecordRepository

logger = logging.getLogger(__name__)

DEFAULT_CLOB_HOST = "https://clob.polymarket.com"
DEFAULT_TIMEOUT_SECONDS = 30.0


class PriceFetchError(Exception):
    """Raised when the price history endpoint cannot be read."""


class PriceFetcher:
    """Fetch price series, using the database as a range-aware cache.

    Example:
        ```python
        fetcher = PriceFetcher(db=db)
        prices = await fetcher.get_prices_for_market(market.token_ids, start, end)
        ```
    """

    def __init__(
        self,
        *,
        host: str = DEFAULT_CLOB_HOST,
        db: DatabaseManager | None = None,
        stale_after: timedelta = timedelta(seconds=DEFAULT_STALE_SECONDS),
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._host = host.rstrip("/")
        self._db = db
        self._stale_after = stale_after
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _fetch(self, token_id: str, start: datetime, end: datetime) -> list[PricePoint]:
        try:
            resp = await self._client.get(
                f"{self._host}/prices-history",
                params={
                    "market": token_id,
                    "startTs": int(start.timestamp()),
                    "endTs": int(end.timestamp()),
                },
            )
        except httpx.HTTPError as e:
            raise PriceFetchError(f"Price request failed for {token_id}: {e}") from e
        if resp.status_code != 200:
            raise PriceFetchError(f"Price API HTTP {resp.status_code} for {token_id}")

        try:
            history = resp.json().get("history") or []
            points = [
                PricePoint(timestamp=datetime.fromtimestamp(int(p["t"]), tz=UTC), price=float(p["p"]))
                for p in history
            ]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise PriceFetchError(f"Malformed price history for {token_id}: {e}") from e
        points.sort(key=lambda p: p.timestamp)
        return points

    async def fetch_from_api(self, token_id: str, start: datetime, end: datetime) -> list[PricePoint]:
        """Fetch directly from the API; returns an empty list on any error."""
        try:
            return await self._fetch(token_id, start, end)
        except PriceFetchError as e:
            logger.warning("Price API error: %s", e)
            return []

    async def get_prices_for_token(
        self,
        token_id: str,
        start: datetime,
        end: datetime,
        *,
        now: datetime | None = None,
    ) -> list[PricePoint]:
        """Return prices within [start, end], serving covered ranges from the database."""
        if self._db is None:
            return await self.fetch_from_api(token_id, start, end)

        now = now or datetime.now(UTC)
        async with self._db.get_async_session() as session:
            record = await SyncRecordRepository(session).get(SyncScope.PRICE, token_id)
        decision = check_coverage(record, after=start, before=end, ttl=self._stale_after, now=now)

        if decision.needs_fetch:
            logger.debug("Price cache for %s: %s", token_id, decision.reason.value)
            try:
                points = await self._fetch(token_id, start, end)
            except PriceFetchError as e:
                logger.warning("Price API error, serving cached prices: %s", e)
            else:
                async with self._db.get_async_session() as session:
                    await PriceHistoryRepository(session).save_prices(token_id, points)
                    await SyncRecordRepository(session).update(
                        SyncScope.PRICE,
                        token_id,
                        synced_from=start,
                        synced_to=min(end, now),
                        synced_at=now,
                    )
                return points

        async with self._db.get_async_session() as session:
            return await PriceHistoryRepository(session).list_prices(token_id, after=start, before=end)

    async def get_prices_for_market(
        self,
        token_ids: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> dict[str, list[PricePoint]]:
        """Fetch every token's series concurrently; a failing token yields []."""
        results = await asyncio.gather(
            *(self.get_prices_for_token(t, start, end) for t in token_ids),
            return_exceptions=True,
        )
        prices: dict[str, list[PricePoint]] = {}
        for token_id, result in zip(token_ids, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Failed to load prices for %s: %s", token_id, result)
                prices[token_id] = []
            else:
                prices[token_id] = result
        return prices
