"""Async GraphQL client for the Polymarket orderbook subgraph.

The subgraph indexes every `OrderFilled` event on the exchange contracts
and keeps per-account aggregates. It is the source of raw fills for both
market-wide analysis and per-wallet history backfill.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Literal

import httpx

from polymarket_forensics.ingestor.models import Position, RawFill

logger = logging.getLogger(__name__)

DEFAULT_SUBGRAPH_ID = "81Dm16JjuFSrqz813HysXoUPvzTwE7fsfPk2RTf66nyC"
DEFAULT_GATEWAY_URL = "https://gateway.thegraph.com/api/subgraphs/id"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 1.0

# The Graph caps `first` at 1000 per request.
PAGE_SIZE = 1000
DEFAULT_MARKET_LIMIT = 10_000
DEFAULT_WALLET_LIMIT = 100
POSITIONS_LIMIT = 100

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)
RETRYABLE_GRAPHQL_ERRORS = ("bad indexers", "Timeout")

OrderDirection = Literal["asc", "desc"]

_FILL_FIELDS = """
    id
    transactionHash
    timestamp
    maker { id }
    taker { id }
    market { id }
    side
    size
    price
"""

_ACCOUNT_QUERY = """
query($id: ID!) {
  account(id: $id) {
    id
    creationTimestamp
    lastSeenTimestamp
    collateralVolume
    numTrades
    profit
  }
}
"""

_POSITIONS_QUERY = """
query($user: String!, $first: Int!) {
  marketPositions(
    first: $first,
    where: { user_: { id: $user } }
    orderBy: valueBought
    orderDirection: desc
  ) {
    id
    market { id }
    netQuantity
    netValue
  }
}
"""


class SubgraphError(Exception):
    """Raised when the subgraph cannot answer a query."""


class _RetryableSubgraphError(SubgraphError):
    pass


def _time_filter(after: datetime | None, before: datetime | None) -> str:
    parts: list[str] = []
    if after is not None:
        parts.append(f'timestamp_gte: "{int(after.timestamp())}"')
    if before is not None:
        parts.append(f'timestamp_lte: "{int(before.timestamp())}"')
    return (", " + ", ".join(parts)) if parts else ""


def _fills_query(where: str, variables: str, order: OrderDirection, *, with_skip: bool) -> str:
    skip = ", skip: $skip" if with_skip else ""
    return f"""
query({variables}) {{
  enrichedOrderFilleds(
    first: $first{skip},
    where: {{ {where} }}
    orderBy: timestamp
    orderDirection: {order}
  ) {{{_FILL_FIELDS}  }}
}}
"""


class SubgraphClient:
    """Query fills, accounts and positions from the subgraph.

    Example:
        ```python
        async with SubgraphClient(api_key) as subgraph:
            fills = await subgraph.get_fills_by_market(token_id, after=start)
        ```
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        subgraph_id: str = DEFAULT_SUBGRAPH_ID,
        gateway_url: str = DEFAULT_GATEWAY_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: The Graph gateway API key.
            subgraph_id: Deployment id of the orderbook subgraph.
            gateway_url: Gateway base URL.
            timeout: Per-request timeout in seconds.
            max_retries: Retries after the first attempt for transient failures.
            retry_base_delay: Base backoff delay (doubles with each retry).
            http_client: Optional pre-built client (used by tests).
        """
        self._endpoint = f"{gateway_url.rstrip('/')}/{subgraph_id}"
        self._api_key = api_key
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def __aenter__(self) -> SubgraphClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            resp = await self._client.post(
                self._endpoint,
                json={"query": query, "variables": variables},
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise _RetryableSubgraphError(f"Subgraph request failed: {e}") from e

        if resp.status_code in RETRY_STATUS_CODES:
            raise _RetryableSubgraphError(f"Subgraph HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise SubgraphError(f"Subgraph HTTP {resp.status_code}: {resp.text[:200]}")

        payload = resp.json()
        errors = payload.get("errors") or []
        if errors:
            message = str(errors[0].get("message", errors[0]))
            if any(marker in message for marker in RETRYABLE_GRAPHQL_ERRORS):
                raise _RetryableSubgraphError(message)
            raise SubgraphError(message)
        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    async def query(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a GraphQL query with retries on transient failures.

        Raises:
            SubgraphError: On a non-retryable error or once retries are spent.
        """
        last_error: SubgraphError | None = None
        for attempt in range(self._max_retries + 1):
            try:
                return await self._post(query, variables or {})
            except _RetryableSubgraphError as e:
                last_error = e
                if attempt == self._max_retries:
                    break
                delay = self._retry_base_delay * (2**attempt)
                logger.warning(
                    "Subgraph attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                    attempt + 1,
                    self._max_retries + 1,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
        raise SubgraphError(
            f"All {self._max_retries + 1} subgraph attempts failed: {last_error}"
        ) from last_error

    async def get_fills_by_market(
        self,
        token_id: str,
        *,
        after: datetime | None = None,
        before: datetime | None = None,
        limit: int = DEFAULT_MARKET_LIMIT,
        order: OrderDirection = "desc",
    ) -> list[RawFill]:
        """Page through every fill on one outcome token within [after, before]."""
        query = _fills_query(
            f"market: $market{_time_filter(after, before)}",
            "$market: String!, $first: Int!, $skip: Int!",
            order,
            with_skip=True,
        )
        fills: list[RawFill] = []
        skip = 0
        while len(fills) < limit:
            data = await self.query(
                query, {"market": token_id.lower(), "first": PAGE_SIZE, "skip": skip}
            )
            page = data.get("enrichedOrderFilleds") or []
            if not page:
                break
            fills.extend(RawFill.from_subgraph(raw) for raw in page)
            skip += PAGE_SIZE
            if len(page) < PAGE_SIZE:
                break
            if len(fills) % (PAGE_SIZE * 2) == 0:
                logger.info("Fetched %d fills for token %s...", len(fills), token_id[:12])
        return fills[:limit]

    async def get_fills_by_wallet(
        self,
        wallet: str,
        *,
        after: datetime | None = None,
        before: datetime | None = None,
        limit: int = DEFAULT_WALLET_LIMIT,
        order: OrderDirection = "desc",
    ) -> list[RawFill]:
        """Return up to `limit` fills where the wallet is maker or taker."""
        w = wallet.lower()
        time_filter = _time_filter(after, before)
        variables = {"wallet": w, "first": min(limit, PAGE_SIZE)}
        maker_query = _fills_query(
            f"maker_: {{ id: $wallet }}{time_filter}",
            "$wallet: String!, $first: Int!",
            order,
            with_skip=False,
        )
        taker_query = _fills_query(
            f"taker_: {{ id: $wallet }}{time_filter}",
            "$wallet: String!, $first: Int!",
            order,
            with_skip=False,
        )
        maker_data, taker_data = await asyncio.gather(
            self.query(maker_query, variables),
            self.query(taker_query, variables),
        )

        by_id: dict[str, RawFill] = {}
        for raw in (maker_data.get("enrichedOrderFilleds") or []) + (
            taker_data.get("enrichedOrderFilleds") or []
        ):
            fill = RawFill.from_subgraph(raw)
            by_id[fill.id] = fill

        fills = sorted(by_id.values(), key=lambda f: (f.timestamp, f.id), reverse=order == "desc")
        return fills[:limit]

    async def get_account(self, wallet: str) -> dict[str, Any] | None:
        """Return the raw account entity, or None if the wallet never traded."""
        data = await self.query(_ACCOUNT_QUERY, {"id": wallet.lower()})
        account = data.get("account")
        return account if isinstance(account, dict) else None

    async def get_positions(self, wallet: str) -> list[Position]:
        data = await self.query(_POSITIONS_QUERY, {"user": wallet.lower(), "first": POSITIONS_LIMIT})
        return [Position.from_subgraph(raw) for raw in data.get("marketPositions") or []]
