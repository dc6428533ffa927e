"""Tests for the subgraph client."""

import json
from datetime import UTC, datetime

import httpx
import pytest

from polymarket_forensics.ingestor.subgraph import PAGE_SIZE, SubgraphClient, SubgraphError


def _raw_fill(i: int, *, ts: int = 1717243200, maker: str = "0xmaker", taker: str = "0xtaker") -> dict:
    return {
        "id": f"fill-{i}",
        "transactionHash": f"0xtx{i}",
        "timestamp": str(ts + i),
        "maker": {"id": maker},
        "taker": {"id": taker},
        "market": {"id": "111"},
        "side": "Buy",
        "size": "1000000",
        "price": "0.5",
    }


def _client(handler, **kwargs) -> SubgraphClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SubgraphClient("test-key", http_client=http, retry_base_delay=0, **kwargs)


class TestQuery:
    async def test_sends_bearer_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"account": None}})

        client = _client(handler)
        assert await client.get_account("0xABC") is None

        assert seen[0].headers["Authorization"] == "Bearer test-key"
        assert json.loads(seen[0].content)["variables"] == {"id": "0xabc"}

    async def test_retries_transient_status(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                return httpx.Response(503)
            return httpx.Response(200, json={"data": {"account": {"id": "0xabc", "numTrades": "3"}}})

        account = await _client(handler).get_account("0xabc")

        assert calls == 2
        assert account == {"id": "0xabc", "numTrades": "3"}

    async def test_gives_up_after_retries(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(429)

        with pytest.raises(SubgraphError):
            await _client(handler, max_retries=1).get_account("0xabc")
        assert calls == 2

    async def test_graphql_error_is_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json={"errors": [{"message": "Unknown field"}]})

        with pytest.raises(SubgraphError, match="Unknown field"):
            await _client(handler).get_account("0xabc")
        assert calls == 1

    async def test_indexer_error_is_retried(self) -> None:
        responses = [
            httpx.Response(200, json={"errors": [{"message": "bad indexers: all busy"}]}),
            httpx.Response(200, json={"data": {"account": None}}),
        ]

        await _client(lambda request: responses.pop(0)).get_account("0xabc")

        assert responses == []

    async def test_client_error_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="unauthorized")

        with pytest.raises(SubgraphError, match="401"):
            await _client(handler).get_account("0xabc")


class TestFillsByMarket:
    async def test_pages_until_short_page(self) -> None:
        skips: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            variables = json.loads(request.content)["variables"]
            skips.append(variables["skip"])
            count = PAGE_SIZE if variables["skip"] == 0 else 5
            page = [_raw_fill(variables["skip"] + i) for i in range(count)]
            return httpx.Response(200, json={"data": {"enrichedOrderFilleds": page}})

        fills = await _client(handler).get_fills_by_market("111")

        assert skips == [0, PAGE_SIZE]
        assert len(fills) == PAGE_SIZE + 5

    async def test_limit_truncates(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            page = [_raw_fill(i) for i in range(PAGE_SIZE)]
            return httpx.Response(200, json={"data": {"enrichedOrderFilleds": page}})

        fills = await _client(handler).get_fills_by_market("111", limit=10)

        assert len(fills) == 10

    async def test_time_bounds_are_inclusive(self) -> None:
        queries: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            queries.append(json.loads(request.content)["query"])
            return httpx.Response(200, json={"data": {"enrichedOrderFilleds": []}})

        await _client(handler).get_fills_by_market(
            "111",
            after=datetime(2024, 6, 1, tzinfo=UTC),
            before=datetime(2024, 6, 2, tzinfo=UTC),
        )

        assert 'timestamp_gte: "1717200000"' in queries[0]
        assert 'timestamp_lte: "1717286400"' in queries[0]


class TestFillsByWallet:
    async def test_merges_maker_and_taker_fills(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            query = json.loads(request.content)["query"]
            if "maker_" in query:
                page = [_raw_fill(1, maker="0xw"), _raw_fill(3, maker="0xw")]
            else:
                page = [_raw_fill(2, taker="0xw"), _raw_fill(3, maker="0xw")]
            return httpx.Response(200, json={"data": {"enrichedOrderFilleds": page}})

        fills = await _client(handler).get_fills_by_wallet("0xW", limit=10)

        assert [f.id for f in fills] == ["fill-3", "fill-2", "fill-1"]

    async def test_ascending_and_limited(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            page = [_raw_fill(i) for i in range(5)]
            return httpx.Response(200, json={"data": {"enrichedOrderFilleds": page}})

        fills = await _client(handler).get_fills_by_wallet("0xw", limit=2, order="asc")

        assert [f.id for f in fills] == ["fill-0", "fill-1"]


class TestPositions:
    async def test_get_positions(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"data": {"marketPositions": [{"market": {"id": "222"}, "netQuantity": "7"}]}},
            )

        [position] = await _client(handler).get_positions("0xw")

        assert position.market_token == "222"
