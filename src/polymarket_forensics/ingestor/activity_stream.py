"""Real-time activity WebSocket client (trades per market slug)."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from polymarket_forensics.ingestor.models import TradeEvent

logger = logging.getLogger(__name__)

DEFAULT_WS_URL = "wss://ws-live-data.polymarket.com"
DEFAULT_PING_INTERVAL = 30  # seconds
DEFAULT_MAX_RECONNECT_DELAY = 30  # seconds
DEFAULT_INITIAL_RECONNECT_DELAY = 1  # seconds


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class StreamStats:
    trades_received: int = 0
    reconnect_count: int = 0
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class ActivityStreamError(Exception):
    """Base exception for activity stream errors."""


class ActivityConnectionError(ActivityStreamError):
    """Raised when connection to WebSocket fails."""


TradeCallback = Callable[[TradeEvent], Awaitable[None]]
StateCallback = Callable[[ConnectionState], Awaitable[None]]


def build_subscribe_message(market_slugs: Sequence[str]) -> dict[str, Any]:
    return {
        "action": "subscribe",
        "subscriptions": [
            {
                "topic": "activity",
                "type": "trades",
                "filters": json.dumps({"market_slug": slug}),
            }
            for slug in market_slugs
        ],
    }


def backoff_delay(attempt: int, *, initial: float, maximum: float, multiplier: float = 2.0) -> float:
    return min(maximum, initial * multiplier**attempt)


class ActivityStream:
    """WebSocket client for live trades on a set of markets.

    Example:
        ```python
        async def on_trade(trade: TradeEvent) -> None:
            ...

        stream = ActivityStream(["will-x-happen"], on_trade=on_trade)
        await stream.start()
        ```
    """

    def __init__(
        self,
        market_slugs: Sequence[str],
        *,
        on_trade: TradeCallback,
        host: str = DEFAULT_WS_URL,
        on_state_change: StateCallback | None = None,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        max_reconnect_delay: int = DEFAULT_MAX_RECONNECT_DELAY,
        initial_reconnect_delay: int = DEFAULT_INITIAL_RECONNECT_DELAY,
    ) -> None:
        if not market_slugs:
            raise ValueError("at least one market slug is required")
        self._market_slugs = list(market_slugs)
        self._on_trade = on_trade
        self._host = host
        self._on_state_change = on_state_change
        self._ping_interval = ping_interval
        self._max_reconnect_delay = max_reconnect_delay
        self._initial_reconnect_delay = initial_reconnect_delay

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()

        self._ws: ClientConnection | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("Activity stream state: %s -> %s", old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    async def _connect(self) -> ClientConnection:
        await self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await websockets.connect(
                self._host,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_interval * 2,
            )
        except Exception as e:
            self._stats.last_error = str(e)
            raise ActivityConnectionError(f"Failed to connect to {self._host}: {e}") from e

        await ws.send(json.dumps(build_subscribe_message(self._market_slugs)))
        await self._set_state(ConnectionState.CONNECTED)
        self._stats.connected_since = time.time()
        logger.info("Subscribed to trades for %d markets", len(self._market_slugs))
        return ws

    async def handle_message(self, message: str) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON activity message")
            return
        if not isinstance(data, dict):
            return
        if data.get("topic") != "activity" or data.get("type") != "trades":
            logger.debug("Ignoring activity event topic=%r type=%r", data.get("topic"), data.get("type"))
            return

        payload = data.get("payload")
        if not isinstance(payload, dict):
            return
        try:
            trade = TradeEvent.from_websocket_message(payload)
        except (ValueError, TypeError, ArithmeticError) as e:
            logger.warning("Failed to parse trade event: %s", e)
            return
        if not (trade.trade_id and trade.wallet_address):
            logger.debug("Skipping trade without identifiers")
            return

        self._stats.trades_received += 1
        self._stats.last_message_time = time.time()
        await self._on_trade(trade)

    async def _listen(self, ws: ClientConnection) -> None:
        try:
            while self._running:
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=1.0)
                except TimeoutError:
                    continue
                if isinstance(message, str):
                    await self.handle_message(message)
        except websockets.ConnectionClosed as e:
            logger.warning("Activity stream connection closed: %s", e)
            raise

    async def start(self) -> None:
        if self._running:
            raise RuntimeError("Activity stream already running")
        self._running = True
        self._stop_event = asyncio.Event()

        attempt = 0
        while self._running and not self._stop_event.is_set():
            try:
                self._ws = await self._connect()
                attempt = 0
                await self._listen(self._ws)
            except Exception as e:
                if not self._running:
                    break
                self._stats.reconnect_count += 1
                self._stats.last_error = str(e)
                await self._set_state(ConnectionState.RECONNECTING)
                delay = backoff_delay(
                    attempt,
                    initial=self._initial_reconnect_delay,
                    maximum=self._max_reconnect_delay,
                )
                attempt += 1
                logger.warning("Activity stream error: %s. Reconnecting in %.1fs", e, delay)
                await asyncio.sleep(delay)
            finally:
                with contextlib.suppress(Exception):
                    if self._ws:
                        await self._ws.close()
                self._ws = None

        await self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
