"""Live monitor pipeline.

Wires the activity stream to the evaluator and reports alerts:

    Activity WebSocket -> MonitorEvaluator -> alert sink (stdout / JSONL)
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from redis.asyncio import Redis

from polymarket_forensics.alerter.formatter import format_alert
from polymarket_forensics.config import Settings, get_settings
from polymarket_forensics.ingestor.activity_stream import ActivityStream
from polymarket_forensics.ingestor.models import TradeEvent
from polymarket_forensics.ingestor.subgraph import SubgraphClient
from polymarket_forensics.monitor.evaluator import EvaluatedTrade, MonitorEvaluator
from polymarket_forensics.profiler.accounts import AccountFetcher
from polymarket_forensics.scan.runner import build_classifier, build_scorer

logger = logging.getLogger(__name__)

AlertCallback = Callable[[EvaluatedTrade], Awaitable[None]]


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    trades_received: int = 0
    trades_evaluated: int = 0
    alerts_sent: int = 0
    duplicates_suppressed: int = 0
    errors: int = 0
    last_trade_time: datetime | None = None
    last_error: str | None = None


def jsonl_alert_sink(path: Path) -> AlertCallback:
    """Append each alert as one JSON line."""

    async def _write(result: EvaluatedTrade) -> None:
        line = json.dumps({"type": "alert", **result.to_dict()}, default=str) + "\n"
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(line)

    return _write


async def print_alert(result: EvaluatedTrade) -> None:
    print(format_alert(result.scored, market_slug=result.event.market_slug), flush=True)


class MonitorPipeline:
    """Watch markets live and alert on suspicious trades.

    Example:
        ```python
        pipeline = MonitorPipeline(["will-x-happen"], settings)
        try:
            await pipeline.run()
        except KeyboardInterrupt:
            pass
        ```
    """

    def __init__(
        self,
        market_slugs: Sequence[str],
        settings: Settings | None = None,
        *,
        alert_sinks: Sequence[AlertCallback] | None = None,
    ) -> None:
        if not market_slugs:
            raise ValueError("at least one market slug is required")
        self._settings = settings or get_settings()
        self._market_slugs = list(market_slugs)

        sinks = list(alert_sinks) if alert_sinks is not None else [print_alert]
        if alert_sinks is None and self._settings.monitor.alerts_path is not None:
            sinks.append(jsonl_alert_sink(self._settings.monitor.alerts_path))
        self._alert_sinks = sinks

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._subgraph: SubgraphClient | None = None
        self._evaluator: MonitorEvaluator | None = None
        self._stream: ActivityStream | None = None

        self._stop_event: asyncio.Event | None = None
        self._stream_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def stats(self) -> PipelineStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == PipelineState.RUNNING

    def set_evaluator(self, evaluator: MonitorEvaluator) -> None:
        """Use a pre-built evaluator instead of one built from settings."""
        self._evaluator = evaluator

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting monitor for %d markets...", len(self._market_slugs))

        try:
            self._initialize_components()
            assert self._stream is not None
            self._stream_task = asyncio.create_task(self._stream.start(), name="activity_stream")
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Monitor started")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start monitor: %s", e)
            await self._cleanup()
            raise

    def _initialize_components(self) -> None:
        s = self._settings
        if self._evaluator is None:
            s.validate_requirements(command="monitor")
            api_key = s.polymarket.subgraph_api_key
            assert api_key is not None
            if s.redis.url:
                self._redis = Redis.from_url(s.redis.url)
            self._subgraph = SubgraphClient(
                api_key.get_secret_value(),
                subgraph_id=s.polymarket.subgraph_id,
                gateway_url=s.polymarket.subgraph_gateway_url,
                timeout=s.polymarket.http_timeout_seconds,
                max_retries=s.polymarket.http_max_retries,
            )
            self._evaluator = MonitorEvaluator(
                build_scorer(s),
                AccountFetcher(
                    self._subgraph,
                    redis=self._redis,
                    cache_ttl_seconds=s.cache.account_ttl_seconds,
                ),
                redis=self._redis,
                classifier=build_classifier(s),
                min_trade_usd=s.monitor.min_trade_usd,
                dedup_window_seconds=s.cache.dedup_window_seconds,
            )

        self._stream = ActivityStream(
            self._market_slugs,
            on_trade=self._on_trade,
            host=s.polymarket.activity_ws_url,
            max_reconnect_delay=s.monitor.max_reconnect_delay_seconds,
        )

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping monitor...")
        if self._stop_event:
            self._stop_event.set()

        if self._stream:
            await self._stream.stop()
        if self._stream_task:
            try:
                await asyncio.wait_for(self._stream_task, timeout=5.0)
            except (TimeoutError, asyncio.CancelledError):
                self._stream_task.cancel()
            self._stream_task = None

        await self._cleanup()
        self._state = PipelineState.STOPPED
        logger.info(
            "Monitor stopped: %d trades, %d evaluated, %d alerts",
            self._stats.trades_received,
            self._stats.trades_evaluated,
            self._stats.alerts_sent,
        )

    async def _cleanup(self) -> None:
        if self._subgraph:
            await self._subgraph.close()
            self._subgraph = None
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _on_trade(self, trade: TradeEvent) -> None:
        """Evaluate one live trade and dispatch an alert if warranted."""
        self._stats.trades_received += 1
        self._stats.last_trade_time = datetime.now(UTC)
        if self._evaluator is None or not self._evaluator.should_evaluate(trade):
            return

        try:
            result = await self._evaluator.evaluate(trade)
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.exception("Error evaluating trade %s: %s", trade.trade_id, e)
            return

        self._stats.trades_evaluated += 1
        if result.is_duplicate:
            self._stats.duplicates_suppressed += 1
        if not result.should_alert:
            return

        self._stats.alerts_sent += 1
        for sink in self._alert_sinks:
            try:
                await sink(result)
            except Exception as e:
                self._stats.errors += 1
                logger.error("Alert sink failed: %s", e)

    async def run(self) -> None:
        """Start the pipeline and run until interrupted."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> MonitorPipeline:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()
