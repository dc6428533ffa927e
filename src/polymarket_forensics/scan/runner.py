"""Historical market analysis runner.

This module implements the `analyze <condition_id>` command:
- Market resolution and cache-aware fill fetch per outcome token
- Aggregation of fills into per-wallet trades
- Two-pass scoring with a bounded account lookup budget
- Point-in-time wallet state when history is persisted
- Deterministic JSONL report output
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from pathlib import Path

from redis.asyncio import Redis

from polymarket_forensics.config import Settings
from polymarket_forensics.detector.account_history import AccountHistorySignal
from polymarket_forensics.detector.classifier import TradeClassifier
from polymarket_forensics.detector.conviction import ConvictionSignal
from polymarket_forensics.detector.models import ScoredTrade, ScoringContext
from polymarket_forensics.detector.scorer import SignalAggregator, TradeScorer
from polymarket_forensics.detector.trade_size import TradeSizeSignal, find_price_impact
from polymarket_forensics.ingestor.clob_client import ClobClient, ClobClientError, RetryError
from polymarket_forensics.ingestor.fills import (
    aggregate_fills,
    aggregate_fills_per_wallet,
    build_token_to_outcome,
)
from polymarket_forensics.ingestor.models import AggregatedTrade, Market, Outcome, Position, PricePoint
from polymarket_forensics.ingestor.prices import PriceFetcher
from polymarket_forensics.ingestor.subgraph import DEFAULT_MARKET_LIMIT, SubgraphClient, SubgraphError
from polymarket_forensics.ingestor.trades import TradeFetcher
from polymarket_forensics.profiler.accounts import AccountFetcher
from polymarket_forensics.profiler.models import AccountHistory, HistoricalState
from polymarket_forensics.profiler.state import PointInTimeResolver
from polymarket_forensics.storage.coverage import SyncScope
from polymarket_forensics.storage.database import DatabaseManager
from polymarket_forensics.storage.repos import BackfillQueueRepository, SyncRecordRepository

logger = logging.getLogger(__name__)

DEFAULT_QUICK_SCORE_GATE = 60
DEFAULT_MAX_ACCOUNT_LOOKUPS = 50
DEFAULT_TOP_N = 10
PROGRESS_EVERY = 100


class AnalyzeError(RuntimeError):
    pass


@dataclass(frozen=True)
class AnalysisReport:
    market: Market
    total_trades: int
    analyzed_trades: int
    suspicious_trades: tuple[ScoredTrade, ...]
    analyzed_at: datetime
    account_lookups: int = 0
    backfill_queued: tuple[str, ...] = field(default_factory=tuple)
    target_wallet: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "condition_id": self.market.condition_id,
            "question": self.market.question,
            "winning_outcome": self.market.winning_outcome,
            "total_trades": self.total_trades,
            "analyzed_trades": self.analyzed_trades,
            "suspicious_count": len(self.suspicious_trades),
            "account_lookups": self.account_lookups,
            "backfill_queued": list(self.backfill_queued),
            "target_wallet": self.target_wallet,
            "analyzed_at": self.analyzed_at.isoformat(),
        }


def _json_default(x: object) -> str:
    if isinstance(x, (datetime,)):
        return x.isoformat()
    return str(x)


def write_report(report: AnalysisReport, output_path: Path) -> int:
    """Write a summary line followed by one line per suspicious trade."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        f.write(json.dumps({"type": "summary", **report.to_dict()}, default=_json_default) + "\n")
        for rank, scored in enumerate(report.suspicious_trades, start=1):
            rec = {"type": "trade", "rank": rank, **scored.to_dict()}
            f.write(json.dumps(rec, default=_json_default) + "\n")
    return len(report.suspicious_trades)


def select_outcome(market: Market, requested: Outcome | None) -> Outcome | None:
    """Pick the side to analyze: explicit choice, else the winner, else both."""
    if requested is not None:
        return requested
    return market.winning_outcome


def build_scorer(settings: Settings) -> TradeScorer:
    return TradeScorer(
        [
            TradeSizeSignal(
                weight=settings.weights.trade_size,
                min_absolute_usd=settings.trade_size.min_absolute_usd,
                min_impact_percent=settings.trade_size.min_impact_percent,
                impact_window_minutes=settings.trade_size.impact_window_minutes,
            ),
            AccountHistorySignal(
                weight=settings.weights.account_history,
                max_lifetime_trades=settings.account_history.max_lifetime_trades,
                max_account_age_days=settings.account_history.max_account_age_days,
                min_dormancy_days=settings.account_history.min_dormancy_days,
            ),
            ConvictionSignal(weight=settings.weights.conviction),
        ],
        aggregator=SignalAggregator(alert_threshold=settings.scoring.alert_threshold),
    )


def build_classifier(settings: Settings) -> TradeClassifier:
    c = settings.classifier
    return TradeClassifier(
        whale_usd=c.whale_usd,
        sniper_min_score=c.sniper_min_score,
        sniper_min_impact_percent=c.sniper_min_impact_percent,
        dump_min_impact_percent=c.dump_min_impact_percent,
        early_window_hours=c.early_window_hours,
    )


class AnalyzeRunner:
    """Score every trade on one market and keep the most suspicious ones.

    Account lookups are the expensive part of a run. Each trade is first
    scored assuming the worst about its wallet; only trades whose quick
    score clears the gate spend one of the budgeted lookups. Every other
    trade is scored with the lookup marked as skipped.

    Example:
        ```python
        runner = AnalyzeRunner(
            clob=clob,
            trade_fetcher=TradeFetcher(subgraph, db=db),
            price_fetcher=PriceFetcher(db=db),
            account_fetcher=AccountFetcher(subgraph),
        )
        report = await runner.run("0xabc...")
        ```
    """

    def __init__(
        self,
        *,
        clob: ClobClient,
        trade_fetcher: TradeFetcher,
        price_fetcher: PriceFetcher,
        account_fetcher: AccountFetcher,
        subgraph: SubgraphClient | None = None,
        scorer: TradeScorer | None = None,
        classifier: TradeClassifier | None = None,
        db: DatabaseManager | None = None,
        impact_window: timedelta = timedelta(minutes=5),
        quick_score_gate: int = DEFAULT_QUICK_SCORE_GATE,
        max_account_lookups: int = DEFAULT_MAX_ACCOUNT_LOOKUPS,
        top_n: int = DEFAULT_TOP_N,
    ) -> None:
        self._clob = clob
        self._trade_fetcher = trade_fetcher
        self._price_fetcher = price_fetcher
        self._account_fetcher = account_fetcher
        self._subgraph = subgraph
        self._scorer = scorer or TradeScorer()
        self._classifier = classifier or TradeClassifier()
        self._db = db
        self._resolver = PointInTimeResolver(db) if db is not None else None
        self._impact_window = impact_window
        self._quick_score_gate = quick_score_gate
        self._max_account_lookups = max_account_lookups
        self._top_n = top_n

    async def _load_market(self, condition_id: str) -> Market:
        try:
            return await asyncio.to_thread(self._clob.get_market, condition_id)
        except (ClobClientError, RetryError) as e:
            raise AnalyzeError(f"Could not resolve market {condition_id}: {e}") from e

    async def _wallet_positions(self, wallet: str) -> list[Position]:
        if self._subgraph is None:
            return []
        try:
            return await self._subgraph.get_positions(wallet)
        except SubgraphError as e:
            logger.warning("Position lookup failed for %s: %s", wallet, e)
            return []

    async def _build_trades(
        self,
        market: Market,
        *,
        after: datetime | None,
        before: datetime | None,
        wallet: str | None,
        max_trades: int | None,
    ) -> list[AggregatedTrade]:
        fills = await self._trade_fetcher.get_fills_for_market(
            market, after=after, before=before, max_fills=max_trades or DEFAULT_MARKET_LIMIT
        )
        if not fills:
            return []

        token_to_outcome = build_token_to_outcome(market)
        if wallet is None:
            return aggregate_fills_per_wallet(fills, token_to_outcome)

        w = wallet.lower()
        wallet_fills = [f for f in fills if w in (f.maker.lower(), f.taker.lower())]
        positions = await self._wallet_positions(w) if wallet_fills else []
        return aggregate_fills(wallet_fills, w, token_to_outcome, positions)

    async def _load_prices(
        self,
        market: Market,
        trades: list[AggregatedTrade],
    ) -> dict[Outcome, tuple[PricePoint, ...]]:
        outcomes = sorted({t.outcome for t in trades})
        token_by_outcome: dict[Outcome, str] = {}
        for token_id, outcome in build_token_to_outcome(market).items():
            token_by_outcome.setdefault(outcome, token_id)
        wanted = {o: token_by_outcome[o] for o in outcomes if o in token_by_outcome}
        if not wanted:
            return {}

        start = min(t.timestamp for t in trades) - self._impact_window
        end = max(t.timestamp for t in trades) + self._impact_window
        by_token = await self._price_fetcher.get_prices_for_market(list(wanted.values()), start, end)
        return {o: tuple(by_token.get(token_id, [])) for o, token_id in wanted.items()}

    async def _enqueue_backfill(self, suspicious: list[ScoredTrade]) -> tuple[str, ...]:
        if self._db is None or not suspicious:
            return ()
        queued: list[str] = []
        async with self._db.get_async_session() as session:
            sync_repo = SyncRecordRepository(session)
            queue_repo = BackfillQueueRepository(session)
            for scored in suspicious:
                if scored.wallet in queued:
                    continue
                record = await sync_repo.get(SyncScope.WALLET, scored.wallet)
                if record is not None and record.has_complete_history:
                    continue
                await queue_repo.enqueue(scored.wallet, priority=scored.score.total)
                queued.append(scored.wallet)
        if queued:
            logger.info("Queued %d wallets for history backfill", len(queued))
        return tuple(queued)

    async def run(
        self,
        condition_id: str,
        *,
        after: datetime | None = None,
        before: datetime | None = None,
        outcome: Outcome | None = None,
        wallet: str | None = None,
        max_trades: int | None = None,
    ) -> AnalysisReport:
        if after is not None and before is not None and after > before:
            raise AnalyzeError("--after must not be later than --before")

        market = await self._load_market(condition_id)
        all_trades = await self._build_trades(
            market, after=after, before=before, wallet=wallet, max_trades=max_trades
        )

        side = select_outcome(market, outcome)
        trades = [t for t in all_trades if side is None or t.outcome == side]
        logger.info(
            "Market %s: %d trades, analyzing %d (%s)",
            condition_id[:12],
            len(all_trades),
            len(trades),
            side or "all outcomes",
        )
        if not trades:
            return AnalysisReport(
                market=market,
                total_trades=len(all_trades),
                analyzed_trades=0,
                suspicious_trades=(),
                analyzed_at=datetime.now(UTC),
                target_wallet=wallet.lower() if wallet else None,
            )

        prices = await self._load_prices(market, trades)
        states: dict[tuple[str, str], HistoricalState] = {}
        if self._resolver is not None:
            states = await self._resolver.states_for_trades(trades)

        histories: dict[str, AccountHistory | None] = {}
        lookups = 0
        suspicious: list[ScoredTrade] = []

        for processed, trade in enumerate(trades, start=1):
            if processed % PROGRESS_EVERY == 0:
                logger.info(
                    "Progress: %d/%d (%d account lookups)", processed, len(trades), lookups
                )
            trade_prices = prices.get(trade.outcome, ())
            state = states.get((trade.wallet, trade.transaction_hash))

            # Without account data the history signal reports its maximum.
            quick = self._scorer.score(trade, ScoringContext(prices=trade_prices))

            history: AccountHistory | None = None
            skipped = True
            if trade.wallet in histories:
                history = histories[trade.wallet]
                skipped = history is None
            elif quick.total > self._quick_score_gate and lookups < self._max_account_lookups:
                history = await self._account_fetcher.get_account_history(trade.wallet)
                histories[trade.wallet] = history
                lookups += 1
                skipped = history is None

            final = self._scorer.score(
                trade,
                ScoringContext(
                    account_history=history,
                    account_lookup_skipped=skipped,
                    historical_state=state,
                    prices=trade_prices,
                ),
            )
            if not final.is_alert:
                continue

            scored = ScoredTrade(
                trade=trade,
                score=final,
                account_history=history,
                price_impact=find_price_impact(trade, trade_prices, self._impact_window),
            )
            tags = self._classifier.classify(scored, market.created_at)
            suspicious.append(replace(scored, classifications=tuple(tags)))

        logger.info("Scoring complete. Found %d suspicious trades", len(suspicious))
        suspicious.sort(key=lambda s: (-s.score.total, s.trade.timestamp, s.trade.transaction_hash))
        top = suspicious[: self._top_n]
        queued = await self._enqueue_backfill(top)

        return AnalysisReport(
            market=market,
            total_trades=len(all_trades),
            analyzed_trades=len(trades),
            suspicious_trades=tuple(top),
            analyzed_at=datetime.now(UTC),
            account_lookups=lookups,
            backfill_queued=queued,
            target_wallet=wallet.lower() if wallet else None,
        )


async def run_analyze(
    *,
    settings: Settings,
    condition_id: str,
    after: datetime | None = None,
    before: datetime | None = None,
    outcome: Outcome | None = None,
    wallet: str | None = None,
    max_trades: int | None = None,
    output_path: Path | None = None,
) -> AnalysisReport:
    settings.validate_requirements(command="analyze")
    if not condition_id.strip():
        raise AnalyzeError("condition id is required")

    api_key = settings.polymarket.subgraph_api_key
    assert api_key is not None
    redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
    db = DatabaseManager(settings.database.url)
    stale_after = timedelta(seconds=settings.cache.coverage_ttl_seconds)
    subgraph = SubgraphClient(
        api_key.get_secret_value(),
        subgraph_id=settings.polymarket.subgraph_id,
        gateway_url=settings.polymarket.subgraph_gateway_url,
        timeout=settings.polymarket.http_timeout_seconds,
        max_retries=settings.polymarket.http_max_retries,
    )
    price_fetcher = PriceFetcher(
        host=settings.polymarket.clob_host,
        db=db,
        stale_after=stale_after,
        timeout=settings.polymarket.http_timeout_seconds,
    )
    try:
        runner = AnalyzeRunner(
            clob=ClobClient(host=settings.polymarket.clob_host, chain_id=settings.polymarket.clob_chain_id),
            trade_fetcher=TradeFetcher(subgraph, db=db, stale_after=stale_after),
            price_fetcher=price_fetcher,
            account_fetcher=AccountFetcher(
                subgraph,
                redis=redis,
                db=db,
                cache_ttl_seconds=settings.cache.account_ttl_seconds,
            ),
            subgraph=subgraph,
            scorer=build_scorer(settings),
            classifier=build_classifier(settings),
            db=db,
            impact_window=timedelta(minutes=settings.trade_size.impact_window_minutes),
            quick_score_gate=settings.scoring.quick_score_gate,
            max_account_lookups=settings.scoring.max_account_lookups,
            top_n=settings.scoring.top_n,
        )
        report = await runner.run(
            condition_id,
            after=after,
            before=before,
            outcome=outcome,
            wallet=wallet,
            max_trades=max_trades,
        )
        if output_path is not None:
            written = write_report(report, output_path)
            logger.info("Wrote %d suspicious trades to %s", written, output_path)
        return report
    finally:
        await price_fetcher.close()
        await subgraph.close()
        if redis is not None:
            await redis.aclose()
        await db.dispose_async()
