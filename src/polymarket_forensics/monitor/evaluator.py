"""Live trade evaluation for the monitor command.

Trades from the activity stream are scored with the same signals as the
historical analysis. Account lookups go through the Redis-backed
`AccountFetcher` cache so a busy wallet costs one subgraph query per TTL,
and alerts for the same wallet/market pair are suppressed for a window.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime

from redis.asyncio import Redis

from polymarket_forensics.detector.classifier import TradeClassifier
from polymarket_forensics.detector.models import ScoredTrade, ScoringContext
from polymarket_forensics.detector.scorer import TradeScorer
from polymarket_forensics.ingestor.models import TradeEvent
from polymarket_forensics.profiler.accounts import AccountFetcher

logger = logging.getLogger(__name__)

DEFAULT_MIN_TRADE_USD = 5000.0
DEFAULT_DEDUP_WINDOW_SECONDS = 3600  # 1 hour
DEFAULT_REDIS_KEY_PREFIX = "polymarket:dedup:"


@dataclass(frozen=True)
class EvaluatedTrade:
    """A live trade with its score and alert decision."""

    event: TradeEvent
    scored: ScoredTrade
    should_alert: bool
    is_duplicate: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "market_id": self.event.market_id,
            "market_slug": self.event.market_slug,
            "should_alert": self.should_alert,
            "is_duplicate": self.is_duplicate,
            **self.scored.to_dict(),
        }


class MonitorEvaluator:
    """Score live trades and decide which ones alert.

    Example:
        ```python
        evaluator = MonitorEvaluator(scorer, account_fetcher, redis=redis)
        if evaluator.should_evaluate(event):
            result = await evaluator.evaluate(event)
            if result.should_alert:
                ...
        ```
    """

    def __init__(
        self,
        scorer: TradeScorer,
        account_fetcher: AccountFetcher,
        *,
        redis: Redis | None = None,
        classifier: TradeClassifier | None = None,
        min_trade_usd: float = DEFAULT_MIN_TRADE_USD,
        dedup_window_seconds: int = DEFAULT_DEDUP_WINDOW_SECONDS,
        key_prefix: str = DEFAULT_REDIS_KEY_PREFIX,
    ) -> None:
        self._scorer = scorer
        self._account_fetcher = account_fetcher
        self._redis = redis
        self._classifier = classifier or TradeClassifier()
        self._min_trade_usd = min_trade_usd
        self._dedup_window = dedup_window_seconds
        self._key_prefix = key_prefix

    def should_evaluate(self, event: TradeEvent) -> bool:
        """Return True when the trade's notional reaches the minimum."""
        return float(event.notional_value) >= self._min_trade_usd

    async def evaluate(self, event: TradeEvent) -> EvaluatedTrade:
        trade = event.to_aggregated_trade()
        history = await self._account_fetcher.get_account_history(trade.wallet)

        # Live trades carry no price series; only size contributes to the first signal.
        score = self._scorer.score(
            trade,
            ScoringContext(account_history=history, account_lookup_skipped=history is None),
        )
        scored = ScoredTrade(trade=trade, score=score, account_history=history)
        scored = replace(scored, classifications=tuple(self._classifier.classify(scored)))

        is_duplicate = False
        if score.is_alert:
            is_duplicate = await self._check_and_set_dedup(trade.wallet, event.market_id)

        should_alert = score.is_alert and not is_duplicate
        if should_alert:
            logger.info(
                "ALERT: wallet=%s, market=%s, score=%d",
                trade.wallet,
                event.market_slug or event.market_id,
                score.total,
            )
        elif is_duplicate:
            logger.debug("Suppressed duplicate alert for %s on %s", trade.wallet, event.market_id)

        return EvaluatedTrade(
            event=event,
            scored=scored,
            should_alert=should_alert,
            is_duplicate=is_duplicate,
        )

    async def _check_and_set_dedup(self, wallet_address: str, market_id: str) -> bool:
        """Check if this wallet/market combo was recently alerted.

        If not a duplicate, sets the dedup key with TTL.

        Returns:
            True if this is a duplicate (already alerted), False otherwise.
        """
        if self._redis is None:
            return False
        key = f"{self._key_prefix}{wallet_address}:{market_id}"

        # Try to set with NX (only if not exists)
        was_set = await self._redis.set(
            key,
            datetime.now(UTC).isoformat(),
            nx=True,
            ex=self._dedup_window,
        )

        # If was_set is None/False, key already existed = duplicate
        return not was_set

    async def clear_dedup(self, wallet_address: str, market_id: str) -> bool:
        """Clear dedup key for a wallet/market combo.

        Returns:
            True if a key was deleted.
        """
        if self._redis is None:
            return False
        key = f"{self._key_prefix}{wallet_address}:{market_id}"
        deleted = await self._redis.delete(key)
        return bool(deleted)
