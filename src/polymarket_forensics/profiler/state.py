"""Point-in-time wallet state.

Scoring a historical trade against a wallet's *current* totals leaks
information from the future. The resolver rebuilds what the wallet looked
like strictly before the trade from persisted fills instead.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from polymarket_forensics.ingestor.models import AggregatedTrade
from polymarket_forensics.profiler.models import HistoricalState
from polymarket_forensics.storage.database import DatabaseManager
from polymarket_forensics.storage.repos import FillRepository

logger = logging.getLogger(__name__)


class PointInTimeResolver:
    """Resolve `HistoricalState` snapshots from the fill store.

    Example:
        ```python
        resolver = PointInTimeResolver(db)
        state = await resolver.state_at("0xabc...", trade.timestamp)
        if state is not None and state.approximate:
            ...
        ```
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def state_at(self, wallet: str, timestamp: datetime) -> HistoricalState | None:
        """Return the wallet's state strictly before `timestamp`.

        Returns None when nothing is persisted for the wallet.
        """
        async with self._db.get_async_session() as session:
            state = await FillRepository(session).get_state_at(wallet, timestamp)
        if state is not None:
            logger.debug(
                "State for %s at %s: trades=%d volume=%.2f approximate=%s",
                wallet,
                timestamp.isoformat(),
                state.trade_count,
                state.volume_usd,
                state.approximate,
            )
        return state

    async def states_for_trades(
        self, trades: Iterable[AggregatedTrade]
    ) -> dict[tuple[str, str], HistoricalState]:
        """Resolve a state per (wallet, transaction) for a batch of trades.

        Trades without persisted history are omitted from the result.
        """
        states: dict[tuple[str, str], HistoricalState] = {}
        async with self._db.get_async_session() as session:
            repo = FillRepository(session)
            for trade in trades:
                key = (trade.wallet, trade.transaction_hash)
                if key in states:
                    continue
                state = await repo.get_state_at(trade.wallet, trade.timestamp)
                if state is not None:
                    states[key] = state
        return states
