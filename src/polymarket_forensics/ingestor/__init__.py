"""Data ingestion layer - Fills, prices, market metadata and live trades.

Only leaf modules are re-exported here. The cache-backed fetchers
(`ingestor.prices`, `ingestor.trades`) depend on the storage layer, which
itself imports `ingestor.models`, so import them from their modules.
"""

from polymarket_forensics.ingestor.clob_client import (
    ClobClient,
    ClobClientError,
    ClobClientNotFoundError,
    RetryError,
)
from polymarket_forensics.ingestor.fills import (
    aggregate_fills,
    aggregate_fills_per_wallet,
    build_token_to_outcome,
)
from polymarket_forensics.ingestor.models import (
    AggregatedTrade,
    Market,
    Position,
    PricePoint,
    RawFill,
    Token,
    TradeEvent,
)
from polymarket_forensics.ingestor.subgraph import SubgraphClient, SubgraphError

__all__ = [
    "AggregatedTrade",
    "ClobClient",
    "ClobClientError",
    "ClobClientNotFoundError",
    "Market",
    "Position",
    "PricePoint",
    "RawFill",
    "RetryError",
    "SubgraphClient",
    "SubgraphError",
    "Token",
    "TradeEvent",
    "aggregate_fills",
    "aggregate_fills_per_wallet",
    "build_token_to_outcome",
]
