"""Storage layer - Fill store, sync bookkeeping and repositories."""

from polymarket_forensics.storage.coverage import (
    CoverageDecision,
    FetchReason,
    SyncRecord,
    SyncScope,
    check_coverage,
)
from polymarket_forensics.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from polymarket_forensics.storage.models import Base
from polymarket_forensics.storage.repos import (
    AccountRepository,
    BackfillQueueRepository,
    FillRepository,
    MarketTokenRepository,
    PriceHistoryRepository,
    SyncRecordRepository,
)

__all__ = [
    "AccountRepository",
    "BackfillQueueRepository",
    "Base",
    "CoverageDecision",
    "DatabaseManager",
    "FetchReason",
    "FillRepository",
    "MarketTokenRepository",
    "PriceHistoryRepository",
    "SyncRecord",
    "SyncRecordRepository",
    "SyncScope",
    "check_coverage",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
