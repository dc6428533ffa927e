"""Cache coverage decisions for synced fill and price ranges.

Given the sync bookkeeping for a market token, wallet or price series and
a requested time range, decide whether the cached rows are enough or which
range has to be fetched upstream. Decisions are evaluated in order and the
first match wins:

1. missing        - no record, or it was never synced
2. stale          - synced_at is older than the TTL; fetch forward from synced_to
3. partial-older  - request starts before synced_from and history is incomplete
4. partial-newer  - request ends after synced_to
5. none           - cache covers the request
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

DEFAULT_STALE_SECONDS = 3600


class SyncScope(Enum):
    MARKET = "market"
    WALLET = "wallet"
    PRICE = "price"


class FetchReason(Enum):
    MISSING = "missing"
    STALE = "stale"
    PARTIAL_OLDER = "partial-older"
    PARTIAL_NEWER = "partial-newer"
    NONE = "none"


@dataclass(frozen=True)
class SyncRecord:
    """Covered bounds and refresh time for one cached series."""

    scope: SyncScope
    key: str
    synced_from: datetime | None = None
    synced_to: datetime | None = None
    synced_at: datetime | None = None
    has_complete_history: bool = False


@dataclass(frozen=True)
class CoverageDecision:
    reason: FetchReason
    fetch_after: datetime | None = None
    fetch_before: datetime | None = None

    @property
    def needs_fetch(self) -> bool:
        return self.reason is not FetchReason.NONE


def is_fresh(synced_at: datetime | None, *, ttl: timedelta, now: datetime) -> bool:
    if synced_at is None:
        return False
    return now - synced_at < ttl


def history_is_complete_at(record: SyncRecord | None, timestamp: datetime) -> bool:
    """Return True if persisted history provably covers everything before `timestamp`."""
    if record is None or not record.has_complete_history:
        return False
    if record.synced_from is None or record.synced_to is None:
        return False
    return record.synced_from <= timestamp <= record.synced_to


def check_coverage(
    record: SyncRecord | None,
    *,
    after: datetime | None = None,
    before: datetime | None = None,
    ttl: timedelta = timedelta(seconds=DEFAULT_STALE_SECONDS),
    now: datetime,
) -> CoverageDecision:
    """Classify what must be fetched to serve the range [after, before].

    Args:
        record: Sync bookkeeping for the series, or None if never seen.
        after: Requested lower bound (None means unbounded).
        before: Requested upper bound (None means unbounded).
        ttl: Age after which a sync is stale.
        now: Current wall-clock time.

    Returns:
        The decision and the range to fetch, if any.
    """
    if record is None or record.synced_at is None:
        return CoverageDecision(FetchReason.MISSING)

    if not is_fresh(record.synced_at, ttl=ttl, now=now):
        return CoverageDecision(FetchReason.STALE, fetch_after=record.synced_to)

    if (
        after is not None
        and record.synced_from is not None
        and after < record.synced_from
        and not record.has_complete_history
    ):
        return CoverageDecision(
            FetchReason.PARTIAL_OLDER,
            fetch_after=after,
            fetch_before=record.synced_from,
        )

    if before is not None and record.synced_to is not None and before > record.synced_to:
        return CoverageDecision(
            FetchReason.PARTIAL_NEWER,
            fetch_after=record.synced_to,
            fetch_before=before,
        )

    return CoverageDecision(FetchReason.NONE)
