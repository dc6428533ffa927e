"""Reconstruct wallet-level trades from raw maker/taker fills.

A single order on the CLOB is usually settled as several fills, and the
same wallet can show up as maker on one leg and taker on another. This
module groups fills into one trade per transaction and outcome, keeps the
wallet's primary role, and drops the hedge leg of transactions that touch
both outcome tokens.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import NamedTuple

from polymarket_forensics.ingestor.models import (
    AggregatedTrade,
    Market,
    Outcome,
    Position,
    RawFill,
    Role,
    TradeFill,
    TradeSide,
)

logger = logging.getLogger(__name__)

DEFAULT_OUTCOME: Outcome = "YES"


class FillGroupKey(NamedTuple):
    """Composite grouping key for fills of one wallet."""

    transaction_hash: str
    outcome: Outcome
    role: Role


@dataclass
class _FillGroup:
    key: FillGroupKey
    fills: list[RawFill] = field(default_factory=list)
    total_value_usd: float = 0.0


def build_token_to_outcome(market: Market) -> dict[str, Outcome]:
    """Map each token id of a binary market to YES/NO.

    Uses the token's position rather than its label, so markets with
    outcomes such as "Up"/"Down" map correctly (index 0 is the YES side).
    """
    mapping: dict[str, Outcome] = {}
    for index, token in enumerate(market.tokens):
        mapping[token.token_id.lower()] = "YES" if index == 0 else "NO"
    return mapping


def _wallet_side(raw_side: str, role: Role) -> TradeSide:
    # The raw side is the maker's order direction; a taker did the opposite.
    maker_buys = raw_side == "Buy"
    if role == "maker":
        return "BUY" if maker_buys else "SELL"
    return "SELL" if maker_buys else "BUY"


def _held_outcomes(
    positions: Iterable[Position],
    token_to_outcome: dict[str, Outcome],
) -> set[Outcome]:
    held: set[Outcome] = set()
    for position in positions:
        outcome = token_to_outcome.get(position.market_token.lower())
        if outcome is not None and position.net_quantity > 0:
            held.add(outcome)
    return held


def _complementary_outcome(
    tx_groups: list[_FillGroup],
    held: set[Outcome],
) -> Outcome | None:
    """Pick the hedge leg to discard, or None when the transaction is not a hedge."""
    if len(tx_groups) != 2:
        return None
    yes_group = next((g for g in tx_groups if g.key.outcome == "YES"), None)
    no_group = next((g for g in tx_groups if g.key.outcome == "NO"), None)
    if yes_group is None or no_group is None:
        return None

    if held == {"YES"}:
        return "NO"
    if held == {"NO"}:
        return "YES"
    if yes_group.total_value_usd < no_group.total_value_usd:
        return "YES"
    return "NO"


def _build_trade(
    group: _FillGroup,
    *,
    wallet: str,
    complementary_value_usd: float | None,
) -> AggregatedTrade:
    first = group.fills[0]
    role = group.key.role

    total_value = 0.0
    total_size = 0.0
    earliest = first.timestamp
    trade_fills: list[TradeFill] = []
    for fill in group.fills:
        value_usd = fill.value_usd
        price = float(fill.price)
        size = value_usd / price if price > 0 else 0.0
        total_value += value_usd
        total_size += size
        earliest = min(earliest, fill.timestamp)
        trade_fills.append(
            TradeFill(
                id=fill.id,
                size=size,
                price=price,
                value_usd=value_usd,
                timestamp=fill.timestamp,
                maker=fill.maker,
                taker=fill.taker,
                role=role,
            )
        )

    return AggregatedTrade(
        transaction_hash=group.key.transaction_hash,
        market_id=first.market_token,
        wallet=wallet,
        side=_wallet_side(first.side, role),
        outcome=group.key.outcome,
        total_size=total_size,
        total_value_usd=total_value,
        avg_price=total_value / total_size if total_size > 0 else 0.0,
        timestamp=datetime.fromtimestamp(earliest, tz=UTC),
        fills=tuple(trade_fills),
        role=role,
        had_complementary_fills=complementary_value_usd is not None,
        complementary_value_usd=complementary_value_usd,
    )


def aggregate_fills(
    fills: Sequence[RawFill],
    wallet: str,
    token_to_outcome: dict[str, Outcome],
    wallet_positions: Sequence[Position] = (),
) -> list[AggregatedTrade]:
    """Aggregate one wallet's raw fills into trades.

    Args:
        fills: Raw fills involving the wallet (as maker or taker).
        wallet: Wallet address; compared case-insensitively.
        token_to_outcome: Lower-cased token id to YES/NO. Unknown tokens are YES.
        wallet_positions: Current positions, used to decide which hedge leg is real.

    Returns:
        At most one trade per (transaction, outcome), newest first.
    """
    wallet_lower = wallet.lower()

    groups: dict[FillGroupKey, _FillGroup] = {}
    for fill in fills:
        outcome = token_to_outcome.get(fill.market_token.lower(), DEFAULT_OUTCOME)
        role: Role = "maker" if fill.maker.lower() == wallet_lower else "taker"
        key = FillGroupKey(fill.transaction_hash, outcome, role)
        group = groups.get(key)
        if group is None:
            group = groups[key] = _FillGroup(key=key)
        group.fills.append(fill)
        group.total_value_usd += fill.value_usd

    # A wallet on both sides of one (tx, outcome) is a self-match; keep the larger role.
    primary: dict[tuple[str, Outcome], _FillGroup] = {}
    for group in groups.values():
        slot = (group.key.transaction_hash, group.key.outcome)
        current = primary.get(slot)
        if current is None or group.total_value_usd > current.total_value_usd:
            primary[slot] = group

    by_tx: dict[str, list[_FillGroup]] = {}
    for group in primary.values():
        by_tx.setdefault(group.key.transaction_hash, []).append(group)

    held = _held_outcomes(wallet_positions, token_to_outcome)

    result: list[AggregatedTrade] = []
    for tx_hash, tx_groups in by_tx.items():
        discard = _complementary_outcome(tx_groups, held)
        discarded_value: float | None = None
        if discard is not None:
            discarded_value = next(
                g.total_value_usd for g in tx_groups if g.key.outcome == discard
            )
            logger.debug(
                "Discarding complementary %s leg of %s (%.2f USD) for %s",
                discard,
                tx_hash,
                discarded_value,
                wallet_lower,
            )

        for group in tx_groups:
            if group.key.outcome == discard:
                continue
            result.append(
                _build_trade(group, wallet=wallet_lower, complementary_value_usd=discarded_value)
            )

    result.sort(key=lambda t: t.timestamp, reverse=True)
    return result


def aggregate_fills_per_wallet(
    fills: Sequence[RawFill],
    token_to_outcome: dict[str, Outcome],
) -> list[AggregatedTrade]:
    """Aggregate market-wide fills into trades for every participating wallet.

    Each fill is attributed to both its maker and its taker: with CLOB
    cross-matching a wallet's YES order can surface as a NO fill where the
    wallet is the counterparty, and `aggregate_fills` resolves the right leg.
    """
    fills_by_wallet: dict[str, list[RawFill]] = {}
    for fill in fills:
        maker = fill.maker.lower()
        taker = fill.taker.lower()
        if maker:
            fills_by_wallet.setdefault(maker, []).append(fill)
        if taker and taker != maker:
            fills_by_wallet.setdefault(taker, []).append(fill)

    trades: list[AggregatedTrade] = []
    for wallet, wallet_fills in fills_by_wallet.items():
        trades.extend(aggregate_fills(wallet_fills, wallet, token_to_outcome))

    trades.sort(key=lambda t: t.timestamp, reverse=True)
    logger.debug(
        "Aggregated %d fills into %d trades across %d wallets",
        len(fills),
        len(trades),
        len(fills_by_wallet),
    )
    return trades
