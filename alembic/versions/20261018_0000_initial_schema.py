"""Initial schema for order fills, sync bookkeeping, prices and the backfill queue.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _sync_columns() -> list[sa.Column]:
    return [
        sa.Column("synced_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("synced_to", sa.DateTime(timezone=True), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_complete_history", sa.Boolean(), nullable=False, server_default=sa.false()),
    ]


def upgrade() -> None:
    # Raw order fills
    op.create_table(
        "order_fills",
        sa.Column("id", sa.String(200), nullable=False),
        sa.Column("transaction_hash", sa.String(66), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("maker", sa.String(42), nullable=False),
        sa.Column("taker", sa.String(42), nullable=False),
        sa.Column("market_token", sa.String(100), nullable=False),
        sa.Column("side", sa.String(4), nullable=False),
        sa.Column("size_units", sa.Numeric(40, 0), nullable=False),
        sa.Column("price", sa.Numeric(20, 10), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_order_fills_maker_ts", "order_fills", ["maker", "ts"])
    op.create_index("idx_order_fills_taker_ts", "order_fills", ["taker", "ts"])
    op.create_index("idx_order_fills_market_ts", "order_fills", ["market_token", "ts"])
    op.create_index("idx_order_fills_tx", "order_fills", ["transaction_hash"])

    # Wallet aggregates + wallet fill sync
    op.create_table(
        "accounts",
        sa.Column("wallet", sa.String(42), nullable=False),
        sa.Column("creation_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trade_count_total", sa.Integer(), nullable=True),
        sa.Column("collateral_volume_usd", sa.Numeric(30, 6), nullable=True),
        sa.Column("profit_usd", sa.Numeric(30, 6), nullable=True),
        *_sync_columns(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("wallet"),
    )

    # Outcome tokens + market fill sync
    op.create_table(
        "market_tokens",
        sa.Column("token_id", sa.String(100), nullable=False),
        sa.Column("condition_id", sa.String(80), nullable=True),
        sa.Column("question", sa.Text(), nullable=True),
        sa.Column("outcome", sa.String(64), nullable=True),
        sa.Column("outcome_index", sa.Integer(), nullable=True),
        *_sync_columns(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("token_id"),
    )
    op.create_index("idx_market_tokens_condition", "market_tokens", ["condition_id"])

    # Price series sync
    op.create_table(
        "price_sync",
        sa.Column("token_id", sa.String(100), nullable=False),
        *_sync_columns(),
        sa.PrimaryKeyConstraint("token_id"),
    )

    op.create_table(
        "price_history",
        sa.Column("token_id", sa.String(100), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("price", sa.Numeric(20, 10), nullable=False),
        sa.PrimaryKeyConstraint("token_id", "ts"),
    )

    # Wallet backfill queue
    op.create_table(
        "backfill_queue",
        sa.Column("wallet", sa.String(42), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("wallet"),
    )
    op.create_index("idx_backfill_queue_pending", "backfill_queue", ["completed_at", "priority"])


def downgrade() -> None:
    op.drop_index("idx_backfill_queue_pending", table_name="backfill_queue")
    op.drop_table("backfill_queue")
    op.drop_table("price_history")
    op.drop_table("price_sync")
    op.drop_index("idx_market_tokens_condition", table_name="market_tokens")
    op.drop_table("market_tokens")
    op.drop_table("accounts")
    op.drop_index("idx_order_fills_tx", table_name="order_fills")
    op.drop_index("idx_order_fills_market_ts", table_name="order_fills")
    op.drop_index("idx_order_fills_taker_ts", table_name="order_fills")
    op.drop_index("idx_order_fills_maker_ts", table_name="order_fills")
    op.drop_table("order_fills")
