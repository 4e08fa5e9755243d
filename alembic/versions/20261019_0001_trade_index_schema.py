"""Initial schema for events, markets, indexed trades and the sync cursor.

Revision ID: 001_trade_index
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_trade_index"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("neg_risk", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "markets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=True),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("condition_id", sa.String(66), nullable=False),
        sa.Column("question_id", sa.String(66), nullable=False),
        sa.Column("oracle", sa.String(42), nullable=False),
        sa.Column("collateral_token", sa.String(42), nullable=False),
        sa.Column("yes_token_id", sa.String(66), nullable=False),
        sa.Column("no_token_id", sa.String(66), nullable=False),
        sa.Column("neg_risk", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )
    op.create_index("idx_markets_condition_id", "markets", ["condition_id"])
    op.create_index("idx_markets_yes_token", "markets", ["yes_token_id"])
    op.create_index("idx_markets_no_token", "markets", ["no_token_id"])
    op.create_index("idx_markets_event_id", "markets", ["event_id"])

    op.create_table(
        "trades",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("market_id", sa.Integer(), nullable=False),
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("block_hash", sa.String(66), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("maker", sa.String(42), nullable=False),
        sa.Column("taker", sa.String(42), nullable=False),
        sa.Column("side", sa.String(4), nullable=False),
        sa.Column("outcome", sa.String(3), nullable=False),
        sa.Column("token_id", sa.String(66), nullable=False),
        sa.Column("price", sa.String(96), nullable=False),
        sa.Column("size", sa.String(96), nullable=False),
        sa.Column("maker_asset_id", sa.String(80), nullable=False),
        sa.Column("taker_asset_id", sa.String(80), nullable=False),
        sa.Column("maker_amount", sa.String(80), nullable=False),
        sa.Column("taker_amount", sa.String(80), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["market_id"], ["markets.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tx_hash", "log_index", name="uq_trades_tx_log"),
    )
    op.create_index("idx_trades_market_id", "trades", ["market_id"])
    op.create_index("idx_trades_block_number", "trades", ["block_number"])
    op.create_index("idx_trades_timestamp", "trades", ["timestamp"])
    op.create_index("idx_trades_token_id", "trades", ["token_id"])

    op.create_table(
        "sync_state",
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("last_block", sa.BigInteger(), nullable=False),
        sa.Column("last_block_hash", sa.String(66), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("sync_state")
    op.drop_index("idx_trades_token_id", table_name="trades")
    op.drop_index("idx_trades_timestamp", table_name="trades")
    op.drop_index("idx_trades_block_number", table_name="trades")
    op.drop_index("idx_trades_market_id", table_name="trades")
    op.drop_table("trades")
    op.drop_index("idx_markets_event_id", table_name="markets")
    op.drop_index("idx_markets_no_token", table_name="markets")
    op.drop_index("idx_markets_yes_token", table_name="markets")
    op.drop_index("idx_markets_condition_id", table_name="markets")
    op.drop_table("markets")
    op.drop_table("events")
