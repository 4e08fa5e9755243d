"""SQLAlchemy models for persistent storage.

This module defines the database schema for events, markets, indexed
trades and the synchronizer cursor.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class EventModel(Base):
    """Gamma event grouping one or more markets."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    neg_risk: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class MarketModel(Base):
    """Binary market with locally derived YES/NO token ids."""

    __tablename__ = "markets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("events.id"), nullable=True
    )
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    condition_id: Mapped[str] = mapped_column(String(66), nullable=False)
    question_id: Mapped[str] = mapped_column(String(66), nullable=False)
    oracle: Mapped[str] = mapped_column(String(42), nullable=False)
    collateral_token: Mapped[str] = mapped_column(String(42), nullable=False)
    yes_token_id: Mapped[str] = mapped_column(String(66), nullable=False)
    no_token_id: Mapped[str] = mapped_column(String(66), nullable=False)

    neg_risk: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("idx_markets_condition_id", "condition_id"),
        Index("idx_markets_yes_token", "yes_token_id"),
        Index("idx_markets_no_token", "no_token_id"),
        Index("idx_markets_event_id", "event_id"),
    )


class TradeModel(Base):
    """One indexed fill. Immutable once written."""

    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_id: Mapped[int] = mapped_column(Integer, ForeignKey("markets.id"), nullable=False)

    tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    maker: Mapped[str] = mapped_column(String(42), nullable=False)
    taker: Mapped[str] = mapped_column(String(42), nullable=False)
    side: Mapped[str] = mapped_column(String(4), nullable=False)  # BUY/SELL
    outcome: Mapped[str] = mapped_column(String(3), nullable=False)  # YES/NO
    token_id: Mapped[str] = mapped_column(String(66), nullable=False)

    # Decimal strings; never floats.
    price: Mapped[str] = mapped_column(String(96), nullable=False)
    size: Mapped[str] = mapped_column(String(96), nullable=False)
    maker_asset_id: Mapped[str] = mapped_column(String(80), nullable=False)
    taker_asset_id: Mapped[str] = mapped_column(String(80), nullable=False)
    maker_amount: Mapped[str] = mapped_column(String(80), nullable=False)
    taker_amount: Mapped[str] = mapped_column(String(80), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("tx_hash", "log_index", name="uq_trades_tx_log"),
        Index("idx_trades_market_id", "market_id"),
        Index("idx_trades_block_number", "block_number"),
        Index("idx_trades_timestamp", "timestamp"),
        Index("idx_trades_token_id", "token_id"),
    )


class SyncStateModel(Base):
    """Durable synchronizer cursor, one row per stream key."""

    __tablename__ = "sync_state"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_block_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
