"""Repository pattern implementations for data access.

This module provides clean data access abstractions for events, markets,
trades and the sync cursor. Upserts use ``INSERT ... ON CONFLICT`` for the
session's dialect (PostgreSQL or SQLite).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from polymarket_trade_indexer.decoder.models import MarketStatus
from polymarket_trade_indexer.storage.models import (
    EventModel,
    MarketModel,
    SyncStateModel,
    TradeModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Keeps multi-row INSERTs under SQLite's bound-parameter limit.
TRADE_INSERT_CHUNK_SIZE = 200


def _insert_for(session: AsyncSession, model: type[Any]) -> Any:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"Upserts are not supported for dialect {dialect!r}")


@dataclass
class EventDTO:
    """Data transfer object for events."""

    slug: str
    title: str | None = None
    description: str | None = None
    neg_risk: bool = False
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: EventModel) -> EventDTO:
        return cls(
            id=model.id,
            slug=model.slug,
            title=model.title,
            description=model.description,
            neg_risk=model.neg_risk,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


@dataclass
class MarketDTO:
    """Data transfer object for markets."""

    slug: str
    condition_id: str
    question_id: str
    oracle: str
    collateral_token: str
    yes_token_id: str
    no_token_id: str
    status: str = MarketStatus.ACTIVE.value
    neg_risk: bool = False
    event_id: int | None = None
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: MarketModel) -> MarketDTO:
        return cls(
            id=model.id,
            event_id=model.event_id,
            slug=model.slug,
            condition_id=model.condition_id,
            question_id=model.question_id,
            oracle=model.oracle,
            collateral_token=model.collateral_token,
            yes_token_id=model.yes_token_id,
            no_token_id=model.no_token_id,
            status=model.status,
            neg_risk=model.neg_risk,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def outcome_for(self, token_id: str) -> str:
        """Return YES/NO for a token id belonging to this market."""
        return "YES" if token_id.lower() == self.yes_token_id.lower() else "NO"


@dataclass
class TradeDTO:
    """Data transfer object for trades."""

    market_id: int
    tx_hash: str
    log_index: int
    block_number: int
    block_hash: str
    timestamp: datetime
    maker: str
    taker: str
    side: str
    outcome: str
    token_id: str
    price: str
    size: str
    maker_asset_id: str
    taker_asset_id: str
    maker_amount: str
    taker_amount: str
    id: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TradeModel) -> TradeDTO:
        return cls(
            id=model.id,
            market_id=model.market_id,
            tx_hash=model.tx_hash,
            log_index=model.log_index,
            block_number=model.block_number,
            block_hash=model.block_hash,
            timestamp=model.timestamp,
            maker=model.maker,
            taker=model.taker,
            side=model.side,
            outcome=model.outcome,
            token_id=model.token_id,
            price=model.price,
            size=model.size,
            maker_asset_id=model.maker_asset_id,
            taker_asset_id=model.taker_asset_id,
            maker_amount=model.maker_amount,
            taker_amount=model.taker_amount,
            created_at=model.created_at,
        )


@dataclass
class SyncStateDTO:
    """Data transfer object for the sync cursor."""

    key: str
    last_block: int
    last_block_hash: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: SyncStateModel) -> SyncStateDTO:
        return cls(
            key=model.key,
            last_block=model.last_block,
            last_block_hash=model.last_block_hash,
            updated_at=model.updated_at,
        )


@dataclass(frozen=True)
class TradeFilters:
    """Optional filters for trade listings."""

    from_block: int | None = None
    to_block: int | None = None
    side: str | None = None
    outcome: str | None = None


@dataclass
class Page:
    """One page of a paginated listing."""

    items: list[Any] = field(default_factory=list)
    total: int = 0


class EventRepository:
    """Repository for events."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_slug(self, slug: str) -> EventDTO | None:
        result = await self.session.execute(select(EventModel).where(EventModel.slug == slug))
        model = result.scalar_one_or_none()
        return EventDTO.from_model(model) if model else None

    async def upsert(self, dto: EventDTO) -> int:
        """Insert or update an event by slug. Returns the row id."""
        now = datetime.now(UTC)
        stmt = _insert_for(self.session, EventModel).values(
            slug=dto.slug,
            title=dto.title,
            description=dto.description,
            neg_risk=dto.neg_risk,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={
                "title": stmt.excluded.title,
                "description": stmt.excluded.description,
                "neg_risk": stmt.excluded.neg_risk,
                "updated_at": now,
            },
        ).returning(EventModel.id)
        result = await self.session.execute(stmt)
        event_id = int(result.scalar_one())
        await self.session.flush()
        return event_id


class MarketRepository:
    """Repository for markets."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_slug(self, slug: str) -> MarketDTO | None:
        result = await self.session.execute(select(MarketModel).where(MarketModel.slug == slug))
        model = result.scalar_one_or_none()
        return MarketDTO.from_model(model) if model else None

    async def get_by_condition_id(self, condition_id: str) -> MarketDTO | None:
        result = await self.session.execute(
            select(MarketModel)
            .where(func.lower(MarketModel.condition_id) == condition_id.lower())
            .order_by(MarketModel.id)
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return MarketDTO.from_model(model) if model else None

    async def find_by_token_id(self, token_id: str) -> MarketDTO | None:
        """Find the market owning a YES or NO token id."""
        token = token_id.lower()
        result = await self.session.execute(
            select(MarketModel)
            .where(or_(MarketModel.yes_token_id == token, MarketModel.no_token_id == token))
            .order_by(MarketModel.id)
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return MarketDTO.from_model(model) if model else None

    async def upsert(self, dto: MarketDTO) -> MarketDTO:
        """Insert or update a market by slug (idempotent)."""
        now = datetime.now(UTC)
        values = {
            "event_id": dto.event_id,
            "slug": dto.slug,
            "condition_id": dto.condition_id.lower(),
            "question_id": dto.question_id.lower(),
            "oracle": dto.oracle,
            "collateral_token": dto.collateral_token,
            "yes_token_id": dto.yes_token_id.lower(),
            "no_token_id": dto.no_token_id.lower(),
            "neg_risk": dto.neg_risk,
            "status": dto.status,
        }
        stmt = _insert_for(self.session, MarketModel).values(
            **values, created_at=now, updated_at=now
        )
        update_set = {
            "condition_id": stmt.excluded.condition_id,
            "question_id": stmt.excluded.question_id,
            "oracle": stmt.excluded.oracle,
            "collateral_token": stmt.excluded.collateral_token,
            "yes_token_id": stmt.excluded.yes_token_id,
            "no_token_id": stmt.excluded.no_token_id,
            "neg_risk": stmt.excluded.neg_risk,
            "status": stmt.excluded.status,
            "updated_at": now,
        }
        # Dynamic discovery has no event; keep an existing event link.
        if dto.event_id is not None:
            update_set["event_id"] = stmt.excluded.event_id
        stmt = stmt.on_conflict_do_update(index_elements=["slug"], set_=update_set).returning(
            MarketModel.id
        )
        result = await self.session.execute(stmt)
        market_id = int(result.scalar_one())
        await self.session.flush()

        stored = await self.session.get(MarketModel, market_id, populate_existing=True)
        if stored is None:  # pragma: no cover
            raise RuntimeError(f"Market {dto.slug} vanished after upsert")
        return MarketDTO.from_model(stored)

    async def list_by_event_id(self, event_id: int, *, limit: int, offset: int) -> Page:
        total = await self.count_by_event_id(event_id)
        result = await self.session.execute(
            select(MarketModel)
            .where(MarketModel.event_id == event_id)
            .order_by(MarketModel.id)
            .limit(limit)
            .offset(offset)
        )
        return Page(items=[MarketDTO.from_model(m) for m in result.scalars().all()], total=total)

    async def count_by_event_id(self, event_id: int) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(MarketModel).where(MarketModel.event_id == event_id)
        )
        return int(result.scalar_one())


class TradeRepository:
    """Repository for indexed trades."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_many(self, dtos: Sequence[TradeDTO]) -> int:
        """Insert trades, ignoring ones already stored.

        ``(tx_hash, log_index)`` is the idempotency key: a duplicate is a
        no-op, not an error.

        Returns:
            Number of rows actually inserted.
        """
        if not dtos:
            return 0

        now = datetime.now(UTC)
        rows = [
            {
                "market_id": dto.market_id,
                "tx_hash": dto.tx_hash.lower(),
                "log_index": dto.log_index,
                "block_number": dto.block_number,
                "block_hash": dto.block_hash,
                "timestamp": dto.timestamp,
                "maker": dto.maker.lower(),
                "taker": dto.taker.lower(),
                "side": dto.side,
                "outcome": dto.outcome,
                "token_id": dto.token_id.lower(),
                "price": dto.price,
                "size": dto.size,
                "maker_asset_id": dto.maker_asset_id,
                "taker_asset_id": dto.taker_asset_id,
                "maker_amount": dto.maker_amount,
                "taker_amount": dto.taker_amount,
                "created_at": now,
            }
            for dto in dtos
        ]

        inserted = 0
        for start in range(0, len(rows), TRADE_INSERT_CHUNK_SIZE):
            chunk = rows[start : start + TRADE_INSERT_CHUNK_SIZE]
            stmt = (
                _insert_for(self.session, TradeModel)
                .values(chunk)
                .on_conflict_do_nothing(index_elements=["tx_hash", "log_index"])
                .returning(TradeModel.id)
            )
            result = await self.session.execute(stmt)
            inserted += len(result.scalars().all())
        await self.session.flush()
        return inserted

    def _filtered(self, stmt: Any, filters: TradeFilters | None) -> Any:
        if filters is None:
            return stmt
        if filters.from_block is not None:
            stmt = stmt.where(TradeModel.block_number >= filters.from_block)
        if filters.to_block is not None:
            stmt = stmt.where(TradeModel.block_number <= filters.to_block)
        if filters.side:
            stmt = stmt.where(TradeModel.side == filters.side)
        if filters.outcome:
            stmt = stmt.where(TradeModel.outcome == filters.outcome)
        return stmt

    async def _page(
        self,
        condition: Any,
        filters: TradeFilters | None,
        *,
        limit: int,
        offset: int,
    ) -> Page:
        count_stmt = self._filtered(
            select(func.count()).select_from(TradeModel).where(condition), filters
        )
        total = int((await self.session.execute(count_stmt)).scalar_one())

        data_stmt = self._filtered(select(TradeModel).where(condition), filters)
        data_stmt = (
            data_stmt.order_by(TradeModel.block_number.desc(), TradeModel.log_index.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(data_stmt)
        return Page(items=[TradeDTO.from_model(t) for t in result.scalars().all()], total=total)

    async def list_for_market(
        self,
        market_id: int,
        filters: TradeFilters | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> Page:
        return await self._page(TradeModel.market_id == market_id, filters, limit=limit, offset=offset)

    async def list_by_token_id(
        self,
        token_id: str,
        filters: TradeFilters | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> Page:
        return await self._page(
            TradeModel.token_id == token_id.lower(), filters, limit=limit, offset=offset
        )

    async def count_for_market(self, market_id: int) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(TradeModel).where(TradeModel.market_id == market_id)
        )
        return int(result.scalar_one())


class SyncStateRepository:
    """Repository for the durable sync cursor."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, key: str) -> SyncStateDTO | None:
        model = await self.session.get(SyncStateModel, key, populate_existing=True)
        return SyncStateDTO.from_model(model) if model else None

    async def advance(self, key: str, last_block: int, last_block_hash: str | None = None) -> int:
        """Move the cursor forward to ``last_block``.

        The cursor never moves backwards; a lower value is ignored.

        Returns:
            The stored cursor value.
        """
        existing = await self.get(key)
        if existing is not None and existing.last_block > last_block:
            logger.warning(
                "Ignoring cursor regression for %s: %d -> %d",
                key,
                existing.last_block,
                last_block,
            )
            return existing.last_block

        now = datetime.now(UTC)
        stmt = _insert_for(self.session, SyncStateModel).values(
            key=key,
            last_block=last_block,
            last_block_hash=last_block_hash,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={
                "last_block": stmt.excluded.last_block,
                "last_block_hash": stmt.excluded.last_block_hash,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return last_block
