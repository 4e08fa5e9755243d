"""FastAPI read API over indexed events, markets and trades."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from http import HTTPStatus
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from polymarket_trade_indexer import __version__
from polymarket_trade_indexer.api.schemas import (
    ErrorResponse,
    EventResponse,
    HealthResponse,
    MarketResponse,
    MarketsPage,
    TradeResponse,
    TradesPage,
)
from polymarket_trade_indexer.decoder.ids import normalize_token_id
from polymarket_trade_indexer.decoder.models import Outcome, Side
from polymarket_trade_indexer.errors import ValidationError
from polymarket_trade_indexer.storage.database import DatabaseManager
from polymarket_trade_indexer.storage.repos import (
    EventRepository,
    MarketRepository,
    Page,
    TradeFilters,
    TradeRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    404: {"model": ErrorResponse},
    400: {"model": ErrorResponse},
}


def _error_json(status_code: int, message: str) -> JSONResponse:
    """Return consistent error JSON: { error, message }."""
    return JSONResponse(
        status_code=status_code,
        content={"error": HTTPStatus(status_code).phrase, "message": message},
    )


def _next_cursor(offset: int, page: Page) -> int | None:
    end = offset + len(page.items)
    return end if end < page.total else None


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    db: DatabaseManager = request.app.state.db
    async with db.get_async_session() as session:
        yield session


def _trade_filters(
    from_block: int | None = Query(None, ge=0),
    to_block: int | None = Query(None, ge=0),
    side: Side | None = Query(None),
    outcome: Outcome | None = Query(None),
) -> TradeFilters:
    return TradeFilters(
        from_block=from_block,
        to_block=to_block,
        side=side.value if side else None,
        outcome=outcome.value if outcome else None,
    )


def create_app(db: DatabaseManager) -> FastAPI:
    """Build the API application around a database manager."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        yield
        await db.dispose_async()

    app = FastAPI(title="Polymarket Trade Indexer API", version=__version__, lifespan=lifespan)
    app.state.db = db

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = str(exc.detail)
        if exc.status_code == 404 and message == "Not Found":
            message = f"Route not found: {request.method} {request.url.path}"
        return _error_json(exc.status_code, message)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        parts = [
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}"
            for err in exc.errors()
        ]
        return _error_json(400, "; ".join(parts) or "Invalid request")

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_json(500, str(exc) or "Unknown error")

    @app.get("/")
    async def index() -> dict[str, Any]:
        return {
            "name": "Polymarket Trade Indexer API",
            "version": __version__,
            "endpoints": {
                "health": "/health",
                "events": ["/events/{slug}", "/events/{slug}/markets"],
                "markets": ["/markets/{slug}", "/markets/{slug}/trades"],
                "tokens": ["/tokens/{token_id}/trades"],
            },
        }

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        connected = await db.ping()
        return HealthResponse(
            status="ok" if connected else "degraded",
            database="connected" if connected else "unavailable",
            timestamp=datetime.now(UTC),
        )

    @app.get("/events/{slug}", response_model=EventResponse, responses=_ERROR_RESPONSES)
    async def get_event(slug: str, session: AsyncSession = Depends(get_session)) -> EventResponse:
        event = await EventRepository(session).get_by_slug(slug)
        if event is None or event.id is None:
            raise HTTPException(status_code=404, detail=f"Event not found: {slug}")
        market_count = await MarketRepository(session).count_by_event_id(event.id)
        return EventResponse.model_validate(event).model_copy(update={"market_count": market_count})

    @app.get("/events/{slug}/markets", response_model=MarketsPage, responses=_ERROR_RESPONSES)
    async def get_event_markets(
        slug: str,
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        cursor: int = Query(0, ge=0),
        session: AsyncSession = Depends(get_session),
    ) -> MarketsPage:
        event = await EventRepository(session).get_by_slug(slug)
        if event is None or event.id is None:
            raise HTTPException(status_code=404, detail=f"Event not found: {slug}")
        page = await MarketRepository(session).list_by_event_id(event.id, limit=limit, offset=cursor)
        return MarketsPage(
            markets=[MarketResponse.model_validate(m) for m in page.items],
            total=page.total,
            next_cursor=_next_cursor(cursor, page),
        )

    @app.get("/markets/{slug}", response_model=MarketResponse, responses=_ERROR_RESPONSES)
    async def get_market(slug: str, session: AsyncSession = Depends(get_session)) -> MarketResponse:
        market = await MarketRepository(session).get_by_slug(slug)
        if market is None or market.id is None:
            raise HTTPException(status_code=404, detail=f"Market not found: {slug}")
        trade_count = await TradeRepository(session).count_for_market(market.id)
        return MarketResponse.model_validate(market).model_copy(update={"trade_count": trade_count})

    @app.get("/markets/{slug}/trades", response_model=TradesPage, responses=_ERROR_RESPONSES)
    async def get_market_trades(
        slug: str,
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        cursor: int = Query(0, ge=0),
        filters: TradeFilters = Depends(_trade_filters),
        session: AsyncSession = Depends(get_session),
    ) -> TradesPage:
        market = await MarketRepository(session).get_by_slug(slug)
        if market is None or market.id is None:
            raise HTTPException(status_code=404, detail=f"Market not found: {slug}")
        page = await TradeRepository(session).list_for_market(
            market.id, filters, limit=limit, offset=cursor
        )
        return TradesPage(
            trades=[TradeResponse.model_validate(t) for t in page.items],
            total=page.total,
            next_cursor=_next_cursor(cursor, page),
        )

    @app.get("/tokens/{token_id}/trades", response_model=TradesPage, responses=_ERROR_RESPONSES)
    async def get_token_trades(
        token_id: str,
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
        cursor: int = Query(0, ge=0),
        filters: TradeFilters = Depends(_trade_filters),
        session: AsyncSession = Depends(get_session),
    ) -> TradesPage:
        try:
            token = normalize_token_id(token_id)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        page = await TradeRepository(session).list_by_token_id(
            token, filters, limit=limit, offset=cursor
        )
        return TradesPage(
            trades=[TradeResponse.model_validate(t) for t in page.items],
            total=page.total,
            next_cursor=_next_cursor(cursor, page),
        )

    return app


def run_api(database_url: str, *, host: str = "127.0.0.1", port: int = 8000) -> None:
    import uvicorn

    app = create_app(DatabaseManager(database_url))
    uvicorn.run(app, host=host, port=port, reload=False)
