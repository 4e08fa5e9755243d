"""Pydantic schemas for API responses and OpenAPI docs."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


# --- Health ---
class HealthResponse(BaseModel):
    status: str = "ok"
    database: str = "connected"
    timestamp: datetime


# --- Error (consistent shape for 4xx/5xx) ---
class ErrorResponse(BaseModel):
    error: str = Field(..., description="HTTP reason, e.g. Not Found")
    message: str = Field(..., description="Human-readable message")


# --- Events ---
class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    title: str | None = None
    description: str | None = None
    neg_risk: bool = False
    created_at: datetime | None = None
    market_count: int = 0


# --- Markets ---
class MarketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int | None = None
    slug: str
    condition_id: str
    question_id: str
    oracle: str
    collateral_token: str
    yes_token_id: str
    no_token_id: str
    status: str
    neg_risk: bool = False
    created_at: datetime | None = None
    trade_count: int | None = None


class MarketsPage(BaseModel):
    markets: list[MarketResponse]
    total: int
    next_cursor: int | None = None


# --- Trades ---
class TradeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
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
    price: str = Field(..., description="USDC per outcome token, 6 decimals")
    size: str = Field(..., description="Outcome tokens, 6 decimals")
    maker_asset_id: str
    taker_asset_id: str
    maker_amount: str
    taker_amount: str


class TradesPage(BaseModel):
    trades: list[TradeResponse]
    total: int
    next_cursor: int | None = None
