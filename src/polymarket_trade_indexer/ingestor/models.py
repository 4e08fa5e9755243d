"""Data models for the ingestor module."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from polymarket_trade_indexer.decoder.models import MarketStatus


def _parse_json_list(value: Any) -> list[Any]:
    """Gamma serializes some list fields as JSON strings."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _opt_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    return bool(value)


@dataclass(frozen=True)
class BlockInfo:
    """Header fields the synchronizer attaches to each trade."""

    number: int
    timestamp: int
    hash: str

    @property
    def timestamp_dt(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=UTC)

    def to_dict(self) -> dict[str, Any]:
        return {"number": self.number, "timestamp": self.timestamp, "hash": self.hash}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BlockInfo:
        return cls(
            number=int(data["number"]),
            timestamp=int(data["timestamp"]),
            hash=str(data["hash"]),
        )


@dataclass(frozen=True)
class GammaMarket:
    """Market descriptor as reported by the Gamma API."""

    slug: str
    condition_id: str
    question_id: str
    clob_token_ids: tuple[str, ...]
    question: str = ""
    oracle: str | None = None
    neg_risk: bool = False
    active: bool = True
    closed: bool = False
    archived: bool = False
    enable_order_book: bool = True
    accepting_orders: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GammaMarket:
        """Create a GammaMarket from a Gamma API response object."""
        question_id = data.get("questionID") or data.get("questionId") or ""
        return cls(
            slug=str(data.get("slug") or ""),
            condition_id=str(data.get("conditionId") or data.get("condition_id") or ""),
            question_id=str(question_id),
            clob_token_ids=tuple(str(t) for t in _parse_json_list(data.get("clobTokenIds"))),
            question=str(data.get("question") or ""),
            oracle=data.get("oracle") or None,
            neg_risk=bool(data.get("negRisk", False)),
            active=_opt_bool(data.get("active"), True),
            closed=_opt_bool(data.get("closed"), False),
            archived=_opt_bool(data.get("archived"), False),
            enable_order_book=_opt_bool(data.get("enableOrderBook"), True),
            accepting_orders=_opt_bool(data.get("acceptingOrders"), True),
        )

    @property
    def is_complete(self) -> bool:
        """True when the descriptor carries everything needed to derive token ids."""
        return bool(self.slug and self.condition_id and self.question_id and len(self.clob_token_ids) >= 2)

    @property
    def status(self) -> str:
        if self.closed or self.archived:
            return MarketStatus.CLOSED.value
        if not self.enable_order_book or not self.accepting_orders:
            return MarketStatus.CLOSED.value
        return MarketStatus.ACTIVE.value


@dataclass(frozen=True)
class GammaEvent:
    """Event descriptor with its nested markets."""

    slug: str
    title: str | None = None
    description: str | None = None
    neg_risk: bool = False
    markets: tuple[GammaMarket, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GammaEvent:
        markets = tuple(
            GammaMarket.from_dict(m) for m in data.get("markets") or [] if isinstance(m, dict)
        )
        return cls(
            slug=str(data.get("slug") or ""),
            title=data.get("title") or None,
            description=data.get("description") or None,
            neg_risk=bool(data.get("negRisk", False)),
            markets=markets,
        )
