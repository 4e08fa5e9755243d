"""Data models for decoded markets and fills."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class Side(str, Enum):
    """Trade direction from the maker's point of view."""

    BUY = "BUY"
    SELL = "SELL"


class Outcome(str, Enum):
    """Binary market outcome a token id belongs to."""

    YES = "YES"
    NO = "NO"


class MarketStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(frozen=True)
class DecodedMarket:
    """Condition parameters plus the derived YES/NO position ids."""

    condition_id: str
    question_id: str
    oracle: str
    collateral_token: str
    yes_token_id: str
    no_token_id: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class RawFill:
    """A decoded ``OrderFilled`` log before side/price resolution.

    Asset ids and amounts stay as integers (uint256).
    """

    tx_hash: str
    log_index: int
    block_number: int
    exchange: str
    order_hash: str
    maker: str
    taker: str
    maker_asset_id: int
    taker_asset_id: int
    maker_amount_filled: int
    taker_amount_filled: int
    fee: int = 0


@dataclass(frozen=True)
class NormalizedTrade:
    """Canonical trade record derived from one fill.

    Numeric fields are decimal strings so they survive the storage boundary
    without rounding.
    """

    tx_hash: str
    log_index: int
    block_number: int
    exchange: str
    maker: str
    taker: str
    side: Side
    token_id: str
    price: str
    size: str
    maker_asset_id: str
    taker_asset_id: str
    maker_amount: str
    taker_amount: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["side"] = self.side.value
        return data
