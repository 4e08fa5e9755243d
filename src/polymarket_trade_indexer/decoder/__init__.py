"""Decoder layer - token id derivation and fill normalization."""

from polymarket_trade_indexer.decoder.ids import (
    decode_market,
    get_collection_id,
    get_collection_id_from_token_id,
    get_position_id,
    normalize_token_id,
)
from polymarket_trade_indexer.decoder.models import (
    DecodedMarket,
    MarketStatus,
    NormalizedTrade,
    Outcome,
    RawFill,
    Side,
)
from polymarket_trade_indexer.decoder.trades import (
    decode_order_filled_log,
    decode_transaction,
    normalize_fill,
    normalize_log,
)

__all__ = [
    "DecodedMarket",
    "MarketStatus",
    "NormalizedTrade",
    "Outcome",
    "RawFill",
    "Side",
    "decode_market",
    "decode_order_filled_log",
    "decode_transaction",
    "get_collection_id",
    "get_collection_id_from_token_id",
    "get_position_id",
    "normalize_fill",
    "normalize_log",
    "normalize_token_id",
]
