"""Decoding and normalization of exchange ``OrderFilled`` events.

One fill swaps collateral (asset id 0) for an outcome token. The maker's
side of the swap decides the trade direction: a maker paying collateral is
buying the outcome token, a maker delivering the outcome token is selling it.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from polymarket_trade_indexer.decoder.constants import (
    COLLATERAL_ASSET_ID,
    EXCHANGE_ADDRESSES,
    ORDER_FILLED_TOPIC,
    USDC_DECIMALS,
)
from polymarket_trade_indexer.decoder.ids import token_id_to_hex
from polymarket_trade_indexer.decoder.models import NormalizedTrade, RawFill, Side
from polymarket_trade_indexer.errors import DecodeError, ValidationError

if TYPE_CHECKING:
    from polymarket_trade_indexer.ingestor.chain import ChainTransport

logger = logging.getLogger(__name__)

_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_ORDER_FILLED_DATA_TYPES = ["uint256", "uint256", "uint256", "uint256", "uint256"]
_SCALE = 10**USDC_DECIMALS


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        body = value[2:] if value.startswith("0x") else value
        return bytes.fromhex(body)
    raise TypeError(f"Cannot convert {type(value).__name__} to bytes")


def _to_hex(value: Any) -> str:
    return "0x" + _to_bytes(value).hex()


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise TypeError(f"Cannot convert {type(value).__name__} to int")


def _topic_to_address(topic: Any) -> str:
    raw = _to_bytes(topic)
    if len(raw) != 32:
        raise ValueError("topic is not 32 bytes")
    return "0x" + raw[-20:].hex()


def format_units(value: int, decimals: int = USDC_DECIMALS) -> str:
    """Format a non-negative integer amount with exactly ``decimals`` places."""
    scale = 10**decimals
    return f"{value // scale}.{value % scale:0{decimals}d}"


def is_exchange_address(address: str) -> bool:
    lowered = address.lower()
    return any(lowered == a.lower() for a in EXCHANGE_ADDRESSES)


def decode_order_filled_log(log: Mapping[str, Any]) -> RawFill:
    """Decode a raw RPC log into a ``RawFill``.

    Accepts both web3 ``AttributeDict`` logs (``HexBytes`` values) and plain
    JSON-RPC dicts (hex strings).

    Raises:
        DecodeError: If the log is not an ``OrderFilled`` event.
    """
    try:
        topics = list(log["topics"])
        if len(topics) != 4:
            raise DecodeError(f"Expected 4 topics, got {len(topics)}")
        if _to_hex(topics[0]).lower() != ORDER_FILLED_TOPIC:
            raise DecodeError(f"Unexpected event signature {_to_hex(topics[0])}")

        (
            maker_asset_id,
            taker_asset_id,
            maker_amount_filled,
            taker_amount_filled,
            fee,
        ) = abi_decode(_ORDER_FILLED_DATA_TYPES, _to_bytes(log["data"]))

        return RawFill(
            tx_hash=_to_hex(log["transactionHash"]).lower(),
            log_index=_to_int(log["logIndex"]),
            block_number=_to_int(log["blockNumber"]),
            exchange=str(log.get("address") or ""),
            order_hash=_to_hex(topics[1]).lower(),
            maker=_topic_to_address(topics[2]),
            taker=_topic_to_address(topics[3]),
            maker_asset_id=int(maker_asset_id),
            taker_asset_id=int(taker_asset_id),
            maker_amount_filled=int(maker_amount_filled),
            taker_amount_filled=int(taker_amount_filled),
            fee=int(fee),
        )
    except DecodeError:
        raise
    except (DecodingError, KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Malformed OrderFilled log: {e}") from e


def normalize_fill(fill: RawFill) -> NormalizedTrade:
    """Resolve side, token id, price and size for one fill.

    - maker asset is collateral: BUY of the taker's asset.
    - taker asset is collateral: SELL of the maker's asset.
    - neither is collateral: the taker's asset is the traded token (SELL).

    Raises:
        DecodeError: If both legs are collateral.
    """
    maker_is_collateral = fill.maker_asset_id == COLLATERAL_ASSET_ID
    taker_is_collateral = fill.taker_asset_id == COLLATERAL_ASSET_ID

    if maker_is_collateral and taker_is_collateral:
        raise DecodeError("Invalid OrderFilled event: both legs are collateral (asset id 0)")

    if maker_is_collateral:
        token_id = fill.taker_asset_id
        collateral_amount = fill.maker_amount_filled
        outcome_amount = fill.taker_amount_filled
        side = Side.BUY
    else:
        # Covers the double outcome leg too: the taker's asset is reported.
        token_id = fill.maker_asset_id if taker_is_collateral else fill.taker_asset_id
        collateral_amount = fill.taker_amount_filled
        outcome_amount = fill.maker_amount_filled
        side = Side.SELL

    if outcome_amount == 0:
        price = "0"
    else:
        price = format_units((collateral_amount * _SCALE) // outcome_amount)

    try:
        token_hex = token_id_to_hex(token_id)
    except ValidationError as e:
        raise DecodeError(str(e)) from e

    return NormalizedTrade(
        tx_hash=fill.tx_hash,
        log_index=fill.log_index,
        block_number=fill.block_number,
        exchange=fill.exchange,
        maker=fill.maker,
        taker=fill.taker,
        side=side,
        token_id=token_hex,
        price=price,
        size=format_units(outcome_amount),
        maker_asset_id=str(fill.maker_asset_id),
        taker_asset_id=str(fill.taker_asset_id),
        maker_amount=str(fill.maker_amount_filled),
        taker_amount=str(fill.taker_amount_filled),
    )


def normalize_log(log: Mapping[str, Any]) -> NormalizedTrade:
    """Decode and normalize a single raw log."""
    return normalize_fill(decode_order_filled_log(log))


def log_coordinates(log: Mapping[str, Any]) -> tuple[str | None, int | None, int | None]:
    """Best-effort ``(tx_hash, log_index, block_number)`` of a possibly malformed log."""
    coords: list[Any] = []
    for key, convert in (
        ("transactionHash", lambda v: _to_hex(v).lower()),
        ("logIndex", _to_int),
        ("blockNumber", _to_int),
    ):
        try:
            coords.append(convert(log[key]))
        except (KeyError, TypeError, ValueError):
            coords.append(None)
    return coords[0], coords[1], coords[2]


def _is_order_filled(log: Mapping[str, Any]) -> bool:
    topics = log.get("topics") or []
    if not topics:
        return False
    try:
        return _to_hex(topics[0]).lower() == ORDER_FILLED_TOPIC
    except (TypeError, ValueError):
        return False


def is_valid_tx_hash(tx_hash: str) -> bool:
    return bool(_TX_HASH_RE.match(tx_hash))


async def decode_transaction(transport: ChainTransport, tx_hash: str) -> list[NormalizedTrade]:
    """Decode every exchange fill emitted by one transaction.

    Logs that fail to decode are logged and skipped.

    Raises:
        ValidationError: If ``tx_hash`` is malformed.
        DecodeError: If the transaction carries no decodable fill.
    """
    if not is_valid_tx_hash(tx_hash):
        raise ValidationError(f"Invalid transaction hash: {tx_hash!r}")

    logs: Sequence[Mapping[str, Any]] = await transport.fetch_receipt(tx_hash)
    exchange_logs = [
        log
        for log in logs
        if is_exchange_address(str(log.get("address", ""))) and _is_order_filled(log)
    ]
    if not exchange_logs:
        raise DecodeError(f"No OrderFilled events found in transaction {tx_hash}")

    trades: list[NormalizedTrade] = []
    for log in exchange_logs:
        try:
            trades.append(normalize_log(log))
        except DecodeError as e:
            logger.warning(
                "Skipping undecodable log (tx=%s, logIndex=%s): %s",
                tx_hash,
                log.get("logIndex"),
                e,
            )

    if not trades:
        raise DecodeError(f"Could not decode any OrderFilled event in transaction {tx_hash}")
    return trades
