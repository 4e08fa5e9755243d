"""Outcome-token identifier derivation for the Gnosis Conditional Tokens Framework.

A position (outcome token) id is derived in two hashing stages::

    collection_id = keccak256(encodePacked(parent_collection_id, condition_id, index_set))
    position_id   = keccak256(encodePacked(collateral_token, collection_id))

Everything here is pure: no network access and no mutable state.
"""

from __future__ import annotations

import re

from eth_abi.packed import encode_packed
from web3 import Web3

from polymarket_trade_indexer.decoder.constants import (
    NO_INDEX_SET,
    USDC_ADDRESS,
    YES_INDEX_SET,
    ZERO_BYTES32,
)
from polymarket_trade_indexer.decoder.models import DecodedMarket
from polymarket_trade_indexer.errors import IrreversibleDerivationError, ValidationError

_BYTES32_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_ADDRESS_RE = re.compile(r"^[0-9a-fA-F]{40}$")
_DECIMAL_RE = re.compile(r"^[0-9]+$")

_UINT256_MAX = 2**256 - 1


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


def to_hex(value: str) -> str:
    """Ensure a hex string carries the ``0x`` prefix."""
    return value if value.startswith("0x") else f"0x{_strip_0x(value)}"


def is_valid_bytes32(value: str) -> bool:
    return isinstance(value, str) and bool(_BYTES32_RE.match(_strip_0x(value)))


def is_valid_address(value: str) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(_strip_0x(value)))


def _require_bytes32(name: str, value: str) -> bytes:
    if not value or not is_valid_bytes32(value):
        raise ValidationError(
            f"Invalid {name}: {value!r}. Must be 64 hex characters (bytes32)"
        )
    return bytes.fromhex(_strip_0x(value))


def _require_address(name: str, value: str) -> bytes:
    if not value or not is_valid_address(value):
        raise ValidationError(
            f"Invalid {name}: {value!r}. Must be 40 hex characters (address)"
        )
    return bytes.fromhex(_strip_0x(value))


def _keccak_hex(data: bytes) -> str:
    return "0x" + bytes(Web3.keccak(data)).hex()


def token_id_to_hex(token_id: int) -> str:
    """Render a uint256 token id as a 66-character ``0x`` hex string."""
    if token_id < 0 or token_id > _UINT256_MAX:
        raise ValidationError(f"Token id out of uint256 range: {token_id}")
    return f"0x{token_id:064x}"


def normalize_token_id(token_id: str | int) -> str:
    """Canonicalize a token id given as decimal string, hex string or int.

    The Gamma API reports ``clobTokenIds`` in decimal while on-chain logs carry
    them as uint256; both normalize to the same lower-case 66-character hex.
    """
    if isinstance(token_id, int):
        return token_id_to_hex(token_id)
    raw = str(token_id).strip()
    if raw.startswith(("0x", "0X")):
        body = raw[2:]
        if not body or len(body) > 64 or not re.fullmatch(r"[0-9a-fA-F]+", body):
            raise ValidationError(f"Invalid token id: {token_id!r}")
        return token_id_to_hex(int(body, 16))
    if _DECIMAL_RE.match(raw):
        return token_id_to_hex(int(raw))
    raise ValidationError(f"Invalid token id: {token_id!r}")


def get_collection_id(parent_collection_id: str, condition_id: str, index_set: int) -> str:
    """Compute a CTF collection id.

    Args:
        parent_collection_id: bytes32 hex; ``ZERO_BYTES32`` for root collections.
        condition_id: bytes32 hex condition id.
        index_set: Outcome-slot bitmask (1 = YES, 2 = NO for binary markets).

    Returns:
        0x-prefixed 32-byte hex collection id.
    """
    parent = _require_bytes32("parentCollectionId", parent_collection_id)
    condition = _require_bytes32("conditionId", condition_id)
    if isinstance(index_set, bool) or not isinstance(index_set, int) or index_set <= 0:
        raise ValidationError(f"Invalid indexSet: {index_set!r}. Must be a positive integer")
    if index_set > _UINT256_MAX:
        raise ValidationError(f"Invalid indexSet: {index_set!r}. Exceeds uint256")

    encoded = encode_packed(["bytes32", "bytes32", "uint256"], [parent, condition, index_set])
    return _keccak_hex(encoded)


def get_position_id(collateral_token: str, collection_id: str) -> str:
    """Compute a CTF position id (the ERC1155 outcome token id)."""
    collateral = _require_address("collateralToken", collateral_token)
    collection = _require_bytes32("collectionId", collection_id)

    encoded = encode_packed(["address", "bytes32"], [collateral, collection])
    return _keccak_hex(encoded)


def decode_market(
    condition_id: str,
    question_id: str,
    oracle: str,
    collateral_token: str = USDC_ADDRESS,
) -> DecodedMarket:
    """Derive the YES and NO token ids of a binary market.

    The question id and oracle are validated and carried through, but they are
    condition metadata: neither is a hash input.

    Raises:
        ValidationError: If any identifier or address is malformed.
    """
    _require_bytes32("conditionId", condition_id)
    _require_bytes32("questionId", question_id)
    _require_address("oracle", oracle)
    _require_address("collateralToken", collateral_token)

    condition_hex = to_hex(condition_id).lower()

    yes_collection = get_collection_id(ZERO_BYTES32, condition_hex, YES_INDEX_SET)
    no_collection = get_collection_id(ZERO_BYTES32, condition_hex, NO_INDEX_SET)

    return DecodedMarket(
        condition_id=condition_hex,
        question_id=to_hex(question_id).lower(),
        oracle=to_hex(oracle),
        collateral_token=to_hex(collateral_token),
        yes_token_id=get_position_id(collateral_token, yes_collection),
        no_token_id=get_position_id(collateral_token, no_collection),
    )


def get_collection_id_from_token_id(token_id: str, collateral_token: str = USDC_ADDRESS) -> str:
    """Always fails: keccak256 is one-way, so a position id cannot be inverted."""
    raise IrreversibleDerivationError(
        f"Cannot derive a collection id from token id {token_id}: keccak256 is a one-way hash"
    )
