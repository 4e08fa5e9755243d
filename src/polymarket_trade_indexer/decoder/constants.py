"""Polymarket contract addresses and protocol constants (Polygon mainnet)."""

from __future__ import annotations

from web3 import Web3

# Bridged USDC.e, the collateral of every CTF position on Polymarket.
USDC_ADDRESS = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"
USDC_DECIMALS = 6

CTF_EXCHANGE_ADDRESS = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"
NEG_RISK_EXCHANGE_ADDRESS = "0xC5d563A36AE78145C45a50134d48A1215220f80a"
EXCHANGE_ADDRESSES: tuple[str, ...] = (CTF_EXCHANGE_ADDRESS, NEG_RISK_EXCHANGE_ADDRESS)

# UMA CTF Adapter V2; Gamma descriptors do not carry the oracle.
DEFAULT_ORACLE_ADDRESS = "0x157Ce2d672854c848c9b79C49a8Cc6cc89176a49"

ZERO_BYTES32 = "0x" + "00" * 32

# Asset id the exchanges use for the collateral leg of a fill.
COLLATERAL_ASSET_ID = 0

YES_INDEX_SET = 1
NO_INDEX_SET = 2

ORDER_FILLED_SIGNATURE = (
    "OrderFilled(bytes32,address,address,uint256,uint256,uint256,uint256,uint256)"
)
ORDER_FILLED_TOPIC = "0x" + bytes(Web3.keccak(text=ORDER_FILLED_SIGNATURE)).hex()

# Sync fallback start when no cursor exists; exchange activity begins after it.
DEFAULT_START_BLOCK = 40_000_000
DEFAULT_BATCH_SIZE_BLOCKS = 10_000
