"""Fakes shared by the discovery and synchronizer tests."""

from typing import Any

import pytest
from eth_abi import encode

from polymarket_trade_indexer.decoder.constants import (
    CTF_EXCHANGE_ADDRESS,
    DEFAULT_ORACLE_ADDRESS,
    ORDER_FILLED_TOPIC,
)
from polymarket_trade_indexer.decoder.ids import decode_market, normalize_token_id
from polymarket_trade_indexer.errors import TransientTransportError
from polymarket_trade_indexer.ingestor.models import BlockInfo, GammaEvent, GammaMarket
from polymarket_trade_indexer.retry import RetryPolicy

MAKER = "0x" + "11" * 20
TAKER = "0x" + "22" * 20


class FakeRegistry:
    """In-memory market registry recording every lookup."""

    def __init__(self) -> None:
        self.events: dict[str, GammaEvent] = {}
        self.markets: dict[str, GammaMarket] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures_left = 0

    def _maybe_fail(self) -> None:
        if self.failures_left > 0:
            self.failures_left -= 1
            raise TransientTransportError("registry unavailable")

    def add_market(self, market: GammaMarket) -> GammaMarket:
        self.markets[market.condition_id.lower()] = market
        return market

    async def get_event_by_slug(self, slug: str) -> GammaEvent | None:
        self.calls.append(("event", slug))
        self._maybe_fail()
        return self.events.get(slug)

    async def get_market_by_condition_id(self, condition_id: str) -> GammaMarket | None:
        self.calls.append(("condition", condition_id))
        self._maybe_fail()
        return self.markets.get(condition_id.lower())

    async def get_market_by_token_id(self, token_id: str) -> GammaMarket | None:
        self.calls.append(("token", token_id))
        self._maybe_fail()
        for market in self.markets.values():
            if token_id in {normalize_token_id(t) for t in market.clob_token_ids}:
                return market
        return None


class FakeChain:
    """Chain transport serving a fixed set of logs."""

    def __init__(self, head: int = 1_000) -> None:
        self.head = head
        self.logs: list[dict[str, Any]] = []
        self.failing_windows: set[tuple[int, int]] = set()
        self.head_unreachable = False
        self.log_requests: list[tuple[int, int]] = []
        self.block_requests: list[int] = []

    async def fetch_logs(
        self, addresses: Any, topic0: str, from_block: int, to_block: int
    ) -> list[dict[str, Any]]:
        self.log_requests.append((from_block, to_block))
        if (from_block, to_block) in self.failing_windows:
            raise TransientTransportError(f"getLogs {from_block}-{to_block} timed out")
        return [log for log in self.logs if from_block <= int(log["blockNumber"], 16) <= to_block]

    async def fetch_block(self, number: int) -> BlockInfo:
        self.block_requests.append(number)
        return BlockInfo(number=number, timestamp=1_700_000_000 + number, hash=f"0x{number:064x}")

    async def fetch_receipt(self, tx_hash: str) -> list[dict[str, Any]]:
        return [log for log in self.logs if log["transactionHash"] == tx_hash]

    async def get_block_number(self) -> int:
        if self.head_unreachable:
            raise TransientTransportError("head unavailable")
        return self.head


def make_descriptor(
    condition_byte: str = "ab",
    *,
    slug: str | None = None,
    claimed: tuple[str, str] | None = None,
    **overrides: Any,
) -> GammaMarket:
    """Gamma descriptor whose claimed token ids match the derived ones by default."""
    condition_id = "0x" + condition_byte * 32
    question_id = "0x" + "cd" * 32
    decoded = decode_market(condition_id, question_id, DEFAULT_ORACLE_ADDRESS)
    if claimed is None:
        claimed = (str(int(decoded.yes_token_id, 16)), str(int(decoded.no_token_id, 16)))
    values: dict[str, Any] = {
        "slug": slug or f"market-{condition_byte}",
        "condition_id": condition_id,
        "question_id": question_id,
        "clob_token_ids": claimed,
        "question": "Will it happen?",
    }
    values.update(overrides)
    return GammaMarket(**values)


def order_filled_log(
    token_id: str,
    *,
    block_number: int,
    log_index: int,
    tx_hash: str | None = None,
    buy: bool = True,
    collateral: int = 500_000,
    shares: int = 1_000_000,
) -> dict[str, Any]:
    """JSON-RPC shaped OrderFilled log trading ``token_id``."""
    token = int(token_id, 16)
    if buy:
        assets = [0, token, collateral, shares]
    else:
        assets = [token, 0, shares, collateral]
    data = encode(["uint256"] * 5, [*assets, 0])
    return {
        "address": CTF_EXCHANGE_ADDRESS,
        "topics": [
            ORDER_FILLED_TOPIC,
            "0x" + "bb" * 32,
            "0x" + "00" * 12 + MAKER[2:],
            "0x" + "00" * 12 + TAKER[2:],
        ],
        "data": "0x" + data.hex(),
        "transactionHash": tx_hash or f"0x{block_number:060x}{log_index:04x}",
        "logIndex": hex(log_index),
        "blockNumber": hex(block_number),
    }


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=2, base_delay_seconds=0)


@pytest.fixture
def descriptor():
    """Factory for Gamma market descriptors."""
    return make_descriptor


@pytest.fixture
def fill_log():
    """Factory for OrderFilled logs."""
    return order_filled_log
