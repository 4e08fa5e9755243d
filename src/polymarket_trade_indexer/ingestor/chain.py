"""Polygon blockchain client with rate limiting, caching and failover.

This module provides the chain transport used by the synchronizer and the
transaction decoder:
- Rate limiting to respect provider limits
- Failover to a secondary RPC URL
- Optional Redis caching of immutable block headers

Retries are not handled here; callers wrap transport calls with
``polymarket_trade_indexer.retry.retry_with_backoff``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp
from redis.asyncio import Redis
from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

from polymarket_trade_indexer.errors import DecodeError, TransientTransportError
from polymarket_trade_indexer.ingestor.models import BlockInfo

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_REQUEST_TIMEOUT = 30

# Block headers are immutable once mined (reorgs are out of scope).
BLOCK_CACHE_TTL_SECONDS = 24 * 3600

# Upstream failures that are worth another attempt.
_TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    Web3Exception,
    aiohttp.ClientError,
    asyncio.TimeoutError,
    OSError,
)


class ChainTransport(Protocol):
    """Read-only chain access used by the indexer."""

    async def fetch_logs(
        self,
        addresses: Sequence[str],
        topic0: str,
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]: ...

    async def fetch_block(self, number: int) -> BlockInfo: ...

    async def fetch_receipt(self, tx_hash: str) -> list[dict[str, Any]]: ...

    async def get_block_number(self) -> int: ...


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else f"0x{text}"


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class PolygonClient:
    """Polygon JSON-RPC transport.

    Example:
        ```python
        client = PolygonClient(
            rpc_url="https://polygon-rpc.com",
            fallback_rpc_url="https://polygon-bor.publicnode.com",
        )
        head = await client.get_block_number()
        logs = await client.fetch_logs(EXCHANGE_ADDRESSES, ORDER_FILLED_TOPIC, head - 100, head)
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        redis: Redis | None = None,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialize the Polygon client.

        Args:
            rpc_url: Primary Polygon RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            redis: Optional Redis client for caching block headers.
            max_requests_per_second: Rate limit for RPC calls.
            request_timeout: HTTP timeout per RPC request in seconds.
        """
        self._rpc_url = rpc_url
        self._fallback_rpc_url = fallback_rpc_url
        self._redis = redis
        self._request_timeout = request_timeout

        self._w3 = self._new_web3_client(rpc_url)
        self._w3_fallback: AsyncWeb3[AsyncHTTPProvider] | None = None
        if fallback_rpc_url:
            self._w3_fallback = self._new_web3_client(fallback_rpc_url)

        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        # Track primary RPC health
        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0  # Try primary again after 60s

        self._cache_prefix = "polygon:"

    def _new_web3_client(self, rpc_url: str) -> AsyncWeb3[AsyncHTTPProvider]:
        client = AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": self._request_timeout})
        )
        self._inject_poa_middleware(client, rpc_url=rpc_url)
        return client

    def _inject_poa_middleware(self, client: AsyncWeb3[AsyncHTTPProvider], *, rpc_url: str) -> None:
        try:
            client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        except Exception as e:
            logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str, ttl: int) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    def _should_try_primary(self) -> bool:
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _execute(self, func_name: str, *args: Any, **kwargs: Any) -> Any:
        """Execute an RPC call on the primary endpoint, failing over once.

        Raises:
            TransientTransportError: If every endpoint failed.
        """
        await self._rate_limiter.acquire()

        last_error: BaseException | None = None

        # Without a fallback the primary is always tried.
        if self._should_try_primary() or self._w3_fallback is None:
            try:
                method = getattr(self._w3.eth, func_name)
                result = await method(*args, **kwargs)
                self._primary_healthy = True
                return result
            except TransactionNotFound:
                raise
            except _TRANSPORT_ERRORS as e:
                last_error = e
                logger.warning("Primary RPC %s failed: %s", func_name, e)
                self._primary_healthy = False
                self._last_primary_check = time.monotonic()

        if self._w3_fallback is not None:
            try:
                method = getattr(self._w3_fallback.eth, func_name)
                result = await method(*args, **kwargs)
                logger.info("Fallback RPC succeeded for %s", func_name)
                return result
            except TransactionNotFound:
                raise
            except _TRANSPORT_ERRORS as e:
                last_error = e
                logger.warning("Fallback RPC %s failed: %s", func_name, e)

        raise TransientTransportError(f"RPC call {func_name} failed: {last_error}") from last_error

    async def fetch_logs(
        self,
        addresses: Sequence[str],
        topic0: str,
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        """Fetch logs via ``eth_getLogs`` for one inclusive block window."""
        if from_block < 0 or to_block < from_block:
            raise ValueError(f"Invalid block window {from_block}-{to_block}")

        filter_params = {
            "address": [AsyncWeb3.to_checksum_address(a) for a in addresses],
            "topics": [topic0],
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        logs = await self._execute("get_logs", filter_params)
        return [dict(log) for log in logs]

    async def fetch_block(self, number: int) -> BlockInfo:
        """Get the header fields of a block by number."""
        if number < 0:
            raise ValueError("block number must be >= 0")

        cache_key = f"{self._cache_prefix}block:{number}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return BlockInfo.from_dict(json.loads(cached))

        block = await self._execute("get_block", number)
        info = BlockInfo(
            number=int(block["number"]),
            timestamp=int(block["timestamp"]),
            hash=_hex(block["hash"]).lower(),
        )
        await self._set_cached(cache_key, json.dumps(info.to_dict()), BLOCK_CACHE_TTL_SECONDS)
        return info

    async def fetch_receipt(self, tx_hash: str) -> list[dict[str, Any]]:
        """Return the logs of a mined transaction.

        Raises:
            DecodeError: If the transaction is unknown to the node.
        """
        try:
            receipt = await self._execute("get_transaction_receipt", tx_hash)
        except TransactionNotFound as e:
            raise DecodeError(f"Transaction not found: {tx_hash}") from e
        if receipt is None:
            raise DecodeError(f"Transaction not found: {tx_hash}")
        return [dict(log) for log in receipt["logs"]]

    async def get_block_number(self) -> int:
        return int(await self._execute("get_block_number"))

    async def health_check(self) -> bool:
        """Check if the client can reach an RPC endpoint."""
        try:
            await self.get_block_number()
            return True
        except TransientTransportError:
            return False

    async def aclose(self) -> None:
        """Close provider sessions and the Redis connection, if any."""
        providers = [self._w3.provider]
        if self._w3_fallback is not None:
            providers.append(self._w3_fallback.provider)

        for provider in providers:
            disconnect = getattr(provider, "disconnect", None)
            if not callable(disconnect):
                continue
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)

        if self._redis is not None:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.warning("Failed to close Redis connection: %s", e)
