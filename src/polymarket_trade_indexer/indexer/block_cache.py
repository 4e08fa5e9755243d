"""Bounded in-process cache of block headers.

Owned by one synchronizer instance. Entries expire after a TTL and the
least recently used entry is evicted once the cache is full.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from polymarket_trade_indexer.ingestor.models import BlockInfo

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 10_000
DEFAULT_TTL_SECONDS = 3600.0


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0


class BlockInfoCache:
    """LRU + TTL cache mapping block number to ``BlockInfo``."""

    def __init__(
        self,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[int, tuple[float, BlockInfo]] = OrderedDict()
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, number: int) -> BlockInfo | None:
        entry = self._entries.get(number)
        if entry is None:
            self.stats.misses += 1
            return None

        expires_at, info = entry
        if self._clock() >= expires_at:
            del self._entries[number]
            self.stats.misses += 1
            return None

        self._entries.move_to_end(number)
        self.stats.hits += 1
        return info

    def put(self, info: BlockInfo) -> None:
        self._entries[info.number] = (self._clock() + self._ttl, info)
        self._entries.move_to_end(info.number)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
            self.stats.evictions += 1

    def clear(self) -> None:
        self._entries.clear()
        logger.debug("Block info cache cleared")
