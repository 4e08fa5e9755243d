"""Tests for the block header cache."""

import pytest

from polymarket_trade_indexer.indexer.block_cache import BlockInfoCache
from polymarket_trade_indexer.ingestor.models import BlockInfo


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def block(number: int) -> BlockInfo:
    return BlockInfo(number=number, timestamp=number * 2, hash=f"0x{number:064x}")


class TestBlockInfoCache:
    """Tests for BlockInfoCache."""

    def test_get_and_put(self) -> None:
        cache = BlockInfoCache()
        assert cache.get(1) is None

        cache.put(block(1))

        assert cache.get(1) == block(1)
        assert cache.stats.hits == 1
        assert cache.stats.misses == 1

    def test_empty_cache_has_zero_length(self) -> None:
        assert len(BlockInfoCache()) == 0

    def test_expiry(self) -> None:
        clock = FakeClock()
        cache = BlockInfoCache(ttl_seconds=10, clock=clock)
        cache.put(block(1))

        clock.now = 9.9
        assert cache.get(1) is not None
        clock.now = 10.0
        assert cache.get(1) is None
        assert len(cache) == 0

    def test_evicts_least_recently_used(self) -> None:
        cache = BlockInfoCache(max_entries=2)
        cache.put(block(1))
        cache.put(block(2))
        cache.get(1)
        cache.put(block(3))

        assert cache.get(2) is None
        assert cache.get(1) is not None
        assert cache.get(3) is not None
        assert cache.stats.evictions == 1

    def test_clear(self) -> None:
        cache = BlockInfoCache()
        cache.put(block(1))
        cache.clear()
        assert len(cache) == 0

    @pytest.mark.parametrize(("max_entries", "ttl"), [(0, 10), (10, 0)])
    def test_invalid_configuration(self, max_entries: int, ttl: float) -> None:
        with pytest.raises(ValueError):
            BlockInfoCache(max_entries=max_entries, ttl_seconds=ttl)
