"""Indexer layer - market discovery and block-range trade synchronization."""

from polymarket_trade_indexer.indexer.block_cache import BlockInfoCache
from polymarket_trade_indexer.indexer.discovery import (
    DiscoveryResult,
    MarketFailure,
    MarketRegistryReconciler,
)
from polymarket_trade_indexer.indexer.sync import (
    BlockRangeSynchronizer,
    LogFailure,
    SyncReport,
    WindowOutcome,
)

__all__ = [
    "BlockInfoCache",
    "BlockRangeSynchronizer",
    "DiscoveryResult",
    "LogFailure",
    "MarketFailure",
    "MarketRegistryReconciler",
    "SyncReport",
    "WindowOutcome",
]
