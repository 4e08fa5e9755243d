"""Data ingestion layer - Polygon RPC transport and Gamma metadata client."""

from polymarket_trade_indexer.ingestor.chain import ChainTransport, PolygonClient, RateLimiter
from polymarket_trade_indexer.ingestor.gamma import GammaClient, MarketRegistry
from polymarket_trade_indexer.ingestor.models import BlockInfo, GammaEvent, GammaMarket

__all__ = [
    "BlockInfo",
    "ChainTransport",
    "GammaClient",
    "GammaEvent",
    "GammaMarket",
    "MarketRegistry",
    "PolygonClient",
    "RateLimiter",
]
