"""Read API - FastAPI application over the trade store."""

from polymarket_trade_indexer.api.app import create_app, run_api

__all__ = ["create_app", "run_api"]
