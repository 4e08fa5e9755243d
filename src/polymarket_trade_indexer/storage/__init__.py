"""Storage layer - Database schemas and repositories."""

from polymarket_trade_indexer.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from polymarket_trade_indexer.storage.models import (
    Base,
    EventModel,
    MarketModel,
    SyncStateModel,
    TradeModel,
)
from polymarket_trade_indexer.storage.repos import (
    EventDTO,
    EventRepository,
    MarketDTO,
    MarketRepository,
    Page,
    SyncStateDTO,
    SyncStateRepository,
    TradeDTO,
    TradeFilters,
    TradeRepository,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "EventDTO",
    "EventModel",
    "EventRepository",
    "MarketDTO",
    "MarketModel",
    "MarketRepository",
    "Page",
    "SyncStateDTO",
    "SyncStateModel",
    "SyncStateRepository",
    "TradeDTO",
    "TradeFilters",
    "TradeModel",
    "TradeRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
