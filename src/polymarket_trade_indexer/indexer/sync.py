"""Batched block-range synchronizer for exchange fills.

A run walks ``[from_block, to_block]`` in fixed-size windows, strictly in
increasing order. Per window it fetches ``OrderFilled`` logs, normalizes
them, attaches each to a stored market, persists the window's trades in one
transaction and then advances the durable cursor.

Failure handling:
- An undecodable log becomes a ``LogFailure``; its siblings are kept.
- A window whose fetch, persist or cursor write fails becomes a
  ``WindowError`` and the run moves on. From then on the cursor is left
  where it was, so the next run starts again at the failed window.
- Re-processing a window is harmless: trades are keyed by
  ``(tx_hash, log_index)``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from polymarket_trade_indexer.decoder.constants import (
    DEFAULT_BATCH_SIZE_BLOCKS,
    DEFAULT_START_BLOCK,
    EXCHANGE_ADDRESSES,
    ORDER_FILLED_TOPIC,
)
from polymarket_trade_indexer.decoder.models import NormalizedTrade
from polymarket_trade_indexer.decoder.trades import log_coordinates, normalize_log
from polymarket_trade_indexer.errors import (
    DecodeError,
    FatalConfigError,
    IndexerError,
    RetryError,
    UnresolvedMarketError,
    WindowError,
)
from polymarket_trade_indexer.indexer.block_cache import BlockInfoCache
from polymarket_trade_indexer.retry import RetryPolicy, retry_with_backoff
from polymarket_trade_indexer.storage.repos import (
    MarketDTO,
    MarketRepository,
    SyncStateRepository,
    TradeDTO,
    TradeRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from polymarket_trade_indexer.indexer.discovery import MarketRegistryReconciler
    from polymarket_trade_indexer.ingestor.chain import ChainTransport
    from polymarket_trade_indexer.ingestor.models import BlockInfo

logger = logging.getLogger(__name__)

DEFAULT_STREAM_KEY = "trade_sync"


@dataclass(frozen=True)
class LogFailure:
    """A single log that could not be turned into a trade."""

    reason: str
    tx_hash: str | None = None
    log_index: int | None = None
    block_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "log_index": self.log_index,
            "block_number": self.block_number,
            "reason": self.reason,
        }


@dataclass
class WindowOutcome:
    """What happened to one block window."""

    from_block: int
    to_block: int
    logs_fetched: int = 0
    trades_seen: int = 0
    inserted: int = 0
    unresolved: int = 0
    failures: list[LogFailure] = field(default_factory=list)
    error: WindowError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncReport:
    """Summary of one synchronizer run."""

    from_block: int | None = None
    to_block: int | None = None
    blocks_processed: int = 0
    windows_processed: int = 0
    trades_seen: int = 0
    trades_inserted: int = 0
    unresolved: int = 0
    log_failures: list[LogFailure] = field(default_factory=list)
    window_errors: list[WindowError] = field(default_factory=list)
    cursor: int | None = None

    @property
    def ok(self) -> bool:
        return not self.window_errors

    def add(self, outcome: WindowOutcome) -> None:
        self.windows_processed += 1
        self.trades_seen += outcome.trades_seen
        self.trades_inserted += outcome.inserted
        self.unresolved += outcome.unresolved
        self.log_failures.extend(outcome.failures)
        if outcome.error is not None:
            self.window_errors.append(outcome.error)
        else:
            self.blocks_processed += outcome.to_block - outcome.from_block + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_block": self.from_block,
            "to_block": self.to_block,
            "blocks_processed": self.blocks_processed,
            "windows_processed": self.windows_processed,
            "trades_seen": self.trades_seen,
            "trades_inserted": self.trades_inserted,
            "unresolved": self.unresolved,
            "log_failures": [f.to_dict() for f in self.log_failures],
            "window_errors": [e.to_dict() for e in self.window_errors],
            "cursor": self.cursor,
            "ok": self.ok,
        }


def _sort_key(log: Mapping[str, Any]) -> tuple[int, int]:
    _, log_index, block_number = log_coordinates(log)
    return (block_number or 0, log_index or 0)


class BlockRangeSynchronizer:
    """Indexes exchange fills into the trade store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        transport: ChainTransport,
        *,
        reconciler: MarketRegistryReconciler | None = None,
        retry_policy: RetryPolicy | None = None,
        block_cache: BlockInfoCache | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE_BLOCKS,
        default_start_block: int = DEFAULT_START_BLOCK,
        stream_key: str = DEFAULT_STREAM_KEY,
        dynamic_discovery: bool = True,
        exchange_addresses: Sequence[str] = EXCHANGE_ADDRESSES,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            session_factory: Async session factory for the trade store.
            transport: Chain transport for logs, blocks and the chain head.
            reconciler: Used to discover markets for unknown token ids.
            retry_policy: Retry policy for every transport call.
            block_cache: Block header cache; a private one is created if omitted.
            batch_size: Blocks per window.
            default_start_block: First block when no cursor is stored.
            stream_key: Cursor key in ``sync_state``.
            dynamic_discovery: Look up unknown token ids via ``reconciler``.
            exchange_addresses: Contracts whose logs are indexed.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if default_start_block < 0:
            raise ValueError("default_start_block must be >= 0")

        self._session_factory = session_factory
        self._transport = transport
        self._reconciler = reconciler
        self._retry_policy = retry_policy or RetryPolicy()
        self._block_cache = block_cache if block_cache is not None else BlockInfoCache()
        self._batch_size = batch_size
        self._default_start_block = default_start_block
        self._stream_key = stream_key
        self._dynamic_discovery = dynamic_discovery
        self._exchange_addresses = tuple(exchange_addresses)

        # Per-run memo of token id -> market (None once discovery gave up).
        self._markets: dict[str, MarketDTO | None] = {}

    @property
    def block_cache(self) -> BlockInfoCache:
        return self._block_cache

    async def get_cursor(self) -> int | None:
        async with self._session_factory() as session:
            state = await SyncStateRepository(session).get(self._stream_key)
        return state.last_block if state else None

    async def compute_range(
        self,
        from_block: int | None = None,
        to_block: int | None = None,
    ) -> tuple[int, int] | None:
        """Resolve the inclusive block range for a run.

        Returns:
            ``(start, end)``, or None when there is nothing to do.

        Raises:
            FatalConfigError: For negative or inverted explicit bounds, or
                when the chain head is needed but unreachable.
        """
        if from_block is not None and from_block < 0:
            raise FatalConfigError(f"from_block must be >= 0, got {from_block}")
        if to_block is not None and to_block < 0:
            raise FatalConfigError(f"to_block must be >= 0, got {to_block}")
        if from_block is not None and to_block is not None and from_block > to_block:
            raise FatalConfigError(f"from_block {from_block} is after to_block {to_block}")

        if to_block is None:
            try:
                end = await retry_with_backoff(
                    self._transport.get_block_number,
                    self._retry_policy,
                    description="get_block_number",
                )
            except RetryError as e:
                raise FatalConfigError(f"Chain head unreachable: {e}") from e
        else:
            end = to_block

        if from_block is not None:
            start = from_block
        else:
            cursor = await self.get_cursor()
            start = cursor + 1 if cursor is not None else self._default_start_block

        if start > end:
            logger.info("Nothing to sync: start %d is past end %d", start, end)
            return None
        return start, end

    async def run(
        self,
        from_block: int | None = None,
        to_block: int | None = None,
    ) -> SyncReport:
        """Run one synchronization pass.

        Raises:
            FatalConfigError: If no valid block range can be derived.
        """
        block_range = await self.compute_range(from_block, to_block)
        report = SyncReport(cursor=await self.get_cursor())
        if block_range is None:
            return report

        start, end = block_range
        report.from_block, report.to_block = start, end
        self._markets.clear()
        cursor_frozen = False

        logger.info(
            "Sync started: blocks %d-%d in windows of %d", start, end, self._batch_size
        )

        for window_start in range(start, end + 1, self._batch_size):
            window_end = min(window_start + self._batch_size - 1, end)
            outcome = await self.process_window(window_start, window_end)
            report.add(outcome)

            if outcome.error is not None:
                if not cursor_frozen:
                    logger.warning(
                        "Cursor frozen at %s after failed window %d-%d",
                        report.cursor,
                        window_start,
                        window_end,
                    )
                cursor_frozen = True
                continue

            if cursor_frozen:
                continue
            try:
                report.cursor = await self._advance_cursor(window_end)
            except SQLAlchemyError as e:
                error = WindowError(window_start, window_end, f"cursor advance failed: {e}")
                logger.error("%s; cursor frozen at %s", error, report.cursor)
                report.window_errors.append(error)
                cursor_frozen = True

        logger.info(
            "Sync finished: %d windows, %d trades inserted (%d seen, %d unresolved, "
            "%d log failures, %d window errors)",
            report.windows_processed,
            report.trades_inserted,
            report.trades_seen,
            report.unresolved,
            len(report.log_failures),
            len(report.window_errors),
        )
        return report

    async def process_window(self, from_block: int, to_block: int) -> WindowOutcome:
        """Fetch, normalize, resolve and persist one window."""
        outcome = WindowOutcome(from_block=from_block, to_block=to_block)
        try:
            logs = await retry_with_backoff(
                lambda: self._transport.fetch_logs(
                    self._exchange_addresses, ORDER_FILLED_TOPIC, from_block, to_block
                ),
                self._retry_policy,
                description=f"fetch_logs({from_block}-{to_block})",
            )
            outcome.logs_fetched = len(logs)

            trades = self._normalize(logs, outcome)
            outcome.trades_seen = len(trades)

            resolved = await self._resolve(trades, outcome)
            rows = await self._build_rows(resolved)
            outcome.inserted = await self._persist(rows)
        except (IndexerError, SQLAlchemyError) as e:
            outcome.error = WindowError(from_block, to_block, str(e))
            logger.error("Window %d-%d failed: %s", from_block, to_block, e)
            return outcome

        if outcome.logs_fetched:
            logger.info(
                "Window %d-%d: %d logs, %d trades, %d inserted, %d unresolved",
                from_block,
                to_block,
                outcome.logs_fetched,
                outcome.trades_seen,
                outcome.inserted,
                outcome.unresolved,
            )
        return outcome

    def _normalize(
        self,
        logs: Sequence[Mapping[str, Any]],
        outcome: WindowOutcome,
    ) -> list[NormalizedTrade]:
        trades: list[NormalizedTrade] = []
        for log in sorted(logs, key=_sort_key):
            try:
                trades.append(normalize_log(log))
            except DecodeError as e:
                tx_hash, log_index, block_number = log_coordinates(log)
                logger.warning(
                    "Skipping log (tx=%s, logIndex=%s): %s", tx_hash, log_index, e
                )
                outcome.failures.append(
                    LogFailure(
                        reason=str(e),
                        tx_hash=tx_hash,
                        log_index=log_index,
                        block_number=block_number,
                    )
                )
        return trades

    async def _resolve(
        self,
        trades: Sequence[NormalizedTrade],
        outcome: WindowOutcome,
    ) -> list[tuple[NormalizedTrade, MarketDTO]]:
        unknown = {t.token_id for t in trades if t.token_id not in self._markets}
        if unknown:
            async with self._session_factory() as session:
                repo = MarketRepository(session)
                for token_id in unknown:
                    market = await repo.find_by_token_id(token_id)
                    if market is not None:
                        self._markets[token_id] = market

        for token_id in unknown:
            if token_id not in self._markets:
                self._markets[token_id] = await self._discover(token_id)

        resolved: list[tuple[NormalizedTrade, MarketDTO]] = []
        for trade in trades:
            try:
                market = self._market_for(trade.token_id)
            except UnresolvedMarketError as e:
                outcome.unresolved += 1
                logger.debug("Dropping trade %s:%d: %s", trade.tx_hash, trade.log_index, e)
                continue
            resolved.append((trade, market))
        return resolved

    def _market_for(self, token_id: str) -> MarketDTO:
        market = self._markets.get(token_id)
        if market is None:
            raise UnresolvedMarketError(token_id)
        return market

    async def _discover(self, token_id: str) -> MarketDTO | None:
        # Tried at most once per token per run; the memo records the result.
        if not self._dynamic_discovery or self._reconciler is None:
            return None
        try:
            market = await self._reconciler.discover_token(token_id)
        except IndexerError as e:
            logger.warning("Discovery failed for token %s: %s", token_id, e)
            return None
        if market is None:
            logger.warning("Token %s is not attached to any known market", token_id)
        return market

    async def _block_info(self, number: int) -> BlockInfo:
        info = self._block_cache.get(number)
        if info is None:
            info = await retry_with_backoff(
                lambda: self._transport.fetch_block(number),
                self._retry_policy,
                description=f"fetch_block({number})",
            )
            self._block_cache.put(info)
        return info

    async def _build_rows(
        self,
        resolved: Sequence[tuple[NormalizedTrade, MarketDTO]],
    ) -> list[TradeDTO]:
        rows: list[TradeDTO] = []
        for trade, market in resolved:
            block = await self._block_info(trade.block_number)
            if market.id is None:  # pragma: no cover
                raise IndexerError(f"Market {market.slug} has no id")
            rows.append(
                TradeDTO(
                    market_id=market.id,
                    tx_hash=trade.tx_hash,
                    log_index=trade.log_index,
                    block_number=trade.block_number,
                    block_hash=block.hash,
                    timestamp=block.timestamp_dt,
                    maker=trade.maker,
                    taker=trade.taker,
                    side=trade.side.value,
                    outcome=market.outcome_for(trade.token_id),
                    token_id=trade.token_id,
                    price=trade.price,
                    size=trade.size,
                    maker_asset_id=trade.maker_asset_id,
                    taker_asset_id=trade.taker_asset_id,
                    maker_amount=trade.maker_amount,
                    taker_amount=trade.taker_amount,
                )
            )
        return rows

    async def _persist(self, rows: Sequence[TradeDTO]) -> int:
        if not rows:
            return 0
        async with self._session_factory() as session, session.begin():
            return await TradeRepository(session).insert_many(rows)

    async def _advance_cursor(self, block_number: int) -> int:
        cached = self._block_cache.get(block_number)
        async with self._session_factory() as session, session.begin():
            return await SyncStateRepository(session).advance(
                self._stream_key,
                block_number,
                cached.hash if cached else None,
            )
