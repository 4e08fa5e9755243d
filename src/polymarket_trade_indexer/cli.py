"""Command-line entry point: ``pm-indexer``."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

import typer
from pydantic import ValidationError as SettingsValidationError
from redis.asyncio import Redis

from polymarket_trade_indexer.config import Settings, configure_logging, get_settings
from polymarket_trade_indexer.decoder.constants import USDC_ADDRESS
from polymarket_trade_indexer.decoder.ids import decode_market
from polymarket_trade_indexer.decoder.trades import decode_transaction
from polymarket_trade_indexer.errors import IndexerError
from polymarket_trade_indexer.indexer.block_cache import BlockInfoCache
from polymarket_trade_indexer.indexer.discovery import DiscoveryResult, MarketRegistryReconciler
from polymarket_trade_indexer.indexer.sync import BlockRangeSynchronizer, SyncReport
from polymarket_trade_indexer.ingestor.chain import PolygonClient
from polymarket_trade_indexer.ingestor.gamma import GammaClient
from polymarket_trade_indexer.retry import RetryPolicy
from polymarket_trade_indexer.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

app = typer.Typer(
    name="pm-indexer",
    help="Polymarket trade indexer - derive token ids, discover markets, sync fills.",
    no_args_is_help=True,
)


def _settings(ctx: typer.Context) -> Settings:
    settings: Settings = ctx.obj["settings"]
    return settings


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning indexer errors into a non-zero exit."""
    try:
        return asyncio.run(coro)
    except IndexerError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


def _retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.sync.max_attempts,
        base_delay_seconds=settings.sync.retry_delay_seconds,
    )


def _polygon_client(settings: Settings) -> PolygonClient:
    redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
    return PolygonClient(
        settings.polygon.rpc_url,
        fallback_rpc_url=settings.polygon.fallback_rpc_url,
        redis=redis,
        max_requests_per_second=settings.polygon.requests_per_second,
    )


def _reconciler(settings: Settings, db: DatabaseManager, gamma: GammaClient) -> MarketRegistryReconciler:
    return MarketRegistryReconciler(
        db.session_factory,
        gamma,
        retry_policy=_retry_policy(settings),
        fail_closed=settings.sync.fail_closed_on_mismatch,
    )


@app.callback()
def main(ctx: typer.Context) -> None:
    """Load settings and configure logging."""
    try:
        settings = get_settings()
    except SettingsValidationError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=2) from e
    configure_logging(settings)
    ctx.obj = {"settings": settings}


@app.command("init-db")
def init_db(ctx: typer.Context) -> None:
    """Create the events, markets, trades and sync_state tables."""
    settings = _settings(ctx)

    async def _init() -> None:
        db = DatabaseManager(settings.database.url)
        try:
            await db.init_schema_async()
        finally:
            await db.dispose_async()

    _run(_init())
    typer.echo("Database schema initialized.")


@app.command("decode-market")
def decode_market_cmd(
    condition_id: str = typer.Option(..., "--condition-id", help="bytes32 condition id"),
    question_id: str = typer.Option(..., "--question-id", help="bytes32 question id"),
    oracle: str = typer.Option(..., "--oracle", help="Oracle address"),
    collateral: str = typer.Option(USDC_ADDRESS, "--collateral", help="Collateral token address"),
) -> None:
    """Derive the YES/NO token ids of a binary market (offline)."""
    try:
        decoded = decode_market(condition_id, question_id, oracle, collateral)
    except IndexerError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
    _echo_json(decoded.to_dict())


@app.command("decode-trade")
def decode_trade(
    ctx: typer.Context,
    tx_hash: str = typer.Argument(..., help="Transaction hash"),
) -> None:
    """Decode every exchange fill in a transaction."""
    settings = _settings(ctx)

    async def _decode() -> list[dict[str, Any]]:
        client = _polygon_client(settings)
        try:
            trades = await decode_transaction(client, tx_hash)
        finally:
            await client.aclose()
        return [t.to_dict() for t in trades]

    _echo_json(_run(_decode()))


@app.command("discover")
def discover(
    ctx: typer.Context,
    slugs: list[str] = typer.Argument(..., help="Event slugs"),
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-c", min=1, help="Parallel discoveries (default SYNC_DISCOVERY_CONCURRENCY)"
    ),
) -> None:
    """Fetch events from Gamma and store their markets with derived token ids."""
    settings = _settings(ctx)

    async def _discover() -> dict[str, DiscoveryResult | BaseException]:
        db = DatabaseManager(settings.database.url)
        gamma = GammaClient(settings.gamma.api_base, timeout=settings.gamma.timeout_seconds)
        try:
            await db.init_schema_async()
            return await _reconciler(settings, db, gamma).discover_events(
                slugs,
                concurrency=concurrency or settings.sync.discovery_concurrency,
            )
        finally:
            await gamma.aclose()
            await db.dispose_async()

    outcomes = _run(_discover())
    failed = False
    for slug, outcome in outcomes.items():
        if isinstance(outcome, BaseException):
            failed = True
            typer.echo(f"{slug}: failed ({outcome})", err=True)
            continue
        typer.echo(f"{slug}: {outcome.discovered} markets saved, {len(outcome.failures)} failed")
        for failure in outcome.failures:
            typer.echo(f"  {failure.slug}: {failure.reason}", err=True)
    if failed:
        raise typer.Exit(code=1)


@app.command("sync")
def sync(
    ctx: typer.Context,
    from_block: int | None = typer.Option(None, "--from-block", help="First block (default: cursor + 1)"),
    to_block: int | None = typer.Option(None, "--to-block", help="Last block (default: chain head)"),
    batch_size: int | None = typer.Option(None, "--batch-size", min=1, help="Blocks per window"),
    no_discovery: bool = typer.Option(False, "--no-discovery", help="Do not look up unknown tokens"),
) -> None:
    """Index OrderFilled events for a block range."""
    settings = _settings(ctx)

    async def _sync() -> SyncReport:
        db = DatabaseManager(settings.database.url)
        client = _polygon_client(settings)
        gamma = GammaClient(settings.gamma.api_base, timeout=settings.gamma.timeout_seconds)
        try:
            await db.init_schema_async()
            synchronizer = BlockRangeSynchronizer(
                db.session_factory,
                client,
                reconciler=_reconciler(settings, db, gamma),
                retry_policy=_retry_policy(settings),
                block_cache=BlockInfoCache(
                    max_entries=settings.sync.block_cache_size,
                    ttl_seconds=settings.sync.block_cache_ttl_seconds,
                ),
                batch_size=batch_size or settings.sync.batch_size_blocks,
                default_start_block=settings.sync.default_start_block,
                stream_key=settings.sync.stream_key,
                dynamic_discovery=settings.sync.dynamic_discovery and not no_discovery,
            )
            return await synchronizer.run(from_block=from_block, to_block=to_block)
        finally:
            await gamma.aclose()
            await client.aclose()
            await db.dispose_async()

    report = _run(_sync())
    _echo_json(report.to_dict())
    if not report.ok:
        raise typer.Exit(code=1)


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: str | None = typer.Option(None, "--host", help="Bind host (default API_HOST)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port (default API_PORT)"),
) -> None:
    """Start the read API."""
    from polymarket_trade_indexer.api.app import run_api

    settings = _settings(ctx)
    run_api(
        settings.database.url,
        host=host or settings.api_host,
        port=port or settings.api_port,
    )


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Print the effective configuration with secrets redacted."""
    _echo_json(_settings(ctx).redacted_summary())


def run() -> None:
    app()


if __name__ == "__main__":
    run()
