"""Alembic environment for the trade index schema.

Runs on the same async drivers as the indexer (asyncpg or aiosqlite).
``SQLALCHEMY_DATABASE_URL`` or ``DATABASE_URL`` overrides ``alembic.ini``.
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from polymarket_trade_indexer.storage.database import normalize_async_database_url
from polymarket_trade_indexer.storage.models import Base

URL_ENV_VARS = ("SQLALCHEMY_DATABASE_URL", "DATABASE_URL")

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

load_dotenv(override=False)


def _url_from_env() -> str | None:
    for name in URL_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return normalize_async_database_url(os.path.expandvars(value))
    return None


env_url = _url_from_env()
if env_url:
    config.set_main_option("sqlalchemy.url", env_url)


def _configure(**kwargs: object) -> None:
    context.configure(target_metadata=Base.metadata, render_as_batch=True, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


def _migrate_sync(connection: Connection) -> None:
    _configure(connection=connection)


async def _migrate_async() -> None:
    engine = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate_sync)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
else:
    asyncio.run(_migrate_async())
