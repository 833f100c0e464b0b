"""Store connection factory.

Provides a singleton handle to the configured store: a REST client, an
aiosqlite connection (WAL mode) or an asyncpg pool. Backend selection via
COLLECTOR_STORE_BACKEND.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Union

import aiosqlite
import asyncpg

from session_collector import config
from session_collector.db.rest_client import RestStoreClient

logger = logging.getLogger("session_collector.db")

BACKENDS = ("rest", "sqlite", "postgres")

# Type alias for the store handle
DbConnection = Union[aiosqlite.Connection, RestStoreClient, Any]  # Any to support asyncpg.Pool

_connection: DbConnection | None = None


async def open_connection(
    backend: str | None = None,
    *,
    db_path: Path | str | None = None,
) -> DbConnection:
    """Create a new store handle for ``backend`` (not cached)."""
    backend = (backend or config.STORE_BACKEND).strip().lower()

    if backend == "postgres":
        logger.info("Connecting to PostgreSQL store")
        return await asyncpg.create_pool(config.DATABASE_URL)

    if backend == "sqlite":
        path = str(db_path or config.DB_PATH)
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(path)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA busy_timeout=5000")
        logger.info("SQLite store connection established: %s", path)
        return conn

    if backend == "rest":
        logger.info("Using REST store at %s", config.STORE_URL)
        return RestStoreClient(config.STORE_URL, config.STORE_API_KEY)

    raise ValueError(f"Unknown store backend: {backend!r} (expected one of {', '.join(BACKENDS)})")


async def get_connection(backend: str | None = None) -> DbConnection:
    """Return the singleton store handle, creating it if needed."""
    global _connection
    if _connection is not None:
        return _connection
    _connection = await open_connection(backend)
    return _connection


async def close_connection() -> None:
    """Close the singleton store handle."""
    global _connection
    if _connection is None:
        return
    if isinstance(_connection, RestStoreClient):
        await asyncio.to_thread(_connection.close)
    else:
        await _connection.close()  # aiosqlite.Connection and asyncpg.Pool both expose close()
    _connection = None
    logger.info("Store connection closed")
