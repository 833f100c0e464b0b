"""Database migration dispatcher.

Routes migration calls to the appropriate backend implementation. The REST
store's schema is administered remotely and is left untouched.
"""
from __future__ import annotations

import logging
from typing import Any

import aiosqlite
import asyncpg

from session_collector.db import postgres_migrations, sqlite_migrations
from session_collector.db.rest_client import RestStoreClient

logger = logging.getLogger("session_collector.db")


async def run_migrations(db: Any) -> None:
    """Run migrations on the provided database connection."""
    if isinstance(db, aiosqlite.Connection):
        logger.info("Running SQLite migrations...")
        await sqlite_migrations.run_migrations(db)
        return

    if isinstance(db, asyncpg.Pool):
        logger.info("Running Postgres migrations...")
        await postgres_migrations.run_migrations(db)
        return

    if isinstance(db, RestStoreClient):
        logger.info("REST store schema is managed remotely; skipping migrations")
        return

    logger.warning("Unknown database connection type: %s", type(db))
