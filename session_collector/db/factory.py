"""Repository factory to abstract the store backend (REST vs SQLite vs Postgres)."""
from __future__ import annotations

from typing import Any

import aiosqlite

from session_collector.db.repositories.rest import (
    RestSummaryRepository,
    RestUsageEventRepository,
    RestWatermarkRepository,
)
from session_collector.db.repositories.summaries import SqliteSummaryRepository
from session_collector.db.repositories.usage_events import SqliteUsageEventRepository
from session_collector.db.repositories.watermarks import SqliteWatermarkRepository
from session_collector.db.rest_client import RestStoreClient


def get_summary_repository(db: Any):
    if isinstance(db, RestStoreClient):
        return RestSummaryRepository(db)
    if isinstance(db, aiosqlite.Connection):
        return SqliteSummaryRepository(db)
    from session_collector.db.repositories.postgres.summaries import PostgresSummaryRepository
    return PostgresSummaryRepository(db)


def get_usage_event_repository(db: Any):
    if isinstance(db, RestStoreClient):
        return RestUsageEventRepository(db)
    if isinstance(db, aiosqlite.Connection):
        return SqliteUsageEventRepository(db)
    from session_collector.db.repositories.postgres.usage_events import PostgresUsageEventRepository
    return PostgresUsageEventRepository(db)


def get_watermark_repository(db: Any):
    if isinstance(db, RestStoreClient):
        return RestWatermarkRepository(db)
    if isinstance(db, aiosqlite.Connection):
        return SqliteWatermarkRepository(db)
    from session_collector.db.repositories.postgres.watermarks import PostgresWatermarkRepository
    return PostgresWatermarkRepository(db)
