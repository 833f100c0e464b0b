"""Schema creation for the Postgres store. Idempotent."""
from __future__ import annotations

import logging

import asyncpg

logger = logging.getLogger("session_collector.db")

SCHEMA_VERSION = 1

_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS sessions_log (
    session_key     TEXT PRIMARY KEY,
    session_id      TEXT NOT NULL,
    kind            TEXT NOT NULL DEFAULT 'unknown',
    label           TEXT,
    display_name    TEXT,
    channel         TEXT,
    model           TEXT,
    total_tokens    BIGINT NOT NULL DEFAULT 0,
    cost_total      DOUBLE PRECISION NOT NULL DEFAULT 0,
    last_message    TEXT,
    last_role       TEXT,
    status          TEXT NOT NULL DEFAULT 'completed',
    started_at      TEXT NOT NULL,
    last_active_at  TEXT NOT NULL,
    duration_ms     BIGINT,
    synced_at       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_log_active ON sessions_log(last_active_at DESC);
CREATE INDEX IF NOT EXISTS idx_sessions_log_kind   ON sessions_log(kind, status);

CREATE TABLE IF NOT EXISTS usage_logs (
    event_key          TEXT PRIMARY KEY,
    session_id         TEXT NOT NULL,
    session_key        TEXT NOT NULL,
    session_kind       TEXT NOT NULL DEFAULT 'unknown',
    provider           TEXT NOT NULL DEFAULT 'unknown',
    model              TEXT NOT NULL DEFAULT 'unknown',
    input_tokens       BIGINT NOT NULL DEFAULT 0,
    output_tokens      BIGINT NOT NULL DEFAULT 0,
    cache_read_tokens  BIGINT NOT NULL DEFAULT 0,
    cache_write_tokens BIGINT NOT NULL DEFAULT 0,
    total_tokens       BIGINT NOT NULL DEFAULT 0,
    cost_input         DOUBLE PRECISION NOT NULL DEFAULT 0,
    cost_output        DOUBLE PRECISION NOT NULL DEFAULT 0,
    cost_cache_read    DOUBLE PRECISION NOT NULL DEFAULT 0,
    cost_cache_write   DOUBLE PRECISION NOT NULL DEFAULT 0,
    cost_total         DOUBLE PRECISION NOT NULL DEFAULT 0,
    stop_reason        TEXT,
    recorded_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_usage_logs_session  ON usage_logs(session_id, recorded_at);

CREATE TABLE IF NOT EXISTS usage_collector_state (
    session_id                TEXT PRIMARY KEY,
    last_processed_timestamp  DOUBLE PRECISION NOT NULL,
    updated_at                TEXT NOT NULL
);
"""


async def run_migrations(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute(_TABLES)
        current_version = await conn.fetchval("SELECT MAX(version) FROM schema_version") or 0
        if current_version >= SCHEMA_VERSION:
            logger.info("Schema is up to date (version %s)", current_version)
            return
        await conn.execute("INSERT INTO schema_version (version) VALUES ($1)", SCHEMA_VERSION)
    logger.info("Migrations complete — schema version %s", SCHEMA_VERSION)
