"""Database schema creation and versioning for the local SQLite store.

Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("session_collector.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Session summaries (full replace per session key) ────────────
CREATE TABLE IF NOT EXISTS sessions_log (
    session_key     TEXT PRIMARY KEY,
    session_id      TEXT NOT NULL,
    kind            TEXT NOT NULL DEFAULT 'unknown',
    label           TEXT,
    display_name    TEXT,
    channel         TEXT,
    model           TEXT,
    total_tokens    INTEGER NOT NULL DEFAULT 0,
    cost_total      REAL NOT NULL DEFAULT 0,
    last_message    TEXT,
    last_role       TEXT,
    status          TEXT NOT NULL DEFAULT 'completed',
    started_at      TEXT NOT NULL,
    last_active_at  TEXT NOT NULL,
    duration_ms     INTEGER,
    synced_at       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_log_active ON sessions_log(last_active_at DESC);
CREATE INDEX IF NOT EXISTS idx_sessions_log_kind   ON sessions_log(kind, status);

-- ── 2. Usage events (one row per billed assistant message) ─────────
CREATE TABLE IF NOT EXISTS usage_logs (
    event_key          TEXT PRIMARY KEY,
    session_id         TEXT NOT NULL,
    session_key        TEXT NOT NULL,
    session_kind       TEXT NOT NULL DEFAULT 'unknown',
    provider           TEXT NOT NULL DEFAULT 'unknown',
    model              TEXT NOT NULL DEFAULT 'unknown',
    input_tokens       INTEGER NOT NULL DEFAULT 0,
    output_tokens      INTEGER NOT NULL DEFAULT 0,
    cache_read_tokens  INTEGER NOT NULL DEFAULT 0,
    cache_write_tokens INTEGER NOT NULL DEFAULT 0,
    total_tokens       INTEGER NOT NULL DEFAULT 0,
    cost_input         REAL NOT NULL DEFAULT 0,
    cost_output        REAL NOT NULL DEFAULT 0,
    cost_cache_read    REAL NOT NULL DEFAULT 0,
    cost_cache_write   REAL NOT NULL DEFAULT 0,
    cost_total         REAL NOT NULL DEFAULT 0,
    stop_reason        TEXT,
    recorded_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_usage_logs_session  ON usage_logs(session_id, recorded_at);
CREATE INDEX IF NOT EXISTS idx_usage_logs_recorded ON usage_logs(recorded_at DESC);

-- ── 3. Usage extraction watermarks ─────────────────────────────────
CREATE TABLE IF NOT EXISTS usage_collector_state (
    session_id                TEXT PRIMARY KEY,
    last_processed_timestamp  NUMERIC NOT NULL,
    updated_at                TEXT NOT NULL
);
"""


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.Error:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info("Schema is up to date (version %s)", current_version)
        return

    logger.info("Running migrations: %s → %s", current_version, SCHEMA_VERSION)

    await db.executescript(_TABLES)

    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info("Migrations complete — schema version %s", SCHEMA_VERSION)
