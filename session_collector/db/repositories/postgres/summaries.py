"""PostgreSQL implementation of SummaryRepository."""
from __future__ import annotations

import asyncpg

from session_collector.db.columns import SUMMARY_COLUMNS, SUMMARY_KEY, row_values

_UPSERT_SQL = (
    f"INSERT INTO sessions_log ({', '.join(SUMMARY_COLUMNS)}) "
    f"VALUES ({', '.join(f'${i}' for i in range(1, len(SUMMARY_COLUMNS) + 1))}) "
    f"ON CONFLICT({SUMMARY_KEY}) DO UPDATE SET "
    + ", ".join(f"{c}=EXCLUDED.{c}" for c in SUMMARY_COLUMNS if c != SUMMARY_KEY)
)


class PostgresSummaryRepository:
    """PostgreSQL-backed session summaries."""

    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def upsert_many(self, rows: list[dict]) -> None:
        if not rows:
            return
        async with self.db.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(_UPSERT_SQL, [row_values(r, SUMMARY_COLUMNS) for r in rows])

    async def get(self, session_key: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM sessions_log WHERE session_key = $1", session_key)
        return dict(row) if row else None

    async def list_all(self) -> list[dict]:
        rows = await self.db.fetch("SELECT * FROM sessions_log ORDER BY last_active_at DESC")
        return [dict(r) for r in rows]
