"""SQLite implementation of SummaryRepository."""
from __future__ import annotations

import aiosqlite

from session_collector.db.columns import SUMMARY_COLUMNS, SUMMARY_KEY, row_values

_UPSERT_SQL = (
    f"INSERT INTO sessions_log ({', '.join(SUMMARY_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in SUMMARY_COLUMNS)}) "
    f"ON CONFLICT({SUMMARY_KEY}) DO UPDATE SET "
    + ", ".join(f"{c}=excluded.{c}" for c in SUMMARY_COLUMNS if c != SUMMARY_KEY)
)


class SqliteSummaryRepository:
    """Session summaries keyed by session key; every upsert replaces the whole row."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert_many(self, rows: list[dict]) -> None:
        if not rows:
            return
        await self.db.executemany(_UPSERT_SQL, [row_values(r, SUMMARY_COLUMNS) for r in rows])
        await self.db.commit()

    async def get(self, session_key: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM sessions_log WHERE session_key = ?", (session_key,)
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_all(self) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM sessions_log ORDER BY last_active_at DESC"
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]
