"""SQLite implementation of UsageEventRepository."""
from __future__ import annotations

import aiosqlite

from session_collector.db.columns import USAGE_COLUMNS, USAGE_KEY, row_values

_UPSERT_SQL = (
    f"INSERT INTO usage_logs ({', '.join(USAGE_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in USAGE_COLUMNS)}) "
    f"ON CONFLICT({USAGE_KEY}) DO UPDATE SET "
    + ", ".join(f"{c}=excluded.{c}" for c in USAGE_COLUMNS if c != USAGE_KEY)
)


class SqliteUsageEventRepository:
    """Usage events keyed by their deterministic event key."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert_many(self, rows: list[dict]) -> None:
        if not rows:
            return
        await self.db.executemany(_UPSERT_SQL, [row_values(r, USAGE_COLUMNS) for r in rows])
        await self.db.commit()

    async def list_for_session(self, session_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM usage_logs WHERE session_id = ? ORDER BY recorded_at",
            (session_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def count(self) -> int:
        async with self.db.execute("SELECT COUNT(*) FROM usage_logs") as cur:
            row = await cur.fetchone()
            return int(row[0]) if row else 0
