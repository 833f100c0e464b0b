"""PostgreSQL implementation of UsageEventRepository."""
from __future__ import annotations

import asyncpg

from session_collector.db.columns import USAGE_COLUMNS, USAGE_KEY, row_values

_UPSERT_SQL = (
    f"INSERT INTO usage_logs ({', '.join(USAGE_COLUMNS)}) "
    f"VALUES ({', '.join(f'${i}' for i in range(1, len(USAGE_COLUMNS) + 1))}) "
    f"ON CONFLICT({USAGE_KEY}) DO UPDATE SET "
    + ", ".join(f"{c}=EXCLUDED.{c}" for c in USAGE_COLUMNS if c != USAGE_KEY)
)


class PostgresUsageEventRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def upsert_many(self, rows: list[dict]) -> None:
        if not rows:
            return
        async with self.db.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(_UPSERT_SQL, [row_values(r, USAGE_COLUMNS) for r in rows])

    async def list_for_session(self, session_id: str) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM usage_logs WHERE session_id = $1 ORDER BY recorded_at", session_id
        )
        return [dict(r) for r in rows]

    async def count(self) -> int:
        return int(await self.db.fetchval("SELECT COUNT(*) FROM usage_logs") or 0)
