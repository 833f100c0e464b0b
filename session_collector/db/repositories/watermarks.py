"""SQLite implementation of WatermarkRepository."""
from __future__ import annotations

from datetime import datetime, timezone

import aiosqlite

from session_collector.date_utils import normalize_epoch_ms


class SqliteWatermarkRepository:
    """Per-transcript usage extraction watermarks.

    ``set`` is a plain last-write-wins upsert; callers only ever move a
    watermark forward.
    """

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, session_id: str) -> int | float | None:
        async with self.db.execute(
            "SELECT last_processed_timestamp FROM usage_collector_state WHERE session_id = ?",
            (session_id,),
        ) as cur:
            row = await cur.fetchone()
            return normalize_epoch_ms(row[0]) if row else None

    async def get_all(self) -> dict[str, int | float]:
        async with self.db.execute(
            "SELECT session_id, last_processed_timestamp FROM usage_collector_state"
        ) as cur:
            return {r[0]: normalize_epoch_ms(r[1]) for r in await cur.fetchall()}

    async def set(self, session_id: str, timestamp: int | float) -> None:
        await self.db.execute(
            """INSERT INTO usage_collector_state (session_id, last_processed_timestamp, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(session_id) DO UPDATE SET
                 last_processed_timestamp=excluded.last_processed_timestamp,
                 updated_at=excluded.updated_at""",
            (session_id, normalize_epoch_ms(timestamp), datetime.now(timezone.utc).isoformat()),
        )
        await self.db.commit()
