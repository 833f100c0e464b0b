"""PostgreSQL implementation of WatermarkRepository."""
from __future__ import annotations

from datetime import datetime, timezone

import asyncpg

from session_collector.date_utils import normalize_epoch_ms


class PostgresWatermarkRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def get(self, session_id: str) -> int | float | None:
        value = await self.db.fetchval(
            "SELECT last_processed_timestamp FROM usage_collector_state WHERE session_id = $1",
            session_id,
        )
        return normalize_epoch_ms(float(value)) if value is not None else None

    async def get_all(self) -> dict[str, int | float]:
        rows = await self.db.fetch("SELECT session_id, last_processed_timestamp FROM usage_collector_state")
        return {r["session_id"]: normalize_epoch_ms(float(r["last_processed_timestamp"])) for r in rows}

    async def set(self, session_id: str, timestamp: int | float) -> None:
        await self.db.execute(
            """INSERT INTO usage_collector_state (session_id, last_processed_timestamp, updated_at)
               VALUES ($1, $2, $3)
               ON CONFLICT(session_id) DO UPDATE SET
                 last_processed_timestamp=EXCLUDED.last_processed_timestamp,
                 updated_at=EXCLUDED.updated_at""",
            session_id, float(timestamp), datetime.now(timezone.utc).isoformat(),
        )
