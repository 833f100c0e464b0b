"""REST implementation of SummaryRepository, UsageEventRepository, WatermarkRepository.

The blocking ``requests`` calls run in a worker thread so the event loop
keeps servicing file notifications while a batch is in flight.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from session_collector import config
from session_collector.date_utils import normalize_epoch_ms
from session_collector.db.columns import SUMMARY_KEY, USAGE_KEY, WATERMARK_KEY
from session_collector.db.rest_client import RestStoreClient


class RestSummaryRepository:
    def __init__(self, client: RestStoreClient, table: str | None = None):
        self.client = client
        self.table = table or config.SUMMARY_TABLE

    async def upsert_many(self, rows: list[dict]) -> None:
        await asyncio.to_thread(self.client.upsert, self.table, rows, SUMMARY_KEY)

    async def get(self, session_key: str) -> dict | None:
        rows = await asyncio.to_thread(
            self.client.select, self.table, "*", {SUMMARY_KEY: f"eq.{session_key}"}
        )
        return rows[0] if rows else None


class RestUsageEventRepository:
    def __init__(self, client: RestStoreClient, table: str | None = None):
        self.client = client
        self.table = table or config.USAGE_TABLE

    async def upsert_many(self, rows: list[dict]) -> None:
        await asyncio.to_thread(self.client.upsert, self.table, rows, USAGE_KEY)

    async def list_for_session(self, session_id: str) -> list[dict]:
        return await asyncio.to_thread(
            self.client.select, self.table, "*", {"session_id": f"eq.{session_id}", "order": "recorded_at.asc"}
        )


class RestWatermarkRepository:
    def __init__(self, client: RestStoreClient, table: str | None = None):
        self.client = client
        self.table = table or config.WATERMARK_TABLE

    async def get(self, session_id: str) -> int | float | None:
        rows = await asyncio.to_thread(
            self.client.select,
            self.table,
            "session_id,last_processed_timestamp",
            {WATERMARK_KEY: f"eq.{session_id}"},
        )
        if not rows or rows[0].get("last_processed_timestamp") is None:
            return None
        return normalize_epoch_ms(float(rows[0]["last_processed_timestamp"]))

    async def get_all(self) -> dict[str, int | float]:
        rows = await asyncio.to_thread(
            self.client.select, self.table, "session_id,last_processed_timestamp"
        )
        return {
            str(r["session_id"]): normalize_epoch_ms(float(r["last_processed_timestamp"]))
            for r in rows
            if r.get("session_id") and r.get("last_processed_timestamp") is not None
        }

    async def set(self, session_id: str, timestamp: int | float) -> None:
        row = {
            "session_id": session_id,
            "last_processed_timestamp": normalize_epoch_ms(timestamp),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        await asyncio.to_thread(self.client.upsert, self.table, [row], WATERMARK_KEY)
