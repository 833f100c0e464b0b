"""Batched, retry-safe writes of summaries, usage events and watermarks.

Every write is an upsert keyed by a natural identity (session key for
summaries, event key for usage events, session id for watermarks), so a
failed batch can be resubmitted verbatim.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import asyncpg

from session_collector import config
from session_collector.date_utils import utc_now_iso
from session_collector.db.errors import StoreError, StoreSchemaError, StoreTransportError
from session_collector.db.factory import (
    get_summary_repository,
    get_usage_event_repository,
    get_watermark_repository,
)
from session_collector.models import SessionSummary, UsageEvent

logger = logging.getLogger("session_collector.sync")

# Driver-level failures that mean "the batch was not applied".
_DRIVER_ERRORS = (sqlite3.Error, asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _translate(exc: Exception) -> StoreError:
    if isinstance(exc, asyncpg.UndefinedTableError) or (
        isinstance(exc, sqlite3.OperationalError) and "no such table" in str(exc)
    ):
        return StoreSchemaError(str(exc))
    return StoreTransportError(str(exc))


@dataclass
class BatchOutcome:
    applied: list[Any] = field(default_factory=list)
    failed: list[Any] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def chunked(items: Sequence[Any], size: int) -> list[list[Any]]:
    size = max(1, int(size))
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def _dedupe_by(items: Sequence[Any], key: Callable[[Any], str]) -> list[Any]:
    """Keep the last item per key, preserving first-seen order."""
    by_key: dict[str, Any] = {}
    for item in items:
        by_key[key(item)] = item
    return list(by_key.values())


class SyncClient:
    def __init__(
        self,
        db: Any,
        *,
        batch_size: int | None = None,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.db = db
        self.batch_size = batch_size or config.BATCH_SIZE
        self.summary_repo = get_summary_repository(db)
        self.usage_repo = get_usage_event_repository(db)
        self.watermark_repo = get_watermark_repository(db)
        self._clock = clock

    async def _write(self, writer, rows: list[dict]) -> None:
        try:
            await writer(rows)
        except StoreError:
            raise
        except _DRIVER_ERRORS as exc:
            raise _translate(exc) from exc

    async def upsert_summaries(self, summaries: Sequence[SessionSummary]) -> BatchOutcome:
        """Full-replace upsert per session key, in size-bounded batches.

        A failed batch is reported in ``failed`` and left for the caller to
        retry; later batches are still attempted. A missing table raises
        StoreSchemaError and ends the run.)
        """
        outcome = BatchOutcome()
        unique = _dedupe_by(summaries, lambda s: s.session_key)
        for batch in chunked(unique, self.batch_size):
            synced_at = self._clock()
            rows = [{**s.model_dump(), "synced_at": synced_at} for s in batch]
            try:
                await self._write(self.summary_repo.upsert_many, rows)
            except StoreTransportError as exc:
                logger.error("Summary batch of %d failed: %s", len(batch), exc)
                outcome.failed.extend(batch)
                outcome.errors.append(str(exc))
                continue
            outcome.applied.extend(batch)
        return outcome

    async def upsert_usage_events(self, events: Sequence[UsageEvent]) -> BatchOutcome:
        outcome = BatchOutcome()
        unique = _dedupe_by(events, lambda e: e.event_key)
        for batch in chunked(unique, self.batch_size):
            try:
                await self._write(self.usage_repo.upsert_many, [e.model_dump() for e in batch])
            except StoreTransportError as exc:
                logger.error("Usage batch of %d failed: %s", len(batch), exc)
                outcome.failed.extend(batch)
                outcome.errors.append(str(exc))
                continue
            outcome.applied.extend(batch)
        return outcome

    async def get_watermarks(self) -> dict[str, int | float]:
        try:
            return await self.watermark_repo.get_all()
        except StoreError:
            raise
        except _DRIVER_ERRORS as exc:
            raise _translate(exc) from exc

    async def set_watermark(self, session_id: str, timestamp: int | float) -> None:
        try:
            await self.watermark_repo.set(session_id, timestamp)
        except StoreError:
            raise
        except _DRIVER_ERRORS as exc:
            raise _translate(exc) from exc
