"""Change-driven + periodic sync scheduler.

A single loop owns all scheduler state. File notifications and the stop
request arrive through one queue; the debounce, full-reconciliation and
usage-extraction timers are deadlines checked by the same loop, so the dirty
set is never touched concurrently.

    Idle --notify--> Debouncing --quiet period--> Syncing --> Idle
    any state --full-sync deadline--> mark every transcript dirty --> Syncing
    any state --stop--> flush dirty set --> exit
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable

from session_collector import config
from session_collector.date_utils import ms_to_iso, now_ms
from session_collector.db.errors import StoreSchemaError
from session_collector.observability import record_requeue

logger = logging.getLogger("session_collector.scheduler")

_STOP = object()


class SyncScheduler:
    def __init__(
        self,
        engine: Any,
        *,
        debounce_seconds: float | None = None,
        full_sync_interval: float | None = None,
        usage_interval: float | None = None,
        backoff_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
        state_file: Path | None = config.STATE_FILE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.debounce_seconds = debounce_seconds if debounce_seconds is not None else config.DEBOUNCE_SECONDS
        self.full_sync_interval = (
            full_sync_interval if full_sync_interval is not None else config.FULL_SYNC_INTERVAL_SECONDS
        )
        self.usage_interval = usage_interval if usage_interval is not None else config.USAGE_INTERVAL_SECONDS
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else config.RETRY_BACKOFF_SECONDS
        self.backoff_max_seconds = (
            backoff_max_seconds if backoff_max_seconds is not None else config.RETRY_BACKOFF_MAX_SECONDS
        )
        self.state_file = Path(state_file) if state_file else None
        self._clock = clock

        self._events: asyncio.Queue = asyncio.Queue()
        self.dirty: set[Path] = set()
        self._debounce_deadline: float | None = None
        self._retry_not_before: float | None = None
        start = self._clock()
        self._next_full_sync: float | None = start
        self._next_usage_run: float | None = start if self.usage_interval > 0 else None
        self.consecutive_failures = 0
        self.last_sync_ms = 0
        self.last_full_sync_ms = 0
        self.last_usage_run_ms = 0

    # ── Event channel ───────────────────────────────────────────────

    def notify(self, path: Path) -> None:
        """Record a filesystem change. Safe to call from watcher callbacks on the loop."""
        self._events.put_nowait(Path(path))

    def request_stop(self) -> None:
        self._events.put_nowait(_STOP)

    # ── Main loop ───────────────────────────────────────────────────

    async def run(self) -> None:
        """Run until ``request_stop``; the first full reconciliation happens immediately."""
        logger.info(
            "Scheduler started (debounce %.1fs, full sync every %.0fs, usage every %.0fs)",
            self.debounce_seconds, self.full_sync_interval, self.usage_interval,
        )
        await self.tick()

        while True:
            try:
                item = await asyncio.wait_for(self._events.get(), timeout=self._seconds_until_due())
            except asyncio.TimeoutError:
                item = None

            if item is _STOP:
                break
            await self.tick(item)

        await self._flush("shutdown")
        await self._save_state()
        logger.info("Scheduler stopped")

    async def tick(self, path: Path | None = None) -> None:
        """One step of the loop: take an optional change, then run whatever is due on the clock."""
        if path is not None:
            self._mark_dirty(Path(path))
        await self._run_due_timers()

    def _seconds_until_due(self) -> float | None:
        deadlines = [
            d for d in (self._next_full_sync, self._debounce_deadline, self._next_usage_run)
            if d is not None
        ]
        if not deadlines:
            return None
        return max(0.0, min(deadlines) - self._clock())

    def _mark_dirty(self, path: Path) -> None:
        self.dirty.add(path)
        deadline = self._clock() + self.debounce_seconds
        if self._retry_not_before is not None:
            deadline = max(deadline, self._retry_not_before)
        self._debounce_deadline = deadline

    async def _run_due_timers(self) -> None:
        now = self._clock()
        if self._next_full_sync is not None and now >= self._next_full_sync:
            try:
                files = self.engine.list_session_files()
            except OSError as exc:
                logger.error("Cannot list transcripts for full sync: %s", exc)
                files = []
            logger.info("Running full sync of %d transcript(s)", len(files))
            self.dirty.update(files)
            await self._flush("full")
            self.last_full_sync_ms = now_ms()
            self._next_full_sync = self._clock() + self.full_sync_interval
        elif self._debounce_deadline is not None and now >= self._debounce_deadline:
            await self._flush("watcher")

        if self._next_usage_run is not None and self._clock() >= self._next_usage_run:
            await self._collect_usage()
            self._next_usage_run = self._clock() + self.usage_interval

    # ── Work ────────────────────────────────────────────────────────

    def _backoff_delay(self) -> float:
        exponent = max(0, self.consecutive_failures - 1)
        return min(self.backoff_seconds * (2 ** exponent), self.backoff_max_seconds)

    async def _flush(self, trigger: str) -> None:
        paths = sorted(self.dirty)
        self.dirty.clear()
        self._debounce_deadline = None
        if not paths:
            return

        try:
            stats = await self.engine.sync_session_files(paths, trigger=trigger)
            failed = [Path(p) for p in stats.get("failed_paths", [])]
        except StoreSchemaError as exc:
            logger.error("Store is missing a table, run migrations: %s", exc)
            failed = paths
        except Exception:
            logger.exception("Sync of %d file(s) failed", len(paths))
            failed = paths

        if failed:
            self.dirty.update(failed)
            record_requeue(trigger, len(failed))
            self.consecutive_failures += 1
            delay = self._backoff_delay()
            self._retry_not_before = self._clock() + delay
            self._debounce_deadline = self._retry_not_before
            logger.warning(
                "Re-queued %d file(s) after failed sync (attempt %d, retry in %.1fs)",
                len(failed), self.consecutive_failures, delay,
            )
        else:
            self.consecutive_failures = 0
            self._retry_not_before = None
            self.last_sync_ms = now_ms()
        await self._save_state()

    async def _collect_usage(self) -> None:
        try:
            await self.engine.collect_usage(trigger="periodic")
        except StoreSchemaError as exc:
            logger.error("Store is missing a table, run migrations: %s", exc)
        except Exception:
            logger.exception("Usage collection failed")
        self.last_usage_run_ms = now_ms()
        await self._save_state()

    # ── State file ──────────────────────────────────────────────────

    async def snapshot(self) -> dict[str, Any]:
        operations = []
        list_operations = getattr(self.engine, "list_operations", None)
        if list_operations is not None:
            operations = await list_operations(limit=10)
        return {
            "pid": os.getpid(),
            "lastSyncMs": self.last_sync_ms,
            "lastSyncAt": ms_to_iso(self.last_sync_ms) if self.last_sync_ms else None,
            "lastFullSyncAt": ms_to_iso(self.last_full_sync_ms) if self.last_full_sync_ms else None,
            "lastUsageRunAt": ms_to_iso(self.last_usage_run_ms) if self.last_usage_run_ms else None,
            "dirtyCount": len(self.dirty),
            "consecutiveFailures": self.consecutive_failures,
            "recentOperations": operations,
        }

    async def _save_state(self) -> None:
        if not self.state_file:
            return
        try:
            payload = await self.snapshot()
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            self.state_file.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write scheduler state to %s: %s", self.state_file, exc)
