"""Transcript → store sync engine.

Re-reads transcripts, folds them into summaries, extracts usage events past
each transcript's watermark, and ships the results through the SyncClient.
All work is sequential: at most one write to the store is in flight.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from session_collector import config
from session_collector.date_utils import now_ms as _wall_clock_ms
from session_collector.db.errors import StoreError, StoreSchemaError, StoreTransportError
from session_collector.db.sync_client import SyncClient
from session_collector.models import SessionKey, SessionSummary, UsageEvent
from session_collector.observability import record_ingestion, record_token_cost, start_span
from session_collector.parsers.summarizer import summarize_transcript
from session_collector.parsers.transcripts import (
    list_transcripts,
    read_transcript,
    session_id_from_path,
    session_key_for,
)
from session_collector.parsers.usage import extract_usage_events

logger = logging.getLogger("session_collector.sync")


class SyncEngine:
    """Summarize and ship transcripts; extract and ship usage events.

    Keeps a small in-memory history of recent operations for the scheduler's
    state file.
    """

    def __init__(
        self,
        db: Any,
        sessions_dir: Path,
        *,
        backup_file: Path | None = config.BACKUP_FILE,
        batch_size: int | None = None,
        active_window_seconds: int | None = None,
        internal_providers: frozenset[str] | None = None,
        now_ms: Callable[[], int] = _wall_clock_ms,
    ):
        self.db = db
        self.sessions_dir = Path(sessions_dir)
        self.client = SyncClient(db, batch_size=batch_size)
        self.backup_file = Path(backup_file) if backup_file else None
        self.active_window_seconds = active_window_seconds
        self.internal_providers = internal_providers
        self._now_ms = now_ms
        self._session_keys: dict[str, str] = {}
        self._ops_lock = asyncio.Lock()
        self._operations: dict[str, dict[str, Any]] = {}
        self._operation_order: list[str] = []
        self._max_operation_history = 20

    # ── Operation tracking ──────────────────────────────────────────

    async def _start_operation(self, kind: str, trigger: str, metadata: dict[str, Any]) -> str:
        op_id = f"OP-{uuid.uuid4()}"
        now = datetime.now(timezone.utc).isoformat()
        payload = {
            "id": op_id,
            "kind": kind,
            "trigger": trigger,
            "status": "running",
            "startedAt": now,
            "finishedAt": "",
            "durationMs": 0,
            "stats": {},
            "metadata": metadata,
            "error": "",
        }
        async with self._ops_lock:
            self._operations[op_id] = payload
            self._operation_order.insert(0, op_id)
            if len(self._operation_order) > self._max_operation_history:
                stale_ids = self._operation_order[self._max_operation_history :]
                self._operation_order = self._operation_order[: self._max_operation_history]
                for stale_id in stale_ids:
                    self._operations.pop(stale_id, None)
        logger.debug("Operation started [%s] %s (trigger=%s)", op_id, kind, trigger)
        return op_id

    async def _finish_operation(
        self,
        operation_id: str,
        *,
        status: str,
        stats: dict[str, Any] | None = None,
        error: str = "",
    ) -> None:
        finished = datetime.now(timezone.utc)
        async with self._ops_lock:
            operation = self._operations.get(operation_id)
            if not operation:
                return
            operation["status"] = status
            operation["finishedAt"] = finished.isoformat()
            if stats:
                operation["stats"].update(stats)
            if error:
                operation["error"] = error
            started = datetime.fromisoformat(operation["startedAt"])
            operation["durationMs"] = max(0, int((finished - started).total_seconds() * 1000))

        if status == "failed":
            logger.error("Operation failed [%s]: %s", operation_id, error)
        else:
            logger.debug("Operation finished [%s] status=%s", operation_id, status)

    async def list_operations(self, limit: int = 20) -> list[dict[str, Any]]:
        async with self._ops_lock:
            return [dict(self._operations[op_id]) for op_id in self._operation_order[:limit]]

    # ── Session keys ────────────────────────────────────────────────

    def resolve_session_key(self, filename: str, key: SessionKey) -> str:
        """First declared key seen for a filename wins for the life of the process."""
        known = self._session_keys.get(filename)
        if known is None:
            if key.is_declared:
                self._session_keys[filename] = key.value
            return key.value
        if key.value != known:
            logger.warning(
                "Declared session key for %s changed from %s to %s; keeping %s",
                filename, known, key.value, known,
            )
        return known

    def list_session_files(self) -> list[Path]:
        return list_transcripts(self.sessions_dir)

    # ── Summaries ───────────────────────────────────────────────────

    def summarize_file(self, path: Path) -> SessionSummary | None:
        records = read_transcript(path)
        if not records:
            return None
        session_id = session_id_from_path(path)
        key = self.resolve_session_key(path.name, session_key_for(records, session_id))
        return summarize_transcript(
            records,
            session_id,
            session_key=key,
            now_ms=self._now_ms(),
            active_window_seconds=self.active_window_seconds,
            internal_providers=self.internal_providers,
        )

    async def sync_session_files(self, paths: Iterable[Path], trigger: str = "watcher") -> dict[str, Any]:
        """Summarize ``paths`` and upsert the results.

        Returns stats including ``failed_paths``: files whose batch did not
        reach the store and must be retried. A transcript that cannot be
        summarized is logged and counted under ``invalid``; it is not retried
        until it changes again.
        """
        paths = list(paths)
        op_id = await self._start_operation("summary_sync", trigger, {"fileCount": len(paths)})
        t0 = time.monotonic()

        summaries: list[SessionSummary] = []
        paths_by_key: dict[str, list[Path]] = defaultdict(list)
        skipped = 0
        invalid = 0
        with start_span("collector.summary_sync", {"trigger": trigger, "files": len(paths)}):
            for path in paths:
                try:
                    summary = self.summarize_file(path)
                except Exception as e:
                    logger.error(f"Failed to summarize {path.name}: {e}")
                    invalid += 1
                    skipped += 1
                    continue
                if summary is None:
                    skipped += 1
                    continue
                summaries.append(summary)
                paths_by_key[summary.session_key].append(path)

            try:
                outcome = await self.client.upsert_summaries(summaries)
            except StoreSchemaError as exc:
                record_ingestion("session_summary", "failed", (time.monotonic() - t0) * 1000)
                await self._finish_operation(
                    op_id, status="failed", stats={"files": len(paths), "skipped": skipped}, error=str(exc)
                )
                raise

        failed_paths = sorted({p for s in outcome.failed for p in paths_by_key[s.session_key]})
        active = sum(1 for s in outcome.applied if s.status == "active")
        stats = {
            "files": len(paths),
            "synced": len(outcome.applied),
            "active": active,
            "completed": len(outcome.applied) - active,
            "skipped": skipped,
            "invalid": invalid,
            "failed": len(outcome.failed),
            "failed_paths": failed_paths,
            "operation_id": op_id,
        }
        duration_ms = (time.monotonic() - t0) * 1000
        record_ingestion("session_summary", "failed" if failed_paths else "success", duration_ms)

        if outcome.ok:
            await self._finish_operation(op_id, status="completed", stats=_public_stats(stats))
        else:
            await self._finish_operation(
                op_id, status="failed", stats=_public_stats(stats), error="; ".join(outcome.errors)
            )
        if outcome.applied:
            logger.info(
                "Synced %d sessions (%d active, %d completed) from %d files",
                stats["synced"], stats["active"], stats["completed"], stats["files"],
            )
        return stats

    async def sync_all_sessions(self, trigger: str = "full") -> dict[str, Any]:
        return await self.sync_session_files(self.list_session_files(), trigger=trigger)

    # ── Usage events ────────────────────────────────────────────────

    def _append_backup(self, events: list[UsageEvent]) -> None:
        """Write-ahead copy of events, appended before the store sees them."""
        if not self.backup_file or not events:
            return
        try:
            self.backup_file.parent.mkdir(parents=True, exist_ok=True)
            with self.backup_file.open("a", encoding="utf-8") as fh:
                for event in events:
                    fh.write(json.dumps(event.model_dump(), separators=(",", ":")) + "\n")
        except OSError as exc:
            logger.warning("Could not append usage backup to %s: %s", self.backup_file, exc)

    async def collect_usage(self, trigger: str = "periodic") -> dict[str, Any]:
        """Extract usage events newer than each transcript's watermark and ship them.

        A watermark only moves after every event it covers was accepted by
        the store; on failure the transcript is simply rescanned next run.
        """
        op_id = await self._start_operation("usage_collect", trigger, {})
        t0 = time.monotonic()
        stats: dict[str, Any] = {
            "files_scanned": 0,
            "events": 0,
            "sessions_with_data": 0,
            "watermarks_advanced": 0,
            "failed_sessions": [],
            "invalid_sessions": [],
            "operation_id": op_id,
        }

        try:
            watermarks = await self.client.get_watermarks()
        except StoreError as exc:
            stats["error"] = str(exc)
            record_ingestion("usage_event", "failed", (time.monotonic() - t0) * 1000)
            await self._finish_operation(op_id, status="failed", stats=_public_stats(stats), error=str(exc))
            if isinstance(exc, StoreSchemaError):
                raise
            return stats

        try:
            with start_span("collector.usage_collect", {"trigger": trigger}):
                await self._collect_usage_files(watermarks, stats)
        except StoreSchemaError as exc:
            stats["error"] = str(exc)
            record_ingestion("usage_event", "failed", (time.monotonic() - t0) * 1000)
            await self._finish_operation(op_id, status="failed", stats=_public_stats(stats), error=str(exc))
            raise

        failed = bool(stats["failed_sessions"])
        record_ingestion("usage_event", "failed" if failed else "success", (time.monotonic() - t0) * 1000)
        await self._finish_operation(
            op_id,
            status="failed" if failed else "completed",
            stats=_public_stats(stats),
            error=f"{len(stats['failed_sessions'])} session(s) failed" if failed else "",
        )
        logger.info(
            "Collected %d new usage records from %d sessions (%d total files scanned)",
            stats["events"], stats["sessions_with_data"], stats["files_scanned"],
        )
        return stats

    def _extract_file(self, path: Path, watermarks: dict[str, int | float]) -> tuple[str, Any] | None:
        records = read_transcript(path)
        if not records:
            return None
        session_id = session_id_from_path(path)
        key = self.resolve_session_key(path.name, session_key_for(records, session_id))
        extraction = extract_usage_events(
            records,
            session_id,
            watermarks.get(session_id),
            session_key=key,
            internal_providers=self.internal_providers,
        )
        return session_id, extraction

    async def _collect_usage_files(self, watermarks: dict[str, int | float], stats: dict[str, Any]) -> None:
        for path in self.list_session_files():
            stats["files_scanned"] += 1
            try:
                extracted = self._extract_file(path, watermarks)
            except Exception as e:
                logger.error(f"Failed to extract usage from {path.name}: {e}")
                stats["invalid_sessions"].append(session_id_from_path(path))
                continue
            if extracted is None:
                continue
            session_id, extraction = extracted
            if not extraction.advanced:
                continue

            if extraction.events:
                self._append_backup(extraction.events)
                outcome = await self.client.upsert_usage_events(extraction.events)
                if not outcome.ok:
                    stats["failed_sessions"].append(session_id)
                    continue

            try:
                await self.client.set_watermark(session_id, extraction.watermark)
            except StoreTransportError as exc:
                logger.error("Watermark update for %s failed: %s", session_id, exc)
                stats["failed_sessions"].append(session_id)
                continue

            stats["watermarks_advanced"] += 1
            if extraction.events:
                stats["events"] += len(extraction.events)
                stats["sessions_with_data"] += 1
                for event in extraction.events:
                    record_token_cost(
                        model=event.model,
                        kind=event.session_kind,
                        tokens=event.total_tokens,
                        cost_usd=event.cost_total,
                    )


def _public_stats(stats: dict[str, Any]) -> dict[str, Any]:
    """Stats suitable for the operation log (JSON-serializable, no path lists)."""
    result = {}
    for key, value in stats.items():
        if key == "operation_id":
            continue
        if isinstance(value, list):
            result[key] = len(value)
        else:
            result[key] = value
    return result
