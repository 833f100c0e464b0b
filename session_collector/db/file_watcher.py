"""File watcher service using watchfiles.

Monitors the transcript directory and forwards every added/modified
transcript path to a callback (the scheduler's event channel).
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from watchfiles import Change, awatch

from session_collector.parsers.transcripts import is_transcript_name

logger = logging.getLogger("session_collector.watcher")


class FileWatcher:
    """Background transcript watcher.

    Uses `watchfiles` (Rust-accelerated) for efficient watching. Delivery is
    best effort; the scheduler's periodic reconciliation covers anything the
    OS drops.
    """

    def __init__(self):
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(self, sessions_dir: Path, on_change: Callable[[Path], None]) -> None:
        """Start watching ``sessions_dir`` in a background task."""
        if self._running:
            logger.warning("File watcher already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(sessions_dir, on_change))
        logger.info("Watching %s", sessions_dir)

    async def stop(self) -> None:
        """Stop the file watcher."""
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("File watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _watch_loop(self, sessions_dir: Path, on_change: Callable[[Path], None]) -> None:
        try:
            async for changes in awatch(sessions_dir, stop_event=self._stop_event):
                if not self._running:
                    break
                for path in self._classify_changes(changes):
                    on_change(path)
        except asyncio.CancelledError:
            logger.info("File watcher task cancelled")
        except Exception as e:
            logger.error("File watcher error: %s", e)
        finally:
            self._running = False

    def _classify_changes(self, changes: set[tuple[Change, str]]) -> list[Path]:
        """Keep added/modified live transcripts; drop deletions and other files."""
        result = []
        for change_type, path_str in changes:
            path = Path(path_str)
            if not is_transcript_name(path.name):
                continue
            if change_type == Change.deleted:
                logger.debug("Ignoring deletion of %s", path.name)
                continue
            result.append(path)
        return sorted(result)
