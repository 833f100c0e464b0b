"""Session collector — process entry points.

``run_daemon`` wires connection, migrations, sync engine, scheduler and file
watcher together and runs until SIGINT/SIGTERM. The one-shot runners back the
``sync-sessions`` and ``collect-usage`` commands.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path

from session_collector import config
from session_collector.db import connection, migrations
from session_collector.db.file_watcher import FileWatcher
from session_collector.db.scheduler import SyncScheduler
from session_collector.db.sync_engine import SyncEngine
from session_collector.observability import initialize as initialize_observability, shutdown as shutdown_observability

logger = logging.getLogger("session_collector")


class SessionsDirMissing(RuntimeError):
    """The transcript directory is missing or unreadable; there is nothing to watch."""


def _check_sessions_dir(sessions_dir: Path | None) -> Path:
    if sessions_dir is None:
        raise SessionsDirMissing("No sessions directory configured (COLLECTOR_SESSIONS_DIR)")
    sessions_dir = Path(sessions_dir).expanduser()
    if not sessions_dir.is_dir():
        raise SessionsDirMissing(f"Sessions directory not found: {sessions_dir}")
    if not os.access(sessions_dir, os.R_OK | os.X_OK):
        raise SessionsDirMissing(f"Sessions directory not readable: {sessions_dir}")
    return sessions_dir


async def _open_engine(sessions_dir: Path, backend: str | None) -> SyncEngine:
    db = await connection.get_connection(backend)
    await migrations.run_migrations(db)
    return SyncEngine(db, sessions_dir)


async def run_daemon(sessions_dir: Path, backend: str | None = None) -> None:
    """Long-running collector: initial full sync, then watcher + timers."""
    sessions_dir = _check_sessions_dir(sessions_dir)
    logger.info("Session collector starting up (sessions=%s)", sessions_dir)
    initialize_observability()

    try:
        engine = await _open_engine(sessions_dir, backend)
        scheduler = SyncScheduler(engine)
        watcher = FileWatcher()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, scheduler.request_stop)
            except NotImplementedError:
                logger.debug("Signal handlers unavailable on this platform")

        await watcher.start(sessions_dir, scheduler.notify)
        try:
            await scheduler.run()
        finally:
            await watcher.stop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except NotImplementedError:
                    pass
    finally:
        logger.info("Session collector shutting down")
        shutdown_observability()
        await connection.close_connection()


async def run_sync_sessions(sessions_dir: Path, backend: str | None = None) -> dict:
    sessions_dir = _check_sessions_dir(sessions_dir)
    try:
        engine = await _open_engine(sessions_dir, backend)
        return await engine.sync_all_sessions(trigger="manual")
    finally:
        await connection.close_connection()


async def run_collect_usage(sessions_dir: Path, backend: str | None = None) -> dict:
    sessions_dir = _check_sessions_dir(sessions_dir)
    try:
        engine = await _open_engine(sessions_dir, backend)
        return await engine.collect_usage(trigger="manual")
    finally:
        await connection.close_connection()


def default_sessions_dir() -> Path | None:
    return config.SESSIONS_DIR
