"""Command-line interface.

Usage:
  session-collector run
  session-collector sync-sessions --sessions-dir ~/.openclaw/agents/main/sessions
  session-collector collect-usage --backend sqlite
"""
from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from session_collector import config, main as app
from session_collector.db.connection import BACKENDS
from session_collector.db.errors import StoreError

logger = logging.getLogger("session_collector")


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--sessions-dir",
        type=Path,
        default=None,
        help="Transcript directory (default: COLLECTOR_SESSIONS_DIR)",
    )
    common.add_argument(
        "--backend",
        choices=BACKENDS,
        default=None,
        help="Store backend (default: COLLECTOR_STORE_BACKEND)",
    )
    common.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level (default: INFO)")

    parser = argparse.ArgumentParser(prog="session-collector", description="Session telemetry collector")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", parents=[common], help="Watch transcripts and keep the store in sync")
    sub.add_parser("sync-sessions", parents=[common], help="One-shot summary sync of every transcript")
    sub.add_parser("collect-usage", parents=[common], help="One-shot usage extraction")
    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.log_level)
    sessions_dir = args.sessions_dir or app.default_sessions_dir()

    try:
        if args.command == "run":
            asyncio.run(app.run_daemon(sessions_dir, args.backend))
            return 0

        if args.command == "sync-sessions":
            stats = asyncio.run(app.run_sync_sessions(sessions_dir, args.backend))
            print(
                f"Synced {stats['synced']} sessions ({stats['active']} active, "
                f"{stats['completed']} completed) from {stats['files']} files"
            )
            return 1 if stats["failed"] else 0

        if args.command == "collect-usage":
            stats = asyncio.run(app.run_collect_usage(sessions_dir, args.backend))
            print(
                f"Collected {stats['events']} new usage records from {stats['sessions_with_data']} sessions "
                f"({stats['files_scanned']} total files scanned)"
            )
            return 1 if stats["failed_sessions"] or stats.get("error") else 0
    except app.SessionsDirMissing as exc:
        logger.error("%s", exc)
        return 1
    except (StoreError, OSError, ValueError) as exc:
        logger.error("Collector failed: %s", exc)
        return 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main())
