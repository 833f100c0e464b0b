"""Row column orders shared by the SQL repositories."""
from __future__ import annotations

from session_collector.models import SessionSummary, UsageEvent

SUMMARY_KEY = "session_key"
SUMMARY_COLUMNS: tuple[str, ...] = (*SessionSummary.model_fields.keys(), "synced_at")

USAGE_KEY = "event_key"
USAGE_COLUMNS: tuple[str, ...] = tuple(UsageEvent.model_fields.keys())

WATERMARK_KEY = "session_id"
WATERMARK_COLUMNS: tuple[str, ...] = ("session_id", "last_processed_timestamp", "updated_at")


def row_values(row: dict, columns: tuple[str, ...]) -> tuple:
    return tuple(row.get(column) for column in columns)
