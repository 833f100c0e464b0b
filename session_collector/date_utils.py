"""Timestamp normalization shared by the summarizer and usage extractor.

Transcripts mix two encodings: epoch milliseconds (numbers) on messages and
ISO-8601 strings on headers and envelopes. Everything is normalized to
epoch milliseconds internally and rendered back as ISO-8601 UTC with
millisecond precision. Values past year 9999 are treated as missing.
"""
from __future__ import annotations

import math
import time
from datetime import datetime, timedelta, timezone
from typing import Any

# 9999-12-31T23:59:59.999Z, the last instant datetime can render.
MAX_EPOCH_MS = 253_402_300_799_999
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y/%m/%d %H:%M:%S", "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def _in_range(value_ms: int | float) -> bool:
    if isinstance(value_ms, float) and not math.isfinite(value_ms):
        return False
    return 0 <= value_ms <= MAX_EPOCH_MS


def to_epoch_ms(value: Any) -> int | None:
    """Convert a numeric or ISO timestamp into epoch milliseconds.

    Returns None for missing, boolean, non-finite, out-of-range or
    unparseable values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not _in_range(value):
            return None
        return int(value)
    if isinstance(value, str):
        parsed = _parse_datetime_token(value)
        if parsed is None:
            return None
        dt = parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        try:
            value_ms = int(round(dt.timestamp() * 1000))
        except (OverflowError, OSError, ValueError):
            return None
        return value_ms if _in_range(value_ms) else None
    return None


def normalize_epoch_ms(value: int | float) -> int | float:
    """Whole milliseconds as int; sub-millisecond precision is kept as float."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def numeric_epoch_ms(value: Any) -> int | float | None:
    """Like to_epoch_ms but only accepts numbers (the usage watermark domain).

    Fractional milliseconds are preserved so that 1000.5 stays newer than a
    watermark of 1000.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not _in_range(value):
        return None
    return normalize_epoch_ms(value)


def ms_to_iso(value_ms: int | float) -> str:
    dt = _EPOCH + timedelta(milliseconds=value_ms)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def now_ms() -> int:
    return int(time.time() * 1000)


def utc_now_iso() -> str:
    return ms_to_iso(now_ms())
