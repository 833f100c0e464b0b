"""Fold a transcript's records into a single SessionSummary."""
from __future__ import annotations

import math
from typing import Any

from session_collector import config
from session_collector.date_utils import ms_to_iso, now_ms as _now_ms, to_epoch_ms
from session_collector.models import SessionKind, SessionSummary, TranscriptRecord
from session_collector.parsers.classifier import classify_transcript
from session_collector.parsers.transcripts import (
    extract_text,
    is_billable,
    session_key_for,
    unwrap_message,
)

_MAX_INT64 = 2**63 - 1


def coerce_int(value: Any) -> int:
    """Integer usage count; anything non-numeric, non-finite or beyond a 64-bit column is 0."""
    if isinstance(value, bool):
        return 0
    try:
        result = int(value or 0)
    except (TypeError, ValueError, OverflowError):
        return 0
    return result if abs(result) <= _MAX_INT64 else 0


def coerce_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        result = float(value or 0.0)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return result if math.isfinite(result) else 0.0


def _str_or_none(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def cost_breakdown(usage: dict) -> dict:
    cost = usage.get("cost")
    return cost if isinstance(cost, dict) else {}


def _channel_of(item: dict, msg: dict | None) -> str | None:
    for source in (msg, item):
        if not source:
            continue
        ctx = source.get("deliveryContext")
        if isinstance(ctx, dict) and ctx.get("channel"):
            return str(ctx["channel"])
    return None


def summarize_transcript(
    records: list[TranscriptRecord],
    session_id: str,
    *,
    kind: SessionKind | None = None,
    session_key: str | None = None,
    now_ms: int | None = None,
    active_window_seconds: int | None = None,
    last_message_max_chars: int | None = None,
    internal_providers: frozenset[str] | None = None,
) -> SessionSummary | None:
    """Build the current-state summary of one transcript.

    Returns None when no record carries a usable timestamp. The result only
    depends on the records, except for the active/completed cutoff which is
    measured against ``now_ms``.
    """
    if not records:
        return None

    window_ms = (active_window_seconds if active_window_seconds is not None else config.ACTIVE_WINDOW_SECONDS) * 1000
    now_value = now_ms if now_ms is not None else _now_ms()

    timestamps: list[int] = []
    total_tokens = 0
    cost_total = 0.0
    last_message: str | None = None
    last_model: str | None = None
    label: str | None = None
    display_name: str | None = None
    channel: str | None = None

    for record in records:
        item = record.data
        msg = unwrap_message(item)

        ts = to_epoch_ms(item.get("timestamp") or (msg.get("timestamp") if msg else None))
        if ts is not None:
            timestamps.append(ts)

        if label is None:
            data = item.get("data")
            label = _str_or_none(item.get("label")) or (
                _str_or_none(data.get("label")) if isinstance(data, dict) else None
            )
        if display_name is None:
            display_name = _str_or_none(item.get("displayName"))
        if channel is None:
            channel = _channel_of(item, msg)

        if not is_billable(msg, internal_providers):
            continue

        usage = msg["usage"]
        total_tokens += coerce_int(usage.get("totalTokens"))
        cost_total += coerce_float(cost_breakdown(usage).get("total"))
        if msg.get("model"):
            last_model = str(msg["model"])
        text = extract_text(msg.get("content"), last_message_max_chars)
        if text:
            last_message = text

    if not timestamps:
        return None

    started = min(timestamps)
    last_active = max(timestamps)
    duration = last_active - started if len(set(timestamps)) > 1 else None
    key = session_key or session_key_for(records, session_id).value

    return SessionSummary(
        session_key=key,
        session_id=session_id,
        kind=kind or classify_transcript(records, internal_providers),
        label=label,
        display_name=display_name,
        channel=channel,
        model=last_model,
        total_tokens=total_tokens,
        cost_total=round(cost_total, 6),
        last_message=last_message,
        last_role="assistant" if last_message else None,
        status="active" if now_value - last_active < window_ms else "completed",
        started_at=ms_to_iso(started),
        last_active_at=ms_to_iso(last_active),
        duration_ms=duration,
    )
