"""Incremental extraction of per-message billing events."""
from __future__ import annotations

import hashlib

from session_collector.date_utils import ms_to_iso, numeric_epoch_ms
from session_collector.models import SessionKind, TranscriptRecord, UsageEvent, UsageExtraction
from session_collector.parsers.classifier import classify_key, classify_transcript
from session_collector.parsers.summarizer import coerce_float, coerce_int, cost_breakdown
from session_collector.parsers.transcripts import is_billable, session_key_for, unwrap_message


def usage_event_key(session_id: str, timestamp_ms: int | float, line_no: int) -> str:
    """Deterministic identity of a usage event.

    Line numbers are stable because transcripts are append-only, so a message
    re-extracted after a crash maps onto the same row.
    """
    raw = f"{session_id}:{timestamp_ms}:{line_no}".encode("utf-8")
    return hashlib.sha1(raw).hexdigest()


def _message_timestamp(item: dict, msg: dict) -> int | float | None:
    ts = numeric_epoch_ms(msg.get("timestamp"))
    if ts is None:
        ts = numeric_epoch_ms(item.get("timestamp"))
    return ts


def extract_usage_events(
    records: list[TranscriptRecord],
    session_id: str,
    watermark: int | float | None,
    *,
    session_key: str | None = None,
    internal_providers: frozenset[str] | None = None,
) -> UsageExtraction:
    """Events strictly newer than ``watermark`` plus the advanced watermark.

    The watermark moves to the newest numeric message timestamp seen, even
    when none of the newer messages is billable, so those lines are never
    scanned again. Ties with the watermark are dropped; comparisons use the
    raw numeric timestamp, fractional milliseconds included.
    """
    result = UsageExtraction(
        session_id=session_id,
        previous_watermark=watermark,
        watermark=watermark,
    )
    if not records:
        return result

    key = session_key or session_key_for(records, session_id).value
    kind: SessionKind = classify_key(key) or classify_transcript(records, internal_providers)

    max_ts = watermark
    events: list[UsageEvent] = []
    for record in records:
        item = record.data
        msg = unwrap_message(item)
        if not msg:
            continue
        ts = _message_timestamp(item, msg)
        if ts is None or (watermark is not None and ts <= watermark):
            continue
        if max_ts is None or ts > max_ts:
            max_ts = ts

        if not is_billable(msg, internal_providers):
            continue

        usage = msg["usage"]
        cost = cost_breakdown(usage)
        events.append(
            UsageEvent(
                event_key=usage_event_key(session_id, ts, record.line_no),
                session_id=session_id,
                session_key=key,
                session_kind=kind,
                provider=str(msg.get("provider") or "unknown"),
                model=str(msg.get("model") or "unknown"),
                input_tokens=coerce_int(usage.get("input")),
                output_tokens=coerce_int(usage.get("output")),
                cache_read_tokens=coerce_int(usage.get("cacheRead")),
                cache_write_tokens=coerce_int(usage.get("cacheWrite")),
                total_tokens=coerce_int(usage.get("totalTokens")),
                cost_input=coerce_float(cost.get("input")),
                cost_output=coerce_float(cost.get("output")),
                cost_cache_read=coerce_float(cost.get("cacheRead")),
                cost_cache_write=coerce_float(cost.get("cacheWrite")),
                cost_total=coerce_float(cost.get("total")),
                stop_reason=str(msg["stopReason"]) if msg.get("stopReason") else None,
                recorded_at=ms_to_iso(ts),
            )
        )

    result.events = events
    result.watermark = max_ts
    return result
