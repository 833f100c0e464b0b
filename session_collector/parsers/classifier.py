"""Classify a transcript into a session kind.

Header keys are checked first; when they are silent, message content is
scanned for delivery-mirror, group-chat and cron signals. Anything with no
signal at all is treated as an agent-spawned sub-task.
"""
from __future__ import annotations

import re

from session_collector import config
from session_collector.models import SessionKind, TranscriptRecord
from session_collector.parsers.transcripts import first_text, header_of, unwrap_message

# "[Telegram <chat name> id:-1234...]": negative chat ids are groups.
_GROUP_CHANNEL_TAG_PATTERN = re.compile(r"^\[Telegram .+ id:-[0-9]")
_MAIN_SENTINEL = "agent:main:main"
_MAIN_SUFFIX = ":main:main"
_GROUP_KEY_MARKERS = ("telegram:group", "telegram:g-")


def classify_key(key: str | None) -> SessionKind | None:
    """Kind implied by a natural session key, or None when the key says nothing."""
    if not key:
        return None
    lowered = key.lower()
    if "subagent" in lowered:
        return "subagent"
    if lowered == _MAIN_SENTINEL or _MAIN_SUFFIX in lowered:
        return "main"
    if any(marker in lowered for marker in _GROUP_KEY_MARKERS):
        return "group"
    if "cron" in lowered or "heartbeat" in lowered:
        return "other"
    return None


def _is_delivery_mirror(msg: dict, internal_providers: frozenset[str]) -> bool:
    if msg.get("model") == config.DELIVERY_MIRROR_MODEL:
        return True
    provider = msg.get("provider")
    return bool(provider) and str(provider).lower() in internal_providers


def classify_content(
    records: list[TranscriptRecord],
    internal_providers: frozenset[str] | None = None,
) -> SessionKind:
    internal = internal_providers if internal_providers is not None else config.INTERNAL_PROVIDERS
    has_delivery_mirror = False
    has_group_message = False
    has_cron_label = False

    for record in records:
        item = record.data
        msg = unwrap_message(item)
        label = item.get("label") or (msg.get("label") if msg else None)
        if isinstance(label, str) and "cron" in label.lower():
            has_cron_label = True
        if not msg:
            continue
        if _is_delivery_mirror(msg, internal):
            has_delivery_mirror = True
        if msg.get("role") == "user" and _GROUP_CHANNEL_TAG_PATTERN.match(first_text(msg.get("content"))):
            has_group_message = True

    if has_group_message:
        return "group"
    if has_delivery_mirror:
        return "main"
    if has_cron_label:
        return "other"
    return "subagent"


def classify_transcript(
    records: list[TranscriptRecord],
    internal_providers: frozenset[str] | None = None,
) -> SessionKind:
    """Exactly one kind per transcript; deterministic for identical input."""
    if not records:
        return "unknown"
    header = header_of(records) or {}
    header_key = header.get("key")
    kind = classify_key(header_key if isinstance(header_key, str) else None)
    if kind:
        return kind
    return classify_content(records, internal_providers)
