"""Read append-only JSONL transcripts written by the agent runtime."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from session_collector import config
from session_collector.models import SessionKey, TranscriptRecord
from session_collector.observability import record_parser_failure

logger = logging.getLogger("session_collector.reader")


def session_id_from_path(path: Path, suffix: str | None = None) -> str:
    """Filename-derived session id (the name without the transcript suffix)."""
    suffix = suffix if suffix is not None else config.TRANSCRIPT_SUFFIX
    name = path.name
    if suffix and name.endswith(suffix):
        return name[: -len(suffix)]
    return path.stem


def is_transcript_name(name: str, suffix: str | None = None, deleted_marker: str | None = None) -> bool:
    suffix = suffix if suffix is not None else config.TRANSCRIPT_SUFFIX
    deleted_marker = deleted_marker if deleted_marker is not None else config.DELETED_MARKER
    if not name.endswith(suffix):
        return False
    if deleted_marker and deleted_marker in name:
        return False
    return True


def list_transcripts(sessions_dir: Path) -> list[Path]:
    """All live transcripts in the directory, sorted by name for stable ordering."""
    if not sessions_dir.is_dir():
        return []
    try:
        return sorted(
            p for p in sessions_dir.iterdir()
            if p.is_file() and is_transcript_name(p.name)
        )
    except OSError as exc:
        logger.error("Cannot list transcripts in %s: %s", sessions_dir, exc)
        return []


def read_transcript(path: Path) -> list[TranscriptRecord]:
    """Parse every JSON-object line of a transcript.

    The file is read once as a snapshot. Lines that fail to parse (including
    a truncated final line that is still being written) are dropped. A
    missing or unreadable file yields an empty list.
    """
    try:
        raw = path.read_bytes()
    except OSError as exc:
        logger.debug("Cannot read transcript %s: %s", path, exc)
        return []

    records: list[TranscriptRecord] = []
    malformed = 0
    for line_no, line in enumerate(raw.decode("utf-8", errors="replace").splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except ValueError:
            malformed += 1
            continue
        if not isinstance(data, dict):
            malformed += 1
            continue
        records.append(TranscriptRecord(line_no=line_no, data=data))

    if malformed:
        logger.debug("Skipped %d malformed line(s) in %s", malformed, path.name)
        record_parser_failure("transcript", count=malformed)
    return records


# ── Record accessors ────────────────────────────────────────────────

def unwrap_message(item: dict) -> dict | None:
    """Return the message payload of a record.

    Records are either bare messages or ``{"type": "message", "message": {...}}``
    envelopes.
    """
    if item.get("type") == "message":
        msg = item.get("message")
        return msg if isinstance(msg, dict) else None
    return item


def extract_text(content: Any, max_chars: int | None = None) -> str | None:
    """Trimmed text of plain string content or the first ``text`` block."""
    max_chars = max_chars if max_chars is not None else config.LAST_MESSAGE_MAX_CHARS
    text = None
    if isinstance(content, str):
        text = content.strip()
    elif isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text"):
                text = str(block["text"]).strip()
                break
    if not text:
        return None
    return text[:max_chars]


def first_text(content: Any) -> str:
    """Untruncated text used for channel-tag matching."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                return str(block.get("text") or "")
    return ""


def header_of(records: list[TranscriptRecord]) -> dict | None:
    """The session header is the first parsed record."""
    if not records:
        return None
    return records[0].data


def session_key_for(records: list[TranscriptRecord], session_id: str) -> SessionKey:
    header = header_of(records) or {}
    declared = header.get("key") or header.get("id")
    if not isinstance(declared, str) or not declared.strip():
        declared = None
    return SessionKey(declared_key=declared, fallback_id=session_id)


def is_billable(msg: dict | None, internal_providers: frozenset[str] | None = None) -> bool:
    """Assistant message carrying a real usage+cost object from an external provider."""
    if not msg or msg.get("role") != "assistant":
        return False
    usage = msg.get("usage")
    if not isinstance(usage, dict) or not usage.get("cost"):
        return False
    provider = msg.get("provider")
    if not provider:
        return False
    internal = internal_providers if internal_providers is not None else config.INTERNAL_PROVIDERS
    return str(provider).lower() not in internal
