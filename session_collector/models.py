"""Pydantic models matching the store's row shapes."""
from __future__ import annotations

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

SessionKind = Literal["main", "subagent", "group", "other", "unknown"]
SessionStatus = Literal["active", "completed"]


# ── Transcript-level models ─────────────────────────────────────────

class TranscriptRecord(BaseModel):
    """One parsed JSON line, with its 1-based line number in the file."""

    line_no: int
    data: dict = Field(default_factory=dict)


class SessionKey(BaseModel):
    """Natural identity of a session.

    ``declared_key`` comes from the transcript header; ``fallback_id`` is the
    filename-derived session id. The declared key always wins when present.
    """

    declared_key: Optional[str] = None
    fallback_id: str

    @property
    def value(self) -> str:
        return self.declared_key or self.fallback_id

    @property
    def is_declared(self) -> bool:
        return bool(self.declared_key)


# ── Derived rows ────────────────────────────────────────────────────

class SessionSummary(BaseModel):
    session_key: str
    session_id: str
    kind: SessionKind = "unknown"
    label: Optional[str] = None
    display_name: Optional[str] = None
    channel: Optional[str] = None
    model: Optional[str] = None
    total_tokens: int = 0
    cost_total: float = 0.0
    last_message: Optional[str] = None
    last_role: Optional[str] = None
    status: SessionStatus = "completed"
    started_at: str
    last_active_at: str
    duration_ms: Optional[int] = None


class UsageEvent(BaseModel):
    """One billed assistant message. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    event_key: str
    session_id: str
    session_key: str
    session_kind: SessionKind = "unknown"
    provider: str = "unknown"
    model: str = "unknown"
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    total_tokens: int = 0
    cost_input: float = 0.0
    cost_output: float = 0.0
    cost_cache_read: float = 0.0
    cost_cache_write: float = 0.0
    cost_total: float = 0.0
    stop_reason: Optional[str] = None
    recorded_at: str


class UsageExtraction(BaseModel):
    """Result of scanning one transcript against its watermark."""

    session_id: str
    events: list[UsageEvent] = Field(default_factory=list)
    previous_watermark: Optional[Union[int, float]] = None
    watermark: Optional[Union[int, float]] = None

    @property
    def advanced(self) -> bool:
        if self.watermark is None:
            return False
        return self.previous_watermark is None or self.watermark > self.previous_watermark
