import unittest

from session_collector.models import TranscriptRecord
from session_collector.parsers.summarizer import coerce_float, coerce_int, summarize_transcript

INTERNAL = frozenset({"openclaw"})
BASE_MS = 1_772_359_200_000  # 2026-03-01T10:00:00Z


def _records(*items: dict) -> list[TranscriptRecord]:
    return [TranscriptRecord(line_no=i, data=item) for i, item in enumerate(items, start=1)]


def _assistant(ts: int, cost: float, tokens: int | float, *, provider: str = "anthropic", model: str = "claude-sonnet", text: str = "ok") -> dict:
    return {
        "type": "message",
        "timestamp": ts,
        "message": {
            "role": "assistant",
            "provider": provider,
            "model": model,
            "content": [{"type": "text", "text": text}],
            "usage": {"totalTokens": tokens, "cost": {"total": cost}},
        },
    }


class SummarizeTranscriptTests(unittest.TestCase):
    def _summarize(self, records, now_ms=BASE_MS + 60_000, **kwargs):
        return summarize_transcript(
            records,
            "sess-1",
            now_ms=now_ms,
            active_window_seconds=600,
            last_message_max_chars=300,
            internal_providers=INTERNAL,
            **kwargs,
        )

    def test_internal_provider_cost_is_excluded(self) -> None:
        records = _records(
            {"type": "session", "id": "sess-1", "timestamp": BASE_MS},
            _assistant(BASE_MS + 1000, 0.01, 100),
            _assistant(BASE_MS + 2000, 0.02, 200, text="second"),
            {"type": "message", "timestamp": BASE_MS + 3000, "message": {"role": "assistant", "content": "no usage"}},
            _assistant(BASE_MS + 4000, 100.0, 9999, provider="openclaw", model="delivery-mirror", text="echo"),
        )

        summary = self._summarize(records)

        self.assertAlmostEqual(summary.cost_total, 0.03)
        self.assertEqual(summary.total_tokens, 300)
        self.assertEqual(summary.model, "claude-sonnet")
        self.assertEqual(summary.last_message, "second")
        self.assertEqual(summary.last_role, "assistant")

    def test_timing_and_status(self) -> None:
        records = _records(
            {"type": "session", "id": "sess-1", "timestamp": "2026-03-01T10:00:00.000Z"},
            _assistant(BASE_MS + 90_000, 0.01, 10),
        )

        active = self._summarize(records, now_ms=BASE_MS + 120_000)
        self.assertEqual(active.started_at, "2026-03-01T10:00:00.000Z")
        self.assertEqual(active.last_active_at, "2026-03-01T10:01:30.000Z")
        self.assertEqual(active.duration_ms, 90_000)
        self.assertEqual(active.status, "active")

        stale = self._summarize(records, now_ms=BASE_MS + 90_000 + 600_000)
        self.assertEqual(stale.status, "completed")

    def test_single_timestamp_has_no_duration(self) -> None:
        records = _records(
            {"type": "session", "id": "sess-1", "timestamp": BASE_MS},
            {"type": "message", "timestamp": BASE_MS, "message": {"role": "user", "content": "hi"}},
        )
        summary = self._summarize(records)
        self.assertIsNone(summary.duration_ms)
        self.assertEqual(summary.total_tokens, 0)
        self.assertIsNone(summary.last_message)
        self.assertIsNone(summary.last_role)

    def test_no_timestamps_yields_none(self) -> None:
        records = _records({"type": "session", "id": "sess-1"}, {"role": "user", "content": "hi"})
        self.assertIsNone(self._summarize(records))

    def test_first_label_display_name_and_channel_win(self) -> None:
        records = _records(
            {"type": "session", "key": "agent:main:main", "timestamp": BASE_MS, "label": "First", "displayName": "Alice"},
            {
                "type": "message",
                "timestamp": BASE_MS + 10,
                "label": "Second",
                "displayName": "Bob",
                "message": {"role": "user", "content": "hi", "deliveryContext": {"channel": "telegram"}},
            },
            {
                "type": "message",
                "timestamp": BASE_MS + 20,
                "message": {"role": "user", "content": "hi", "deliveryContext": {"channel": "discord"}},
            },
        )
        summary = self._summarize(records)
        self.assertEqual(summary.session_key, "agent:main:main")
        self.assertEqual(summary.kind, "main")
        self.assertEqual(summary.label, "First")
        self.assertEqual(summary.display_name, "Alice")
        self.assertEqual(summary.channel, "telegram")

    def test_same_records_give_same_summary(self) -> None:
        records = _records(
            {"type": "session", "id": "sess-1", "timestamp": BASE_MS},
            _assistant(BASE_MS + 1000, 0.01, 100),
        )
        self.assertEqual(self._summarize(records), self._summarize(records))

    def test_last_message_is_truncated(self) -> None:
        records = _records(
            {"type": "session", "id": "sess-1", "timestamp": BASE_MS},
            _assistant(BASE_MS + 1000, 0.01, 100, text="x" * 500),
        )
        summary = summarize_transcript(
            records, "sess-1", now_ms=BASE_MS, last_message_max_chars=50, internal_providers=INTERNAL
        )
        self.assertEqual(len(summary.last_message), 50)

    def test_out_of_range_timestamps_are_ignored(self) -> None:
        records = _records(
            {"type": "session", "id": "sess-1", "timestamp": BASE_MS},
            _assistant(10**20, 0.01, 100),
        )
        summary = self._summarize(records)
        self.assertEqual(summary.started_at, summary.last_active_at)
        self.assertIsNone(summary.duration_ms)
        self.assertEqual(summary.total_tokens, 100)

    def test_non_finite_token_count_is_zero(self) -> None:
        records = _records(
            {"type": "session", "id": "sess-1", "timestamp": BASE_MS},
            _assistant(BASE_MS + 1000, 0.01, float("inf")),
        )
        summary = self._summarize(records)
        self.assertEqual(summary.total_tokens, 0)
        self.assertEqual(summary.cost_total, 0.01)


class CoerceTests(unittest.TestCase):
    def test_coerce_int(self) -> None:
        self.assertEqual(coerce_int("42"), 42)
        self.assertEqual(coerce_int(12.9), 12)
        for value in (None, True, "x", float("inf"), float("-inf"), float("nan"), 2**64):
            with self.subTest(value=value):
                self.assertEqual(coerce_int(value), 0)

    def test_coerce_float(self) -> None:
        self.assertEqual(coerce_float("0.25"), 0.25)
        for value in (None, False, "x", float("inf"), float("nan"), 10**400):
            with self.subTest(value=value):
                self.assertEqual(coerce_float(value), 0.0)


if __name__ == "__main__":
    unittest.main()
