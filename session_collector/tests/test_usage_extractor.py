import unittest

from session_collector.models import TranscriptRecord
from session_collector.parsers.usage import extract_usage_events, usage_event_key

INTERNAL = frozenset({"openclaw"})


def _records(*items: dict) -> list[TranscriptRecord]:
    return [TranscriptRecord(line_no=i, data=item) for i, item in enumerate(items, start=1)]


def _billed(ts: int | float, cost: float = 0.01, provider: str = "anthropic") -> dict:
    return {
        "type": "message",
        "message": {
            "role": "assistant",
            "provider": provider,
            "model": "claude-sonnet",
            "timestamp": ts,
            "stopReason": "stop",
            "usage": {
                "input": 10,
                "output": 5,
                "cacheRead": 2,
                "cacheWrite": 1,
                "totalTokens": 18,
                "cost": {"input": 0.001, "output": 0.004, "cacheRead": 0.002, "cacheWrite": 0.003, "total": cost},
            },
        },
    }


HEADER = {"type": "session", "id": "sess-1", "key": "agent:main:main", "timestamp": "2026-03-01T10:00:00Z"}


class ExtractUsageEventsTests(unittest.TestCase):
    def test_only_messages_past_watermark_are_emitted(self) -> None:
        records = _records(HEADER, _billed(900), _billed(1000), _billed(1100))

        result = extract_usage_events(records, "sess-1", 1000, internal_providers=INTERNAL)

        self.assertEqual(len(result.events), 1)
        self.assertEqual(result.watermark, 1100)
        self.assertTrue(result.advanced)
        event = result.events[0]
        self.assertEqual(event.recorded_at, "1970-01-01T00:00:01.100Z")
        self.assertEqual(event.event_key, usage_event_key("sess-1", 1100, 4))

    def test_rerun_with_advanced_watermark_emits_nothing(self) -> None:
        records = _records(HEADER, _billed(900), _billed(1000), _billed(1100))
        first = extract_usage_events(records, "sess-1", 1000, internal_providers=INTERNAL)

        second = extract_usage_events(records, "sess-1", first.watermark, internal_providers=INTERNAL)

        self.assertEqual(second.events, [])
        self.assertEqual(second.watermark, 1100)
        self.assertFalse(second.advanced)

    def test_no_watermark_extracts_everything(self) -> None:
        records = _records(HEADER, _billed(900), _billed(1000))
        result = extract_usage_events(records, "sess-1", None, internal_providers=INTERNAL)
        self.assertEqual(len(result.events), 2)
        self.assertEqual(result.watermark, 1000)

    def test_non_billable_traffic_still_advances_watermark(self) -> None:
        records = _records(
            HEADER,
            {"type": "message", "message": {"role": "user", "content": "hi", "timestamp": 2000}},
            _billed(2100, cost=5.0, provider="openclaw"),
        )

        result = extract_usage_events(records, "sess-1", 1000, internal_providers=INTERNAL)

        self.assertEqual(result.events, [])
        self.assertEqual(result.watermark, 2100)
        self.assertTrue(result.advanced)

    def test_event_fields(self) -> None:
        records = _records(HEADER, _billed(1500, cost=0.01))
        event = extract_usage_events(records, "sess-1", None, internal_providers=INTERNAL).events[0]

        self.assertEqual(event.session_id, "sess-1")
        self.assertEqual(event.session_key, "agent:main:main")
        self.assertEqual(event.session_kind, "main")
        self.assertEqual(event.provider, "anthropic")
        self.assertEqual(event.model, "claude-sonnet")
        self.assertEqual(
            (event.input_tokens, event.output_tokens, event.cache_read_tokens, event.cache_write_tokens, event.total_tokens),
            (10, 5, 2, 1, 18),
        )
        self.assertAlmostEqual(event.cost_total, 0.01)
        self.assertAlmostEqual(event.cost_cache_write, 0.003)
        self.assertEqual(event.stop_reason, "stop")

    def test_string_timestamps_are_not_watermarked(self) -> None:
        records = _records(
            HEADER,
            {"type": "message", "timestamp": "2026-03-01T10:00:05Z", "message": {"role": "user", "content": "hi"}},
        )
        result = extract_usage_events(records, "sess-1", None, internal_providers=INTERNAL)
        self.assertIsNone(result.watermark)
        self.assertFalse(result.advanced)

    def test_session_key_override_drives_kind(self) -> None:
        records = _records({"type": "session", "id": "sess-1"}, _billed(1200))
        result = extract_usage_events(
            records, "sess-1", None, session_key="agent:main:subagent-3", internal_providers=INTERNAL
        )
        self.assertEqual(result.events[0].session_key, "agent:main:subagent-3")
        self.assertEqual(result.events[0].session_kind, "subagent")

    def test_event_key_is_stable(self) -> None:
        self.assertEqual(usage_event_key("s", 1, 2), usage_event_key("s", 1, 2))
        self.assertNotEqual(usage_event_key("s", 1, 2), usage_event_key("s", 1, 3))

    def test_empty_records(self) -> None:
        result = extract_usage_events([], "sess-1", 500, internal_providers=INTERNAL)
        self.assertEqual(result.events, [])
        self.assertEqual(result.watermark, 500)
        self.assertFalse(result.advanced)

    def test_sub_millisecond_timestamps_pass_an_integer_watermark(self) -> None:
        records = _records(HEADER, _billed(1000), _billed(1000.5))

        result = extract_usage_events(records, "sess-1", 1000, internal_providers=INTERNAL)

        self.assertEqual(len(result.events), 1)
        self.assertEqual(result.watermark, 1000.5)
        self.assertTrue(result.advanced)
        rerun = extract_usage_events(records, "sess-1", result.watermark, internal_providers=INTERNAL)
        self.assertEqual(rerun.events, [])

    def test_out_of_range_timestamps_are_skipped(self) -> None:
        records = _records(HEADER, _billed(10**20), _billed(float("inf")), _billed(1200))

        result = extract_usage_events(records, "sess-1", None, internal_providers=INTERNAL)

        self.assertEqual(len(result.events), 1)
        self.assertEqual(result.watermark, 1200)


if __name__ == "__main__":
    unittest.main()
