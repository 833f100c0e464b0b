import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from session_collector.parsers import transcripts
from session_collector.parsers.transcripts import (
    extract_text,
    is_billable,
    is_transcript_name,
    list_transcripts,
    read_transcript,
    session_id_from_path,
    session_key_for,
    unwrap_message,
)


class TranscriptReaderTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write(self, name: str, lines: list[str]) -> Path:
        path = self.root / name
        path.write_text("\n".join(lines), encoding="utf-8")
        return path

    def test_malformed_and_truncated_lines_are_skipped(self) -> None:
        path = self._write(
            "abc.jsonl",
            [
                json.dumps({"type": "session", "id": "abc"}),
                "{not json",
                json.dumps(["not", "an", "object"]),
                "",
                json.dumps({"type": "message", "message": {"role": "user", "content": "hi"}}),
                '{"type": "message", "message": {"role": "assis',
            ],
        )

        with patch.object(transcripts, "record_parser_failure") as failure:
            records = read_transcript(path)

        self.assertEqual([r.line_no for r in records], [1, 5])
        failure.assert_called_once_with("transcript", count=3)

    def test_missing_file_yields_empty_list(self) -> None:
        self.assertEqual(read_transcript(self.root / "gone.jsonl"), [])

    def test_empty_file_yields_empty_list(self) -> None:
        path = self._write("empty.jsonl", [])
        self.assertEqual(read_transcript(path), [])

    def test_list_transcripts_skips_deleted_and_other_files(self) -> None:
        self._write("b.jsonl", ["{}"])
        self._write("a.jsonl", ["{}"])
        self._write("c.deleted.2026-01-01.jsonl", ["{}"])
        self._write("notes.txt", ["x"])

        names = [p.name for p in list_transcripts(self.root)]
        self.assertEqual(names, ["a.jsonl", "b.jsonl"])

    def test_list_transcripts_of_missing_directory_is_empty(self) -> None:
        self.assertEqual(list_transcripts(self.root / "nope"), [])

    def test_list_transcripts_of_unreadable_directory_is_empty(self) -> None:
        self._write("a.jsonl", ["{}"])
        with patch.object(Path, "iterdir", side_effect=PermissionError("permission denied")):
            self.assertEqual(list_transcripts(self.root), [])


class TranscriptAccessorTests(unittest.TestCase):
    def test_session_id_from_path_strips_suffix(self) -> None:
        self.assertEqual(session_id_from_path(Path("/x/abc-123.jsonl")), "abc-123")

    def test_is_transcript_name(self) -> None:
        self.assertTrue(is_transcript_name("abc.jsonl"))
        self.assertFalse(is_transcript_name("abc.jsonl.deleted.2026"))
        self.assertFalse(is_transcript_name("abc.deleted.jsonl"))
        self.assertFalse(is_transcript_name("abc.log"))

    def test_unwrap_message_handles_envelope_and_bare_message(self) -> None:
        inner = {"role": "assistant"}
        self.assertEqual(unwrap_message({"type": "message", "message": inner}), inner)
        self.assertIsNone(unwrap_message({"type": "message", "message": "oops"}))
        bare = {"role": "user", "content": "hi"}
        self.assertEqual(unwrap_message(bare), bare)

    def test_extract_text_takes_first_text_block_and_truncates(self) -> None:
        content = [
            {"type": "thinking", "thinking": "hmm"},
            {"type": "text", "text": "  first block  "},
            {"type": "text", "text": "second"},
        ]
        self.assertEqual(extract_text(content, 300), "first block")
        self.assertEqual(extract_text("abcdef", 3), "abc")
        self.assertIsNone(extract_text([{"type": "image"}], 300))
        self.assertIsNone(extract_text("   ", 300))

    def test_session_key_prefers_header_key_then_id(self) -> None:
        from session_collector.models import TranscriptRecord

        keyed = [TranscriptRecord(line_no=1, data={"key": "agent:main:main", "id": "abc"})]
        by_id = [TranscriptRecord(line_no=1, data={"id": "abc"})]
        bare = [TranscriptRecord(line_no=1, data={"type": "session"})]

        self.assertEqual(session_key_for(keyed, "file-id").value, "agent:main:main")
        self.assertEqual(session_key_for(by_id, "file-id").value, "abc")
        key = session_key_for(bare, "file-id")
        self.assertEqual(key.value, "file-id")
        self.assertFalse(key.is_declared)

    def test_is_billable_requires_external_provider_and_cost(self) -> None:
        internal = frozenset({"openclaw"})
        base = {"role": "assistant", "provider": "anthropic", "usage": {"cost": {"total": 0.01}}}
        self.assertTrue(is_billable(base, internal))
        self.assertFalse(is_billable({**base, "provider": "OpenClaw"}, internal))
        self.assertFalse(is_billable({**base, "provider": None}, internal))
        self.assertFalse(is_billable({**base, "role": "user"}, internal))
        self.assertFalse(is_billable({**base, "usage": {"totalTokens": 5}}, internal))
        self.assertFalse(is_billable(None, internal))


if __name__ == "__main__":
    unittest.main()
