import asyncio
import json
import tempfile
import unittest
from pathlib import Path

from session_collector.db.errors import StoreSchemaError
from session_collector.db.scheduler import SyncScheduler


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEngine:
    def __init__(self, files=None, fail_first: int = 0, list_error: Exception | None = None):
        self.files = list(files or [])
        self.fail_first = fail_first
        self.list_error = list_error
        self.sync_error: Exception | None = None
        self.sync_calls: list[tuple[list[Path], str]] = []
        self.usage_calls = 0

    def list_session_files(self) -> list[Path]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.files)

    async def sync_session_files(self, paths, trigger="watcher"):
        paths = list(paths)
        self.sync_calls.append((paths, trigger))
        if self.sync_error is not None:
            raise self.sync_error
        if self.fail_first > 0:
            self.fail_first -= 1
            return {"failed_paths": paths}
        return {"failed_paths": []}

    async def collect_usage(self, trigger="periodic"):
        self.usage_calls += 1
        return {"events": 0}

    async def list_operations(self, limit=20):
        return [{"id": "OP-1", "kind": "summary_sync"}]


class SyncSchedulerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.state_file = Path(self._tmp.name) / "state.json"
        self.clock = FakeClock()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _scheduler(self, engine, **overrides) -> SyncScheduler:
        options = {
            "debounce_seconds": 5,
            "full_sync_interval": 3600,
            "usage_interval": 3600,
            "backoff_seconds": 10,
            "backoff_max_seconds": 60,
            "state_file": self.state_file,
            "clock": self.clock,
        }
        options.update(overrides)
        return SyncScheduler(engine, **options)

    async def test_burst_of_notifications_is_flushed_once(self) -> None:
        engine = FakeEngine()
        scheduler = self._scheduler(engine)
        await scheduler.tick()

        await scheduler.tick(Path("a.jsonl"))
        self.clock.advance(1)
        await scheduler.tick(Path("b.jsonl"))
        self.clock.advance(1)
        await scheduler.tick(Path("a.jsonl"))
        self.clock.advance(4)
        await scheduler.tick()
        self.assertEqual(engine.sync_calls, [])

        self.clock.advance(1)
        await scheduler.tick()

        self.assertEqual(engine.sync_calls, [([Path("a.jsonl"), Path("b.jsonl")], "watcher")])
        self.assertEqual(scheduler.dirty, set())

    async def test_failed_files_are_requeued_after_backoff(self) -> None:
        engine = FakeEngine(fail_first=1)
        scheduler = self._scheduler(engine)
        await scheduler.tick()

        await scheduler.tick(Path("a.jsonl"))
        self.clock.advance(5)
        await scheduler.tick()
        self.assertEqual(scheduler.dirty, {Path("a.jsonl")})
        self.assertEqual(scheduler.consecutive_failures, 1)

        # A change during backoff does not pull the retry forward.
        self.clock.advance(1)
        await scheduler.tick(Path("b.jsonl"))
        self.clock.advance(8)
        await scheduler.tick()
        self.assertEqual(len(engine.sync_calls), 1)

        self.clock.advance(1)
        await scheduler.tick()

        self.assertEqual(engine.sync_calls[1], ([Path("a.jsonl"), Path("b.jsonl")], "watcher"))
        self.assertEqual(scheduler.consecutive_failures, 0)
        self.assertEqual(scheduler.dirty, set())

    async def test_backoff_grows_and_is_capped(self) -> None:
        scheduler = self._scheduler(FakeEngine(), backoff_seconds=5, backoff_max_seconds=30)
        delays = []
        for failures in range(1, 6):
            scheduler.consecutive_failures = failures
            delays.append(scheduler._backoff_delay())
        self.assertEqual(delays, [5, 10, 20, 30, 30])

    async def test_stop_flushes_pending_changes(self) -> None:
        engine = FakeEngine()
        scheduler = self._scheduler(engine, debounce_seconds=60)

        scheduler.notify(Path("a.jsonl"))
        scheduler.request_stop()
        await asyncio.wait_for(scheduler.run(), timeout=5)

        self.assertEqual(engine.sync_calls, [([Path("a.jsonl")], "shutdown")])

    async def test_periodic_full_sync_marks_every_transcript_dirty(self) -> None:
        engine = FakeEngine(files=[Path("y.jsonl"), Path("x.jsonl")])
        scheduler = self._scheduler(engine, full_sync_interval=100)

        await scheduler.tick()
        self.clock.advance(99)
        await scheduler.tick()
        self.assertEqual(len(engine.sync_calls), 1)
        self.clock.advance(1)
        await scheduler.tick()

        self.assertEqual(
            engine.sync_calls,
            [([Path("x.jsonl"), Path("y.jsonl")], "full"), ([Path("x.jsonl"), Path("y.jsonl")], "full")],
        )

    async def test_usage_collection_runs_on_its_own_timer(self) -> None:
        engine = FakeEngine()
        scheduler = self._scheduler(engine, usage_interval=100)

        await scheduler.tick()
        self.clock.advance(50)
        await scheduler.tick()
        self.assertEqual(engine.usage_calls, 1)
        self.clock.advance(50)
        await scheduler.tick()

        self.assertEqual(engine.usage_calls, 2)

    async def test_zero_usage_interval_disables_collection(self) -> None:
        engine = FakeEngine()
        scheduler = self._scheduler(engine, usage_interval=0)

        await scheduler.tick()
        self.clock.advance(10_000)
        await scheduler.tick()

        self.assertEqual(engine.usage_calls, 0)

    async def test_unreadable_directory_does_not_stop_the_loop(self) -> None:
        engine = FakeEngine(list_error=PermissionError("permission denied"))
        scheduler = self._scheduler(engine, full_sync_interval=100)

        await scheduler.tick()
        self.assertEqual(engine.sync_calls, [])

        await scheduler.tick(Path("a.jsonl"))
        self.clock.advance(5)
        await scheduler.tick()
        self.assertEqual(engine.sync_calls, [([Path("a.jsonl")], "watcher")])

        engine.list_error = None
        engine.files = [Path("b.jsonl")]
        self.clock.advance(95)
        await scheduler.tick()
        self.assertEqual(engine.sync_calls[-1], ([Path("b.jsonl")], "full"))

    async def test_missing_table_requeues_with_backoff(self) -> None:
        engine = FakeEngine()
        engine.sync_error = StoreSchemaError("relation sessions_log does not exist")
        scheduler = self._scheduler(engine)
        await scheduler.tick()

        await scheduler.tick(Path("a.jsonl"))
        self.clock.advance(5)
        await scheduler.tick()

        self.assertEqual(scheduler.dirty, {Path("a.jsonl")})
        self.assertEqual(scheduler.consecutive_failures, 1)

    async def test_state_file_mirrors_scheduler_state(self) -> None:
        engine = FakeEngine(files=[Path("x.jsonl")])
        scheduler = self._scheduler(engine)

        scheduler.request_stop()
        await asyncio.wait_for(scheduler.run(), timeout=5)

        state = json.loads(self.state_file.read_text(encoding="utf-8"))
        self.assertEqual(state["dirtyCount"], 0)
        self.assertEqual(state["consecutiveFailures"], 0)
        self.assertIsNotNone(state["lastSyncAt"])
        self.assertIsNotNone(state["lastFullSyncAt"])
        self.assertIsNotNone(state["lastUsageRunAt"])
        self.assertEqual(state["recentOperations"][0]["id"], "OP-1")


if __name__ == "__main__":
    unittest.main()
