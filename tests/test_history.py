"""Tests for history persistence and storage helpers."""

import asyncio
import json
from datetime import timedelta

import pytest

from claude_blocker_api.core.history import HistoryStore, RunDelta
from claude_blocker_api.core.stats import date_key
from claude_blocker_api.models import Session, TokenBreakdown
from claude_blocker_api.storage import DebouncedWriter, read_json_file, write_json_atomic


def make_session(clock, session_id="s1", **fields) -> Session:
    now = clock()
    defaults = {
        "id": session_id,
        "project_name": "alpha",
        "start_time": now,
        "last_activity": now,
        "status_since": now,
    }
    return Session(**{**defaults, **fields})


class TestJsonFiles:
    """Test atomic JSON helpers."""

    def test_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "data.json"
        write_json_atomic(path, {"a": 1})

        assert read_json_file(path) == {"a": 1}
        assert list(path.parent.iterdir()) == [path]

    def test_missing_file(self, tmp_path):
        assert read_json_file(tmp_path / "missing.json") is None

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{oops")
        assert read_json_file(path) is None

    def test_failed_write_keeps_previous_content(self, tmp_path):
        path = tmp_path / "data.json"
        write_json_atomic(path, {"a": 1})

        with pytest.raises(TypeError):
            write_json_atomic(path, {"a": object()})

        assert read_json_file(path) == {"a": 1}
        assert list(tmp_path.iterdir()) == [path]


@pytest.mark.asyncio
class TestDebouncedWriter:
    """Test write coalescing."""

    async def test_rapid_schedules_coalesce(self):
        writes = []
        writer = DebouncedWriter(lambda: writes.append(1), delay_seconds=0.05)

        for _ in range(5):
            writer.schedule()
            await asyncio.sleep(0.01)
        assert writes == []

        await asyncio.sleep(0.15)
        assert writes == [1]
        assert not writer.pending

    async def test_flush_writes_immediately(self):
        writes = []
        writer = DebouncedWriter(lambda: writes.append(1), delay_seconds=60)
        writer.schedule()

        assert writer.flush() is True
        assert writes == [1]
        await asyncio.sleep(0)
        assert writes == [1]

    async def test_flush_without_changes_is_noop(self):
        writes = []
        writer = DebouncedWriter(lambda: writes.append(1), delay_seconds=60)
        assert writer.flush() is True
        assert writes == []

    async def test_failed_write_stays_pending(self):
        attempts = []

        def failing_write():
            attempts.append(1)
            raise OSError("disk full")

        writer = DebouncedWriter(failing_write, delay_seconds=60)
        writer.schedule()

        assert writer.flush() is False
        assert writer.pending
        assert len(attempts) == 1


class TestDebouncedWriterWithoutLoop:
    """Test writes outside an event loop."""

    def test_schedule_writes_now(self):
        writes = []
        writer = DebouncedWriter(lambda: writes.append(1), delay_seconds=60)
        writer.schedule()
        assert writes == [1]
        assert not writer.pending


class TestHistoryStore:
    """Test the session history store."""

    def test_upsert_prepends_new_sessions(self, history, clock):
        history.upsert(make_session(clock, "s1"), clock())
        history.upsert(make_session(clock, "s2"), clock())

        assert [h.id for h in history.get_history()] == ["s2", "s1"]
        assert [h.id for h in history.get_history(limit=1)] == ["s2"]

    def test_upsert_updates_in_place(self, history, clock):
        start = clock()
        history.upsert(make_session(clock, "s1", total_tokens=100), clock.advance(minutes=1))
        history.upsert(make_session(clock, "s2"), clock.advance(minutes=1))

        resumed = make_session(clock, "s1", start_time=start, total_tokens=250, tool_count=9)
        entry = history.upsert(resumed, clock.advance(minutes=1))

        entries = history.get_history()
        assert [h.id for h in entries] == ["s1", "s2"]
        assert entry.start_time == start
        assert entry.total_tokens == 250
        assert entry.tool_count == 9
        assert entry.total_duration_ms == 3 * 60 * 1000

    def test_find_returns_copy(self, history, clock):
        history.upsert(make_session(clock, "s1", total_tokens=10), clock())

        found = history.find("s1")
        found.total_tokens = 999

        assert history.find("s1").total_tokens == 10
        assert history.find("nope") is None

    def test_load_prunes_past_retention(self, tmp_path, clock):
        path = tmp_path / "sessions.json"
        writer = HistoryStore(path, clock=clock)
        writer.upsert(make_session(clock, "old"), clock())
        writer.upsert(make_session(clock, "recent"), clock() + timedelta(days=6))
        writer.flush()

        clock.advance(days=8)
        reader = HistoryStore(path, clock=clock)
        reader.load()

        assert [h.id for h in reader.get_history()] == ["recent"]

    def test_load_ignores_invalid_file(self, tmp_path, clock):
        path = tmp_path / "sessions.json"
        path.write_text(json.dumps({"version": 1, "history": [{"id": 5}]}))

        store = HistoryStore(path, clock=clock)
        store.load()

        assert store.get_history() == []

    def test_daily_counters(self, history, clock):
        history.record_session_started(clock())
        history.record_session_ended(
            clock(),
            RunDelta(
                tokens=TokenBreakdown(input_tokens=10, output_tokens=5),
                cost_usd=0.5,
                model_breakdown={"m": TokenBreakdown(input_tokens=10)},
                working_ms=1000,
            ),
        )

        [day] = history.get_daily_stats([date_key(clock())])
        assert day.sessions_started == 1
        assert day.sessions_ended == 1
        assert day.total_input_tokens == 10
        assert day.total_cost_usd == 0.5
        assert day.total_working_ms == 1000
        assert day.model_breakdown["m"].input_tokens == 10

    def test_saved_file_is_camel_case(self, history, clock):
        history.upsert(make_session(clock, "s1"), clock())
        history.flush()

        data = json.loads(history.path.read_text())
        assert data["version"] == 1
        assert "dailyStats" in data
        assert data["history"][0]["projectName"] == "alpha"
        assert data["lastSaved"] is not None
