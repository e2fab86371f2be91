"""Tests for the backfill engine and manager."""

import asyncio
import os
from datetime import timedelta

import pytest
from conftest import FakeClock, assistant_entry, user_entry, write_transcript

from claude_blocker_api.core.backfill import (
    STATS_SCHEMA_VERSION,
    BackfillEngine,
    BackfillManager,
    find_transcript_files,
    migrate_stats_data,
)
from claude_blocker_api.core.errors import BackfillAlreadyRunning
from claude_blocker_api.core.stats import date_key
from claude_blocker_api.models import (
    BackfillStatus,
    DailyStats,
    HistoricalStatsData,
)
from claude_blocker_api.storage import StatsFileStore


@pytest.fixture
def projects_dir(tmp_path):
    return tmp_path / "projects"


@pytest.fixture
def stats_store(tmp_path):
    return StatsFileStore(tmp_path / "historical-stats.json", schema_version=STATS_SCHEMA_VERSION)


@pytest.fixture
def engine(stats_store, projects_dir, resolver, clock):
    return BackfillEngine(
        stats_store,
        projects_dir,
        resolver,
        batch_size=2,
        batch_delay_ms=1,
        clock=clock,
    )


def add_session_transcript(projects_dir, project, name, at, input_tokens=100, output_tokens=10):
    return write_transcript(
        projects_dir / project / f"{name}.jsonl",
        [
            user_entry(at),
            assistant_entry(
                at + timedelta(seconds=30),
                f"{name}-req",
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            ),
        ],
    )


class TestDiscovery:
    """Test transcript discovery."""

    def test_finds_jsonl_directly_in_project_dirs(self, projects_dir):
        (projects_dir / "alpha" / "nested").mkdir(parents=True)
        (projects_dir / "alpha" / "a.jsonl").write_text("")
        (projects_dir / "alpha" / "notes.txt").write_text("")
        (projects_dir / "alpha" / "nested" / "deep.jsonl").write_text("")
        (projects_dir / "beta").mkdir()
        (projects_dir / "beta" / "b.jsonl").write_text("")
        (projects_dir / "stray.jsonl").write_text("")

        found = find_transcript_files(projects_dir)

        assert [p.name for p in found] == ["a.jsonl", "b.jsonl"]

    def test_missing_root(self, tmp_path):
        assert find_transcript_files(tmp_path / "absent") == []


class TestMigration:
    """Test schema migration."""

    def test_old_version_discards_processed_state(self):
        data = HistoricalStatsData(
            version=1,
            daily_stats={"2026-01-01": DailyStats(date="2026-01-01", sessions_started=3)},
            processed_transcripts={"/x.jsonl": True},
        )

        assert migrate_stats_data(data) is True
        assert data.version == STATS_SCHEMA_VERSION
        assert data.daily_stats == {}
        assert data.processed_transcripts == {}

    def test_current_version_is_untouched(self):
        data = HistoricalStatsData(
            version=STATS_SCHEMA_VERSION, processed_transcripts={"/x.jsonl": True}
        )

        assert migrate_stats_data(data) is False
        assert data.processed_transcripts == {"/x.jsonl": True}

    def test_blank_last_backfill_from_older_files(self):
        data = HistoricalStatsData.model_validate({"version": 1, "lastBackfill": ""})
        assert data.last_backfill is None


@pytest.mark.asyncio
class TestBackfillEngine:
    """Test backfill runs."""

    async def test_merges_transcripts_by_day(self, engine, projects_dir, clock):
        day1 = clock()
        day2 = day1 + timedelta(days=1)
        add_session_transcript(projects_dir, "alpha", "s1", day1, input_tokens=100)
        add_session_transcript(projects_dir, "alpha", "s2", day1, input_tokens=50)
        add_session_transcript(projects_dir, "beta", "s3", day2, input_tokens=7)

        data = await engine.run()

        first = data.daily_stats[date_key(day1 + timedelta(seconds=30))]
        assert first.sessions_started == 2
        assert first.sessions_ended == 2
        assert first.total_input_tokens == 150
        assert first.total_output_tokens == 20
        assert first.total_working_ms == 60_000
        assert first.total_cost_usd > 0
        assert "claude-sonnet-4-20250514" in first.model_breakdown

        second = data.daily_stats[date_key(day2 + timedelta(seconds=30))]
        assert second.total_input_tokens == 7
        assert len(data.processed_transcripts) == 3
        assert data.last_backfill == clock()

    async def test_second_run_is_a_no_op(self, engine, projects_dir, stats_store, clock):
        add_session_transcript(projects_dir, "alpha", "s1", clock())
        add_session_transcript(projects_dir, "alpha", "s2", clock())
        add_session_transcript(projects_dir, "beta", "s3", clock())

        first = await engine.run()
        before = {k: v.model_dump() for k, v in first.daily_stats.items()}

        reports = []
        second = await engine.run(lambda p: reports.append(p.model_copy()))

        assert reports[-1].status is BackfillStatus.COMPLETE
        assert reports[-1].processed_files == 0
        assert reports[-1].skipped_files == 3
        assert {k: v.model_dump() for k, v in second.daily_stats.items()} == before
        assert {k: v.model_dump() for k, v in stats_store.load().daily_stats.items()} == before

    async def test_new_transcripts_are_picked_up(self, engine, projects_dir, clock):
        add_session_transcript(projects_dir, "alpha", "s1", clock(), input_tokens=10)
        await engine.run()

        add_session_transcript(projects_dir, "alpha", "s2", clock(), input_tokens=5)
        data = await engine.run()

        day = data.daily_stats[date_key(clock() + timedelta(seconds=30))]
        assert day.total_input_tokens == 15
        assert day.sessions_started == 2

    async def test_empty_transcripts_are_marked_but_not_counted(
        self, engine, projects_dir, clock
    ):
        path = write_transcript(projects_dir / "alpha" / "empty.jsonl", [user_entry(clock())])

        reports = []
        data = await engine.run(lambda p: reports.append(p.model_copy()))

        assert data.processed_transcripts == {str(path): True}
        assert data.daily_stats == {}
        assert reports[-1].processed_files == 0

    async def test_falls_back_to_file_mtime(self, engine, projects_dir, clock):
        entry = assistant_entry(clock(), "req-1", input_tokens=9)
        del entry["timestamp"]
        path = write_transcript(projects_dir / "alpha" / "undated.jsonl", [entry])
        mtime = (clock() - timedelta(days=3)).timestamp()
        os.utime(path, (mtime, mtime))

        data = await engine.run()

        assert date_key(clock() - timedelta(days=3)) in data.daily_stats

    async def test_old_schema_is_reprocessed(self, engine, projects_dir, stats_store, clock):
        path = add_session_transcript(projects_dir, "alpha", "s1", clock(), input_tokens=10)
        stats_store.save(
            HistoricalStatsData(
                version=1,
                daily_stats={"2020-01-01": DailyStats(date="2020-01-01", sessions_started=1)},
                processed_transcripts={str(path): True},
            )
        )

        data = await engine.run()

        assert data.version == STATS_SCHEMA_VERSION
        assert "2020-01-01" not in data.daily_stats
        day = data.daily_stats[date_key(clock() + timedelta(seconds=30))]
        assert day.total_input_tokens == 10

    async def test_progress_reported_per_file(self, engine, projects_dir, clock):
        for i in range(3):
            add_session_transcript(projects_dir, "alpha", f"s{i}", clock())

        reports = []
        await engine.run(lambda p: reports.append(p.model_copy()))

        statuses = [r.status for r in reports]
        assert statuses[0] is BackfillStatus.SCANNING
        assert statuses[-1] is BackfillStatus.COMPLETE
        assert statuses.count(BackfillStatus.PROCESSING) >= 3
        assert reports[-1].total_files == 3
        assert reports[-1].scanned_files == 3
        assert reports[-1].processed_files == 3

    async def test_no_transcripts(self, engine):
        data = await engine.run()
        assert data.daily_stats == {}
        assert data.last_backfill is not None

    async def test_failure_reports_error(self, projects_dir, resolver, clock, tmp_path):
        class FailingStore(StatsFileStore):
            def save(self, data):
                raise OSError("read-only file system")

        add_session_transcript(projects_dir, "alpha", "s1", clock())
        engine = BackfillEngine(
            FailingStore(tmp_path / "stats.json"), projects_dir, resolver, clock=clock
        )

        reports = []
        with pytest.raises(OSError):
            await engine.run(lambda p: reports.append(p.model_copy()))

        assert reports[-1].status is BackfillStatus.ERROR
        assert "read-only" in reports[-1].error

    async def test_needs_backfill_once_per_day(self, engine, clock):
        assert engine.needs_backfill() is True

        await engine.run()
        assert engine.needs_backfill() is False

        clock.advance(days=1)
        assert engine.needs_backfill() is True

    async def test_daily_stats_lookup_fills_missing_days(self, engine, projects_dir, clock):
        add_session_transcript(projects_dir, "alpha", "s1", clock(), input_tokens=10)
        await engine.run()

        key = date_key(clock() + timedelta(seconds=30))
        days = engine.get_daily_stats([key, "1999-01-01"])

        assert days[0].total_input_tokens == 10
        assert days[1] == DailyStats(date="1999-01-01")


@pytest.mark.asyncio
class TestBackfillManager:
    """Test run ownership and triggering."""

    async def test_rejects_concurrent_run(self, stats_store, projects_dir, resolver):
        for i in range(4):
            add_session_transcript(projects_dir, "alpha", f"s{i}", FakeClock().now)
        engine = BackfillEngine(
            stats_store, projects_dir, resolver, batch_size=1, batch_delay_ms=50
        )
        manager = BackfillManager(engine)

        manager.trigger()
        assert manager.is_running

        with pytest.raises(BackfillAlreadyRunning) as exc_info:
            manager.trigger()
        assert exc_info.value.progress.status in (
            BackfillStatus.SCANNING,
            BackfillStatus.PROCESSING,
        )

        await manager.wait()
        assert manager.progress.status is BackfillStatus.COMPLETE
        assert manager.progress.processed_files == 4

        # A finished run can be triggered again
        manager.trigger()
        await manager.wait()
        assert manager.progress.skipped_files == 4

    async def test_maybe_run_daily(self, engine):
        manager = BackfillManager(engine)

        assert manager.maybe_run_daily() is True
        await manager.wait()
        assert manager.maybe_run_daily() is False

    async def test_failed_run_is_visible_in_progress(self, projects_dir, resolver, tmp_path):
        class FailingStore(StatsFileStore):
            def save(self, data):
                raise OSError("disk full")

        add_session_transcript(projects_dir, "alpha", "s1", FakeClock().now)
        manager = BackfillManager(
            BackfillEngine(FailingStore(tmp_path / "stats.json"), projects_dir, resolver)
        )

        manager.trigger()
        await manager.wait()

        assert manager.progress.status is BackfillStatus.ERROR
        assert not manager.is_running

    async def test_shutdown_cancels_schedule(self, engine):
        manager = BackfillManager(engine, check_interval_seconds=3600)
        manager.start_daily_schedule()
        await asyncio.sleep(0)

        await manager.shutdown()

        assert not manager.is_running
        assert manager._schedule_task is None
