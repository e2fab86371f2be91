"""Backfill of daily statistics from transcripts on disk."""

import asyncio
import logging
from collections.abc import Callable, Collection
from datetime import UTC, datetime
from pathlib import Path

from ..config import settings
from ..models import BackfillProgress, BackfillStatus, DailyStats, HistoricalStatsData
from ..storage import StatsFileStore
from .clock import Clock, utcnow
from .errors import BackfillAlreadyRunning
from .pricing import PriceResolver, get_price_resolver
from .stats import add_durations, add_usage, date_key, lookup_days
from .transcript import TranscriptSummary, parse_transcript

logger = logging.getLogger(__name__)

# Version 2 added time reconstruction; older state is re-processed from scratch
STATS_SCHEMA_VERSION = 2

ProgressCallback = Callable[[BackfillProgress], None]


def find_transcript_files(projects_dir: Path) -> list[Path]:
    """Every transcript directly inside each project directory, sorted by path."""
    transcripts: list[Path] = []
    if not projects_dir.is_dir():
        return transcripts

    try:
        project_dirs = sorted(p for p in projects_dir.iterdir() if p.is_dir())
    except OSError as e:
        logger.error(f"[Backfill] Error scanning projects directory: {e}")
        return transcripts

    for project_dir in project_dirs:
        try:
            transcripts.extend(sorted(p for p in project_dir.glob("*.jsonl") if p.is_file()))
        except OSError as e:
            logger.warning(f"[Backfill] Skipping unreadable project {project_dir.name}: {e}")

    return transcripts


def migrate_stats_data(data: HistoricalStatsData) -> bool:
    """Bring persisted stats up to the current schema.

    Returns True if the data was migrated. Migration discards all processed
    state so every transcript is parsed again with the current algorithm.
    """
    if data.version >= STATS_SCHEMA_VERSION:
        return False

    logger.info(
        f"[Backfill] Upgrading stats from v{data.version} to v{STATS_SCHEMA_VERSION} "
        "(time reconstruction), re-processing all transcripts"
    )
    data.processed_transcripts = {}
    data.daily_stats = {}
    data.version = STATS_SCHEMA_VERSION
    return True


def resolve_date_key(summary: TranscriptSummary, path: Path) -> str | None:
    """Day bucket for a transcript: its last event, else the file's mtime."""
    if summary.last_timestamp is not None:
        return date_key(summary.last_timestamp)
    try:
        mtime = path.stat().st_mtime
    except OSError:
        return None
    return date_key(datetime.fromtimestamp(mtime, tz=UTC))


def merge_transcript_into_daily_stats(
    data: HistoricalStatsData, key: str, summary: TranscriptSummary
) -> DailyStats:
    """Add one transcript's totals into a day. Each transcript counts as one started and ended session."""
    day = data.daily_stats.setdefault(key, DailyStats(date=key))
    day.sessions_started += 1
    day.sessions_ended += 1
    add_durations(day, summary.total_working_ms, summary.total_waiting_ms, summary.total_idle_ms)
    add_usage(day, summary.token_breakdown(), summary.cost_usd, summary.model_breakdown)
    return day


class BackfillEngine:
    """Reconstructs daily stats from every transcript under the projects root.

    A transcript path is parsed at most once per schema version, so runs are
    resumable and idempotent.
    """

    def __init__(
        self,
        store: StatsFileStore,
        projects_dir: Path,
        pricing: PriceResolver | None = None,
        *,
        batch_size: int = 10,
        batch_delay_ms: int = 100,
        user_input_tools: Collection[str] | None = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.projects_dir = projects_dir
        self.pricing = pricing or get_price_resolver()
        self.batch_size = max(1, batch_size)
        self.batch_delay_seconds = batch_delay_ms / 1000
        self.user_input_tools = user_input_tools
        self._clock = clock
        self._data: HistoricalStatsData | None = None

    @property
    def data(self) -> HistoricalStatsData:
        if self._data is None:
            self._data = self.store.load()
        return self._data

    def needs_backfill(self) -> bool:
        """True unless a run already completed today (local calendar)."""
        last = self.data.last_backfill
        if last is None:
            return True
        return date_key(last) != date_key(self._clock())

    def get_daily_stats(self, keys: list[str]) -> list[DailyStats]:
        return lookup_days(self.data.daily_stats, keys)

    async def run(self, on_progress: ProgressCallback | None = None) -> HistoricalStatsData:
        """Process every unprocessed transcript, saving after each batch.

        Raises whatever aborted the run after reporting an error status.
        """
        progress = BackfillProgress(status=BackfillStatus.SCANNING)
        notify = on_progress or (lambda _: None)
        notify(progress)

        try:
            logger.info("[Backfill] Scanning for transcripts...")
            transcripts = await asyncio.to_thread(find_transcript_files, self.projects_dir)
            progress.total_files = len(transcripts)
            logger.info(f"[Backfill] Found {len(transcripts)} transcript files")

            data = await asyncio.to_thread(self.store.load)
            migrate_stats_data(data)
            self._data = data

            progress.status = BackfillStatus.PROCESSING
            notify(progress)

            new_files = 0
            tokens_found = 0
            cost_found = 0.0

            for start in range(0, len(transcripts), self.batch_size):
                batch = transcripts[start : start + self.batch_size]

                for path in batch:
                    progress.scanned_files += 1
                    progress.current_file = path.name
                    key = str(path)

                    if data.processed_transcripts.get(key):
                        progress.skipped_files += 1
                        notify(progress)
                        continue

                    summary = await asyncio.to_thread(
                        parse_transcript, path, self.pricing, self.user_input_tools
                    )
                    if summary is None or summary.total_tokens == 0:
                        # Empty transcripts are marked too, so they are not re-read
                        data.processed_transcripts[key] = True
                        notify(progress)
                        continue

                    day_key = await asyncio.to_thread(resolve_date_key, summary, path)
                    if day_key is None:
                        logger.warning(f"[Backfill] Cannot date {path.name}, will retry")
                        notify(progress)
                        continue

                    merge_transcript_into_daily_stats(data, day_key, summary)
                    data.processed_transcripts[key] = True
                    progress.processed_files += 1
                    new_files += 1
                    tokens_found += summary.total_tokens
                    cost_found += summary.cost_usd
                    notify(progress)

                await asyncio.to_thread(self.store.save, data)

                if start + self.batch_size < len(transcripts):
                    await asyncio.sleep(self.batch_delay_seconds)

            data.last_backfill = self._clock()
            await asyncio.to_thread(self.store.save, data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            progress.status = BackfillStatus.ERROR
            progress.error = str(e)
            notify(progress)
            logger.error(f"[Backfill] Failed: {e}", exc_info=True)
            raise

        progress.status = BackfillStatus.COMPLETE
        progress.current_file = None
        notify(progress)
        logger.info(
            f"[Backfill] Complete: processed {new_files} new files, {tokens_found} tokens, "
            f"${cost_found:.4f} total cost"
        )
        return data


class BackfillManager:
    """Owns the single in-flight backfill run and the daily trigger."""

    def __init__(self, engine: BackfillEngine, check_interval_seconds: float = 3600):
        self.engine = engine
        self.check_interval_seconds = check_interval_seconds
        self._progress = BackfillProgress()
        self._task: asyncio.Task | None = None
        self._schedule_task: asyncio.Task | None = None

    @property
    def progress(self) -> BackfillProgress:
        return self._progress.model_copy()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> BackfillProgress:
        """Start a run in the background.

        Raises BackfillAlreadyRunning if a run is in progress.
        """
        if self.is_running:
            raise BackfillAlreadyRunning(self.progress)

        self._progress = BackfillProgress(status=BackfillStatus.SCANNING)
        self._task = asyncio.create_task(self._run())
        return self.progress

    def maybe_run_daily(self) -> bool:
        """Trigger a run if none has completed today. Returns True if one started."""
        if self.is_running or not self.engine.needs_backfill():
            return False
        logger.info("[Backfill] Starting daily backfill")
        self.trigger()
        return True

    def start_daily_schedule(self) -> None:
        """Check immediately, then once per check interval."""
        if self._schedule_task is None or self._schedule_task.done():
            self._schedule_task = asyncio.create_task(self._daily_loop())

    async def wait(self) -> None:
        """Wait for the current run, if any, to finish."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def shutdown(self) -> None:
        for task in (self._schedule_task, self._task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._schedule_task = None
        self._task = None

    def _on_progress(self, progress: BackfillProgress) -> None:
        self._progress = progress.model_copy()

    async def _run(self) -> None:
        try:
            await self.engine.run(self._on_progress)
        except asyncio.CancelledError:
            raise
        except Exception:
            # Already logged and reported through progress
            pass

    async def _daily_loop(self) -> None:
        while True:
            try:
                self.maybe_run_daily()
            except Exception as e:
                logger.error(f"[Backfill] Daily check failed: {e}")
            await asyncio.sleep(self.check_interval_seconds)


# Global manager instance
_manager: BackfillManager | None = None


def get_backfill_manager() -> BackfillManager:
    """Get the backfill manager (dependency injection).

    Created lazily from settings.
    """
    global _manager
    if _manager is None:
        engine = BackfillEngine(
            StatsFileStore(settings.stats_file, schema_version=STATS_SCHEMA_VERSION),
            settings.projects_dir,
            get_price_resolver(),
            batch_size=settings.backfill_batch_size,
            batch_delay_ms=settings.backfill_batch_delay_ms,
            user_input_tools=settings.get_user_input_tools(),
        )
        _manager = BackfillManager(engine, settings.backfill_check_interval_seconds)
    return _manager
