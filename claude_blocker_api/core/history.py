"""Session history with retention, resume de-duplication and live daily stats."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from ..models import DailyStats, HistoricalSession, HistoryData, Session, TokenBreakdown
from ..storage import DebouncedWriter, read_json_file, write_json_atomic
from .clock import Clock, elapsed_ms, utcnow
from .stats import add_durations, add_usage, date_key, lookup_days

logger = logging.getLogger(__name__)

HISTORY_SCHEMA_VERSION = 1


@dataclass
class RunDelta:
    """Usage and time produced by one live run of a session."""

    tokens: TokenBreakdown = field(default_factory=TokenBreakdown)
    cost_usd: float = 0.0
    model_breakdown: dict[str, TokenBreakdown] = field(default_factory=dict)
    working_ms: int = 0
    waiting_ms: int = 0
    idle_ms: int = 0


class HistoryStore:
    """Bounded list of ended sessions, newest first, at most one entry per id."""

    def __init__(
        self,
        path: Path,
        retention_days: int = 7,
        save_delay_seconds: float = 5.0,
        clock: Clock = utcnow,
    ):
        self.path = path
        self.retention = timedelta(days=retention_days)
        self._clock = clock
        self._data = HistoryData(version=HISTORY_SCHEMA_VERSION)
        self._writer = DebouncedWriter(self._save, save_delay_seconds, name="session history")

    def load(self) -> None:
        """Load history from disk, dropping entries past retention."""
        raw = read_json_file(self.path)
        if raw is None:
            return

        try:
            self._data = HistoryData.model_validate(raw)
        except ValidationError as e:
            logger.error(f"Ignoring unreadable history file {self.path}: {e}")
            return

        self._prune(self._clock())
        logger.info(f"Loaded {len(self._data.history)} historical sessions")

    def find(self, session_id: str) -> HistoricalSession | None:
        for entry in self._data.history:
            if entry.id == session_id:
                return entry.model_copy(deep=True)
        return None

    def get_history(self, limit: int | None = None) -> list[HistoricalSession]:
        entries = self._data.history if limit is None else self._data.history[:limit]
        return [entry.model_copy(deep=True) for entry in entries]

    def upsert(self, session: Session, end_time: datetime) -> HistoricalSession:
        """Record an ended session.

        A resumed session updates its existing entry in place, keeping the
        original start time, and moves it to the front.
        """
        history = self._data.history
        index = next((i for i, h in enumerate(history) if h.id == session.id), None)

        if index is not None:
            entry = history.pop(index)
            old_tokens, old_cost = entry.total_tokens, entry.cost_usd
            entry.copy_usage_from(session)
            entry.initial_cwd = entry.initial_cwd or session.initial_cwd
            entry.cwd = session.cwd
            entry.end_time = end_time
            entry.last_activity = session.last_activity
            entry.last_tool = session.last_tool
            entry.tool_count = session.tool_count
            entry.total_duration_ms = elapsed_ms(entry.start_time, end_time)
            entry.total_working_ms = session.total_working_ms
            entry.total_waiting_ms = session.total_waiting_ms
            entry.total_idle_ms = session.total_idle_ms
            entry.recent_tools = [t.model_copy() for t in session.recent_tools]
            history.insert(0, entry)
            logger.info(
                f"[History] Updated: {session.project_name} (resumed) "
                f"tokens={entry.total_tokens} (was {old_tokens}) "
                f"cost=${entry.cost_usd:.4f} (was ${old_cost:.4f})"
            )
        else:
            entry = HistoricalSession(
                id=session.id,
                project_name=session.project_name,
                initial_cwd=session.initial_cwd,
                cwd=session.cwd,
                start_time=session.start_time,
                end_time=end_time,
                last_activity=session.last_activity,
                last_tool=session.last_tool,
                tool_count=session.tool_count,
                total_duration_ms=elapsed_ms(session.start_time, end_time),
                total_working_ms=session.total_working_ms,
                total_waiting_ms=session.total_waiting_ms,
                total_idle_ms=session.total_idle_ms,
                recent_tools=[t.model_copy() for t in session.recent_tools],
            )
            entry.copy_usage_from(session)
            history.insert(0, entry)
            logger.info(
                f"[History] Added: {session.project_name} "
                f"tokens={entry.total_tokens} cost=${entry.cost_usd:.4f}"
            )

        self._prune(self._clock())
        self._writer.schedule()
        return entry.model_copy(deep=True)

    def record_session_started(self, moment: datetime) -> None:
        self._day(moment).sessions_started += 1
        self._writer.schedule()

    def record_session_ended(self, moment: datetime, delta: RunDelta) -> None:
        day = self._day(moment)
        day.sessions_ended += 1
        add_durations(day, delta.working_ms, delta.waiting_ms, delta.idle_ms)
        add_usage(day, delta.tokens, delta.cost_usd, delta.model_breakdown)
        self._writer.schedule()

    def get_daily_stats(self, keys: list[str]) -> list[DailyStats]:
        return lookup_days(self._data.daily_stats, keys)

    @property
    def save_pending(self) -> bool:
        return self._writer.pending

    def flush(self) -> bool:
        """Write any pending change now. Returns True if nothing is left unsaved."""
        return self._writer.flush()

    def _day(self, moment: datetime) -> DailyStats:
        key = date_key(moment)
        return self._data.daily_stats.setdefault(key, DailyStats(date=key))

    def _prune(self, now: datetime) -> None:
        cutoff = now - self.retention
        self._data.history = [h for h in self._data.history if h.end_time > cutoff]

    def _save(self) -> None:
        self._data.last_saved = self._clock()
        write_json_atomic(self.path, self._data.model_dump(mode="json", by_alias=True))

        total_tokens = sum(h.total_tokens for h in self._data.history)
        total_cost = sum(h.cost_usd for h in self._data.history)
        logger.info(
            f"[Save] {self.path} - {len(self._data.history)} sessions, "
            f"{total_tokens} total tokens, ${total_cost:.4f} total cost"
        )
