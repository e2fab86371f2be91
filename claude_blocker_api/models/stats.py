"""Statistics and backfill data models."""

from datetime import datetime
from enum import Enum

from pydantic import Field, field_validator

from .session import CamelModel, HistoricalSession, TokenBreakdown


class DailyStats(CamelModel):
    """Additive per-day accumulator."""

    date: str
    total_working_ms: int = 0
    total_waiting_ms: int = 0
    total_idle_ms: int = 0
    sessions_started: int = 0
    sessions_ended: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_creation_tokens: int = 0
    total_cache_read_tokens: int = 0
    total_cost_usd: float = 0.0
    model_breakdown: dict[str, TokenBreakdown] = Field(default_factory=dict)


class HistoricalStatsData(CamelModel):
    """Root structure of the historical stats file."""

    version: int = 1
    last_backfill: datetime | None = None
    daily_stats: dict[str, DailyStats] = Field(default_factory=dict)
    # Transcript paths already merged; a path listed here is never parsed again
    processed_transcripts: dict[str, bool] = Field(default_factory=dict)

    @field_validator("last_backfill", mode="before")
    @classmethod
    def _blank_as_none(cls, value):
        # Older files store an empty string before the first completed run
        return value or None


class HistoryData(CamelModel):
    """Root structure of the session history file."""

    version: int = 1
    history: list[HistoricalSession] = Field(default_factory=list)
    daily_stats: dict[str, DailyStats] = Field(default_factory=dict)
    last_saved: datetime | None = None


class BackfillStatus(str, Enum):
    """Backfill run status."""

    IDLE = "idle"
    SCANNING = "scanning"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class BackfillProgress(CamelModel):
    """Progress of the current or last backfill run."""

    status: BackfillStatus = BackfillStatus.IDLE
    total_files: int = 0
    scanned_files: int = 0
    processed_files: int = 0
    skipped_files: int = 0
    current_file: str | None = None
    error: str | None = None


class StatsSource(str, Enum):
    """Where daily stats are read from."""

    BACKFILL = "backfill"
    LIVE = "live"
    COMBINED = "combined"
