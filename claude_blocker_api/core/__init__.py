"""Core business logic for session tracking, pricing and statistics."""

from .backfill import (
    STATS_SCHEMA_VERSION,
    BackfillEngine,
    BackfillManager,
    find_transcript_files,
    get_backfill_manager,
    migrate_stats_data,
)
from .errors import BackfillAlreadyRunning, InvalidDateError, TrackerError
from .history import HistoryStore, RunDelta
from .pricing import PriceResolver, get_price_resolver
from .session_store import SessionStore, get_session_store, init_session_store
from .transcript import TranscriptSummary, parse_transcript

__all__ = [
    "SessionStore",
    "HistoryStore",
    "RunDelta",
    "PriceResolver",
    "BackfillEngine",
    "BackfillManager",
    "TranscriptSummary",
    "TrackerError",
    "InvalidDateError",
    "BackfillAlreadyRunning",
    "STATS_SCHEMA_VERSION",
    "find_transcript_files",
    "migrate_stats_data",
    "parse_transcript",
    "get_price_resolver",
    "get_session_store",
    "init_session_store",
    "get_backfill_manager",
]
