"""Time source used by the tracker; tests substitute their own."""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Milliseconds from start to end, never negative."""
    return max(0, int((end - start).total_seconds() * 1000))
