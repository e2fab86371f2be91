"""Domain exceptions."""

from ..models import BackfillProgress


class TrackerError(Exception):
    """Base class for session tracking errors."""


class InvalidDateError(TrackerError, ValueError):
    """A date key is not a valid YYYY-MM-DD date or a range is malformed."""


class BackfillAlreadyRunning(TrackerError):
    """A backfill run is already in progress."""

    def __init__(self, progress: BackfillProgress):
        super().__init__("Backfill already running")
        self.progress = progress
