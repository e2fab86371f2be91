"""Debounced persistence."""

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class DebouncedWriter:
    """Coalesces bursts of mutations into a single write.

    Every `schedule()` call restarts the timer, so the write runs once,
    `delay_seconds` after the most recent mutation. Writes run on the event
    loop thread, so there is never more than one writer for the target file.
    A failed write leaves the writer pending; the next schedule or flush retries it.
    """

    def __init__(self, write: Callable[[], None], delay_seconds: float, name: str = "data"):
        self._write = write
        self._delay = delay_seconds
        self._name = name
        self._handle: asyncio.TimerHandle | None = None
        self._pending = False

    @property
    def pending(self) -> bool:
        """True if a mutation has not been written yet."""
        return self._pending

    def schedule(self) -> None:
        """Mark data dirty and (re)start the write timer."""
        self._pending = True
        self.cancel()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to time against; write now
            self._run_write()
            return

        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        """Cancel the scheduled write without writing."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> bool:
        """Write immediately if a mutation is pending.

        Returns True if nothing is left pending.
        """
        self.cancel()
        if self._pending:
            self._run_write()
        return not self._pending

    def _fire(self) -> None:
        self._handle = None
        self._run_write()

    def _run_write(self) -> None:
        try:
            self._write()
        except Exception as e:
            logger.error(f"Failed to save {self._name}: {e}")
            return
        self._pending = False
