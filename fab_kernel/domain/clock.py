"""
Clock -- injectable source of "now" for the stock ledger.

Batch ``received_at`` drives FIFO/LIFO ordering and the date segment of
batch and transaction ids, so services take a Clock in their constructor
instead of calling ``datetime.now()``.  ``SystemClock`` is the only place
the wall clock is read.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

_DEFAULT_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def now_utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``now()`` is stable between calls; ``advance()`` moves it forward.  The
    clock never runs backwards, because receipts stamped out of order would
    silently reorder FIFO consumption.
    """

    def __init__(self, start: datetime | None = None):
        start = start or _DEFAULT_START
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start time")
        self._current = start

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        """Move forward by ``seconds`` (or a timedelta) and return the new time."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards")
        self._current += step
        return self._current
