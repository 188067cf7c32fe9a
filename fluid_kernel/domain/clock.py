"""
Clock -- where ``performed_at`` comes from.

Responsibility:
    Operators stamp every movement with time from an injected Clock; callers
    never supply ``performed_at`` and no ledger code calls ``datetime.now()``
    directly.

Architecture position:
    Kernel > Domain -- pure, except SystemClock, the one place that reads
    wall-clock time.

Invariants enforced:
    - Every clock returns timezone-aware UTC datetimes.
    - MonotonicClock issues strictly increasing values even when its source
      repeats an instant or steps backwards.  It keeps one service's
      timestamps in step with its own entries; ledger order itself comes
      from the sequence counter, not from any clock.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware."""


class SystemClock(Clock):
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Hand-driven clock for tests and replays.

    Time stands still until ``advance``, ``tick`` or ``set_time`` moves it.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = _require_aware(fixed_time or DEFAULT_TEST_EPOCH)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = _require_aware(time)

    def advance(self, seconds: float | timedelta = 1) -> None:
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        self._current += step

    def tick(self) -> datetime:
        """Advance one second and return the new time."""
        self.advance(1)
        return self._current


class MonotonicClock(Clock):
    """
    Strictly increasing view over another clock.

    A source value not after the last issued one is replaced by the last
    issued value plus ``RESOLUTION`` (the smallest step a datetime holds).
    """

    RESOLUTION = timedelta(microseconds=1)

    def __init__(self, source: Clock | None = None):
        self._source = source or SystemClock()
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            issued = self._source.now()
            if self._last is not None and issued <= self._last:
                issued = self._last + self.RESOLUTION
            self._last = issued
            return issued

    @property
    def last_issued(self) -> datetime | None:
        return self._last


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("clock times must be timezone-aware")
    return value
