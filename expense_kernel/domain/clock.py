"""
Injectable time source.

Submission, decision, delegation and payment timestamps all come from a
``Clock`` handed to the services; nothing in the workflow calls
``datetime.now()`` itself.  ``SystemClock`` is the only place real time
enters.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock for tests.  ``now()`` is stable until ``tick()`` moves it forward,
    which keeps ordering by timestamp reproducible.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or DEFAULT_TEST_EPOCH

    def now(self) -> datetime:
        return self._current

    def tick(self, seconds: int = 1) -> datetime:
        """Move forward ``seconds`` and return the new time."""
        self._current += timedelta(seconds=seconds)
        return self._current
