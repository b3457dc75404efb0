"""
Clock -- Deterministic time abstraction.

Responsibility:
    Injectable source of "now" for the approval service, the escalation
    sweep and the TTL cache.  Engines never read a clock; they receive
    ``now`` as an argument.

Architecture position:
    Kernel > Domain -- zero I/O except SystemClock, the one sanctioned
    boundary for wall-clock time.

Audit relevance:
    Every submitted_at / decided_at / expires_at value written to an
    approval request traces back to an injected Clock, so escalation
    decisions can be replayed exactly.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Services that need the current time receive a Clock via
        constructor injection and pass the value down to pure engines.

    Guarantees:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock that returns actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value until ``advance()`` or ``set_time()``
    is called, so escalation deadlines can be crossed on demand.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._current = time

    def advance(self, seconds: int = 0, *, hours: int = 0, days: int = 0) -> datetime:
        """Move the clock forward and return the new time."""
        self._current += timedelta(seconds=seconds, hours=hours, days=days)
        return self._current
