"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock interface so that services never call
    ``datetime.now()`` directly, plus a request-scoped deadline built on a
    monotonic time source.

Architecture position:
    Kernel > Domain -- pure functional core (SystemClock and the default
    monotonic source are the sanctioned I/O boundary for time).

Failure modes:
    - RequestDeadline.check() raises MutationTimeoutError once expired.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable

from program_kernel.exceptions import MutationTimeoutError


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        All services that need current time receive a Clock instance via
        constructor injection.

    Guarantees:
        - ``now()`` returns a timezone-aware ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def now_utc(self) -> datetime:
        """Get the current UTC time."""
        return self.now().astimezone(timezone.utc)


class SystemClock(Clock):
    """Production clock that returns actual system time (UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until ``advance()``
          or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        """Advance the clock by the specified seconds."""
        self._advance_seconds += seconds


class RequestDeadline:
    """
    Deadline for one request-scoped unit of work.

    Contract:
        Created at the handler boundary; ``check(stage)`` is called between
        storage steps.  An expired deadline is a fatal error, never a
        business rejection.
    """

    def __init__(
        self,
        timeout_seconds: float,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.timeout_seconds = timeout_seconds
        self._monotonic = monotonic
        self._expires_at = monotonic() + timeout_seconds

    @property
    def remaining_seconds(self) -> float:
        return max(0.0, self._expires_at - self._monotonic())

    @property
    def remaining_ms(self) -> int:
        return int(self.remaining_seconds * 1000)

    def check(self, stage: str) -> None:
        """Raise MutationTimeoutError if the deadline has passed."""
        if self._monotonic() >= self._expires_at:
            raise MutationTimeoutError(stage, self.timeout_seconds)
