# src/kastrace/engine/clock.py
"""Clock abstraction for testable waiting.

The engines wait between waves, between cursor pages and while polling
for capacity. Routing every wait through a Clock lets tests run those
loops without sleeping for real.

Production code uses SystemClock (the default).
Tests inject MockClock to control and observe time.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Abstract clock for waits and elapsed-time measurement.

    Implementations:
    - SystemClock: Uses time.monotonic() and time.sleep() (production)
    - MockClock: Advances virtual time on sleep (testing)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block for the given number of seconds."""
        ...


class SystemClock:
    """Production clock backed by the time module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class MockClock:
    """Controllable clock for deterministic testing.

    sleep() returns immediately, advances virtual time and records the
    requested duration.

    Example:
        clock = MockClock()
        engine = OffsetHistoryEngine(fetcher, clock=clock, ...)
        engine.run(address)
        assert clock.sleeps == [1.0]  # one delay between two waves
    """

    def __init__(self, start: float = 0.0) -> None:
        """Initialize mock clock at a given time.

        Args:
            start: Initial monotonic time value (default 0.0).
        """
        self._current = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._current

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._current += max(seconds, 0.0)


DEFAULT_CLOCK: Clock = SystemClock()
