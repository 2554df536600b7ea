# src/kastrace/engine/throttle.py
"""AIMD (Additive Increase, Multiplicative Decrease) dispatch throttle.

The public Kaspa API answers bursts with HTTP 429. When that happens the
dispatcher slows down before issuing the next fetch:
- On capacity error: multiply delay (fast ramp down)
- On success: subtract fixed amount (slow ramp up)
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock


@dataclass(frozen=True)
class ThrottleConfig:
    """Configuration for AIMD throttle behavior.

    Built from validated PoolSettings, not from user YAML directly.

    Attributes:
        min_dispatch_delay_ms: Floor for delay between dispatches (default: 0)
        max_dispatch_delay_ms: Ceiling for delay (default: 5000)
        backoff_multiplier: Multiply delay on capacity error (default: 2.0)
        recovery_step_ms: Subtract from delay on success (default: 50)
    """

    min_dispatch_delay_ms: int = 0
    max_dispatch_delay_ms: int = 5000
    backoff_multiplier: float = 2.0
    recovery_step_ms: int = 50


class AIMDThrottle:
    """Thread-safe AIMD throttle state machine.

    Worker threads report outcomes; the dispatching thread reads the delay.

    Usage:
        throttle = AIMDThrottle()

        # Before dispatching a fetch
        clock.sleep(throttle.current_delay_ms / 1000)

        # After the fetch completes
        if isinstance(error, CapacityError):
            throttle.on_capacity_error()
        else:
            throttle.on_success()
    """

    def __init__(self, config: ThrottleConfig | None = None) -> None:
        self._config = config or ThrottleConfig()
        self._current_delay_ms: float = 0.0
        self._lock = Lock()

        self._capacity_errors = 0
        self._successes = 0
        self._peak_delay_ms: float = 0.0

    @property
    def config(self) -> ThrottleConfig:
        return self._config

    @property
    def current_delay_ms(self) -> float:
        """Current delay in milliseconds (thread-safe)."""
        with self._lock:
            return self._current_delay_ms

    def on_capacity_error(self) -> None:
        """Record a capacity error - multiply delay (thread-safe).

        A zero delay bootstraps to max(recovery_step_ms, min_dispatch_delay_ms)
        so the configured minimum is honoured. Capped at max_dispatch_delay_ms.
        """
        with self._lock:
            if self._current_delay_ms == 0:
                self._current_delay_ms = float(max(self._config.recovery_step_ms, self._config.min_dispatch_delay_ms))
            else:
                self._current_delay_ms *= self._config.backoff_multiplier

            if self._current_delay_ms > self._config.max_dispatch_delay_ms:
                self._current_delay_ms = float(self._config.max_dispatch_delay_ms)

            self._capacity_errors += 1
            if self._current_delay_ms > self._peak_delay_ms:
                self._peak_delay_ms = self._current_delay_ms

    def on_success(self) -> None:
        """Record a successful fetch - subtract recovery step, floored at min (thread-safe)."""
        with self._lock:
            self._current_delay_ms -= self._config.recovery_step_ms
            if self._current_delay_ms < self._config.min_dispatch_delay_ms:
                self._current_delay_ms = float(self._config.min_dispatch_delay_ms)
            self._successes += 1

    def get_stats(self) -> dict[str, float | int]:
        """Snapshot of throttle counters (thread-safe)."""
        with self._lock:
            return {
                "capacity_errors": self._capacity_errors,
                "successes": self._successes,
                "peak_delay_ms": self._peak_delay_ms,
                "current_delay_ms": self._current_delay_ms,
            }
