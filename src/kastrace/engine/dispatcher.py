# src/kastrace/engine/dispatcher.py
"""Bounded dispatcher for concurrent fetches.

Runs fetches on a thread pool while:
- Never allowing more than concurrency_limit fetches in flight
- Topping up from a pending queue whenever capacity frees up
- Classifying terminal jobs into completed and failed
- Applying AIMD throttle delays before dispatch after capacity errors
- Honouring a shared cancellation token

The dispatcher owns the in-flight set and is driven from a single
controlling thread. Worker threads only run the fetch itself; they never
touch engine state.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Generic, TypeVar

import structlog

from kastrace.contracts import CancelToken, CapacityError, FailureKind, FetchCanceled, FetchError, WorkUnit
from kastrace.engine.clock import DEFAULT_CLOCK, Clock
from kastrace.engine.throttle import AIMDThrottle

logger = structlog.get_logger(__name__)

R = TypeVar("R")


FetchFn = Callable[[WorkUnit, CancelToken], R]


@dataclass(frozen=True, slots=True)
class CompletedJob(Generic[R]):
    """A fetch that returned a result."""

    handle: Future[Any]
    unit: WorkUnit
    result: R


@dataclass(frozen=True, slots=True)
class FailedJob:
    """A fetch that reached a terminal failed state."""

    handle: Future[Any]
    unit: WorkUnit
    error: FetchError
    kind: FailureKind


@dataclass
class PollResult(Generic[R]):
    """Jobs classified by one poll."""

    completed: list[CompletedJob[R]] = field(default_factory=list)
    failed: list[FailedJob] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.completed or self.failed)


def classify_failure(error: FetchError) -> FailureKind:
    """Map a fetch error to its failure kind."""
    if isinstance(error, FetchCanceled):
        return FailureKind.CANCELED
    if not error.retryable:
        return FailureKind.PERMANENT
    return FailureKind.TRANSIENT


class BoundedDispatcher(Generic[R]):
    """Keeps at most concurrency_limit fetches in flight.

    Usage:
        with BoundedDispatcher(fetch, concurrency_limit=4) as dispatcher:
            pending = deque(units)
            while pending or not dispatcher.idle:
                dispatcher.drain_to_capacity(pending, admit=lambda u: True)
                dispatcher.wait()
                result = dispatcher.poll()
                ...
    """

    def __init__(
        self,
        fetch: FetchFn[R],
        *,
        concurrency_limit: int,
        poll_interval: float = 1.0,
        cancel_token: CancelToken | None = None,
        throttle: AIMDThrottle | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        """Initialize dispatcher.

        Args:
            fetch: Function performing one fetch; called on a worker thread
            concurrency_limit: Maximum fetches in flight (>= 1)
            poll_interval: Maximum seconds wait() blocks without a completion
            cancel_token: Shared cancellation token (a private one if None)
            throttle: AIMD throttle fed by capacity errors (a default one if None)
            clock: Clock used for throttle delays
        """
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {poll_interval}")

        self._fetch = fetch
        self._concurrency_limit = concurrency_limit
        self._poll_interval = poll_interval
        self._cancel_token = cancel_token or CancelToken()
        self._throttle = throttle or AIMDThrottle()
        self._clock = clock

        self._pool = ThreadPoolExecutor(max_workers=concurrency_limit, thread_name_prefix="kastrace-fetch")
        self._in_flight: dict[Future[R], WorkUnit] = {}

        self._stats_lock = Lock()
        self._active_workers = 0
        self._peak_concurrency = 0
        self._submitted = 0

    def __enter__(self) -> BoundedDispatcher[R]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown(wait=True)

    @property
    def concurrency_limit(self) -> int:
        return self._concurrency_limit

    @property
    def cancel_token(self) -> CancelToken:
        return self._cancel_token

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def has_capacity(self) -> bool:
        return len(self._in_flight) < self._concurrency_limit

    @property
    def idle(self) -> bool:
        """True when nothing is in flight."""
        return not self._in_flight

    def submit(self, unit: WorkUnit) -> Future[R]:
        """Start an asynchronous fetch for unit.

        Raises:
            RuntimeError: If the in-flight set is full
            FetchCanceled: If the cancellation token is set, including while
                waiting out the throttle delay
        """
        if not self.has_capacity:
            raise RuntimeError(f"Dispatcher at capacity ({self._concurrency_limit} in flight)")
        self._cancel_token.raise_if_canceled()

        delay_ms = self._throttle.current_delay_ms
        if delay_ms > 0:
            self._clock.sleep(delay_ms / 1000)
            self._cancel_token.raise_if_canceled()

        future = self._pool.submit(self._run, unit)
        self._in_flight[future] = unit
        self._submitted += 1
        logger.debug("dispatch", target=unit.target, depth=unit.depth_or_cursor, retry_count=unit.retry_count)
        return future

    def drain_to_capacity(self, pending: deque[WorkUnit], admit: Callable[[WorkUnit], bool]) -> int:
        """Submit pending units until the queue empties or capacity runs out.

        Units rejected by admit are dropped from the queue silently; that is
        an admission decision, not an error. A cancellation that lands while
        a unit waits on the throttle puts the unit back at the head of the
        queue and stops the drain.

        Returns:
            Number of units submitted
        """
        submitted = 0
        while pending and self.has_capacity and not self._cancel_token.is_canceled:
            unit = pending.popleft()
            if not admit(unit):
                continue
            try:
                self.submit(unit)
            except FetchCanceled:
                pending.appendleft(unit)
                break
            submitted += 1
        return submitted

    def poll(self) -> PollResult[R]:
        """Non-blocking scan of the in-flight set for terminal jobs.

        Terminal jobs are removed from the in-flight set as they are
        classified.

        Raises:
            Exception: Any non-FetchError raised by a fetch (programming error)
        """
        result: PollResult[R] = PollResult()
        for future in [f for f in self._in_flight if f.done()]:
            unit = self._in_flight.pop(future)
            if future.cancelled():
                error: FetchError = FetchCanceled("Fetch was canceled before it started.")
                result.failed.append(FailedJob(future, unit, error, FailureKind.CANCELED))
                continue

            exc = future.exception()
            if exc is None:
                result.completed.append(CompletedJob(future, unit, future.result()))
            elif isinstance(exc, FetchError):
                kind = classify_failure(exc)
                logger.info("job_failed", target=unit.target, kind=kind.value, error=str(exc), error_type=type(exc).__name__)
                result.failed.append(FailedJob(future, unit, exc, kind))
            else:
                raise exc
        return result

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a job finishes or the poll interval passes.

        Returns immediately when nothing is in flight.

        Returns:
            True if at least one job is terminal
        """
        if not self._in_flight:
            return False
        done, _ = wait_futures(
            list(self._in_flight),
            timeout=self._poll_interval if timeout is None else timeout,
            return_when=FIRST_COMPLETED,
        )
        return bool(done)

    def wait_all(self) -> PollResult[R]:
        """Block until every in-flight job is terminal, then classify them all."""
        wait_futures(list(self._in_flight))
        return self.poll()

    def cancel_all(self) -> None:
        """Set the cancellation token and cancel fetches that have not started."""
        self._cancel_token.cancel()
        for future in self._in_flight:
            future.cancel()

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait, cancel_futures=True)

    def get_stats(self) -> dict[str, Any]:
        """Dispatch statistics: submitted count, peak concurrency, throttle state."""
        with self._stats_lock:
            peak = self._peak_concurrency
        return {
            "concurrency_limit": self._concurrency_limit,
            "submitted": self._submitted,
            "peak_concurrency": peak,
            "throttle": self._throttle.get_stats(),
        }

    def _run(self, unit: WorkUnit) -> R:
        """Worker body: one fetch with cancellation checks and throttle feedback."""
        with self._stats_lock:
            self._active_workers += 1
            if self._active_workers > self._peak_concurrency:
                self._peak_concurrency = self._active_workers
        try:
            self._cancel_token.raise_if_canceled()
            try:
                result = self._fetch(unit, self._cancel_token)
            except CapacityError:
                self._throttle.on_capacity_error()
                raise
            self._cancel_token.raise_if_canceled()
            self._throttle.on_success()
            return result
        finally:
            with self._stats_lock:
                self._active_workers -= 1
