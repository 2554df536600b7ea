# src/kastrace/engine/retry.py
"""RetryManager: in-place retry of a single call with tenacity.

The concurrent engines retry through the RetryLedger. The cursor flavor of
the history engine cannot: each page needs the cursor returned by the
previous one, so a failed page must be retried in place before pagination
can continue. This module provides that in-place retry:
- Exponential backoff with jitter
- Configurable max attempts
- Retryable error filtering
- Sleeping through the injectable Clock
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from kastrace.engine.clock import DEFAULT_CLOCK, Clock

if TYPE_CHECKING:
    from kastrace.core.config import KastraceSettings

T = TypeVar("T")


class MaxRetriesExceeded(Exception):
    """Raised when max retry attempts are exceeded."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for in-place retry.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    jitter: float = 1.0  # seconds
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        """Factory for no-retry configuration (single attempt)."""
        return cls(max_attempts=1)

    @classmethod
    def from_failed_tries(cls, max_failed_tries: int, *, base_delay: float = 1.0, max_delay: float = 30.0) -> "RetryConfig":
        """Translate a retry budget (retries after the first try) into total attempts."""
        return cls(max_attempts=max_failed_tries + 1, base_delay=base_delay, max_delay=max_delay)

    @classmethod
    def from_settings(cls, settings: "KastraceSettings") -> "RetryConfig":
        """Factory from validated settings."""
        return cls.from_failed_tries(
            settings.pool.max_failed_tries,
            base_delay=settings.history.retry_base_delay_seconds,
            max_delay=settings.history.retry_max_delay_seconds,
        )


class RetryManager:
    """Executes a call, retrying retryable errors with exponential backoff.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3))

        page = manager.execute_with_retry(
            lambda: client.fetch_cursor_page(address, limit=500, cursor=cursor),
            is_retryable=lambda e: isinstance(e, FetchError) and e.retryable,
            on_retry=lambda attempt, error: log.warning("page_retry", attempt=attempt),
        )
    """

    def __init__(self, config: RetryConfig, *, clock: Clock = DEFAULT_CLOCK) -> None:
        self._config = config
        self._clock = clock

    @property
    def config(self) -> RetryConfig:
        return self._config

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool],
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Execute operation with retry logic.

        Args:
            operation: Operation to execute
            is_retryable: Function to check if error is retryable
            on_retry: Optional callback before each retry (0-based attempt, error)

        Returns:
            Result of operation

        Raises:
            MaxRetriesExceeded: If max attempts exceeded
            Exception: If non-retryable error occurs
        """
        attempt = 0
        last_error: BaseException | None = None

        try:
            for attempt_state in Retrying(
                stop=stop_after_attempt(self._config.max_attempts),
                wait=wait_exponential_jitter(
                    initial=self._config.base_delay,
                    max=self._config.max_delay,
                    exp_base=self._config.exponential_base,
                    jitter=self._config.jitter,
                ),
                retry=retry_if_exception(is_retryable),
                sleep=self._clock.sleep,
                reraise=False,
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return operation()
                    except Exception as e:
                        last_error = e
                        # on_retry only fires when another attempt will follow
                        if is_retryable(e) and on_retry and attempt < self._config.max_attempts:
                            on_retry(attempt - 1, e)
                        raise

        except RetryError as e:
            final_error = last_error or e.last_attempt.exception()
            assert final_error is not None, "RetryError without exception is impossible"
            raise MaxRetriesExceeded(attempt, final_error) from e

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
