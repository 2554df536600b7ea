# src/kastrace/engine/history.py
"""Paginated transaction history for a single address.

Two flavors share one result contract (HistoryResult):

OffsetHistoryEngine
    Shards the history into fixed-size offset pages and fetches them in
    waves of up to concurrency_limit pages. A whole wave settles before
    the next is considered. A page shorter than batch_size ends the main
    pass, and an exact count bounds it. Failed offsets are retried in later
    waves through the RetryLedger.

CursorHistoryEngine
    Follows the next-page cursor header one page at a time. Each request
    depends on the previous response, so there is no concurrency; a failed
    page is retried in place with tenacity backoff.

Both engines wait wave_delay seconds between consecutive waves/pages to
respect upstream rate limits, never before the first one.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

from kastrace.contracts import (
    CancelToken,
    FailureKind,
    FetchCanceled,
    FetchError,
    HistoryResult,
    PageDirection,
    ResolvePreviousOutpoints,
    Transaction,
    TransactionCount,
    TransactionFetcher,
    WorkUnit,
    block_time_key,
)
from kastrace.core.timeutil import now_ms
from kastrace.engine.clock import DEFAULT_CLOCK, Clock
from kastrace.engine.dispatcher import BoundedDispatcher, PollResult
from kastrace.engine.ledger import RetryLedger
from kastrace.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from kastrace.engine.throttle import AIMDThrottle

if TYPE_CHECKING:
    from kastrace.core.config import KastraceSettings

logger = structlog.get_logger(__name__)

BATCH_SIZE = 500


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, FetchError) and error.retryable


class OffsetHistoryEngine:
    """Sharded, wave-based offset pagination.

    Example:
        engine = OffsetHistoryEngine(client, concurrency_limit=4)
        result = engine.run("kaspa:qq...")
        if result.failed_offsets:
            print("incomplete:", sorted(result.failed_offsets))
    """

    def __init__(
        self,
        fetcher: TransactionFetcher,
        *,
        concurrency_limit: int = 4,
        batch_size: int = BATCH_SIZE,
        max_failed_tries: int = 3,
        wave_delay: float = 1.0,
        single_wave_threshold: int = 5000,
        resolve_previous_outpoints: ResolvePreviousOutpoints = ResolvePreviousOutpoints.NO,
        fields: str | None = None,
        throttle: AIMDThrottle | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        """Initialize engine.

        Args:
            fetcher: Transaction fetch capability
            concurrency_limit: Pages per wave when the history is large
            batch_size: Transactions per page
            max_failed_tries: Retry rounds per retry pass
            wave_delay: Seconds between consecutive waves
            single_wave_threshold: Below this many transactions, size the wave
                to cover the whole history at once
            resolve_previous_outpoints: Input resolution requested from the API
            fields: Optional field selector passed to the API
            throttle: Shared AIMD throttle
            clock: Clock for delays
        """
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if max_failed_tries < 0:
            raise ValueError(f"max_failed_tries must be >= 0, got {max_failed_tries}")

        self._fetcher = fetcher
        self._concurrency_limit = concurrency_limit
        self._batch_size = batch_size
        self._max_failed_tries = max_failed_tries
        self._wave_delay = wave_delay
        self._single_wave_threshold = single_wave_threshold
        self._resolve = resolve_previous_outpoints
        self._fields = fields
        self._throttle = throttle
        self._clock = clock
        self._count_retry = RetryManager(RetryConfig.from_failed_tries(max_failed_tries), clock=clock)

        self._address = ""
        self._pages: dict[int, list[Transaction]] = {}
        self._ledger = RetryLedger()
        self._next_page = 0
        self._waves = 0
        self._total = 0
        self._bound: int | None = None
        self._end_seen = False
        self._tail_lost = False
        self._canceled = False

    @classmethod
    def from_settings(cls, fetcher: TransactionFetcher, settings: KastraceSettings, *, clock: Clock = DEFAULT_CLOCK) -> OffsetHistoryEngine:
        """Build an engine from validated settings."""
        return cls(
            fetcher,
            concurrency_limit=settings.pool.concurrency_limit,
            batch_size=settings.history.batch_size,
            max_failed_tries=settings.pool.max_failed_tries,
            wave_delay=settings.history.wave_delay_seconds,
            single_wave_threshold=settings.history.single_wave_threshold,
            resolve_previous_outpoints=settings.history.resolve_previous_outpoints,
            fields=settings.history.fields,
            throttle=AIMDThrottle(settings.pool.to_throttle_config()),
            clock=clock,
        )

    @property
    def waves_dispatched(self) -> int:
        return self._waves

    def plan_concurrency(self, count: TransactionCount) -> int:
        """Pages per wave for a history of the given size.

        Small histories are fetched in a single wave of exactly
        ceil(total / batch_size) pages. The count endpoint caps its answer
        when limit_exceeded is set, so such counts never qualify.
        """
        if not count.limit_exceeded and count.total < self._single_wave_threshold:
            return max(1, math.ceil(count.total / self._batch_size))
        return self._concurrency_limit

    def run(self, address: str, *, cancel_token: CancelToken | None = None) -> HistoryResult:
        """Fetch the full history of address.

        When the count is exact, the main pass covers offsets up to the
        count and keeps going past failed waves. When the count is capped
        (limit_exceeded), a wave that fails entirely stalls the main pass
        until the retry pass recovers it. If it cannot be recovered, the
        unfetched tail up to the count is reported in failed_offsets.

        Raises:
            MaxRetriesExceeded: If the transaction count cannot be fetched
            FetchError: If the count fails with a non-retryable error
        """
        self._reset(address)
        token = cancel_token or CancelToken()
        log = logger.bind(address=address)
        started = self._clock.monotonic()

        try:
            count = self._count_retry.execute_with_retry(
                lambda: self._fetcher.count_transactions(address, cancel_token=token),
                is_retryable=_is_retryable,
            )
        except FetchCanceled:
            log.info("run_complete", transactions_count=0, canceled=True, reason="canceled_during_count")
            return HistoryResult(canceled=True)
        if count.total == 0:
            log.info("run_complete", transactions_count=0, reason="no_transactions")
            return HistoryResult.empty()

        self._total = count.total
        self._bound = None if count.limit_exceeded else count.total
        concurrency = self.plan_concurrency(count)
        log.info("history_started", total=count.total, limit_exceeded=count.limit_exceeded, concurrency=concurrency)

        dispatcher: BoundedDispatcher[list[Transaction]] = BoundedDispatcher(
            self._fetch,
            concurrency_limit=concurrency,
            cancel_token=token,
            throttle=self._throttle,
            clock=self._clock,
        )
        with dispatcher:
            while True:
                stalled = self._main_pass(dispatcher, concurrency)
                self._retry_pass(dispatcher, concurrency)
                if stalled is None or self._canceled or self._end_seen:
                    break
                if any(u.offset not in self._pages for u in stalled):
                    self._tail_lost = True
                    log.warning("tail_unreachable", next_offset=self._next_offset)
                    break
                log.info("main_pass_resumed", next_offset=self._next_offset)

        result = self._merge()
        log.info(
            "run_complete",
            transactions_count=result.transactions_count,
            failed_offsets=sorted(result.failed_offsets),
            waves=self._waves,
            canceled=result.canceled,
            elapsed_seconds=round(self._clock.monotonic() - started, 3),
        )
        return result

    def _reset(self, address: str) -> None:
        self._address = address
        self._pages = {}
        self._ledger = RetryLedger()
        self._next_page = 0
        self._waves = 0
        self._total = 0
        self._bound = None
        self._end_seen = False
        self._tail_lost = False
        self._canceled = False

    @property
    def _next_offset(self) -> int:
        return self._next_page * self._batch_size

    def _fetch(self, unit: WorkUnit, token: CancelToken) -> list[Transaction]:
        return self._fetcher.fetch_page(
            self._address,
            limit=self._batch_size,
            offset=unit.offset,
            resolve_previous_outpoints=self._resolve,
            fields=self._fields,
            cancel_token=token,
        )

    def _main_pass(self, dispatcher: BoundedDispatcher[list[Transaction]], concurrency: int) -> list[WorkUnit] | None:
        """Dispatch consecutive waves until end-of-data or the count is covered.

        The offset equal to an exact count is still dispatched: a full last
        page only ends the history once an empty page follows it.

        Returns:
            The stalled wave if an entire wave failed and the count gives no
            upper bound, otherwise None
        """
        while not self._end_seen and not self._canceled:
            units = [
                WorkUnit.for_offset(offset)
                for offset in range(self._next_offset, self._next_offset + concurrency * self._batch_size, self._batch_size)
                if self._bound is None or offset <= self._bound
            ]
            if not units:
                logger.debug("count_covered", total=self._bound)
                return None
            self._next_page += len(units)
            polled = self._run_wave(dispatcher, units)
            if polled is None:
                return None
            if not polled.completed and self._bound is None:
                logger.warning("wave_stalled", offsets=[u.offset for u in units])
                return units
        return None

    def _retry_pass(self, dispatcher: BoundedDispatcher[list[Transaction]], concurrency: int) -> None:
        """Re-dispatch failed offsets in waves until the ledger empties or the budget runs out."""
        self._ledger.reset_counter()
        while not self._canceled:
            drain = self._ledger.drain_for_retry(self._max_failed_tries)
            if not drain.should_continue:
                return
            logger.info("retry_round", round=self._ledger.retry_count, offsets=[u.offset for u in drain.requeued])
            for start in range(0, len(drain.requeued), concurrency):
                if self._run_wave(dispatcher, drain.requeued[start : start + concurrency]) is None:
                    for unit in drain.requeued[start + concurrency :]:
                        self._ledger.abandon(unit)
                    return

    def _run_wave(self, dispatcher: BoundedDispatcher[list[Transaction]], units: list[WorkUnit]) -> PollResult[list[Transaction]] | None:
        """Dispatch one wave and wait for all of it to settle.

        Returns:
            The settled wave, or None if the run was canceled first
        """
        if dispatcher.cancel_token.is_canceled:
            self._cancel(units)
            return None
        if self._waves > 0:
            self._clock.sleep(self._wave_delay)
        if dispatcher.cancel_token.is_canceled:
            self._cancel(units)
            return None

        self._waves += 1
        for index, unit in enumerate(units):
            try:
                dispatcher.submit(unit)
            except FetchCanceled:
                logger.info("wave_canceled", wave=self._waves, submitted=index)
                dispatcher.cancel_all()
                self._absorb(dispatcher.wait_all())
                self._cancel(units[index:])
                return None
        polled = dispatcher.wait_all()
        self._absorb(polled)
        logger.debug(
            "wave_complete",
            wave=self._waves,
            completed=len(polled.completed),
            failed=len(polled.failed),
            end_seen=self._end_seen,
        )
        if self._canceled:
            self._cancel()
        return polled

    def _absorb(self, polled: PollResult[list[Transaction]]) -> None:
        for job in polled.completed:
            self._pages[job.unit.offset] = job.result
            if len(job.result) < self._batch_size:
                if not self._end_seen:
                    logger.info("end_of_data", offset=job.unit.offset, page_size=len(job.result))
                self._end_seen = True

        for failed in polled.failed:
            if failed.kind is FailureKind.TRANSIENT:
                self._ledger.record_failure(failed.unit)
            else:
                self._ledger.abandon(failed.unit)
                if failed.kind is FailureKind.CANCELED:
                    self._canceled = True

    def _cancel(self, unsent: Sequence[WorkUnit] = ()) -> None:
        """Stop the run. Offsets of the current wave that were never sent count as failed."""
        self._canceled = True
        for unit in unsent:
            self._ledger.abandon(unit)
        self._ledger.abandon_pending()

    def _merge(self) -> HistoryResult:
        transactions = [tx for offset in sorted(self._pages) for tx in self._pages[offset]]
        failed = frozenset(u.offset for u in self._ledger.abandoned) - self._pages.keys()
        if self._tail_lost:
            # at least the first undispatched page, even past a capped count
            tail_end = max(self._total, self._next_offset + 1)
            failed |= frozenset(range(self._next_offset, tail_end, self._batch_size))
        return HistoryResult(
            transactions=tuple(transactions),
            failed_offsets=frozenset(failed),
            canceled=self._canceled,
        )


class CursorHistoryEngine:
    """Sequential cursor pagination over the full-transactions-page endpoint.

    Example:
        engine = CursorHistoryEngine(client, direction=PageDirection.BEFORE)
        result = engine.run("kaspa:qq...")
        for tx in result.transactions:  # oldest first
            ...
    """

    def __init__(
        self,
        fetcher: TransactionFetcher,
        *,
        limit: int = BATCH_SIZE,
        direction: PageDirection = PageDirection.BEFORE,
        page_delay: float = 1.0,
        retry_config: RetryConfig | None = None,
        resolve_previous_outpoints: ResolvePreviousOutpoints = ResolvePreviousOutpoints.NO,
        fields: str | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        """Initialize engine.

        Args:
            fetcher: Transaction fetch capability
            limit: Transactions per page
            direction: Walk backwards (before) or forwards (after) in time
            page_delay: Seconds between consecutive pages
            retry_config: In-place retry of a failing page (no retry if None)
            resolve_previous_outpoints: Input resolution requested from the API
            fields: Optional field selector passed to the API
            clock: Clock for delays and retry backoff
        """
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")

        self._fetcher = fetcher
        self._limit = limit
        self._direction = direction
        self._page_delay = page_delay
        self._retry = RetryManager(retry_config or RetryConfig.no_retry(), clock=clock)
        self._resolve = resolve_previous_outpoints
        self._fields = fields
        self._clock = clock
        self._pages_fetched = 0

    @classmethod
    def from_settings(
        cls,
        fetcher: TransactionFetcher,
        settings: KastraceSettings,
        *,
        direction: PageDirection | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ) -> CursorHistoryEngine:
        """Build an engine from validated settings."""
        return cls(
            fetcher,
            limit=settings.history.batch_size,
            direction=direction or settings.history.direction,
            page_delay=settings.history.wave_delay_seconds,
            retry_config=RetryConfig.from_settings(settings),
            resolve_previous_outpoints=settings.history.resolve_previous_outpoints,
            fields=settings.history.fields,
            clock=clock,
        )

    @property
    def pages_fetched(self) -> int:
        return self._pages_fetched

    def initial_cursor(self) -> str:
        """Default starting point: now when walking back, the epoch when walking forward."""
        return str(now_ms()) if self._direction is PageDirection.BEFORE else "0"

    def run(
        self,
        address: str,
        *,
        start: str | int | None = None,
        cancel_token: CancelToken | None = None,
    ) -> HistoryResult:
        """Walk the cursor chain for address.

        Pagination stops when the next cursor is absent, repeats the cursor
        just used, or a page comes back shorter than the limit.

        Args:
            address: Address whose history to fetch
            start: Starting cursor (unix ms); see initial_cursor() for the default
            cancel_token: Optional cancellation token

        Returns:
            HistoryResult sorted by block time ascending. A page that cannot be
            fetched ends pagination and is reported in failed_cursors.
        """
        token = cancel_token or CancelToken()
        cursor: str | None = str(start) if start is not None else self.initial_cursor()
        log = logger.bind(address=address, direction=self._direction.value)
        self._pages_fetched = 0

        transactions: list[Transaction] = []
        failed_cursors: set[str] = set()
        canceled = False

        while cursor is not None:
            if self._pages_fetched > 0:
                self._clock.sleep(self._page_delay)
            if token.is_canceled:
                canceled = True
                break

            try:
                page = self._retry.execute_with_retry(
                    lambda c=cursor: self._fetcher.fetch_cursor_page(  # type: ignore[misc]
                        address,
                        limit=self._limit,
                        cursor=c,
                        direction=self._direction,
                        resolve_previous_outpoints=self._resolve,
                        fields=self._fields,
                        cancel_token=token,
                    ),
                    is_retryable=_is_retryable,
                    on_retry=lambda attempt, error: log.warning("page_retry", cursor=cursor, attempt=attempt, error=str(error)),
                )
            except FetchCanceled:
                canceled = True
                break
            except MaxRetriesExceeded as e:
                log.warning("page_failed", cursor=cursor, attempts=e.attempts, error=str(e.last_error))
                failed_cursors.add(cursor)
                break
            except FetchError as e:
                log.warning("page_failed", cursor=cursor, attempts=1, error=str(e))
                failed_cursors.add(cursor)
                break

            self._pages_fetched += 1
            transactions.extend(page.transactions)
            cursor = self._next_cursor(cursor, page.next_cursor, len(page.transactions))

        transactions.sort(key=block_time_key)
        log.info(
            "run_complete",
            transactions_count=len(transactions),
            pages=self._pages_fetched,
            failed_cursors=sorted(failed_cursors),
            canceled=canceled,
        )
        return HistoryResult(
            transactions=tuple(transactions),
            failed_cursors=frozenset(failed_cursors),
            canceled=canceled,
        )

    def _next_cursor(self, used: str, next_cursor: str | None, page_size: int) -> str | None:
        """Cursor for the following page, or None at end of data."""
        if next_cursor is None:
            logger.debug("end_of_data", reason="no_cursor")
            return None
        if next_cursor == used:
            logger.debug("end_of_data", reason="cursor_repeated", cursor=used)
            return None
        if page_size < self._limit:
            logger.debug("end_of_data", reason="short_page", page_size=page_size)
            return None
        return next_cursor
