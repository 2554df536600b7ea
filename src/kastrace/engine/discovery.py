# src/kastrace/engine/discovery.py
"""Address discovery by walking the transaction graph.

Starting from a seed address, fetch its transactions, collect the input
and output addresses, and fetch theirs, up to max_depth hops away. Fetches
run concurrently under a bounded dispatcher; failures go through a retry
ledger with a shared round counter.

State machine:
    DISPATCHING       queue and/or in-flight work exists
    DRAINING_RETRIES  queue and in-flight both empty, ledger drained once
    DONE              nothing left to do, or retries exhausted

Depth semantics: the seed is depth 0. A unit at depth == max_depth is never
dispatched, so max_depth=1 fetches only the seed and reports its direct
neighbours; max_depth=2 also expands those neighbours and reports their
neighbours at depth 2.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

import structlog

from kastrace.contracts import (
    CancelToken,
    DiscoveryPhase,
    DiscoveryResult,
    FailureKind,
    ResolvePreviousOutpoints,
    Transaction,
    TransactionFetcher,
    WorkUnit,
)
from kastrace.engine.clock import DEFAULT_CLOCK, Clock
from kastrace.engine.dispatcher import BoundedDispatcher, PollResult
from kastrace.engine.ledger import RetryLedger
from kastrace.engine.throttle import AIMDThrottle

if TYPE_CHECKING:
    from kastrace.core.config import KastraceSettings

logger = structlog.get_logger(__name__)


class AddressDiscoveryEngine:
    """Depth-limited, concurrent address graph traversal.

    All run state (discovered depths, visited set, pending queue, retry
    ledger) is owned by the engine and mutated only from the controlling
    loop in run(); fetches running on worker threads only return pages.

    Example:
        engine = AddressDiscoveryEngine(client, max_depth=2, concurrency_limit=8)
        result = engine.run("kaspa:qq...")
        print(result.discovered_count, result.failed_count)
    """

    def __init__(
        self,
        fetcher: TransactionFetcher,
        *,
        max_depth: int,
        concurrency_limit: int = 4,
        max_failed_tries: int = 3,
        skip_inputs: bool = False,
        skip_outputs: bool = False,
        transaction_limit: int = 500,
        resolve_previous_outpoints: ResolvePreviousOutpoints = ResolvePreviousOutpoints.LIGHT,
        fields: str | None = None,
        poll_interval: float = 1.0,
        throttle: AIMDThrottle | None = None,
        clock: Clock = DEFAULT_CLOCK,
    ) -> None:
        """Initialize engine.

        Args:
            fetcher: Transaction fetch capability
            max_depth: Hard depth ceiling (>= 1)
            concurrency_limit: Maximum fetches in flight
            max_failed_tries: Retry rounds before failed addresses are abandoned
            skip_inputs: Ignore input (sender) addresses
            skip_outputs: Ignore output (recipient) addresses
            transaction_limit: Transactions fetched per address
            resolve_previous_outpoints: Input resolution; forced to NO when inputs are skipped
            fields: Optional field selector passed to the API
            poll_interval: Seconds to wait for a completion before re-checking
            throttle: Shared AIMD throttle
            clock: Clock for throttle waits
        """
        if max_depth < 1:
            raise ValueError(f"max_depth must be >= 1, got {max_depth}")
        if max_failed_tries < 0:
            raise ValueError(f"max_failed_tries must be >= 0, got {max_failed_tries}")

        self._fetcher = fetcher
        self._max_depth = max_depth
        self._concurrency_limit = concurrency_limit
        self._max_failed_tries = max_failed_tries
        self._skip_inputs = skip_inputs
        self._skip_outputs = skip_outputs
        self._transaction_limit = transaction_limit
        # Inputs only carry addresses when resolved; skip the resolution cost when unused
        self._resolve = ResolvePreviousOutpoints.NO if skip_inputs else resolve_previous_outpoints
        self._fields = fields
        self._poll_interval = poll_interval
        self._throttle = throttle
        self._clock = clock

        self._seed = ""
        self._phase = DiscoveryPhase.DONE
        self._discovered: dict[str, int] = {}
        self._visited: dict[str, int] = {}
        self._expanded: set[str] = set()
        self._pending: deque[WorkUnit] = deque()
        self._ledger = RetryLedger()
        self._canceled = False

    @classmethod
    def from_settings(cls, fetcher: TransactionFetcher, settings: KastraceSettings, *, clock: Clock = DEFAULT_CLOCK) -> AddressDiscoveryEngine:
        """Build an engine from validated settings."""
        return cls(
            fetcher,
            max_depth=settings.discovery.max_depth,
            concurrency_limit=settings.pool.concurrency_limit,
            max_failed_tries=settings.pool.max_failed_tries,
            skip_inputs=settings.discovery.skip_inputs,
            skip_outputs=settings.discovery.skip_outputs,
            transaction_limit=settings.discovery.transaction_limit,
            resolve_previous_outpoints=settings.discovery.resolve_previous_outpoints,
            fields=settings.discovery.fields,
            poll_interval=settings.pool.poll_interval_seconds,
            throttle=AIMDThrottle(settings.pool.to_throttle_config()),
            clock=clock,
        )

    @property
    def phase(self) -> DiscoveryPhase:
        return self._phase

    @property
    def retry_rounds(self) -> int:
        return self._ledger.retry_count

    def run(self, seed: str, *, cancel_token: CancelToken | None = None) -> DiscoveryResult:
        """Discover addresses reachable from seed.

        Args:
            seed: Address to start from (depth 0, never reported as discovered)
            cancel_token: Optional token; when set, the run stops and returns
                a partial result with canceled=True

        Returns:
            DiscoveryResult with discovered depths and abandoned addresses
        """
        self._reset(seed)
        token = cancel_token or CancelToken()
        log = logger.bind(seed=seed, max_depth=self._max_depth)
        log.info("discovery_started", concurrency_limit=self._concurrency_limit)
        started = self._clock.monotonic()

        dispatcher: BoundedDispatcher[list[Transaction]] = BoundedDispatcher(
            self._fetch,
            concurrency_limit=self._concurrency_limit,
            poll_interval=self._poll_interval,
            cancel_token=token,
            throttle=self._throttle,
            clock=self._clock,
        )
        with dispatcher:
            while self._phase is not DiscoveryPhase.DONE:
                if token.is_canceled or self._canceled:
                    self._stop(dispatcher)
                    break

                dispatcher.drain_to_capacity(self._pending, self._admit)

                if dispatcher.idle and not self._pending:
                    self._drain_retries()
                    continue

                dispatcher.wait()
                self._absorb(dispatcher.poll())

            stats = dispatcher.get_stats()

        result = DiscoveryResult(
            depths=self._discovered,
            failed=frozenset(u.address for u in self._ledger.abandoned) - self._expanded,
            expanded=frozenset(self._expanded),
            canceled=self._canceled,
            retry_rounds=self._ledger.retry_count,
        )
        log.info(
            "run_complete",
            discovered_count=result.discovered_count,
            failed_count=result.failed_count,
            retry_rounds=result.retry_rounds,
            canceled=result.canceled,
            submitted=stats["submitted"],
            peak_concurrency=stats["peak_concurrency"],
            elapsed_seconds=round(self._clock.monotonic() - started, 3),
        )
        return result

    def _reset(self, seed: str) -> None:
        self._seed = seed
        self._phase = DiscoveryPhase.DISPATCHING
        self._discovered = {}
        self._visited = {}
        self._expanded = set()
        self._pending = deque([WorkUnit.for_address(seed, 0)])
        self._ledger = RetryLedger()
        self._canceled = False

    def _fetch(self, unit: WorkUnit, token: CancelToken) -> list[Transaction]:
        return self._fetcher.fetch_page(
            unit.address,
            limit=self._transaction_limit,
            offset=0,
            resolve_previous_outpoints=self._resolve,
            fields=self._fields,
            cancel_token=token,
        )

    def _admit(self, unit: WorkUnit) -> bool:
        """Admission rule applied at dispatch time.

        Skips units at or beyond the depth ceiling, addresses already
        dispatched at an equal or shallower depth, and stale units whose
        address has since been found at a shallower depth.
        """
        if unit.depth >= self._max_depth:
            return False
        address = unit.address
        visited_depth = self._visited.get(address)
        if visited_depth is not None and visited_depth <= unit.depth:
            return False
        if address in self._discovered and self._discovered[address] < unit.depth:
            return False
        self._visited[address] = unit.depth
        return True

    def _absorb(self, polled: PollResult[list[Transaction]]) -> None:
        for job in polled.completed:
            self._expanded.add(job.unit.address)
            self._extract(job.unit, job.result)

        for failed in polled.failed:
            if failed.kind is FailureKind.TRANSIENT:
                self._ledger.record_failure(failed.unit)
            else:
                self._ledger.abandon(failed.unit)
                if failed.kind is FailureKind.CANCELED:
                    self._canceled = True

    def _extract(self, unit: WorkUnit, page: list[Transaction]) -> None:
        """Record addresses found on a page and queue them one level deeper."""
        new_depth = unit.depth + 1
        for tx in page:
            candidates: list[str] = []
            if not self._skip_inputs:
                candidates.extend(tx.input_addresses())
            if not self._skip_outputs:
                candidates.extend(tx.output_addresses())

            for address in candidates:
                if address == self._seed:
                    continue
                known_depth = self._discovered.get(address)
                if known_depth is not None and known_depth <= new_depth:
                    continue
                self._discovered[address] = new_depth
                self._pending.append(WorkUnit.for_address(address, new_depth))

    def _drain_retries(self) -> None:
        """Transition out of an empty DISPATCHING phase."""
        self._phase = DiscoveryPhase.DRAINING_RETRIES
        drain = self._ledger.drain_for_retry(self._max_failed_tries)
        if not drain.should_continue:
            self._phase = DiscoveryPhase.DONE
            return

        logger.info("retry_round", round=self._ledger.retry_count, requeued=len(drain.requeued))
        self._unvisit(drain.requeued)
        self._pending.extend(drain.requeued)
        self._phase = DiscoveryPhase.DISPATCHING

    def _unvisit(self, units: list[WorkUnit]) -> None:
        """Allow requeued addresses past admission again.

        The only place an address leaves the visited set. Gated behind a
        successful ledger drain.
        """
        for unit in units:
            if self._visited.get(unit.address) == unit.depth:
                del self._visited[unit.address]

    def _stop(self, dispatcher: BoundedDispatcher[list[Transaction]]) -> None:
        """Cancel in-flight work and abandon everything still outstanding."""
        self._canceled = True
        dispatcher.cancel_all()
        self._absorb(dispatcher.wait_all())
        self._ledger.abandon_pending()
        self._phase = DiscoveryPhase.DONE
        logger.warning("discovery_canceled", abandoned=len(self._ledger.abandoned), unsent=len(self._pending))
