# src/kastrace/engine/ledger.py
"""Retry ledger: failed work waiting for another round.

The ledger keeps ONE retry counter for the whole ledger, not one per unit.
Each drain that requeues work increments it once, no matter how many
units are requeued. A unit that first fails late in a run can therefore
get fewer retries than max_tries; the counter tracks rounds, not units.

Once the counter reaches max_tries, the next drain returns nothing and
whatever is left in the ledger is permanently abandoned.
"""

from __future__ import annotations

from dataclasses import dataclass

from kastrace.contracts import WorkUnit


@dataclass(frozen=True, slots=True)
class RetryDrain:
    """Outcome of one drain attempt.

    Attributes:
        requeued: Units to dispatch again, in ledger order
        should_continue: False when nothing was requeued and the run should end
    """

    requeued: list[WorkUnit]
    should_continue: bool


class RetryLedger:
    """FIFO of failed work units plus a shared retry counter."""

    def __init__(self) -> None:
        self._entries: list[WorkUnit] = []
        self._abandoned: list[WorkUnit] = []
        self._retry_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def retry_count(self) -> int:
        """Number of drains that requeued work."""
        return self._retry_count

    @property
    def pending(self) -> list[WorkUnit]:
        return list(self._entries)

    @property
    def abandoned(self) -> list[WorkUnit]:
        """Units that will never be retried again."""
        return list(self._abandoned)

    def record_failure(self, unit: WorkUnit) -> None:
        self._entries.append(unit)

    def abandon(self, unit: WorkUnit) -> None:
        """Record a unit as failed without ever retrying it.

        Used for cancellations and non-retryable errors.
        """
        self._abandoned.append(unit)

    def abandon_pending(self) -> None:
        """Abandon every pending entry without another round."""
        self._abandoned.extend(self._entries)
        self._entries.clear()

    def drain_for_retry(self, max_tries: int) -> RetryDrain:
        """Requeue every entry if the shared counter allows another round.

        Args:
            max_tries: Maximum number of retry rounds

        Returns:
            RetryDrain with the requeued units, or an empty drain with
            should_continue=False (remaining entries become abandoned).
        """
        if not self._entries:
            return RetryDrain(requeued=[], should_continue=False)

        if self._retry_count >= max_tries:
            self.abandon_pending()
            return RetryDrain(requeued=[], should_continue=False)

        self._retry_count += 1
        requeued = [unit.requeued() for unit in self._entries]
        self._entries.clear()
        return RetryDrain(requeued=requeued, should_continue=True)

    def reset_counter(self) -> None:
        """Start a fresh retry budget for the entries currently pending.

        The history engine keeps one counter per offset set: each retry pass
        starts from zero. Abandoned units stay abandoned.
        """
        self._retry_count = 0
