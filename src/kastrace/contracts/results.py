# src/kastrace/contracts/results.py
"""Aggregate results returned by the discovery and history engines.

Both aggregates always carry successes and failures together. Callers
must inspect the failed sets to know whether a result is complete.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from kastrace.contracts.transactions import Transaction


@dataclass(frozen=True)
class DiscoveryResult:
    """Outcome of one address discovery run.

    Attributes:
        depths: Discovered address -> minimal depth at which it was found
        failed: Addresses abandoned after retries were exhausted or canceled
        expanded: Addresses whose transactions were fetched successfully
        canceled: True if the run was stopped by the cancellation token
        retry_rounds: Number of retry-ledger drains performed
    """

    depths: Mapping[str, int]
    failed: frozenset[str]
    expanded: frozenset[str] = field(default_factory=frozenset)
    canceled: bool = False
    retry_rounds: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "depths", MappingProxyType(dict(self.depths)))

    @property
    def discovered(self) -> frozenset[str]:
        return frozenset(self.depths)

    @property
    def discovered_count(self) -> int:
        return len(self.depths)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the public output field names."""
        return {
            "DiscoveredCount": self.discovered_count,
            "DiscoveredAddresses": sorted(self.discovered),
            "FailedCount": self.failed_count,
            "FailedAddresses": sorted(self.failed),
            "Canceled": self.canceled,
        }


@dataclass(frozen=True)
class HistoryResult:
    """Outcome of one paginated history run.

    Attributes:
        transactions: Merged transactions (offset order, or block time for
            the cursor flavor)
        failed_offsets: Offsets abandoned after retries were exhausted
        failed_cursors: Cursors whose page could not be fetched (cursor flavor)
        canceled: True if the run was stopped by the cancellation token
    """

    transactions: tuple[Transaction, ...] = ()
    failed_offsets: frozenset[int] = field(default_factory=frozenset)
    failed_cursors: frozenset[str] = field(default_factory=frozenset)
    canceled: bool = False

    @classmethod
    def empty(cls) -> HistoryResult:
        return cls()

    @property
    def transactions_count(self) -> int:
        return len(self.transactions)

    @property
    def complete(self) -> bool:
        return not (self.failed_offsets or self.failed_cursors or self.canceled)

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the public output field names."""
        data: dict[str, Any] = {
            "TransactionsCount": self.transactions_count,
            "Transactions": [tx.model_dump(mode="json", exclude_none=True) for tx in self.transactions],
            "FailedOffsets": sorted(self.failed_offsets),
            "Canceled": self.canceled,
        }
        if self.failed_cursors:
            data["FailedCursors"] = sorted(self.failed_cursors)
        return data
