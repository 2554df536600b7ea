"""Shared contracts for data crossing the client/engine/CLI boundaries.

This package is a leaf module: it imports nothing from core, clients or
engine. Settings classes live in kastrace.core.config.
"""

from kastrace.contracts.cancellation import CancelToken
from kastrace.contracts.enums import DiscoveryPhase, FailureKind, PageDirection, ResolvePreviousOutpoints
from kastrace.contracts.errors import (
    CAPACITY_ERROR_CODES,
    CapacityError,
    ClientRequestError,
    FetchCanceled,
    FetchError,
    MalformedResponseError,
    NetworkError,
    ServerError,
    is_capacity_error,
)
from kastrace.contracts.fetcher import TransactionFetcher
from kastrace.contracts.results import DiscoveryResult, HistoryResult
from kastrace.contracts.transactions import (
    CursorPage,
    Transaction,
    TransactionCount,
    TransactionInput,
    TransactionOutput,
    block_time_key,
)
from kastrace.contracts.work import WorkUnit

__all__ = [
    "CAPACITY_ERROR_CODES",
    "CancelToken",
    "CapacityError",
    "ClientRequestError",
    "CursorPage",
    "DiscoveryPhase",
    "DiscoveryResult",
    "FailureKind",
    "FetchCanceled",
    "FetchError",
    "HistoryResult",
    "MalformedResponseError",
    "NetworkError",
    "PageDirection",
    "ResolvePreviousOutpoints",
    "ServerError",
    "Transaction",
    "TransactionFetcher",
    "TransactionCount",
    "TransactionInput",
    "TransactionOutput",
    "WorkUnit",
    "block_time_key",
    "is_capacity_error",
]
