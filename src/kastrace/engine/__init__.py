"""Kastrace engines: concurrent discovery and paginated history.

This module provides:
- AddressDiscoveryEngine: Depth-limited address graph traversal
- OffsetHistoryEngine: Sharded, wave-based offset pagination
- CursorHistoryEngine: Sequential cursor pagination
- BoundedDispatcher: Thread pool capped at a concurrency limit
- RetryLedger: Failed work with a shared retry-round counter
- RetryManager: In-place retry with tenacity
- AIMDThrottle: Dispatch delay driven by capacity errors

Example:
    from kastrace.clients import KaspaClient
    from kastrace.engine import AddressDiscoveryEngine

    with KaspaClient() as client:
        engine = AddressDiscoveryEngine(client, max_depth=2)
        result = engine.run("kaspa:qq...")
"""

from kastrace.engine.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from kastrace.engine.discovery import AddressDiscoveryEngine
from kastrace.engine.dispatcher import (
    BoundedDispatcher,
    CompletedJob,
    FailedJob,
    PollResult,
    classify_failure,
)
from kastrace.engine.history import CursorHistoryEngine, OffsetHistoryEngine
from kastrace.engine.ledger import RetryDrain, RetryLedger
from kastrace.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from kastrace.engine.throttle import AIMDThrottle, ThrottleConfig

__all__ = [
    "DEFAULT_CLOCK",
    "AIMDThrottle",
    "AddressDiscoveryEngine",
    "BoundedDispatcher",
    "Clock",
    "CompletedJob",
    "CursorHistoryEngine",
    "FailedJob",
    "MaxRetriesExceeded",
    "MockClock",
    "OffsetHistoryEngine",
    "PollResult",
    "RetryConfig",
    "RetryDrain",
    "RetryLedger",
    "RetryManager",
    "SystemClock",
    "ThrottleConfig",
    "classify_failure",
]
