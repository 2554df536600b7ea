# src/kastrace/contracts/errors.py
"""Fetch error hierarchy.

Every failure the external fetch capability can report derives from
FetchError. Engines classify anything in this hierarchy as a failed job
and route it to the retry ledger; anything outside it is a programming
error and propagates.

HTTP Status Codes treated as capacity errors:
- 429: Too Many Requests
- 503: Service Unavailable
- 529: Overloaded (some proxies in front of the public API)
"""

from __future__ import annotations

CAPACITY_ERROR_CODES: frozenset[int] = frozenset({429, 503, 529})


def is_capacity_error(status_code: int) -> bool:
    """Check if HTTP status code indicates a capacity error.

    Args:
        status_code: HTTP status code

    Returns:
        True if this is a capacity error, False otherwise
    """
    return status_code in CAPACITY_ERROR_CODES


class FetchError(Exception):
    """Base error from the fetch capability.

    Attributes:
        retryable: Whether the error is likely transient
    """

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class NetworkError(FetchError):
    """Transport failure: timeout, connection refused, DNS failure."""


class ServerError(FetchError):
    """Server-side (5xx) failure that is not a capacity signal."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message, retryable=True)
        self.status_code = status_code


class CapacityError(FetchError):
    """Rate limit or overload response.

    Triggers the dispatch throttle in addition to the normal retry path.
    """

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message, retryable=True)
        self.status_code = status_code


class ClientRequestError(FetchError):
    """4xx response. Retrying the same request will not help."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message, retryable=False)
        self.status_code = status_code


class MalformedResponseError(FetchError):
    """Response body could not be parsed into the expected schema.

    The engines cannot tell this apart from a network failure, so it is
    retryable like any other transient error.
    """


class FetchCanceled(FetchError):
    """The caller's cancellation token was set.

    Flows through the failed-job path but is never retried.
    """

    def __init__(self, message: str = "Fetch was canceled.") -> None:
        super().__init__(message, retryable=False)
