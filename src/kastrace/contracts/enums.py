# src/kastrace/contracts/enums.py
"""Enumerations shared across the client, engines and CLI."""

from enum import StrEnum


class ResolvePreviousOutpoints(StrEnum):
    """How much previous-outpoint data the API resolves for each input.

    Serialized lower-case on the query string.
    """

    NO = "no"
    LIGHT = "light"
    FULL = "full"


class PageDirection(StrEnum):
    """Direction of cursor pagination relative to the starting timestamp."""

    BEFORE = "before"
    AFTER = "after"

    @property
    def header(self) -> str:
        """Response header carrying the next cursor for this direction."""
        return f"X-Next-Page-{self.value.capitalize()}"


class FailureKind(StrEnum):
    """Classification of a failed job.

    TRANSIENT failures go to the retry ledger. PERMANENT and CANCELED
    failures are abandoned immediately.
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CANCELED = "canceled"


class DiscoveryPhase(StrEnum):
    """States of the address discovery loop."""

    DISPATCHING = "dispatching"
    DRAINING_RETRIES = "draining_retries"
    DONE = "done"
