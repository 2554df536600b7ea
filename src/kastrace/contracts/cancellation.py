# src/kastrace/contracts/cancellation.py
"""Cooperative cancellation shared by the engines and the HTTP client."""

from __future__ import annotations

import threading

from kastrace.contracts.errors import FetchCanceled


class CancelToken:
    """Cancellation signal shared by an engine run and all of its fetches.

    Setting the token stops new dispatches, cancels queued fetches and
    makes running fetches report FetchCanceled when they next check it.
    The CLI sets it on Ctrl-C.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_canceled(self) -> bool:
        return self._event.is_set()

    def raise_if_canceled(self) -> None:
        """Raise FetchCanceled if the token is set."""
        if self._event.is_set():
            raise FetchCanceled()
