# src/kastrace/contracts/fetcher.py
"""The external fetch capability the engines are written against.

KaspaClient implements it over HTTP; tests implement it in memory.
Every method raises a FetchError subclass on failure.
"""

from __future__ import annotations

from typing import Protocol

from kastrace.contracts.cancellation import CancelToken
from kastrace.contracts.enums import PageDirection, ResolvePreviousOutpoints
from kastrace.contracts.transactions import CursorPage, Transaction, TransactionCount


class TransactionFetcher(Protocol):
    """Paged access to an address's transactions."""

    def fetch_page(
        self,
        address: str,
        *,
        limit: int,
        offset: int,
        resolve_previous_outpoints: ResolvePreviousOutpoints = ResolvePreviousOutpoints.NO,
        fields: str | None = None,
        cancel_token: CancelToken | None = None,
    ) -> list[Transaction]:
        """Fetch one offset-addressed page."""
        ...

    def fetch_cursor_page(
        self,
        address: str,
        *,
        limit: int,
        cursor: str | None,
        direction: PageDirection = PageDirection.BEFORE,
        resolve_previous_outpoints: ResolvePreviousOutpoints = ResolvePreviousOutpoints.NO,
        fields: str | None = None,
        cancel_token: CancelToken | None = None,
    ) -> CursorPage:
        """Fetch one cursor-addressed page and the cursor of the next one."""
        ...

    def count_transactions(
        self,
        address: str,
        *,
        cancel_token: CancelToken | None = None,
    ) -> TransactionCount:
        """Lightweight count of an address's transactions."""
        ...
