# src/kastrace/clients/kaspa.py
"""HTTP client for the Kaspa REST API.

Implements TransactionFetcher over a shared httpx.Client. Every failure is
translated into the FetchError hierarchy at this boundary, so the engines
never see httpx or pydantic exceptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import TypeAdapter, ValidationError

from kastrace.contracts import (
    CancelToken,
    CapacityError,
    ClientRequestError,
    CursorPage,
    MalformedResponseError,
    NetworkError,
    PageDirection,
    ResolvePreviousOutpoints,
    ServerError,
    Transaction,
    TransactionCount,
    is_capacity_error,
)

if TYPE_CHECKING:
    from kastrace.core.config import ApiSettings

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://api.kaspa.org"

_TRANSACTIONS = TypeAdapter(list[Transaction])


class KaspaClient:
    """Thread-safe client for the address transaction endpoints.

    One instance is shared by every worker of an engine run; httpx.Client
    pools connections internally.

    Example:
        with KaspaClient(timeout=10.0) as client:
            count = client.count_transactions("kaspa:qq...")
            page = client.fetch_page("kaspa:qq...", limit=500, offset=0)
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        user_agent: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Root of the REST API
            timeout: Request timeout in seconds (default: 30.0)
            user_agent: Optional User-Agent header value
            transport: Optional httpx transport (tests)
        """
        headers = {"Accept": "application/json"}
        if user_agent:
            headers["User-Agent"] = user_agent
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: ApiSettings) -> KaspaClient:
        return cls(base_url=settings.base_url, timeout=settings.timeout_seconds, user_agent=settings.user_agent)

    def __enter__(self) -> KaspaClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        """Close the underlying httpx client and release connections."""
        self._client.close()

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
        """GET addresses/{address}/full-transactions."""
        params: dict[str, Any] = {
            "limit": limit,
            "offset": offset,
            "resolve_previous_outpoints": resolve_previous_outpoints.value,
        }
        if fields:
            params["fields"] = fields
        response = self._get(f"/addresses/{address}/full-transactions", params, cancel_token)
        return self._parse_transactions(response)

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
        """GET addresses/{address}/full-transactions-page.

        The next cursor comes from the X-Next-Page-Before or
        X-Next-Page-After response header, matching direction.
        """
        params: dict[str, Any] = {
            "limit": limit,
            "resolve_previous_outpoints": resolve_previous_outpoints.value,
        }
        if cursor is not None:
            params[direction.value] = cursor
        if fields:
            params["fields"] = fields
        response = self._get(f"/addresses/{address}/full-transactions-page", params, cancel_token)
        next_cursor = response.headers.get(direction.header) or None
        return CursorPage(transactions=self._parse_transactions(response), next_cursor=next_cursor)

    def count_transactions(self, address: str, *, cancel_token: CancelToken | None = None) -> TransactionCount:
        """GET addresses/{address}/transactions-count."""
        response = self._get(f"/addresses/{address}/transactions-count", {}, cancel_token)
        try:
            return TransactionCount.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise MalformedResponseError(f"Invalid transactions-count response: {e}") from e

    def _get(self, path: str, params: dict[str, Any], cancel_token: CancelToken | None) -> httpx.Response:
        """Issue a GET and map every failure to a FetchError.

        Raises:
            FetchCanceled: If cancel_token is set before or after the request
            CapacityError: 429/503/529
            ServerError: Other 5xx
            ClientRequestError: 4xx
            NetworkError: Transport failure or timeout
        """
        if cancel_token is not None:
            cancel_token.raise_if_canceled()

        try:
            response = self._client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Request to {path} failed: {e}") from e

        if cancel_token is not None:
            cancel_token.raise_if_canceled()

        status = response.status_code
        if status < 400:
            return response

        message = f"HTTP {status} from {path}: {response.text[:200]}"
        if is_capacity_error(status):
            logger.debug("capacity_error", path=path, status_code=status)
            raise CapacityError(status, message)
        if status >= 500:
            raise ServerError(status, message)
        raise ClientRequestError(status, message)

    def _parse_transactions(self, response: httpx.Response) -> list[Transaction]:
        try:
            return _TRANSACTIONS.validate_python(response.json())
        except (ValueError, ValidationError) as e:
            raise MalformedResponseError(f"Invalid transactions response from {response.url.path}: {e}") from e
