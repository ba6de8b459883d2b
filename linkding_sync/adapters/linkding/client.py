"""Linkding API client."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from linkding_sync.adapters.linkding.models import (
    AssetMeta,
    AssetPage,
    BookmarkPage,
    MarkReadRequest,
    RemoteBookmark,
)
from linkding_sync.core.time_utils import to_iso

if TYPE_CHECKING:
    from typing import Self

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

ASSET_INDEX_PAGE_SIZE = 100


class LinkdingClientError(Exception):
    """Base exception for Linkding client errors."""


class LinkdingAPIError(LinkdingClientError):
    """Non-2xx response from the server."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)


class LinkdingMalformedResponseError(LinkdingClientError):
    """Response body that does not match the expected schema."""


def _parse_retry_after(value: str | None) -> float | None:
    """Seconds to wait from a ``Retry-After`` header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


class LinkdingClient:
    """Async HTTP client for the Linkding REST API.

    The client performs no retries. Every failure surfaces to the caller so the
    sync engine's retry policy decides what happens next:
    - ``LinkdingAPIError`` for non-2xx responses
    - ``LinkdingMalformedResponseError`` for bodies that fail validation
    - ``httpx.TimeoutException`` / ``httpx.TransportError`` for network failures
    """

    DEFAULT_TIMEOUTS: dict[str, float] = {
        "list_bookmarks": 30.0,
        "list_asset_index": 30.0,
        "download_asset": 30.0,
        "mark_read": 15.0,
        "health_check": 10.0,
    }

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        *,
        asset_timeout: float | None = None,
        endpoint_timeouts: dict[str, float] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Linkding client.

        Args:
            base_url: Server root (e.g., https://links.example.com)
            token: REST API token from the Linkding settings page
            timeout: Default request timeout in seconds
            asset_timeout: Timeout for asset downloads (overrides the default)
            endpoint_timeouts: Custom per-endpoint timeouts (overrides defaults)
            transport: Custom transport, used by tests
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.endpoint_timeouts = {**self.DEFAULT_TIMEOUTS}
        if asset_timeout is not None:
            self.endpoint_timeouts["download_asset"] = asset_timeout
        if endpoint_timeouts:
            self.endpoint_timeouts.update(endpoint_timeouts)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def get_timeout(self, endpoint: str) -> float:
        return self.endpoint_timeouts.get(endpoint, self.timeout)

    async def __aenter__(self) -> Self:
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Token {self.token}",
                "Accept": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise LinkdingClientError("Client not initialized. Use async context manager.")
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        response = await self.client.request(
            method, path, params=params, json=json, timeout=self.get_timeout(endpoint)
        )
        if response.is_success:
            return response

        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
        logger.warning(
            "linkding_http_error",
            extra={
                "endpoint": endpoint,
                "status_code": response.status_code,
                "retry_after": retry_after,
            },
        )
        raise LinkdingAPIError(
            f"{endpoint} failed with HTTP {response.status_code}",
            status_code=response.status_code,
            retry_after=retry_after,
        )

    @staticmethod
    def _parse(model: type[ModelT], response: httpx.Response, endpoint: str) -> ModelT:
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            msg = f"{endpoint} returned an unexpected payload: {exc}"
            raise LinkdingMalformedResponseError(msg) from exc

    async def _list_bookmarks(
        self,
        path: str,
        *,
        limit: int,
        offset: int,
        modified_since: datetime | None,
    ) -> BookmarkPage:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if modified_since is not None:
            params["modified_since"] = to_iso(modified_since)
        response = await self._request("GET", path, endpoint="list_bookmarks", params=params)
        return self._parse(BookmarkPage, response, "list_bookmarks")

    async def list_unarchived(
        self,
        limit: int,
        offset: int,
        modified_since: datetime | None = None,
    ) -> BookmarkPage:
        """Get one page of unarchived bookmarks.

        Args:
            limit: Page size
            offset: Number of records to skip
            modified_since: Only bookmarks modified after this instant

        Returns:
            The page, with ``next`` set when more records follow
        """
        return await self._list_bookmarks(
            "/api/bookmarks/",
            limit=limit,
            offset=offset,
            modified_since=modified_since,
        )

    async def list_archived(
        self,
        limit: int,
        offset: int,
        modified_since: datetime | None = None,
    ) -> BookmarkPage:
        return await self._list_bookmarks(
            "/api/bookmarks/archived/",
            limit=limit,
            offset=offset,
            modified_since=modified_since,
        )

    async def list_asset_index(self, bookmark_id: int) -> list[AssetMeta]:
        """Get every asset entry of a bookmark, following the listing's pagination."""
        assets: list[AssetMeta] = []
        offset = 0
        while True:
            response = await self._request(
                "GET",
                f"/api/bookmarks/{bookmark_id}/assets/",
                endpoint="list_asset_index",
                params={"limit": ASSET_INDEX_PAGE_SIZE, "offset": offset},
            )
            page = self._parse(AssetPage, response, "list_asset_index")
            assets.extend(page.results)
            if page.next is None or not page.results:
                break
            offset += len(page.results)
        return assets

    async def download_asset(self, bookmark_id: int, asset_id: int) -> bytes:
        response = await self._request(
            "GET",
            f"/api/bookmarks/{bookmark_id}/assets/{asset_id}/download/",
            endpoint="download_asset",
        )
        logger.debug(
            "linkding_asset_downloaded",
            extra={
                "bookmark_id": bookmark_id,
                "asset_id": asset_id,
                "bytes": len(response.content),
            },
        )
        return response.content

    async def mark_read(self, bookmark_id: int) -> RemoteBookmark:
        """Upload a local "read" change and return the server's updated record."""
        response = await self._request(
            "PATCH",
            f"/api/bookmarks/{bookmark_id}/",
            endpoint="mark_read",
            json=MarkReadRequest().model_dump(),
        )
        return self._parse(RemoteBookmark, response, "mark_read")

    async def health_check(self) -> bool:
        try:
            await self._request(
                "GET", "/api/bookmarks/", endpoint="health_check", params={"limit": 1}
            )
            return True
        except (LinkdingClientError, httpx.HTTPError) as e:
            logger.warning("linkding_health_check_failed", extra={"error": str(e)})
            return False
