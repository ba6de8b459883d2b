"""Tests for the Linkding HTTP client using httpx.MockTransport."""

from __future__ import annotations

import json
import unittest
from datetime import UTC, datetime

import httpx
import pytest

from linkding_sync.adapters.linkding import (
    LinkdingAPIError,
    LinkdingClient,
    LinkdingClientError,
    LinkdingMalformedResponseError,
)
from linkding_sync.adapters.linkding.client import _parse_retry_after

BASE_URL = "https://links.example.com"


def _bookmark(bookmark_id: int, **fields):
    data = {
        "id": bookmark_id,
        "url": f"https://example.com/{bookmark_id}",
        "title": f"Title {bookmark_id}",
        "description": None,
        "notes": "",
        "is_archived": False,
        "unread": True,
        "shared": False,
        "tag_names": ["python"],
        "date_added": "2025-06-15T12:00:00Z",
        "date_modified": "2025-06-15T12:30:00.123456Z",
    }
    data.update(fields)
    return data


class TestLinkdingClient(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: list[httpx.Response] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    def client(self, **kwargs) -> LinkdingClient:
        return LinkdingClient(
            BASE_URL + "/", "secret-token", transport=httpx.MockTransport(self.handler), **kwargs
        )

    async def test_list_unarchived_sends_auth_and_paging(self):
        self.responses.append(
            httpx.Response(
                200,
                json={
                    "count": 2,
                    "next": f"{BASE_URL}/api/bookmarks/?limit=1&offset=1",
                    "previous": None,
                    "results": [_bookmark(1)],
                },
            )
        )

        async with self.client() as client:
            page = await client.list_unarchived(1, 0)

        [request] = self.requests
        assert request.method == "GET"
        assert request.url.path == "/api/bookmarks/"
        assert request.url.params["limit"] == "1"
        assert request.url.params["offset"] == "0"
        assert set(request.url.params) == {"limit", "offset"}
        assert request.headers["Authorization"] == "Token secret-token"
        assert page.count == 2
        assert page.has_next
        [bookmark] = page.results
        assert bookmark.description == ""
        assert bookmark.date_modified == datetime(2025, 6, 15, 12, 30, 0, 123456, tzinfo=UTC)

    async def test_list_archived_with_modified_since(self):
        self.responses.append(httpx.Response(200, json={"count": 0, "results": []}))
        since = datetime(2025, 6, 15, 12, 0, tzinfo=UTC)

        async with self.client() as client:
            page = await client.list_archived(100, 200, since)

        [request] = self.requests
        assert request.url.path == "/api/bookmarks/archived/"
        assert request.url.params["offset"] == "200"
        assert request.url.params["modified_since"] == "2025-06-15T12:00:00Z"
        assert set(request.url.params) == {"limit", "offset", "modified_since"}
        assert page.results == []
        assert not page.has_next

    async def test_asset_index_follows_pagination(self):
        asset = {"id": 1, "bookmark": 5, "status": "complete", "asset_type": "snapshot"}
        self.responses.extend(
            [
                httpx.Response(200, json={"count": 2, "next": "more", "results": [asset]}),
                httpx.Response(
                    200, json={"count": 2, "next": None, "results": [asset | {"id": 2}]}
                ),
            ]
        )

        async with self.client() as client:
            assets = await client.list_asset_index(5)

        assert [a.id for a in assets] == [1, 2]
        assert self.requests[0].url.path == "/api/bookmarks/5/assets/"
        assert self.requests[1].url.params["offset"] == "1"
        assert assets[0].is_complete

    async def test_download_asset_returns_bytes(self):
        self.responses.append(httpx.Response(200, content=b"<html>cached</html>"))

        async with self.client() as client:
            data = await client.download_asset(5, 9)

        assert data == b"<html>cached</html>"
        assert self.requests[0].url.path == "/api/bookmarks/5/assets/9/download/"

    async def test_mark_read_patches_unread_false(self):
        self.responses.append(httpx.Response(200, json=_bookmark(3, unread=False)))

        async with self.client() as client:
            bookmark = await client.mark_read(3)

        [request] = self.requests
        assert request.method == "PATCH"
        assert request.url.path == "/api/bookmarks/3/"
        assert json.loads(request.content) == {"unread": False}
        assert bookmark.unread is False

    async def test_error_status_raises_api_error(self):
        self.responses.append(httpx.Response(401, json={"detail": "Invalid token."}))

        async with self.client() as client:
            with pytest.raises(LinkdingAPIError) as exc_info:
                await client.list_unarchived(10, 0)

        assert exc_info.value.status_code == 401
        assert exc_info.value.is_auth_error

    async def test_rate_limit_carries_retry_after(self):
        self.responses.append(httpx.Response(429, headers={"Retry-After": "120"}))

        async with self.client() as client:
            with pytest.raises(LinkdingAPIError) as exc_info:
                await client.list_unarchived(10, 0)

        assert exc_info.value.retry_after == 120.0

    async def test_malformed_payload(self):
        self.responses.append(httpx.Response(200, json={"results": [{"title": "no id"}]}))

        async with self.client() as client:
            with pytest.raises(LinkdingMalformedResponseError):
                await client.list_unarchived(10, 0)

    async def test_non_json_payload(self):
        self.responses.append(httpx.Response(200, content=b"<html>login</html>"))

        async with self.client() as client:
            with pytest.raises(LinkdingMalformedResponseError):
                await client.mark_read(1)

    async def test_transport_errors_are_not_wrapped(self):
        def offline(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        client = LinkdingClient(BASE_URL, "t", transport=httpx.MockTransport(offline))
        async with client:
            with pytest.raises(httpx.ConnectError):
                await client.list_unarchived(10, 0)

    async def test_health_check(self):
        self.responses.extend([httpx.Response(200, json={}), httpx.Response(503)])

        async with self.client() as client:
            assert await client.health_check() is True
            assert await client.health_check() is False

    async def test_requires_context_manager(self):
        client = self.client()

        with pytest.raises(LinkdingClientError):
            await client.list_unarchived(10, 0)

    def test_endpoint_timeouts(self):
        client = self.client(timeout=12, asset_timeout=90, endpoint_timeouts={"mark_read": 5})

        assert client.base_url == BASE_URL
        assert client.get_timeout("download_asset") == 90
        assert client.get_timeout("mark_read") == 5
        assert client.get_timeout("unknown") == 12


class TestParseRetryAfter(unittest.TestCase):
    def test_seconds(self):
        assert _parse_retry_after("30") == 30.0
        assert _parse_retry_after("-5") == 0.0

    def test_http_date_in_the_past(self):
        assert _parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0

    def test_missing_or_garbage(self):
        assert _parse_retry_after(None) is None
        assert _parse_retry_after("soon") is None
