"""Pytest configuration and shared test helpers.

Helpers live here so both pytest-style and unittest-style modules can import
them with ``from tests.conftest import ...``.
"""

from __future__ import annotations

import asyncio
import tempfile
import unittest
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from linkding_sync.adapters.linkding import LinkdingAPIError
from linkding_sync.adapters.linkding.models import AssetMeta, BookmarkPage, RemoteBookmark
from linkding_sync.config import (
    AppConfig,
    DatabaseConfig,
    HostCapabilitiesConfig,
    LinkdingConfig,
    RuntimeConfig,
    SyncEngineConfig,
)
from linkding_sync.db.models import database_proxy
from linkding_sync.db.session import DatabaseSessionManager

BASE_TIME = datetime(2025, 6, 15, 12, 0, 0, tzinfo=UTC)


def make_test_app_config(
    db_path: str | Path = ":memory:",
    *,
    host: dict[str, Any] | None = None,
    **sync_overrides: Any,
) -> AppConfig:
    """AppConfig built from section models, independent of the environment."""
    return AppConfig(
        linkding=LinkdingConfig(url="https://links.example.com", token="test-token"),
        sync=SyncEngineConfig(**sync_overrides),
        host=HostCapabilitiesConfig(**(host or {})),
        database=DatabaseConfig(),
        runtime=RuntimeConfig(db_path=str(db_path), log_level="DEBUG"),
    )


def make_temp_db_path() -> str:
    # File-based: a ":memory:" database is not shared across worker threads.
    with tempfile.NamedTemporaryFile(delete=False, suffix=".db") as temp_db:
        return temp_db.name


def remove_db_files(path: str) -> None:
    for suffix in ("", "-wal", "-shm"):
        Path(f"{path}{suffix}").unlink(missing_ok=True)


def make_remote_bookmark(
    bookmark_id: int,
    *,
    modified: datetime | None = None,
    **fields: Any,
) -> RemoteBookmark:
    values: dict[str, Any] = {
        "id": bookmark_id,
        "url": f"https://example.com/article/{bookmark_id}",
        "title": f"Article {bookmark_id}",
        "unread": True,
        "tag_names": ["reading"],
        "date_added": BASE_TIME,
        "date_modified": modified or BASE_TIME,
    }
    values.update(fields)
    return RemoteBookmark(**values)


def make_asset(asset_id: int, bookmark_id: int, *, status: str = "complete") -> AssetMeta:
    return AssetMeta(
        id=asset_id,
        bookmark=bookmark_id,
        asset_type="snapshot",
        content_type="text/html",
        display_name=f"snapshot-{asset_id}.html",
        file_size=128,
        status=status,
        date_created=BASE_TIME,
    )


class FakeLinkdingRemote:
    """In-memory Linkding server implementing the remote client contract.

    Failures are injected per call key with ``fail(...)``: each queued
    exception is raised once, in order.
    """

    def __init__(self) -> None:
        self.unarchived: dict[int, RemoteBookmark] = {}
        self.archived: dict[int, RemoteBookmark] = {}
        self.assets: dict[int, list[AssetMeta]] = defaultdict(list)
        self.contents: dict[tuple[int, int], bytes] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.modified_since_seen: list[datetime | None] = []
        self.open_count = 0
        self._failures: dict[tuple[Any, ...], list[BaseException]] = defaultdict(list)
        self._hooks: dict[tuple[Any, ...], Any] = {}
        # Server-side cap on ``limit``; pages come back short with ``next`` still set.
        self.max_page_size: int | None = None

    # -- setup helpers ----------------------------------------------------

    def add_bookmarks(self, count: int, *, start: int = 1, archived: bool = False) -> None:
        target = self.archived if archived else self.unarchived
        for bookmark_id in range(start, start + count):
            target[bookmark_id] = make_remote_bookmark(bookmark_id, is_archived=archived)

    def put(self, bookmark: RemoteBookmark) -> None:
        self.unarchived.pop(bookmark.id, None)
        self.archived.pop(bookmark.id, None)
        target = self.archived if bookmark.is_archived else self.unarchived
        target[bookmark.id] = bookmark

    def remove(self, bookmark_id: int) -> None:
        self.unarchived.pop(bookmark_id, None)
        self.archived.pop(bookmark_id, None)

    def add_asset(
        self, bookmark_id: int, asset_id: int, *, status: str = "complete", content: bytes = b""
    ) -> None:
        self.assets[bookmark_id].append(make_asset(asset_id, bookmark_id, status=status))
        self.contents[(bookmark_id, asset_id)] = content or f"<html>{asset_id}</html>".encode()

    def fail(self, *key: Any, error: BaseException) -> None:
        """Queue an error for the call identified by ``key``."""
        self._failures[key].append(error)

    def on_call(self, *key: Any, hook: Any) -> None:
        """Await ``hook()`` before serving the call identified by ``key``."""
        self._hooks[key] = hook

    async def _enter(self, *key: Any) -> None:
        self.calls.append(key)
        hook = self._hooks.get(key)
        if hook is not None:
            await hook()
        queued = self._failures.get(key)
        if queued:
            raise queued.pop(0)

    # -- client contract --------------------------------------------------

    @asynccontextmanager
    async def session(self):
        self.open_count += 1
        yield self

    def factory(self):
        return self.session()

    def _page(
        self,
        source: dict[int, RemoteBookmark],
        limit: int,
        offset: int,
        modified_since: datetime | None,
    ) -> BookmarkPage:
        if self.max_page_size is not None:
            limit = min(limit, self.max_page_size)
        rows = sorted(source.values(), key=lambda b: b.id)
        if modified_since is not None:
            rows = [b for b in rows if b.date_modified and b.date_modified > modified_since]
        results = rows[offset : offset + limit]
        has_more = offset + limit < len(rows)
        return BookmarkPage(
            count=len(rows),
            next=f"?limit={limit}&offset={offset + limit}" if has_more else None,
            previous=None,
            results=results,
        )

    async def list_unarchived(self, limit, offset, modified_since=None) -> BookmarkPage:
        await self._enter("list_unarchived", offset)
        self.modified_since_seen.append(modified_since)
        return self._page(self.unarchived, limit, offset, modified_since)

    async def list_archived(self, limit, offset, modified_since=None) -> BookmarkPage:
        await self._enter("list_archived", offset)
        self.modified_since_seen.append(modified_since)
        return self._page(self.archived, limit, offset, modified_since)

    async def list_asset_index(self, bookmark_id: int) -> list[AssetMeta]:
        await self._enter("list_asset_index", bookmark_id)
        return list(self.assets.get(bookmark_id, []))

    async def download_asset(self, bookmark_id: int, asset_id: int) -> bytes:
        await self._enter("download_asset", bookmark_id, asset_id)
        return self.contents[(bookmark_id, asset_id)]

    async def mark_read(self, bookmark_id: int) -> RemoteBookmark:
        await self._enter("mark_read", bookmark_id)
        current = self.unarchived.get(bookmark_id) or self.archived.get(bookmark_id)
        if current is None:
            raise LinkdingAPIError("mark_read failed with HTTP 404", status_code=404)
        updated = current.model_copy(
            update={
                "unread": False,
                "date_modified": (current.date_modified or BASE_TIME) + timedelta(seconds=1),
            }
        )
        self.put(updated)
        return updated

    async def health_check(self) -> bool:
        await self._enter("health_check")
        return True

    def count_calls(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class RecordingObserver:
    """Observer collecting every outbound message."""

    def __init__(self) -> None:
        self.messages: list[Any] = []

    def __call__(self, message: Any) -> None:
        self.messages.append(message)

    def of_type(self, type_name: str) -> list[Any]:
        return [m for m in self.messages if m.type == type_name]


class Gate:
    """Call hook that parks the caller until the test opens the gate."""

    def __init__(self, *, on_reach: Any = None) -> None:
        self.reached = asyncio.Event()
        self.opened = asyncio.Event()
        self._on_reach = on_reach

    async def __call__(self) -> None:
        self.reached.set()
        if self._on_reach is not None:
            self._on_reach()
        await self.opened.wait()

    def open(self) -> None:
        self.opened.set()


async def wait_until(predicate: Any, *, timeout: float = 5.0) -> None:
    """Poll ``predicate`` until it holds; fail the test after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            msg = "condition not reached before timeout"
            raise AssertionError(msg)
        await asyncio.sleep(0.01)


class StoreTestCase(unittest.IsolatedAsyncioTestCase):
    """Base test case with a migrated temporary SQLite store."""

    async def asyncSetUp(self) -> None:
        self._old_db = database_proxy.obj
        self.db_path = make_temp_db_path()
        self.db = DatabaseSessionManager(path=self.db_path)
        self.db.migrate()

    async def asyncTearDown(self) -> None:
        self.db.close()
        database_proxy.initialize(self._old_db)
        remove_db_files(self.db_path)


@pytest.fixture
def temp_store():
    """Migrated DatabaseSessionManager on a temporary file."""
    old_db = database_proxy.obj
    path = make_temp_db_path()
    db = DatabaseSessionManager(path=path)
    db.migrate()
    try:
        yield db
    finally:
        db.close()
        database_proxy.initialize(old_db)
        remove_db_files(path)
