"""Asset downloader: caches bookmark assets for offline reading.

Only assets the server reports as ``complete`` are indexed. Downloads for one
bookmark run with bounded fan-out. A failed asset is recorded as ``failure``
and retried by a later run; it never aborts the run unless the server rejected
our credentials or the local store failed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import peewee

from linkding_sync.config import MAX_ASSET_CONCURRENCY
from linkding_sync.sync.retry import describe_error, is_auth_error

if TYPE_CHECKING:
    from linkding_sync.adapters.linkding.models import AssetMeta
    from linkding_sync.infrastructure.persistence.sqlite.repositories import (
        SqliteAssetRepositoryAdapter,
        SqliteBookmarkRepositoryAdapter,
    )
    from linkding_sync.sync.protocols import RemoteBookmarkClient
    from linkding_sync.sync.reconciler import LocalStoreReconciler

logger = logging.getLogger(__name__)


def _is_fatal(error: BaseException) -> bool:
    return is_auth_error(error) or isinstance(error, peewee.DatabaseError)


@dataclass(frozen=True)
class BookmarkAssetResult:
    bookmark_id: int
    indexed: int = 0
    downloaded: int = 0
    failed: int = 0
    index_failed: bool = False
    cleared: bool = False

    @property
    def partial_failures(self) -> int:
        return self.failed + (1 if self.index_failed else 0)


class AssetDownloader:
    def __init__(
        self,
        reconciler: LocalStoreReconciler,
        bookmarks: SqliteBookmarkRepositoryAdapter,
        assets: SqliteAssetRepositoryAdapter,
        *,
        concurrency: int = 2,
    ) -> None:
        self._reconciler = reconciler
        self._bookmarks = bookmarks
        self._assets = assets
        self.concurrency = max(1, min(concurrency, MAX_ASSET_CONCURRENCY))

    async def sync_bookmark(
        self,
        client: RemoteBookmarkClient,
        bookmark_id: int,
        *,
        archived: bool,
        correlation_id: str | None = None,
    ) -> BookmarkAssetResult:
        """Index and download one bookmark's assets.

        Archived bookmarks are only indexed; their content is fetched on demand
        by the reader.

        Raises:
            LinkdingAPIError: On 401/403 from the server
            peewee.DatabaseError: If the local store fails
        """
        try:
            index = await client.list_asset_index(bookmark_id)
        except Exception as exc:
            if _is_fatal(exc):
                raise
            logger.warning(
                "asset_index_failed",
                extra={
                    "bookmark_id": bookmark_id,
                    "error": describe_error(exc),
                    "correlation_id": correlation_id,
                },
            )
            return BookmarkAssetResult(bookmark_id=bookmark_id, index_failed=True)

        indexed: list[AssetMeta] = [meta for meta in index if meta.is_complete]
        for meta in indexed:
            await self._reconciler.upsert_asset(bookmark_id, meta)

        if archived:
            await self._bookmarks.async_set_asset_sync_flag(bookmark_id, False)
            return BookmarkAssetResult(bookmark_id=bookmark_id, indexed=len(indexed), cleared=True)

        indexed_ids = {meta.id for meta in indexed}
        pending = [
            asset_id
            for asset_id in await self._assets.async_list_incomplete(bookmark_id)
            if asset_id in indexed_ids
        ]

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _download(asset_id: int) -> bool:
            async with semaphore:
                try:
                    data = await client.download_asset(bookmark_id, asset_id)
                except Exception as exc:
                    if _is_fatal(exc):
                        raise
                    await self._reconciler.record_asset_failure(
                        bookmark_id, asset_id, describe_error(exc)
                    )
                    logger.warning(
                        "asset_download_failed",
                        extra={
                            "bookmark_id": bookmark_id,
                            "asset_id": asset_id,
                            "error": describe_error(exc),
                            "correlation_id": correlation_id,
                        },
                    )
                    return False
                await self._reconciler.record_asset_content(bookmark_id, asset_id, data)
                return True

        results = await asyncio.gather(
            *(_download(asset_id) for asset_id in pending), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

        downloaded = sum(1 for result in results if result is True)
        failed = len(results) - downloaded

        remaining = [
            asset_id
            for asset_id in await self._assets.async_list_incomplete(bookmark_id)
            if asset_id in indexed_ids
        ]
        cleared = not remaining
        if cleared:
            await self._bookmarks.async_set_asset_sync_flag(bookmark_id, False)

        logger.debug(
            "bookmark_assets_synced",
            extra={
                "bookmark_id": bookmark_id,
                "indexed": len(indexed),
                "downloaded": downloaded,
                "failed": failed,
                "cleared": cleared,
                "correlation_id": correlation_id,
            },
        )
        return BookmarkAssetResult(
            bookmark_id=bookmark_id,
            indexed=len(indexed),
            downloaded=downloaded,
            failed=failed,
            cleared=cleared,
        )
