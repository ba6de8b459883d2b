"""Local store reconciler: merges remote records into the local store.

Merge rules:
- an unseen bookmark is inserted verbatim with local defaults
- remote-owned fields are overwritten only when the incoming ``date_modified``
  is strictly newer than the stored one
- local-only fields (reading progress, reading mode, last read) are never
  written here
- while a local "read" change is waiting for upload, ``unread`` stays False
  even if the server still says unread
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from linkding_sync.core.time_utils import ensure_datetime, to_storage, utc_now

if TYPE_CHECKING:
    from collections.abc import Sequence

    from linkding_sync.adapters.linkding.models import AssetMeta, RemoteBookmark
    from linkding_sync.infrastructure.persistence.sqlite.repositories import (
        SqliteAssetRepositoryAdapter,
        SqliteBookmarkRepositoryAdapter,
        SqliteSyncStateRepositoryAdapter,
    )

logger = logging.getLogger(__name__)

REMOTE_FIELDS: tuple[str, ...] = (
    "url",
    "title",
    "description",
    "notes",
    "website_title",
    "website_description",
    "web_archive_snapshot_url",
    "favicon_url",
    "preview_image_url",
    "is_archived",
    "unread",
    "shared",
    "tag_names",
    "date_added",
    "date_modified",
)


class ReconcileOutcome(StrEnum):
    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def merge_bookmark(
    existing: dict[str, Any] | None, incoming: dict[str, Any]
) -> tuple[str, dict[str, Any]]:
    """Decide how an incoming remote row changes the stored one.

    Returns:
        The outcome and the column values to write (empty when unchanged)
    """
    remote_values = {name: incoming.get(name) for name in REMOTE_FIELDS}
    bookkeeping = {"needs_asset_sync": True, "synced_at": to_storage(utc_now())}

    if existing is None:
        return ReconcileOutcome.INSERTED, {"id": incoming["id"], **remote_values, **bookkeeping}

    incoming_modified = ensure_datetime(incoming.get("date_modified"))
    stored_modified = ensure_datetime(existing.get("date_modified"))
    if incoming_modified is None:
        return ReconcileOutcome.UNCHANGED, {}
    if stored_modified is not None and incoming_modified <= stored_modified:
        return ReconcileOutcome.UNCHANGED, {}

    if existing.get("needs_read_sync"):
        remote_values["unread"] = False
    return ReconcileOutcome.UPDATED, {**remote_values, **bookkeeping}


def merge_read_acknowledgement(
    existing: dict[str, Any] | None, incoming: dict[str, Any]
) -> tuple[str, dict[str, Any]]:
    """Merge the record echoed by a read-status upload.

    Same precedence as ``merge_bookmark``, but the echo of our own change does
    not queue the bookmark for another asset pass.
    """
    outcome, values = merge_bookmark(existing, incoming)
    if outcome == ReconcileOutcome.UPDATED:
        values.pop("needs_asset_sync", None)
    return outcome, values


@dataclass
class PageResult:
    outcomes: list[tuple[int, str]] = field(default_factory=list)

    @property
    def touched_ids(self) -> set[int]:
        return {
            bookmark_id
            for bookmark_id, outcome in self.outcomes
            if outcome != ReconcileOutcome.UNCHANGED
        }

    def count(self, outcome: ReconcileOutcome) -> int:
        return sum(1 for _, value in self.outcomes if value == outcome)


class LocalStoreReconciler:
    """Applies remote bookmarks and assets to the local store."""

    def __init__(
        self,
        bookmarks: SqliteBookmarkRepositoryAdapter,
        assets: SqliteAssetRepositoryAdapter,
        state: SqliteSyncStateRepositoryAdapter,
        *,
        engine_id: str,
    ) -> None:
        self._bookmarks = bookmarks
        self._assets = assets
        self._state = state
        self.engine_id = engine_id

    async def upsert(self, remote: RemoteBookmark) -> ReconcileOutcome:
        outcomes = await self._bookmarks.async_apply_remote_bookmarks(
            [remote.to_row()], merge=merge_bookmark
        )
        return ReconcileOutcome(outcomes[0][1])

    async def apply_page(
        self,
        records: Sequence[RemoteBookmark],
        *,
        offset_field: str,
        new_offset: int,
        track_ids: bool,
    ) -> PageResult:
        """Reconcile one page and persist the phase offset in the same transaction.

        Args:
            records: The page's bookmarks
            offset_field: ``unarchived_offset`` or ``archived_offset``
            new_offset: Offset of the next page
            track_ids: Record the page's ids for orphan cleanup (full runs)
        """
        rows = [record.to_row() for record in records]
        seen_ids = [row["id"] for row in rows] if track_ids else []
        outcomes = await self._bookmarks.async_apply_remote_bookmarks(
            rows,
            merge=merge_bookmark,
            also=self._state.offset_writer(self.engine_id, offset_field, new_offset, seen_ids),
        )
        return PageResult(outcomes=outcomes)

    async def upsert_asset(self, bookmark_id: int, meta: AssetMeta) -> bool:
        return await self._assets.async_upsert_metadata(bookmark_id, meta.to_row())

    async def record_asset_content(self, bookmark_id: int, asset_id: int, data: bytes) -> bool:
        stored = await self._assets.async_record_content(asset_id, data)
        logger.debug(
            "asset_content_recorded",
            extra={
                "bookmark_id": bookmark_id,
                "asset_id": asset_id,
                "bytes": len(data),
                "stored": stored,
            },
        )
        return stored

    async def record_asset_failure(self, bookmark_id: int, asset_id: int, error: str) -> bool:
        return await self._assets.async_record_failure(asset_id, error)

    async def confirm_read(self, bookmark_id: int, remote: RemoteBookmark | None) -> bool:
        row = remote.to_row() if remote is not None else None
        return await self._bookmarks.async_confirm_read_synced(
            bookmark_id, row, merge_read_acknowledgement
        )

    async def delete_orphans(self) -> int:
        return await self._bookmarks.async_delete_orphans(self.engine_id)
