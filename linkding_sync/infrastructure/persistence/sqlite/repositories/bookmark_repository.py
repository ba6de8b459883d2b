"""SQLite implementation of the bookmark repository.

Serves two callers: the sync engine (page application, work queues, orphan
cleanup) and the reader UI (local annotations that must keep working while a
sync is running).
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from linkding_sync.core.reading_export import (
    ImportResult,
    ReadingProgressEntry,
    ReadingProgressExport,
    parse_reading_export,
)
from linkding_sync.core.time_utils import ensure_datetime, to_storage, utc_now
from linkding_sync.db.models import (
    Asset,
    Bookmark,
    ReadingMode,
    SyncedRemoteId,
    model_to_dict,
)
from linkding_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository

# (existing row or None, incoming remote row) -> (outcome, column values to write)
MergeFn = Callable[[dict[str, Any] | None, dict[str, Any]], tuple[str, dict[str, Any]]]

OUTCOME_INSERTED = "inserted"
OUTCOME_UPDATED = "updated"
OUTCOME_UNCHANGED = "unchanged"


def apply_remote_rows(records: Sequence[dict[str, Any]], merge: MergeFn) -> list[tuple[int, str]]:
    """Write remote rows through ``merge``. Must run inside a transaction."""
    ids = [int(record["id"]) for record in records]
    existing_rows = {
        row.id: model_to_dict(row) for row in Bookmark.select().where(Bookmark.id.in_(ids))
    }

    outcomes: list[tuple[int, str]] = []
    for record in records:
        bookmark_id = int(record["id"])
        outcome, values = merge(existing_rows.get(bookmark_id), record)
        if outcome == OUTCOME_INSERTED:
            Bookmark.insert(**values).execute()
        elif outcome == OUTCOME_UPDATED:
            Bookmark.update(**values).where(Bookmark.id == bookmark_id).execute()
        outcomes.append((bookmark_id, outcome))
    return outcomes


class SqliteBookmarkRepositoryAdapter(SqliteBaseRepository):
    """Adapter for Bookmark database operations."""

    # -- engine side ------------------------------------------------------

    async def async_apply_remote_bookmarks(
        self,
        records: Sequence[dict[str, Any]],
        *,
        merge: MergeFn,
        also: Callable[[], None] | None = None,
    ) -> list[tuple[int, str]]:
        """Reconcile remote rows in one transaction.

        Args:
            records: Remote bookmark rows keyed by column name
            merge: Decides per row whether to insert, update or skip
            also: Extra writes committed in the same transaction (cursor offset)

        Returns:
            ``(bookmark_id, outcome)`` per record, in input order
        """

        def _apply() -> list[tuple[int, str]]:
            outcomes = apply_remote_rows(records, merge) if records else []
            if also is not None:
                also()
            return outcomes

        return await self._transaction(_apply, operation_name="apply_remote_bookmarks")

    async def async_list_needing_asset_sync(
        self, *, after_id: int = 0, limit: int = 50
    ) -> list[dict[str, Any]]:
        """Keyset page of bookmarks flagged for asset sync, ordered by id."""

        def _query() -> list[dict[str, Any]]:
            rows = (
                Bookmark.select(Bookmark.id, Bookmark.is_archived)
                .where(Bookmark.needs_asset_sync == True, Bookmark.id > after_id)  # noqa: E712
                .order_by(Bookmark.id)
                .limit(limit)
            )
            return [{"id": row.id, "is_archived": row.is_archived} for row in rows]

        return await self._execute(
            _query, operation_name="list_needing_asset_sync", read_only=True
        )

    async def async_list_needing_read_sync(self) -> list[int]:
        def _query() -> list[int]:
            return [
                row.id
                for row in Bookmark.select(Bookmark.id)
                .where(Bookmark.needs_read_sync == True)  # noqa: E712
                .order_by(Bookmark.id)
            ]

        return await self._execute(_query, operation_name="list_needing_read_sync", read_only=True)

    async def async_count_outstanding(self) -> tuple[int, int]:
        """Return ``(needing_asset_sync, needing_read_sync)`` counts."""

        def _query() -> tuple[int, int]:
            assets = Bookmark.select().where(Bookmark.needs_asset_sync).count()
            reads = Bookmark.select().where(Bookmark.needs_read_sync).count()
            return assets, reads

        return await self._execute(_query, operation_name="count_outstanding", read_only=True)

    async def async_set_asset_sync_flag(self, bookmark_id: int, needed: bool) -> None:
        def _update() -> None:
            Bookmark.update(needs_asset_sync=needed).where(Bookmark.id == bookmark_id).execute()

        await self._execute(_update, operation_name="set_asset_sync_flag")

    async def async_confirm_read_synced(
        self, bookmark_id: int, remote: dict[str, Any] | None, merge: MergeFn
    ) -> bool:
        """Clear the pending read flag after the server acknowledged it.

        The acknowledged record (if any) is merged in the same transaction so a
        newer remote copy is applied without waiting for the next listing.
        """

        def _confirm() -> bool:
            cleared = (
                Bookmark.update(needs_read_sync=False, unread=False)
                .where(Bookmark.id == bookmark_id, Bookmark.needs_read_sync == True)  # noqa: E712
                .execute()
            )
            if remote is not None and cleared:
                apply_remote_rows([remote], merge)
            return bool(cleared)

        return await self._transaction(_confirm, operation_name="confirm_read_synced")

    async def async_delete_orphans(self, engine_id: str) -> int:
        """Delete bookmarks (and their assets) not seen by the finished full run."""

        def _delete() -> int:
            seen = SyncedRemoteId.select(SyncedRemoteId.bookmark_id).where(
                SyncedRemoteId.engine_id == engine_id
            )
            orphan_ids = [
                row.id for row in Bookmark.select(Bookmark.id).where(Bookmark.id.not_in(seen))
            ]
            if not orphan_ids:
                return 0
            Asset.delete().where(Asset.bookmark.in_(orphan_ids)).execute()
            return Bookmark.delete().where(Bookmark.id.in_(orphan_ids)).execute()

        return await self._transaction(_delete, operation_name="delete_orphan_bookmarks")

    # -- reader side ------------------------------------------------------

    async def async_get_bookmark(self, bookmark_id: int) -> dict[str, Any] | None:
        def _get() -> dict[str, Any] | None:
            return model_to_dict(Bookmark.get_or_none(Bookmark.id == bookmark_id))

        return await self._execute(_get, operation_name="get_bookmark", read_only=True)

    async def async_list_bookmarks(
        self,
        *,
        is_archived: bool | None = False,
        unread: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """List local bookmarks, newest first.

        Args:
            is_archived: Filter on archive state; ``None`` returns both
            unread: Filter on read state; ``None`` returns both
            limit: Page size
            offset: Rows to skip
        """

        def _query() -> list[dict[str, Any]]:
            query = Bookmark.select()
            if is_archived is not None:
                query = query.where(Bookmark.is_archived == is_archived)
            if unread is not None:
                query = query.where(Bookmark.unread == unread)
            query = query.order_by(Bookmark.date_added.desc(), Bookmark.id.desc())
            return [
                data
                for row in query.limit(limit).offset(offset)
                if (data := model_to_dict(row)) is not None
            ]

        return await self._execute(_query, operation_name="list_bookmarks", read_only=True)

    async def async_mark_read_locally(self, bookmark_id: int) -> bool:
        """Mark a bookmark read and queue the change for upload.

        Returns:
            True if the bookmark was unread and is now pending upload
        """

        def _update() -> int:
            return (
                Bookmark.update(
                    unread=False,
                    needs_read_sync=True,
                    last_read_at=to_storage(utc_now()),
                )
                .where(Bookmark.id == bookmark_id, Bookmark.unread == True)  # noqa: E712
                .execute()
            )

        return bool(await self._execute(_update, operation_name="mark_read_locally"))

    async def async_save_read_progress(
        self,
        bookmark_id: int,
        progress: float,
        *,
        reading_mode: str | None = None,
    ) -> bool:
        """Persist reading progress (clamped to 0-100) and optionally the reading mode.

        Raises:
            ValueError: If ``reading_mode`` is not a known mode
        """
        values: dict[str, Any] = {
            "read_progress": max(0.0, min(100.0, float(progress))),
            "last_read_at": to_storage(utc_now()),
        }
        if reading_mode is not None:
            values["reading_mode"] = ReadingMode(reading_mode).value

        def _update() -> int:
            return Bookmark.update(**values).where(Bookmark.id == bookmark_id).execute()

        return bool(await self._execute(_update, operation_name="save_read_progress"))

    async def async_get_assets(
        self, bookmark_id: int, *, include_content: bool = False
    ) -> list[dict[str, Any]]:
        def _query() -> list[dict[str, Any]]:
            exclude = () if include_content else ("content",)
            return [
                data
                for row in Asset.select().where(Asset.bookmark == bookmark_id).order_by(Asset.id)
                if (data := model_to_dict(row, exclude=exclude)) is not None
            ]

        return await self._execute(_query, operation_name="get_assets", read_only=True)

    # -- reading progress backup ------------------------------------------

    async def async_export_reading_progress(self) -> dict[str, Any]:
        """Export reading progress of every bookmark that has been opened."""

        def _query() -> list[ReadingProgressEntry]:
            query = (
                Bookmark.select(
                    Bookmark.id,
                    Bookmark.read_progress,
                    Bookmark.reading_mode,
                    Bookmark.last_read_at,
                )
                .where(Bookmark.last_read_at.is_null(False))
                .order_by(Bookmark.id)
            )
            return [
                ReadingProgressEntry(
                    bookmark_id=row.id,
                    progress=row.read_progress,
                    reading_mode=row.reading_mode,
                    last_read_at=ensure_datetime(row.last_read_at),
                )
                for row in query
            ]

        entries = await self._execute(
            _query, operation_name="export_reading_progress", read_only=True
        )
        export = ReadingProgressExport(export_timestamp=utc_now(), reading_progress=entries)
        return export.model_dump(mode="json")

    async def async_import_reading_progress(
        self, data: dict[str, Any] | str | bytes
    ) -> ImportResult:
        """Merge an export into the store.

        An entry is applied only when it was read more recently than the local
        row; entries for bookmarks not in the store are counted as orphaned.

        Raises:
            ValueError: If the document is malformed or has an unknown version
        """
        export = parse_reading_export(data)

        def _apply() -> ImportResult:
            result = ImportResult()
            ids = [entry.bookmark_id for entry in export.reading_progress]
            last_read = {
                row.id: ensure_datetime(row.last_read_at)
                for row in Bookmark.select(Bookmark.id, Bookmark.last_read_at).where(
                    Bookmark.id.in_(ids)
                )
            }
            for entry in export.reading_progress:
                if entry.bookmark_id not in last_read:
                    result.orphaned += 1
                    continue
                current = last_read[entry.bookmark_id]
                if current is not None and entry.last_read_at <= current:
                    result.skipped += 1
                    continue
                Bookmark.update(
                    read_progress=entry.progress,
                    reading_mode=entry.reading_mode,
                    last_read_at=to_storage(entry.last_read_at),
                ).where(Bookmark.id == entry.bookmark_id).execute()
                last_read[entry.bookmark_id] = entry.last_read_at
                result.imported += 1
            return result

        return await self._transaction(_apply, operation_name="import_reading_progress")
