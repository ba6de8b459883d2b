"""SQLite implementation of the sync cursor repository.

The cursor row is the only sync state that survives a restart. Every method
here is a single statement or a single transaction.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from linkding_sync.core.time_utils import to_storage, utc_now
from linkding_sync.db.models import SyncCursorState, SyncedRemoteId, SyncMode, model_to_dict
from linkding_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository

OFFSET_FIELDS = frozenset({"unarchived_offset", "archived_offset"})


def _now() -> datetime | None:
    return to_storage(utc_now())


def write_offset(
    engine_id: str,
    offset_field: str,
    new_offset: int,
    seen_ids: Iterable[int] = (),
) -> None:
    """Persist a phase offset (and the page's ids on full runs). Runs inside a transaction."""
    if offset_field not in OFFSET_FIELDS:
        msg = f"Unknown offset field: {offset_field}"
        raise ValueError(msg)
    SyncCursorState.update(
        {getattr(SyncCursorState, offset_field): new_offset, SyncCursorState.updated_at: _now()}
    ).where(SyncCursorState.engine_id == engine_id).execute()

    rows = [{"engine_id": engine_id, "bookmark_id": bookmark_id} for bookmark_id in seen_ids]
    if rows:
        SyncedRemoteId.insert_many(rows).on_conflict_ignore().execute()


class SqliteSyncStateRepositoryAdapter(SqliteBaseRepository):
    """Adapter for SyncCursorState and SyncedRemoteId operations."""

    async def async_get_state(self, engine_id: str) -> dict[str, Any]:
        """Return the cursor row, creating a zeroed one on first use."""

        def _get() -> dict[str, Any]:
            row, _ = SyncCursorState.get_or_create(engine_id=engine_id)
            return model_to_dict(row) or {}

        return await self._transaction(_get, operation_name="get_sync_state")

    async def async_begin_run(
        self, engine_id: str, *, mode: SyncMode, started_at: datetime
    ) -> None:
        """Start a fresh run: freeze its mode and start time, rewind offsets."""

        def _begin() -> None:
            SyncCursorState.update(
                run_started_at=to_storage(started_at),
                sync_mode=mode.value,
                unarchived_offset=0,
                archived_offset=0,
                updated_at=_now(),
            ).where(SyncCursorState.engine_id == engine_id).execute()
            SyncedRemoteId.delete().where(SyncedRemoteId.engine_id == engine_id).execute()

        await self._transaction(_begin, operation_name="begin_sync_run")

    def offset_writer(
        self,
        engine_id: str,
        offset_field: str,
        new_offset: int,
        seen_ids: Iterable[int] = (),
    ) -> Callable[[], None]:
        """Deferred offset write, to be committed with the page it belongs to."""
        ids = tuple(seen_ids)

        def _write() -> None:
            write_offset(engine_id, offset_field, new_offset, ids)

        return _write

    async def async_set_offset(self, engine_id: str, offset_field: str, new_offset: int) -> None:
        await self._transaction(
            self.offset_writer(engine_id, offset_field, new_offset),
            operation_name="set_sync_offset",
        )

    async def async_record_retry(self, engine_id: str, retry_count: int, error: str) -> None:
        def _update() -> None:
            SyncCursorState.update(
                retry_count=retry_count, last_sync_error=error, updated_at=_now()
            ).where(SyncCursorState.engine_id == engine_id).execute()

        await self._execute(_update, operation_name="record_sync_retry")

    async def async_reset_retry(self, engine_id: str) -> None:
        def _update() -> None:
            SyncCursorState.update(retry_count=0, updated_at=_now()).where(
                SyncCursorState.engine_id == engine_id, SyncCursorState.retry_count != 0
            ).execute()

        await self._execute(_update, operation_name="reset_sync_retry")

    async def async_record_failure(
        self, engine_id: str, error: str, *, reset_retries: bool = False
    ) -> None:
        """Store the error that ended a run; offsets are kept for the next run."""

        def _update() -> None:
            fields: dict[str, Any] = {"last_sync_error": error, "updated_at": _now()}
            if reset_retries:
                fields["retry_count"] = 0
            SyncCursorState.update(**fields).where(
                SyncCursorState.engine_id == engine_id
            ).execute()

        await self._execute(_update, operation_name="record_sync_failure")

    async def async_update_outstanding(
        self, engine_id: str, *, needing_asset_sync: int, needing_read_sync: int
    ) -> None:
        def _update() -> None:
            SyncCursorState.update(
                bookmarks_needing_asset_sync=needing_asset_sync,
                bookmarks_needing_read_sync=needing_read_sync,
                updated_at=_now(),
            ).where(SyncCursorState.engine_id == engine_id).execute()

        await self._execute(_update, operation_name="update_outstanding_counts")

    async def async_complete_run(
        self, engine_id: str, *, needing_asset_sync: int, needing_read_sync: int
    ) -> datetime | None:
        """Close the run: ``last_sync_at`` becomes the run's start time.

        ``last_sync_at`` stays the ``modified_since`` watermark even when the run
        was resumed much later. A completed full run also stamps
        ``last_full_sync_at`` with the completion time.

        Returns:
            The new ``last_sync_at`` value
        """

        def _complete() -> datetime | None:
            row, _ = SyncCursorState.get_or_create(engine_id=engine_id)
            last_sync_at = row.run_started_at or row.last_sync_at
            fields: dict[str, Any] = {}
            if row.sync_mode == SyncMode.FULL.value:
                fields["last_full_sync_at"] = _now()
            SyncCursorState.update(
                last_sync_at=last_sync_at,
                run_started_at=None,
                sync_mode=None,
                unarchived_offset=0,
                archived_offset=0,
                retry_count=0,
                last_sync_error=None,
                bookmarks_needing_asset_sync=needing_asset_sync,
                bookmarks_needing_read_sync=needing_read_sync,
                updated_at=_now(),
            ).where(SyncCursorState.engine_id == engine_id).execute()
            SyncedRemoteId.delete().where(SyncedRemoteId.engine_id == engine_id).execute()
            return last_sync_at

        return await self._transaction(_complete, operation_name="complete_sync_run")

    async def async_count_seen_ids(self, engine_id: str) -> int:
        def _query() -> int:
            return SyncedRemoteId.select().where(SyncedRemoteId.engine_id == engine_id).count()

        return await self._execute(_query, operation_name="count_seen_ids", read_only=True)
