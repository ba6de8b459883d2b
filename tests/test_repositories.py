"""Tests for the SQLite repository adapters.

Covers the reader-side operations that must keep working during a sync
(mark read, reading progress, listing), the asset state machine, the cursor
row lifecycle and the lease table.
"""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import pytest

from linkding_sync.core.reading_export import ImportResult
from linkding_sync.core.time_utils import utc_now
from linkding_sync.db.models import SyncMode
from linkding_sync.infrastructure.persistence.sqlite.repositories import (
    SqliteAssetRepositoryAdapter,
    SqliteBookmarkRepositoryAdapter,
    SqliteSyncLeaseRepositoryAdapter,
    SqliteSyncStateRepositoryAdapter,
)
from linkding_sync.sync.reconciler import merge_bookmark
from linkding_sync.sync.session import CursorState, needs_full_sync
from tests.conftest import BASE_TIME, StoreTestCase, make_asset, make_remote_bookmark

ENGINE_ID = "default"


class RepositoryTestCase(StoreTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.bookmarks = SqliteBookmarkRepositoryAdapter(self.db)
        self.assets = SqliteAssetRepositoryAdapter(self.db)
        self.state = SqliteSyncStateRepositoryAdapter(self.db)
        self.leases = SqliteSyncLeaseRepositoryAdapter(self.db)

    async def seed(self, *bookmarks) -> None:
        await self.bookmarks.async_apply_remote_bookmarks(
            [b.to_row() for b in bookmarks], merge=merge_bookmark
        )


class TestBookmarkRepository(RepositoryTestCase):
    async def test_mark_read_locally_queues_upload(self):
        await self.seed(make_remote_bookmark(1))

        assert await self.bookmarks.async_mark_read_locally(1) is True

        stored = await self.bookmarks.async_get_bookmark(1)
        assert stored["unread"] is False
        assert stored["needs_read_sync"] is True
        assert stored["last_read_at"] is not None
        assert await self.bookmarks.async_list_needing_read_sync() == [1]

    async def test_mark_read_twice_is_noop(self):
        await self.seed(make_remote_bookmark(1))
        await self.bookmarks.async_mark_read_locally(1)

        assert await self.bookmarks.async_mark_read_locally(1) is False
        assert await self.bookmarks.async_mark_read_locally(999) is False

    async def test_save_read_progress_clamps_and_sets_mode(self):
        await self.seed(make_remote_bookmark(1))

        assert await self.bookmarks.async_save_read_progress(
            1, 140, reading_mode="readability"
        )

        stored = await self.bookmarks.async_get_bookmark(1)
        assert stored["read_progress"] == 100.0
        assert stored["reading_mode"] == "readability"

    async def test_save_read_progress_rejects_unknown_mode(self):
        await self.seed(make_remote_bookmark(1))

        with pytest.raises(ValueError):
            await self.bookmarks.async_save_read_progress(1, 10, reading_mode="audio")

    async def test_list_bookmarks_filters_and_orders(self):
        await self.seed(
            make_remote_bookmark(1, date_added=BASE_TIME),
            make_remote_bookmark(2, date_added=BASE_TIME + timedelta(days=1)),
            make_remote_bookmark(3, is_archived=True),
            make_remote_bookmark(4, unread=False),
        )

        unarchived = await self.bookmarks.async_list_bookmarks()
        assert [b["id"] for b in unarchived] == [2, 4, 1]
        archived = await self.bookmarks.async_list_bookmarks(is_archived=True)
        assert [b["id"] for b in archived] == [3]
        unread = await self.bookmarks.async_list_bookmarks(is_archived=None, unread=True)
        assert {b["id"] for b in unread} == {1, 2, 3}
        page = await self.bookmarks.async_list_bookmarks(limit=1, offset=1)
        assert [b["id"] for b in page] == [4]

    async def test_tag_names_round_trip_as_json(self):
        await self.seed(make_remote_bookmark(1, tag_names=["python", "async"]))

        assert (await self.bookmarks.async_get_bookmark(1))["tag_names"] == ["python", "async"]

    async def test_asset_work_queue_is_keyset_paged(self):
        await self.seed(*(make_remote_bookmark(i) for i in range(1, 6)))
        await self.bookmarks.async_set_asset_sync_flag(2, False)

        first = await self.bookmarks.async_list_needing_asset_sync(limit=2)
        second = await self.bookmarks.async_list_needing_asset_sync(
            after_id=first[-1]["id"], limit=2
        )

        assert [item["id"] for item in first] == [1, 3]
        assert [item["id"] for item in second] == [4, 5]
        assert await self.bookmarks.async_count_outstanding() == (4, 0)

    async def test_reader_writes_interleave_with_page_application(self):
        await self.seed(make_remote_bookmark(1))

        await asyncio.gather(
            self.seed(*(make_remote_bookmark(i) for i in range(2, 50))),
            self.bookmarks.async_save_read_progress(1, 25),
            self.bookmarks.async_mark_read_locally(1),
        )

        stored = await self.bookmarks.async_get_bookmark(1)
        assert stored["read_progress"] == 25.0
        assert stored["needs_read_sync"] is True
        assert len(await self.bookmarks.async_list_bookmarks(limit=100)) == 49


class TestReadingProgressBackup(RepositoryTestCase):
    def export_doc(self, *entries, version: str = "1.0") -> dict:
        return {
            "version": version,
            "export_timestamp": "2025-06-20T08:00:00Z",
            "reading_progress": list(entries),
        }

    async def test_export_lists_opened_bookmarks(self):
        await self.seed(*(make_remote_bookmark(i) for i in range(1, 4)))
        await self.bookmarks.async_save_read_progress(1, 40, reading_mode="readability")
        await self.bookmarks.async_save_read_progress(2, 10)

        export = await self.bookmarks.async_export_reading_progress()

        assert export["version"] == "1.0"
        assert export["export_timestamp"]
        assert [e["bookmark_id"] for e in export["reading_progress"]] == [1, 2]
        first = export["reading_progress"][0]
        assert first["progress"] == 40.0
        assert first["reading_mode"] == "readability"
        assert first["last_read_at"].endswith("Z")

    async def test_import_applies_newer_entries_only(self):
        await self.seed(*(make_remote_bookmark(i) for i in range(1, 4)))
        await self.bookmarks.async_save_read_progress(1, 50)
        later = (utc_now() + timedelta(days=1)).isoformat()

        result = await self.bookmarks.async_import_reading_progress(
            self.export_doc(
                {"bookmark_id": 1, "progress": 90, "last_read_at": BASE_TIME.isoformat()},
                {
                    "bookmark_id": 2,
                    "progress": 30,
                    "reading_mode": "readability",
                    "last_read_at": BASE_TIME.isoformat(),
                    "scroll_position": 1200,
                },
                {"bookmark_id": 3, "progress": 75, "last_read_at": later},
                {"bookmark_id": 99, "progress": 5, "last_read_at": later},
            )
        )

        assert result == ImportResult(imported=2, skipped=1, orphaned=1)
        assert (await self.bookmarks.async_get_bookmark(1))["read_progress"] == 50.0
        second = await self.bookmarks.async_get_bookmark(2)
        assert second["read_progress"] == 30.0
        assert second["reading_mode"] == "readability"
        assert second["last_read_at"] == BASE_TIME.replace(tzinfo=None)
        assert (await self.bookmarks.async_get_bookmark(3))["read_progress"] == 75.0
        assert await self.bookmarks.async_get_bookmark(99) is None

    async def test_reimporting_own_export_changes_nothing(self):
        await self.seed(make_remote_bookmark(1), make_remote_bookmark(2))
        await self.bookmarks.async_save_read_progress(1, 40)
        export = await self.bookmarks.async_export_reading_progress()

        result = await self.bookmarks.async_import_reading_progress(json.dumps(export))

        assert result.to_dict() == {"imported": 0, "skipped": 1, "orphaned": 0}

    async def test_import_rejects_unknown_version(self):
        await self.seed(make_remote_bookmark(1))

        with pytest.raises(ValueError, match="unsupported export version"):
            await self.bookmarks.async_import_reading_progress(
                self.export_doc(
                    {"bookmark_id": 1, "progress": 90, "last_read_at": BASE_TIME.isoformat()},
                    version="2.0",
                )
            )

        assert (await self.bookmarks.async_get_bookmark(1))["read_progress"] == 0.0

    async def test_import_rejects_malformed_entries(self):
        await self.seed(make_remote_bookmark(1))

        with pytest.raises(ValueError):
            await self.bookmarks.async_import_reading_progress(
                self.export_doc({"bookmark_id": 1, "progress": 140, "last_read_at": "yesterday"})
            )
        with pytest.raises(ValueError):
            await self.bookmarks.async_import_reading_progress(b"not json")


class TestAssetRepository(RepositoryTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        await self.seed(make_remote_bookmark(1))

    async def test_new_asset_starts_pending(self):
        assert await self.assets.async_upsert_metadata(1, make_asset(11, 1).to_row()) is True
        assert await self.assets.async_upsert_metadata(1, make_asset(11, 1).to_row()) is False

        [asset] = await self.bookmarks.async_get_assets(1)
        assert asset["status"] == "pending"
        assert "content" not in asset
        assert await self.assets.async_list_incomplete(1) == [11]

    async def test_pending_to_complete(self):
        await self.assets.async_upsert_metadata(1, make_asset(11, 1).to_row())

        assert await self.assets.async_record_content(11, b"<html/>") is True

        assert await self.assets.async_get_content(11) == b"<html/>"
        assert await self.assets.async_list_incomplete(1) == []
        [asset] = await self.bookmarks.async_get_assets(1, include_content=True)
        assert asset["file_size"] == 7
        assert asset["cached_at"] is not None

    async def test_failure_is_retryable(self):
        await self.assets.async_upsert_metadata(1, make_asset(11, 1).to_row())

        assert await self.assets.async_record_failure(11, "HTTP 500") is True
        assert await self.assets.async_list_incomplete(1) == [11]
        assert await self.assets.async_get_content(11) is None

        assert await self.assets.async_record_content(11, b"ok") is True
        [asset] = await self.bookmarks.async_get_assets(1)
        assert asset["status"] == "complete"
        assert asset["last_error"] is None

    async def test_complete_asset_is_immutable(self):
        await self.assets.async_upsert_metadata(1, make_asset(11, 1).to_row())
        await self.assets.async_record_content(11, b"first")

        assert await self.assets.async_record_failure(11, "late failure") is False
        assert await self.assets.async_record_content(11, b"second") is False
        renamed = make_asset(11, 1).to_row() | {"display_name": "renamed.html"}
        await self.assets.async_upsert_metadata(1, renamed)

        [asset] = await self.bookmarks.async_get_assets(1)
        assert asset["status"] == "complete"
        assert asset["display_name"] == "snapshot-11.html"
        assert await self.assets.async_get_content(11) == b"first"
        assert await self.assets.async_count_incomplete() == 0


class TestSyncStateRepository(RepositoryTestCase):
    async def test_first_read_creates_zeroed_row(self):
        row = await self.state.async_get_state(ENGINE_ID)

        assert row["engine_id"] == ENGINE_ID
        assert row["unarchived_offset"] == 0
        assert row["last_sync_at"] is None

    async def test_run_lifecycle(self):
        await self.state.async_get_state(ENGINE_ID)
        await self.state.async_begin_run(ENGINE_ID, mode=SyncMode.FULL, started_at=BASE_TIME)
        await self.state.async_set_offset(ENGINE_ID, "unarchived_offset", 100)
        await self.state.async_record_retry(ENGINE_ID, 2, "Timed out talking to Linkding")

        row = await self.state.async_get_state(ENGINE_ID)
        assert row["sync_mode"] == "full"
        assert row["unarchived_offset"] == 100
        assert row["retry_count"] == 2

        last_sync_at = await self.state.async_complete_run(
            ENGINE_ID, needing_asset_sync=3, needing_read_sync=1
        )

        row = await self.state.async_get_state(ENGINE_ID)
        assert last_sync_at == BASE_TIME.replace(tzinfo=None)
        assert row["last_sync_at"] == last_sync_at
        assert row["run_started_at"] is None
        assert row["sync_mode"] is None
        assert row["unarchived_offset"] == 0
        assert row["retry_count"] == 0
        assert row["last_sync_error"] is None
        assert row["bookmarks_needing_asset_sync"] == 3
        assert row["bookmarks_needing_read_sync"] == 1
        assert row["last_full_sync_at"] is not None
        assert row["last_full_sync_at"] > last_sync_at

    async def test_resumed_full_run_records_completion_for_day_rule(self):
        await self.state.async_get_state(ENGINE_ID)
        await self.state.async_begin_run(
            ENGINE_ID, mode=SyncMode.INCREMENTAL, started_at=BASE_TIME
        )
        await self.state.async_complete_run(ENGINE_ID, needing_asset_sync=0, needing_read_sync=0)

        row = await self.state.async_get_state(ENGINE_ID)
        assert row["last_sync_at"] == BASE_TIME.replace(tzinfo=None)
        assert row["last_full_sync_at"] is None

        started_days_ago = BASE_TIME + timedelta(days=1)
        await self.state.async_begin_run(ENGINE_ID, mode=SyncMode.FULL, started_at=started_days_ago)
        await self.state.async_complete_run(ENGINE_ID, needing_asset_sync=0, needing_read_sync=0)

        cursor = CursorState.from_row(await self.state.async_get_state(ENGINE_ID))
        assert cursor.last_sync_at == started_days_ago
        assert cursor.last_full_sync_at.date() == utc_now().date()
        assert not needs_full_sync(cursor)

    async def test_record_failure_keeps_offsets(self):
        await self.state.async_get_state(ENGINE_ID)
        await self.state.async_set_offset(ENGINE_ID, "unarchived_offset", 100)
        await self.state.async_record_retry(ENGINE_ID, 4, "Timed out talking to Linkding")

        await self.state.async_record_failure(ENGINE_ID, "Timed out", reset_retries=True)

        row = await self.state.async_get_state(ENGINE_ID)
        assert row["unarchived_offset"] == 100
        assert row["retry_count"] == 0
        assert row["last_sync_error"] == "Timed out"

    async def test_begin_run_clears_seen_ids(self):
        await self.state.async_get_state(ENGINE_ID)
        await self.bookmarks.async_apply_remote_bookmarks(
            [make_remote_bookmark(1).to_row()],
            merge=merge_bookmark,
            also=self.state.offset_writer(ENGINE_ID, "unarchived_offset", 1, [1]),
        )
        assert await self.state.async_count_seen_ids(ENGINE_ID) == 1

        await self.state.async_begin_run(ENGINE_ID, mode=SyncMode.FULL, started_at=BASE_TIME)

        assert await self.state.async_count_seen_ids(ENGINE_ID) == 0
        assert (await self.state.async_get_state(ENGINE_ID))["unarchived_offset"] == 0

    async def test_engines_are_isolated(self):
        await self.state.async_get_state("phone")
        await self.state.async_get_state("tablet")
        await self.state.async_set_offset("phone", "archived_offset", 40)

        assert (await self.state.async_get_state("tablet"))["archived_offset"] == 0

    async def test_unknown_offset_field_is_rejected(self):
        await self.state.async_get_state(ENGINE_ID)

        with pytest.raises(ValueError):
            await self.state.async_set_offset(ENGINE_ID, "run_started_at", 1)


class TestLeaseRepository(RepositoryTestCase):
    async def test_acquire_renew_release(self):
        assert await self.leases.async_try_acquire("sync", "a", 60) is True
        assert await self.leases.async_try_acquire("sync", "b", 60) is False
        assert await self.leases.async_renew("sync", "a", 60) is True
        assert await self.leases.async_renew("sync", "b", 60) is False

        active = await self.leases.async_get_active("sync")
        assert active["owner_id"] == "a"

        assert await self.leases.async_release("sync", "b") is False
        assert await self.leases.async_release("sync", "a") is True
        assert await self.leases.async_get_active("sync") is None

    async def test_expired_lease_can_be_taken_over(self):
        assert await self.leases.async_try_acquire("sync", "a", 0.001) is True
        await asyncio.sleep(0.01)

        assert await self.leases.async_get_active("sync") is None
        assert await self.leases.async_try_acquire("sync", "b", 60) is True
        assert (await self.leases.async_get_active("sync"))["owner_id"] == "b"
