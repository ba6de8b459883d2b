"""SQLite implementation of the asset repository."""

from __future__ import annotations

from typing import Any

from linkding_sync.core.time_utils import to_storage, utc_now
from linkding_sync.db.models import Asset, AssetStatus
from linkding_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository

_METADATA_FIELDS = ("asset_type", "content_type", "display_name", "file_size", "date_created")


class SqliteAssetRepositoryAdapter(SqliteBaseRepository):
    """Adapter for Asset database operations.

    A ``complete`` asset is immutable: neither metadata refreshes nor failure
    records touch it.
    """

    async def async_upsert_metadata(self, bookmark_id: int, meta: dict[str, Any]) -> bool:
        """Insert a ``pending`` asset if unseen, otherwise refresh its metadata.

        Returns:
            True if the asset was inserted
        """

        def _upsert() -> bool:
            existing = Asset.get_or_none(Asset.id == meta["id"])
            if existing is None:
                Asset.insert(
                    id=meta["id"],
                    bookmark=bookmark_id,
                    status=AssetStatus.PENDING.value,
                    **{name: meta.get(name) for name in _METADATA_FIELDS if name in meta},
                ).execute()
                return True
            if existing.status != AssetStatus.COMPLETE.value:
                updates = {name: meta[name] for name in _METADATA_FIELDS if name in meta}
                if updates:
                    Asset.update(**updates).where(Asset.id == existing.id).execute()
            return False

        return await self._transaction(_upsert, operation_name="upsert_asset_metadata")

    async def async_list_incomplete(self, bookmark_id: int) -> list[int]:
        def _query() -> list[int]:
            return [
                row.id
                for row in Asset.select(Asset.id)
                .where(Asset.bookmark == bookmark_id, Asset.status != AssetStatus.COMPLETE.value)
                .order_by(Asset.id)
            ]

        return await self._execute(_query, operation_name="list_incomplete_assets", read_only=True)

    async def async_record_content(self, asset_id: int, data: bytes) -> bool:
        """Store downloaded bytes and flip the asset to ``complete`` in one UPDATE."""

        def _update() -> int:
            return (
                Asset.update(
                    content=data,
                    status=AssetStatus.COMPLETE.value,
                    file_size=len(data),
                    cached_at=to_storage(utc_now()),
                    last_error=None,
                )
                .where(Asset.id == asset_id, Asset.status != AssetStatus.COMPLETE.value)
                .execute()
            )

        return bool(await self._execute(_update, operation_name="record_asset_content"))

    async def async_record_failure(self, asset_id: int, error: str) -> bool:
        def _update() -> int:
            return (
                Asset.update(status=AssetStatus.FAILURE.value, last_error=error[:1000])
                .where(Asset.id == asset_id, Asset.status != AssetStatus.COMPLETE.value)
                .execute()
            )

        return bool(await self._execute(_update, operation_name="record_asset_failure"))

    async def async_get_content(self, asset_id: int) -> bytes | None:
        """Cached bytes of a ``complete`` asset, for the reader."""

        def _get() -> bytes | None:
            row = Asset.get_or_none(
                Asset.id == asset_id, Asset.status == AssetStatus.COMPLETE.value
            )
            if row is None or row.content is None:
                return None
            return bytes(row.content)

        return await self._execute(_get, operation_name="get_asset_content", read_only=True)

    async def async_count_incomplete(self) -> int:
        def _query() -> int:
            return Asset.select().where(Asset.status != AssetStatus.COMPLETE.value).count()

        return await self._execute(_query, operation_name="count_incomplete_assets", read_only=True)
