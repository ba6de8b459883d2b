"""SQLite implementation of the sync lease repository.

A lease is a row keyed by lock name. Whoever owns an unexpired row holds the
lock; an expired row can be taken over by anyone.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from linkding_sync.core.time_utils import to_storage, utc_now
from linkding_sync.db.models import SyncLease, model_to_dict
from linkding_sync.infrastructure.persistence.sqlite.base import SqliteBaseRepository


class SqliteSyncLeaseRepositoryAdapter(SqliteBaseRepository):
    """Adapter for SyncLease database operations."""

    async def async_try_acquire(self, name: str, owner_id: str, lease_seconds: float) -> bool:
        """Take the lease if it is free or expired.

        Insert-or-take-over and the ownership check run in one transaction.

        Returns:
            True if ``owner_id`` holds the lease afterwards
        """

        def _acquire() -> bool:
            now = to_storage(utc_now())
            expires_at = to_storage(utc_now() + timedelta(seconds=lease_seconds))
            (
                SyncLease.insert(
                    name=name, owner_id=owner_id, acquired_at=now, expires_at=expires_at
                )
                .on_conflict(
                    conflict_target=[SyncLease.name],
                    update={
                        SyncLease.owner_id: owner_id,
                        SyncLease.acquired_at: now,
                        SyncLease.expires_at: expires_at,
                    },
                    where=(SyncLease.expires_at < now),
                )
                .execute()
            )
            holder = SyncLease.get_or_none(SyncLease.name == name)
            return holder is not None and holder.owner_id == owner_id

        return await self._transaction(_acquire, operation_name="acquire_sync_lease")

    async def async_renew(self, name: str, owner_id: str, lease_seconds: float) -> bool:
        """Push the expiry forward. False means the lease was lost."""

        def _renew() -> int:
            expires_at = to_storage(utc_now() + timedelta(seconds=lease_seconds))
            return (
                SyncLease.update(expires_at=expires_at)
                .where(SyncLease.name == name, SyncLease.owner_id == owner_id)
                .execute()
            )

        return bool(await self._execute(_renew, operation_name="renew_sync_lease"))

    async def async_release(self, name: str, owner_id: str) -> bool:
        def _release() -> int:
            return (
                SyncLease.delete()
                .where(SyncLease.name == name, SyncLease.owner_id == owner_id)
                .execute()
            )

        return bool(await self._execute(_release, operation_name="release_sync_lease"))

    async def async_get_active(self, name: str) -> dict[str, Any] | None:
        """The unexpired lease row for ``name``, if any."""

        def _get() -> dict[str, Any] | None:
            now = to_storage(utc_now())
            return model_to_dict(
                SyncLease.get_or_none(SyncLease.name == name, SyncLease.expires_at >= now)
            )

        return await self._execute(_get, operation_name="get_active_sync_lease", read_only=True)
