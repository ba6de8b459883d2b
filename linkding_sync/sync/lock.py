"""Lock coordinators keeping two execution contexts from syncing at once.

``LeasedLockCoordinator`` stores a lease row in the local store, shared by
every context that opens the same database file. A holder that dies stops
renewing, and its lease expires and becomes reclaimable.
``SoleOwnerLockCoordinator`` is the degraded mode for hosts with no
cross-context primitive: it only excludes callers within this process.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from typing import TYPE_CHECKING

import peewee

from linkding_sync.sync.constants import DEFAULT_LEASE_SECONDS
from linkding_sync.sync.protocols import HeldLock

if TYPE_CHECKING:
    from linkding_sync.infrastructure.persistence.sqlite.repositories import (
        SqliteSyncLeaseRepositoryAdapter,
    )
    from linkding_sync.sync.protocols import HostCapabilities, LockCoordinator

logger = logging.getLogger(__name__)


def new_owner_id() -> str:
    return f"ctx-{uuid.uuid4().hex[:16]}"


class LeasedLockCoordinator:
    supports_cross_context = True

    def __init__(
        self,
        leases: SqliteSyncLeaseRepositoryAdapter,
        *,
        owner_id: str | None = None,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
    ) -> None:
        if lease_seconds <= 0:
            msg = "Lease duration must be positive"
            raise ValueError(msg)
        self._leases = leases
        self.owner_id = owner_id or new_owner_id()
        self.lease_seconds = lease_seconds
        self._renewals: dict[str, asyncio.Task[None]] = {}
        self._lost: set[str] = set()

    @property
    def renew_interval(self) -> float:
        return self.lease_seconds / 3

    async def try_acquire(self, name: str) -> HeldLock | None:
        """Take the lease, or return None when another owner (or this one) holds it."""
        if name in self._renewals:
            return None
        acquired = await self._leases.async_try_acquire(name, self.owner_id, self.lease_seconds)
        if not acquired:
            logger.info(
                "sync_lock_unavailable", extra={"lock_name": name, "owner_id": self.owner_id}
            )
            return None

        self._lost.discard(name)
        self._renewals[name] = asyncio.get_running_loop().create_task(
            self._renew_loop(name), name=f"lease-renewal:{name}"
        )
        logger.info("sync_lock_acquired", extra={"lock_name": name, "owner_id": self.owner_id})
        return HeldLock(name=name, owner_id=self.owner_id)

    async def release(self, held: HeldLock) -> None:
        task = self._renewals.pop(held.name, None)
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        try:
            await self._leases.async_release(held.name, held.owner_id)
        except (peewee.DatabaseError, TimeoutError) as exc:
            # The lease expires on its own once renewals have stopped.
            logger.warning(
                "sync_lock_release_failed",
                extra={"lock_name": held.name, "owner_id": held.owner_id, "error": str(exc)},
            )
            return
        logger.info(
            "sync_lock_released", extra={"lock_name": held.name, "owner_id": held.owner_id}
        )

    async def is_held_elsewhere(self, name: str) -> bool:
        active = await self._leases.async_get_active(name)
        return active is not None and active["owner_id"] != self.owner_id

    def holds(self, held: HeldLock) -> bool:
        return held.name in self._renewals and held.name not in self._lost

    async def _renew_loop(self, name: str) -> None:
        while True:
            await asyncio.sleep(self.renew_interval)
            try:
                renewed = await self._leases.async_renew(name, self.owner_id, self.lease_seconds)
            except (peewee.DatabaseError, TimeoutError) as exc:
                logger.warning(
                    "sync_lock_renew_failed",
                    extra={"lock_name": name, "owner_id": self.owner_id, "error": str(exc)},
                )
                continue
            if not renewed:
                self._lost.add(name)
                logger.error(
                    "sync_lock_lost", extra={"lock_name": name, "owner_id": self.owner_id}
                )
                return


class SoleOwnerLockCoordinator:
    """In-process exclusion only; used when the host offers no shared lock."""

    supports_cross_context = False

    def __init__(self, *, owner_id: str | None = None) -> None:
        self.owner_id = owner_id or new_owner_id()
        self._held: set[str] = set()
        self._warned = False

    async def try_acquire(self, name: str) -> HeldLock | None:
        if not self._warned:
            self._warned = True
            logger.warning(
                "sync_lock_cross_context_unsupported",
                extra={"lock_name": name, "owner_id": self.owner_id},
            )
        if name in self._held:
            return None
        self._held.add(name)
        return HeldLock(name=name, owner_id=self.owner_id)

    async def release(self, held: HeldLock) -> None:
        self._held.discard(held.name)

    async def is_held_elsewhere(self, name: str) -> bool:
        return False

    def holds(self, held: HeldLock) -> bool:
        return held.name in self._held


def create_lock_coordinator(
    capabilities: HostCapabilities,
    leases: SqliteSyncLeaseRepositoryAdapter | None,
    *,
    owner_id: str | None = None,
    lease_seconds: float = DEFAULT_LEASE_SECONDS,
) -> LockCoordinator:
    if capabilities.cross_context_lock and leases is not None:
        return LeasedLockCoordinator(leases, owner_id=owner_id, lease_seconds=lease_seconds)
    return SoleOwnerLockCoordinator(owner_id=owner_id)
