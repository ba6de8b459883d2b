"""Protocol definitions (ports) for the sync engine.

The scheduler only talks to these, so the engine can be driven by an in-memory
fake remote in tests and by the httpx client in production.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager
    from datetime import datetime

    from linkding_sync.adapters.linkding.models import AssetMeta, BookmarkPage, RemoteBookmark
    from linkding_sync.config import HostCapabilitiesConfig


class RemoteBookmarkClient(Protocol):
    async def list_unarchived(
        self, limit: int, offset: int, modified_since: datetime | None = None
    ) -> BookmarkPage: ...

    async def list_archived(
        self, limit: int, offset: int, modified_since: datetime | None = None
    ) -> BookmarkPage: ...

    async def list_asset_index(self, bookmark_id: int) -> list[AssetMeta]: ...

    async def download_asset(self, bookmark_id: int, asset_id: int) -> bytes: ...

    async def mark_read(self, bookmark_id: int) -> RemoteBookmark: ...

    async def health_check(self) -> bool: ...


class RemoteClientFactory(Protocol):
    def __call__(self) -> AbstractAsyncContextManager[RemoteBookmarkClient]: ...


@dataclass(frozen=True)
class HeldLock:
    name: str
    owner_id: str


class LockCoordinator(Protocol):
    supports_cross_context: bool

    async def try_acquire(self, name: str) -> HeldLock | None: ...

    async def release(self, held: HeldLock) -> None: ...

    async def is_held_elsewhere(self, name: str) -> bool: ...

    def holds(self, held: HeldLock) -> bool: ...


@dataclass(frozen=True)
class HostCapabilities:
    """What the host environment offers; a missing capability degrades the engine."""

    cross_context_lock: bool = True
    background_execution: bool = True
    periodic_trigger: bool = True

    @classmethod
    def from_config(cls, cfg: HostCapabilitiesConfig) -> HostCapabilities:
        return cls(
            cross_context_lock=cfg.cross_context_lock,
            background_execution=cfg.background_execution,
            periodic_trigger=cfg.periodic_trigger,
        )
