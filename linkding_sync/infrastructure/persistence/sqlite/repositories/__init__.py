"""SQLite repository adapters for the local bookmark store."""

from linkding_sync.infrastructure.persistence.sqlite.repositories.asset_repository import (
    SqliteAssetRepositoryAdapter,
)
from linkding_sync.infrastructure.persistence.sqlite.repositories.bookmark_repository import (
    SqliteBookmarkRepositoryAdapter,
)
from linkding_sync.infrastructure.persistence.sqlite.repositories.lease_repository import (
    SqliteSyncLeaseRepositoryAdapter,
)
from linkding_sync.infrastructure.persistence.sqlite.repositories.sync_state_repository import (
    SqliteSyncStateRepositoryAdapter,
)

__all__ = [
    "SqliteAssetRepositoryAdapter",
    "SqliteBookmarkRepositoryAdapter",
    "SqliteSyncLeaseRepositoryAdapter",
    "SqliteSyncStateRepositoryAdapter",
]
