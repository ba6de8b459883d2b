"""Linkding integration adapter."""

from linkding_sync.adapters.linkding.client import (
    LinkdingAPIError,
    LinkdingClient,
    LinkdingClientError,
    LinkdingMalformedResponseError,
)
from linkding_sync.adapters.linkding.models import (
    AssetMeta,
    BookmarkPage,
    RemoteBookmark,
)

__all__ = [
    "AssetMeta",
    "BookmarkPage",
    "LinkdingAPIError",
    "LinkdingClient",
    "LinkdingClientError",
    "LinkdingMalformedResponseError",
    "RemoteBookmark",
]
