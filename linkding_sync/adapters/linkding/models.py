"""Pydantic models for the Linkding REST API."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from linkding_sync.core.time_utils import to_storage


class RemoteBookmark(BaseModel):
    """Bookmark as returned by ``/api/bookmarks/``."""

    id: int
    url: str
    title: str = ""
    description: str = ""
    notes: str = ""
    website_title: str | None = None
    website_description: str | None = None
    web_archive_snapshot_url: str | None = None
    favicon_url: str | None = None
    preview_image_url: str | None = None
    is_archived: bool = False
    unread: bool = False
    shared: bool = False
    tag_names: list[str] = Field(default_factory=list)
    date_added: datetime | None = None
    date_modified: datetime | None = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("title", "description", "notes", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    def to_row(self) -> dict[str, Any]:
        """Column values for the ``bookmarks`` table (naive UTC datetimes)."""
        row = self.model_dump()
        row["date_added"] = to_storage(self.date_added)
        row["date_modified"] = to_storage(self.date_modified)
        return row


class BookmarkPage(BaseModel):
    """One page of a limit/offset bookmark listing."""

    count: int = 0
    next: str | None = None
    previous: str | None = None
    results: list[RemoteBookmark] = Field(default_factory=list)

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @property
    def has_next(self) -> bool:
        return self.next is not None


class AssetMeta(BaseModel):
    """Entry of a bookmark's asset index."""

    id: int
    bookmark: int | None = None
    asset_type: str = ""
    content_type: str = ""
    display_name: str = ""
    file_size: int | None = None
    status: str = ""
    date_created: datetime | None = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("asset_type", "content_type", "display_name", "status", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def is_complete(self) -> bool:
        return self.status == "complete"

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "asset_type": self.asset_type,
            "content_type": self.content_type,
            "display_name": self.display_name,
            "file_size": self.file_size,
            "date_created": to_storage(self.date_created),
        }


class AssetPage(BaseModel):
    count: int = 0
    next: str | None = None
    previous: str | None = None
    results: list[AssetMeta] = Field(default_factory=list)

    model_config = {"populate_by_name": True, "extra": "ignore"}


class MarkReadRequest(BaseModel):
    """Body of the PATCH that uploads a local read-status change."""

    unread: bool = False
