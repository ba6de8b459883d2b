"""Peewee ORM models for the local bookmark store."""

from __future__ import annotations

import datetime as _dt
from enum import StrEnum
from typing import Any

import peewee
from playhouse.sqlite_ext import JSONField

# A proxy that will be initialised with the concrete database instance at runtime.
database_proxy: peewee.Database = peewee.DatabaseProxy()


class AssetStatus(StrEnum):
    PENDING = "pending"
    COMPLETE = "complete"
    FAILURE = "failure"


class ReadingMode(StrEnum):
    ORIGINAL = "original"
    READABILITY = "readability"


class SyncMode(StrEnum):
    FULL = "full"
    INCREMENTAL = "incremental"


def _utcnow() -> _dt.datetime:
    """Naive UTC now; every datetime column stores naive UTC."""
    return _dt.datetime.now(_dt.UTC).replace(tzinfo=None)


class BaseModel(peewee.Model):
    """Base Peewee model bound to the lazily initialised database proxy."""

    def save(self, *args: Any, **kwargs: Any) -> int:
        if hasattr(self, "updated_at"):
            self.updated_at = _utcnow()
        return super().save(*args, **kwargs)

    class Meta:
        database = database_proxy
        legacy_table_names = False


class Bookmark(BaseModel):
    # Remote-owned fields, overwritten only by a strictly newer date_modified.
    id = peewee.IntegerField(primary_key=True)
    url = peewee.TextField()
    title = peewee.TextField(default="")
    description = peewee.TextField(default="")
    notes = peewee.TextField(default="")
    website_title = peewee.TextField(null=True)
    website_description = peewee.TextField(null=True)
    web_archive_snapshot_url = peewee.TextField(null=True)
    favicon_url = peewee.TextField(null=True)
    preview_image_url = peewee.TextField(null=True)
    is_archived = peewee.BooleanField(default=False)
    unread = peewee.BooleanField(default=True)
    shared = peewee.BooleanField(default=False)
    tag_names = JSONField(default=list)
    date_added = peewee.DateTimeField(null=True)
    date_modified = peewee.DateTimeField(null=True)

    # Local-only annotations.
    read_progress = peewee.FloatField(default=0.0)
    reading_mode = peewee.TextField(default=ReadingMode.ORIGINAL.value)
    last_read_at = peewee.DateTimeField(null=True)
    needs_read_sync = peewee.BooleanField(default=False, index=True)

    needs_asset_sync = peewee.BooleanField(default=False, index=True)
    synced_at = peewee.DateTimeField(null=True)

    class Meta:
        table_name = "bookmarks"


class Asset(BaseModel):
    id = peewee.IntegerField(primary_key=True)
    bookmark = peewee.ForeignKeyField(Bookmark, backref="assets", on_delete="CASCADE")
    asset_type = peewee.TextField(default="")
    content_type = peewee.TextField(default="")
    display_name = peewee.TextField(default="")
    file_size = peewee.IntegerField(null=True)
    status = peewee.TextField(default=AssetStatus.PENDING.value, index=True)
    date_created = peewee.DateTimeField(null=True)
    content = peewee.BlobField(null=True)
    cached_at = peewee.DateTimeField(null=True)
    last_error = peewee.TextField(null=True)

    class Meta:
        table_name = "assets"


class SyncCursorState(BaseModel):
    """Durable sync progress, one row per engine id."""

    engine_id = peewee.TextField(primary_key=True)
    unarchived_offset = peewee.IntegerField(default=0)
    archived_offset = peewee.IntegerField(default=0)
    bookmarks_needing_asset_sync = peewee.IntegerField(default=0)
    bookmarks_needing_read_sync = peewee.IntegerField(default=0)
    retry_count = peewee.IntegerField(default=0)
    last_sync_error = peewee.TextField(null=True)
    last_sync_at = peewee.DateTimeField(null=True)
    run_started_at = peewee.DateTimeField(null=True)
    last_full_sync_at = peewee.DateTimeField(null=True)
    sync_mode = peewee.TextField(null=True)
    updated_at = peewee.DateTimeField(default=_utcnow)

    class Meta:
        table_name = "sync_cursor_state"


class SyncedRemoteId(BaseModel):
    """Bookmark ids seen by the current full run, used for orphan cleanup."""

    engine_id = peewee.TextField()
    bookmark_id = peewee.IntegerField()

    class Meta:
        table_name = "synced_remote_ids"
        primary_key = peewee.CompositeKey("engine_id", "bookmark_id")


class SyncLease(BaseModel):
    name = peewee.TextField(primary_key=True)
    owner_id = peewee.TextField()
    acquired_at = peewee.DateTimeField(default=_utcnow)
    expires_at = peewee.DateTimeField()

    class Meta:
        table_name = "sync_leases"


ALL_MODELS: tuple[type[BaseModel], ...] = (
    Bookmark,
    Asset,
    SyncCursorState,
    SyncedRemoteId,
    SyncLease,
)


def model_to_dict(
    model: BaseModel | None, *, exclude: tuple[str, ...] = ()
) -> dict[str, Any] | None:
    """Convert a Peewee model instance to a plain dictionary.

    Foreign keys are returned as raw ids so no extra query is issued.
    """
    if model is None:
        return None
    data: dict[str, Any] = {}
    for field in model._meta.sorted_fields:
        if field.name in exclude:
            continue
        if isinstance(field, peewee.ForeignKeyField):
            data[field.name] = model.__data__.get(field.name)
        else:
            data[field.name] = getattr(model, field.name)
    return data
