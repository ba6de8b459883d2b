"""Versioned JSON format for exporting and importing local reading progress."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from linkding_sync.core.time_utils import ensure_datetime

EXPORT_VERSION = "1.0"


class ReadingProgressEntry(BaseModel):
    """Reading state of one bookmark."""

    bookmark_id: int
    progress: float = Field(ge=0.0, le=100.0)
    reading_mode: Literal["original", "readability"] = "original"
    last_read_at: datetime

    model_config = {"extra": "ignore"}

    @field_validator("last_read_at", mode="after")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_datetime(value) or value


class ReadingProgressExport(BaseModel):
    version: str = EXPORT_VERSION
    export_timestamp: datetime
    reading_progress: list[ReadingProgressEntry] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @field_validator("version")
    @classmethod
    def _known_version(cls, value: str) -> str:
        if value != EXPORT_VERSION:
            msg = f"unsupported export version {value!r} (expected {EXPORT_VERSION!r})"
            raise ValueError(msg)
        return value


def parse_reading_export(data: dict[str, Any] | str | bytes) -> ReadingProgressExport:
    """Validate an export document.

    Raises:
        ValueError: If the document is malformed or has an unknown version
    """
    if isinstance(data, str | bytes):
        return ReadingProgressExport.model_validate_json(data)
    return ReadingProgressExport.model_validate(data)


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    orphaned: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)
