from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def ensure_datetime(value: Any) -> datetime | None:
    """Convert a value to an aware UTC datetime.

    SQLite may return datetime columns as strings depending on how they were inserted,
    and Linkding sends ISO-8601 strings with a ``Z`` suffix. Naive values are assumed UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if isinstance(value, str):
        if not value:
            return None
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("ensure_datetime_parse_failed", extra={"value": repr(value)})
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=UTC)
        return dt.astimezone(UTC)
    logger.warning(
        "ensure_datetime_unexpected_type",
        extra={"type": type(value).__name__, "value": repr(value)},
    )
    return None


def to_storage(value: datetime | None) -> datetime | None:
    """Naive UTC datetime for SQLite columns so stored values sort chronologically."""
    if value is None:
        return None
    aware = ensure_datetime(value)
    if aware is None:
        return None
    return aware.replace(tzinfo=None)


def to_iso(value: datetime | None) -> str | None:
    """ISO-8601 string (UTC, ``Z`` suffix) as expected by the ``modified_since`` filter."""
    aware = ensure_datetime(value)
    if aware is None:
        return None
    return aware.isoformat().replace("+00:00", "Z")
