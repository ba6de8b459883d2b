"""In-memory run state and the durable cursor snapshot it is restored from."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from linkding_sync.core.time_utils import ensure_datetime, utc_now
from linkding_sync.db.models import SyncMode
from linkding_sync.sync.messages import SyncStatus
from linkding_sync.sync.states import SyncPhase


@dataclass(frozen=True)
class CursorState:
    """Typed view of the ``sync_cursor_state`` row."""

    engine_id: str
    unarchived_offset: int = 0
    archived_offset: int = 0
    bookmarks_needing_asset_sync: int = 0
    bookmarks_needing_read_sync: int = 0
    retry_count: int = 0
    last_sync_error: str | None = None
    last_sync_at: datetime | None = None
    run_started_at: datetime | None = None
    last_full_sync_at: datetime | None = None
    sync_mode: SyncMode | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> CursorState:
        mode = row.get("sync_mode")
        return cls(
            engine_id=str(row["engine_id"]),
            unarchived_offset=int(row.get("unarchived_offset") or 0),
            archived_offset=int(row.get("archived_offset") or 0),
            bookmarks_needing_asset_sync=int(row.get("bookmarks_needing_asset_sync") or 0),
            bookmarks_needing_read_sync=int(row.get("bookmarks_needing_read_sync") or 0),
            retry_count=int(row.get("retry_count") or 0),
            last_sync_error=row.get("last_sync_error"),
            last_sync_at=ensure_datetime(row.get("last_sync_at")),
            run_started_at=ensure_datetime(row.get("run_started_at")),
            last_full_sync_at=ensure_datetime(row.get("last_full_sync_at")),
            sync_mode=SyncMode(mode) if mode else None,
        )

    @property
    def run_in_progress(self) -> bool:
        """A bookmark phase was started and never completed."""
        return self.run_started_at is not None

    @property
    def interrupted(self) -> bool:
        """Work is outstanding from an earlier run that did not finish."""
        return (
            self.run_in_progress
            or self.unarchived_offset > 0
            or self.archived_offset > 0
            or self.bookmarks_needing_asset_sync > 0
            or self.bookmarks_needing_read_sync > 0
        )

    @property
    def modified_since(self) -> datetime | None:
        """Incremental filter for the run in progress; None means fetch everything."""
        if self.sync_mode is SyncMode.INCREMENTAL:
            return self.last_sync_at
        return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "engine_id": self.engine_id,
            "unarchived_offset": self.unarchived_offset,
            "archived_offset": self.archived_offset,
            "bookmarks_needing_asset_sync": self.bookmarks_needing_asset_sync,
            "bookmarks_needing_read_sync": self.bookmarks_needing_read_sync,
            "retry_count": self.retry_count,
            "last_sync_error": self.last_sync_error,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "run_started_at": self.run_started_at.isoformat() if self.run_started_at else None,
            "last_full_sync_at": (
                self.last_full_sync_at.isoformat() if self.last_full_sync_at else None
            ),
            "sync_mode": self.sync_mode.value if self.sync_mode else None,
        }


def needs_full_sync(
    cursor: CursorState, *, now: datetime | None = None, forced: bool = False
) -> bool:
    """Full sync on request, on first sync, and until one has completed this UTC day.

    Stores written before ``last_full_sync_at`` existed fall back to ``last_sync_at``.
    """
    if forced or cursor.last_sync_at is None:
        return True
    last_full = cursor.last_full_sync_at or cursor.last_sync_at
    today = (now or utc_now()).date()
    return last_full.date() < today


@dataclass
class SyncSession:
    """Live state of one run. Owned by the scheduler, never persisted."""

    correlation_id: str
    phase: SyncPhase = SyncPhase.BOOKMARKS
    status: SyncStatus = SyncStatus.STARTING
    current: int = 0
    total: int = 0
    processed: int = 0
    partial_failures: int = 0
    touched_ids: set[int] = field(default_factory=set)
    started_at: datetime = field(default_factory=utc_now)
    _monotonic_start: float = field(default_factory=time.monotonic, repr=False)

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self._monotonic_start

    def enter_phase(self, phase: SyncPhase, *, current: int = 0, total: int = 0) -> None:
        self.phase = phase
        self.current = current
        self.total = total

    def snapshot(self) -> SyncSession:
        return replace(self, touched_ids=set(self.touched_ids))

    def as_dict(self) -> dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "phase": self.phase.value,
            "status": self.status.value,
            "current": self.current,
            "total": self.total,
            "processed": self.processed,
            "partial_failures": self.partial_failures,
            "touched": len(self.touched_ids),
            "started_at": self.started_at.isoformat(),
        }


@dataclass(frozen=True)
class SyncSummary:
    """Outcome of a run that reached COMPLETE."""

    success: bool
    processed: int
    touched_ids: frozenset[int]
    partial_failures: int
    duration_seconds: float
    last_sync_at: datetime | None = None

    @classmethod
    def from_session(cls, session: SyncSession, last_sync_at: datetime | None) -> SyncSummary:
        return cls(
            success=True,
            processed=session.processed,
            touched_ids=frozenset(session.touched_ids),
            partial_failures=session.partial_failures,
            duration_seconds=session.elapsed_seconds,
            last_sync_at=last_sync_at,
        )
