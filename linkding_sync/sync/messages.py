"""Typed control and observer messages exchanged with the sync engine.

Inbound messages drive the scheduler; outbound messages are what observers
(UI, CLI, logs) receive through the progress reporter. All of them serialize
to JSON with a ``type`` discriminator.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from linkding_sync.core.time_utils import utc_now


class SyncStatus(StrEnum):
    IDLE = "idle"
    STARTING = "starting"
    SYNCING = "syncing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INTERRUPTED = "interrupted"


class _Message(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore", "frozen": True}


# -- inbound --------------------------------------------------------------


class RequestSync(_Message):
    type: Literal["REQUEST_SYNC"] = "REQUEST_SYNC"
    full_sync: bool = False


class PauseSync(_Message):
    type: Literal["PAUSE_SYNC"] = "PAUSE_SYNC"


class ResumeSync(_Message):
    type: Literal["RESUME_SYNC"] = "RESUME_SYNC"


class CancelSync(_Message):
    type: Literal["CANCEL_SYNC"] = "CANCEL_SYNC"
    reason: str = "user_requested"


InboundMessage = Annotated[
    RequestSync | PauseSync | ResumeSync | CancelSync, Field(discriminator="type")
]


# -- outbound -------------------------------------------------------------


class _Outbound(_Message):
    correlation_id: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class SyncProgress(_Outbound):
    type: Literal["SYNC_PROGRESS"] = "SYNC_PROGRESS"
    phase: str
    current: int
    total: int


class SyncComplete(_Outbound):
    type: Literal["SYNC_COMPLETE"] = "SYNC_COMPLETE"
    success: bool = True
    processed: int = 0
    touched_ids: list[int] = Field(default_factory=list)
    partial_failures: int = 0
    duration_seconds: float = 0.0


class SyncError(_Outbound):
    type: Literal["SYNC_ERROR"] = "SYNC_ERROR"
    message: str
    recoverable: bool = False
    progress_retained: bool = True


class SyncStatusMessage(_Outbound):
    type: Literal["SYNC_STATUS"] = "SYNC_STATUS"
    status: SyncStatus


class SyncCancelled(_Outbound):
    type: Literal["SYNC_CANCELLED"] = "SYNC_CANCELLED"
    processed: int = 0
    reason: str = ""


class LockUnavailable(_Outbound):
    type: Literal["LOCK_UNAVAILABLE"] = "LOCK_UNAVAILABLE"
    lock_name: str
    held_elsewhere: bool = True


class Keepalive(_Outbound):
    type: Literal["KEEPALIVE"] = "KEEPALIVE"
    phase: str | None = None


OutboundMessage = Annotated[
    SyncProgress
    | SyncComplete
    | SyncError
    | SyncStatusMessage
    | SyncCancelled
    | LockUnavailable
    | Keepalive,
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)
_outbound_adapter: TypeAdapter[OutboundMessage] = TypeAdapter(OutboundMessage)


def parse_inbound(payload: dict | str | bytes) -> InboundMessage:
    """Validate a control message from a dict or a JSON document."""
    if isinstance(payload, str | bytes):
        return _inbound_adapter.validate_json(payload)
    return _inbound_adapter.validate_python(payload)


def parse_outbound(payload: dict | str | bytes) -> OutboundMessage:
    if isinstance(payload, str | bytes):
        return _outbound_adapter.validate_json(payload)
    return _outbound_adapter.validate_python(payload)
