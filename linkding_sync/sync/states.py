"""Engine states, sync phases and the transition table between states."""

from __future__ import annotations

import logging
from enum import StrEnum

from linkding_sync.sync.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class EngineState(StrEnum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    BOOKMARKS = "bookmarks"
    ARCHIVED_BOOKMARKS = "archived_bookmarks"
    ASSETS = "assets"
    READ_STATUS = "read_status"
    COMPLETE = "complete"
    PAUSED = "paused"
    FAILED = "failed"


class SyncPhase(StrEnum):
    BOOKMARKS = "bookmarks"
    ARCHIVED_BOOKMARKS = "archived-bookmarks"
    ASSETS = "assets"
    READ_STATUS = "read-status"
    COMPLETE = "complete"


PHASE_ORDER: tuple[SyncPhase, ...] = (
    SyncPhase.BOOKMARKS,
    SyncPhase.ARCHIVED_BOOKMARKS,
    SyncPhase.ASSETS,
    SyncPhase.READ_STATUS,
)

PHASE_STATES: dict[SyncPhase, EngineState] = {
    SyncPhase.BOOKMARKS: EngineState.BOOKMARKS,
    SyncPhase.ARCHIVED_BOOKMARKS: EngineState.ARCHIVED_BOOKMARKS,
    SyncPhase.ASSETS: EngineState.ASSETS,
    SyncPhase.READ_STATUS: EngineState.READ_STATUS,
    SyncPhase.COMPLETE: EngineState.COMPLETE,
}

RUNNING_STATES = frozenset(
    {
        EngineState.BOOKMARKS,
        EngineState.ARCHIVED_BOOKMARKS,
        EngineState.ASSETS,
        EngineState.READ_STATUS,
    }
)

# IDLE is reached directly from a running phase only through cancellation.
_ANY_RUNNING_EXIT = frozenset({EngineState.PAUSED, EngineState.FAILED, EngineState.IDLE})

TRANSITIONS: dict[EngineState, frozenset[EngineState]] = {
    EngineState.IDLE: frozenset({EngineState.ACQUIRING}),
    EngineState.ACQUIRING: frozenset({EngineState.IDLE, EngineState.FAILED, *RUNNING_STATES}),
    EngineState.BOOKMARKS: frozenset({EngineState.ARCHIVED_BOOKMARKS, *_ANY_RUNNING_EXIT}),
    EngineState.ARCHIVED_BOOKMARKS: frozenset({EngineState.ASSETS, *_ANY_RUNNING_EXIT}),
    EngineState.ASSETS: frozenset({EngineState.READ_STATUS, *_ANY_RUNNING_EXIT}),
    EngineState.READ_STATUS: frozenset({EngineState.COMPLETE, *_ANY_RUNNING_EXIT}),
    # A paused run resumes into any phase, or ends (cancel) from the pause.
    EngineState.PAUSED: frozenset({*RUNNING_STATES, EngineState.FAILED, EngineState.IDLE}),
    EngineState.COMPLETE: frozenset({EngineState.IDLE}),
    EngineState.FAILED: frozenset({EngineState.IDLE}),
}


class EngineStateMachine:
    """Current engine state guarded by ``TRANSITIONS``."""

    def __init__(self, initial: EngineState = EngineState.IDLE) -> None:
        self._state = initial

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state in RUNNING_STATES

    @property
    def is_active(self) -> bool:
        """True while a session exists (anything but IDLE)."""
        return self._state is not EngineState.IDLE

    def can_transition(self, target: EngineState) -> bool:
        return target in TRANSITIONS[self._state]

    def transition(self, target: EngineState, *, correlation_id: str | None = None) -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(self._state.value, target.value)
        logger.debug(
            "sync_state_transition",
            extra={
                "from_state": self._state.value,
                "state": target.value,
                "correlation_id": correlation_id,
            },
        )
        self._state = target
