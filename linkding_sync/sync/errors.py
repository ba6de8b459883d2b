"""Sync engine exceptions.

Every error that ends a run derives from ``SyncEngineError``. The message is
what the reader UI shows, so keep it human-readable.
"""

from __future__ import annotations

from typing import Any


class SyncEngineError(Exception):
    """Base exception for all sync engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class PermanentSyncError(SyncEngineError):
    """Raised when retrying cannot help (bad credentials, rejected request, bad payload)."""


class PersistenceSyncError(SyncEngineError):
    """Raised when the local store fails; fatal to the current run."""


class RetriesExhaustedError(SyncEngineError):
    """Raised when a transient error persisted through every allowed retry."""

    def __init__(self, message: str, *, attempts: int, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.attempts = attempts


class SyncCancelledError(SyncEngineError):
    """Raised inside the run loop when a cancel request is honoured."""


class InvalidTransitionError(SyncEngineError):
    """Raised when the engine is asked to move between states it cannot connect."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot transition sync engine from {current} to {target}",
            {"from": current, "to": target},
        )
        self.current = current
        self.target = target
