"""Progress reporter: fans sync messages out to observers.

The reporter sits on the engine's hot path, so it never raises and never
awaits an observer. Plain callables run inline; if an observer returns an
awaitable it is scheduled as a task and its failure is only logged.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Any

from linkding_sync.sync.messages import (
    Keepalive,
    LockUnavailable,
    SyncCancelled,
    SyncComplete,
    SyncError,
    SyncProgress,
    SyncStatus,
    SyncStatusMessage,
)

if TYPE_CHECKING:
    from linkding_sync.sync.messages import OutboundMessage
    from linkding_sync.sync.session import SyncSummary

logger = logging.getLogger(__name__)

Observer = Callable[["OutboundMessage"], Awaitable[None] | None]


class ProgressReporter:
    """Observer fan-out for outbound sync messages."""

    def __init__(self, observers: Iterable[Observer] = ()) -> None:
        self._observers: list[Observer] = list(observers)
        self._pending: set[asyncio.Task[Any]] = set()
        self.correlation_id: str | None = None

    def subscribe(self, observer: Observer) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        try:
            self._observers.remove(observer)
        except ValueError:
            logger.debug("sync_observer_not_found", extra={"observer": repr(observer)})

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def publish(self, message: OutboundMessage) -> None:
        for observer in list(self._observers):
            try:
                result = observer(message)
            except Exception as exc:
                logger.exception(
                    "sync_observer_failed",
                    extra={
                        "message_type": message.type,
                        "observer": getattr(observer, "__name__", repr(observer)),
                        "error": str(exc),
                        "correlation_id": message.correlation_id,
                    },
                )
                continue
            if inspect.isawaitable(result):
                self._schedule(result, message)

    def _schedule(self, awaitable: Awaitable[Any], message: OutboundMessage) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning(
                "sync_observer_dropped_no_loop",
                extra={"message_type": message.type, "correlation_id": message.correlation_id},
            )
            return

        task = loop.create_task(_await(awaitable))
        self._pending.add(task)
        task.add_done_callback(lambda t: self._on_observer_done(t, message))

    def _on_observer_done(self, task: asyncio.Task[Any], message: OutboundMessage) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "sync_observer_failed",
                exc_info=exc,
                extra={
                    "message_type": message.type,
                    "error": str(exc),
                    "correlation_id": message.correlation_id,
                },
            )

    async def drain(self) -> None:
        """Wait for scheduled observer tasks (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -- typed helpers ----------------------------------------------------

    def report(self, phase: str, current: int, total: int) -> None:
        self.publish(
            SyncProgress(
                phase=phase, current=current, total=total, correlation_id=self.correlation_id
            )
        )

    def report_error(
        self, message: str, *, recoverable: bool = False, progress_retained: bool = True
    ) -> None:
        self.publish(
            SyncError(
                message=message,
                recoverable=recoverable,
                progress_retained=progress_retained,
                correlation_id=self.correlation_id,
            )
        )

    def report_complete(self, summary: SyncSummary) -> None:
        self.publish(
            SyncComplete(
                success=summary.success,
                processed=summary.processed,
                touched_ids=sorted(summary.touched_ids),
                partial_failures=summary.partial_failures,
                duration_seconds=round(summary.duration_seconds, 3),
                correlation_id=self.correlation_id,
            )
        )

    def report_status(self, status: SyncStatus) -> None:
        self.publish(SyncStatusMessage(status=status, correlation_id=self.correlation_id))

    def report_cancelled(self, processed: int, reason: str = "") -> None:
        self.publish(
            SyncCancelled(processed=processed, reason=reason, correlation_id=self.correlation_id)
        )

    def report_lock_unavailable(self, lock_name: str, *, held_elsewhere: bool) -> None:
        self.publish(
            LockUnavailable(
                lock_name=lock_name,
                held_elsewhere=held_elsewhere,
                correlation_id=self.correlation_id,
            )
        )

    def report_keepalive(self, phase: str | None) -> None:
        self.publish(Keepalive(phase=phase, correlation_id=self.correlation_id))


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable
