"""Phase scheduler: runs one sync session through its phases.

A session goes ``IDLE -> ACQUIRING -> BOOKMARKS -> ARCHIVED_BOOKMARKS ->
ASSETS -> READ_STATUS -> COMPLETE`` and back to ``IDLE``. Every batch is
persisted together with its cursor, so a crash loses at most the batch in
flight. Pause and cancel requests are honoured between batches only.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypeVar

import peewee

from linkding_sync.core.logging_utils import generate_correlation_id
from linkding_sync.core.time_utils import utc_now
from linkding_sync.db.models import SyncMode
from linkding_sync.sync.constants import (
    ASSET_WORK_PAGE_SIZE,
    DEFAULT_KEEPALIVE_INTERVAL_SECONDS,
    DEFAULT_LOCK_NAME,
    DEFAULT_PAGE_SIZE,
)
from linkding_sync.sync.errors import (
    PermanentSyncError,
    PersistenceSyncError,
    RetriesExhaustedError,
    SyncCancelledError,
    SyncEngineError,
)
from linkding_sync.sync.keepalive import KeepaliveGuard
from linkding_sync.sync.messages import (
    CancelSync,
    PauseSync,
    RequestSync,
    ResumeSync,
    SyncStatus,
    parse_inbound,
)
from linkding_sync.sync.retry import ErrorKind, GiveUp, RetryPolicy, describe_error
from linkding_sync.sync.session import CursorState, SyncSession, SyncSummary, needs_full_sync
from linkding_sync.sync.states import PHASE_STATES, EngineState, EngineStateMachine, SyncPhase

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from linkding_sync.infrastructure.persistence.sqlite.repositories import (
        SqliteBookmarkRepositoryAdapter,
        SqliteSyncStateRepositoryAdapter,
    )
    from linkding_sync.sync.assets import AssetDownloader
    from linkding_sync.sync.messages import InboundMessage
    from linkding_sync.sync.progress import ProgressReporter
    from linkding_sync.sync.protocols import (
        HeldLock,
        LockCoordinator,
        RemoteBookmarkClient,
        RemoteClientFactory,
    )
    from linkding_sync.sync.read_status import ReadStatusUploader
    from linkding_sync.sync.reconciler import LocalStoreReconciler

logger = logging.getLogger(__name__)

T = TypeVar("T")

_OFFSET_FIELDS = {
    SyncPhase.BOOKMARKS: "unarchived_offset",
    SyncPhase.ARCHIVED_BOOKMARKS: "archived_offset",
}


class SyncOutcome(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    LOCK_UNAVAILABLE = "lock_unavailable"
    ALREADY_RUNNING = "already_running"


class PhaseScheduler:
    """Drives sync sessions for one engine id.

    Only one session exists per scheduler; a second ``request_sync`` while one
    is active returns ``ALREADY_RUNNING``. Other execution contexts are kept
    out by the lock coordinator.
    """

    def __init__(
        self,
        *,
        engine_id: str,
        client_factory: RemoteClientFactory,
        lock: LockCoordinator,
        reconciler: LocalStoreReconciler,
        bookmarks: SqliteBookmarkRepositoryAdapter,
        state: SqliteSyncStateRepositoryAdapter,
        asset_downloader: AssetDownloader,
        read_uploader: ReadStatusUploader,
        reporter: ProgressReporter,
        retry_policy: RetryPolicy | None = None,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL_SECONDS,
        keepalive_enabled: bool = True,
        lock_name: str = DEFAULT_LOCK_NAME,
        page_size: int = DEFAULT_PAGE_SIZE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if page_size < 1:
            msg = "Page size must be at least 1"
            raise ValueError(msg)
        self.engine_id = engine_id
        self.lock_name = lock_name
        self.page_size = page_size
        self._client_factory = client_factory
        self._lock = lock
        self._reconciler = reconciler
        self._bookmarks = bookmarks
        self._state = state
        self._assets = asset_downloader
        self._reads = read_uploader
        self.reporter = reporter
        self.retry_policy = retry_policy or RetryPolicy()
        self.keepalive = KeepaliveGuard(
            interval=keepalive_interval,
            on_tick=self._on_keepalive_tick,
            enabled=keepalive_enabled,
        )
        self._sleep = sleep

        self._machine = EngineStateMachine()
        self._session: SyncSession | None = None
        self._held: HeldLock | None = None
        self._retry_count = 0
        self._pause_requested = False
        self._cancel_reason: str | None = None
        self._wake = asyncio.Event()
        self._cancelled = asyncio.Event()
        self._run_task: asyncio.Task[SyncOutcome] | None = None
        self.last_summary: SyncSummary | None = None

    # -- public surface ---------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._machine.state

    @property
    def session(self) -> SyncSession | None:
        """Copy of the live session, or None when idle."""
        return self._session.snapshot() if self._session is not None else None

    @property
    def is_active(self) -> bool:
        return self._machine.is_active

    @property
    def is_paused(self) -> bool:
        return self._machine.state is EngineState.PAUSED

    async def request_sync(self, full_sync: bool = False) -> SyncOutcome:
        """Run one session to its end (completed, failed, cancelled or lock unavailable)."""
        if self._machine.is_active:
            logger.info(
                "sync_already_running",
                extra={
                    "state": self._machine.state.value,
                    "correlation_id": self._session.correlation_id if self._session else None,
                },
            )
            return SyncOutcome.ALREADY_RUNNING

        correlation_id = generate_correlation_id()
        self.reporter.correlation_id = correlation_id
        self.keepalive.correlation_id = correlation_id
        self._pause_requested = False
        self._cancel_reason = None
        self._wake.clear()
        self._cancelled.clear()
        self._machine.transition(EngineState.ACQUIRING, correlation_id=correlation_id)

        try:
            held = await self._lock.try_acquire(self.lock_name)
        except (peewee.DatabaseError, TimeoutError) as exc:
            logger.exception(
                "sync_lock_acquire_failed",
                extra={"lock_name": self.lock_name, "correlation_id": correlation_id},
            )
            self._machine.transition(EngineState.FAILED, correlation_id=correlation_id)
            self.reporter.report_error(describe_error(exc), recoverable=True)
            self.reporter.report_status(SyncStatus.FAILED)
            self._machine.transition(EngineState.IDLE, correlation_id=correlation_id)
            return SyncOutcome.FAILED

        if held is None:
            held_elsewhere = await self._held_elsewhere()
            self._machine.transition(EngineState.IDLE, correlation_id=correlation_id)
            logger.info(
                "sync_lock_unavailable_skipping",
                extra={
                    "lock_name": self.lock_name,
                    "held_elsewhere": held_elsewhere,
                    "correlation_id": correlation_id,
                },
            )
            self.reporter.report_lock_unavailable(self.lock_name, held_elsewhere=held_elsewhere)
            return SyncOutcome.LOCK_UNAVAILABLE

        self._held = held
        self._session = SyncSession(correlation_id=correlation_id)
        try:
            return await self._run(self._session, full_sync=full_sync)
        finally:
            await self._teardown(held, correlation_id)

    def start_sync(self, full_sync: bool = False) -> asyncio.Task[SyncOutcome]:
        """Run ``request_sync`` as a background task and return it."""
        task = asyncio.get_running_loop().create_task(
            self.request_sync(full_sync), name="linkding-sync-run"
        )
        self._run_task = task
        return task

    async def wait_for_run(self) -> SyncOutcome | None:
        """Await the task started by ``start_sync``, if any."""
        task = self._run_task
        if task is None:
            return None
        return await task

    def pause(self) -> bool:
        """Request a pause at the next batch boundary."""
        if not self._machine.is_active or self._machine.state is EngineState.PAUSED:
            return False
        self._pause_requested = True
        logger.info("sync_pause_requested", extra={"correlation_id": self._correlation_id})
        return True

    def resume(self) -> bool:
        if not self._pause_requested:
            return False
        self._pause_requested = False
        self._wake.set()
        logger.info("sync_resume_requested", extra={"correlation_id": self._correlation_id})
        return True

    def cancel(self, reason: str = "user_requested") -> bool:
        """Request cancellation at the next batch boundary (or immediately while paused)."""
        if not self._machine.is_active:
            return False
        self._cancel_reason = reason
        self._cancelled.set()
        self._wake.set()
        logger.info(
            "sync_cancel_requested",
            extra={"reason": reason, "correlation_id": self._correlation_id},
        )
        return True

    async def handle_message(
        self, message: InboundMessage | dict[str, Any] | str | bytes
    ) -> SyncOutcome | asyncio.Task[SyncOutcome] | bool:
        """Dispatch an inbound control message.

        ``REQUEST_SYNC`` starts a background run and returns its task (or
        ``ALREADY_RUNNING``); the other messages return whether they applied.
        """
        if not isinstance(message, RequestSync | PauseSync | ResumeSync | CancelSync):
            message = parse_inbound(message)

        if isinstance(message, RequestSync):
            if self._machine.is_active:
                return SyncOutcome.ALREADY_RUNNING
            return self.start_sync(message.full_sync)
        if isinstance(message, PauseSync):
            return self.pause()
        if isinstance(message, ResumeSync):
            return self.resume()
        return self.cancel(message.reason)

    async def status_snapshot(self) -> dict[str, Any]:
        """Engine state, live session, cursor and lock view for a status screen."""
        cursor = CursorState.from_row(await self._state.async_get_state(self.engine_id))
        session = self.session
        if session is not None:
            status = session.status
        elif cursor.interrupted:
            status = SyncStatus.INTERRUPTED
        else:
            status = SyncStatus.IDLE

        return {
            "engine_id": self.engine_id,
            "state": self._machine.state.value,
            "status": status.value,
            "session": session.as_dict() if session is not None else None,
            "cursor": cursor.as_dict(),
            "interrupted": cursor.interrupted and session is None,
            "lock_held_elsewhere": await self._held_elsewhere(),
            "cross_context_lock": self._lock.supports_cross_context,
        }

    # -- run loop ---------------------------------------------------------

    @property
    def _correlation_id(self) -> str | None:
        return self._session.correlation_id if self._session is not None else None

    async def _run(self, session: SyncSession, *, full_sync: bool) -> SyncOutcome:
        cid = session.correlation_id
        try:
            cursor = await self._prepare_cursor(full_sync=full_sync, correlation_id=cid)
            self._retry_count = cursor.retry_count
            first_phase = (
                SyncPhase.ARCHIVED_BOOKMARKS
                if cursor.run_in_progress and cursor.archived_offset > 0
                else SyncPhase.BOOKMARKS
            )

            self.reporter.report_status(SyncStatus.STARTING)
            self._machine.transition(PHASE_STATES[first_phase], correlation_id=cid)
            session.status = SyncStatus.SYNCING
            self.keepalive.start()
            self.reporter.report_status(SyncStatus.SYNCING)

            async with self._client_factory() as client:
                if first_phase is SyncPhase.BOOKMARKS:
                    await self._run_bookmark_phase(client, SyncPhase.BOOKMARKS, cursor, session)
                    self._enter(SyncPhase.ARCHIVED_BOOKMARKS, session)
                await self._run_bookmark_phase(
                    client, SyncPhase.ARCHIVED_BOOKMARKS, cursor, session
                )
                if cursor.sync_mode is SyncMode.FULL:
                    await self._cleanup_orphans(session)

                self._enter(SyncPhase.ASSETS, session)
                await self._run_asset_phase(client, session)

                self._enter(SyncPhase.READ_STATUS, session)
                await self._run_read_phase(client, session)

            return await self._complete(session)

        except SyncCancelledError as exc:
            return await self._on_cancelled(session, exc.message)
        except SyncEngineError as exc:
            return await self._on_failed(session, exc)

    async def _prepare_cursor(self, *, full_sync: bool, correlation_id: str) -> CursorState:
        """Restore the cursor, or start a new run with its mode frozen."""
        cursor = CursorState.from_row(
            await self._store(self._state.async_get_state, self.engine_id)
        )
        restart_as_full = full_sync and cursor.sync_mode is SyncMode.INCREMENTAL
        resumed = cursor.run_in_progress and not restart_as_full

        if not resumed:
            full = needs_full_sync(cursor, forced=full_sync)
            mode = SyncMode.FULL if full else SyncMode.INCREMENTAL
            await self._store(
                self._state.async_begin_run, self.engine_id, mode=mode, started_at=utc_now()
            )
            cursor = CursorState.from_row(
                await self._store(self._state.async_get_state, self.engine_id)
            )

        logger.info(
            "sync_run_started",
            extra={
                "engine_id": self.engine_id,
                "mode": cursor.sync_mode.value if cursor.sync_mode else None,
                "resumed": resumed,
                "unarchived_offset": cursor.unarchived_offset,
                "archived_offset": cursor.archived_offset,
                "modified_since": cursor.modified_since.isoformat()
                if cursor.modified_since
                else None,
                "correlation_id": correlation_id,
            },
        )
        return cursor

    def _enter(self, phase: SyncPhase, session: SyncSession) -> None:
        self._machine.transition(PHASE_STATES[phase], correlation_id=session.correlation_id)
        session.enter_phase(phase)

    async def _run_bookmark_phase(
        self,
        client: RemoteBookmarkClient,
        phase: SyncPhase,
        cursor: CursorState,
        session: SyncSession,
    ) -> None:
        offset_field = _OFFSET_FIELDS[phase]
        offset = getattr(cursor, offset_field)
        fetch = client.list_unarchived if phase is SyncPhase.BOOKMARKS else client.list_archived
        modified_since = cursor.modified_since
        track_ids = cursor.sync_mode is SyncMode.FULL
        session.enter_phase(phase, current=offset)

        while True:
            await self._checkpoint(session)

            async def _batch(start: int = offset) -> tuple[Any, Any]:
                page = await fetch(self.page_size, start, modified_since)
                result = await self._reconciler.apply_page(
                    page.results,
                    offset_field=offset_field,
                    new_offset=start + len(page.results),
                    track_ids=track_ids,
                )
                return page, result

            page, result = await self._with_retry(_batch, session)
            fetched = len(page.results)
            offset += fetched
            session.processed += fetched
            session.touched_ids |= result.touched_ids
            session.current = offset
            session.total = max(page.count, offset)
            self.reporter.report(phase.value, session.current, session.total)
            logger.debug(
                "sync_batch_applied",
                extra={
                    "phase": phase.value,
                    "offset": offset,
                    "batch_size": fetched,
                    "total": session.total,
                    "touched": len(result.touched_ids),
                    "correlation_id": session.correlation_id,
                },
            )

            if fetched == 0 or not page.has_next:
                return

    async def _cleanup_orphans(self, session: SyncSession) -> None:
        deleted = await self._with_retry(self._reconciler.delete_orphans, session)
        logger.info(
            "sync_orphans_deleted",
            extra={"deleted": deleted, "correlation_id": session.correlation_id},
        )

    async def _run_asset_phase(self, client: RemoteBookmarkClient, session: SyncSession) -> None:
        needing_assets, _ = await self._with_retry(
            self._bookmarks.async_count_outstanding, session
        )
        session.enter_phase(SyncPhase.ASSETS, total=needing_assets)
        self.reporter.report(SyncPhase.ASSETS.value, 0, needing_assets)

        after_id = 0
        while True:
            await self._checkpoint(session)
            batch = await self._with_retry(
                functools.partial(
                    self._bookmarks.async_list_needing_asset_sync,
                    after_id=after_id,
                    limit=ASSET_WORK_PAGE_SIZE,
                ),
                session,
            )
            if not batch:
                break

            for item in batch:
                await self._checkpoint(session)
                result = await self._with_retry(
                    functools.partial(
                        self._assets.sync_bookmark,
                        client,
                        item["id"],
                        archived=bool(item["is_archived"]),
                        correlation_id=session.correlation_id,
                    ),
                    session,
                )
                after_id = item["id"]
                session.current += 1
                session.total = max(session.total, session.current)
                session.partial_failures += result.partial_failures
                if result.downloaded:
                    session.touched_ids.add(item["id"])
                self.reporter.report(SyncPhase.ASSETS.value, session.current, session.total)

        await self._refresh_outstanding(session)

    async def _run_read_phase(self, client: RemoteBookmarkClient, session: SyncSession) -> None:
        pending = await self._with_retry(self._bookmarks.async_list_needing_read_sync, session)
        session.enter_phase(SyncPhase.READ_STATUS, total=len(pending))
        self.reporter.report(SyncPhase.READ_STATUS.value, 0, len(pending))

        for bookmark_id in pending:
            await self._checkpoint(session)
            cleared = await self._with_retry(
                functools.partial(
                    self._reads.upload,
                    client,
                    bookmark_id,
                    correlation_id=session.correlation_id,
                ),
                session,
            )
            session.current += 1
            if cleared:
                session.touched_ids.add(bookmark_id)
            else:
                session.partial_failures += 1
            self.reporter.report(SyncPhase.READ_STATUS.value, session.current, session.total)

        await self._refresh_outstanding(session)

    async def _refresh_outstanding(self, session: SyncSession) -> None:
        needing_assets, needing_reads = await self._with_retry(
            self._bookmarks.async_count_outstanding, session
        )
        await self._store(
            self._state.async_update_outstanding,
            self.engine_id,
            needing_asset_sync=needing_assets,
            needing_read_sync=needing_reads,
        )

    # -- batch control ----------------------------------------------------

    async def _with_retry(self, operation: Callable[[], Awaitable[T]], session: SyncSession) -> T:
        """Run one batch, retrying transient failures with the retry policy.

        The retry count is persisted before each sleep and reset by the next
        successful batch.
        """
        while True:
            try:
                result = await operation()
            except SyncEngineError:
                raise
            except Exception as exc:
                attempt = self._retry_count + 1
                decision = self.retry_policy.decide(exc, attempt)
                if isinstance(decision, GiveUp):
                    raise self._give_up_error(decision, attempt) from exc

                self._retry_count = attempt
                await self._store(
                    self._state.async_record_retry,
                    self.engine_id,
                    attempt,
                    describe_error(exc),
                )
                logger.warning(
                    "sync_batch_retrying",
                    extra={
                        "phase": session.phase.value,
                        "attempt": attempt,
                        "delay_seconds": decision.delay,
                        "error": describe_error(exc),
                        "correlation_id": session.correlation_id,
                    },
                )
                await self._interruptible_sleep(decision.delay)
                await self._checkpoint(session)
                continue

            if self._retry_count:
                self._retry_count = 0
                await self._store(self._state.async_reset_retry, self.engine_id)
            return result

    @staticmethod
    def _give_up_error(decision: GiveUp, attempt: int) -> SyncEngineError:
        if decision.kind is ErrorKind.PERSISTENCE:
            return PersistenceSyncError(decision.reason)
        if decision.kind is ErrorKind.PERMANENT:
            return PermanentSyncError(decision.reason)
        return RetriesExhaustedError(decision.reason, attempts=attempt - 1)

    async def _store(self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run a cursor write outside a batch; store failures end the run."""
        try:
            return await operation(*args, **kwargs)
        except (peewee.DatabaseError, TimeoutError) as exc:
            raise PersistenceSyncError(describe_error(exc)) from exc

    async def _interruptible_sleep(self, delay: float) -> None:
        """Backoff sleep that a cancel request cuts short."""
        sleeper = asyncio.ensure_future(self._sleep(delay))
        waker = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait({sleeper, waker}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            waker.cancel()

    async def _checkpoint(self, session: SyncSession) -> None:
        """Batch boundary: honour cancel and pause, and check the lock is still ours."""
        if self._cancel_reason is not None:
            raise SyncCancelledError(self._cancel_reason)
        if self._held is not None and not self._lock.holds(self._held):
            msg = "Sync lock was lost to another context"
            raise SyncEngineError(msg)
        if not self._pause_requested:
            return

        resume_state = self._machine.state
        self._machine.transition(EngineState.PAUSED, correlation_id=session.correlation_id)
        session.status = SyncStatus.PAUSED
        await self.keepalive.stop()
        self.reporter.report_status(SyncStatus.PAUSED)
        logger.info(
            "sync_paused",
            extra={
                "phase": session.phase.value,
                "current": session.current,
                "correlation_id": session.correlation_id,
            },
        )

        while self._pause_requested and self._cancel_reason is None:
            self._wake.clear()
            await self._wake.wait()

        if self._cancel_reason is not None:
            raise SyncCancelledError(self._cancel_reason)

        self._machine.transition(resume_state, correlation_id=session.correlation_id)
        session.status = SyncStatus.SYNCING
        self.keepalive.start()
        self.reporter.report_status(SyncStatus.SYNCING)
        logger.info(
            "sync_resumed",
            extra={"phase": session.phase.value, "correlation_id": session.correlation_id},
        )

    def _on_keepalive_tick(self) -> None:
        session = self._session
        self.reporter.report_keepalive(session.phase.value if session is not None else None)

    # -- terminal states --------------------------------------------------

    async def _complete(self, session: SyncSession) -> SyncOutcome:
        needing_assets, needing_reads = await self._store(self._bookmarks.async_count_outstanding)
        last_sync_at = await self._store(
            self._state.async_complete_run,
            self.engine_id,
            needing_asset_sync=needing_assets,
            needing_read_sync=needing_reads,
        )
        self._retry_count = 0
        await self.keepalive.stop()
        self._machine.transition(EngineState.COMPLETE, correlation_id=session.correlation_id)
        session.enter_phase(SyncPhase.COMPLETE, current=session.processed, total=session.processed)
        session.status = SyncStatus.COMPLETED

        summary = SyncSummary.from_session(session, last_sync_at)
        self.last_summary = summary
        self.reporter.report_complete(summary)
        self.reporter.report_status(SyncStatus.COMPLETED)
        logger.info(
            "sync_run_completed",
            extra={
                "processed": summary.processed,
                "touched": len(summary.touched_ids),
                "partial_failures": summary.partial_failures,
                "needing_asset_sync": needing_assets,
                "needing_read_sync": needing_reads,
                "duration_seconds": round(summary.duration_seconds, 3),
                "correlation_id": session.correlation_id,
            },
        )
        return SyncOutcome.COMPLETED

    async def _on_failed(self, session: SyncSession, exc: SyncEngineError) -> SyncOutcome:
        await self.keepalive.stop()
        # A failed run ends its backoff chain.
        self._retry_count = 0
        if self._machine.can_transition(EngineState.FAILED):
            self._machine.transition(EngineState.FAILED, correlation_id=session.correlation_id)
        session.status = SyncStatus.FAILED

        try:
            await self._state.async_record_failure(
                self.engine_id, exc.message, reset_retries=True
            )
        except (peewee.DatabaseError, TimeoutError) as store_exc:
            logger.warning(
                "sync_failure_not_persisted",
                extra={"error": str(store_exc), "correlation_id": session.correlation_id},
            )

        logger.error(
            "sync_run_failed",
            extra={
                "phase": session.phase.value,
                "error": exc.message,
                "error_type": type(exc).__name__,
                "processed": session.processed,
                "correlation_id": session.correlation_id,
            },
        )
        self.reporter.report_error(
            exc.message,
            recoverable=not isinstance(exc, PermanentSyncError),
            progress_retained=True,
        )
        self.reporter.report_status(SyncStatus.FAILED)
        return SyncOutcome.FAILED

    async def _on_cancelled(self, session: SyncSession, reason: str) -> SyncOutcome:
        await self.keepalive.stop()
        self._machine.transition(EngineState.IDLE, correlation_id=session.correlation_id)
        session.status = SyncStatus.CANCELLED
        logger.info(
            "sync_run_cancelled",
            extra={
                "phase": session.phase.value,
                "processed": session.processed,
                "reason": reason,
                "correlation_id": session.correlation_id,
            },
        )
        self.reporter.report_cancelled(session.processed, reason)
        self.reporter.report_status(SyncStatus.CANCELLED)
        return SyncOutcome.CANCELLED

    async def _teardown(self, held: HeldLock, correlation_id: str) -> None:
        await self.keepalive.stop()
        try:
            await self._lock.release(held)
        finally:
            self._held = None
            self._session = None
            self._pause_requested = False
            self._cancel_reason = None
            if self._machine.state is not EngineState.IDLE:
                self._machine.transition(EngineState.IDLE, correlation_id=correlation_id)

    async def _held_elsewhere(self) -> bool:
        try:
            return await self._lock.is_held_elsewhere(self.lock_name)
        except (peewee.DatabaseError, TimeoutError):
            logger.warning("sync_lock_probe_failed", extra={"lock_name": self.lock_name})
            return False
