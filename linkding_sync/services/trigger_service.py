"""Sync triggers: periodic timer, host lifecycle events and manual requests."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    import asyncio
    from datetime import datetime

    from linkding_sync.config import AppConfig
    from linkding_sync.sync.protocols import HostCapabilities
    from linkding_sync.sync.scheduler import PhaseScheduler, SyncOutcome

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "linkding_sync"


class LifecycleEvent(StrEnum):
    STARTUP = "startup"
    FOREGROUND = "foreground"
    BACKGROUND = "background"


class SyncTriggerService:
    """Starts sync runs on a timer and in response to host lifecycle events."""

    def __init__(
        self,
        cfg: AppConfig,
        scheduler: PhaseScheduler,
        capabilities: HostCapabilities,
    ) -> None:
        """Initialize trigger service.

        Args:
            cfg: Application configuration
            scheduler: Phase scheduler the triggers drive
            capabilities: Host capabilities (periodic trigger, background execution)
        """
        self.cfg = cfg
        self.scheduler = scheduler
        self.capabilities = capabilities
        self._job_scheduler: AsyncIOScheduler | None = None
        self._started = False

    async def start(self) -> None:
        """Start the interval job when the host supports it and auto-sync is on."""
        if self._started:
            logger.warning("trigger_service_already_started")
            return

        self._job_scheduler = AsyncIOScheduler()

        if self.capabilities.periodic_trigger and self.cfg.sync.auto_sync_enabled:
            self._job_scheduler.add_job(
                self._run_scheduled_sync,
                trigger=IntervalTrigger(minutes=self.cfg.sync.interval_minutes),
                id=SYNC_JOB_ID,
                name="Linkding Bookmark Sync",
                replace_existing=True,
                max_instances=1,
            )
            logger.info(
                "trigger_sync_job_added",
                extra={"job_id": SYNC_JOB_ID, "interval_minutes": self.cfg.sync.interval_minutes},
            )
        else:
            logger.info(
                "trigger_sync_job_skipped",
                extra={
                    "periodic_trigger": self.capabilities.periodic_trigger,
                    "auto_sync_enabled": self.cfg.sync.auto_sync_enabled,
                },
            )

        self._job_scheduler.start()
        self._started = True
        logger.info("trigger_service_started")

    async def stop(self) -> None:
        if self._job_scheduler and self._started:
            self._job_scheduler.shutdown(wait=False)
            self._job_scheduler = None
            self._started = False
            logger.info("trigger_service_stopped")

    async def _run_scheduled_sync(self) -> None:
        outcome = await self.scheduler.request_sync()
        logger.info("scheduled_sync_finished", extra={"outcome": outcome.value})

    async def trigger_now(self, full_sync: bool = False) -> SyncOutcome:
        """Manual trigger: run a sync now and wait for it to end."""
        logger.info("manual_sync_requested", extra={"full_sync": full_sync})
        return await self.scheduler.request_sync(full_sync)

    async def on_lifecycle(self, event: LifecycleEvent | str) -> asyncio.Task[SyncOutcome] | bool:
        """React to a host lifecycle event.

        STARTUP starts a run in the background when an earlier run was
        interrupted. FOREGROUND resumes a paused run. BACKGROUND pauses the run
        when the host cannot keep working in the background.

        Returns:
            The started run task, or whether the event changed anything
        """
        event = LifecycleEvent(event)
        logger.info(
            "sync_lifecycle_event",
            extra={"event": event.value, "state": self.scheduler.state.value},
        )

        if event is LifecycleEvent.STARTUP:
            if self.scheduler.is_active:
                return False
            snapshot = await self.scheduler.status_snapshot()
            if not snapshot["interrupted"]:
                return False
            logger.info("sync_interrupted_run_detected", extra={"cursor": snapshot["cursor"]})
            return self.scheduler.start_sync()

        if event is LifecycleEvent.FOREGROUND:
            return self.scheduler.resume()

        if self.capabilities.background_execution:
            return False
        return self.scheduler.pause()

    def get_next_run_time(self) -> datetime | None:
        if not self._job_scheduler or not self._started:
            return None
        job = self._job_scheduler.get_job(SYNC_JOB_ID)
        return job.next_run_time if job else None

    @property
    def is_running(self) -> bool:
        return self._started and self._job_scheduler is not None
