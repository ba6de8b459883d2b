"""Keepalive guard: periodic heartbeat while a run is in its active phases.

Hosts that suspend idle background contexts (mobile, browser workers) use the
heartbeat to keep the sync context alive. ``start`` and ``stop`` are
idempotent and ``stop`` always awaits the task so no tick fires after it returns.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

from linkding_sync.sync.constants import DEFAULT_KEEPALIVE_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class KeepaliveGuard:
    def __init__(
        self,
        *,
        interval: float = DEFAULT_KEEPALIVE_INTERVAL_SECONDS,
        on_tick: Callable[[], None] | None = None,
        enabled: bool = True,
    ) -> None:
        if interval <= 0:
            msg = "Keepalive interval must be positive"
            raise ValueError(msg)
        self.interval = interval
        self.enabled = enabled
        self._on_tick = on_tick
        self._task: asyncio.Task[None] | None = None
        self._ticks = 0
        self.correlation_id: str | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def ticks(self) -> int:
        return self._ticks

    def start(self) -> None:
        if not self.enabled or self.active:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="linkding-sync-keepalive"
        )
        logger.debug("sync_keepalive_started", extra={"correlation_id": self.correlation_id})

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug(
            "sync_keepalive_stopped",
            extra={"correlation_id": self.correlation_id, "ticks": self._ticks},
        )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self._ticks += 1
            logger.debug(
                "sync_keepalive_heartbeat",
                extra={"correlation_id": self.correlation_id, "ticks": self._ticks},
            )
            if self._on_tick is None:
                continue
            try:
                self._on_tick()
            except Exception:
                logger.exception(
                    "sync_keepalive_tick_failed", extra={"correlation_id": self.correlation_id}
                )
