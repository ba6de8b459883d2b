"""Async reader/writer lock guarding the local store."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class AsyncRWLock:
    """Many concurrent readers or a single writer.

    A pending writer blocks new readers, so a stream of UI reads cannot starve
    the sync engine's page transactions.
    """

    def __init__(self) -> None:
        self._readers = 0
        self._writer = asyncio.Lock()
        self._state = asyncio.Condition()
        self._writer_waiting = asyncio.Event()
        self._writer_waiting.set()

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def write_locked(self) -> bool:
        return self._writer.locked()

    async def acquire_read(self) -> None:
        await self._writer_waiting.wait()
        async with self._state:
            self._readers += 1

    async def release_read(self) -> None:
        async with self._state:
            self._readers -= 1
            if self._readers == 0:
                self._state.notify_all()

    async def acquire_write(self) -> None:
        await self._writer.acquire()
        self._writer_waiting.clear()
        try:
            async with self._state:
                await self._state.wait_for(lambda: self._readers == 0)
        except BaseException:
            await self.release_write()
            raise

    async def release_write(self) -> None:
        self._writer_waiting.set()
        self._writer.release()

    @asynccontextmanager
    async def read_lock(self) -> AsyncIterator[None]:
        await self.acquire_read()
        try:
            yield
        finally:
            await self.release_read()

    @asynccontextmanager
    async def write_lock(self) -> AsyncIterator[None]:
        await self.acquire_write()
        try:
            yield
        finally:
            await self.release_write()
