"""Bounded fetch and write slots with backpressure."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from ...infrastructure.observability import get_logger
from .errors import SlotTimeout

logger = get_logger(__name__)


class ConcurrencyController:
    """Two slot pools sharing one condition variable.

    At most ``max_fetch`` fetch/transform operations and at most
    ``max_write`` persistence batches run at once. ``max_write`` defaults to
    twice ``max_fetch``. A target releases its fetch slot before it waits for
    a write slot, so other targets keep fetching while it persists. New fetch
    slots are also withheld while every write slot is busy, which stops
    readers from piling up records that cannot be written yet.

    Every acquire waits at most ``acquire_timeout`` seconds and then raises
    :class:`SlotTimeout`. Callers only ask for a slot when they are ready to
    use it (the orchestrator runs one worker per fetch slot), so a timeout
    means in-flight work stalled, not that a target sat in a queue.
    """

    def __init__(
        self,
        max_fetch: int,
        max_write: int | None = None,
        *,
        acquire_timeout: float | None = 600.0,
    ) -> None:
        if max_fetch < 1:
            raise ValueError("max_fetch must be at least 1")
        self.max_fetch = max_fetch
        self.max_write = max_write if max_write is not None else 2 * max_fetch
        if self.max_write < 1:
            raise ValueError("max_write must be at least 1")
        self.acquire_timeout = acquire_timeout
        self._condition = asyncio.Condition()
        self.fetch_in_flight = 0
        self.write_in_flight = 0
        self.peak_fetch = 0
        self.peak_write = 0

    def _fetch_available(self) -> bool:
        return self.fetch_in_flight < self.max_fetch and self.write_in_flight < self.max_write

    def _write_available(self) -> bool:
        return self.write_in_flight < self.max_write

    async def _wait(self, predicate: Callable[[], bool], kind: str) -> None:
        # Caller holds the condition lock.
        try:
            await asyncio.wait_for(self._condition.wait_for(predicate), self.acquire_timeout)
        except asyncio.TimeoutError as exc:
            raise SlotTimeout(
                f"No {kind} slot available within {self.acquire_timeout}s "
                f"(fetch={self.fetch_in_flight}/{self.max_fetch}, "
                f"write={self.write_in_flight}/{self.max_write})"
            ) from exc

    async def acquire_fetch(self) -> None:
        async with self._condition:
            await self._wait(self._fetch_available, "fetch")
            self.fetch_in_flight += 1
            self.peak_fetch = max(self.peak_fetch, self.fetch_in_flight)

    async def release_fetch(self) -> None:
        async with self._condition:
            self.fetch_in_flight = max(0, self.fetch_in_flight - 1)
            self._condition.notify_all()

    async def acquire_write(self) -> None:
        async with self._condition:
            await self._wait(self._write_available, "write")
            self.write_in_flight += 1
            self.peak_write = max(self.peak_write, self.write_in_flight)

    async def release_write(self) -> None:
        async with self._condition:
            self.write_in_flight = max(0, self.write_in_flight - 1)
            self._condition.notify_all()

    @asynccontextmanager
    async def fetch_slot(self) -> AsyncIterator[None]:
        await self.acquire_fetch()
        try:
            yield
        finally:
            await self.release_fetch()

    @asynccontextmanager
    async def write_slot(self) -> AsyncIterator[None]:
        await self.acquire_write()
        try:
            yield
        finally:
            await self.release_write()

    def snapshot(self) -> dict[str, int]:
        return {
            "fetch_in_flight": self.fetch_in_flight,
            "write_in_flight": self.write_in_flight,
            "max_fetch": self.max_fetch,
            "max_write": self.max_write,
            "peak_fetch": self.peak_fetch,
            "peak_write": self.peak_write,
        }
