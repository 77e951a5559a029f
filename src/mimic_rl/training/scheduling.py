"""
Cooperative scheduling primitives.

Training shares one asyncio event loop with the host application.
HostYielder hands control back to the loop at phase boundaries, and
PhaseBarrier keeps the single writer (the trainer) from running while
any collector is reading the shared networks.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

logger = logging.getLogger(__name__)


class HostYielder:
    """
    Yields to the event loop, adapting to host visibility.

    While the host is visible each yield sleeps for one frame so the host
    can paint; while hidden it yields for a single loop turn only.
    """

    def __init__(self,
                 is_visible: Optional[Callable[[], bool]] = None,
                 frame_interval: float = 1.0 / 60.0):
        """
        Args:
            is_visible: Returns True while the host is foregrounded;
                None means a headless host
            frame_interval: Sleep used per yield while visible, in seconds
        """
        self.is_visible = is_visible
        self.frame_interval = frame_interval
        self.yield_count = 0

    def host_visible(self) -> bool:
        return bool(self.is_visible and self.is_visible())

    async def yield_now(self):
        self.yield_count += 1
        if self.host_visible():
            await asyncio.sleep(self.frame_interval)
        else:
            await asyncio.sleep(0)


class PhaseBarrier:
    """
    Readers/writer barrier for the shared networks.

    Any number of readers may hold the read phase together. The write
    phase waits for all readers to leave and blocks new readers until it
    is released. Waiting writers take priority over new readers.
    """

    def __init__(self):
        self._condition = asyncio.Condition()
        self._readers = 0
        self._writer_active = False
        self._writers_waiting = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def writer_active(self) -> bool:
        return self._writer_active

    @asynccontextmanager
    async def read_phase(self) -> AsyncIterator[None]:
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self._writer_active and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._condition:
                self._readers -= 1
                self._condition.notify_all()

    @asynccontextmanager
    async def write_phase(self) -> AsyncIterator[None]:
        async with self._condition:
            self._writers_waiting += 1
            try:
                await self._condition.wait_for(
                    lambda: not self._writer_active and self._readers == 0
                )
            finally:
                self._writers_waiting -= 1
            self._writer_active = True
        try:
            yield
        finally:
            async with self._condition:
                self._writer_active = False
                self._condition.notify_all()
