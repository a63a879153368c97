from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

logger = logging.getLogger("cryptmirror.throttle")

DEFAULT_LIMIT = 64

Job = Callable[[], Awaitable[None]]


class ThrottledExecutor:
    """
    Runs at most ``limit`` jobs at once; everything else waits in a FIFO backlog.

    A slot that finishes its job keeps pulling from the backlog and is only
    released once the backlog is empty. Job failures are logged and swallowed
    so they never reach the submitter or stop the slot.
    """

    def __init__(self, limit: int = DEFAULT_LIMIT):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self._running = 0
        self._backlog: deque[Job] = deque()
        self._slots: set[asyncio.Task] = set()

    @property
    def running(self) -> int:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._backlog)

    def submit(self, job: Job) -> None:
        if self._running >= self.limit:
            self._backlog.append(job)
            return

        self._running += 1
        task = asyncio.get_running_loop().create_task(self._slot(job))
        self._slots.add(task)
        task.add_done_callback(self._slots.discard)

    async def _slot(self, job: Job) -> None:
        try:
            while True:
                await self._run_one(job)
                if not self._backlog:
                    return
                job = self._backlog.popleft()
        finally:
            self._running -= 1

    async def _run_one(self, job: Job) -> None:
        try:
            await job()
        except Exception:
            logger.exception("Job failed: %r", job)

    async def join(self) -> None:
        while self._slots:
            await asyncio.gather(*list(self._slots))
