from __future__ import annotations

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("cryptmirror.debounce")

DEFAULT_DELAY_SEC = 3.0
RERUN_DELAY_SEC = 0.01


class PersisterState(enum.Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    RUNNING_RERUN = "running_rerun"


class DebouncedPersister:
    """
    Coalesces ``trigger()`` calls into at most one flush per ``delay`` window.

    Level triggered: a trigger that lands while a flush is running schedules
    exactly one more flush, which sees whatever state exists by then. The
    flush never runs concurrently with itself.
    """

    def __init__(self, flush: Callable[[], Awaitable[None]], delay: float = DEFAULT_DELAY_SEC):
        self._flush = flush
        self.delay = delay
        self.state = PersisterState.IDLE
        self._task: Optional[asyncio.Task] = None

    def is_idle(self) -> bool:
        return self.state is PersisterState.IDLE

    def trigger(self) -> None:
        if self.state is PersisterState.IDLE:
            self.state = PersisterState.SCHEDULED
            self._task = asyncio.get_running_loop().create_task(self._exec(self.delay))
        elif self.state is PersisterState.RUNNING:
            self.state = PersisterState.RUNNING_RERUN

    async def _exec(self, delay: float) -> None:
        while True:
            await asyncio.sleep(delay)
            self.state = PersisterState.RUNNING
            try:
                await self._flush()
            except Exception:
                logger.exception("State flush failed; keeping in-memory state")

            if self.state is PersisterState.RUNNING_RERUN:
                self.state = PersisterState.SCHEDULED
                delay = RERUN_DELAY_SEC
                continue

            self.state = PersisterState.IDLE
            self._task = None
            return

    async def close(self) -> None:
        """Drop a scheduled flush, wait out a running one, then flush once more."""
        task = self._task
        if task is not None:
            if self.state is PersisterState.SCHEDULED:
                task.cancel()
            else:
                # the final flush below replaces the pending rerun
                self.state = PersisterState.RUNNING
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.state = PersisterState.RUNNING
        try:
            await self._flush()
        except Exception:
            logger.exception("Final state flush failed")
        finally:
            self.state = PersisterState.IDLE
            self._task = None
