"""Test helpers shared across cryptmirror test modules."""

from __future__ import annotations

import asyncio

from cryptmirror.debounce import DebouncedPersister
from cryptmirror.reconciler import Reconciler
from cryptmirror.throttle import ThrottledExecutor

TEST_SECRET = "correct horse battery staple, but longer than 32 bytes"


class CountingExecutor(ThrottledExecutor):
    """ThrottledExecutor that remembers how many jobs were submitted."""

    def __init__(self, limit: int = 4):
        super().__init__(limit)
        self.submitted = 0

    def submit(self, job) -> None:
        self.submitted += 1
        super().submit(job)


async def wait_idle(persister: DebouncedPersister, timeout: float = 2.0) -> None:
    async def _poll():
        while not persister.is_idle():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


async def settle(*reconcilers: Reconciler) -> None:
    """Wait until event tasks and transfer jobs of the given reconcilers are done."""
    for _ in range(3):
        for rec in reconcilers:
            await rec.drain()
            await rec.executor.join()
