"""
Per-direction reconciliation.

A ``Reconciler`` watches one root and pushes its changes to the opposite
root. Two of them run at once, one per direction, sharing the executor and
the persister but never a ``PathState``.

Decision table for a single event (``from`` under our root, ``to`` its mirror):

- ``from`` gone (after the grace rechecks)   -> remove ``to``, forget ``from``
- not a regular file, symlink or socket       -> nothing
- ``to`` exists and is older                  -> transfer
- ``to`` exists and is as new or newer        -> remember ``from``
- ``to`` missing, ``from`` remembered         -> ``to`` was deleted: remove ``from``
- ``to`` missing, ``from`` not remembered     -> new file: transfer
"""

from __future__ import annotations

import asyncio
import enum
import functools
import logging
import os
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .debounce import DebouncedPersister
from .logs import log_action
from .models import ChangeEvent, FileInfo, lstat_info
from .state import PathState
from .throttle import ThrottledExecutor
from .transform import Codec, plain_copy
from .watch import IgnoreMatcher

logger = logging.getLogger("cryptmirror.reconciler")

# grace periods before a vanished path is believed deleted (atomic replace races)
FIRST_RECHECK_SEC = 2.0
LAST_RECHECK_SEC = 3.0

TransformFn = Callable[[str, str], None]


class Transform(enum.Enum):
    FORWARD = "forward"
    BACKWARD = "backward"
    PLAIN = "plain"

    def resolve(self, codec: Optional[Codec]) -> TransformFn:
        if self is Transform.PLAIN:
            return plain_copy
        if codec is None:
            raise ValueError(f"{self.value} transform needs a codec")
        return codec.forward if self is Transform.FORWARD else codec.backward


@dataclass
class MonitoredRoot:
    root_path: Path
    opposite_root_path: Path
    state: PathState
    transform: Transform

    def mirror_path(self, path: str) -> str:
        rel = os.path.relpath(path, str(self.root_path))
        return os.path.join(str(self.opposite_root_path), rel)


@dataclass
class TransferJob:
    from_path: str
    to_path: str
    from_mtime_ns: int
    from_atime_ns: int
    transform_fn: TransformFn = field(repr=False)

    async def execute(self) -> None:
        await asyncio.to_thread(self.transform_fn, self.from_path, self.to_path)
        await asyncio.to_thread(os.utime, self.to_path, ns=(self.from_atime_ns, self.from_mtime_ns))


def remove_path(path: str) -> bool:
    """Remove a file or a directory tree. Returns False if nothing was there."""
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        return False
    try:
        if stat.S_ISDIR(st.st_mode):
            shutil.rmtree(path)
        else:
            os.unlink(path)
    except FileNotFoundError:
        return False
    return True


class Reconciler:
    def __init__(
        self,
        root: MonitoredRoot,
        executor: ThrottledExecutor,
        persister: DebouncedPersister,
        codec: Optional[Codec] = None,
        ignore: Optional[IgnoreMatcher] = None,
        recheck_delays: tuple[float, float] = (FIRST_RECHECK_SEC, LAST_RECHECK_SEC),
    ):
        self.root = root
        self.state = root.state
        self.executor = executor
        self.persister = persister
        self.ignore = ignore
        self.recheck_delays = recheck_delays
        self._transform_fn = root.transform.resolve(codec)
        # path -> "re-evaluate once the running transfer is done"
        self._in_flight: dict[str, bool] = {}
        # in-flight paths whose deletion was confirmed while the job ran
        self._deleted_in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"Reconciler({self.root.root_path} -> {self.root.opposite_root_path})"

    # -------------------------
    # Startup
    # -------------------------

    async def prune(self) -> int:
        """Forget paths that no longer exist under our root."""
        removed = 0
        for path in list(self.state):
            exists = await asyncio.to_thread(os.path.lexists, path)
            if not exists:
                log_action(logger, "FORGET", f"no longer at source: {path}", path=path)
                self.state.discard(path)
                removed += 1
        self.persister.trigger()
        return removed

    # -------------------------
    # Event loop
    # -------------------------

    async def run(self, queue: "asyncio.Queue[ChangeEvent]") -> None:
        while True:
            event = await queue.get()
            self._spawn(self.process(event))
            queue.task_done()

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every event task spawned so far (and those they spawn)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def process(self, event: ChangeEvent) -> None:
        try:
            await self._process(event)
        except Exception:
            logger.exception("Failed to process %s", event.path)

    async def _process(self, event: ChangeEvent) -> None:
        path = event.path
        if self.ignore is not None and self.ignore.is_ignored(path):
            logger.debug("Ignored: %s", path)
            return

        info = event.info
        if info is None:
            info = await self._recheck(path)

        to_path = self.root.mirror_path(path)

        if info is None:
            await self._delete_mirror(path, to_path)
            return

        if not info.is_file:
            return
        if info.is_symlink or info.is_socket:
            log_action(logger, "SKIP", f"symlink or socket: {path}", path=path)
            return

        await self.compare_and_copy(path, info, to_path)

    async def _recheck(self, path: str) -> Optional[FileInfo]:
        first, last = self.recheck_delays
        await asyncio.sleep(first)
        info = await asyncio.to_thread(lstat_info, path)
        if info is not None:
            return info
        await asyncio.sleep(last)
        info = await asyncio.to_thread(lstat_info, path)
        if info is None:
            log_action(logger, "CONSIDERED_DELETED", path, path=path)
        return info

    async def _delete_mirror(self, path: str, to_path: str) -> None:
        if path in self._in_flight:
            self._deleted_in_flight.add(path)
        removed = await asyncio.to_thread(remove_path, to_path)
        log_action(
            logger,
            "DELETE",
            f"{to_path}" if removed else f"{to_path} (already absent)",
            path=to_path,
        )
        self.state.discard(path)
        self.persister.trigger()

    # -------------------------
    # Copy decision
    # -------------------------

    async def compare_and_copy(self, from_path: str, info: FileInfo, to_path: str) -> None:
        try:
            to_stat = await asyncio.to_thread(os.stat, to_path)
        except FileNotFoundError:
            if from_path in self.state:
                log_action(logger, "DELETED_AT_TARGET", f"x {from_path}", path=from_path)
                await asyncio.to_thread(remove_path, from_path)
                self.state.discard(from_path)
                self.persister.trigger()
                return

            parent = os.path.dirname(to_path)
            if not await asyncio.to_thread(os.path.isdir, parent):
                await asyncio.to_thread(os.makedirs, parent, exist_ok=True)
                log_action(logger, "MKDIR", parent, path=parent, is_dir=True)
            self._submit("NEW", from_path, info, to_path)
            return
        except OSError as e:
            logger.error("Cannot stat mirror %s for %s: %s", to_path, from_path, e)
            return

        if info.mtime_ns > to_stat.st_mtime_ns:
            self._submit("COPY", from_path, info, to_path)
            return

        self.state.add(from_path)
        self.persister.trigger()

    def _submit(self, action: str, from_path: str, info: FileInfo, to_path: str) -> None:
        if from_path in self._in_flight:
            self._in_flight[from_path] = True
            logger.debug("Transfer already pending for %s, will re-check after it", from_path)
            return

        log_action(logger, action, f"{from_path} -> {to_path}", path=from_path)
        self._in_flight[from_path] = False
        job = TransferJob(
            from_path=from_path,
            to_path=to_path,
            from_mtime_ns=info.mtime_ns,
            from_atime_ns=info.atime_ns,
            transform_fn=self._transform_fn,
        )
        self.executor.submit(functools.partial(self._run_transfer, job))

    async def _run_transfer(self, job: TransferJob) -> None:
        try:
            await job.execute()
            gone = job.from_path in self._deleted_in_flight
            if not gone:
                gone = await asyncio.to_thread(lstat_info, job.from_path) is None
            if gone:
                # source vanished while we were writing; do not leave a mirror behind
                await asyncio.to_thread(remove_path, job.to_path)
                log_action(logger, "DELETE", f"{job.to_path} (source deleted during transfer)", path=job.to_path)
                self.state.discard(job.from_path)
            else:
                self.state.add(job.from_path)
            self.persister.trigger()
        finally:
            self._deleted_in_flight.discard(job.from_path)
            if self._in_flight.pop(job.from_path, False):
                self._spawn(self.reevaluate(job.from_path))

    async def reevaluate(self, path: str) -> None:
        try:
            info = await asyncio.to_thread(lstat_info, path)
        except OSError as e:
            logger.error("Cannot stat %s for re-evaluation: %s", path, e)
            return
        await self.process(ChangeEvent(path, info))
