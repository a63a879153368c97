"""
watchdog -> asyncio bridge.

Each root gets a ``RootWatcher`` that feeds ``ChangeEvent``s into an
``asyncio.Queue``. Observer callbacks arrive on watchdog's thread and are
handed to the loop with ``call_soon_threadsafe``. Every path is held back
until it has been quiet for ``settle`` seconds, then ``lstat``-ed once on a
worker thread. The initial walk also runs off the loop.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Iterator, Optional

from pathspec import PathSpec
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .models import ChangeEvent, lstat_info

logger = logging.getLogger("cryptmirror.watch")

DEFAULT_DEPTH = 25
DEFAULT_SETTLE_SEC = 5.0

IGNORE_PATTERNS = [
    # build output and dependencies at the top of a root
    "/out",
    "/node_modules",
    "/package-lock.json",
    # editor / interpreter caches anywhere
    ".ropeproject",
    "__pycache__",
    ".ipynb_checkpoints",
]

QUIET_EVENT_TYPES = {"opened", "closed_no_write"}


class IgnoreMatcher:
    def __init__(self, root: Path, patterns: list[str]):
        self.root = str(root)
        self.spec = PathSpec.from_lines("gitwildmatch", patterns)

    def relative(self, path: str) -> Optional[str]:
        rel = os.path.relpath(path, self.root)
        if rel == os.curdir or rel == os.pardir or rel.startswith(os.pardir + os.sep):
            return None
        return Path(rel).as_posix()

    def is_ignored(self, path: str) -> bool:
        rel = self.relative(path)
        if rel is None:
            return True
        return self.spec.match_file(rel)


def depth_of(rel_posix: str) -> int:
    """Number of directories between the root and the entry (0 for top-level)."""
    return rel_posix.count("/")


def _stat_event(path: str) -> Optional[ChangeEvent]:
    try:
        info = lstat_info(path)
    except OSError as e:
        logger.error("Cannot stat %s: %s", path, e)
        return None
    return ChangeEvent(path, info)


class _Forwarder(FileSystemEventHandler):
    def __init__(self, loop: asyncio.AbstractEventLoop, watcher: "RootWatcher"):
        self.loop = loop
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in QUIET_EVENT_TYPES:
            return
        paths = [event.src_path]
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.append(dest)
        for p in paths:
            if isinstance(p, bytes):
                p = os.fsdecode(p)
            self.loop.call_soon_threadsafe(self.watcher.notify, p)


class RootWatcher:
    def __init__(
        self,
        root: Path,
        queue: "asyncio.Queue[ChangeEvent]",
        ignore: IgnoreMatcher,
        depth: int = DEFAULT_DEPTH,
        settle: float = DEFAULT_SETTLE_SEC,
    ):
        self.root = root
        self.queue = queue
        self.ignore = ignore
        self.depth = depth
        self.settle = settle
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._stats: set[asyncio.Task] = set()
        self._observer: Optional[Observer] = None

    def accepts(self, path: str) -> bool:
        rel = self.ignore.relative(path)
        if rel is None or depth_of(rel) > self.depth:
            return False
        return not self.ignore.spec.match_file(rel)

    def scan(self) -> Iterator[ChangeEvent]:
        """Walk the root and yield one event per accepted entry. Blocking."""
        for dirpath, dirnames, filenames in os.walk(str(self.root), followlinks=False):
            kept = []
            for name in dirnames:
                full = os.path.join(dirpath, name)
                if self.accepts(full):
                    kept.append(name)
                    event = _stat_event(full)
                    if event is not None:
                        yield event
            dirnames[:] = kept
            for name in filenames:
                full = os.path.join(dirpath, name)
                if self.accepts(full):
                    event = _stat_event(full)
                    if event is not None:
                        yield event

    async def initial_scan(self) -> int:
        """Walk the root on a worker thread, enqueueing as it goes; returns how many were queued."""
        loop = asyncio.get_running_loop()

        def _walk() -> int:
            count = 0
            for event in self.scan():
                loop.call_soon_threadsafe(self.queue.put_nowait, event)
                count += 1
            return count

        count = await asyncio.to_thread(_walk)
        logger.info("Initial scan of %s: %d entries", self.root, count)
        return count

    def notify(self, path: str) -> None:
        if not self.accepts(path):
            return
        loop = asyncio.get_running_loop()
        handle = self._timers.pop(path, None)
        if handle is not None:
            handle.cancel()
        self._timers[path] = loop.call_later(self.settle, self._settled, path)

    def _settled(self, path: str) -> None:
        self._timers.pop(path, None)
        task = asyncio.get_running_loop().create_task(self._emit(path))
        self._stats.add(task)
        task.add_done_callback(self._stats.discard)

    async def _emit(self, path: str) -> None:
        event = await asyncio.to_thread(_stat_event, path)
        if event is not None:
            self.queue.put_nowait(event)

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(_Forwarder(loop, self), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        # scan after the observer is live so nothing created meanwhile is missed
        await self.initial_scan()
        logger.info("Watching %s (depth=%d, settle=%.1fs)", self.root, self.depth, self.settle)

    def stop(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for task in self._stats:
            task.cancel()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=10)
            self._observer = None
