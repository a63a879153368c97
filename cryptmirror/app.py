from __future__ import annotations

import asyncio
import dataclasses
import logging
import signal
import sys
from typing import Optional

from .config import CONFIG_PATH, AppConfig, build_effective_config, parse_args, save_config_file, validate_paths
from .debounce import DebouncedPersister
from .logs import setup_logger
from .models import ChangeEvent
from .reconciler import MonitoredRoot, Reconciler, Transform
from .state import PathState, SnapshotError, StateSnapshot
from .throttle import ThrottledExecutor
from .transform import Codec, TransformError, load_key
from .watch import IGNORE_PATTERNS, IgnoreMatcher, RootWatcher

logger = logging.getLogger("cryptmirror.app")


class MirrorApp:
    """Owns both directions: roots, reconcilers, watchers and the shared executor/persister."""

    def __init__(
        self,
        cfg: AppConfig,
        snapshot: StateSnapshot,
        from_source: PathState,
        from_target: PathState,
        codec: Optional[Codec] = None,
    ):
        self.cfg = cfg
        self.snapshot = snapshot
        self.executor = ThrottledExecutor(cfg.max_jobs)
        self.persister = DebouncedPersister(self.flush, delay=cfg.persist_delay_sec)

        forward, backward = (Transform.FORWARD, Transform.BACKWARD) if cfg.encrypt else (Transform.PLAIN, Transform.PLAIN)
        self.source = MonitoredRoot(cfg.source_dir, cfg.target_dir, from_source, forward)
        self.target = MonitoredRoot(cfg.target_dir, cfg.source_dir, from_target, backward)

        self.reconcilers: list[Reconciler] = []
        self.watchers: list[RootWatcher] = []
        self.queues: list[asyncio.Queue[ChangeEvent]] = []
        for root in (self.source, self.target):
            ignore = IgnoreMatcher(root.root_path, IGNORE_PATTERNS)
            self.reconcilers.append(Reconciler(root, self.executor, self.persister, codec=codec, ignore=ignore))

    async def flush(self) -> None:
        await self.snapshot.save_async(self.source.state, self.target.state)

    async def prune(self) -> None:
        for reconciler in self.reconcilers:
            removed = await reconciler.prune()
            logger.info("%r: forgot %d stale entries", reconciler, removed)

    async def run(self, stop: asyncio.Event) -> None:
        await self.prune()

        consumers = []
        for reconciler in self.reconcilers:
            queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
            watcher = RootWatcher(reconciler.root.root_path, queue, reconciler.ignore, depth=self.cfg.depth, settle=self.cfg.settle_sec)
            self.queues.append(queue)
            self.watchers.append(watcher)
            consumers.append(asyncio.create_task(reconciler.run(queue)))
            await watcher.start()

        try:
            await stop.wait()
        finally:
            logger.info("Stopping...")
            for watcher in self.watchers:
                watcher.stop()
            for task in consumers:
                task.cancel()
            await asyncio.gather(*consumers, return_exceptions=True)
            for reconciler in self.reconcilers:
                await reconciler.drain()
            await self.executor.join()
            # finished transfers may have queued re-evaluations
            for reconciler in self.reconcilers:
                await reconciler.drain()
            await self.executor.join()
            await self.persister.close()
            logger.info("Stopped.")


async def _serve(app: MirrorApp) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass
    await app.run(stop)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    cfg = build_effective_config(args)

    log = setup_logger(cfg.log_dir.expanduser())

    try:
        source, target = validate_paths(cfg.source_dir, cfg.target_dir)
        log.info("Source: %s", source)
        log.info("Target: %s", target)
    except ValueError as e:
        log.error("Config error: %s", e)
        return 2

    try:
        save_config_file(source, target, cfg.log_dir.expanduser().resolve())
        log.info("Saved config: %s", CONFIG_PATH)
    except OSError as e:
        log.error("Could not save config: %s", e)

    codec = None
    if cfg.encrypt:
        try:
            codec = Codec(load_key(cfg.key_path))
        except TransformError as e:
            log.error("Key error: %s", e)
            return 2

    snapshot = StateSnapshot(cfg.state_path)
    try:
        from_source, from_target = snapshot.load()
    except SnapshotError as e:
        log.error("State error: %s", e)
        return 2
    log.info("Loaded state: %d source / %d target entries", len(from_source), len(from_target))

    cfg = dataclasses.replace(cfg, source_dir=source, target_dir=target)
    app = MirrorApp(cfg, snapshot, from_source, from_target, codec=codec)

    log.info("Starting watchers... (Ctrl+C to stop)")
    try:
        asyncio.run(_serve(app))
    except KeyboardInterrupt:
        log.info("Interrupted.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
