"""Shared pytest fixtures for cryptmirror tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from cryptmirror.debounce import DebouncedPersister
from cryptmirror.reconciler import MonitoredRoot, Reconciler, Transform
from cryptmirror.state import PathState
from cryptmirror.transform import Codec, derive_key
from cryptmirror.watch import IGNORE_PATTERNS, IgnoreMatcher

from .helpers import TEST_SECRET, CountingExecutor


@pytest.fixture
def codec() -> Codec:
    return Codec(derive_key(TEST_SECRET))


@pytest.fixture
def roots(tmp_path: Path) -> tuple[Path, Path]:
    source = tmp_path / "source"
    target = tmp_path / "target"
    source.mkdir()
    target.mkdir()
    return source, target


@pytest.fixture
def flushes() -> list[int]:
    return []


@pytest.fixture
def persister(flushes: list[int]) -> DebouncedPersister:
    async def _flush() -> None:
        flushes.append(1)

    return DebouncedPersister(_flush, delay=0.01)


@pytest.fixture
def executor() -> CountingExecutor:
    return CountingExecutor()


@pytest.fixture
def make_reconciler(roots, codec, executor, persister):
    """Build a reconciler for either direction with short recheck delays."""

    def _make(direction: str = "source", state: PathState | None = None) -> Reconciler:
        source, target = roots
        if direction == "source":
            root = MonitoredRoot(source, target, state if state is not None else PathState(), Transform.FORWARD)
        else:
            root = MonitoredRoot(target, source, state if state is not None else PathState(), Transform.BACKWARD)
        return Reconciler(
            root,
            executor,
            persister,
            codec=codec,
            ignore=IgnoreMatcher(root.root_path, IGNORE_PATTERNS),
            recheck_delays=(0.01, 0.01),
        )

    return _make
