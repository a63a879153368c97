"""
Sync state: which paths are believed to be mirrored already.

One ``PathState`` per direction. Membership is advisory: the opposite copy may
have been removed behind our back, so the reconciler re-checks the filesystem
before acting on it.

Both states are persisted together as a single JSON document::

    {"from_source": {"/abs/path": 1, ...}, "from_target": {...}}

The file is always rewritten whole (temp file + ``os.replace``).
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Iterable, Iterator

PRESENT = 1
STATE_KEYS = ("from_source", "from_target")


class SnapshotError(Exception):
    """Raised when the snapshot file exists but cannot be used."""


class PathState:
    def __init__(self, paths: Iterable[str] = ()):
        self._paths: dict[str, int] = {p: PRESENT for p in paths}

    def __contains__(self, path: object) -> bool:
        return path in self._paths

    def __iter__(self) -> Iterator[str]:
        return iter(self._paths)

    def __len__(self) -> int:
        return len(self._paths)

    def __repr__(self) -> str:
        return f"PathState({len(self._paths)} paths)"

    def add(self, path: str) -> None:
        self._paths[path] = PRESENT

    def discard(self, path: str) -> None:
        self._paths.pop(path, None)

    def to_dict(self) -> dict[str, int]:
        return dict(self._paths)

    @classmethod
    def from_dict(cls, data: dict) -> "PathState":
        return cls(p for p, marker in data.items() if marker)


class StateSnapshot:
    def __init__(self, path: Path):
        self.path = path

    def load(self) -> tuple[PathState, PathState]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return PathState(), PathState()
        except OSError as e:
            raise SnapshotError(f"Cannot read snapshot {self.path}: {e}") from e

        try:
            data = json.loads(raw)
        except ValueError as e:
            raise SnapshotError(f"Malformed snapshot {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise SnapshotError(f"Malformed snapshot {self.path}: expected an object")
        states = []
        for key in STATE_KEYS:
            section = data.get(key, {})
            if not isinstance(section, dict):
                raise SnapshotError(f"Malformed snapshot {self.path}: '{key}' is not an object")
            states.append(PathState.from_dict(section))
        return states[0], states[1]

    @staticmethod
    def dumps(from_source: PathState, from_target: PathState) -> str:
        return json.dumps({"from_source": from_source.to_dict(), "from_target": from_target.to_dict()})

    def write_text(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def save(self, from_source: PathState, from_target: PathState) -> None:
        self.write_text(self.dumps(from_source, from_target))

    async def save_async(self, from_source: PathState, from_target: PathState) -> None:
        # serialize on the loop thread; the states are only mutated there
        text = self.dumps(from_source, from_target)
        await asyncio.to_thread(self.write_text, text)
