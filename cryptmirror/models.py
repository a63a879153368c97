from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class FileInfo:
    is_file: bool
    is_symlink: bool
    is_socket: bool
    mtime_ns: int
    atime_ns: int

    @classmethod
    def from_stat(cls, st: os.stat_result) -> "FileInfo":
        return cls(
            is_file=stat.S_ISREG(st.st_mode),
            is_symlink=stat.S_ISLNK(st.st_mode),
            is_socket=stat.S_ISSOCK(st.st_mode),
            mtime_ns=st.st_mtime_ns,
            atime_ns=st.st_atime_ns,
        )


@dataclass(frozen=True)
class ChangeEvent:
    """A path whose status changed. ``info`` is None when it could not be stat-ed."""

    path: str
    info: Optional[FileInfo]


def lstat_info(path: str) -> Optional[FileInfo]:
    try:
        return FileInfo.from_stat(os.lstat(path))
    except (FileNotFoundError, NotADirectoryError):
        return None
