"""Archive unpacker.

The destination root is replaced, not merged: whatever exists there is deleted
before the first entry is written.
"""

from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass
from typing import Callable, Optional

from .constants import DEFAULT_BUFFER_SIZE
from .entryutil import ArchiveEntry
from .errors import ArchiveIOError, InvalidPathError
from .pathutil import safe_join
from .reader import ArchiveReader


ProgressFn = Callable[[ArchiveEntry], None]


@dataclass(frozen=True)
class UnpackRequest:
    archive_path: str
    out_dir: str
    password: Optional[str] = None
    restore_times: bool = True
    restore_modes: bool = True


@dataclass
class UnpackStats:
    files: int = 0
    bytes: int = 0
    skipped_dirs: int = 0


def _safe_chmod(path: str, mode: Optional[int]) -> None:
    """Best-effort chmod that never raises."""
    if mode is None:
        return
    try:
        os.chmod(path, mode)
    except OSError as exc:
        print(f"Warning: failed to set mode on {path}: {exc}", file=sys.stderr)


def _safe_utime(path: str, mtime: Optional[int]) -> None:
    """Best-effort utime that never raises; atime is set to mtime."""
    if mtime is None:
        return
    try:
        os.utime(path, (mtime, mtime))
    except OSError as exc:
        print(f"Warning: failed to set timestamps on {path}: {exc}", file=sys.stderr)


def _is_within(path: str, root: str) -> bool:
    path = os.path.normcase(os.path.realpath(path))
    root = os.path.normcase(os.path.realpath(root))
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def check_archive_outside(archive_path: str, out_dir: str) -> None:
    """Refuse to unpack into a directory that holds the archive itself."""
    if os.path.exists(archive_path) and _is_within(archive_path, out_dir):
        raise InvalidPathError("Archive lies inside the destination directory", path=archive_path)


def clear_destination(out_dir: str) -> None:
    """Delete ``out_dir`` (tree, file or link) if present, then recreate it empty."""
    try:
        if os.path.islink(out_dir) or os.path.isfile(out_dir):
            os.remove(out_dir)
        elif os.path.isdir(out_dir):
            shutil.rmtree(out_dir)
        os.makedirs(out_dir)
    except OSError as exc:
        raise ArchiveIOError(f"Cannot prepare destination: {exc.strerror or exc}", path=out_dir) from exc


def unpack(request: UnpackRequest, *, progress: Optional[ProgressFn] = None, buffer_size: int = DEFAULT_BUFFER_SIZE) -> UnpackStats:
    """Extract every file entry of ``request.archive_path`` into ``request.out_dir``.

    The archive is opened before anything is deleted: a missing or unreadable
    archive raises and leaves ``request.out_dir`` untouched. Only then is the
    destination removed and recreated empty.

    Entries are processed in container order. A failure aborts the whole
    operation; files and directories written so far are left in place (use
    ``unpack_atomic`` to keep the old destination on failure).
    """
    out_dir = os.path.abspath(request.out_dir)
    check_archive_outside(request.archive_path, out_dir)
    stats = UnpackStats()
    with ArchiveReader(request.archive_path, password=request.password, buffer_size=buffer_size) as reader:
        clear_destination(out_dir)
        for entry in reader.iter_entries():
            if entry.is_dir:
                stats.skipped_dirs += 1
                continue
            dst = safe_join(out_dir, entry.name)
            parent = os.path.dirname(dst)
            try:
                os.makedirs(parent, exist_ok=True)
            except OSError as exc:
                raise ArchiveIOError(
                    f"Cannot create directory: {exc.strerror or exc}", entry=entry.name, path=parent
                ) from exc
            stats.bytes += reader.extract(entry, dst)
            stats.files += 1
            if request.restore_modes:
                _safe_chmod(dst, entry.mode)
            if request.restore_times:
                _safe_utime(dst, entry.mtime)
            if progress is not None:
                progress(entry)
    return stats
