"""Directory packer: one ZIP entry per regular file under a root directory.

Traversal order is the filesystem's enumeration order: the files of a
directory first, then each subdirectory recursively. Directories are implied by
entry names and never stored as entries of their own, so empty directories
leave no trace in the container.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, FrozenSet, Iterable, Optional

from .constants import COMPRESSION_METHODS, DEFAULT_BUFFER_SIZE, DEFAULT_COMPRESSION
from .encryption import KdfCost
from .entryutil import ArchiveEntry
from .errors import ArchiveIOError
from .pathutil import entry_name, root_offset
from .walk import scan_dir
from .writer import ArchiveWriter


ProgressFn = Callable[[ArchiveEntry], None]


@dataclass(frozen=True)
class PackRequest:
    output_path: str
    source_dir: str
    password: Optional[str] = None
    compression: str = DEFAULT_COMPRESSION
    compresslevel: Optional[int] = None
    kdf_cost: Optional[KdfCost] = None
    strict: bool = True


@dataclass
class PackStats:
    files: int = 0
    bytes: int = 0


def _pack_dir(
    writer: ArchiveWriter, path: str, offset: int, exclude: FrozenSet[str], progress: Optional[ProgressFn]
) -> None:
    try:
        files, dirs = scan_dir(path)
    except OSError as exc:
        raise ArchiveIOError(f"Cannot list directory: {exc.strerror or exc}", path=path) from exc
    for f in files:
        if os.path.normcase(f.path) in exclude:
            # containers being written
            continue
        entry = writer.add_file(entry_name(f.path, offset), f.path, size=f.size, mtime=f.mtime, mode=f.mode)
        if progress is not None:
            progress(entry)
    for d in dirs:
        _pack_dir(writer, d.path, offset, exclude, progress)


def pack(
    request: PackRequest,
    *,
    progress: Optional[ProgressFn] = None,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    exclude: Iterable[str] = (),
) -> PackStats:
    """Pack ``request.source_dir`` into a new container at ``request.output_path``.

    The output file and any path in ``exclude`` are never stored, even when they
    lie inside the source tree.

    On failure the container is left in whatever partial state the failing
    write produced.
    """
    try:
        method = COMPRESSION_METHODS[request.compression]
    except KeyError:
        raise ValueError(f"unknown compression method: {request.compression}")
    root = os.path.abspath(request.source_dir)
    if not os.path.isdir(root):
        raise ArchiveIOError("Source is not a directory", path=request.source_dir)
    offset = root_offset(root)
    skip = frozenset(os.path.normcase(os.path.abspath(p)) for p in (request.output_path, *exclude))
    with ArchiveWriter(
        request.output_path,
        request.password,
        compression=method,
        compresslevel=request.compresslevel,
        kdf_cost=request.kdf_cost,
        strict=request.strict,
        buffer_size=buffer_size,
    ) as writer:
        _pack_dir(writer, root, offset, skip, progress)
        return PackStats(files=writer.file_count, bytes=writer.byte_count)
