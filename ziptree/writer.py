from __future__ import annotations

import os
import zipfile
from contextlib import ExitStack
from typing import BinaryIO, Optional, Set

from .codec import Codec, ZipCodec
from .constants import DEFAULT_BUFFER_SIZE
from .encryption import KdfCost
from .entryutil import ArchiveEntry
from .errors import ArchiveIOError, DuplicateEntryError, ZipTreeError
from .pathutil import norm_path
from .streams import copy_stream


class ArchiveWriter:
    """Streaming writer that adds filesystem files to a ZIP container one at a time."""

    def __init__(
        self,
        out_path: str,
        password: Optional[str] = None,
        *,
        compression: int = zipfile.ZIP_DEFLATED,
        compresslevel: Optional[int] = None,
        kdf_cost: Optional[KdfCost] = None,
        strict: bool = True,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ):
        self.out_path = out_path
        self.password = password or None
        self.compression = compression
        self.compresslevel = compresslevel
        self.kdf_cost = kdf_cost
        self.strict = strict
        self.buffer_size = buffer_size
        self.f: Optional[BinaryIO] = None
        self.codec: Optional[Codec] = None
        self._names: Set[str] = set()
        self.file_count = 0
        self.byte_count = 0

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        try:
            self.f = open(self.out_path, "wb")
        except OSError as exc:
            raise ArchiveIOError(f"Cannot create archive: {exc.strerror or exc}", path=self.out_path) from exc
        try:
            self.codec = ZipCodec(
                self.f,
                "w",
                compression=self.compression,
                compresslevel=self.compresslevel,
                kdf_cost=self.kdf_cost,
            )
        except (ZipTreeError, OSError, ValueError, RuntimeError, NotImplementedError):
            # Ensure file handle is closed on failure to avoid leaks
            self.f.close()
            self.f = None
            raise

    def close(self):
        """Finalize the central directory, then release the container file."""
        codec, self.codec = self.codec, None
        f, self.f = self.f, None
        try:
            if codec is not None:
                codec.close()
        except OSError as exc:
            raise ArchiveIOError(f"Cannot finalize archive: {exc}", path=self.out_path) from exc
        finally:
            if f is not None:
                f.close()

    def add_file(
        self,
        arc_path: str,
        fs_path: str,
        *,
        size: Optional[int] = None,
        mtime: Optional[int] = None,
        mode: Optional[int] = None,
    ) -> ArchiveEntry:
        """Stream a filesystem file into the archive under ``arc_path``."""
        if self.codec is None:
            raise RuntimeError("Archive not open")
        name = norm_path(arc_path)
        if name in self._names and self.strict:
            raise DuplicateEntryError("Duplicate entry name", entry=name, path=fs_path)
        try:
            if size is None or mtime is None or mode is None:
                st = os.stat(fs_path)
                size = st.st_size if size is None else size
                mtime = int(st.st_mtime) if mtime is None else mtime
                mode = (st.st_mode & 0o7777) if mode is None else mode
            entry = ArchiveEntry(name=name, size=size, mtime=int(mtime), mode=mode)
            # Release order: codec sink (finalizes the entry), then the source file
            with ExitStack() as stack:
                src = stack.enter_context(open(fs_path, "rb"))
                sink = stack.enter_context(self.codec.open_write_sink(entry, self.password))
                copied = copy_stream(src, sink, self.buffer_size)
        except OSError as exc:
            raise ArchiveIOError(f"Cannot add file: {exc.strerror or exc}", entry=name, path=fs_path) from exc
        if copied != entry.size:
            raise ArchiveIOError(
                f"File changed size while packing ({entry.size} -> {copied} bytes)", entry=name, path=fs_path
            )
        self._names.add(name)
        self.file_count += 1
        self.byte_count += copied
        return entry
