from __future__ import annotations

from contextlib import ExitStack
from typing import BinaryIO, Iterator, List, Optional

from .codec import Codec, ZipCodec
from .constants import DEFAULT_BUFFER_SIZE
from .entryutil import ArchiveEntry
from .errors import ArchiveIOError, CorruptEntryError, ZipTreeError
from .streams import NullSink, copy_stream


class ArchiveReader:
    """Sequential reader over the entries of a ZIP container."""

    def __init__(self, path: str, password: Optional[str] = None, *, buffer_size: int = DEFAULT_BUFFER_SIZE):
        self.path = path
        self.password = password or None
        self.buffer_size = buffer_size
        self.f: Optional[BinaryIO] = None
        self.codec: Optional[Codec] = None
        self.bad_entries: List[str] = []

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        try:
            self.f = open(self.path, "rb")
        except OSError as exc:
            raise ArchiveIOError(f"Cannot open archive: {exc.strerror or exc}", path=self.path) from exc
        try:
            self.codec = ZipCodec(self.f, "r")
        except (ZipTreeError, OSError, ValueError, RuntimeError) as exc:
            # Ensure file handle is closed on failure to avoid leaks
            self.close()
            if isinstance(exc, ZipTreeError):
                if exc.path is None:
                    exc.path = self.path
                raise
            raise ArchiveIOError(f"Cannot read archive: {exc}", path=self.path) from exc

    def close(self):
        codec, self.codec = self.codec, None
        f, self.f = self.f, None
        try:
            if codec is not None:
                codec.close()
        finally:
            if f is not None:
                f.close()

    def _codec(self) -> Codec:
        if self.codec is None:
            raise RuntimeError("Archive not open")
        return self.codec

    @property
    def requires_password(self) -> bool:
        return self._codec().requires_password

    def iter_entries(self) -> Iterator[ArchiveEntry]:
        return self._codec().entries()

    def list(self) -> List[ArchiveEntry]:
        return list(self.iter_entries())

    def open_entry(self, entry: ArchiveEntry) -> BinaryIO:
        return self._codec().open_read_source(entry, self.password)

    def extract(self, entry: ArchiveEntry, out_path: str) -> int:
        """Stream one file entry to ``out_path``; returns the bytes written.

        The read source is opened before the output file is created, so a
        password failure leaves no file behind.
        """
        if entry.is_dir:
            return 0
        # Release order: output file, then the codec source
        with ExitStack() as stack:
            source = stack.enter_context(self.open_entry(entry))
            try:
                sink = stack.enter_context(open(out_path, "wb"))
                copied = copy_stream(source, sink, self.buffer_size)
            except OSError as exc:
                raise ArchiveIOError(f"I/O error while extracting: {exc.strerror or exc}", entry=entry.name, path=out_path) from exc
        if copied != entry.size:
            raise CorruptEntryError(
                f"Entry size mismatch (expected {entry.size}, got {copied} bytes)", entry=entry.name, path=out_path
            )
        return copied

    def verify(self) -> bool:
        """Decode every file entry and check its integrity.

        Corrupted entries are recorded in ``bad_entries``; password errors
        propagate.
        """
        self.bad_entries = []
        for entry in self.iter_entries():
            if entry.is_dir:
                continue
            try:
                with self.open_entry(entry) as source:
                    copied = copy_stream(source, NullSink(), self.buffer_size)
            except CorruptEntryError:
                self.bad_entries.append(entry.name)
                continue
            if copied != entry.size:
                self.bad_entries.append(entry.name)
        return not self.bad_entries
