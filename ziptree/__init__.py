"""
ziptree — pack directory trees into ZIP archives and unpack them again.

Features:

- Deterministic, streaming traversal: one entry per regular file, files before
  subdirectories, canonical forward-slash entry names.
- Bounded-memory transfer through fixed-size buffers, whatever the file size.
- Destructive unpack: the destination directory is replaced, not merged.
- Optional per-entry encryption (XChaCha20-Poly1305 frames, Argon2id key
  derivation); unencrypted archives are plain ZIP files.
- Staged variants (pack_atomic/unpack_atomic) that only touch the final
  location once the whole operation has succeeded.
"""

__version__ = "0.1"

from .codec import Codec, ZipCodec
from .entryutil import ArchiveEntry
from .errors import (
    ZipTreeError,
    InvalidPathError,
    ArchiveIOError,
    DecryptionError,
    PasswordRequiredError,
    BadPasswordError,
    CorruptEntryError,
    CorruptArchiveError,
    DuplicateEntryError,
)
from .packer import PackRequest, PackStats, pack
from .reader import ArchiveReader
from .staging import pack_atomic, unpack_atomic
from .unpacker import UnpackRequest, UnpackStats, unpack
from .writer import ArchiveWriter

__all__ = [
    "ArchiveEntry",
    "ArchiveReader",
    "ArchiveWriter",
    "Codec",
    "ZipCodec",
    "PackRequest",
    "PackStats",
    "UnpackRequest",
    "UnpackStats",
    "pack",
    "unpack",
    "pack_atomic",
    "unpack_atomic",
    "ZipTreeError",
    "InvalidPathError",
    "ArchiveIOError",
    "DecryptionError",
    "PasswordRequiredError",
    "BadPasswordError",
    "CorruptEntryError",
    "CorruptArchiveError",
    "DuplicateEntryError",
]
