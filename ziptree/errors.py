from __future__ import annotations

from typing import Optional


class ZipTreeError(Exception):
    """Base class for ziptree errors.

    ``entry`` names the archive entry and ``path`` the filesystem path involved,
    when known.
    """

    def __init__(self, message: str, *, entry: Optional[str] = None, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entry = entry
        self.path = path

    def __str__(self) -> str:
        parts = [self.message]
        if self.entry is not None:
            parts.append(f"entry={self.entry!r}")
        if self.path is not None:
            parts.append(f"path={self.path!r}")
        return " ".join(parts) if len(parts) == 1 else f"{parts[0]} ({', '.join(parts[1:])})"


class InvalidPathError(ZipTreeError, ValueError):
    pass


class ArchiveIOError(ZipTreeError):
    pass


# Passwords
class DecryptionError(ZipTreeError):
    pass


class PasswordRequiredError(DecryptionError):
    pass


class BadPasswordError(DecryptionError):
    pass


# Integrity
class CorruptEntryError(ZipTreeError):
    pass


class CorruptArchiveError(CorruptEntryError):
    pass


class DuplicateEntryError(ZipTreeError):
    pass
