from __future__ import annotations

import os
import re

from .errors import InvalidPathError


_DRIVE_RE = re.compile(r"^[A-Za-z]:")


def norm_path(p: str) -> str:
    """Normalize archive paths to a canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Strip a leading drive designator (``C:``)
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments
    """
    p = p.replace("\\", "/")
    if os.sep != "/":
        p = p.replace(os.sep, "/")
    p = _DRIVE_RE.sub("", p).strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise InvalidPathError("Path may not contain '..'", entry=p)
    return "/".join(parts)


def root_offset(root: str) -> int:
    """Number of leading characters of a file path that belong to ``root``.

    Includes exactly one trailing separator: the root length plus one unless the
    root already ends in a separator.
    """
    seps = ("/", "\\", os.sep)
    if root.endswith(seps):
        return len(root)
    return len(root) + 1


def entry_name(path: str, offset: int) -> str:
    """Derive the canonical entry name of ``path`` from its root offset."""
    name = norm_path(path[offset:])
    if not name:
        raise InvalidPathError("Entry name is empty", path=path)
    return name


def safe_join(root: str, name: str) -> str:
    """Join an entry name onto an output root, refusing names that escape it."""
    raw = name.replace("\\", "/")
    if raw.startswith("/") or _DRIVE_RE.match(raw):
        raise InvalidPathError("Entry name is absolute", entry=name)
    rel = norm_path(raw)
    if not rel:
        raise InvalidPathError("Entry name is empty", entry=name)
    return os.path.join(root, *rel.split("/"))
