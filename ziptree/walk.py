from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Tuple, Union


@dataclass(frozen=True)
class RegularFile:
    path: str
    size: int
    mtime: int
    mode: int


@dataclass(frozen=True)
class Directory:
    path: str


FsNode = Union[RegularFile, Directory]


def _classify(entry: os.DirEntry) -> FsNode | None:
    # Directory symlinks are not descended into; file symlinks are followed.
    if entry.is_dir(follow_symlinks=False):
        return Directory(entry.path)
    if entry.is_file(follow_symlinks=True):
        st = entry.stat(follow_symlinks=True)
        return RegularFile(entry.path, st.st_size, int(st.st_mtime), st.st_mode & 0o7777)
    return None


def scan_dir(path: str) -> Tuple[List[RegularFile], List[Directory]]:
    """Enumerate one directory level in filesystem order.

    Returns the regular files and the subdirectories separately; other node
    kinds (FIFOs, sockets, devices, dangling links) are left out.
    """
    files: List[RegularFile] = []
    dirs: List[Directory] = []
    with os.scandir(path) as it:
        for entry in it:
            node = _classify(entry)
            if isinstance(node, RegularFile):
                files.append(node)
            elif isinstance(node, Directory):
                dirs.append(node)
    return files, dirs
