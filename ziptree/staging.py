from __future__ import annotations

import os
import shutil
import stat
import sys
import tempfile
from dataclasses import replace
from pathlib import Path

from .errors import ArchiveIOError
from .packer import PackRequest, PackStats, pack
from .unpacker import UnpackRequest, UnpackStats, check_archive_outside, unpack


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def _final_mode(out: Path) -> int:
    """Permissions the archive would get from a plain ``open(out, "wb")``."""
    try:
        return stat.S_IMODE(os.stat(out).st_mode)
    except FileNotFoundError:
        return 0o666 & ~_current_umask()


def _remove_path(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.remove(path)


def pack_atomic(request: PackRequest, **kwargs) -> PackStats:
    """
    Packs into a temporary file next to the output and renames it into place
    only once the container has been completely written.

    A failed pack leaves any previous file at ``request.output_path`` untouched
    and removes the temporary. The result is stored with the same entries and
    permissions a plain ``pack`` would produce.
    """
    out = Path(request.output_path)
    fd, temp_archive = tempfile.mkstemp(prefix=".ziptree-", suffix=out.suffix or ".zip", dir=str(out.parent))
    os.close(fd)
    try:
        staged = replace(request, output_path=temp_archive)
        exclude = (*kwargs.pop("exclude", ()), str(out))
        stats = pack(staged, exclude=exclude, **kwargs)
        try:
            os.chmod(temp_archive, _final_mode(out))
            os.replace(temp_archive, str(out))
        except OSError as exc:
            raise ArchiveIOError(f"Cannot move archive into place: {exc.strerror or exc}", path=str(out)) from exc
    except BaseException:
        try:
            os.unlink(temp_archive)
        except FileNotFoundError:
            pass
        raise
    return stats


def unpack_atomic(request: UnpackRequest, **kwargs) -> UnpackStats:
    """
    Unpacks into a staging directory next to the destination, then swaps it in.

    The old destination is moved aside before the swap and put back if the
    swap fails; it is deleted only once the new tree is in place. A failed
    unpack removes the stage and leaves the destination as it was.
    """
    dest = Path(request.out_dir).absolute()
    check_archive_outside(request.archive_path, str(dest))
    dest.parent.mkdir(parents=True, exist_ok=True)
    stage = tempfile.mkdtemp(prefix=".ziptree-stage-", dir=str(dest.parent))
    backup = None
    try:
        stats = unpack(replace(request, out_dir=stage), **kwargs)
        try:
            if os.path.lexists(dest):
                os.replace(str(dest), stage + ".old")
                backup = stage + ".old"
            os.replace(stage, str(dest))
        except OSError as exc:
            if backup is not None and not os.path.lexists(dest):
                os.replace(backup, str(dest))
                backup = None
            raise ArchiveIOError(f"Cannot move extracted tree into place: {exc.strerror or exc}", path=str(dest)) from exc
    except BaseException:
        shutil.rmtree(stage, ignore_errors=True)
        raise
    if backup is not None:
        try:
            _remove_path(backup)
        except OSError as exc:
            print(f"Warning: failed to remove previous destination {backup}: {exc}", file=sys.stderr)
    return stats
