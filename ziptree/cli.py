from __future__ import annotations

import argparse
import getpass as _getpass
import sys
import time
from typing import List, Optional

from ziptree.constants import COMPRESSION_METHODS, DEFAULT_COMPRESSION
from ziptree.entryutil import ArchiveEntry
from ziptree.errors import (
    CorruptEntryError,
    DecryptionError,
    PasswordRequiredError,
    ZipTreeError,
)
from ziptree.packer import PackRequest, pack
from ziptree.reader import ArchiveReader
from ziptree.staging import pack_atomic, unpack_atomic
from ziptree.unpacker import UnpackRequest, unpack


def _summary(verb: str, files: int, nbytes: int, t0: float) -> str:
    dt = max(0.000001, time.time() - t0)
    mib = nbytes / (1024.0 * 1024.0)
    return f"Done: {verb} {files} files ({mib:.2f} MiB) in {dt:.1f}s; {mib / dt:.2f} MiB/s"


def cmd_pack(
    output: str,
    source: str,
    *,
    password: Optional[str] = None,
    compression: str = DEFAULT_COMPRESSION,
    level: Optional[int] = None,
    atomic: bool = False,
    quiet: bool = False,
) -> bool:
    """Pack a directory tree into a new archive.

    Args:
        output: Path of the archive to write.
        source: Directory whose files are stored.
        password: Optional password; when provided every entry is encrypted.
        compression: One of "store", "deflate", "bzip2", "lzma".
        level: Compression level passed to the compressor.
        atomic: Write to a temporary file and move it into place on success.
        quiet: Limit output to the summary line.
    """
    request = PackRequest(
        output_path=output,
        source_dir=source,
        password=password,
        compression=compression,
        compresslevel=level,
    )

    def _progress(entry: ArchiveEntry) -> None:
        if not quiet:
            print(f"  packing: {entry.name}")

    t0 = time.time()
    stats = (pack_atomic if atomic else pack)(request, progress=_progress)
    print(_summary("packed", stats.files, stats.bytes, t0))
    return True


def cmd_unpack(
    archive: str,
    outdir: str,
    *,
    password: Optional[str] = None,
    atomic: bool = False,
    restore_times: bool = True,
    quiet: bool = False,
) -> bool:
    """Unpack an archive into ``outdir``, replacing whatever is there."""
    request = UnpackRequest(
        archive_path=archive,
        out_dir=outdir,
        password=password,
        restore_times=restore_times,
    )

    def _progress(entry: ArchiveEntry) -> None:
        if not quiet:
            print(f"unpacking: {entry.name}")

    t0 = time.time()
    stats = (unpack_atomic if atomic else unpack)(request, progress=_progress)
    print(_summary("extracted", stats.files, stats.bytes, t0))
    return True


def cmd_list(archive: str) -> bool:
    """List archive entries: kind, size, modification time, name."""
    with ArchiveReader(archive) as r:
        for e in r.iter_entries():
            kind = "dir" if e.is_dir else ("file*" if e.encrypted else "file")
            stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(e.mtime))
            print(f"{kind}\t{e.size}\t{stamp}\t{e.name}")
    return True


def cmd_verify(archive: str, *, password: Optional[str] = None) -> bool:
    """Decode every entry and check its integrity.

    Prints:
        "OK" on success, "FAIL" followed by the damaged entry names otherwise.
    """
    with ArchiveReader(archive, password=password) as r:
        ok = r.verify()
        if ok:
            print("OK")
        else:
            print("FAIL")
            for name in r.bad_entries:
                print(f"  corrupt: {name}")
        return ok


def _resolve_password(args) -> Optional[str]:
    if getattr(args, "ask_password", False):
        return _getpass.getpass("Password: ")
    return getattr(args, "password", None)


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="ziptree",
        description="Pack directory trees into ZIP archives and unpack them again",
        epilog="Unpacking replaces the destination directory entirely.",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_pack = sub.add_parser("pack", help="Pack a directory")
    ap_pack.add_argument("output", help="Output archive path")
    ap_pack.add_argument("source", help="Directory to pack")
    ap_pack.add_argument("--password", help="Encryption password")
    ap_pack.add_argument("--ask-password", action="store_true", help="Prompt for the encryption password")
    ap_pack.add_argument(
        "--compression",
        choices=sorted(COMPRESSION_METHODS),
        default=DEFAULT_COMPRESSION,
        help=f"Compression method (default: {DEFAULT_COMPRESSION})",
    )
    ap_pack.add_argument("--level", type=int, help="Compression level")
    ap_pack.add_argument("--atomic", action="store_true", help="Write to a temporary file and move it into place")
    ap_pack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_unpack = sub.add_parser("unpack", help="Unpack an archive (replaces OUTDIR)")
    ap_unpack.add_argument("archive", help="Archive path")
    ap_unpack.add_argument("outdir", help="Destination directory; deleted first if it exists")
    ap_unpack.add_argument("--password", help="Archive password")
    ap_unpack.add_argument("--ask-password", action="store_true", help="Prompt for the archive password")
    ap_unpack.add_argument("--atomic", action="store_true", help="Extract to a staging directory and swap it in")
    ap_unpack.add_argument("--no-times", action="store_true", help="Do not restore modification times")
    ap_unpack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List archive contents")
    ap_list.add_argument("archive", help="Archive path")

    ap_verify = sub.add_parser("verify", help="Verify archive integrity")
    ap_verify.add_argument("archive", help="Archive path")
    ap_verify.add_argument("--password", help="Archive password")
    ap_verify.add_argument("--ask-password", action="store_true", help="Prompt for the archive password")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "pack":
            cmd_pack(
                args.output,
                args.source,
                password=_resolve_password(args),
                compression=args.compression,
                level=args.level,
                atomic=args.atomic,
                quiet=args.quiet,
            )
        elif args.cmd == "unpack":
            cmd_unpack(
                args.archive,
                args.outdir,
                password=_resolve_password(args),
                atomic=args.atomic,
                restore_times=not args.no_times,
                quiet=args.quiet,
            )
        elif args.cmd == "list":
            cmd_list(args.archive)
        elif args.cmd == "verify":
            success = cmd_verify(args.archive, password=_resolve_password(args))
            sys.exit(0 if success else 1)
        else:
            raise RuntimeError("Unknown command")
    except PasswordRequiredError:
        print("Error: Archive is encrypted. Provide --password.", file=sys.stderr)
        sys.exit(2)
    except DecryptionError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except CorruptEntryError as e:
        print(f"Error: archive is damaged: {e}", file=sys.stderr)
        sys.exit(2)
    except (ZipTreeError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
