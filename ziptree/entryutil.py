from __future__ import annotations

import stat
import struct
import time
import zipfile
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .constants import (
    DOS_MAX_YEAR,
    DOS_MIN_YEAR,
    ENCRYPTION_VERSION,
    EXTRA_ENCRYPTION,
    EXTRA_EXT_TIMESTAMP,
)
from .errors import CorruptEntryError


_EXTRA_HDR_STRUCT = struct.Struct("<HH")
_EXT_TIMESTAMP_STRUCT = struct.Struct("<Bi")
# version u8, inner method u16, plaintext size u64, entry salt[16], verifier[8]
_ENCRYPTION_STRUCT = struct.Struct("<BHQ16s8s")

_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1


@dataclass
class ArchiveEntry:
    name: str
    size: int = 0
    mtime: int = 0
    is_dir: bool = False
    mode: Optional[int] = None
    encrypted: bool = False
    # codec-owned reference (zipfile.ZipInfo for ZipCodec)
    handle: Any = field(default=None, repr=False, compare=False)


@dataclass
class EncryptionExtra:
    method: int
    size: int
    salt: bytes
    verifier: bytes
    version: int = ENCRYPTION_VERSION

    def pack(self) -> bytes:
        data = _ENCRYPTION_STRUCT.pack(self.version, self.method, self.size, self.salt, self.verifier)
        return _EXTRA_HDR_STRUCT.pack(EXTRA_ENCRYPTION, len(data)) + data

    @classmethod
    def unpack(cls, data: bytes) -> "EncryptionExtra":
        if len(data) < _ENCRYPTION_STRUCT.size:
            raise CorruptEntryError("Encryption descriptor too short")
        version, method, size, salt, verifier = _ENCRYPTION_STRUCT.unpack(data[: _ENCRYPTION_STRUCT.size])
        if version != ENCRYPTION_VERSION:
            raise CorruptEntryError(f"Unsupported encryption descriptor version {version}")
        return cls(method=method, size=size, salt=salt, verifier=verifier, version=version)


def parse_extra(extra: bytes) -> Dict[int, bytes]:
    """Split a ZIP extra field into ``{header_id: data}``; malformed tails are ignored."""
    fields: Dict[int, bytes] = {}
    pos = 0
    while pos + _EXTRA_HDR_STRUCT.size <= len(extra):
        hid, ln = _EXTRA_HDR_STRUCT.unpack_from(extra, pos)
        pos += _EXTRA_HDR_STRUCT.size
        if pos + ln > len(extra):
            break
        fields.setdefault(hid, extra[pos : pos + ln])
        pos += ln
    return fields


def ext_timestamp_extra(mtime: int) -> bytes:
    mtime = max(_INT32_MIN, min(_INT32_MAX, int(mtime)))
    data = _EXT_TIMESTAMP_STRUCT.pack(1, mtime)
    return _EXTRA_HDR_STRUCT.pack(EXTRA_EXT_TIMESTAMP, len(data)) + data


def dos_date_time(mtime: int):
    """Local-time tuple for a ZIP header, clamped to the DOS range."""
    tm = time.localtime(mtime)
    if tm.tm_year < DOS_MIN_YEAR:
        return (DOS_MIN_YEAR, 1, 1, 0, 0, 0)
    if tm.tm_year > DOS_MAX_YEAR:
        return (DOS_MAX_YEAR, 12, 31, 23, 59, 58)
    return tm[:6]


def to_zipinfo(entry: ArchiveEntry, compress_type: int) -> zipfile.ZipInfo:
    zinfo = zipfile.ZipInfo(entry.name, date_time=dos_date_time(entry.mtime))
    zinfo.compress_type = compress_type
    zinfo.file_size = entry.size
    mode = entry.mode if entry.mode is not None else 0o644
    zinfo.external_attr = ((stat.S_IFREG | (mode & 0o7777)) & 0xFFFF) << 16
    zinfo.extra = ext_timestamp_extra(entry.mtime)
    return zinfo


def from_zipinfo(info: zipfile.ZipInfo) -> ArchiveEntry:
    fields = parse_extra(info.extra)
    ut = fields.get(EXTRA_EXT_TIMESTAMP)
    if ut and len(ut) >= _EXT_TIMESTAMP_STRUCT.size and ut[0] & 1:
        _flags, mtime = _EXT_TIMESTAMP_STRUCT.unpack(ut[: _EXT_TIMESTAMP_STRUCT.size])
    else:
        mtime = int(time.mktime(info.date_time + (0, 0, -1)))
    mode = None
    if info.create_system == 3:
        perm = (info.external_attr >> 16) & 0o7777
        if perm:
            mode = perm
    size = info.file_size
    enc = fields.get(EXTRA_ENCRYPTION)
    if enc is not None:
        size = EncryptionExtra.unpack(enc).size
    return ArchiveEntry(
        name=info.filename,
        size=size,
        mtime=mtime,
        is_dir=info.is_dir(),
        mode=mode,
        encrypted=enc is not None or bool(info.flag_bits & 0x1),
        handle=info,
    )


def encryption_extra(info: zipfile.ZipInfo) -> Optional[EncryptionExtra]:
    data = parse_extra(info.extra).get(EXTRA_ENCRYPTION)
    if data is None:
        return None
    return EncryptionExtra.unpack(data)
