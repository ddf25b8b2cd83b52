from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass
from typing import Optional

from .constants import HEADER_MAGIC, KDF_ARGON2ID, VERSION_MAJOR, VERSION_MINOR
from .encryption import EncryptionParams
from .errors import CorruptArchiveError


# Layout (little endian), stored as the ZIP archive comment:
# magic[8], ver_major u16, ver_minor u16, kdf_id u16,
# argon_time u32, argon_mem_kib u32, argon_lanes u32, kdf_salt[16],
# header_crc32 u32
_HEADER_STRUCT = struct.Struct("<8sHHHIII16sI")


@dataclass
class ArchiveHeader:
    version_major: int
    version_minor: int
    kdf_id: int
    params: EncryptionParams

    @classmethod
    def new(cls, params: EncryptionParams) -> "ArchiveHeader":
        return cls(VERSION_MAJOR, VERSION_MINOR, KDF_ARGON2ID, params)

    def pack(self) -> bytes:
        pre = _HEADER_STRUCT.pack(
            HEADER_MAGIC,
            self.version_major,
            self.version_minor,
            self.kdf_id,
            self.params.time_cost,
            self.params.memory_cost_kib,
            self.params.parallelism,
            self.params.salt,
            0,  # crc placeholder
        )
        crc = zlib.crc32(pre[:-4])
        return pre[:-4] + struct.pack("<I", crc)


def read_header(comment: bytes) -> Optional[ArchiveHeader]:
    """Parse the archive header from a ZIP comment; None when absent."""
    if not comment.startswith(HEADER_MAGIC):
        return None
    raw = comment[: _HEADER_STRUCT.size]
    if len(raw) != _HEADER_STRUCT.size:
        raise CorruptArchiveError("Archive header too short")
    (_magic, vmaj, vmin, kdf_id, atime, amem, alanes, salt, hdr_crc) = _HEADER_STRUCT.unpack(raw)
    if zlib.crc32(raw[:-4]) != hdr_crc:
        raise CorruptArchiveError("Archive header CRC mismatch")
    if vmaj != VERSION_MAJOR:
        raise CorruptArchiveError(f"Unsupported archive header version {vmaj}.{vmin}")
    if kdf_id != KDF_ARGON2ID:
        raise CorruptArchiveError("Unsupported KDF for encrypted archive")
    params = EncryptionParams(salt=salt, time_cost=atime, memory_cost_kib=amem, parallelism=alanes)
    return ArchiveHeader(version_major=vmaj, version_minor=vmin, kdf_id=kdf_id, params=params)
