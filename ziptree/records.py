from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO

from .constants import FRAME_SYNC, FRAME_FLAG_FINAL, FRAME_SIZE
from .errors import CorruptEntryError


# Frame header (fixed 12 bytes)
# struct: <4s B 3x I
#  - sync[4]
#  - flags u8 (FRAME_FLAG_FINAL on the last frame of an entry)
#  - reserved[3]
#  - payload_len u32 (ciphertext + tag)
_FRAME_HDR_STRUCT = struct.Struct("<4sB3xI")

# Largest payload a reader accepts: one frame of compressed data plus AEAD tag
MAX_FRAME_PAYLOAD = FRAME_SIZE + 64


@dataclass
class FrameHeader:
    flags: int
    payload_len: int

    @property
    def final(self) -> bool:
        return bool(self.flags & FRAME_FLAG_FINAL)

    def pack(self) -> bytes:
        return _FRAME_HDR_STRUCT.pack(FRAME_SYNC, self.flags, self.payload_len)


def write_frame(f: BinaryIO, header: FrameHeader, payload: bytes) -> int:
    hdr = header.pack()
    f.write(hdr)
    f.write(payload)
    return len(hdr) + len(payload)


def read_exact(f: BinaryIO, n: int) -> bytes:
    buf = bytearray()
    while len(buf) < n:
        b = f.read(n - len(buf))
        if not b:
            break
        buf += b
    if len(buf) != n:
        raise EOFError("Unexpected EOF")
    return bytes(buf)


def read_frame_header(f: BinaryIO) -> FrameHeader:
    try:
        fixed = read_exact(f, _FRAME_HDR_STRUCT.size)
    except EOFError:
        raise CorruptEntryError("Encrypted payload truncated before final frame")
    sync, flags, payload_len = _FRAME_HDR_STRUCT.unpack(fixed)
    if sync != FRAME_SYNC:
        raise CorruptEntryError("Bad frame sync")
    if payload_len > MAX_FRAME_PAYLOAD:
        raise CorruptEntryError("Frame payload too large")
    return FrameHeader(flags=flags, payload_len=payload_len)


def read_frame(f: BinaryIO):
    """Returns (header, header_bytes, payload)."""
    header = read_frame_header(f)
    try:
        payload = read_exact(f, header.payload_len)
    except EOFError:
        raise CorruptEntryError("Frame payload truncated")
    return header, header.pack(), payload
