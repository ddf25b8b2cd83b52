from __future__ import annotations

import abc
import bz2
import hmac
import lzma
import os
import zipfile
import zlib
from typing import BinaryIO, Dict, Iterator, Optional

from .constants import FRAME_FLAG_FINAL, FRAME_SIZE
from .encryption import SALT_SIZE, TAG_SIZE, EncryptionContext, EncryptionParams, EntryCipher, KdfCost
from .entryutil import (
    ArchiveEntry,
    EncryptionExtra,
    encryption_extra,
    from_zipinfo,
    to_zipinfo,
)
from .errors import (
    BadPasswordError,
    CorruptArchiveError,
    CorruptEntryError,
    PasswordRequiredError,
    ZipTreeError,
)
from .records import FrameHeader, read_frame, write_frame
from .streams import OwnedStream
from .superblock import ArchiveHeader, read_header


class _StoredCoder:
    def compress(self, data) -> bytes:
        return bytes(data)

    def decompress(self, data) -> bytes:
        return bytes(data)

    def flush(self) -> bytes:
        return b""


def new_compressor(method: int, level: Optional[int] = None):
    """Incremental compressor with ``compress``/``flush`` for a ZIP method id."""
    if method == zipfile.ZIP_STORED:
        return _StoredCoder()
    if method == zipfile.ZIP_DEFLATED:
        return zlib.compressobj(
            level if level is not None else zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -zlib.MAX_WBITS
        )
    if method == zipfile.ZIP_BZIP2:
        return bz2.BZ2Compressor(level if level is not None else 9)
    if method == zipfile.ZIP_LZMA:
        return lzma.LZMACompressor(format=lzma.FORMAT_XZ, preset=level)
    # Unknown/unsupported method: fail fast
    raise ValueError(f"unsupported compression method: {method}")


class StreamDecompressor:
    """Incremental counterpart of ``new_compressor``."""

    def __init__(self, method: int):
        self.method = method
        if method == zipfile.ZIP_STORED:
            self._obj = None
        elif method == zipfile.ZIP_DEFLATED:
            self._obj = zlib.decompressobj(-zlib.MAX_WBITS)
        elif method == zipfile.ZIP_BZIP2:
            self._obj = bz2.BZ2Decompressor()
        elif method == zipfile.ZIP_LZMA:
            self._obj = lzma.LZMADecompressor(format=lzma.FORMAT_XZ)
        else:
            raise CorruptEntryError(f"unsupported compression method: {method}")

    def decompress(self, data: bytes) -> bytes:
        if self._obj is None:
            return data
        try:
            return self._obj.decompress(data)
        except (zlib.error, lzma.LZMAError, OSError, EOFError) as exc:
            raise CorruptEntryError(f"decompression failed: {exc}") from exc

    def finish(self) -> bytes:
        """Drain the decoder and require a complete stream with no trailing bytes."""
        if self._obj is None:
            return b""
        tail = b""
        if self.method == zipfile.ZIP_DEFLATED:
            try:
                tail = self._obj.flush()
            except zlib.error as exc:
                raise CorruptEntryError(f"decompression failed: {exc}") from exc
        if not self._obj.eof:
            raise CorruptEntryError("compressed stream ends prematurely")
        if self._obj.unused_data:
            raise CorruptEntryError("trailing data after compressed stream")
        return tail


def _frame_aad(header_bytes: bytes, index: int, name: bytes) -> bytes:
    return header_bytes + index.to_bytes(8, "little") + name


class EncryptingSink(OwnedStream):
    """Write sink that compresses, then seals fixed-size frames into ``stream``."""

    def __init__(
        self,
        stream: BinaryIO,
        cipher: EntryCipher,
        method: int,
        *,
        name: str,
        level: Optional[int] = None,
        owns_stream: bool = True,
    ):
        super().__init__(stream, owns_stream=owns_stream)
        self._cipher = cipher
        self._compressor = new_compressor(method, level)
        self._name = name.encode("utf-8")
        self._buf = bytearray()
        self._index = 0

    def readable(self) -> bool:
        return False

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        if self.closed:
            raise ValueError("write to closed sink")
        data = memoryview(b)
        self._buf += self._compressor.compress(data)
        while len(self._buf) >= FRAME_SIZE:
            self._emit(bytes(self._buf[:FRAME_SIZE]), final=False)
            del self._buf[:FRAME_SIZE]
        return data.nbytes

    def _emit(self, chunk: bytes, *, final: bool) -> None:
        header = FrameHeader(flags=FRAME_FLAG_FINAL if final else 0, payload_len=len(chunk) + TAG_SIZE)
        aad = _frame_aad(header.pack(), self._index, self._name)
        write_frame(self._stream, header, self._cipher.encrypt(self._index, aad, chunk))
        self._index += 1

    def _finish(self) -> None:
        self._buf += self._compressor.flush()
        while len(self._buf) > FRAME_SIZE:
            self._emit(bytes(self._buf[:FRAME_SIZE]), final=False)
            del self._buf[:FRAME_SIZE]
        self._emit(bytes(self._buf), final=True)
        self._buf.clear()


class DecryptingSource(OwnedStream):
    """Read source that opens the frames of an encrypted entry and decompresses them.

    The stream must end with exactly one final frame, produce exactly
    ``expected_size`` bytes and carry nothing after the final frame.
    """

    def __init__(
        self,
        stream: BinaryIO,
        cipher: EntryCipher,
        method: int,
        *,
        name: str,
        expected_size: int,
        owns_stream: bool = True,
    ):
        super().__init__(stream, owns_stream=owns_stream)
        self._cipher = cipher
        self._decoder = StreamDecompressor(method)
        self._entry = name
        self._name = name.encode("utf-8")
        self._expected = expected_size
        self._index = 0
        self._produced = 0
        self._pending = b""
        self._pos = 0
        self._done = False

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return False

    def readinto(self, b) -> int:
        try:
            while self._pos >= len(self._pending):
                if self._done:
                    return 0
                self._pending = self._next_plaintext()
                self._pos = 0
        except CorruptEntryError as exc:
            if exc.entry is None:
                exc.entry = self._entry
            raise
        except (zipfile.BadZipFile, EOFError) as exc:
            raise CorruptEntryError(str(exc), entry=self._entry) from exc
        n = min(len(b), len(self._pending) - self._pos)
        b[:n] = self._pending[self._pos : self._pos + n]
        self._pos += n
        return n

    def _next_plaintext(self) -> bytes:
        header, header_bytes, payload = read_frame(self._stream)
        aad = _frame_aad(header_bytes, self._index, self._name)
        compressed = self._cipher.decrypt(self._index, aad, payload)
        self._index += 1
        out = self._decoder.decompress(compressed)
        if header.final:
            out += self._decoder.finish()
            if self._stream.read(1):
                raise CorruptEntryError("data after final frame")
            self._done = True
        self._produced += len(out)
        if self._produced > self._expected:
            raise CorruptEntryError("entry longer than recorded size")
        if self._done and self._produced != self._expected:
            raise CorruptEntryError("entry shorter than recorded size")
        return out


class _CheckedSource(OwnedStream):
    """Maps zipfile integrity failures to ``CorruptEntryError``."""

    def __init__(self, stream: BinaryIO, *, name: str, owns_stream: bool = True):
        super().__init__(stream, owns_stream=owns_stream)
        self._entry = name

    def readinto(self, b) -> int:
        try:
            return super().readinto(b)
        except (zipfile.BadZipFile, zlib.error, lzma.LZMAError, EOFError) as exc:
            raise CorruptEntryError(str(exc), entry=self._entry) from exc


class Codec(abc.ABC):
    """Capability interface the archive engine drives.

    A codec turns entry metadata into a writable sink (compressing, optionally
    encrypting, and staging container metadata) and turns an entry yielded by
    ``entries()`` into a readable source of plaintext.
    """

    owns_stream: bool = False

    @abc.abstractmethod
    def open_write_sink(self, entry: ArchiveEntry, password: Optional[str] = None) -> BinaryIO:
        ...

    @abc.abstractmethod
    def open_read_source(self, entry: ArchiveEntry, password: Optional[str] = None) -> BinaryIO:
        ...

    @abc.abstractmethod
    def entries(self) -> Iterator[ArchiveEntry]:
        ...

    @property
    @abc.abstractmethod
    def requires_password(self) -> bool:
        ...

    @abc.abstractmethod
    def close(self) -> None:
        ...

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class ZipCodec(Codec):
    """ZIP container codec built on ``zipfile``.

    Unencrypted entries are plain ZIP entries. Entries written with a password
    are stored frames of compressed, XChaCha20-Poly1305 sealed data described
    by an extra field; the Argon2id parameters live in the archive comment.
    """

    def __init__(
        self,
        fileobj: BinaryIO,
        mode: str = "r",
        *,
        compression: int = zipfile.ZIP_DEFLATED,
        compresslevel: Optional[int] = None,
        kdf_cost: Optional[KdfCost] = None,
        owns_stream: bool = False,
    ):
        if mode not in ("r", "w"):
            raise ValueError("mode must be 'r' or 'w'")
        self.mode = mode
        self.compression = compression
        self.compresslevel = compresslevel
        self.kdf_cost = kdf_cost
        self.owns_stream = owns_stream
        self._fileobj = fileobj
        self._header: Optional[ArchiveHeader] = None
        self._contexts: Dict[str, EncryptionContext] = {}
        self._zf: Optional[zipfile.ZipFile] = None
        try:
            self._zf = zipfile.ZipFile(fileobj, mode=mode, compression=compression, allowZip64=True)
            if mode == "r":
                self._header = read_header(self._zf.comment)
        except zipfile.BadZipFile as exc:
            self.close()
            raise CorruptArchiveError(f"Not a readable ZIP archive: {exc}") from exc
        except (ZipTreeError, OSError, ValueError, NotImplementedError, RuntimeError):
            # Ensure handles are released on failure to avoid leaks
            self.close()
            raise

    def _zipfile(self) -> zipfile.ZipFile:
        if self._zf is None:
            raise RuntimeError("Archive not open")
        return self._zf

    def _context(self, password: str) -> EncryptionContext:
        ctx = self._contexts.get(password)
        if ctx is not None:
            return ctx
        if self._header is None:
            if self.mode == "r":
                raise CorruptArchiveError("Encrypted entry without archive key header")
            self._header = ArchiveHeader.new(EncryptionParams.generate(self.kdf_cost))
            self._zipfile().comment = self._header.pack()
        ctx = EncryptionContext.from_params(password, self._header.params)
        self._contexts[password] = ctx
        return ctx

    def open_write_sink(self, entry: ArchiveEntry, password: Optional[str] = None) -> BinaryIO:
        zf = self._zipfile()
        if self.mode != "w":
            raise RuntimeError("Archive not open for writing")
        zinfo = to_zipinfo(entry, self.compression)
        if self.compresslevel is not None:
            zinfo._compresslevel = self.compresslevel
        if not password:
            return zf.open(zinfo, mode="w")
        salt = os.urandom(SALT_SIZE)
        cipher = self._context(password).entry_cipher(salt)
        zinfo.compress_type = zipfile.ZIP_STORED
        zinfo.extra += EncryptionExtra(
            method=self.compression, size=entry.size, salt=salt, verifier=cipher.verifier
        ).pack()
        inner = zf.open(zinfo, mode="w")
        return EncryptingSink(inner, cipher, self.compression, name=entry.name, level=self.compresslevel)

    def open_read_source(self, entry: ArchiveEntry, password: Optional[str] = None) -> BinaryIO:
        info = entry.handle
        if not isinstance(info, zipfile.ZipInfo):
            try:
                info = self._zipfile().getinfo(entry.name)
            except KeyError:
                raise ZipTreeError("No such entry in archive", entry=entry.name)
        try:
            enc = encryption_extra(info)
        except CorruptEntryError as exc:
            raise CorruptEntryError(exc.message, entry=entry.name) from exc
        if enc is not None:
            if not password:
                raise PasswordRequiredError("Entry is encrypted; password required", entry=entry.name)
            cipher = self._context(password).entry_cipher(enc.salt)
            if not hmac.compare_digest(cipher.verifier, enc.verifier):
                raise BadPasswordError("Wrong password", entry=entry.name)
            inner = self._open_member(info, None)
            return DecryptingSource(inner, cipher, enc.method, name=info.filename, expected_size=enc.size)
        pwd = password.encode("utf-8") if password else None
        return _CheckedSource(self._open_member(info, pwd), name=info.filename)

    def _open_member(self, info: zipfile.ZipInfo, pwd: Optional[bytes]) -> BinaryIO:
        try:
            return self._zipfile().open(info, mode="r", pwd=pwd)
        except RuntimeError as exc:
            # zipfile reports ZipCrypto password problems as RuntimeError
            msg = str(exc)
            if "password required" in msg:
                raise PasswordRequiredError("Entry is encrypted; password required", entry=info.filename) from exc
            if "Bad password" in msg:
                raise BadPasswordError("Wrong password", entry=info.filename) from exc
            raise
        except NotImplementedError as exc:
            raise CorruptEntryError(str(exc), entry=info.filename) from exc
        except zipfile.BadZipFile as exc:
            raise CorruptEntryError(str(exc), entry=info.filename) from exc

    def entries(self) -> Iterator[ArchiveEntry]:
        for info in self._zipfile().infolist():
            try:
                entry = from_zipinfo(info)
            except CorruptEntryError as exc:
                raise CorruptEntryError(exc.message, entry=info.filename) from exc
            yield entry

    @property
    def requires_password(self) -> bool:
        for info in self._zipfile().infolist():
            if info.flag_bits & 0x1:
                return True
            if encryption_extra(info) is not None:
                return True
        return False

    def close(self) -> None:
        zf, self._zf = self._zf, None
        try:
            if zf is not None:
                zf.close()
        finally:
            if self.owns_stream and self._fileobj is not None:
                self._fileobj.close()
                self._fileobj = None
