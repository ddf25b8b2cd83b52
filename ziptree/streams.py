from __future__ import annotations

import io
from typing import BinaryIO

from .constants import DEFAULT_BUFFER_SIZE


class OwnedStream(io.RawIOBase):
    """Stream wrapper with explicit ownership of the stream it wraps.

    ``close()`` runs once: it calls the ``_finish()`` hook, then closes the
    wrapped stream only when ``owns_stream`` is true. A non-owning wrapper
    leaves the wrapped stream open so the caller can keep using it after the
    wrapper has been finalized.
    """

    def __init__(self, stream: BinaryIO, *, owns_stream: bool = True):
        super().__init__()
        self._stream = stream
        self.owns_stream = owns_stream

    @property
    def stream(self) -> BinaryIO:
        return self._stream

    def readable(self) -> bool:
        return self._stream.readable()

    def writable(self) -> bool:
        return self._stream.writable()

    def readinto(self, b) -> int:
        data = self._stream.read(len(b))
        n = len(data)
        b[:n] = data
        return n

    def write(self, b) -> int:
        return self._stream.write(b)

    def _finish(self) -> None:
        """Subclass hook run before the wrapped stream is released."""

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._finish()
        finally:
            try:
                super().close()
            finally:
                if self.owns_stream:
                    self._stream.close()


class NullSink(io.RawIOBase):
    """Writable stream that discards everything."""

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        return len(b)


def _write_all(sink, view: memoryview) -> None:
    while view:
        n = sink.write(view)
        if n is None:
            raise BlockingIOError("sink is not ready for writing")
        if n >= len(view):
            return
        view = view[n:]


def copy_stream(source, sink, buffer_size: int = DEFAULT_BUFFER_SIZE) -> int:
    """Copy ``source`` into ``sink`` through one reused buffer.

    Reads until the source reports end of data and writes each chunk in full
    before the next read. Errors from either side propagate unchanged.

    Returns:
        The number of bytes transferred.
    """
    if buffer_size < 1:
        raise ValueError("buffer_size must be at least 1")
    buf = bytearray(buffer_size)
    view = memoryview(buf)
    readinto = getattr(source, "readinto", None)
    total = 0
    while True:
        if readinto is not None:
            n = readinto(view)
            if not n or n < 0:
                break
            _write_all(sink, view[:n])
        else:
            chunk = source.read(buffer_size)
            if not chunk:
                break
            n = len(chunk)
            _write_all(sink, memoryview(chunk))
        total += n
    return total
