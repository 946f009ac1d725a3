"""Streaming request body reader supporting fixed-length and chunked framing."""

from typing import Callable, Optional

CRLF = b"\r\n"
READ_SIZE = 65536
MAX_CHUNK_LINE_BYTES = 4096


class RequestBody:
    """Reads a request body from a socket on demand instead of buffering it whole.

    ``recv`` is any callable behaving like ``socket.recv``. Bytes already read
    past the header block are passed in ``buffered``; once the body has been
    consumed, ``leftover()`` returns whatever belongs to the next pipelined
    request.

    ``before_first_recv`` runs once, right before the first socket read. The
    request parser uses it to send the interim ``100 Continue``.

    Truncated bodies raise ``ConnectionError``; malformed chunk framing raises
    ``ValueError``. Socket timeouts propagate as ``TimeoutError``.
    """

    def __init__(
        self,
        recv: Callable[[int], bytes],
        buffered: bytes = b"",
        content_length: int = 0,
        chunked: bool = False,
        before_first_recv: Optional[Callable[[], None]] = None,
    ) -> None:
        self._recv = recv
        self._before_first_recv = before_first_recv
        self._buffer = buffered
        self._chunked = chunked
        self._remaining = 0 if chunked else max(0, content_length)
        self._chunk_remaining = 0
        self._expect_chunk_crlf = False
        self._done = not chunked and self._remaining == 0
        self.bytes_read = 0

    @classmethod
    def empty(cls, buffered: bytes = b"") -> "RequestBody":
        """Return a body of length zero that keeps ``buffered`` as leftover."""
        return cls(_no_more_data, buffered)

    @classmethod
    def from_bytes(cls, payload: bytes) -> "RequestBody":
        return cls(_no_more_data, payload, content_length=len(payload))

    @property
    def consumed(self) -> bool:
        return self._done

    def leftover(self) -> bytes:
        """Return bytes received after the end of the body."""
        if not self._done:
            raise RuntimeError("Request body has not been fully read")
        return self._buffer

    def read(self, max_bytes: int = READ_SIZE) -> bytes:
        """Return up to ``max_bytes`` of body data, or ``b""`` at the end."""
        if self._done:
            return b""
        if self._chunked:
            data = self._read_chunked(max_bytes)
        else:
            data = self._read_fixed(max_bytes)
        self.bytes_read += len(data)
        return data

    def drain(self) -> int:
        """Read and discard the rest of the body, returning the bytes discarded."""
        discarded = 0
        while True:
            data = self.read()
            if not data:
                return discarded
            discarded += len(data)

    def _fill(self) -> None:
        if self._before_first_recv is not None:
            callback, self._before_first_recv = self._before_first_recv, None
            callback()
        data = self._recv(READ_SIZE)
        if not data:
            raise ConnectionError("Client closed connection before body completed")
        self._buffer += data

    def _take(self, size: int) -> bytes:
        data = self._buffer[:size]
        self._buffer = self._buffer[len(data) :]
        return data

    def _read_fixed(self, max_bytes: int) -> bytes:
        if not self._buffer:
            self._fill()
        data = self._take(min(max_bytes, self._remaining))
        self._remaining -= len(data)
        if self._remaining == 0:
            self._done = True
        return data

    def _read_line(self) -> bytes:
        while CRLF not in self._buffer:
            if len(self._buffer) > MAX_CHUNK_LINE_BYTES:
                raise ValueError("Chunk framing line too long")
            self._fill()
        line, self._buffer = self._buffer.split(CRLF, 1)
        return line

    def _read_chunked(self, max_bytes: int) -> bytes:
        while True:
            if self._chunk_remaining > 0:
                if not self._buffer:
                    self._fill()
                data = self._take(min(max_bytes, self._chunk_remaining))
                self._chunk_remaining -= len(data)
                if self._chunk_remaining == 0:
                    self._expect_chunk_crlf = True
                return data

            if self._expect_chunk_crlf:
                if self._read_line():
                    raise ValueError("Missing CRLF after chunk data")
                self._expect_chunk_crlf = False

            size_field = self._read_line().split(b";", 1)[0].strip()
            try:
                size = int(size_field, 16)
            except ValueError as exc:
                raise ValueError("Invalid chunk size") from exc
            if size < 0:
                raise ValueError("Negative chunk size")
            if size == 0:
                # trailer section ends with an empty line
                while self._read_line():
                    pass
                self._done = True
                return b""
            self._chunk_remaining = size


def _no_more_data(_size: int) -> bytes:
    return b""
