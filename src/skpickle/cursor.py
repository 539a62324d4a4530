"""Positioned, framing-aware reading of a pickle byte stream."""

import io

from .errors import MalformedLiteral, TruncatedStream


class ByteCursor:
    """Forward-only reader over a binary file object that counts consumed bytes.

    Reads are exact: asking for ``n`` bytes either returns ``n`` bytes or
    raises :class:`TruncatedStream`.
    """

    def __init__(self, file):
        self._file_read = file.read
        self._file_readline = file.readline
        self.position = 0

    def read(self, n: int) -> bytes:
        if n < 0:
            raise MalformedLiteral(f'negative read length {n}', self.position)
        data = self._file_read(n)
        if len(data) < n:
            raise TruncatedStream(f'stream truncated: wanted {n} bytes, got {len(data)}',
                                  self.position + len(data))
        self.position += n
        return data

    def readinto(self, buf) -> int:
        buf[:] = self.read(len(buf))
        return len(buf)

    def readline(self) -> bytes:
        data = self._file_readline()
        if not data.endswith(b'\n'):
            raise TruncatedStream('stream truncated inside a newline-terminated argument',
                                  self.position + len(data))
        self.position += len(data)
        return data


class Unframer:
    """Serves reads from the current protocol-4 frame, falling through to the cursor.

    Out-of-band payloads are written after the producer closes the current
    frame, so a reader that continues past the end of a frame sees the raw
    bytes that follow it.
    """

    def __init__(self, cursor: ByteCursor):
        self.cursor = cursor
        self.current_frame = None
        self._frame_start = 0

    def tell(self) -> int:
        if self.current_frame:
            return self._frame_start + self.current_frame.tell()
        return self.cursor.position

    def readinto(self, buf) -> int:
        buf[:] = self.read(len(buf))
        return len(buf)

    def read(self, n: int) -> bytes:
        if self.current_frame:
            data = self.current_frame.read(n)
            if not data and n != 0:
                self.current_frame = None
                return self.cursor.read(n)
            if len(data) < n:
                raise TruncatedStream('pickle exhausted before end of frame', self.tell())
            return data
        else:
            return self.cursor.read(n)

    def readline(self) -> bytes:
        if self.current_frame:
            data = self.current_frame.readline()
            if not data:
                self.current_frame = None
                return self.cursor.readline()
            if data[-1] != b'\n'[0]:
                raise TruncatedStream('pickle exhausted before end of frame', self.tell())
            return data
        else:
            return self.cursor.readline()

    def load_frame(self, frame_size: int):
        if self.current_frame and self.current_frame.read() != b'':
            raise MalformedLiteral('beginning of a new frame before end of current frame', self.tell())
        self._frame_start = self.cursor.position
        self.current_frame = io.BytesIO(self.cursor.read(frame_size))
