"""Byte sources for the unpickler.

A :class:`Storage` hands out one sequential binary stream and releases it
on :meth:`Storage.close`. :func:`open_storage` looks at the first bytes of
a file and, when they carry the signature of one of the compressors joblib
writes with, returns a storage that decompresses on the fly. Anything else
is read as a raw pickle.
"""

import bz2
import gzip
import io
import logging
import lzma
import os
import zlib
from typing import Optional

from .errors import StorageError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

# joblib < 0.10: b'ZF' followed by the uncompressed length as a space-padded hex literal
ZFILE_PREFIX = b'ZF'
ZFILE_HEADER_SIZE = len(ZFILE_PREFIX) + len(hex(2 ** 64))

_ZLIB_PREFIX = b'\x78'
_GZIP_PREFIX = b'\x1f\x8b'
_BZ2_PREFIX = b'BZh'
_XZ_PREFIX = b'\xfd\x37\x7a\x58\x5a'
_LZMA_PREFIX = b'\x5d\x00'


class ZlibFile(io.RawIOBase):
    """Streaming reader of a zlib stream, starting ``skip`` bytes into *fileobj*."""

    def __init__(self, fileobj, skip: int = 0):
        self._fileobj = fileobj
        self._decompressor = zlib.decompressobj()
        self._buffer = b''
        if skip:
            fileobj.read(skip)

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._buffer:
            if self._decompressor.eof:
                return 0
            chunk = self._fileobj.read(CHUNK_SIZE)
            if not chunk:
                raise EOFError('compressed file ended before the end-of-stream marker was reached')
            self._buffer = self._decompressor.decompress(chunk)
        n = min(len(b), len(self._buffer))
        b[:n] = self._buffer[:n]
        self._buffer = self._buffer[n:]
        return n

    def close(self):
        if not self.closed:
            self._fileobj.close()
        super().close()


def _open_zlib(path, skip=0):
    return io.BufferedReader(ZlibFile(open(path, 'rb'), skip), CHUNK_SIZE)


def _open_zfile(path):
    with open(path, 'rb') as f:
        header = f.read(ZFILE_HEADER_SIZE + 1)
    skip = ZFILE_HEADER_SIZE
    # some writers put one more space between the header and the zlib stream
    if header[ZFILE_HEADER_SIZE:] == b' ':
        skip += 1
    return _open_zlib(path, skip)


# (name, signature check, opener); the first matching signature wins
CODECS = [
    ('zfile', lambda head: head.startswith(ZFILE_PREFIX + b'0x'), _open_zfile),
    ('gzip', lambda head: head.startswith(_GZIP_PREFIX), lambda path: gzip.open(path, 'rb')),
    ('bz2', lambda head: head.startswith(_BZ2_PREFIX), lambda path: bz2.open(path, 'rb')),
    ('xz', lambda head: head.startswith(_XZ_PREFIX), lambda path: lzma.open(path, 'rb', format=lzma.FORMAT_XZ)),
    ('lzma', lambda head: head.startswith(_LZMA_PREFIX), lambda path: lzma.open(path, 'rb', format=lzma.FORMAT_ALONE)),
    ('zlib', lambda head: head.startswith(_ZLIB_PREFIX) and int.from_bytes(head[:2], 'big') % 31 == 0, _open_zlib),
]


class Storage:
    """A source of pickle bytes, opened once and closed on every exit path."""

    def __init__(self, path=None):
        self.path = path
        self._stream = None

    def _open(self):
        raise NotImplementedError

    def open_sequential(self):
        if self._stream is not None:
            raise StorageError(f'{self} is already open')
        try:
            self._stream = self._open()
        except OSError as exc:
            raise StorageError(f'cannot open {self}: {exc}') from exc
        return self._stream

    def open_sibling(self, name: str):
        """Open a file stored next to this storage's file, as used by old joblib dumps."""
        if self.path is None:
            raise StorageError(f"{self} has no location to find '{name}' in")
        if os.path.basename(name) != name:
            raise StorageError(f"sibling file name '{name}' must not contain a directory")
        path = os.path.join(os.path.dirname(os.fspath(self.path)), name)
        try:
            return open(path, 'rb')
        except OSError as exc:
            raise StorageError(f'cannot open {path}: {exc}') from exc

    def close(self):
        if self._stream is not None:
            stream, self._stream = self._stream, None
            stream.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.path!r})'


class FileStorage(Storage):
    def _open(self):
        return open(self.path, 'rb')


class CompressedStorage(Storage):
    def __init__(self, path, codec: str):
        super().__init__(path)
        self.codec = codec

    def _open(self):
        for name, _, opener in CODECS:
            if name == self.codec:
                return opener(self.path)
        raise StorageError(f'unknown compression {self.codec!r}')

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.path!r}, {self.codec!r})'


class BytesStorage(Storage):
    """In-memory pickle bytes; sibling files are looked up next to *path* if one is given."""

    def __init__(self, data: bytes, path=None):
        super().__init__(path)
        self.data = data

    def _open(self):
        return io.BytesIO(self.data)


def _detect_codec(path) -> Optional[str]:
    try:
        with open(path, 'rb') as f:
            head = f.read(8)
    except OSError as exc:
        raise StorageError(f'cannot open {path}: {exc}') from exc

    for name, matches, opener in CODECS:
        if not matches(head):
            continue
        # A matching signature is only a hint; make sure the data really decompresses.
        try:
            with opener(path) as probe:
                probe.read(1)
        except (OSError, EOFError, zlib.error, lzma.LZMAError) as exc:
            logger.debug('%s looks like %s but does not decompress (%s), reading it raw', path, name, exc)
            return None
        return name
    return None


def open_storage(path) -> Storage:
    """Return a storage for *path*, decompressing transparently when possible.

    A file that does not decompress is not an error: it is read as a raw
    pickle. Failing to open the file at all raises :class:`StorageError`.
    """
    codec = _detect_codec(path)
    if codec is None:
        logger.debug('Reading %s as a raw pickle', path)
        return FileStorage(path)
    logger.debug('Reading %s as %s compressed data', path, codec)
    return CompressedStorage(path, codec)
