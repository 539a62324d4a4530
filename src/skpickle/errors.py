"""Exceptions raised while decoding a pickle stream.

Every failure aborts the whole decode call. Errors detected while reading
the stream carry the absolute byte ``offset`` at which the problem was
found, so that callers can point the user at the exact spot.
"""

from typing import Optional


class DecodeError(Exception):
    """Base class of all decoding failures."""

    def __init__(self, message: str, offset: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.offset = offset

    def __str__(self) -> str:
        if self.offset is None:
            return self.message
        return f'{self.message} (at byte offset {self.offset})'


class UnsupportedOpcode(DecodeError):
    def __init__(self, code: int, offset: Optional[int] = None, reason: str = 'unknown opcode'):
        super().__init__(f'{reason} 0x{code:02x}', offset)
        self.code = code


class UnknownType(DecodeError):
    """A type reference names a ``(module, name)`` pair the registry lacks.

    This is the usual failure when a newer producer emits a type that the
    registry was never taught, so both parts are kept for the caller.
    """

    def __init__(self, module: str, name: str, offset: Optional[int] = None):
        super().__init__(f"unsupported type '{module}.{name}'", offset)
        self.module = module
        self.name = name

    @property
    def key(self) -> tuple[str, str]:
        return (self.module, self.name)


class MalformedLiteral(DecodeError):
    pass


class TruncatedStream(MalformedLiteral):
    pass


class StackProtocolViolation(DecodeError):
    pass


class CorruptArrayPayload(DecodeError):
    pass


class StorageError(DecodeError):
    pass
