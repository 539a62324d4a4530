"""The pickle virtual machine.

The opcode handlers follow the structure of CPython's pure-Python
``pickle._Unpickler``: a ``dispatch`` table indexed by opcode byte, a
``stack`` list with a ``metastack`` of saved stacks for ``MARK`` frames,
and a ``memo`` dict. Two things differ:

* type references are resolved through a :class:`TypeRegistry` instead of
  being imported, and construction is delegated to the registered
  strategy, so no code named by the stream is ever run;
* every violation of the stack discipline is reported as a
  :class:`StackProtocolViolation` instead of surfacing as ``IndexError``.
"""

import codecs
import logging
import lzma
import sys
import zlib
from struct import unpack
from typing import Callable, Optional

from .cursor import ByteCursor, Unframer
from .errors import (DecodeError, MalformedLiteral, StackProtocolViolation,
                     StorageError, TruncatedStream, UnsupportedOpcode)
from .opcodes import *
from .records import Record
from .registry import TypeRegistry
from .strategies import ArrayStrategy, TypeRef

logger = logging.getLogger(__name__)


def decode_long(data: bytes) -> int:
    return int.from_bytes(data, byteorder='little', signed=True)


class _Stop(Exception):
    def __init__(self, value):
        self.value = value


class Unpickler:

    def __init__(self, file, registry: Optional[TypeRegistry] = None, *,
                 storage=None, encoding: str = 'ASCII', errors: str = 'strict',
                 trace: Optional[Callable] = None):
        """Prepare to decode one pickle from the binary file object *file*.

        *file* needs ``read(n)`` and ``readline()`` methods returning bytes.

        *registry* decides which serialized types can be reconstructed; the
        process-wide default registry is used when it is omitted. *storage*
        is the :class:`~skpickle.storage.Storage` the file came from, needed
        only by payloads that live in sibling files.

        *encoding* and *errors* tell how to decode 8-bit strings written by
        Python 2; ``encoding='bytes'`` keeps them as bytes.

        *trace*, when given, is called after every opcode as
        ``trace(opcode_name, offset, unpickler)``.
        """
        if registry is None:
            from .catalog import default_registry
            registry = default_registry()
        self.registry = registry
        self.storage = storage
        self.encoding = encoding
        self.errors = errors
        self.trace = trace
        self.proto = 0
        self._cursor = ByteCursor(file)
        self.memo = {}

    def load(self):
        """Read a pickled object representation from the open file.

        Return the reconstituted object hierarchy specified in the file.
        """
        self._unframer = Unframer(self._cursor)
        self.read = self._unframer.read
        self.readinto = self._unframer.readinto
        self.readline = self._unframer.readline
        self.metastack = []
        self.stack = []
        self.append = self.stack.append
        self.proto = 0
        self.offset = 0

        dispatch = self.dispatch
        try:
            while True:
                self.offset = self._unframer.tell()
                try:
                    key = self.read(1)
                except TruncatedStream:
                    raise TruncatedStream('stream ended before the STOP opcode', self.offset) from None
                handler = dispatch.get(key[0])
                if handler is None:
                    raise UnsupportedOpcode(key[0], self.offset)
                handler(self)
                if self.trace is not None:
                    self.trace(opcode_name(key[0]), self.offset, self)
        except _Stop as stopinst:
            return stopinst.value
        except DecodeError as exc:
            if exc.offset is None:
                exc.offset = self.offset
            raise
        except (OSError, EOFError, zlib.error, lzma.LZMAError) as exc:
            raise StorageError(f'cannot read pickle stream: {exc}', self.offset) from exc

    # Stack discipline

    def _pop(self):
        if not self.stack:
            raise StackProtocolViolation('unpickling stack underflow')
        return self.stack.pop()

    def _peek(self):
        if not self.stack:
            raise StackProtocolViolation('unpickling stack underflow')
        return self.stack[-1]

    def _pop_n(self, n: int) -> list:
        if len(self.stack) < n:
            raise StackProtocolViolation('unpickling stack underflow')
        items = self.stack[-n:]
        del self.stack[-n:]
        return items

    # Return a list of items pushed in the stack after last MARK instruction.
    def pop_mark(self) -> list:
        if not self.metastack:
            raise StackProtocolViolation('could not find MARK')
        items = self.stack
        self.stack = self.metastack.pop()
        self.append = self.stack.append
        return items

    def _read_length(self, fmt: str, opname: str) -> int:
        size, = unpack(fmt, self.read(8 if fmt == '<Q' else 4))
        if size < 0:
            raise MalformedLiteral(f'{opname} pickle has negative byte count')
        if size > sys.maxsize:
            raise MalformedLiteral(f"{opname} exceeds system's maximum size of {sys.maxsize} bytes")
        return size

    def _read_argline(self) -> bytes:
        return self.readline()[:-1]

    def find_class(self, module: str, name: str) -> TypeRef:
        strategy = self.registry.resolve(module, name)
        logger.debug('Resolved %s.%s to %s', module, name, strategy.target)
        return TypeRef(module, name, strategy)

    def _instantiate(self, cls, args, kwargs=None):
        if not isinstance(cls, TypeRef):
            raise StackProtocolViolation(f'cannot instantiate {type(cls).__name__}, expected a type reference')
        try:
            return cls.instantiate(tuple(args), kwargs)
        except (TypeError, ValueError, OverflowError) as err:
            raise MalformedLiteral(f'in constructor for {cls.module}.{cls.name}: {err}') from None

    def _decode_string(self, value: bytes):
        # Used to allow strings from Python 2 to be decoded either as
        # bytes or Unicode strings.  This should be used only with the
        # STRING, BINSTRING and SHORT_BINSTRING opcodes.
        if self.encoding == 'bytes':
            return value
        try:
            return value.decode(self.encoding, self.errors)
        except UnicodeDecodeError as exc:
            raise MalformedLiteral(f'cannot decode 8-bit string: {exc}') from None

    def _decode_utf8(self, data: bytes) -> str:
        try:
            return str(data, 'utf-8', 'surrogatepass')
        except UnicodeDecodeError as exc:
            raise MalformedLiteral(f'invalid UTF-8 string: {exc}') from None

    def _parse_int(self, data: bytes, opname: str) -> int:
        try:
            return int(data, 0)
        except ValueError:
            # protocol 0 writes decimal numbers, which may carry leading zeros
            try:
                return int(data)
            except ValueError:
                raise MalformedLiteral(f'invalid {opname} argument {data!r}') from None

    dispatch = {}

    # Protocol and framing

    def load_proto(self):
        proto = self.read(1)[0]
        if not 0 <= proto <= HIGHEST_PROTOCOL:
            raise MalformedLiteral(f'unsupported pickle protocol: {proto}')
        self.proto = proto
    dispatch[PROTO[0]] = load_proto

    def load_frame(self):
        frame_size, = unpack('<Q', self.read(8))
        if frame_size > sys.maxsize:
            raise MalformedLiteral(f'frame size > sys.maxsize: {frame_size}')
        self._unframer.load_frame(frame_size)
    dispatch[FRAME[0]] = load_frame

    def load_stop(self):
        if self.metastack:
            raise StackProtocolViolation('STOP reached inside an unclosed MARK frame')
        if len(self.stack) != 1:
            raise StackProtocolViolation(f'STOP reached with {len(self.stack)} values on the stack, expected 1')
        raise _Stop(self.stack.pop())
    dispatch[STOP[0]] = load_stop

    # Scalars

    def load_none(self):
        self.append(None)
    dispatch[NONE[0]] = load_none

    def load_false(self):
        self.append(False)
    dispatch[NEWFALSE[0]] = load_false

    def load_true(self):
        self.append(True)
    dispatch[NEWTRUE[0]] = load_true

    def load_int(self):
        data = self.readline()
        if data == FALSE[1:]:
            val = False
        elif data == TRUE[1:]:
            val = True
        else:
            val = self._parse_int(data[:-1], 'INT')
        self.append(val)
    dispatch[INT[0]] = load_int

    def load_binint(self):
        self.append(unpack('<i', self.read(4))[0])
    dispatch[BININT[0]] = load_binint

    def load_binint1(self):
        self.append(self.read(1)[0])
    dispatch[BININT1[0]] = load_binint1

    def load_binint2(self):
        self.append(unpack('<H', self.read(2))[0])
    dispatch[BININT2[0]] = load_binint2

    def load_long(self):
        val = self._read_argline()
        if val and val[-1] == b'L'[0]:
            val = val[:-1]
        self.append(self._parse_int(val, 'LONG'))
    dispatch[LONG[0]] = load_long

    def load_long1(self):
        n = self.read(1)[0]
        data = self.read(n)
        self.append(decode_long(data))
    dispatch[LONG1[0]] = load_long1

    def load_long4(self):
        n, = unpack('<i', self.read(4))
        if n < 0:
            # Corrupt or hostile pickle -- we never write one like this
            raise MalformedLiteral('LONG pickle has negative byte count')
        data = self.read(n)
        self.append(decode_long(data))
    dispatch[LONG4[0]] = load_long4

    def load_float(self):
        data = self._read_argline()
        try:
            self.append(float(data))
        except ValueError:
            raise MalformedLiteral(f'invalid FLOAT argument {data!r}') from None
    dispatch[FLOAT[0]] = load_float

    def load_binfloat(self):
        self.append(unpack('>d', self.read(8))[0])
    dispatch[BINFLOAT[0]] = load_binfloat

    # Strings and bytes

    def load_string(self):
        data = self._read_argline()
        # Strip outermost quotes
        if len(data) >= 2 and data[0] == data[-1] and data[0] in b'"\'':
            data = data[1:-1]
        else:
            raise MalformedLiteral('the STRING opcode argument must be quoted')
        try:
            value = codecs.escape_decode(data)[0]
        except ValueError as exc:
            raise MalformedLiteral(f'invalid STRING escape: {exc}') from None
        self.append(self._decode_string(value))
    dispatch[STRING[0]] = load_string

    def load_binstring(self):
        # Deprecated BINSTRING uses signed 32-bit length
        length = self._read_length('<i', 'BINSTRING')
        self.append(self._decode_string(self.read(length)))
    dispatch[BINSTRING[0]] = load_binstring

    def load_short_binstring(self):
        length = self.read(1)[0]
        self.append(self._decode_string(self.read(length)))
    dispatch[SHORT_BINSTRING[0]] = load_short_binstring

    def load_binbytes(self):
        length = self._read_length('<I', 'BINBYTES')
        self.append(self.read(length))
    dispatch[BINBYTES[0]] = load_binbytes

    def load_short_binbytes(self):
        length = self.read(1)[0]
        self.append(self.read(length))
    dispatch[SHORT_BINBYTES[0]] = load_short_binbytes

    def load_binbytes8(self):
        length = self._read_length('<Q', 'BINBYTES8')
        self.append(self.read(length))
    dispatch[BINBYTES8[0]] = load_binbytes8

    def load_bytearray8(self):
        length = self._read_length('<Q', 'BYTEARRAY8')
        b = bytearray(length)
        self.readinto(b)
        self.append(b)
    dispatch[BYTEARRAY8[0]] = load_bytearray8

    def load_readonly_buffer(self):
        buf = self._peek()
        try:
            with memoryview(buf) as m:
                if not m.readonly:
                    self.stack[-1] = m.toreadonly()
        except TypeError:
            raise StackProtocolViolation(f'READONLY_BUFFER applied to {type(buf).__name__}') from None
    dispatch[READONLY_BUFFER[0]] = load_readonly_buffer

    def load_unicode(self):
        data = self._read_argline()
        try:
            self.append(str(data, 'raw-unicode-escape'))
        except UnicodeDecodeError as exc:
            raise MalformedLiteral(f'invalid UNICODE argument: {exc}') from None
    dispatch[UNICODE[0]] = load_unicode

    def load_binunicode(self):
        length = self._read_length('<I', 'BINUNICODE')
        self.append(self._decode_utf8(self.read(length)))
    dispatch[BINUNICODE[0]] = load_binunicode

    def load_binunicode8(self):
        length = self._read_length('<Q', 'BINUNICODE8')
        self.append(self._decode_utf8(self.read(length)))
    dispatch[BINUNICODE8[0]] = load_binunicode8

    def load_short_binunicode(self):
        length = self.read(1)[0]
        self.append(self._decode_utf8(self.read(length)))
    dispatch[SHORT_BINUNICODE[0]] = load_short_binunicode

    # Composites

    def load_tuple(self):
        items = self.pop_mark()
        self.append(tuple(items))
    dispatch[TUPLE[0]] = load_tuple

    def load_empty_tuple(self):
        self.append(())
    dispatch[EMPTY_TUPLE[0]] = load_empty_tuple

    def load_tuple1(self):
        self.append(tuple(self._pop_n(1)))
    dispatch[TUPLE1[0]] = load_tuple1

    def load_tuple2(self):
        self.append(tuple(self._pop_n(2)))
    dispatch[TUPLE2[0]] = load_tuple2

    def load_tuple3(self):
        self.append(tuple(self._pop_n(3)))
    dispatch[TUPLE3[0]] = load_tuple3

    def load_empty_list(self):
        self.append([])
    dispatch[EMPTY_LIST[0]] = load_empty_list

    def load_empty_dictionary(self):
        self.append({})
    dispatch[EMPTY_DICT[0]] = load_empty_dictionary

    def load_empty_set(self):
        self.append(set())
    dispatch[EMPTY_SET[0]] = load_empty_set

    def load_frozenset(self):
        items = self.pop_mark()
        self.append(frozenset(self._hashable(items)))
    dispatch[FROZENSET[0]] = load_frozenset

    def load_list(self):
        items = self.pop_mark()
        self.append(items)
    dispatch[LIST[0]] = load_list

    def load_dict(self):
        items = self.pop_mark()
        self.append(self._pairs_to_dict(items, {}))
    dispatch[DICT[0]] = load_dict

    def _hashable(self, items):
        for item in items:
            try:
                hash(item)
            except TypeError:
                raise MalformedLiteral(f'unhashable {type(item).__name__} used as a set member or key') from None
        return items

    def _pairs_to_dict(self, items, target):
        if len(items) % 2:
            raise StackProtocolViolation('odd number of items for a key/value sequence')
        keys = self._hashable(items[0::2])
        for key, value in zip(keys, items[1::2]):
            target[key] = value
        return target

    def _target(self, types, opname):
        target = self._peek()
        if not isinstance(target, types):
            raise StackProtocolViolation(f'{opname} applied to {type(target).__name__}')
        return target

    def load_append(self):
        value = self._pop()
        self._target(list, 'APPEND').append(value)
    dispatch[APPEND[0]] = load_append

    def load_appends(self):
        items = self.pop_mark()
        self._target(list, 'APPENDS').extend(items)
    dispatch[APPENDS[0]] = load_appends

    def load_setitem(self):
        value = self._pop()
        key = self._pop()
        self._pairs_to_dict([key, value], self._target(dict, 'SETITEM'))
    dispatch[SETITEM[0]] = load_setitem

    def load_setitems(self):
        items = self.pop_mark()
        self._pairs_to_dict(items, self._target(dict, 'SETITEMS'))
    dispatch[SETITEMS[0]] = load_setitems

    def load_additems(self):
        items = self.pop_mark()
        self._target(set, 'ADDITEMS').update(self._hashable(items))
    dispatch[ADDITEMS[0]] = load_additems

    # Stack manipulation

    def load_pop(self):
        if self.stack:
            del self.stack[-1]
        else:
            self.pop_mark()
    dispatch[POP[0]] = load_pop

    def load_pop_mark(self):
        self.pop_mark()
    dispatch[POP_MARK[0]] = load_pop_mark

    def load_dup(self):
        self.append(self._peek())
    dispatch[DUP[0]] = load_dup

    def load_mark(self):
        self.metastack.append(self.stack)
        self.stack = []
        self.append = self.stack.append
    dispatch[MARK[0]] = load_mark

    # Memo

    def _memo_get(self, i: int):
        try:
            self.append(self.memo[i])
        except KeyError:
            raise StackProtocolViolation(f'Memo value not found at index {i}') from None

    def _memo_put(self, i: int):
        if i < 0:
            raise MalformedLiteral('negative PUT argument')
        self.memo[i] = self._peek()

    def load_get(self):
        self._memo_get(self._parse_int(self._read_argline(), 'GET'))
    dispatch[GET[0]] = load_get

    def load_binget(self):
        self._memo_get(self.read(1)[0])
    dispatch[BINGET[0]] = load_binget

    def load_long_binget(self):
        i, = unpack('<I', self.read(4))
        self._memo_get(i)
    dispatch[LONG_BINGET[0]] = load_long_binget

    def load_put(self):
        self._memo_put(self._parse_int(self._read_argline(), 'PUT'))
    dispatch[PUT[0]] = load_put

    def load_binput(self):
        self._memo_put(self.read(1)[0])
    dispatch[BINPUT[0]] = load_binput

    def load_long_binput(self):
        i, = unpack('<I', self.read(4))
        self._memo_put(i)
    dispatch[LONG_BINPUT[0]] = load_long_binput

    def load_memoize(self):
        memo = self.memo
        memo[len(memo)] = self._peek()
    dispatch[MEMOIZE[0]] = load_memoize

    # Types and construction

    def _read_type_line(self) -> str:
        data = self._read_argline()
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError:
            raise MalformedLiteral(f'type reference {data!r} is not valid UTF-8') from None

    def load_global(self):
        module = self._read_type_line()
        name = self._read_type_line()
        self.append(self.find_class(module, name))
    dispatch[GLOBAL[0]] = load_global

    def load_stack_global(self):
        name = self._pop()
        module = self._pop()
        if type(name) is not str or type(module) is not str:
            raise StackProtocolViolation('STACK_GLOBAL requires str')
        self.append(self.find_class(module, name))
    dispatch[STACK_GLOBAL[0]] = load_stack_global

    # INST and OBJ differ only in how they get a class object.
    def load_inst(self):
        module = self._read_type_line()
        name = self._read_type_line()
        klass = self.find_class(module, name)
        self.append(self._instantiate(klass, self.pop_mark()))
    dispatch[INST[0]] = load_inst

    def load_obj(self):
        # Stack is ... markobject classobject arg1 arg2 ...
        args = self.pop_mark()
        if not args:
            raise StackProtocolViolation('OBJ without a class')
        cls = args.pop(0)
        self.append(self._instantiate(cls, args))
    dispatch[OBJ[0]] = load_obj

    def load_newobj(self):
        args = self._pop()
        cls = self._pop()
        if not isinstance(args, tuple):
            raise StackProtocolViolation('NEWOBJ expected an argument tuple')
        self.append(self._instantiate(cls, args))
    dispatch[NEWOBJ[0]] = load_newobj

    def load_newobj_ex(self):
        kwargs = self._pop()
        args = self._pop()
        cls = self._pop()
        if not isinstance(args, tuple) or not isinstance(kwargs, dict):
            raise StackProtocolViolation('NEWOBJ_EX expected an argument tuple and a keyword dict')
        self.append(self._instantiate(cls, args, kwargs))
    dispatch[NEWOBJ_EX[0]] = load_newobj_ex

    def load_reduce(self):
        args = self._pop()
        func = self._peek()
        if not isinstance(args, tuple):
            raise StackProtocolViolation('REDUCE expected an argument tuple')
        self.stack[-1] = self._instantiate(func, args)
    dispatch[REDUCE[0]] = load_reduce

    def load_build(self):
        state = self._pop()
        inst = self._peek()
        if not isinstance(inst, Record):
            raise StackProtocolViolation(f'BUILD applied to {type(inst).__name__}')
        strategy = inst.strategy
        strategy.apply_state(inst, state)
        if isinstance(strategy, ArrayStrategy):
            array = strategy.materialize(inst, self._unframer, storage=self.storage, registry=self.registry)
            self.stack[-1] = array
            for slot, value in self.memo.items():
                if value is inst:
                    self.memo[slot] = array
    dispatch[BUILD[0]] = load_build


# Persistent ids, the extension registry and out-of-band buffers are not supported.
def _reject(opcode: bytes, opname: str):
    def load_unsupported(self):
        raise UnsupportedOpcode(opcode[0], self.offset, reason=f'unsupported opcode {opname}')
    return load_unsupported


for _opcode, _opname in ((PERSID, 'PERSID'), (BINPERSID, 'BINPERSID'),
                         (EXT1, 'EXT1'), (EXT2, 'EXT2'), (EXT4, 'EXT4'),
                         (NEXT_BUFFER, 'NEXT_BUFFER')):
    Unpickler.dispatch[_opcode[0]] = _reject(_opcode, _opname)
del _opcode, _opname
