"""Reading numpy payloads that are stored next to, not inside, the opcode stream.

joblib keeps array buffers out of the pickle opcodes: the stream holds a
small wrapper object and the raw bytes follow right after the ``BUILD``
opcode that completes it. Three layouts are understood:

* the wrapper's state is empty and the bytes are preceded by a ``.npy``
  header (magic, version, ``descr`` / ``fortran_order`` / ``shape``),
* the wrapper's state already carries ``dtype``, ``shape`` and ``order``
  (``joblib.numpy_pickle.NumpyArrayWrapper``), optionally preceded by an
  alignment padding block, or holding a nested pickle for object arrays,
* the wrapper names a sibling ``.npy`` file (``NDArrayWrapper``).
"""

import ast
import logging
import struct

import numpy

from .errors import CorruptArrayPayload, DecodeError, TruncatedStream
from .records import DType, NDArray, Record

logger = logging.getLogger(__name__)

NPY_MAGIC = b'\x93NUMPY'

# major version -> struct format of the header length field
_HEADER_LENGTH_FORMATS = {1: '<H', 2: '<I', 3: '<I'}


def _tell(reader):
    tell = getattr(reader, 'tell', None)
    return tell() if tell is not None else None


def _read_exact(reader, n: int) -> bytes:
    offset = _tell(reader)
    try:
        data = reader.read(n)
    except TruncatedStream as exc:
        raise CorruptArrayPayload(f'array payload truncated: {exc.message}', exc.offset) from None
    if len(data) < n:
        raise CorruptArrayPayload(f'array payload truncated: wanted {n} bytes, got {len(data)}', offset)
    return data


def _as_dtype(value) -> numpy.dtype:
    try:
        if isinstance(value, DType):
            return value.to_numpy()
        return numpy.dtype(value)
    except (TypeError, ValueError, KeyError, DecodeError) as exc:
        raise CorruptArrayPayload(f'unsupported array dtype {value!r}: {exc}') from None


def _check_shape(shape, offset=None) -> tuple:
    if not isinstance(shape, (tuple, list)) or not all(
            isinstance(n, int) and not isinstance(n, bool) and n >= 0 for n in shape):
        raise CorruptArrayPayload(f'bad array shape {shape!r}', offset)
    return tuple(shape)


def read_npy_header(reader) -> tuple[numpy.dtype, tuple, bool]:
    """Read a ``.npy`` header and return ``(dtype, shape, fortran_order)``."""
    offset = _tell(reader)
    magic = _read_exact(reader, len(NPY_MAGIC))
    if magic != NPY_MAGIC:
        raise CorruptArrayPayload(f'bad array header magic {magic!r}', offset)

    major, minor = _read_exact(reader, 2)
    length_format = _HEADER_LENGTH_FORMATS.get(major)
    if length_format is None:
        raise CorruptArrayPayload(f'unsupported array format version {major}.{minor}', offset)
    header_length, = struct.unpack(length_format, _read_exact(reader, struct.calcsize(length_format)))
    encoding = 'utf-8' if major >= 3 else 'latin-1'
    try:
        text = _read_exact(reader, header_length).decode(encoding)
    except UnicodeDecodeError as exc:
        raise CorruptArrayPayload(f'array header is not valid {encoding}: {exc}', offset) from None

    try:
        header = ast.literal_eval(text)
    except (SyntaxError, ValueError, TypeError, MemoryError, RecursionError) as exc:
        raise CorruptArrayPayload(f'cannot parse array header {text!r}: {exc}', offset) from None
    if not isinstance(header, dict) or not {'descr', 'fortran_order', 'shape'} <= header.keys():
        raise CorruptArrayPayload(f'array header is missing required keys: {text!r}', offset)

    shape = _check_shape(header['shape'], offset)
    if not isinstance(header['fortran_order'], bool):
        raise CorruptArrayPayload(f"bad fortran_order {header['fortran_order']!r}", offset)

    descr = header['descr']
    # structured dtypes are written as a list of (name, format) tuples
    if isinstance(descr, list):
        descr = [tuple(field) for field in descr]
    return _as_dtype(descr), shape, header['fortran_order']


def read_array_data(reader, dtype: numpy.dtype, shape: tuple, fortran_order: bool) -> numpy.ndarray:
    if dtype.hasobject:
        raise CorruptArrayPayload('object arrays cannot be stored as raw bytes', _tell(reader))
    count = 1
    for n in shape:
        count *= n
    data = _read_exact(reader, count * dtype.itemsize)
    array = numpy.frombuffer(data, dtype=dtype, count=count)
    return array.reshape(shape, order='F' if fortran_order else 'C')


def _skip_alignment_padding(reader):
    padding_length = _read_exact(reader, 1)[0]
    if padding_length:
        _read_exact(reader, padding_length)


def _read_nested_array(reader, registry) -> numpy.ndarray:
    from .unpickler import Unpickler

    offset = _tell(reader)
    try:
        value = Unpickler(reader, registry).load()
        if isinstance(value, NDArray):
            value = value.to_numpy()
    except (DecodeError, TypeError, ValueError) as exc:
        raise CorruptArrayPayload(f'object array payload is corrupt: {exc}', offset) from None
    if isinstance(value, numpy.ndarray):
        return value
    raise CorruptArrayPayload(f'object array payload decoded to {type(value).__name__}', _tell(reader))


def read_inline_array(record: Record, reader, registry=None) -> numpy.ndarray:
    if 'dtype' not in record or 'shape' not in record:
        dtype, shape, fortran_order = read_npy_header(reader)
        return read_array_data(reader, dtype, shape, fortran_order)

    dtype = _as_dtype(record['dtype'])
    shape = _check_shape(record['shape'], _tell(reader))
    order = record.get('order', 'C')
    if order not in ('C', 'F'):
        raise CorruptArrayPayload(f'bad array order {order!r}', _tell(reader))
    fortran_order = order == 'F'
    logger.debug('Reading %s array of shape %s', dtype, shape)

    if dtype.hasobject:
        return _read_nested_array(reader, registry)
    if record.get('numpy_array_alignment_bytes') is not None:
        _skip_alignment_padding(reader)
    return read_array_data(reader, dtype, shape, fortran_order)


def read_sibling_array(record: Record, storage) -> numpy.ndarray:
    filename = record.get('filename')
    if not isinstance(filename, str):
        raise CorruptArrayPayload(f'{record.name} without a file name')
    if storage is None:
        raise CorruptArrayPayload(f"array file '{filename}' needs a storage to be read from")

    logger.debug("Reading array file '%s'", filename)
    with storage.open_sibling(filename) as stream:
        dtype, shape, fortran_order = read_npy_header(stream)
        return read_array_data(stream, dtype, shape, fortran_order)


def frombuffer(buffer, dtype, shape, order='C') -> numpy.ndarray:
    """``numpy.core.numeric._frombuffer``, how numpy pickles contiguous arrays with protocol 5."""
    dtype = _as_dtype(dtype)
    if isinstance(buffer, str):
        buffer = buffer.encode('latin-1')
    try:
        return numpy.frombuffer(buffer, dtype=dtype).reshape(tuple(shape), order=order)
    except (TypeError, ValueError) as exc:
        raise CorruptArrayPayload(f'cannot rebuild array of shape {shape!r} from buffer: {exc}') from None
