"""Values that stand in for instances of serialized foreign types.

A :class:`Record` keeps the type it was created for, the positional
arguments it was constructed with and the named fields that later state
merged into it. Nothing in a record is executed or validated; the numpy
specific subclasses only add helpers that rebuild numpy objects from the
fields on request.
"""

import numpy

from .errors import MalformedLiteral


class Record:
    """An instance of a serialized type, reconstructed as plain data."""

    def __init__(self, module: str, name: str, target: str, args=(), strategy=None):
        self.module = module
        self.name = name
        self.target = target
        self.args = tuple(args)
        self.fields = {}
        self.strategy = strategy

    @property
    def key(self) -> tuple[str, str]:
        return (self.module, self.name)

    def __getitem__(self, key):
        return self.fields[key]

    def __contains__(self, key) -> bool:
        return key in self.fields

    def get(self, key, default=None):
        return self.fields.get(key, default)

    def keys(self):
        return self.fields.keys()

    def items(self):
        return self.fields.items()

    def update(self, state: dict):
        for key, value in state.items():
            self.fields[key] = value

    def __repr__(self) -> str:
        return f'<{self.target} record ({len(self.fields)} fields)>'


class DType(Record):
    """``numpy.dtype`` as pickled by numpy: ``dtype(obj, align, copy)`` plus a state tuple."""

    def to_numpy(self) -> numpy.dtype:
        obj = self.fields.get('obj')
        if isinstance(obj, bytes):
            obj = obj.decode('ascii')
        if not isinstance(obj, str):
            raise MalformedLiteral(f'dtype record without a type code: {obj!r}')

        # subarray dtypes, ('f8', (3,)), carry (base, shape) in subdescr
        subdescr = self.fields.get('subdescr')
        if subdescr is not None:
            if not isinstance(subdescr, tuple) or len(subdescr) != 2:
                raise MalformedLiteral(f'bad subarray description {subdescr!r}')
            subtype, shape = subdescr
            return numpy.dtype((_as_numpy(subtype), tuple(shape)))

        names = self.fields.get('names')
        if names:
            fields = self.fields.get('fields') or {}
            formats = []
            offsets = []
            for name in names:
                subtype, offset = fields[name][:2]
                formats.append(_as_numpy(subtype))
                offsets.append(offset)
            layout = {'names': list(names), 'formats': formats, 'offsets': offsets}
            elsize = self.fields.get('elsize', -1)
            if elsize is not None and elsize > 0:
                layout['itemsize'] = elsize
            return numpy.dtype(layout)

        base = numpy.dtype(obj)
        byteorder = self.fields.get('byteorder', '=')
        elsize = self.fields.get('elsize', -1)
        # flexible types encode their length in elsize, not in the type code
        if base.kind in 'SUV' and elsize is not None and elsize > 0:
            count = elsize // 4 if base.kind == 'U' else elsize
            base = numpy.dtype(f'{base.kind}{count}')
        if base.kind in 'mM':
            unit = self._datetime_unit()
            base = numpy.dtype(f'{base.kind}8[{unit}]' if unit else f'{base.kind}8')
        if byteorder in ('<', '>'):
            base = base.newbyteorder(byteorder)
        return base

    def _datetime_unit(self) -> str:
        # metadata is (metadata dict, (unit, num, den, events)) for datetime64 and timedelta64
        metadata = self.fields.get('metadata')
        if metadata is None:
            return ''
        try:
            unit, num = metadata[1][:2]
        except (TypeError, IndexError, ValueError):
            raise MalformedLiteral(f'bad datetime metadata {metadata!r}') from None
        if isinstance(unit, bytes):
            unit = unit.decode('ascii')
        if unit == 'generic':
            return ''
        if num == 1:
            return unit
        return f'{num}{unit}'


def _as_numpy(value) -> numpy.dtype:
    return value.to_numpy() if isinstance(value, DType) else numpy.dtype(value)


class NDArray(Record):
    """``numpy.ndarray`` pickled inline through ``numpy.core.multiarray._reconstruct``."""

    def to_numpy(self) -> numpy.ndarray:
        shape = tuple(self.fields.get('shape', ()))
        dtype = self.fields.get('dtype')
        dtype = _as_numpy(dtype)
        order = 'F' if self.fields.get('fortran_order') else 'C'
        data = self.fields.get('data')

        if dtype.hasobject:
            array = numpy.empty(len(data), dtype=object)
            array[:] = data
            return array.reshape(shape, order=order)

        if isinstance(data, str):
            # protocol 2 streams written by Python 2 carry the buffer as latin-1 text
            data = data.encode('latin-1')
        expected = int(numpy.prod(shape, dtype=numpy.int64)) * dtype.itemsize
        if len(data) != expected:
            raise MalformedLiteral(f'ndarray buffer holds {len(data)} bytes, expected {expected}')
        return numpy.frombuffer(data, dtype=dtype).reshape(shape, order=order)


class Scalar(Record):
    """numpy scalar, pickled as ``scalar(dtype, raw_bytes)``."""

    @property
    def value(self):
        dtype = self.fields.get('dtype')
        dtype = _as_numpy(dtype)
        data = self.fields.get('data')
        if dtype.hasobject:
            return data
        if isinstance(data, str):
            data = data.encode('latin-1')
        return numpy.frombuffer(data, dtype=dtype)[0]
