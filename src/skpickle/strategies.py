"""Constructor strategies, one per calling convention of a serialized type.

The set of strategies is closed: the interpreter dispatches on the concrete
class returned by the registry, there is no common base class to extend.

``GenericStrategy``
    Python classes pickled through ``__reduce_ex__``: the stream creates an
    empty instance and then merges a state mapping into it with ``BUILD``.
``ExtensionStrategy``
    Compiled (Cython / C) types that pickle a positional argument tuple and
    a positional state tuple; both are stored under fixed field names.
``ArrayStrategy``
    Placeholders whose bulk data follows out-of-band. After ``BUILD`` the
    interpreter hands its reader to :meth:`ArrayStrategy.materialize`.
``CallableStrategy``
    A few plain Python builtins that pickles routinely reference.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from . import arrays
from .errors import MalformedLiteral, StackProtocolViolation
from .records import Record

logger = logging.getLogger(__name__)


def _merge_mapping(record: Record, state):
    # (state, slotstate) as produced by objects that define __slots__
    if isinstance(state, tuple) and len(state) == 2 and isinstance(state[0], (dict, type(None))):
        state, slotstate = state
        if slotstate:
            _merge_mapping(record, slotstate)
    if not state:
        return
    if not isinstance(state, dict):
        raise MalformedLiteral(f'{record.target} expects a state mapping, got {type(state).__name__}')
    record.update(state)


@dataclass(frozen=True)
class GenericStrategy:
    target: str
    record_class: type = Record

    def construct(self, module: str, name: str, args=(), kwargs=None) -> Record:
        record = self.record_class(module, name, self.target, args, strategy=self)
        if kwargs:
            record.update(kwargs)
        return record

    def apply_state(self, record: Record, state):
        _merge_mapping(record, state)


@dataclass(frozen=True)
class ExtensionStrategy:
    target: str
    record_class: type = Record
    arg_names: tuple = ()
    state_names: tuple = ()

    def construct(self, module: str, name: str, args=(), kwargs=None) -> Record:
        record = self.record_class(module, name, self.target, args, strategy=self)
        for arg_name, value in zip(self.arg_names, args):
            record.fields[arg_name] = value
        if kwargs:
            record.update(kwargs)
        return record

    def apply_state(self, record: Record, state):
        if isinstance(state, dict):
            record.update(state)
            return
        if not isinstance(state, (tuple, list)):
            raise MalformedLiteral(f'{record.target} expects a state tuple, got {type(state).__name__}')
        if not self.state_names:
            record.fields['state'] = state
            return
        for state_name, value in zip(self.state_names, state):
            record.fields[state_name] = value
        if len(state) > len(self.state_names):
            record.fields['extra_state'] = tuple(state[len(self.state_names):])


@dataclass(frozen=True)
class ArrayStrategy:
    """Out-of-band numpy payload.

    ``layout`` is ``'inline'`` when the bytes follow the ``BUILD`` opcode in
    the same stream, or ``'sibling'`` when the state names a separate
    ``.npy`` file next to the pickle.
    """

    target: str
    layout: str = 'inline'

    def construct(self, module: str, name: str, args=(), kwargs=None) -> Record:
        record = Record(module, name, self.target, args, strategy=self)
        if kwargs:
            record.update(kwargs)
        return record

    def apply_state(self, record: Record, state):
        _merge_mapping(record, state)

    def materialize(self, record: Record, reader, storage=None, registry=None):
        logger.debug('Materializing %s (%s layout)', record.target, self.layout)
        if self.layout == 'sibling':
            return arrays.read_sibling_array(record, storage)
        return arrays.read_inline_array(record, reader, registry)


@dataclass(frozen=True)
class CallableStrategy:
    target: str
    function: Callable

    def construct(self, module: str, name: str, args=(), kwargs=None):
        return self.function(*args, **(kwargs or {}))


Strategy = Union[GenericStrategy, ExtensionStrategy, ArrayStrategy, CallableStrategy]


class TypeRef:
    """Resolved type reference, pushed by ``GLOBAL`` and ``STACK_GLOBAL``.

    A reference is an ordinary value as well: models that keep a type
    (``dtype=numpy.float64``) hold on to the reference itself.
    """

    __slots__ = ('module', 'name', 'strategy')

    def __init__(self, module: str, name: str, strategy: Strategy):
        self.module = module
        self.name = name
        self.strategy = strategy

    @property
    def key(self) -> tuple[str, str]:
        return (self.module, self.name)

    @property
    def target(self) -> str:
        return self.strategy.target

    def instantiate(self, args=(), kwargs=None):
        return self.strategy.construct(self.module, self.name, args, kwargs)

    def __repr__(self) -> str:
        return f'<type {self.module}.{self.name}>'


def reconstructor(cls, base, state=None):
    """``copyreg._reconstructor``, used by protocols 0 and 1 to create instances."""
    if not isinstance(cls, TypeRef):
        raise StackProtocolViolation(f'_reconstructor expects a type reference, got {type(cls).__name__}')
    return cls.instantiate(())


def codecs_encode(text, encoding: Optional[str] = None, errors: str = 'strict'):
    """``_codecs.encode``, used by protocol 2 to carry ``bytes`` values."""
    if encoding not in ('latin1', 'latin-1', 'iso-8859-1'):
        raise MalformedLiteral(f'unsupported _codecs.encode encoding {encoding!r}')
    if isinstance(text, bytes):
        return text
    return text.encode(encoding, errors)


def buffer_from(cls):
    """``bytes`` / ``bytearray`` restricted to the forms pickles use: a buffer, or text and an encoding."""
    def construct(*args):
        if args and isinstance(args[0], int):
            raise MalformedLiteral(f'{cls.__name__}() of an integer size is not a serialized value')
        return cls(*args)
    construct.__name__ = cls.__name__
    return construct
