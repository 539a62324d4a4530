"""Decode pickled scikit-learn, numpy and joblib objects without importing them.

Usage::

    import skpickle

    model = skpickle.load("model.pkl.z")
    model.target        # "sklearn.tree.DecisionTreeClassifier"
    model["tree_"]      # the fitted tree, another record
"""

from .catalog import default_registry
from .errors import (CorruptArrayPayload, DecodeError, MalformedLiteral,
                     StackProtocolViolation, StorageError, TruncatedStream,
                     UnknownType, UnsupportedOpcode)
from .records import DType, NDArray, Record, Scalar
from .registry import RegistryBuilder, TypeRegistry
from .storage import BytesStorage, CompressedStorage, FileStorage, Storage, open_storage
from .strategies import (ArrayStrategy, CallableStrategy, ExtensionStrategy,
                         GenericStrategy, TypeRef)
from .unpickler import Unpickler

__version__ = '0.3.0'


def decode(source, registry=None, **options):
    """Decode one pickle from a :class:`Storage` or a binary file object.

    A storage is closed before this function returns, whether decoding
    succeeded or not. *options* are passed on to :class:`Unpickler`.
    """
    if isinstance(source, Storage):
        with source:
            stream = source.open_sequential()
            return Unpickler(stream, registry, storage=source, **options).load()
    return Unpickler(source, registry, **options).load()


def loads(data: bytes, registry=None, **options):
    return decode(BytesStorage(data), registry, **options)


def load(path, registry=None, **options):
    """Decode the pickle stored at *path*, decompressing it if needed."""
    return decode(open_storage(path), registry, **options)
