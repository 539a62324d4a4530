"""Mapping from serialized ``(module, name)`` pairs to constructor strategies.

Registries are assembled with a :class:`RegistryBuilder` and frozen by
:meth:`RegistryBuilder.build`. A built :class:`TypeRegistry` cannot be
modified, so one instance can be shared by any number of concurrent
decode calls.
"""

import logging
from types import MappingProxyType

from .errors import UnknownType
from .strategies import Strategy

logger = logging.getLogger(__name__)

TypeKey = tuple[str, str]


class TypeRegistry:
    def __init__(self, entries: dict):
        self._entries = MappingProxyType(dict(entries))

    def resolve(self, module: str, name: str) -> Strategy:
        try:
            return self._entries[(module, name)]
        except KeyError:
            raise UnknownType(module, name) from None

    def __contains__(self, key) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self):
        return self._entries.keys()

    def items(self):
        return self._entries.items()

    def aliases_of(self, module: str, name: str) -> list[TypeKey]:
        """Return every key that resolves to the same strategy as ``(module, name)``."""
        strategy = self.resolve(module, name)
        return [key for key, value in self._entries.items() if value is strategy]

    def extend(self) -> 'RegistryBuilder':
        """Start a builder seeded with this registry's entries."""
        builder = RegistryBuilder()
        builder._entries.update(self._entries)
        return builder


class RegistryBuilder:
    def __init__(self):
        self._entries = {}

    def register(self, module: str, name: str, strategy: Strategy) -> 'RegistryBuilder':
        key = (module, name)
        existing = self._entries.get(key)
        if existing is not None and existing != strategy:
            raise ValueError(f'{module}.{name} is already registered as {existing.target}')
        self._entries[key] = strategy
        return self

    def alias(self, module: str, name: str, target_module: str, target_name: str) -> 'RegistryBuilder':
        """Make ``(module, name)`` resolve to the strategy of an already registered key."""
        try:
            strategy = self._entries[(target_module, target_name)]
        except KeyError:
            raise ValueError(f'cannot alias {module}.{name}: '
                             f'{target_module}.{target_name} is not registered') from None
        return self.register(module, name, strategy)

    def build(self) -> TypeRegistry:
        logger.debug('Built type registry with %d entries', len(self._entries))
        return TypeRegistry(self._entries)
