"""InstanceRegistry — the keyed instance store behind provider storage.

Singletons are created lazily on the first get() and cached; factories
create a new instance on every get(). Each registration remembers a
binding token (by default the factory itself): registering a key again
with the same token is a no-op, a different token is a programming error.

The registry is an explicit object. Containers create one and scopes
share their parent's, so separate containers (and tests) never see each
other's instances.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Hashable, Iterator

from podstate.errors import DuplicateBindingError

logger = logging.getLogger("podstate.registry")

_UNSET = object()


class _Registration:
    __slots__ = ("factory", "binding", "singleton", "dispose", "instance")

    def __init__(self, factory, binding, singleton, dispose):
        self.factory = factory
        self.binding = binding
        self.singleton = singleton
        self.dispose = dispose
        self.instance = _UNSET


class InstanceRegistry:
    """Keyed instance store with singleton and factory registrations."""

    def __init__(self) -> None:
        self._entries: dict[Hashable, _Registration] = {}

    def register_singleton(
        self,
        key: Hashable,
        factory: Callable[[], Any],
        *,
        binding: Any = None,
        dispose: Callable[[Any], None] | None = None,
    ) -> bool:
        """Register a lazily created, cached instance. Returns False if already bound."""
        return self._register(key, factory, binding, dispose, singleton=True)

    def register_factory(
        self,
        key: Hashable,
        factory: Callable[[], Any],
        *,
        binding: Any = None,
        dispose: Callable[[Any], None] | None = None,
    ) -> bool:
        """Register a factory called on every get(). Returns False if already bound."""
        return self._register(key, factory, binding, dispose, singleton=False)

    def _register(self, key, factory, binding, dispose, *, singleton: bool) -> bool:
        token = factory if binding is None else binding
        existing = self._entries.get(key)
        if existing is not None:
            if existing.binding is token and existing.singleton == singleton:
                return False
            raise DuplicateBindingError(key)
        self._entries[key] = _Registration(factory, token, singleton, dispose)
        logger.debug("Registered %s %r", "singleton" if singleton else "factory", key)
        return True

    def get(self, key: Hashable) -> Any:
        """Return the instance for key. Raises KeyError if nothing is registered."""
        entry = self._entries.get(key)
        if entry is None:
            raise KeyError(key)
        if not entry.singleton:
            return entry.factory()
        if entry.instance is _UNSET:
            entry.instance = entry.factory()
            logger.debug("Created singleton %r", key)
        return entry.instance

    def is_registered(self, key: Hashable) -> bool:
        return key in self._entries

    def unregister(self, key: Hashable) -> None:
        """Forget key, disposing its singleton instance if one was created."""
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        logger.debug("Unregistered %r", key)
        if entry.instance is not _UNSET and entry.dispose is not None:
            entry.dispose(entry.instance)

    def clear(self) -> None:
        """Unregister every key, most recent first."""
        for key in reversed(list(self._entries)):
            self.unregister(key)

    def keys(self) -> list:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
