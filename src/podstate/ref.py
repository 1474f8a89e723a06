"""Refs — the dependency-tracking contexts handed to consumers.

A ScopeRef belongs to a UI consumer: what it watches asks the consumer
to rebuild. A ProviderRef belongs to one build of one computed unit:
what it watches invalidates and recomputes that unit.

    @computed(0)
    def total(ref, args):
        return ref.watch(x) + ref.watch(y)   # recomputed when x or y change
"""

from __future__ import annotations

import abc
import itertools
from typing import Any, Callable

from podstate.errors import InvalidationError, PodstateError
from podstate.listener import UnitListener
from podstate.observable import schedule
from podstate.stream import Disposer, EventStream

_consumer_ids = itertools.count(1)


class Ref(abc.ABC):
    """Operations shared by every dependency-tracking context."""

    scope = None

    @property
    def mounted(self) -> bool:
        return self.scope is not None and self.scope.mounted

    def read(self, provider) -> Any:
        """Current value, without subscribing to future changes."""
        return provider.read(self)

    def watch(self, provider) -> Any:
        """Current value, and rebuild this consumer when it changes."""
        return provider.watch(self)

    def listen(
        self,
        provider,
        callback: Callable[[Any, Any], None],
        *,
        listen_when: Callable[[Any], Any] | None = None,
    ) -> Disposer:
        """Call ``callback(previous, current)`` on every later change of provider.

        ``listen_when(unit)`` gates the callback: it is skipped when the
        predicate returns False or the same result as the previous time.
        The subscription ends when the owning scope is disposed, or when
        the returned disposer is called.
        """
        self.read(provider)
        _, effective, unit = self.scope.resolve(provider)
        if not effective.holds_units:
            raise TypeError(f"{provider!r} provides a plain object and cannot be listened to")
        listener = UnitListener(
            unit,
            lambda change: callback(change.previous, change.current),
            listen_when=listen_when,
        )
        self.on_dispose(listener.cancel)
        return listener.cancel

    def invalidate(self, provider) -> None:
        """Force the provider's computed unit to rebuild."""
        owner, effective, unit = self.scope.resolve(provider)
        if effective.holds_units and unit.computable:
            unit.invalidate(ProviderRef(owner, effective, unit))

    def refresh(self, provider) -> Any:
        """Invalidate, then read the fresh value."""
        self.invalidate(provider)
        return self.read(provider)

    def on_dispose(self, fn: Callable[[], None]) -> None:
        """Run fn when the owning scope is torn down."""
        self.scope.on_dispose(fn)

    def family_provider(self, uid: str):
        return self.scope.family_provider(uid)

    @abc.abstractmethod
    def track(self, provider, unit) -> None:
        """Record that this context watches provider, whose instance is unit."""

    @abc.abstractmethod
    def invalidate_self(self) -> None:
        ...

    def _detach(self) -> None:
        pass


class ScopeRef(Ref):
    """The context of a UI consumer attached to a scope."""

    def __init__(self, scope) -> None:
        self.scope = scope
        # Unique per consumer: two consumers of one scope keep separate edges.
        self.id = f"consumer:{scope.id}:{next(_consumer_ids)}"
        self.provider = None
        self._rebuilds: EventStream[None] = EventStream()

    def read(self, provider) -> Any:
        self.provider = provider
        return super().read(provider)

    def watch(self, provider) -> Any:
        self.provider = provider
        return super().watch(provider)

    def on_change(self, callback: Callable[[], None]) -> Disposer:
        """Register a re-render callback, fired when a watched provider changes."""
        return self._rebuilds.subscribe(lambda _: callback())

    def rebuild(self) -> None:
        if self.mounted:
            self._rebuilds.emit(None)

    def track(self, provider, unit) -> None:
        self.scope.add_edge(self.id, provider.uid, unit, lambda change: self.rebuild())

    def invalidate_self(self) -> None:
        """Invalidate the provider this consumer read last."""
        if self.provider is None:
            raise PodstateError("Nothing has been read through this ref yet")
        self.invalidate(self.provider)

    def dispose(self) -> None:
        """Stop this consumer: drop its watch edges and re-render callbacks."""
        if self.scope.mounted:
            self.scope.cancel_edges(self.id)
        self._rebuilds.dispose()

    def __repr__(self) -> str:
        return f"ScopeRef({self.id!r})"


class ProviderRef(Ref):
    """The context handed to the build of a provider's unit.

    ``scope`` is the scope that stores the unit. Reads resolve from there
    and the edges of the build are recorded there, so they live exactly
    as long as the unit's owner.
    """

    def __init__(self, scope, provider, unit) -> None:
        self.scope = scope
        self.provider = provider
        self.unit = unit

    @property
    def key(self) -> str:
        return self.provider.uid

    def track(self, provider, unit) -> None:
        if not self.unit.computable:
            return
        self.unit.track_source(unit)
        self.scope.add_edge(
            self.key,
            provider.uid,
            unit,
            self._on_dependency_changed,
            watcher=self.unit,
            watched_provider=provider,
            tracked=not self.provider.is_family,
            once=True,
        )

    def _on_dependency_changed(self, change) -> None:
        # Mark stale now; rebuild after every path has seen the change.
        self.unit.invalidate(self, refresh=False)
        schedule(self.unit, self._rebuild)

    def _rebuild(self) -> None:
        try:
            self.unit.refresh(self)
        except Exception as err:
            raise InvalidationError(self.unit, err) from err

    def invalidate_self(self) -> None:
        if self.unit.computable:
            self.unit.invalidate(self)

    def _detach(self) -> None:
        if self.scope.mounted:
            self.scope.cancel_edges(self.key)

    def __repr__(self) -> str:
        return f"ProviderRef({self.provider!r})"
