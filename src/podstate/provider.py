"""Providers — immutable descriptors of how to create and find a unit.

A provider never holds state itself. Reading it through a ref resolves
the instance its scope chain holds (honouring overrides), creating it on
first access, triggers computation for computed units, and returns
either the unit (StateProvider) or its current value (ValueProvider).

    count = state_provider(lambda: Unit(0), name="count")

    @computed(0)
    def doubled(ref, args):
        return ref.watch(count).value * 2

Calling a provider with arguments derives a family member, one instance
per distinct argument set:

    user = async_provider(fetch_user)
    ref.read(user(ref, user_id=7))
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable

from podstate.args import Args
from podstate.computed import AsyncComputed, Computed, StreamComputed
from podstate.observable import Unit
from podstate.ref import ProviderRef

logger = logging.getLogger("podstate.provider")


class Provider:
    """Base descriptor. Subclasses decide what read() exposes."""

    holds_units = True

    def __init__(
        self,
        create_fn: Callable[[], Any],
        *,
        uid: str | None = None,
        name: str | None = None,
        keep_alive: bool = False,
        original: Provider | None = None,
        parent: Provider | None = None,
        args: Args | None = None,
    ) -> None:
        self._create_fn = create_fn
        self.uid = uid or str(uuid.uuid4())
        self.name = name
        self.keep_alive = keep_alive
        self.original = original
        self.parent = parent
        self.args = Args.coerce(args)
        self._watchers: list = []

    # ─── Identity and storage ────────────────────────────────────────────

    @property
    def is_family(self) -> bool:
        return self.parent is not None

    @property
    def is_override(self) -> bool:
        return self.original is not None

    @property
    def binding(self) -> Callable[[], Any]:
        return self._create_fn

    @property
    def singleton(self) -> bool:
        return True

    @property
    def scope_owned(self) -> bool:
        """False only for keep-alive instances that outlive their declaring scope."""
        return not self.keep_alive or self.is_family or self.is_override

    def backing_key(self, scope) -> str:
        if self.is_override:
            return f"{self.uid}@{scope.id}:override"
        if self.scope_owned:
            return f"{self.uid}@{scope.id}"
        return self.uid

    def create(self) -> Any:
        instance = self._create_fn()
        if not isinstance(instance, Unit):
            raise TypeError(f"{self!r} must create a Unit, got {type(instance).__name__}")
        return instance

    def release(self, instance) -> None:
        if not instance.closed:
            instance.dispose()

    # ─── Consumer API ────────────────────────────────────────────────────

    def read(self, ref) -> Any:
        owner, effective, unit = ref.scope.resolve(self)
        self._compute_if_needed(owner, effective, unit)
        return self._expose(unit)

    def watch(self, ref) -> Any:
        owner, effective, unit = ref.scope.resolve(self)
        self._compute_if_needed(owner, effective, unit)
        ref.track(effective, unit)
        return self._expose(unit)

    def _compute_if_needed(self, owner, effective: Provider, unit: Unit) -> None:
        # The build context lives in the owning scope, whoever is reading.
        if unit.computable:
            unit.trigger(ProviderRef(owner, effective, unit), effective.args)
        elif unit.ref is None or not unit.ref.mounted:
            unit.ref = ProviderRef(owner, effective, unit)

    def _expose(self, unit: Unit) -> Any:
        return unit

    def __call__(self, ref, args: Args | dict | None = None, **named: Any) -> Provider:
        """Derive the family member for this argument set."""
        bundle = Args(Args.coerce(args), **named)
        uid = f"{self.uid}({bundle})"
        existing = ref.family_provider(uid)
        if existing is not None:
            return existing
        base = ref.scope.override_for(self.uid) or self
        logger.debug("Deriving family member %s", uid)
        return type(self)(
            base._create_fn,
            uid=uid,
            name=None if self.name is None else f"{self.name}({bundle})",
            keep_alive=True,
            parent=self,
            args=bundle,
        )

    # ─── Overrides ───────────────────────────────────────────────────────

    def override_with(self, create_fn: Callable[[], Any]) -> Provider:
        """Same identity, different factory. Declare it in a scope's overrides."""
        return type(self)(
            create_fn,
            uid=self.uid,
            name=self.name,
            keep_alive=self.keep_alive,
            original=self,
            parent=self.parent,
            args=self.args,
        )

    def override_with_value(self, value: Any) -> Provider:
        return self.override_with(lambda: value)

    # ─── Accumulated watchers ────────────────────────────────────────────

    @property
    def watchers(self) -> list:
        return list(self._watchers)

    def add_watcher(self, watcher) -> None:
        if watcher not in self._watchers:
            self._watchers.append(watcher)

    def remove_watcher(self, watcher) -> None:
        try:
            self._watchers.remove(watcher)
        except ValueError:
            pass

    def invalidate_watchers(self) -> None:
        """Mark every computed unit that watched this provider as stale."""
        for watcher in list(self._watchers):
            watcher.invalidate(None, refresh=False)

    def dispose(self, scope) -> None:
        """Drop the instance stored for scope and forget accumulated watchers."""
        key = self.backing_key(scope)
        if scope.registry.is_registered(key):
            scope.registry.unregister(key)
        self._watchers.clear()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name or self.uid})"


class StateProvider(Provider):
    """Exposes the unit itself, so consumers can call its methods."""


class ValueProvider(Provider):
    """Exposes the unit's current value."""

    def _expose(self, unit: Unit) -> Any:
        return unit.value


class FinalProvider(Provider):
    """Provides a plain object (a service, a client). Never watched.

    Keep-alive: one shared object. Otherwise a new object on every read.
    """

    holds_units = False

    @property
    def singleton(self) -> bool:
        return self.keep_alive or self.is_family

    def create(self) -> Any:
        instance = self._create_fn()
        if isinstance(instance, Unit):
            raise TypeError(f"{self!r} must not create a Unit; use state_provider instead")
        return instance

    def release(self, instance) -> None:
        pass

    def read(self, ref) -> Any:
        *_, instance = ref.scope.resolve(self)
        return instance

    def watch(self, ref) -> Any:
        raise TypeError(f"{self!r} provides a plain object and cannot be watched")


# ─── Factories ───────────────────────────────────────────────────────────────


def state_provider(create_fn, *, name=None, keep_alive=False, uid=None) -> StateProvider:
    return StateProvider(create_fn, name=name, keep_alive=keep_alive, uid=uid)


def value_provider(create_fn, *, name=None, keep_alive=False, uid=None) -> ValueProvider:
    return ValueProvider(create_fn, name=name, keep_alive=keep_alive, uid=uid)


def final_provider(create_fn, *, name=None, keep_alive=False, uid=None) -> FinalProvider:
    return FinalProvider(create_fn, name=name, keep_alive=keep_alive, uid=uid)


def async_provider(fetch, *, name=None, keep_alive=False, uid=None) -> StateProvider:
    """Provider of an AsyncComputed over ``fetch(ref, args)``."""
    return StateProvider(
        lambda: AsyncComputed(fetch),
        name=name or getattr(fetch, "__name__", None),
        keep_alive=keep_alive,
        uid=uid,
    )


def stream_provider(source, *, name=None, keep_alive=False, uid=None) -> StateProvider:
    """Provider of a StreamComputed over the async iterable ``source(ref, args)``."""
    return StateProvider(
        lambda: StreamComputed(source),
        name=name or getattr(source, "__name__", None),
        keep_alive=keep_alive,
        uid=uid,
    )


def computed(initial=None, *, name=None, keep_alive=False, uid=None):
    """Decorator turning a build function into a ValueProvider.

    Usage:
        @computed(0)
        def total(ref, args):
            return ref.watch(x) + ref.watch(y)

        container.read(total)  # 5
    """

    def decorator(fn) -> ValueProvider:
        return ValueProvider(
            lambda: Computed(initial, build=fn),
            name=name or fn.__name__,
            keep_alive=keep_alive,
            uid=uid,
        )

    return decorator
