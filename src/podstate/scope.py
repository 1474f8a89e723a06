"""Scope — the lifecycle container for a region of the application.

A scope declares providers, may override providers of its ancestors for
its own subtree, owns the instances it creates (transient, family and
override instances), the watch edges recorded by the builds of units it
stores and by consumers reading through it, and a list of teardown
callbacks.

    with Scope([todo_list], parent=root) as scope:
        scope.ref.read(todo_list).add("write tests")
    # every owned unit is disposed here

Lifecycle: PENDING → mount() → MOUNTED → unmount() → DISPOSING → DISPOSED.
"""

from __future__ import annotations

import enum
import logging
import uuid
from typing import Any, Callable, Iterable

from podstate.errors import ProviderNotAvailableError, ScopeStateError
from podstate.listener import UnitListener
from podstate.ref import ScopeRef
from podstate.registry import InstanceRegistry

logger = logging.getLogger("podstate.scope")


class ScopeStatus(enum.Enum):
    PENDING = "pending"
    MOUNTED = "mounted"
    DISPOSING = "disposing"
    DISPOSED = "disposed"


class Scope:
    """Owns provider instances, watch edges and teardown callbacks."""

    def __init__(
        self,
        providers: Iterable = (),
        overrides: Iterable = (),
        *,
        parent: Scope | None = None,
        registry: InstanceRegistry | None = None,
        scope_id: str | None = None,
        name: str | None = None,
    ) -> None:
        self.id = scope_id or uuid.uuid4().hex
        self.name = name
        self.parent = parent
        if registry is not None:
            self.registry = registry
        elif parent is not None:
            self.registry = parent.registry
        else:
            self.registry = InstanceRegistry()
        self._owns_registry = registry is None and parent is None

        self._declared = {p.uid: p for p in providers}
        self._overrides = {}
        for override in overrides:
            if not override.is_override:
                raise ValueError(f"{override!r} is not an override; use override_with()")
            self._overrides[override.uid] = override

        self._status = ScopeStatus.PENDING
        self._families: dict[str, Any] = {}
        self._owned: dict[str, Any] = {}
        self._edges: dict[str, dict[str, UnitListener]] = {}
        self._dispose_fns: list[Callable[[], None]] = []
        self._children: list[Scope] = []
        self._ref: ScopeRef | None = None

    # ─── Lifecycle ───────────────────────────────────────────────────────

    @property
    def status(self) -> ScopeStatus:
        return self._status

    @property
    def mounted(self) -> bool:
        return self._status is ScopeStatus.MOUNTED

    def mount(self) -> Scope:
        if self._status is not ScopeStatus.PENDING:
            raise ScopeStateError(f"{self!r} cannot be mounted from state {self._status.value}")
        if self.parent is not None and not self.parent.mounted:
            raise ScopeStateError(f"Parent of {self!r} is not mounted")
        for provider in self._declared.values():
            self.register(provider)
        for override in self._overrides.values():
            self.register(override)
        self._status = ScopeStatus.MOUNTED
        if self.parent is not None:
            self.parent._children.append(self)
        logger.debug(
            "Mounted %r: %d providers, %d overrides",
            self, len(self._declared), len(self._overrides),
        )
        return self

    def unmount(self) -> None:
        """Tear down: children, teardown callbacks, watch edges, owned instances."""
        if self._status is not ScopeStatus.MOUNTED:
            raise ScopeStateError(f"{self!r} is not mounted (state: {self._status.value})")
        self._status = ScopeStatus.DISPOSING

        for child in reversed(list(self._children)):
            if child.mounted:
                child.unmount()

        for fn in self._dispose_fns:
            try:
                fn()
            except Exception:
                logger.exception("Teardown callback %r of %r failed", fn, self)
        self._dispose_fns.clear()

        for watcher_key in list(self._edges):
            self.cancel_edges(watcher_key, invalidate_watcher=True)

        owned = list(self._owned.values())
        for provider in owned:
            provider.invalidate_watchers()
        for provider in owned:
            provider.dispose(self)
        self._owned.clear()
        self._families.clear()

        if self._ref is not None:
            self._ref.dispose()
        if self.parent is not None and self in self.parent._children:
            self.parent._children.remove(self)
        if self._owns_registry:
            self.registry.clear()

        self._status = ScopeStatus.DISPOSED
        logger.debug("Unmounted %r: disposed %d instances", self, len(owned))

    def __enter__(self) -> Scope:
        return self.mount()

    def __exit__(self, *exc) -> None:
        if self.mounted:
            self.unmount()

    def _ensure_mounted(self) -> None:
        if self._status is not ScopeStatus.MOUNTED:
            raise ScopeStateError(f"{self!r} is not mounted (state: {self._status.value})")

    # ─── Instances ───────────────────────────────────────────────────────

    @property
    def ref(self) -> ScopeRef:
        """The consumer context of this scope."""
        if self._ref is None:
            self._ref = ScopeRef(self)
        return self._ref

    def register(self, provider) -> str:
        """Register provider's backing storage under this scope."""
        key = provider.backing_key(self)
        register = (
            self.registry.register_singleton
            if provider.singleton
            else self.registry.register_factory
        )
        created = register(key, provider.create, binding=provider.binding, dispose=provider.release)
        if created:
            if provider.scope_owned:
                self._owned[key] = provider
            if provider.is_family:
                self._families[provider.uid] = provider
        return key

    def instance(self, provider) -> Any:
        key = provider.backing_key(self)
        if not self.registry.is_registered(key):
            self.register(provider)
        return self.registry.get(key)

    def resolve(self, provider) -> tuple:
        """Return ``(owner scope, effective provider, instance)``, creating the instance if needed.

        The owner is the scope that stores the instance. Builds run against
        it, so a computed unit sees the dependencies visible from where it
        lives, not from whichever descendant read it first.
        """
        self._ensure_mounted()
        owner, effective = self._find_override(provider.uid)
        if effective is None:
            effective = provider
            if provider.is_family:
                owner = (
                    self._find_family_owner(provider.uid)
                    or self._find_override(provider.parent.uid)[0]
                    or self._find_declaring(provider.parent.uid)
                    or self
                )
            else:
                owner = self._find_declaring(provider.uid)
                if owner is None:
                    raise ProviderNotAvailableError(provider)
        return owner, effective, owner.instance(effective)

    def _chain(self):
        scope = self
        while scope is not None:
            yield scope
            scope = scope.parent

    def _find_override(self, uid: str) -> tuple:
        for scope in self._chain():
            if uid in scope._overrides:
                return scope, scope._overrides[uid]
        return None, None

    def _find_declaring(self, uid: str) -> Scope | None:
        for scope in self._chain():
            if uid in scope._declared:
                return scope
        return None

    def _find_family_owner(self, uid: str) -> Scope | None:
        for scope in self._chain():
            if uid in scope._families:
                return scope
        return None

    def override_for(self, uid: str):
        return self._find_override(uid)[1]

    def family_provider(self, uid: str):
        owner = self._find_family_owner(uid)
        return None if owner is None else owner._families[uid]

    @property
    def families(self) -> dict:
        return dict(self._families)

    # ─── Watch edges ─────────────────────────────────────────────────────

    def add_edge(self, watcher_key: str, watched_uid: str, unit, callback, **options) -> UnitListener:
        """Subscribe watcher to unit, replacing its previous edge to the same provider."""
        self._ensure_mounted()
        edges = self._edges.setdefault(watcher_key, {})
        previous = edges.pop(watched_uid, None)
        if previous is not None:
            previous.cancel(invalidate_watcher=False)
        listener = UnitListener(
            unit,
            callback,
            on_close=lambda: self._drop_edge(watcher_key, watched_uid, listener),
            **options,
        )
        edges[watched_uid] = listener
        return listener

    def _drop_edge(self, watcher_key: str, watched_uid: str, listener: UnitListener) -> None:
        edges = self._edges.get(watcher_key)
        if edges is None or edges.get(watched_uid) is not listener:
            return
        del edges[watched_uid]
        if not edges:
            del self._edges[watcher_key]

    def cancel_edges(self, watcher_key: str, invalidate_watcher: bool = False) -> None:
        """Cancel every edge recorded for watcher_key."""
        for listener in list(self._edges.get(watcher_key, {}).values()):
            listener.cancel(invalidate_watcher=invalidate_watcher)
        self._edges.pop(watcher_key, None)

    @property
    def watch_edges(self) -> dict:
        """``{watcher_key: [watched_uid, ...]}`` of the active edges."""
        return {key: list(edges) for key, edges in self._edges.items()}

    def on_dispose(self, fn: Callable[[], None]) -> None:
        self._ensure_mounted()
        self._dispose_fns.append(fn)

    def __repr__(self) -> str:
        return f"Scope({self.name or self.id})"
