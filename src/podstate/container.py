"""ProviderContainer — the root of a provider tree.

The container owns the instance registry and a root scope, and tracks
the scopes the UI layer mounts beneath it by id:

    container = ProviderContainer([settings, session])
    container.on_scope_mount("editor", [document], parent_id=None)
    ...
    container.on_scope_unmount("editor")
    container.dispose()
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from podstate.errors import ScopeStateError
from podstate.ref import ScopeRef
from podstate.registry import InstanceRegistry
from podstate.scope import Scope

logger = logging.getLogger("podstate.container")

ROOT_SCOPE_ID = "root"


class ProviderContainer:
    def __init__(
        self,
        providers: Iterable = (),
        overrides: Iterable = (),
        *,
        registry: InstanceRegistry | None = None,
    ) -> None:
        self.registry = registry if registry is not None else InstanceRegistry()
        self.root = Scope(
            providers,
            overrides,
            registry=self.registry,
            scope_id=ROOT_SCOPE_ID,
            name="root",
        ).mount()
        self._scopes: dict[str, Scope] = {ROOT_SCOPE_ID: self.root}

    @property
    def ref(self) -> ScopeRef:
        return self.root.ref

    def read(self, provider) -> Any:
        return self.root.ref.read(provider)

    def scope(self, scope_id: str) -> Scope:
        try:
            return self._scopes[scope_id]
        except KeyError:
            raise ScopeStateError(f"No scope mounted with id {scope_id!r}") from None

    def on_scope_mount(
        self,
        scope_id: str,
        providers: Iterable = (),
        *,
        overrides: Iterable = (),
        parent_id: str | None = None,
    ) -> Scope:
        """Mount a scope for a UI region entering the tree."""
        if scope_id in self._scopes:
            raise ScopeStateError(f"A scope with id {scope_id!r} is already mounted")
        parent = self.scope(parent_id or ROOT_SCOPE_ID)
        scope = Scope(
            providers,
            overrides,
            parent=parent,
            scope_id=scope_id,
            name=scope_id,
        ).mount()
        self._scopes[scope_id] = scope
        logger.debug("Scope %r mounted under %r", scope_id, parent.id)
        return scope

    def on_scope_unmount(self, scope_id: str) -> None:
        """Unmount a scope (and its nested scopes) for a UI region leaving the tree."""
        if scope_id == ROOT_SCOPE_ID:
            raise ScopeStateError("The root scope is unmounted by dispose()")
        self.scope(scope_id).unmount()
        self._prune()
        logger.debug("Scope %r unmounted", scope_id)

    def _prune(self) -> None:
        for scope_id, scope in list(self._scopes.items()):
            if not scope.mounted:
                del self._scopes[scope_id]

    @property
    def scope_ids(self) -> list[str]:
        return list(self._scopes)

    def dispose(self) -> None:
        """Unmount everything and release every instance in the registry."""
        if self.root.mounted:
            self.root.unmount()
        self._prune()
        self.registry.clear()

    def __enter__(self) -> ProviderContainer:
        return self

    def __exit__(self, *exc) -> None:
        self.dispose()
