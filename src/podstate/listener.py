"""UnitListener — one live subscription on a unit.

Watch edges and listen() calls are both UnitListeners: a subscription
on the backing unit plus the bookkeeping needed to undo it. Cancelling a
tracked listener also removes its watcher from the watched provider's
accumulated-watchers list, and invalidates a computed watcher without
rebuilding it.
"""

from __future__ import annotations

from typing import Any, Callable

from podstate.observable import Change, Unit


class UnitListener:
    def __init__(
        self,
        unit: Unit,
        callback: Callable[[Change], None],
        *,
        watcher: Any = None,
        watched_provider: Any = None,
        tracked: bool = False,
        listen_when: Callable[[Unit], Any] | None = None,
        once: bool = False,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self.unit = unit
        self.watcher = watcher
        self.watched_provider = watched_provider
        self._callback = callback
        self._tracked = tracked and watched_provider is not None and watcher is not None
        self._listen_when = listen_when
        self._once = once
        self._on_close = on_close
        self._active = True

        if self._tracked:
            watched_provider.add_watcher(watcher)
        self._last_condition = listen_when(unit) if listen_when is not None else None
        self._unsubscribe = unit.subscribe(self._on_change)

    @property
    def active(self) -> bool:
        return self._active

    def _should_fire(self) -> bool:
        if self._listen_when is None:
            return True
        condition = self._listen_when(self.unit)
        last, self._last_condition = self._last_condition, condition
        if condition is False:
            return False
        return condition != last

    def _on_change(self, change: Change) -> None:
        if not self._active or not self._should_fire():
            return
        if self._once:
            self.cancel()
        self._callback(change)

    def cancel(self, invalidate_watcher: bool = True) -> None:
        """Stop listening. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self._unsubscribe()
        if self._on_close is not None:
            self._on_close()
        if self._tracked:
            self.watched_provider.remove_watcher(self.watcher)
        if invalidate_watcher and getattr(self.watcher, "computable", False):
            self.watcher.invalidate(None, refresh=False)

    def __repr__(self) -> str:
        state = "active" if self._active else "cancelled"
        return f"UnitListener({self.unit!r}, {state})"
