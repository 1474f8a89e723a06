"""EventStream — the broadcast channel behind every Unit and ScopeRef.

Listeners are called synchronously, in the order they subscribed.
Delivery walks a snapshot of the listener list, so a listener that
subscribes or unsubscribes while an event is being delivered never
causes another listener to be skipped or called twice for that event.
A closed stream drops events and keeps no listeners.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

T = TypeVar("T")

Disposer = Callable[[], None]


class EventStream(Generic[T]):
    __slots__ = ("_listeners", "_closed")

    def __init__(self) -> None:
        self._listeners: list[Callable[[T], None]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def emit(self, event: T) -> None:
        if self._closed:
            return
        for listener in tuple(self._listeners):
            listener(event)

    def subscribe(self, listener: Callable[[T], None]) -> Disposer:
        """Deliver every later event to listener. Returns the disposer.

        Calling the disposer more than once is harmless. Subscribing to a
        closed stream registers nothing.
        """
        if self._closed:
            return _noop
        entry = _Entry(listener)
        self._listeners.append(entry)

        def _dispose() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return _dispose

    def dispose(self) -> None:
        self._closed = True
        self._listeners.clear()


class _Entry:
    # Identity wrapper: the same callable may be subscribed twice and
    # each disposer removes only its own registration.
    __slots__ = ("fn",)

    def __init__(self, fn: Callable) -> None:
        self.fn = fn

    def __call__(self, event) -> None:
        self.fn(event)


def _noop() -> None:
    pass
