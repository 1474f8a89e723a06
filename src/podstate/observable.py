"""Units — the runtime objects that providers create.

A Unit holds a current value and broadcasts every change to its
subscribers. Subscribers only see future changes, never the value as of
subscription time. Notifications run synchronously, in subscription
order, before set() returns. Once disposed, a Unit rejects mutation.

Rebuilds of computed dependents are batched: while a change is being
broadcast, invalidated dependents are only marked stale, and they rebuild
once the broadcast is over. A dependent reachable along two paths therefore
rebuilds once, after every path has seen the change. Wrap several
mutations in transaction() to batch them together.

Thread safety: call set_scheduler() once from the owning thread. After
that, any .set() from a background thread is auto-marshaled. Owner-thread
.set() remains synchronous.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Callable, Generic, NamedTuple, TypeVar

from podstate.errors import ClosedUnitError
from podstate.stream import Disposer, EventStream

T = TypeVar("T")

# ─── Auto-marshal ────────────────────────────────────────────────────────────
_scheduler = None
_scheduler_thread = None


def set_scheduler(scheduler) -> None:
    """Set the global thread scheduler for cross-thread Unit mutations.

    Call once from the owning (UI) thread:
        podstate.set_scheduler(app.call_from_thread)

    After this, any Unit.set() from a background thread is automatically
    marshaled. Owner-thread mutations remain synchronous. Pass None to
    go back to direct calls.
    """
    global _scheduler, _scheduler_thread
    _scheduler = scheduler
    _scheduler_thread = threading.current_thread() if scheduler is not None else None


# ─── Batching ────────────────────────────────────────────────────────────────
# Batch depth counter. When > 0, scheduled rebuilds are deferred.
_batch_depth: int = 0

# Deferred rebuilds keyed by the unit they refresh, in scheduling order.
_pending: dict[Any, Callable[[], None]] = {}


def begin_batch() -> None:
    """Enter a batching scope. Nested batches are supported."""
    global _batch_depth
    _batch_depth += 1


def end_batch() -> None:
    """Exit a batching scope. The outermost exit runs every deferred rebuild."""
    global _batch_depth
    try:
        if _batch_depth == 1:
            _flush_pending()
    finally:
        _batch_depth -= 1


def schedule(key: Any, fn: Callable[[], None]) -> None:
    """Run fn now, or once the current batch ends. One entry per key."""
    if _batch_depth > 0:
        _pending.setdefault(key, fn)
    else:
        fn()


def _flush_pending() -> None:
    # The depth stays raised here, so changes made by a rebuild queue up
    # behind it instead of flushing re-entrantly.
    try:
        while _pending:
            key = next(iter(_pending))
            _pending.pop(key)()
    except BaseException:
        # Whatever is left stays stale and rebuilds on its next read.
        _pending.clear()
        raise


def get_pending_count() -> int:
    """Number of rebuilds waiting for the current batch. Useful for testing."""
    return len(_pending)


@contextmanager
def transaction():
    """Batch several mutations; dependents rebuild once, at the end.

    Usage:
        with transaction():
            width.set(3)
            height.set(4)
            # area rebuilds here, once
    """
    begin_batch()
    try:
        yield
    finally:
        end_batch()


class Change(NamedTuple):
    """One value transition broadcast by a Unit."""

    previous: Any
    current: Any


class Unit(Generic[T]):
    """A value holder that broadcasts its changes.

    Subclass it to give a piece of state its own operations:

        class TodoList(Unit[list]):
            def __init__(self):
                super().__init__([])

            def add(self, title):
                self.set([*self.value, title])

    When created by a provider, ``ref`` is bound so methods can read
    other providers.
    """

    computable = False

    __slots__ = ("_value", "_changes", "ref")

    def __init__(self, value: T) -> None:
        self._value = value
        self._changes: EventStream[Change] = EventStream()
        self.ref = None

    @property
    def value(self) -> T:
        return self._value

    @value.setter
    def value(self, value: T) -> None:
        self.set(value)

    @property
    def changes(self) -> EventStream[Change]:
        """The broadcast stream behind subscribe()."""
        return self._changes

    @property
    def closed(self) -> bool:
        return self._changes.closed

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        """Write a new value. Auto-marshals from background threads."""
        if self.closed:
            raise ClosedUnitError(self)
        if _scheduler is not None and threading.current_thread() != _scheduler_thread:
            _scheduler(lambda v=value: self._set_direct(v))
        else:
            self._set_direct(value)

    def _set_direct(self, value: T) -> None:
        """Set value and notify. Always runs on the owning thread."""
        if self.closed:
            raise ClosedUnitError(self)
        old = self._value
        if old is not value and old != value:
            self._value = value
            begin_batch()
            try:
                self._changes.emit(Change(old, value))
            finally:
                end_batch()

    def subscribe(self, callback: Callable[[Change], None]) -> Disposer:
        """Call ``callback(change)`` on every future change. Returns the handle."""
        return self._changes.subscribe(callback)

    def unsubscribe(self, handle: Disposer) -> None:
        handle()

    def dispose(self) -> None:
        """Close the broadcast channel. Later set() calls raise ClosedUnitError."""
        self._changes.dispose()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value!r})"
