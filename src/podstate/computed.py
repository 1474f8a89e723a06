"""Computed units — memoized, lazily triggered (re)computation.

A Computed is a Unit whose value comes from a build function. The build
runs on the first trigger() and its result is cached; later triggers
return the cache without building again. When a watched dependency
changes, the unit is invalidated and (unless told otherwise) rebuilt as
soon as that change has finished broadcasting, so its value stays current
even when nobody reads it. A cached value whose computed sources have
gone stale is rebuilt on read, so a build never sees a mix of old and
new upstream values.

Builds may be synchronous or return an awaitable. An awaitable result is
wrapped in a single asyncio task that is cached immediately, so every
trigger issued while it is pending gets the same in-flight task.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from typing import Any, Callable, TypeVar

from podstate.args import EMPTY_ARGS, Args
from podstate.async_value import AsyncValue
from podstate.errors import BuildFailureError, ClosedUnitError, CycleError, PodstateError
from podstate.observable import Unit, schedule

logger = logging.getLogger("podstate.computed")

T = TypeVar("T")

_UNSET = object()


class ComputeState(enum.Enum):
    UNCOMPUTED = "uncomputed"
    COMPUTING = "computing"
    SETTLED = "settled"


def _running_task():
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def _retrieve_exception(task: asyncio.Task) -> None:
    # Failures reach whoever awaits the task; mark them retrieved so an
    # unawaited eager refresh does not warn at garbage collection.
    if not task.cancelled():
        task.exception()


class Computed(Unit[T]):
    """A unit whose value is produced by a build function.

    Pass ``build`` or subclass and override :meth:`build`:

        total = Computed(0, build=lambda ref, args: ref.watch(x) + ref.watch(y))
    """

    computable = True

    __slots__ = ("args", "_build_fn", "_memo", "_building", "_sources")

    def __init__(self, value: T = None, build: Callable[..., Any] | None = None) -> None:
        super().__init__(value)
        self.args = EMPTY_ARGS
        self._build_fn = build
        self._memo = _UNSET
        self._building = False
        self._sources: list[Unit] = []

    @property
    def is_computed(self) -> bool:
        return self._memo is not _UNSET

    @property
    def state(self) -> ComputeState:
        if self._building:
            return ComputeState.COMPUTING
        if self._memo is _UNSET:
            return ComputeState.UNCOMPUTED
        if isinstance(self._memo, asyncio.Future) and not self._memo.done():
            return ComputeState.COMPUTING
        return ComputeState.SETTLED

    def build(self, ref, args: Args) -> Any:
        """Produce the next value. May return an awaitable."""
        if self._build_fn is None:
            return self.value
        return self._build_fn(ref, args)

    def trigger(self, ref, args: Args | None = None) -> Any:
        """Compute the value unless it is already cached.

        Returns the value, or the shared asyncio task while an async build
        is in flight.
        """
        if self.closed:
            raise ClosedUnitError(self)
        args = Args.coerce(args)
        if self._building:
            raise CycleError(f"{self!r} depends on itself")
        self.args = args

        if self._memo is not _UNSET:
            if isinstance(self._memo, asyncio.Future):
                if self._memo is _running_task():
                    raise CycleError(f"{self!r} awaits its own build")
                return self._memo
            if not self.has_stale_source():
                return self._memo
            logger.debug("Rebuilding %r: a source is stale", self)

        self._bind(ref)
        self._building = True
        try:
            result = self.build(ref, args)
        except CycleError:
            raise
        except Exception as err:
            logger.debug("Build of %r failed: %s", self, err)
            raise BuildFailureError(self, err) from err
        finally:
            self._building = False

        if inspect.isawaitable(result):
            self._memo = self._schedule(result)
            return self._memo

        self._memo = result
        if not self.closed:
            self.set(result)
        return result

    def invalidate(self, ref=None, refresh: bool = True) -> None:
        """Drop the cached result; with ``refresh``, rebuild once the current change settles."""
        self._memo = _UNSET
        if refresh and not self.closed:
            schedule(self, lambda: self.refresh(ref))

    def refresh(self, ref=None) -> None:
        """Rebuild now if stale and a consumer is alive; otherwise do nothing."""
        if self.closed:
            return
        if self._memo is not _UNSET and not self.has_stale_source():
            return
        target = self.ref if self.ref is not None and self.ref.mounted else ref
        if target is not None and target.mounted:
            self.trigger(target, self.args)

    def track_source(self, unit: Unit) -> None:
        """Remember that the current build read unit."""
        if unit is not self and unit not in self._sources:
            self._sources.append(unit)

    def has_stale_source(self) -> bool:
        """Has any computed unit this value was built from been invalidated since?"""
        for source in self._sources:
            if not source.computable or isinstance(source._memo, asyncio.Future):
                continue
            if source._memo is _UNSET or source.has_stale_source():
                return True
        return False

    async def result(self) -> T:
        """Await the cached result."""
        memo = self._memo
        if memo is _UNSET:
            raise PodstateError(f"{self!r} has not been computed")
        if isinstance(memo, asyncio.Future):
            return await memo
        return memo

    def dispose(self) -> None:
        self._memo = _UNSET
        self._sources.clear()
        super().dispose()

    def _bind(self, ref) -> None:
        # A fresh build forgets every edge recorded by the previous one.
        previous = self.ref
        if previous is not None and previous is not ref:
            previous._detach()
        self.ref = ref
        self._sources = []
        if ref is not None:
            ref._detach()

    def _schedule(self, pending) -> asyncio.Task:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(pending):
                pending.close()
            raise RuntimeError(f"{self!r} has an async build but no event loop is running") from None
        task = loop.create_task(self._settle(pending))
        task.add_done_callback(_retrieve_exception)
        return task

    async def _settle(self, pending) -> Any:
        task = asyncio.current_task()
        try:
            value = await pending
        except asyncio.CancelledError:
            self._forget(task)
            raise
        except CycleError:
            self._forget(task)
            raise
        except Exception as err:
            self._forget(task)
            logger.debug("Async build of %r failed: %s", self, err)
            raise BuildFailureError(self, err) from err

        if self._memo is task and not self.closed:
            self._memo = value
            self.set(value)
        elif self._memo is not value:
            logger.debug("Dropping superseded result of %r", self)
        return value

    def _forget(self, task) -> None:
        if self._memo is task:
            self._memo = _UNSET

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value!r}, {self.state.value})"


class AsyncComputed(Computed[AsyncValue]):
    """A computed unit over an async fetch; its value is an AsyncValue.

    The value goes loading → data (or error) on every build. A failing
    fetch also fails the build, so the next trigger fetches again.
    """

    __slots__ = ("_fetch",)

    def __init__(self, fetch: Callable[..., Any]) -> None:
        super().__init__(AsyncValue.loading())
        self._fetch = fetch

    def _schedule(self, pending) -> asyncio.Task:
        task = super()._schedule(pending)
        # Emitted from the caller, not from inside the task, so dependents
        # rebuilding on this change read the cached task without a cycle.
        self._memo = task
        if not self.closed:
            self.set(AsyncValue.loading())
        return task

    async def build(self, ref, args: Args) -> AsyncValue:
        task = asyncio.current_task()
        outcome = await AsyncValue.guard(self._fetch, ref, args)
        if self._memo is not task or self.closed:
            return outcome
        self._memo = outcome
        self.set(outcome)
        if outcome.has_error:
            if self._memo is outcome:
                self._memo = _UNSET
            raise outcome.error
        return outcome


class StreamComputed(Computed[AsyncValue]):
    """A computed unit fed by an async iterable.

    Every item becomes ``AsyncValue.data(item)``; an exception from the
    iterable becomes ``AsyncValue.failure(err)``. A rebuild cancels the
    previous consumption and starts over.
    """

    __slots__ = ("_source", "_pump")

    def __init__(self, source: Callable[..., Any]) -> None:
        super().__init__(AsyncValue.loading())
        self._source = source
        self._pump: asyncio.Task | None = None

    def build(self, ref, args: Args) -> AsyncValue:
        loop = asyncio.get_running_loop()
        self._stop()
        stream = self._source(ref, args)
        self._pump = loop.create_task(self._consume(stream))
        return AsyncValue.loading()

    async def _consume(self, stream) -> None:
        try:
            async for item in stream:
                if self.closed:
                    return
                self.set(AsyncValue.data(item))
        except Exception as err:
            if not self.closed:
                self.set(AsyncValue.failure(err))

    def _stop(self) -> None:
        if self._pump is not None and not self._pump.done():
            self._pump.cancel()
        self._pump = None

    def dispose(self) -> None:
        self._stop()
        super().dispose()
