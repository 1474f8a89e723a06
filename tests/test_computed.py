"""Tests for Computed, AsyncComputed and StreamComputed."""

import asyncio
import logging

import pytest

from podstate import (
    Args,
    AsyncComputed,
    AsyncValue,
    BuildFailureError,
    ClosedUnitError,
    Computed,
    ComputeState,
    CycleError,
    PodstateError,
    StreamComputed,
)


class _StubRef:
    """Minimal stand-in for a live ProviderRef."""

    def __init__(self, mounted=True):
        self.mounted = mounted
        self.detached = 0

    def _detach(self):
        self.detached += 1


def _counting(fn):
    calls = []

    def build(ref, args):
        calls.append(args)
        return fn(ref, args)

    return build, calls


class TestTrigger:
    def test_lazy(self):
        build, calls = _counting(lambda ref, args: 10)
        c = Computed(0, build=build)
        assert calls == []
        assert c.state is ComputeState.UNCOMPUTED
        assert c.trigger(_StubRef()) == 10
        assert c.value == 10
        assert c.state is ComputeState.SETTLED

    def test_idempotent_until_invalidated(self):
        build, calls = _counting(lambda ref, args: 10)
        c = Computed(0, build=build)
        ref = _StubRef()
        c.trigger(ref)
        c.trigger(ref)
        c.trigger(ref)
        assert len(calls) == 1

    def test_notifies_subscribers(self):
        c = Computed(0, build=lambda ref, args: 7)
        log = []
        c.subscribe(lambda change: log.append(change.current))
        c.trigger(_StubRef())
        assert log == [7]

    def test_stores_args(self):
        build, calls = _counting(lambda ref, args: args["n"] * 2)
        c = Computed(0, build=build)
        assert c.trigger(_StubRef(), {"n": 4}) == 8
        assert c.args == Args(n=4)
        assert calls == [Args(n=4)]

    def test_default_args_empty(self):
        c = Computed(0, build=lambda ref, args: len(args))
        assert c.trigger(_StubRef()) == 0

    def test_without_build_fn_keeps_value(self):
        c = Computed(3)
        assert c.trigger(_StubRef()) == 3
        assert c.is_computed

    def test_build_detaches_previous_edges(self):
        ref = _StubRef()
        Computed(0, build=lambda r, a: 1).trigger(ref)
        assert ref.detached == 1

    def test_subclass_build(self):
        class Doubler(Computed):
            def build(self, ref, args):
                return args["x"] * 2

        assert Doubler(0).trigger(_StubRef(), Args(x=21)) == 42

    def test_closed_unit_rejects_trigger(self):
        c = Computed(0, build=lambda ref, args: 1)
        c.dispose()
        with pytest.raises(ClosedUnitError):
            c.trigger(_StubRef())


class TestInvalidate:
    def test_refresh_rebuilds_immediately(self):
        source = {"n": 1}
        build, calls = _counting(lambda ref, args: source["n"])
        c = Computed(0, build=build)
        ref = _StubRef()
        c.trigger(ref)
        source["n"] = 2
        c.invalidate(ref)
        assert c.value == 2
        assert len(calls) == 2

    def test_refresh_reuses_last_args(self):
        build, calls = _counting(lambda ref, args: args["n"])
        c = Computed(0, build=build)
        ref = _StubRef()
        c.trigger(ref, Args(n=5))
        c.invalidate(ref)
        assert calls == [Args(n=5), Args(n=5)]

    def test_no_refresh(self):
        build, calls = _counting(lambda ref, args: 1)
        c = Computed(0, build=build)
        c.trigger(_StubRef())
        c.invalidate(refresh=False)
        assert not c.is_computed
        assert len(calls) == 1

    def test_no_refresh_when_consumer_gone(self):
        build, calls = _counting(lambda ref, args: 1)
        c = Computed(0, build=build)
        ref = _StubRef()
        c.trigger(ref)
        ref.mounted = False
        c.invalidate(ref)
        assert len(calls) == 1
        assert c.state is ComputeState.UNCOMPUTED

    def test_refresh_skips_a_current_value(self):
        build, calls = _counting(lambda ref, args: 1)
        c = Computed(0, build=build)
        ref = _StubRef()
        c.trigger(ref)
        c.refresh(ref)
        assert len(calls) == 1
        c.invalidate(refresh=False)
        c.refresh(ref)
        assert len(calls) == 2

    def test_stale_source_forces_rebuild_on_read(self):
        ref = _StubRef()
        source = Computed(0, build=lambda r, args: 1)
        build, calls = _counting(lambda r, args: source.trigger(r) + 1)
        c = Computed(0, build=build)
        c.trigger(ref)
        c.track_source(source)
        assert not c.has_stale_source()

        source.invalidate(refresh=False)
        assert c.has_stale_source()
        assert c.trigger(ref) == 2
        assert len(calls) == 2
        c.track_source(source)
        c.trigger(ref)
        assert len(calls) == 2


class TestFailures:
    def test_build_failure_leaves_unit_uncomputed(self):
        attempts = []

        def build(ref, args):
            attempts.append(1)
            if len(attempts) == 1:
                raise ValueError("flaky")
            return "ok"

        c = Computed(None, build=build)
        with pytest.raises(BuildFailureError) as info:
            c.trigger(_StubRef())
        assert isinstance(info.value.original_error, ValueError)
        assert isinstance(info.value.__cause__, ValueError)
        assert info.value.unit is c
        assert not c.is_computed
        assert c.trigger(_StubRef()) == "ok"

    def test_build_failure_logged(self, caplog):
        def build(ref, args):
            raise ValueError("flaky")

        c = Computed(None, build=build)
        with caplog.at_level(logging.DEBUG, logger="podstate.computed"):
            with pytest.raises(BuildFailureError):
                c.trigger(_StubRef())
        assert "flaky" in caplog.text

    def test_sync_cycle(self):
        ref = _StubRef()
        c = Computed(0)
        c._build_fn = lambda r, a: c.trigger(r)
        with pytest.raises(CycleError):
            c.trigger(ref)
        assert c.state is ComputeState.UNCOMPUTED

    def test_result_before_compute_raises(self):
        with pytest.raises(PodstateError):
            asyncio.run(Computed(0).result())


class TestAsyncBuild:
    @pytest.mark.asyncio
    async def test_concurrent_triggers_share_one_build(self):
        calls = []

        async def build(ref, args):
            calls.append(1)
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            return 99

        c = Computed(0, build=build)
        ref = _StubRef()
        first = c.trigger(ref)
        second = c.trigger(ref)
        assert first is second
        assert c.state is ComputeState.COMPUTING
        assert await asyncio.gather(first, second) == [99, 99]
        assert calls == [1]
        assert c.value == 99
        assert c.state is ComputeState.SETTLED
        assert await c.result() == 99

    @pytest.mark.asyncio
    async def test_failure_surfaces_to_awaiter(self):
        async def build(ref, args):
            raise RuntimeError("down")

        c = Computed(0, build=build)
        with pytest.raises(BuildFailureError):
            await c.trigger(_StubRef())
        assert not c.is_computed

    @pytest.mark.asyncio
    async def test_superseded_result_dropped(self):
        gate = asyncio.Event()

        async def build(ref, args):
            await gate.wait()
            return "stale"

        c = Computed("initial", build=build)
        task = c.trigger(_StubRef())
        c.invalidate(refresh=False)
        gate.set()
        assert await task == "stale"
        assert c.value == "initial"
        assert not c.is_computed

    @pytest.mark.asyncio
    async def test_disposed_result_dropped(self):
        gate = asyncio.Event()

        async def build(ref, args):
            await gate.wait()
            return 1

        c = Computed(0, build=build)
        log = []
        c.subscribe(log.append)
        task = c.trigger(_StubRef())
        c.dispose()
        gate.set()
        await task
        assert c.value == 0
        assert log == []

    @pytest.mark.asyncio
    async def test_async_cycle(self):
        c = Computed(0)
        ref = _StubRef()

        async def build(r, a):
            return await c.trigger(r)

        c._build_fn = build
        with pytest.raises(CycleError):
            await c.trigger(ref)

    def test_no_event_loop(self):
        async def build(ref, args):
            return 1

        c = Computed(0, build=build)
        with pytest.raises(RuntimeError):
            c.trigger(_StubRef())
        assert not c.is_computed


class TestAsyncComputed:
    @pytest.mark.asyncio
    async def test_loading_then_data(self):
        async def fetch(ref, args):
            await asyncio.sleep(0)
            return args["id"] * 10

        unit = AsyncComputed(fetch)
        assert unit.value.is_loading
        outcome = await unit.trigger(_StubRef(), Args(id=4))
        assert outcome == AsyncValue.data(40)
        assert unit.value == AsyncValue.data(40)

    @pytest.mark.asyncio
    async def test_sync_fetch(self):
        unit = AsyncComputed(lambda ref, args: "ready")
        await unit.trigger(_StubRef())
        assert unit.value == AsyncValue.data("ready")

    @pytest.mark.asyncio
    async def test_refresh_goes_back_to_loading(self):
        async def fetch(ref, args):
            return 1

        unit = AsyncComputed(fetch)
        ref = _StubRef()
        await unit.trigger(ref)
        statuses = []
        unit.subscribe(lambda change: statuses.append(change.current.status.value))
        unit.invalidate(ref)
        await unit.result()
        assert statuses == ["loading", "data"]

    @pytest.mark.asyncio
    async def test_failure_visible_and_build_fails(self):
        async def fetch(ref, args):
            raise LookupError("gone")

        unit = AsyncComputed(fetch)
        with pytest.raises(BuildFailureError):
            await unit.trigger(_StubRef())
        assert unit.value.has_error
        assert isinstance(unit.value.error, LookupError)
        assert not unit.is_computed


class TestStreamComputed:
    @pytest.mark.asyncio
    async def test_emits_each_item(self):
        async def ticks(ref, args):
            for i in range(3):
                yield i

        unit = StreamComputed(ticks)
        seen = []
        unit.subscribe(lambda change: seen.append(change.current))
        assert unit.trigger(_StubRef()).is_loading
        await unit._pump
        assert seen == [AsyncValue.data(0), AsyncValue.data(1), AsyncValue.data(2)]

    @pytest.mark.asyncio
    async def test_error_becomes_failure(self):
        async def broken(ref, args):
            yield 1
            raise ValueError("stream broke")

        unit = StreamComputed(broken)
        unit.trigger(_StubRef())
        await unit._pump
        assert unit.value.has_error
        assert str(unit.value.error) == "stream broke"

    @pytest.mark.asyncio
    async def test_rebuild_restarts_consumption(self):
        started = []

        async def forever(ref, args):
            started.append(1)
            yield len(started)
            await asyncio.Event().wait()

        unit = StreamComputed(forever)
        ref = _StubRef()
        unit.trigger(ref)
        first_pump = unit._pump
        await asyncio.sleep(0)
        unit.invalidate(ref)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert first_pump.cancelled() or first_pump.done()
        assert unit.value == AsyncValue.data(2)
        unit.dispose()

    @pytest.mark.asyncio
    async def test_dispose_cancels_consumption(self):
        async def forever(ref, args):
            yield 1
            await asyncio.Event().wait()

        unit = StreamComputed(forever)
        unit.trigger(_StubRef())
        pump = unit._pump
        await asyncio.sleep(0)
        unit.dispose()
        with pytest.raises(asyncio.CancelledError):
            await pump
        assert unit.closed
