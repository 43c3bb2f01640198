import asyncio
from datetime import timedelta

import pytest

from pyeffex import Action, Effect, EffectError, EffectsManager, StoreError


def emit(action):
    return lambda dispatch: dispatch(action)


class TestRunAndBatch:
    def test_run_starts_asynchronously(self, manager, dispatched, advance):
        manager.run(Effect.run(emit(Action("done"))))
        assert dispatched == []
        advance(0)
        assert dispatched == [Action("done")]

    def test_none_is_a_noop(self, manager, clock):
        manager.run(Effect.none())
        assert clock.pending_count() == 0

    def test_batch_starts_members_in_order(self, manager, dispatched, advance):
        manager.run(Effect.batch(
            Effect.run(emit(Action("a"))),
            Effect.run(emit(Action("b"))),
            Effect.fire_and_forget(lambda: dispatched.append(Action("side"))),
        ))
        advance(0)
        assert dispatched == [Action("a"), Action("b"), Action("side")]

    def test_after_delay(self, manager, dispatched, advance):
        manager.run(Effect.after_delay(50, emit(Action("late"))))
        advance(49)
        assert dispatched == []
        advance(1)
        assert dispatched == [Action("late")]


class TestCancellable:
    def test_newer_registration_supersedes_pending_start(self, manager, dispatched, advance):
        manager.run(Effect.cancellable("search", emit(Action("A"))))
        manager.run(Effect.cancellable("search", emit(Action("B"))))
        advance(0)
        assert dispatched == [Action("B")]

    def test_stale_dispatch_is_dropped(self, clock, dispatched, advance):
        loop = asyncio.new_event_loop()
        manager = EffectsManager(dispatched.append, scheduler=clock, loop=loop)
        captured = []

        async def waiting(dispatch):
            captured.append(dispatch)
            await asyncio.Event().wait()

        try:
            manager.run(Effect.cancellable("search", waiting))
            advance(0)
            loop.run_until_complete(asyncio.sleep(0))
            manager.run(Effect.cancellable("search", emit(Action("B"))))
            advance(0)
            # A's dispatch arrives after it was superseded
            captured[0](Action("A"))
        finally:
            manager.destroy()
            loop.run_until_complete(asyncio.sleep(0))
            loop.close()
        assert dispatched == [Action("B")]

    def test_registration_is_removed_on_completion(self, manager, advance):
        manager.run(Effect.cancellable("once", lambda d: None))
        assert manager.active_ids() == ["once"]
        advance(0)
        assert manager.active_ids() == []

    def test_cancel_effect(self, manager, dispatched, advance):
        manager.run(Effect.cancellable("job", emit(Action("job"))))
        manager.run(Effect.cancel("job"))
        advance(0)
        assert dispatched == []

    def test_cancel_unknown_id_is_noop(self, manager):
        manager.run(Effect.cancel("missing"))
        manager.cancel("missing")

    def test_async_executor_is_cancelled(self):
        loop = asyncio.new_event_loop()
        dispatched = []
        manager = EffectsManager(dispatched.append, loop=loop)

        async def slow(dispatch):
            await asyncio.sleep(0.05)
            dispatch(Action("slow"))

        async def fast(dispatch):
            dispatch(Action("fast"))

        async def scenario():
            manager.run(Effect.cancellable("search", slow))
            await asyncio.sleep(0.01)
            manager.run(Effect.cancellable("search", fast))
            await asyncio.sleep(0.1)

        try:
            loop.run_until_complete(scenario())
        finally:
            manager.destroy()
            loop.close()
        assert dispatched == [Action("fast")]


class TestDebounced:
    def test_only_last_call_executes(self, manager, dispatched, advance):
        for text in ("a", "ab", "abc"):
            manager.run(Effect.debounced("field", 300, emit(Action("validate", text))))
            advance(100)
        assert dispatched == []
        advance(200)
        assert dispatched == [Action("validate", "abc")]
        advance(1000)
        assert len(dispatched) == 1

    def test_fired_entry_leaves_registry(self, manager, advance):
        manager.run(Effect.debounced("field", 10, lambda d: None))
        assert manager.active_ids() == ["field"]
        advance(10)
        assert manager.active_ids() == []


class TestThrottled:
    def test_leading_and_single_trailing_execution(self, manager, clock, dispatched, advance):
        fired_at = []

        def execute(n):
            def run(dispatch):
                fired_at.append(clock.elapsed_ms)
                dispatch(Action("increment", n))
            return run

        manager.run(Effect.throttled("inc", 100, execute(1)))
        advance(0)
        advance(10)
        manager.run(Effect.throttled("inc", 100, execute(2)))
        advance(10)
        manager.run(Effect.throttled("inc", 100, execute(3)))
        advance(80)
        advance(500)

        assert dispatched == [Action("increment", 1), Action("increment", 3)]
        assert fired_at == [0, 100]

    def test_new_window_after_elapsed(self, manager, dispatched, advance):
        manager.run(Effect.throttled("t", 50, emit(Action("x", 1))))
        advance(60)
        manager.run(Effect.throttled("t", 50, emit(Action("x", 2))))
        advance(0)
        assert dispatched == [Action("x", 1), Action("x", 2)]

    def test_leading_call_replaces_unfired_trailing_call(self, manager, clock, advance):
        fired = []

        def record(name):
            return lambda dispatch: fired.append((name, clock.elapsed_ms))

        manager.run(Effect.throttled("t", 100, record("a")))
        advance(0)
        advance(10)
        manager.run(Effect.throttled("t", 100, record("b")))
        # move the clock past the window without firing the trailing timer
        clock.sleep(timedelta(milliseconds=90))
        manager.run(Effect.throttled("t", 100, record("c")))
        clock.run_due()
        advance(500)

        assert [name for name, _ in fired] == ["a", "c"]
        assert fired[1][1] == 100

    def test_entry_is_released_after_window(self, manager, advance):
        manager.run(Effect.throttled("t", 50, lambda d: None))
        advance(0)
        assert manager.active_ids() == ["t"]
        advance(50)
        assert manager.active_ids() == []

    def test_entry_is_kept_until_trailing_window_ends(self, manager, dispatched, advance):
        manager.run(Effect.throttled("t", 50, emit(Action("x", 1))))
        advance(10)
        manager.run(Effect.throttled("t", 50, emit(Action("x", 2))))
        advance(40)
        assert dispatched == [Action("x", 1), Action("x", 2)]
        assert manager.active_ids() == ["t"]
        advance(50)
        assert manager.active_ids() == []

    def test_entry_is_kept_while_work_is_running(self, dispatched, clock):
        loop = asyncio.new_event_loop()
        manager = EffectsManager(dispatched.append, scheduler=clock, loop=loop)
        release = asyncio.Event()

        async def slow(dispatch):
            await release.wait()
            dispatch(Action("done"))

        try:
            manager.run(Effect.throttled("t", 10, slow))
            clock.run_due()
            loop.run_until_complete(asyncio.sleep(0))
            clock.advance_by(timedelta(milliseconds=50))
            assert manager.active_ids() == ["t"]

            release.set()
            loop.run_until_complete(asyncio.sleep(0.01))
            assert dispatched == [Action("done")]
            assert manager.active_ids() == []
        finally:
            manager.destroy()
            loop.close()


class TestSubscription:
    def test_cleanup_runs_exactly_once(self, manager, dispatched, advance):
        cleanups = []

        def setup(dispatch):
            dispatch(Action("connected"))
            return lambda: cleanups.append("closed")

        manager.run(Effect.subscription("socket", setup))
        advance(0)
        assert dispatched == [Action("connected")]

        manager.run(Effect.cancel("socket"))
        manager.run(Effect.cancel("socket"))
        manager.destroy()
        assert cleanups == ["closed"]

    def test_destroy_runs_cleanup(self, manager, advance):
        cleanups = []
        manager.run(Effect.subscription("socket", lambda d: lambda: cleanups.append(1)))
        advance(0)
        manager.destroy()
        manager.destroy()
        assert cleanups == [1]

    def test_resubscribe_replaces_previous(self, manager, advance):
        cleanups = []
        manager.run(Effect.subscription("s", lambda d: lambda: cleanups.append("first")))
        advance(0)
        manager.run(Effect.subscription("s", lambda d: lambda: cleanups.append("second")))
        advance(0)
        assert cleanups == ["first"]

    def test_cleanup_cannot_dispatch(self, manager, dispatched, advance):
        captured = []

        def setup(dispatch):
            captured.append(dispatch)
            return lambda: captured[0](Action("from cleanup"))

        manager.run(Effect.subscription("s", setup))
        advance(0)
        manager.run(Effect.cancel("s"))
        assert dispatched == []


class TestSharedRegistry:
    def test_cancellable_supersedes_debounced_with_same_id(self, manager, dispatched, advance):
        manager.run(Effect.debounced("shared", 100, emit(Action("debounced"))))
        manager.run(Effect.cancellable("shared", emit(Action("cancellable"))))
        advance(200)
        assert dispatched == [Action("cancellable")]

    def test_cancel_clears_pending_debounce(self, manager, dispatched, advance):
        manager.run(Effect.debounced("d", 100, emit(Action("d"))))
        manager.run(Effect.cancel("d"))
        advance(200)
        assert dispatched == []


class TestFailures:
    def test_executor_errors_are_reported(self, manager, effect_errors, advance):
        def boom(dispatch):
            raise RuntimeError("boom")

        manager.run(Effect.cancellable("job", boom))
        advance(0)
        assert len(effect_errors) == 1
        error = effect_errors[0]
        assert isinstance(error, EffectError)
        assert error.effect_kind == "cancellable"
        assert error.effect_id == "job"
        assert isinstance(error.cause, RuntimeError)
        assert manager.active_ids() == []

    def test_fire_and_forget_errors_are_dropped(self, manager, effect_errors, advance):
        def boom():
            raise RuntimeError("ignored")

        manager.run(Effect.fire_and_forget(boom))
        advance(0)
        assert effect_errors == []

    def test_async_effect_without_loop_raises(self):
        manager = EffectsManager(lambda a: None)
        with pytest.raises(StoreError):
            manager.run(Effect.run(lambda d: None))


class TestDestroy:
    def test_destroy_clears_timers(self, manager, dispatched, advance):
        manager.run(Effect.after_delay(10, emit(Action("a"))))
        manager.run(Effect.debounced("d", 10, emit(Action("b"))))
        manager.run(Effect.throttled("t", 10, emit(Action("c"))))
        manager.destroy()
        advance(100)
        assert dispatched == []
        assert manager.active_ids() == []

    def test_effects_after_destroy_are_ignored(self, manager, dispatched, advance):
        manager.destroy()
        manager.run(Effect.run(emit(Action("late"))))
        advance(0)
        assert dispatched == []
