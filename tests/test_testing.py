import asyncio

import pytest

from pyeffex import (
    Action,
    Effect,
    EffectError,
    StoreAssertionError,
    TestStore,
    create_action,
    create_reducer,
    create_test_store,
    on,
)
from pyeffex.testing import matches_action

start_timer = create_action("startTimer")
stop_timer = create_action("stopTimer")
tick = create_action("tick")
search = create_action("search")
results = create_action("results")
increment = create_action("increment")
increment_throttled = create_action("incrementThrottled")


def timer_reducer(state, action, deps):
    if start_timer.match(action):
        def setup(dispatch):
            deps["ticker"].append(dispatch)
            return lambda: deps["ticker"].clear()

        return {**state, "running": True}, Effect.subscription("timer", setup)
    if stop_timer.match(action):
        return {**state, "running": False}, Effect.cancel("timer")
    if tick.match(action):
        return {**state, "ticks": state["ticks"] + 1}, Effect.none()
    return state, Effect.none()


class TestLoadFlow:
    def test_send_and_receive(self, load_reducer):
        store = TestStore({"loading": False, "value": None}, load_reducer)
        store.send({"type": "startLoading"}, lambda state: state["loading"] is True)
        store.receive(
            {"type": "loadComplete", "value": 42},
            lambda state: state["value"] == 42,
        )
        store.finish()
        assert store.get_state() == {"loading": False, "value": 42}

    def test_history_records_sent_and_received(self, load_reducer):
        store = create_test_store({"value": None}, load_reducer)
        store.send({"type": "startLoading"})
        store.receive("loadComplete")
        assert [a["type"] for a in store.get_history()] == ["startLoading", "loadComplete"]
        store.finish()

    def test_async_effect(self):
        loaded = create_action("loaded")

        async def fetch(dispatch):
            await asyncio.sleep(0.01)
            dispatch(loaded(7))

        reducer = create_reducer(
            {"value": None},
            on("load", lambda state, action: (state, Effect.run(fetch))),
            on(loaded, lambda state, action: {**state, "value": action.payload}),
        )
        store = TestStore(reducer.initial_state, reducer)
        store.send(Action("load"))
        store.receive(loaded(7), {"value": 7})
        store.finish()


class TestExhaustiveness:
    def test_send_fails_with_unreceived_actions(self, load_reducer):
        store = TestStore({"value": None}, load_reducer)
        store.send({"type": "startLoading"})
        with pytest.raises(StoreAssertionError, match="Must handle 1 received action"):
            store.send({"type": "startLoading"})
        store.destroy()

    def test_receive_mismatch(self, load_reducer):
        store = TestStore({"value": None}, load_reducer)
        store.send({"type": "startLoading"})
        with pytest.raises(StoreAssertionError, match="unexpected action"):
            store.receive("somethingElse")
        store.destroy()

    def test_finish_fails_with_pending_actions(self, load_reducer):
        store = TestStore({"value": None}, load_reducer)
        store.send({"type": "startLoading"})
        with pytest.raises(StoreAssertionError, match="unasserted action"):
            store.finish()

    def test_receive_without_running_effect(self, load_reducer):
        store = TestStore({"value": None}, load_reducer)
        with pytest.raises(StoreAssertionError, match="no effect is running"):
            store.receive("loadComplete")
        store.destroy()

    def test_receive_hints_at_pending_timers(self):
        reducer = create_reducer(
            {},
            on("later", lambda state, action: (state, Effect.after_delay(100, lambda d: d(Action("done"))))),
        )
        store = TestStore({}, reducer)
        store.send(Action("later"))
        with pytest.raises(StoreAssertionError, match="advance_time"):
            store.receive("done")
        store.destroy()

    def test_receive_times_out(self):
        async def never(dispatch):
            await asyncio.Event().wait()

        reducer = create_reducer({}, on("wait", lambda state, action: (state, Effect.run(never))))
        store = TestStore({}, reducer, timeout=20)
        store.send(Action("wait"))
        with pytest.raises(StoreAssertionError, match="timed out"):
            store.receive("done")
        store.destroy()

    def test_state_assertion_failure(self, load_reducer):
        store = TestStore({"value": None}, load_reducer)
        with pytest.raises(StoreAssertionError, match="State mismatch"):
            store.send({"type": "startLoading"}, {"value": None})
        store.destroy()

    def test_predicate_assertion_failure(self, load_reducer):
        store = TestStore({"value": None}, load_reducer)
        with pytest.raises(StoreAssertionError, match="State assertion failed"):
            store.send({"type": "startLoading"}, lambda state: state["value"] == 1)
        store.destroy()

    def test_store_assertion_error_is_an_assertion_error(self, load_reducer):
        store = TestStore({"value": None}, load_reducer)
        with pytest.raises(AssertionError):
            store.receive("loadComplete")
        store.destroy()


class TestNonExhaustive:
    def test_skips_unreceived_actions(self, load_reducer):
        store = TestStore({"loading": False, "value": None}, load_reducer, exhaustive=False)
        store.send({"type": "startLoading"})
        store.send({"type": "noop"}, lambda state: state["value"] == 42)
        store.finish()

    def test_receive_skips_non_matching(self):
        reducer = create_reducer(
            {"log": ()},
            on("start", lambda state, action: (state, Effect.run(lambda d: (d(Action("a")), d(Action("b")))))),
            on("a", lambda state, action: {**state, "log": state["log"] + ("a",)}),
            on("b", lambda state, action: {**state, "log": state["log"] + ("b",)}),
        )
        store = TestStore(reducer.initial_state, reducer, exhaustive=False)
        store.send(Action("start"))
        store.receive("b", {"log": ("a", "b")})
        store.finish()

    def test_finish_applies_remaining_actions(self, load_reducer):
        store = TestStore({"value": None}, load_reducer, exhaustive=False)
        store.send({"type": "startLoading"})
        store.finish()
        assert store.state["value"] == 42


class TestVirtualTime:
    def test_advance_time_runs_timers_in_order(self):
        order = create_action("order")
        reducer = create_reducer(
            (),
            on("schedule", lambda state, action: (state, Effect.batch(
                Effect.after_delay(30, lambda d: d(order("c"))),
                Effect.after_delay(10, lambda d: d(order("a"))),
                Effect.after_delay(20, lambda d: d(order("b"))),
            ))),
            on(order, lambda state, action: state + (action.payload,)),
        )
        store = TestStore((), reducer)
        store.send(Action("schedule"))
        store.advance_time(30)
        store.receive(order("a"))
        store.receive(order("b"))
        store.receive(order("c"), ("a", "b", "c"))
        assert store.now == 30
        store.finish()

    def test_negative_advance_is_rejected(self, load_reducer):
        store = TestStore({}, load_reducer)
        with pytest.raises(ValueError):
            store.advance_time(-1)
        store.destroy()

    def test_debounced_search(self):
        def on_search(state, action):
            query = action.payload
            return {**state, "query": query}, Effect.debounced(
                "search", 300, lambda d: d(results([query] * 2))
            )

        reducer = create_reducer(
            {"query": "", "results": []},
            on(search, on_search),
            on(results, lambda state, action: {**state, "results": list(action.payload)}),
        )
        store = TestStore(reducer.initial_state, reducer)
        for query in ("a", "ab", "abc"):
            store.send(search(query))
            store.advance_time(100)
        assert store.pending_actions == ()
        store.advance_time(200)
        store.receive(results, {"query": "abc", "results": ["abc", "abc"]})
        store.finish()

    def test_throttled_increment(self):
        def on_throttled(state, action):
            amount = action.payload
            return state, Effect.throttled("inc", 100, lambda d: d(increment(amount)))

        reducer = create_reducer(
            0,
            on(increment_throttled, on_throttled),
            on(increment, lambda state, action: state + action.payload),
        )
        store = TestStore(0, reducer)
        store.send(increment_throttled(1))
        store.receive(increment(1), 1)
        store.advance_time(10)
        store.send(increment_throttled(2))
        store.advance_time(10)
        store.send(increment_throttled(3))
        store.advance_time(80)
        store.receive(increment(3), 4)
        store.advance_time(500)
        store.finish()

    def test_subscription_lifecycle(self):
        ticker = []
        store = TestStore({"running": False, "ticks": 0}, timer_reducer, {"ticker": ticker})
        store.send(start_timer(), lambda state: state["running"])
        assert len(ticker) == 1

        ticker[0](tick())
        store.receive(tick, lambda state: state["ticks"] == 1)

        send_tick = ticker[0]
        store.send(stop_timer(), {"running": False, "ticks": 1})
        assert ticker == []
        send_tick(tick())
        assert store.pending_actions == ()
        store.finish()


class TestEffectErrors:
    def test_effect_error_is_raised(self):
        def boom(dispatch):
            raise RuntimeError("lost connection")

        reducer = create_reducer({}, on("go", lambda state, action: (state, Effect.cancellable("job", boom))))
        store = TestStore({}, reducer)
        with pytest.raises(EffectError) as info:
            store.send(Action("go"))
        assert info.value.effect_id == "job"
        assert isinstance(info.value.cause, RuntimeError)
        store.destroy()


class TestMatching:
    @pytest.mark.parametrize("expected", [
        "loadComplete",
        {"type": "loadComplete"},
        {"type": "loadComplete", "value": 42},
    ])
    def test_dict_action_matches(self, expected):
        assert matches_action(expected, {"type": "loadComplete", "value": 42})

    def test_partial_payload_match(self):
        actual = Action("user", {"name": "ada", "role": "admin"})
        assert matches_action(Action("user", {"name": "ada"}), actual)
        assert not matches_action(Action("user", {"name": "bob"}), actual)
        assert matches_action(Action("user"), actual)

    def test_creator_matches_by_type(self):
        assert matches_action(tick, tick())
        assert not matches_action(tick, Action("tock"))

    def test_nested_mapping(self):
        actual = {"type": "saved", "user": {"id": 1, "name": "ada"}}
        assert matches_action({"user": {"id": 1}}, actual)
        assert not matches_action({"user": {"id": 2}}, actual)


class TestLifecycle:
    def test_use_after_finish_fails(self, load_reducer):
        store = TestStore({"value": None}, load_reducer)
        store.finish()
        with pytest.raises(StoreAssertionError):
            store.send({"type": "startLoading"})

    def test_destroy_is_idempotent(self, load_reducer):
        store = TestStore({"value": None}, load_reducer)
        store.destroy()
        store.destroy()

    def test_context_manager(self, load_reducer):
        with TestStore({"value": None}, load_reducer) as store:
            store.send({"type": "startLoading"})
            store.receive("loadComplete")
