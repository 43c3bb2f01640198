import time

import pytest

from pyeffex import Effect, VirtualClock, create_selector, create_store


def get_items(state):
    return state["items"]


def get_filter(state):
    return state["filter"]


class TestCreateSelector:
    def test_single_selector_is_returned_as_is(self):
        assert create_selector(get_items) is get_items

    def test_requires_input_selectors(self):
        with pytest.raises(ValueError):
            create_selector(result_fn=lambda: None)

    def test_memoizes_on_input_identity(self):
        calls = []

        def visible(items, flt):
            calls.append(1)
            return [i for i in items if flt in i]

        selector = create_selector(get_items, get_filter, result_fn=visible)
        state = {"items": ["apple", "banana"], "filter": "an"}
        assert selector(state) == ["banana"]
        assert selector(dict(state)) == ["banana"]
        assert len(calls) == 1
        assert selector.cache_info()[:2] == (1, 1)

        selector({"items": ["mango"], "filter": "an"})
        assert len(calls) == 2

    def test_deep_comparison(self):
        calls = []
        selector = create_selector(get_items, result_fn=lambda items: calls.append(1) or len(items), deep=True)
        selector({"items": [1, 2]})
        selector({"items": [1, 2]})
        assert len(calls) == 1

    def test_shallow_comparison_misses_on_new_objects(self):
        calls = []
        selector = create_selector(get_items, result_fn=lambda items: calls.append(1) or len(items))
        selector({"items": [1, 2]})
        selector({"items": [1, 2]})
        assert len(calls) == 2

    def test_without_result_fn_returns_inputs(self):
        selector = create_selector(get_items, get_filter)
        assert selector({"items": 1, "filter": 2}) == (1, 2)

    def test_ttl_expires_entries(self, monkeypatch):
        now = [1000.0]
        monkeypatch.setattr(time, "monotonic", lambda: now[0])
        calls = []
        selector = create_selector(get_items, result_fn=lambda items: calls.append(1), ttl=5)
        state = {"items": []}
        selector(state)
        selector(state)
        now[0] += 10
        selector(state)
        assert len(calls) == 2

    def test_maxsize_and_cache_clear(self):
        selector = create_selector(get_items, result_fn=len, maxsize=2)
        for items in ([1], [1, 2], [1, 2, 3]):
            selector({"items": items})
        assert selector.cache_info()[3] == 2
        selector.cache_clear()
        assert selector.cache_info() == (0, 0, 2, 0)

    def test_errors_propagate(self):
        selector = create_selector(get_items, result_fn=lambda items: 1 / 0)
        with pytest.raises(ZeroDivisionError):
            selector({"items": []})

    def test_with_store_observe(self):
        def reducer(state, action, deps):
            if action["type"] == "add":
                return {**state, "items": state["items"] + [action["item"]]}, Effect.none()
            if action["type"] == "filter":
                return {**state, "filter": action["value"]}, Effect.none()
            return state, Effect.none()

        store = create_store({"items": [], "filter": ""}, reducer, scheduler=VirtualClock())
        count = create_selector(get_items, result_fn=len)
        seen = []
        store.observe(count).subscribe(seen.append)
        store.dispatch({"type": "add", "item": "a"})
        store.dispatch({"type": "filter", "value": "x"})
        store.dispatch({"type": "add", "item": "b"})
        assert seen == [0, 1, 2]
        assert store.select(count) == 2
        store.destroy()
