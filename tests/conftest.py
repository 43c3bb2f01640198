from __future__ import annotations

from datetime import timedelta
from typing import Any, Callable, List

import pytest

from pyeffex import Effect, EffectsManager, VirtualClock


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def advance(clock: VirtualClock) -> Callable[[float], None]:
    """Advance the virtual clock by ms and run everything that became due."""

    def _advance(ms: float) -> None:
        if ms:
            clock.advance_by(timedelta(milliseconds=ms))
        clock.run_due()

    return _advance


@pytest.fixture
def dispatched() -> List[Any]:
    return []


@pytest.fixture
def effect_errors() -> List[Any]:
    return []


@pytest.fixture
def manager(clock, dispatched, effect_errors):
    m = EffectsManager(dispatched.append, scheduler=clock, on_error=effect_errors.append)
    yield m
    m.destroy()


def _load_reducer(state, action, deps):
    # startLoading -> loadComplete(value=42), with plain dict actions
    if action["type"] == "startLoading":
        return {**state, "loading": True}, Effect.run(
            lambda dispatch: dispatch({"type": "loadComplete", "value": 42})
        )
    if action["type"] == "loadComplete":
        return {**state, "loading": False, "value": action["value"]}, Effect.none()
    return state, Effect.none()


@pytest.fixture
def load_reducer():
    return _load_reducer
