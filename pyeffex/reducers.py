"""
Reducer 建構與組合工具。

reducer 的簽名為 `(state, action, dependencies) -> (state, Effect)`。
此模組提供 `create_reducer` / `on` DSL，以及將子 reducer 嵌入父層
狀態 / 動作樹的組合函數；組合過程只改變 action 的包裝，
不會改變 effect 的 id、延遲或訂閱生命週期。
"""
import dataclasses
import inspect
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

from immutables import Map
from pydantic import BaseModel

from .actions import Action, get_action_payload, get_action_type
from .effects import Effect
from .types import ActionCreator, Reducer, ReducerResult


def unpack_result(result: Any) -> ReducerResult:
    """
    驗證並拆解 reducer 的返回值。

    Raises:
        TypeError: 返回值不是 (state, Effect)
    """
    if isinstance(result, tuple) and len(result) == 2 and isinstance(result[1], Effect):
        return result
    raise TypeError(f"reducer must return a (state, Effect) pair, got {result!r}")


def _accepts_dependencies(fn: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return True
    positional = 0
    for p in params:
        if p.kind == p.VAR_POSITIONAL:
            return True
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 3


def create_reducer(initial_state: Any, *handlers) -> Reducer:
    """
    創建一個 reducer 函式。

    處理函式接收 `(state, action)` 或 `(state, action, dependencies)`，
    可以只回傳新狀態，也可以回傳 `(新狀態, Effect)`。

    Args:
        initial_state: 初始狀態。
        *handlers: 一系列 (action_type, handler_fn) 元組或使用 on 函式創建的處理器。

    Returns:
        一個 reducer 函式，未知的 action 會原樣返回狀態與 `Effect.none()`。
    """
    action_handlers: Dict[str, Callable[..., Any]] = {}  # 儲存 action 類型與處理函式的對應關係

    for handler in handlers:
        if isinstance(handler, tuple) and len(handler) == 2:
            action_type, handler_fn = handler
            action_handlers[action_type] = handler_fn
        else:
            action_handlers.update(handler)

    # 預先判斷每個處理函式是否需要 dependencies
    with_deps = {t: _accepts_dependencies(fn) for t, fn in action_handlers.items()}

    def reducer(state: Any, action: Any, dependencies: Any = None) -> ReducerResult:
        action_type = get_action_type(action)
        handler = action_handlers.get(action_type)
        if handler is None:
            return state, Effect.none()

        if with_deps[action_type]:
            result = handler(state, action, dependencies)
        else:
            result = handler(state, action)

        if isinstance(result, tuple) and len(result) == 2 and isinstance(result[1], Effect):
            return result
        return result, Effect.none()

    # 設置 reducer 的初始狀態和處理器映射
    reducer.initial_state = initial_state
    reducer.handlers = action_handlers

    return reducer


def on(action_creator_or_type: Union[ActionCreator, str], handler: Callable[..., Any]) -> Dict[str, Callable[..., Any]]:
    """
    創建一個 action 類型與處理函式的映射。

    Args:
        action_creator_or_type: Action 創建器函式或 Action 類型字串。
        handler: 處理該 Action 的函式。

    Returns:
        一個包含 {action_type: handler} 的字典。
    """
    if callable(action_creator_or_type) and hasattr(action_creator_or_type, 'type'):
        action_type = action_creator_or_type.type
    else:
        action_type = str(action_creator_or_type)

    return {action_type: handler}


def scope(
    to_child_state: Callable[[Any], Any],
    from_child_state: Callable[[Any, Any], Any],
    to_child_action: Callable[[Any], Optional[Any]],
    from_child_action: Callable[[Any], Any],
    child_reducer: Reducer,
) -> Reducer:
    """
    將作用於子狀態 / 子動作的 reducer 提升到父層。

    Args:
        to_child_state: 從父狀態取出子狀態
        from_child_state: `(parent, child) -> parent`，嵌回新的子狀態
        to_child_action: 從父動作取出子動作，不適用時回傳 None
        from_child_action: 將子動作包裝成父動作，用於轉換子 effect
        child_reducer: 子 reducer

    Returns:
        父層 reducer。非子動作會回傳同一個父狀態物件。
    """
    def reducer(parent_state: Any, parent_action: Any, dependencies: Any = None) -> ReducerResult:
        child_action = to_child_action(parent_action)
        if child_action is None:
            return parent_state, Effect.none()

        child_state = to_child_state(parent_state)
        new_child, child_effect = unpack_result(
            child_reducer(child_state, child_action, dependencies)
        )
        if new_child is child_state:
            new_parent = parent_state
        else:
            new_parent = from_child_state(parent_state, new_child)
        return new_parent, Effect.map(child_effect, from_child_action)

    return reducer


def _wrapped_child(action: Any, action_type: str) -> Optional[Any]:
    # 取出 Action(action_type, child) 或 {"type": action_type, "action": child} 中的 child
    if get_action_type(action) != action_type:
        return None
    if isinstance(action, (Map, Mapping)):
        return action.get("action")
    return get_action_payload(action)


def scope_action(
    to_child_state: Callable[[Any], Any],
    from_child_state: Callable[[Any, Any], Any],
    action_type: str,
    child_reducer: Reducer,
) -> Reducer:
    """
    `scope` 的簡便版本：子動作以 `Action(action_type, child_action)` 包裝。

    Args:
        to_child_state: 從父狀態取出子狀態
        from_child_state: 嵌回新的子狀態
        action_type: 包裝子動作的父動作類型
        child_reducer: 子 reducer
    """
    return scope(
        to_child_state,
        from_child_state,
        lambda action: _wrapped_child(action, action_type),
        lambda child_action: Action(action_type, child_action),
        child_reducer,
    )


def if_let(
    to_child_state: Callable[[Any], Optional[Any]],
    from_child_state: Callable[[Any, Optional[Any]], Any],
    to_child_action: Callable[[Any], Optional[Any]],
    from_child_action: Callable[[Any], Any],
    child_reducer: Reducer,
) -> Reducer:
    """
    與 `scope` 相同，但子狀態可以為 None。

    子狀態為 None 時（功能未呈現），即使是子動作也會被忽略。
    子 reducer 可以回傳 None 來關閉自己。
    """
    def reducer(parent_state: Any, parent_action: Any, dependencies: Any = None) -> ReducerResult:
        child_action = to_child_action(parent_action)
        if child_action is None:
            return parent_state, Effect.none()

        child_state = to_child_state(parent_state)
        if child_state is None:
            return parent_state, Effect.none()

        new_child, child_effect = unpack_result(
            child_reducer(child_state, child_action, dependencies)
        )
        if new_child is child_state:
            new_parent = parent_state
        else:
            new_parent = from_child_state(parent_state, new_child)
        return new_parent, Effect.map(child_effect, from_child_action)

    return reducer


def _get_slice(state: Any, key: str) -> Any:
    if isinstance(state, (Map, Mapping)):
        return state[key]
    return getattr(state, key)


def _set_slices(state: Any, changes: Dict[str, Any]) -> Any:
    if isinstance(state, Map):
        return state.update(changes)
    if isinstance(state, (Map, Mapping)):
        return {**state, **changes}
    if isinstance(state, BaseModel):
        return state.model_copy(update=changes)
    if dataclasses.is_dataclass(state):
        return dataclasses.replace(state, **changes)
    raise TypeError(f"combine_reducers cannot update state of type {type(state).__name__}")


def combine_reducers(slices: Mapping) -> Reducer:
    """
    將多個 slice reducer 組合成一個。

    每個 action 都會交給所有 slice reducer；只有在某個 slice 的物件改變時
    才會建立新的狀態，其餘 slice 保持原參考。所有非 none 的 effect 會被 batch。

    支援 dict、immutables.Map、pydantic 模型與 dataclass 狀態。

    Args:
        slices: 狀態鍵到 reducer 的映射
    """
    items: List[Tuple[str, Reducer]] = list(slices.items())

    def reducer(state: Any, action: Any, dependencies: Any = None) -> ReducerResult:
        changes: Dict[str, Any] = {}
        effects = []
        for key, slice_reducer in items:
            current = _get_slice(state, key)
            new_slice, effect = unpack_result(slice_reducer(current, action, dependencies))
            if new_slice is not current:
                changes[key] = new_slice
            effects.append(effect)

        new_state = _set_slices(state, changes) if changes else state
        return new_state, Effect.batch(*effects)

    if all(hasattr(r, "initial_state") for _, r in items):
        reducer.initial_state = {key: r.initial_state for key, r in items}

    return reducer


class IdentifiedItem(NamedTuple):
    """集合中的一個元素：唯一 id 與其狀態。"""
    id: Any
    state: Any


class ElementAction(NamedTuple):
    """`for_each_element` 使用的元素動作負載。"""
    id: Any
    action: Any


def for_each(
    get_items: Callable[[Any], Sequence[IdentifiedItem]],
    set_items: Callable[[Any, Tuple[IdentifiedItem, ...]], Any],
    extract_child: Callable[[Any], Optional[Tuple[Any, Any]]],
    wrap_child: Callable[[Any, Any], Any],
    child_reducer: Reducer,
) -> Reducer:
    """
    在集合的每個元素上執行子 reducer。

    Args:
        get_items: 從父狀態取出 IdentifiedItem 序列
        set_items: 以新的元素 tuple 更新父狀態
        extract_child: 從父動作取出 `(id, child_action)`，不適用時回傳 None
        wrap_child: `(id, child_action) -> parent_action`
        child_reducer: 元素的 reducer

    找不到 id 的動作會被忽略（元素可能已被移除，而 effect 仍在途中）。
    """
    def reducer(state: Any, action: Any, dependencies: Any = None) -> ReducerResult:
        extracted = extract_child(action)
        if extracted is None:
            return state, Effect.none()

        item_id, child_action = extracted
        items = tuple(get_items(state))
        for index, item in enumerate(items):
            if item.id == item_id:
                break
        else:
            return state, Effect.none()

        new_child, child_effect = unpack_result(
            child_reducer(item.state, child_action, dependencies)
        )
        effect = Effect.map(child_effect, lambda a: wrap_child(item_id, a))
        if new_child is item.state:
            return state, effect

        new_items = items[:index] + (IdentifiedItem(item.id, new_child),) + items[index + 1:]
        return set_items(state, new_items), effect

    return reducer


def for_each_element(
    action_type: str,
    get_items: Callable[[Any], Sequence[IdentifiedItem]],
    set_items: Callable[[Any, Tuple[IdentifiedItem, ...]], Any],
    child_reducer: Reducer,
) -> Reducer:
    """以 `Action(action_type, ElementAction(id, action))` 包裝元素動作的 `for_each`。"""
    def extract(action: Any) -> Optional[Tuple[Any, Any]]:
        if get_action_type(action) != action_type:
            return None
        payload = get_action_payload(action)
        if isinstance(payload, ElementAction):
            return payload.id, payload.action
        return None

    return for_each(
        get_items,
        set_items,
        extract,
        lambda item_id, child_action: element_action(action_type, item_id, child_action),
        child_reducer,
    )


def element_action(action_type: str, item_id: Any, action: Any) -> Action:
    """建立 `for_each_element` 使用的元素動作。"""
    return Action(action_type, ElementAction(item_id, action))
