"""
導航組合工具。

提供呈現動作（presented / dismiss）、可選子功能的 `if_let_presentation`、
多目的地的 `create_destination`，以及堆疊式導航的純函數。
"""
import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, NamedTuple, Optional, Sequence, Tuple

from immutables import Map

from .actions import Action, get_action_payload, get_action_type
from .effects import Effect
from .reducers import unpack_result
from .types import Reducer, ReducerResult

logger = logging.getLogger(__name__)

PRESENTED = "presented"
DISMISS = "dismiss"


class PresentationAction:
    """呈現動作的建構函數：子動作以 `presented` 包裝，`dismiss` 要求父層關閉子功能。"""

    @staticmethod
    def presented(action: Any) -> Action:
        return Action(PRESENTED, action)

    @staticmethod
    def dismiss() -> Action:
        return Action(DISMISS)


def _unwrap(action: Any, action_type: str) -> Optional[Any]:
    """取出 `Action(action_type, inner)` 或 `{"type": action_type, "action": inner}` 的 inner。"""
    if get_action_type(action) != action_type:
        return None
    if isinstance(action, (Map, Mapping)):
        return action.get("action")
    return get_action_payload(action)


def _presentation_parts(presentation: Any) -> Tuple[Optional[str], Any]:
    kind = get_action_type(presentation)
    if kind != PRESENTED:
        return kind, None
    if isinstance(presentation, (Map, Mapping)):
        return kind, presentation.get("action")
    return kind, get_action_payload(presentation)


def if_let_presentation(
    to_child_state: Callable[[Any], Optional[Any]],
    from_child_state: Callable[[Any, Optional[Any]], Any],
    action_type: str,
    child_reducer: Reducer,
) -> Reducer:
    """
    處理 `Action(action_type, PresentationAction)` 的可選子功能。

    - `dismiss`: 將子狀態設為 None
    - `presented(child_action)`: 子狀態存在時執行子 reducer，
      子 effect 送出的動作會被包裝回 `Action(action_type, presented(...))`

    Args:
        to_child_state: 從父狀態取出子狀態（可能為 None）
        from_child_state: 嵌回新的子狀態
        action_type: 父動作類型
        child_reducer: 子 reducer
    """
    def wrap(child_action: Any) -> Action:
        return Action(action_type, PresentationAction.presented(child_action))

    def reducer(parent_state: Any, parent_action: Any, dependencies: Any = None) -> ReducerResult:
        presentation = _unwrap(parent_action, action_type)
        if presentation is None:
            return parent_state, Effect.none()

        kind, child_action = _presentation_parts(presentation)
        if kind == DISMISS:
            if to_child_state(parent_state) is None:
                return parent_state, Effect.none()
            return from_child_state(parent_state, None), Effect.none()
        if kind != PRESENTED or child_action is None:
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
        return new_parent, Effect.map(child_effect, wrap)

    return reducer


class DestinationState(NamedTuple):
    """目的地狀態：目前呈現的 case 與其子狀態。"""
    type: str
    state: Any


class Match(NamedTuple):
    matched: bool
    value: Any = None


class Destination:
    """
    由 case reducer 映射衍生出的目的地 reducer 與輔助函數。

    目的地動作的形狀為 `Action(case, PresentationAction)`。
    """

    def __init__(self, reducers: Mapping):
        self._reducers: Dict[str, Reducer] = dict(reducers)

    @property
    def cases(self) -> Tuple[str, ...]:
        return tuple(self._reducers)

    def reducer(self, state: Optional[DestinationState], action: Any, dependencies: Any = None) -> ReducerResult:
        case = get_action_type(action)
        child_reducer = self._reducers.get(case)
        if child_reducer is None or state is None or state.type != case:
            return state, Effect.none()

        kind, child_action = _presentation_parts(_unwrap(action, case))
        # dismiss 由父層觀察並清除目的地
        if kind != PRESENTED or child_action is None:
            return state, Effect.none()

        new_child, child_effect = unpack_result(
            child_reducer(state.state, child_action, dependencies)
        )
        new_state = state if new_child is state.state else DestinationState(case, new_child)
        return new_state, Effect.map(
            child_effect, lambda a: Action(case, PresentationAction.presented(a))
        )

    def initial(self, case: str, state: Any) -> DestinationState:
        """建立指定 case 的目的地狀態。"""
        if case not in self._reducers:
            raise KeyError(f"unknown destination case {case!r}")
        return DestinationState(case, state)

    def extract(self, state: Optional[DestinationState], case: str) -> Optional[Any]:
        """目前目的地為 `case` 時回傳其子狀態，否則回傳 None。"""
        if state is None or state.type != case:
            return None
        return state.state

    def is_case(self, action: Any, case_path: str) -> bool:
        """
        判斷動作是否符合 `"case"` 或 `"case.childType"` 路徑。

        帶子類型的路徑只匹配 presented 動作。
        """
        case, _, child_type = case_path.partition(".")
        if get_action_type(action) != case:
            return False
        if not child_type:
            return True
        kind, child_action = _presentation_parts(_unwrap(action, case))
        return kind == PRESENTED and get_action_type(child_action) == child_type

    def match_case(self, action: Any, state: Optional[DestinationState], case_path: str) -> Optional[Any]:
        """動作符合路徑時回傳該 case 的子狀態。"""
        if not self.is_case(action, case_path):
            return None
        return self.extract(state, case_path.partition(".")[0])

    def match(self, action: Any, state: Optional[DestinationState], handlers: Mapping) -> Match:
        """依序嘗試 `{case_path: handler}`，第一個匹配者勝出。"""
        for case_path, handler in handlers.items():
            child_state = self.match_case(action, state, case_path)
            if child_state is not None:
                return Match(True, handler(child_state))
        return Match(False)


def create_destination(reducers: Mapping) -> Destination:
    """
    從 case 名稱到子 reducer 的映射建立目的地。

    Args:
        reducers: `{case: reducer}`

    Returns:
        Destination，提供 reducer、initial、extract、is_case、match_case、match
    """
    return Destination(reducers)


# ———— 堆疊導航 ————

class ScreenAction(NamedTuple):
    index: int
    action: Any


class StackAction:
    """堆疊導航動作的建構函數。"""

    PUSH = "push"
    POP = "pop"
    POP_TO_ROOT = "popToRoot"
    SET_PATH = "setPath"
    SCREEN = "screen"

    @staticmethod
    def push(state: Any) -> Action:
        return Action(StackAction.PUSH, state)

    @staticmethod
    def pop() -> Action:
        return Action(StackAction.POP)

    @staticmethod
    def pop_to_root() -> Action:
        return Action(StackAction.POP_TO_ROOT)

    @staticmethod
    def set_path(path: Sequence[Any]) -> Action:
        return Action(StackAction.SET_PATH, tuple(path))

    @staticmethod
    def screen(index: int, action: Any) -> Action:
        return Action(StackAction.SCREEN, ScreenAction(index, action))


def push(stack: Sequence[Any], screen: Any) -> Tuple[Any, ...]:
    return (*stack, screen)


def pop(stack: Sequence[Any]) -> Tuple[Any, ...]:
    """移除頂層畫面；只剩根畫面時不變。"""
    if len(stack) <= 1:
        return tuple(stack)
    return tuple(stack[:-1])


def pop_to_root(stack: Sequence[Any]) -> Tuple[Any, ...]:
    return tuple(stack[:1])


def set_path(path: Sequence[Any]) -> Tuple[Any, ...]:
    return tuple(path)


def top_screen(stack: Sequence[Any]) -> Optional[Any]:
    return stack[-1] if stack else None


def root_screen(stack: Sequence[Any]) -> Optional[Any]:
    return stack[0] if stack else None


def can_go_back(stack: Sequence[Any]) -> bool:
    return len(stack) > 1


def stack_depth(stack: Sequence[Any]) -> int:
    return len(stack)


def handle_stack_action(
    state: Any,
    action: Any,
    dependencies: Any,
    screen_reducer: Reducer,
    get_stack: Callable[[Any], Sequence[Any]],
    set_stack: Callable[[Any, Tuple[Any, ...]], Any],
    wrap_action: Optional[Callable[[Any], Any]] = None,
) -> ReducerResult:
    """
    處理一個 StackAction。

    Args:
        state: 父狀態
        action: StackAction
        dependencies: 傳給畫面 reducer 的依賴
        screen_reducer: 單一畫面的 reducer
        get_stack: 從父狀態取出畫面堆疊
        set_stack: 以新的堆疊更新父狀態
        wrap_action: 將 StackAction 包裝成父動作，預設為 `Action("stack", ...)`

    Returns:
        (新父狀態, Effect)
    """
    wrap = wrap_action or (lambda stack_action: Action("stack", stack_action))
    stack = tuple(get_stack(state))
    kind = get_action_type(action)
    payload = get_action_payload(action)

    if kind == StackAction.PUSH:
        return set_stack(state, push(stack, payload)), Effect.none()
    if kind == StackAction.POP:
        return set_stack(state, pop(stack)), Effect.none()
    if kind == StackAction.POP_TO_ROOT:
        return set_stack(state, pop_to_root(stack)), Effect.none()
    if kind == StackAction.SET_PATH:
        return set_stack(state, set_path(payload)), Effect.none()
    if kind != StackAction.SCREEN:
        logger.warning("unhandled stack action %r", action)
        return state, Effect.none()

    index, presentation = payload
    if index < 0 or index >= len(stack):
        logger.warning("invalid stack index %d (stack depth %d)", index, len(stack))
        return state, Effect.none()

    presentation_kind, screen_action = _presentation_parts(presentation)
    if presentation_kind == DISMISS:
        # 關閉一個畫面會一併移除其上的所有畫面
        return set_stack(state, stack[:index]), Effect.none()
    if presentation_kind != PRESENTED:
        return state, Effect.none()

    new_screen, screen_effect = unpack_result(
        screen_reducer(stack[index], screen_action, dependencies)
    )
    if new_screen is stack[index]:
        new_state = state
    else:
        new_state = set_stack(state, stack[:index] + (new_screen,) + stack[index + 1:])
    return new_state, Effect.map(
        screen_effect,
        lambda a: wrap(StackAction.screen(index, PresentationAction.presented(a))),
    )
