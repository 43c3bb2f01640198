"""
呈現生命週期狀態機。

idle -> presenting -> presented -> dismissing -> idle

適用於任何需要計時顯示 / 隱藏的功能（tooltip、sheet、動畫 toast）。
狀態機透過以 id 識別的動畫計時器推進，內容型別由使用者決定。
"""
import itertools
from typing import Any, Callable, Generic, Literal, Optional

from pydantic import BaseModel, ConfigDict

from .actions import (
    create_action,
    dismissal_completed,
    get_action_payload,
    get_action_type,
    presentation_completed,
)
from .effects import Effect
from .types import C, ReducerResult

Status = Literal["idle", "presenting", "presented", "dismissing"]


class PresentationState(BaseModel, Generic[C]):
    """
    呈現狀態。

    屬性:
        status: 目前的生命週期階段
        content: 被呈現的內容，idle 時為 None
        dismiss_requested: 呈現動畫進行中收到關閉請求時為 True
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status: Status = "idle"
    content: Optional[C] = None
    dismiss_requested: bool = False


begin_presentation = create_action("beginPresentation", lambda content: content)
begin_dismissal = create_action("beginDismissal")
dismiss_immediately = create_action("dismissImmediately")


_machine_ids = itertools.count(1)


def _timer(id: str, duration: float, event: Any) -> Effect:
    return Effect.debounced(id, duration, lambda dispatch: dispatch(event))


def is_visible(state: PresentationState) -> bool:
    return state.status != "idle"


def is_interactive(state: PresentationState) -> bool:
    return state.status == "presented"


class PresentationMachine:
    """
    可重用的呈現狀態機 reducer。

    實例本身即為 reducer：`machine(state, action, dependencies)`。

    Args:
        present_duration: 呈現動畫時間（毫秒）
        dismiss_duration: 關閉動畫時間（毫秒）
        create_presentation_event: 將生命週期事件包裝成父層動作；
            透過 `scope` 嵌入時不需要，effect 會自動被轉換
        id: 動畫計時器的 effect id；未指定時每個實例各自產生一個。
            新的計時器會取代同 id 的舊計時器，`dismiss_immediately` 會取消它
    """

    def __init__(
        self,
        present_duration: float = 300,
        dismiss_duration: float = 200,
        create_presentation_event: Optional[Callable[[Any], Any]] = None,
        id: Optional[str] = None,
    ):
        self.id = id or f"presentation-{next(_machine_ids)}"
        wrap = create_presentation_event or (lambda event: event)
        self.present_timer = _timer(self.id, present_duration, wrap(presentation_completed()))
        self.dismiss_timer = _timer(self.id, dismiss_duration, wrap(dismissal_completed()))
        self.initial_state: PresentationState = PresentationState()

    def __call__(self, state: PresentationState, action: Any, dependencies: Any = None) -> ReducerResult:
        action_type = get_action_type(action)

        if action_type == begin_presentation.type:
            if state.status != "idle":
                return state, Effect.none()
            return state.model_copy(update={
                "status": "presenting",
                "content": get_action_payload(action),
                "dismiss_requested": False,
            }), self.present_timer

        if action_type == presentation_completed.type:
            if state.status != "presenting":
                return state, Effect.none()
            if state.dismiss_requested:
                # 延後的關閉請求：直接進入 dismissing
                return state.model_copy(update={
                    "status": "dismissing",
                    "dismiss_requested": False,
                }), self.dismiss_timer
            return state.model_copy(update={"status": "presented"}), Effect.none()

        if action_type == begin_dismissal.type:
            if state.status == "presented":
                return state.model_copy(update={"status": "dismissing"}), self.dismiss_timer
            if state.status == "presenting" and not state.dismiss_requested:
                return state.model_copy(update={"dismiss_requested": True}), Effect.none()
            return state, Effect.none()

        if action_type == dismissal_completed.type:
            if state.status != "dismissing":
                return state, Effect.none()
            return self.initial_state, Effect.none()

        if action_type == dismiss_immediately.type:
            # 跳過動畫並取消仍在途中的計時器
            if state.status == "idle":
                return state, Effect.none()
            return self.initial_state, Effect.cancel(self.id)

        return state, Effect.none()


def create_presentation_reducer(
    present_duration: float = 300,
    dismiss_duration: float = 200,
    create_presentation_event: Optional[Callable[[Any], Any]] = None,
    id: Optional[str] = None,
) -> PresentationMachine:
    """建立呈現狀態機 reducer。"""
    return PresentationMachine(present_duration, dismiss_duration, create_presentation_event, id)
