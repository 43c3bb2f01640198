"""
基於 PyEffeX 的 Action 定義模組。

此模組提供 Action 類別以及創建 Action 的功能。
Actions 是描述狀態變更意圖的不可變對象。
"""
from collections.abc import Mapping
from typing import Any, Callable, Dict, Generic, Optional, Union

from immutables import Map

from .types import P


class Action(Generic[P]):
    """
    表示一個有類型和可選負載的動作。

    泛型參數:
        P: 負載的類型

    屬性:
        type: 動作的類型字符串
        payload: 動作的負載數據（可選）
    """
    __slots__ = ('type', 'payload')

    def __init__(self, type: str, payload: Optional[P] = None):
        super().__setattr__('type', type)
        super().__setattr__('payload', payload)

    def __setattr__(self, name, value):
        raise AttributeError(f"Cannot modify immutable instance attribute '{name}'")

    def __eq__(self, other):
        if not isinstance(other, Action):
            return False
        return self.type == other.type and self.payload == other.payload

    def __hash__(self):
        return hash((self.type, self.payload))

    def __repr__(self):
        return f"Action(type='{self.type}', payload={repr(self.payload)})"


def _process_payload(payload: Any) -> Any:
    """
    處理 payload，將字典轉換為不可變的 Map。

    Args:
        payload: 原始 payload

    Returns:
        處理後的 payload
    """
    if isinstance(payload, dict):
        return Map(payload)
    return payload


def create_action(action_type: str, prepare_fn: Optional[Callable[..., Any]] = None) -> Callable[..., Action[Any]]:
    """
    創建一個 Action 生成器函數。

    Args:
        action_type: Action 的類型標識符
        prepare_fn: 可選的預處理函數，用於在創建 Action 前處理輸入參數

    Returns:
        一個可調用的函數，用於生成指定類型的 Action

    範例:
        >>> increment = create_action("[Counter] Increment")
        >>> increment()  # 返回 Action(type="[Counter] Increment", payload=None)
        >>>
        >>> add = create_action("[Counter] Add", lambda amount: amount)
        >>> add(5)  # 返回 Action(type="[Counter] Add", payload=5)
    """
    def action_creator(*args: Any, **kwargs: Any) -> Action[Any]:
        if prepare_fn:
            return Action(action_type, _process_payload(prepare_fn(*args, **kwargs)))
        elif len(args) == 1 and not kwargs:
            return Action(action_type, _process_payload(args[0]))
        elif args or kwargs:
            payload: Dict[Union[int, str], Any] = dict(zip(range(len(args)), args))
            payload.update(kwargs)
            return Action(action_type, _process_payload(payload))

        # 無參數，無負載
        return Action(action_type)

    # 添加 type 屬性以便於識別
    action_creator.type = action_type  # type: ignore
    action_creator.__name__ = action_type

    # 讓 `creator.match(action)` 可用於 reducer 與測試中判斷類型
    action_creator.match = lambda action: get_action_type(action) == action_type  # type: ignore

    return action_creator


def get_action_type(action: Any) -> Optional[str]:
    """
    取得任意 action 的類型字串。

    支援 Action 物件、帶 `type` 屬性的物件，以及含 "type" 鍵的映射。
    """
    if isinstance(action, Action):
        return action.type
    if isinstance(action, (Map, Mapping)):
        return action.get("type")
    return getattr(action, "type", None)


def get_action_payload(action: Any) -> Any:
    """取得 action 的負載；映射型 action 回傳除 "type" 之外的欄位。"""
    if isinstance(action, Action):
        return action.payload
    if isinstance(action, (Map, Mapping)):
        return Map({k: v for k, v in action.items() if k != "type"})
    return getattr(action, "payload", None)


# 呈現生命週期事件，由動畫計時器在動畫結束時發出
presentation_completed = create_action("presentationCompleted")
dismissal_completed = create_action("dismissalCompleted")
