"""
PyEffeX 共用型別定義。
"""
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar, Union

from typing_extensions import Protocol

S = TypeVar("S")  # 狀態
C = TypeVar("C")  # 子狀態 / 內容
P = TypeVar("P")  # payload

Dispatch = Callable[[Any], None]
Cleanup = Callable[[], Union[None, Awaitable[None]]]
Executor = Callable[[Dispatch], Union[None, Awaitable[None]]]
FireAndForgetExecutor = Callable[[], Union[None, Awaitable[None]]]
SubscriptionSetup = Callable[[Dispatch], Union[Optional[Cleanup], Awaitable[Optional[Cleanup]]]]
Listener = Callable[[Any], None]
ActionListener = Callable[[Any, Any], None]
Unsubscribe = Callable[[], None]


class ActionCreator(Protocol):
    """帶有 `type` 屬性的 action 生成器。"""

    type: str

    def __call__(self, *args: Any, **kwargs: Any) -> Any: ...


# reducer 的返回值：(新狀態, Effect)
ReducerResult = Tuple[Any, Any]
Reducer = Callable[[Any, Any, Any], ReducerResult]
