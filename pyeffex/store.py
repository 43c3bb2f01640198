import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Callable, Deque, Generic, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, NonNegativeInt, ValidationError as PydanticValidationError
from reactivex import Observable, operators as ops
from reactivex.abc import SchedulerBase
from reactivex.subject import BehaviorSubject, Subject

from .effects_manager import EffectsManager
from .errors import ConfigurationError, EffectError, StoreError
from .reducers import unpack_result
from .types import S, ActionListener, Listener, Unsubscribe

logger = logging.getLogger(__name__)

_MISSING = object()


class StoreConfig(BaseModel):
    """
    Store 的設定。

    Attributes:
        initial_state: 初始狀態
        reducer: `(state, action, dependencies) -> (state, Effect)`
        dependencies: 原樣傳給每次 reducer 呼叫的依賴物件
        max_history_size: 動作歷史上限；None 表示不限，0 表示不記錄
    """
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    initial_state: Any = None
    reducer: Callable[..., Any]
    dependencies: Any = None
    max_history_size: Optional[NonNegativeInt] = None


class Store(Generic[S]):
    """
    狀態容器，同步套用 reducer、通知訂閱者，並將 reducer 回傳的 Effect
    交給 EffectsManager 執行。
    """

    def __init__(
        self,
        config: StoreConfig,
        scheduler: Optional[SchedulerBase] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        on_effect_error: Optional[Callable[[EffectError], None]] = None,
    ):
        """
        Args:
            config: 已驗證的 StoreConfig
            scheduler: 計時器使用的 reactivex 排程器，預設為 AsyncIOScheduler
            loop: async effect 使用的事件迴圈，預設為執行中的迴圈
            on_effect_error: effect 失敗時的回呼
        """
        self._config = config
        self._reducer = config.reducer
        self._dependencies = config.dependencies
        # 內部狀態
        self._state: S = config.initial_state
        # 狀態流：訂閱時立即收到目前狀態
        self._state_subject = BehaviorSubject(self._state)
        # 動作流：發送 (action, new_state)
        self._action_subject = Subject()
        self._history: Deque[Any] = deque(maxlen=config.max_history_size)
        self._destroyed = False
        # effects 透過 self.dispatch 回送，確保經過中介軟體鏈
        self._effects_manager = EffectsManager(
            lambda action: self.dispatch(action),
            scheduler=scheduler,
            loop=loop,
            on_error=on_effect_error,
        )
        # 中介軟體
        self._middleware = []
        self._raw_dispatch = self._dispatch_core
        self.dispatch = self._apply_middleware_chain()

    def _dispatch_core(self, action: Any) -> Any:
        """
        核心的 dispatch：reducer → 提交狀態 → 歷史 → 通知 → 執行 effect。

        Args:
            action: 要分發的 action。

        Returns:
            傳入的 action。
        """
        if self._destroyed:
            logger.warning("dispatch of %r ignored: store has been destroyed", action)
            return action

        # reducer 拋出的異常屬於程式錯誤，直接向上傳遞
        new_state, effect = unpack_result(
            self._reducer(self._state, action, self._dependencies)
        )
        old_state = self._state
        self._state = new_state
        self._history.append(action)

        # 狀態監聽者先於動作監聽者收到通知
        if new_state is not old_state:
            self._state_subject.on_next(new_state)
        self._action_subject.on_next((action, new_state))

        self._effects_manager.run(effect)
        return action

    def _apply_middleware_chain(self):
        """
        構建中介軟體鏈，將中介軟體按順序包裹在 dispatch 方法外層。

        Returns:
            包裹後的 dispatch 方法。
        """
        dispatch = self._raw_dispatch
        for mw in reversed(self._middleware):
            if hasattr(mw, "action_context"):
                dispatch = self._wrap_obj_middleware(mw, dispatch)
            else:
                # 函數型中介軟體：store -> next -> dispatch
                dispatch = mw(self)(dispatch)
        return dispatch

    def _wrap_obj_middleware(self, mw: Any, next_dispatch: Callable[[Any], Any]):
        """
        包裹物件型中介軟體，透過其 action_context 觸發 on_next / on_complete / on_error。
        """
        def dispatch(action: Any):
            with mw.action_context(action, self._state) as context:
                result = next_dispatch(action)
                context['result'] = result
                context['next_state'] = self._state
            return result

        return dispatch

    def apply_middleware(self, *middlewares):
        """
        一次註冊多個中介軟體，並重建 dispatch 鏈。

        Args:
            *middlewares: 要註冊的中介軟體，可以是類或實例。
        """
        for m in middlewares:
            inst = m() if inspect.isclass(m) else m
            self._middleware.append(inst)
        self.dispatch = self._apply_middleware_chain()

    @property
    def state(self) -> S:
        """當前狀態的快照。"""
        return self._state

    @property
    def dependencies(self) -> Any:
        return self._dependencies

    @property
    def history(self) -> Tuple[Any, ...]:
        """已分發的動作，最舊的在前。"""
        return tuple(self._history)

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def effects(self) -> EffectsManager:
        return self._effects_manager

    def select(self, selector: Callable[[S], Any]) -> Any:
        """
        以 selector 讀取當前狀態的一部分。

        Args:
            selector: 接收整個狀態並返回所需部分的函數。
        """
        return selector(self._state)

    def observe(self, selector: Optional[Callable[[S], Any]] = None) -> Observable:
        """
        選擇狀態的一部分進行觀察。

        Args:
            selector: 一個函數，接收整個狀態並返回希望觀察的部分。

        Returns:
            一個可觀察對象，訂閱時先發送目前值，之後只在選取值改變時發送。
        """
        if selector is None:
            return self._state_subject.pipe(ops.distinct_until_changed(comparer=lambda a, b: a is b))

        return self._state_subject.pipe(
            ops.map(selector),
            ops.distinct_until_changed(),
        )

    @property
    def action_stream(self) -> Observable:
        """(action, new_state) 的可觀察流。"""
        return self._action_subject

    def subscribe(self, listener: Listener) -> Unsubscribe:
        """
        訂閱狀態變更；listener 會立即收到目前狀態。

        Returns:
            取消訂閱的函數。
        """
        self._check_alive("subscribe")

        def on_next(state: Any) -> None:
            try:
                listener(state)
            except Exception:
                logger.exception("state listener %r raised", listener)

        return self._state_subject.subscribe(on_next).dispose

    def subscribe_to_actions(self, listener: ActionListener) -> Unsubscribe:
        """
        訂閱每個被分發的動作，listener 接收 `(action, new_state)`。

        Returns:
            取消訂閱的函數。
        """
        self._check_alive("subscribe_to_actions")

        def on_next(pair: Tuple[Any, Any]) -> None:
            try:
                listener(*pair)
            except Exception:
                logger.exception("action listener %r raised", listener)

        return self._action_subject.subscribe(on_next).dispose

    def destroy(self) -> None:
        """取消所有 effect 與訂閱並清除監聽者；可重複呼叫。"""
        if self._destroyed:
            return
        self._destroyed = True
        self._effects_manager.destroy()
        for mw in self._middleware:
            teardown = getattr(mw, "teardown", None)
            if teardown is not None:
                teardown()
        self._state_subject.on_completed()
        self._action_subject.on_completed()
        self._state_subject.dispose()
        self._action_subject.dispose()
        logger.debug("store destroyed")

    def _check_alive(self, operation: str) -> None:
        if self._destroyed:
            raise StoreError("store has been destroyed", operation=operation)

    def __enter__(self) -> "Store[S]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()


def create_store(
    initial_state: Any = _MISSING,
    reducer: Optional[Callable[..., Any]] = None,
    dependencies: Any = None,
    max_history_size: Optional[int] = None,
    *,
    scheduler: Optional[SchedulerBase] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
    middlewares: Iterable[Any] = (),
    on_effect_error: Optional[Callable[[EffectError], None]] = None,
) -> Store:
    """
    創建一個新的 Store 實例。

    Args:
        initial_state: 初始狀態；省略時使用 `reducer.initial_state`
        reducer: 根 reducer
        dependencies: 注入每次 reducer 呼叫的依賴
        max_history_size: 動作歷史上限
        scheduler: 計時器排程器
        loop: async effect 的事件迴圈
        middlewares: 要套用的中介軟體
        on_effect_error: effect 失敗時的回呼

    Returns:
        Store: 新創建的 Store 實例。

    Raises:
        ConfigurationError: 設定無效
    """
    if initial_state is _MISSING:
        initial_state = getattr(reducer, "initial_state", _MISSING)
        if initial_state is _MISSING:
            raise ConfigurationError(
                "initial_state is required when the reducer has no initial_state",
                component="Store",
                config_key="initial_state",
            )
    try:
        config = StoreConfig(
            initial_state=initial_state,
            reducer=reducer,
            dependencies=dependencies,
            max_history_size=max_history_size,
        )
    except PydanticValidationError as err:
        raise ConfigurationError(
            f"invalid store configuration: {err}",
            component="Store",
            errors=err.errors(include_url=False),
        ) from err

    store = Store(config, scheduler=scheduler, loop=loop, on_effect_error=on_effect_error)
    if middlewares:
        store.apply_middleware(*middlewares)
    return store
