"""
基於 PyEffeX 的 Effect 定義模組。

Effect 是描述副作用的不可變資料：reducer 只回傳 Effect，
真正的執行交由 EffectsManager 解譯。建立 Effect 時不會執行任何程式碼。

所有時間參數皆以毫秒為單位。
"""
from dataclasses import dataclass
from numbers import Real
from typing import Any, Callable, ClassVar, NamedTuple, Optional, Tuple

from .actions import dismissal_completed, presentation_completed
from .errors import ValidationError
from .types import Dispatch, Executor, FireAndForgetExecutor, SubscriptionSetup


def _check_duration(name: str, ms: Any) -> None:
    if isinstance(ms, bool) or not isinstance(ms, Real):
        raise ValidationError(f"{name} must be a number of milliseconds", field=name, value=ms)
    if ms < 0:
        raise ValidationError(f"{name} must be non-negative, got {ms}", field=name, value=ms)


def _check_id(id: Any) -> None:
    if not isinstance(id, str) or not id:
        raise ValidationError("effect id must be a non-empty string", field="id", value=id)


def _lift_executor(execute: Callable[[Dispatch], Any], f: Callable[[Any], Any]) -> Callable[[Dispatch], Any]:
    # 保持原 executor 的同步 / 非同步性質：回傳值原樣交回
    def lifted(dispatch: Dispatch) -> Any:
        return execute(lambda action: dispatch(f(action)))
    return lifted


@dataclass(frozen=True)
class Effect:
    """
    所有 Effect 變體的基礎類，同時作為建構函數的命名空間。

    用法:
        >>> Effect.run(lambda dispatch: dispatch(loaded(42)))
        >>> Effect.debounced("search", 300, search_executor)
    """

    kind: ClassVar[str] = "effect"

    @staticmethod
    def none() -> "NoneEffect":
        """不執行任何工作。"""
        return _NONE

    @staticmethod
    def run(execute: Executor) -> "Run":
        """以 dispatch 回呼執行 `execute`，可同步或 async。"""
        return Run(execute)

    @staticmethod
    def fire_and_forget(execute: FireAndForgetExecutor) -> "FireAndForget":
        """執行無法 dispatch 的副作用，失敗會被丟棄。"""
        return FireAndForget(execute)

    @staticmethod
    def batch(*effects: "Effect") -> "Effect":
        """
        合併多個 Effect 同時執行。

        空列表回傳 `none()`，單一成員原樣回傳，並移除所有 `none()`。
        """
        members = tuple(e for e in effects if not isinstance(e, NoneEffect))
        if not members:
            return _NONE
        if len(members) == 1:
            return members[0]
        return Batch(members)

    @staticmethod
    def cancellable(id: str, execute: Executor) -> "Cancellable":
        """開始執行前先取消同一 `id` 下仍在進行的 Effect。"""
        _check_id(id)
        return Cancellable(id, execute)

    @staticmethod
    def debounced(id: str, ms: float, execute: Executor) -> "Debounced":
        """每次呼叫都重新計時，只有最後一次呼叫會在 `ms` 後執行。"""
        _check_id(id)
        _check_duration("ms", ms)
        return Debounced(id, ms, execute)

    @staticmethod
    def throttled(id: str, ms: float, execute: Executor) -> "Throttled":
        """視窗內首次呼叫立即執行，其餘呼叫合併為視窗結束時的一次執行。"""
        _check_id(id)
        _check_duration("ms", ms)
        return Throttled(id, ms, execute)

    @staticmethod
    def after_delay(ms: float, execute: Executor) -> "AfterDelay":
        """`ms` 後執行一次；不可用 id 取消。"""
        _check_duration("ms", ms)
        return AfterDelay(ms, execute)

    @staticmethod
    def subscription(id: str, setup: SubscriptionSetup) -> "Subscription":
        """
        建立長期訂閱。

        `setup(dispatch)` 回傳清理函數，該函數會在 `Effect.cancel(id)`、
        同 id 的新訂閱或 Store 銷毀時被呼叫且僅呼叫一次。
        """
        _check_id(id)
        return Subscription(id, setup)

    @staticmethod
    def cancel(id: str) -> "Cancel":
        """取消 `id` 下的任何註冊（cancellable、debounced、throttled 或 subscription）。"""
        _check_id(id)
        return Cancel(id)

    @staticmethod
    def animated(duration: float, on_complete: Any) -> "AfterDelay":
        """
        在動畫時間結束後 dispatch `on_complete`。

        Args:
            duration: 動畫時間（毫秒）
            on_complete: 動畫結束時要 dispatch 的 action
        """
        _check_duration("duration", duration)
        return AfterDelay(duration, lambda dispatch: dispatch(on_complete))

    @staticmethod
    def transition(
        present_duration: float = 300,
        dismiss_duration: float = 200,
        create_presentation_event: Optional[Callable[[Any], Any]] = None,
    ) -> "Transition":
        """
        建立呈現 / 關閉動畫的 Effect 組。

        Args:
            present_duration: 呈現動畫時間（毫秒）
            dismiss_duration: 關閉動畫時間（毫秒）
            create_presentation_event: 將生命週期事件包裝成父層 action 的函數

        Returns:
            Transition(present, dismiss)
        """
        _check_duration("present_duration", present_duration)
        _check_duration("dismiss_duration", dismiss_duration)
        wrap = create_presentation_event or (lambda event: event)
        return Transition(
            present=Effect.animated(present_duration, wrap(presentation_completed())),
            dismiss=Effect.animated(dismiss_duration, wrap(dismissal_completed())),
        )

    @staticmethod
    def map(effect: "Effect", f: Callable[[Any], Any]) -> "Effect":
        """
        轉換 Effect 樹中所有 dispatch 出去的 action。

        id、延遲時間與執行語意皆保持不變。
        """
        return effect._map(f)

    def _map(self, f: Callable[[Any], Any]) -> "Effect":
        return self


@dataclass(frozen=True)
class NoneEffect(Effect):
    kind: ClassVar[str] = "none"


@dataclass(frozen=True)
class Run(Effect):
    execute: Executor
    kind: ClassVar[str] = "run"

    def _map(self, f):
        return Run(_lift_executor(self.execute, f))


@dataclass(frozen=True)
class FireAndForget(Effect):
    execute: FireAndForgetExecutor
    kind: ClassVar[str] = "fire_and_forget"


@dataclass(frozen=True)
class Batch(Effect):
    effects: Tuple[Effect, ...]
    kind: ClassVar[str] = "batch"

    def _map(self, f):
        return Batch(tuple(e._map(f) for e in self.effects))


@dataclass(frozen=True)
class Cancellable(Effect):
    id: str
    execute: Executor
    kind: ClassVar[str] = "cancellable"

    def _map(self, f):
        return Cancellable(self.id, _lift_executor(self.execute, f))


@dataclass(frozen=True)
class Debounced(Effect):
    id: str
    ms: float
    execute: Executor
    kind: ClassVar[str] = "debounced"

    def _map(self, f):
        return Debounced(self.id, self.ms, _lift_executor(self.execute, f))


@dataclass(frozen=True)
class Throttled(Effect):
    id: str
    ms: float
    execute: Executor
    kind: ClassVar[str] = "throttled"

    def _map(self, f):
        return Throttled(self.id, self.ms, _lift_executor(self.execute, f))


@dataclass(frozen=True)
class AfterDelay(Effect):
    ms: float
    execute: Executor
    kind: ClassVar[str] = "after_delay"

    def _map(self, f):
        return AfterDelay(self.ms, _lift_executor(self.execute, f))


@dataclass(frozen=True)
class Subscription(Effect):
    id: str
    setup: SubscriptionSetup
    kind: ClassVar[str] = "subscription"

    def _map(self, f):
        return Subscription(self.id, _lift_executor(self.setup, f))


@dataclass(frozen=True)
class Cancel(Effect):
    id: str
    kind: ClassVar[str] = "cancel"


class Transition(NamedTuple):
    present: AfterDelay
    dismiss: AfterDelay


_NONE = NoneEffect()
