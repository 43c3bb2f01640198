"""
確定性的測試工具。

TestStore 以與 Store 相同的 reducer / EffectsManager 合約執行，
但計時器跑在虛擬時鐘上，effect 送出的動作會先進入 FIFO 佇列，
必須由測試以 `receive` 逐一確認（exhaustiveness）。

TestStore 的 API 是同步的，供一般（非 async）的 pytest 測試函數使用；
async executor 在其私有的事件迴圈中執行。
"""
import asyncio
import logging
from collections import deque
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Generic, List, Optional, Tuple

from immutables import Map
from pydantic import BaseModel
from reactivex.scheduler import VirtualTimeScheduler

from .actions import Action, get_action_payload, get_action_type
from .effects_manager import EffectsManager
from .errors import EffectError, StoreAssertionError
from .immutable_utils import to_dict
from .reducers import unpack_result
from .types import S

logger = logging.getLogger(__name__)


class VirtualClock(VirtualTimeScheduler):
    """可逐步推進的虛擬時鐘；相同到期時間的工作依排程順序執行。"""

    def peek_duetime(self) -> Optional[datetime]:
        """下一個未取消工作的到期時間。"""
        with self._lock:
            while self._queue:
                item = self._queue.peek()
                if not item.is_cancelled():
                    return item.duetime
                self._queue.dequeue()
        return None

    def run_due(self) -> int:
        """執行所有已到期（到期時間 <= 現在）的工作，回傳執行的數量。"""
        ran = 0
        while True:
            with self._lock:
                if not self._queue:
                    break
                item = self._queue.peek()
                if item.duetime > self.now:
                    break
                self._queue.dequeue()
            if not item.is_cancelled():
                item.invoke()
                ran += 1
        return ran

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for item in self._queue.items if not item[0].is_cancelled())

    @property
    def elapsed_ms(self) -> float:
        return (self.now - self.to_datetime(0)) / timedelta(milliseconds=1)


def _lookup(actual: Any, key: str) -> Tuple[bool, Any]:
    if isinstance(actual, (Map, Mapping)):
        if key in actual:
            return True, actual[key]
        return False, None
    if isinstance(actual, Action):
        if key == "payload":
            return True, actual.payload
        return _lookup(actual.payload, key)
    if hasattr(actual, key):
        return True, getattr(actual, key)
    return False, None


def _partial_match(expected: Any, actual: Any) -> bool:
    """expected 為映射時只比較其列出的欄位（可巢狀），其他值以 == 比較。"""
    if isinstance(expected, (Map, Mapping)) and not isinstance(actual, (str, bytes)):
        for key, value in expected.items():
            if key == "type":
                if get_action_type(actual) != value:
                    return False
                continue
            found, actual_value = _lookup(actual, key)
            if not found or not _partial_match(value, actual_value):
                return False
        return True
    return expected == actual


def matches_action(expected: Any, actual: Any) -> bool:
    """
    判斷實際動作是否符合期望。

    Args:
        expected: 類型字串、action 創建器、Action（有 payload 時一併比較）
            或欄位映射（部分比對）
        actual: effect 送出的動作
    """
    if isinstance(expected, str):
        return get_action_type(actual) == expected
    if isinstance(expected, Action):
        if get_action_type(actual) != expected.type:
            return False
        if expected.payload is None:
            return True
        return _partial_match(expected.payload, get_action_payload(actual))
    if isinstance(expected, (Map, Mapping)):
        return _partial_match(expected, actual)
    if callable(expected) and hasattr(expected, "type"):
        return get_action_type(actual) == expected.type
    return expected == actual


def _describe(value: Any) -> str:
    if isinstance(value, Action):
        return f"Action(type={value.type!r}, payload={to_dict(value.payload)!r})"
    if isinstance(value, (BaseModel, Map)):
        return repr(to_dict(value))
    if callable(value) and hasattr(value, "type"):
        return f"<action creator {value.type!r}>"
    return repr(value)


class TestStore(Generic[S]):
    """
    測試用 Store。

    Args:
        initial_state: 初始狀態
        reducer: 受測的 reducer
        dependencies: 注入 reducer 的依賴
        exhaustive: 為 True 時，所有 effect 送出的動作都必須被 receive
        timeout: receive / finish 的預設等待時間（毫秒，真實時間）

    範例:
        >>> store = TestStore({"value": None}, reducer)
        >>> store.send({"type": "startLoading"})
        >>> store.receive({"type": "loadComplete", "value": 42},
        ...               lambda state: state["value"] == 42)
        >>> store.finish()
    """

    __test__ = False  # 避免 pytest 收集

    # 連續多少輪事件迴圈沒有進展才視為穩定
    settle_rounds = 10

    def __init__(
        self,
        initial_state: S,
        reducer: Callable[..., Any],
        dependencies: Any = None,
        *,
        exhaustive: bool = True,
        timeout: float = 1000,
        max_history_size: Optional[int] = None,
    ):
        self._state = initial_state
        self._reducer = reducer
        self._dependencies = dependencies
        self.exhaustive = exhaustive
        self.timeout = timeout
        self._history: Deque[Any] = deque(maxlen=max_history_size)
        self._received: Deque[Any] = deque()
        self._errors: List[EffectError] = []
        self._waiter: Optional[asyncio.Future] = None
        self._destroyed = False
        self._loop = asyncio.new_event_loop()
        self._clock = VirtualClock()
        self._effects = EffectsManager(
            self._enqueue,
            scheduler=self._clock,
            loop=self._loop,
            on_error=self._errors.append,
        )

    # ———— 狀態讀取 ————

    @property
    def state(self) -> S:
        return self._state

    def get_state(self) -> S:
        return self._state

    def get_history(self) -> Tuple[Any, ...]:
        """send 與 receive 處理過的所有動作。"""
        return tuple(self._history)

    @property
    def pending_actions(self) -> Tuple[Any, ...]:
        """effect 已送出但尚未被 receive 的動作。"""
        return tuple(self._received)

    @property
    def now(self) -> float:
        """虛擬時鐘經過的毫秒數。"""
        return self._clock.elapsed_ms

    @property
    def effects(self) -> EffectsManager:
        return self._effects

    # ———— 測試 API ————

    def send(self, action: Any, assert_state: Any = None) -> S:
        """
        送出一個動作並斷言結果狀態。

        Args:
            action: 要送出的動作
            assert_state: 回傳 bool 的函數，或與狀態以 == 比較的期望值

        Returns:
            新狀態
        """
        self._check_alive()
        self._raise_effect_errors()
        if self._received:
            if self.exhaustive:
                raise StoreAssertionError(
                    f"Must handle {len(self._received)} received action(s) before sending "
                    f"{_describe(action)}:\n{self._describe_pending()}",
                    expected=None,
                    actual=list(self._received),
                )
            self._skip_received()

        self._apply(action)
        self._drain()
        self._raise_effect_errors()
        self._assert_state(assert_state, action)
        return self._state

    def receive(self, expected: Any, assert_state: Any = None, timeout: Optional[float] = None) -> S:
        """
        等待下一個 effect 送出的動作，斷言其符合 `expected` 後套用。

        Args:
            expected: 類型字串、Action、action 創建器或欄位映射
            assert_state: 套用後的狀態斷言
            timeout: 等待時間（毫秒，真實時間），預設為 `self.timeout`

        Returns:
            新狀態
        """
        self._check_alive()
        self._wait_for_action(expected, self.timeout if timeout is None else timeout)
        self._raise_effect_errors()

        while True:
            actual = self._received.popleft()
            if matches_action(expected, actual):
                break
            if self.exhaustive:
                raise StoreAssertionError(
                    f"Received unexpected action.\n"
                    f"  expected: {_describe(expected)}\n"
                    f"  actual:   {_describe(actual)}",
                    expected=expected,
                    actual=actual,
                )
            # 非 exhaustive：略過（但仍套用）不符合的動作
            logger.debug("skipping received action %r", actual)
            self._apply(actual)
            if not self._received:
                self._drain()
                self._wait_for_action(expected, self.timeout if timeout is None else timeout)

        self._apply(actual)
        self._drain()
        self._raise_effect_errors()
        self._assert_state(assert_state, actual)
        return self._state

    def advance_time(self, ms: float) -> None:
        """
        推進虛擬時鐘 `ms` 毫秒，依序觸發到期的計時器。

        每個到期時間點觸發後都會先讓 async 工作執行完畢，再處理下一個時間點。
        """
        self._check_alive()
        if ms < 0:
            raise ValueError(f"cannot advance time by a negative amount ({ms}ms)")
        target = self._clock.now + timedelta(milliseconds=ms)
        self._drain()
        while True:
            due = self._clock.peek_duetime()
            if due is None or due > target:
                break
            if due > self._clock.now:
                self._clock.sleep(due - self._clock.now)
            self._drain()
        if target > self._clock.now:
            self._clock.sleep(target - self._clock.now)
        self._drain()
        self._raise_effect_errors()

    def assert_no_pending_actions(self) -> None:
        """exhaustive 模式下，若仍有未 receive 的動作則失敗。"""
        if self.exhaustive and self._received:
            raise StoreAssertionError(
                f"Expected no pending actions, but found {len(self._received)} "
                f"unasserted action(s):\n{self._describe_pending()}",
                expected=[],
                actual=list(self._received),
            )

    def finish(self, timeout: Optional[float] = None) -> None:
        """
        等待進行中的 effect，斷言沒有未處理的動作，最後銷毀 TestStore。

        Args:
            timeout: 等待進行中 effect 的時間（毫秒，真實時間）
        """
        self._check_alive()
        try:
            self._settle(self.timeout if timeout is None else timeout)
            self._raise_effect_errors()
            if not self.exhaustive:
                self._skip_received()
            self.assert_no_pending_actions()
        finally:
            self.destroy()

    def destroy(self) -> None:
        """取消所有 effect 並關閉私有事件迴圈；可重複呼叫。"""
        if self._destroyed:
            return
        self._destroyed = True
        self._effects.destroy()
        # 讓 async 清理函數有機會執行
        self._drain()
        remaining = self._unfinished_tasks()
        for task in remaining:
            task.cancel()
        if remaining:
            self._loop.run_until_complete(asyncio.gather(*remaining, return_exceptions=True))
        self._loop.run_until_complete(self._loop.shutdown_asyncgens())
        self._loop.close()

    def __enter__(self) -> "TestStore[S]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()

    # ———— 內部 ————

    def _enqueue(self, action: Any) -> None:
        self._received.append(action)
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)

    def _apply(self, action: Any) -> None:
        self._state, effect = unpack_result(
            self._reducer(self._state, action, self._dependencies)
        )
        self._history.append(action)
        self._effects.run(effect)

    def _skip_received(self) -> None:
        while self._received:
            action = self._received.popleft()
            logger.debug("applying unasserted action %r", action)
            self._apply(action)
            self._drain()

    def _unfinished_tasks(self) -> List[asyncio.Task]:
        return [t for t in asyncio.all_tasks(self._loop) if not t.done()]

    def _drain(self) -> None:
        """執行目前時間點所有可執行的工作，直到事件迴圈連續多輪沒有進展。"""
        idle = 0
        while idle < self.settle_rounds:
            ran = self._clock.run_due()
            before = (len(self._received), len(self._unfinished_tasks()))
            self._loop.run_until_complete(asyncio.sleep(0))
            after = (len(self._received), len(self._unfinished_tasks()))
            if ran or before != after:
                idle = 0
            else:
                idle += 1

    def _settle(self, timeout_ms: float) -> None:
        """等待進行中的 async effect 完成，最多 `timeout_ms` 毫秒。"""
        deadline = self._loop.time() + timeout_ms / 1000
        self._drain()
        while True:
            tasks = self._unfinished_tasks()
            remaining = deadline - self._loop.time()
            if not tasks or remaining <= 0:
                break
            self._loop.run_until_complete(
                asyncio.wait(tasks, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            )
            self._drain()

    def _wait_for_action(self, expected: Any, timeout_ms: float) -> None:
        self._drain()
        deadline = self._loop.time() + timeout_ms / 1000
        while not self._received:
            tasks = self._unfinished_tasks()
            remaining = deadline - self._loop.time()
            if not tasks or remaining <= 0:
                hint = ""
                timers = self._clock.pending_count()
                if timers:
                    hint = f"\n  {timers} timer(s) are scheduled; did you forget advance_time()?"
                reason = "timed out after %sms" % timeout_ms if tasks else "no effect is running"
                raise StoreAssertionError(
                    f"Expected to receive {_describe(expected)}, but {reason}.{hint}",
                    expected=expected,
                    actual=None,
                )
            self._waiter = self._loop.create_future()
            try:
                self._loop.run_until_complete(
                    asyncio.wait(
                        [self._waiter, *tasks],
                        timeout=remaining,
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                )
            finally:
                if not self._waiter.done():
                    self._waiter.cancel()
                self._waiter = None
            self._drain()

    def _assert_state(self, assert_state: Any, action: Any) -> None:
        if assert_state is None:
            return
        if callable(assert_state):
            if assert_state(self._state) is False:
                raise StoreAssertionError(
                    f"State assertion failed after {_describe(action)}:\n"
                    f"  state: {_describe(self._state)}",
                    actual=self._state,
                )
            return
        if assert_state != self._state:
            raise StoreAssertionError(
                f"State mismatch after {_describe(action)}:\n"
                f"  expected: {_describe(assert_state)}\n"
                f"  actual:   {_describe(self._state)}",
                expected=assert_state,
                actual=self._state,
            )

    def _raise_effect_errors(self) -> None:
        if self._errors:
            error = self._errors.pop(0)
            self._errors.clear()
            raise error

    def _describe_pending(self) -> str:
        return "\n".join(f"  - {_describe(a)}" for a in self._received)

    def _check_alive(self) -> None:
        if self._destroyed:
            raise StoreAssertionError("TestStore has already been finished or destroyed")


def create_test_store(
    initial_state: S,
    reducer: Callable[..., Any],
    dependencies: Any = None,
    **options: Any,
) -> TestStore[S]:
    """創建一個 TestStore（便利函數）。"""
    return TestStore(initial_state, reducer, dependencies, **options)
