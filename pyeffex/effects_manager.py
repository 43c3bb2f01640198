"""
Effect 解譯器。

EffectsManager 接收 reducer 回傳的 Effect 資料並實際執行：
透過 reactivex 排程器安排計時器，將 async executor 包裝為 asyncio task，
並以單一註冊表（id -> 註冊項）管理 cancellable / debounced / throttled /
subscription 的取消語意。
"""
import asyncio
import inspect
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from reactivex.abc import SchedulerBase
from reactivex.disposable import CompositeDisposable, Disposable, SingleAssignmentDisposable
from reactivex.scheduler.eventloop import AsyncIOScheduler

from .effects import (
    AfterDelay,
    Batch,
    Cancel,
    Cancellable,
    Debounced,
    Effect,
    FireAndForget,
    NoneEffect,
    Run,
    Subscription,
    Throttled,
)
from .errors import EffectError, StoreError, global_error_handler
from .types import Dispatch

logger = logging.getLogger(__name__)


class _Registration:
    """單一 id 的註冊項，持有該 id 下所有可取消的資源。"""

    __slots__ = ("id", "kind", "disposable", "cancelled", "last_run", "pending", "trailing", "running")

    def __init__(self, id: str, kind: str):
        self.id = id
        self.kind = kind
        self.disposable = CompositeDisposable()
        self.cancelled = False
        # throttle 專用：視窗起點、待執行的尾端呼叫、視窗結束計時器與執行中的數量
        self.last_run = None
        self.pending: Optional[Throttled] = None
        self.trailing = None
        self.running = 0

    def dispose(self) -> None:
        # 先標記為取消，清理函數中的 dispatch 會被丟棄
        self.cancelled = True
        self.disposable.dispose()


class EffectsManager:
    """
    執行 Effect 的解譯器，每個 Store / TestStore 各自擁有一個。

    Args:
        dispatch: effect 用來回送 action 的函數
        scheduler: reactivex 排程器；預設為綁定事件迴圈的 AsyncIOScheduler
        loop: 執行 async executor 的事件迴圈；預設為目前執行中的迴圈
        on_error: 接收 EffectError 的回呼；預設交給 global_error_handler
    """

    def __init__(
        self,
        dispatch: Dispatch,
        scheduler: Optional[SchedulerBase] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        on_error: Optional[Callable[[EffectError], None]] = None,
    ):
        self._dispatch = dispatch
        self._scheduler = scheduler
        self._loop = loop
        self._on_error = on_error or global_error_handler.handle
        self._registry: Dict[str, _Registration] = {}
        # 非 keyed 的工作（run、after_delay、已觸發的 debounce）
        self._unkeyed = CompositeDisposable()
        self._disposed = False

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError as err:
                raise StoreError(
                    "effects require a running asyncio event loop; "
                    "create the store inside a coroutine or pass loop=",
                    operation="run_effect",
                ) from err
        return self._loop

    @property
    def scheduler(self) -> SchedulerBase:
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(self.loop)
        return self._scheduler

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def active_ids(self) -> List[str]:
        """目前仍在註冊表中的 effect id。"""
        return list(self._registry)

    def run(self, effect: Effect) -> None:
        """
        執行一個 Effect。

        Args:
            effect: reducer 回傳的 Effect
        """
        if self._disposed:
            logger.debug("ignoring %s effect after destroy", effect.kind)
            return

        if isinstance(effect, NoneEffect):
            return
        elif isinstance(effect, Batch):
            # 依序啟動，不等待彼此完成
            for member in effect.effects:
                self.run(member)
        elif isinstance(effect, (Run, FireAndForget)):
            self._run_unkeyed(effect)
        elif isinstance(effect, Cancellable):
            self._run_cancellable(effect)
        elif isinstance(effect, Debounced):
            self._run_debounced(effect)
        elif isinstance(effect, Throttled):
            self._run_throttled(effect)
        elif isinstance(effect, AfterDelay):
            self._run_after_delay(effect)
        elif isinstance(effect, Subscription):
            self._run_subscription(effect)
        elif isinstance(effect, Cancel):
            self.cancel(effect.id)
        else:
            raise TypeError(f"Unknown effect: {effect!r}")

    def cancel(self, id: str) -> None:
        """取消並移除 `id` 的註冊項；不存在時不做任何事。"""
        registration = self._registry.pop(id, None)
        if registration is not None:
            logger.debug("cancelling %s effect %r", registration.kind, id)
            registration.dispose()

    def destroy(self) -> None:
        """取消所有註冊項與尚未完成的工作；可重複呼叫。"""
        if self._disposed:
            return
        self._disposed = True
        registrations = list(self._registry.values())
        self._registry.clear()
        for registration in registrations:
            registration.dispose()
        self._unkeyed.dispose()

    # ———— 各種 Effect 的執行 ————

    def _run_unkeyed(self, effect) -> None:
        handle = CompositeDisposable()
        self._unkeyed.add(handle)
        if isinstance(effect, FireAndForget):
            call = effect.execute
        else:
            dispatch = self._guard(None)
            call = lambda: effect.execute(dispatch)
        self._start(effect, call, handle, on_done=lambda: self._unkeyed.remove(handle))

    def _run_cancellable(self, effect: Cancellable) -> None:
        registration = self._register(effect.id, effect.kind)
        dispatch = self._guard(registration)

        def done() -> None:
            # 只移除仍指向這次執行的註冊項
            if self._registry.get(effect.id) is registration:
                del self._registry[effect.id]

        self._start(effect, lambda: effect.execute(dispatch), registration.disposable, on_done=done)

    def _run_debounced(self, effect: Debounced) -> None:
        registration = self._register(effect.id, effect.kind)
        dispatch = self._guard(registration)

        def fire(scheduler, state) -> None:
            if self._registry.get(effect.id) is registration:
                del self._registry[effect.id]
            # 已觸發的執行不再受同 id 的後續 debounce 影響，只隨 destroy 取消
            self._unkeyed.add(registration.disposable)
            self._invoke(
                effect,
                lambda: effect.execute(dispatch),
                registration.disposable,
                on_done=lambda: self._unkeyed.remove(registration.disposable),
            )

        registration.disposable.add(
            self.scheduler.schedule_relative(timedelta(milliseconds=effect.ms), fire)
        )

    def _run_throttled(self, effect: Throttled) -> None:
        window = timedelta(milliseconds=effect.ms)
        registration = self._registry.get(effect.id)
        if registration is None or registration.kind != effect.kind:
            registration = self._register(effect.id, effect.kind)

        now = self.scheduler.now
        if registration.last_run is None or now - registration.last_run >= window:
            # 前緣執行，開始新的視窗；尚未觸發的尾端呼叫被這次取代
            registration.pending = None
            self._execute_throttled(effect, registration, deferred=True)
            return

        # 視窗內的呼叫：保留最新的一次，於視窗結束時執行
        registration.pending = effect

    def _execute_throttled(self, effect: Throttled, registration: _Registration, deferred: bool) -> None:
        registration.last_run = self.scheduler.now
        self._schedule_window_end(effect, registration)
        registration.running += 1
        dispatch = self._guard(registration)

        def done() -> None:
            registration.running -= 1
            self._release_throttled(registration)

        call = lambda: effect.execute(dispatch)
        if deferred:
            self._start(effect, call, registration.disposable, on_done=done)
        else:
            self._invoke(effect, call, registration.disposable, on_done=done)

    def _schedule_window_end(self, effect: Throttled, registration: _Registration) -> None:
        if registration.trailing is not None:
            registration.disposable.remove(registration.trailing)
        handle = SingleAssignmentDisposable()

        def close(scheduler, state) -> None:
            registration.disposable.remove(handle)
            registration.trailing = None
            pending, registration.pending = registration.pending, None
            if pending is None:
                self._release_throttled(registration)
                return
            self._execute_throttled(pending, registration, deferred=False)

        registration.trailing = handle
        registration.disposable.add(handle)
        handle.disposable = self.scheduler.schedule_relative(timedelta(milliseconds=effect.ms), close)

    def _release_throttled(self, registration: _Registration) -> None:
        # 視窗已結束且沒有執行中的工作時，移除註冊項
        if registration.trailing is not None or registration.running:
            return
        if self._registry.get(registration.id) is registration:
            del self._registry[registration.id]

    def _run_after_delay(self, effect: AfterDelay) -> None:
        handle = CompositeDisposable()
        self._unkeyed.add(handle)
        dispatch = self._guard(None)

        def fire(scheduler, state) -> None:
            self._invoke(
                effect,
                lambda: effect.execute(dispatch),
                handle,
                on_done=lambda: self._unkeyed.remove(handle),
            )

        handle.add(self.scheduler.schedule_relative(timedelta(milliseconds=effect.ms), fire))

    def _run_subscription(self, effect: Subscription) -> None:
        registration = self._register(effect.id, effect.kind)
        dispatch = self._guard(registration)

        def setup(scheduler, state) -> None:
            try:
                result = effect.setup(dispatch)
            except Exception as err:
                self._report(effect, err)
                return
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result, loop=self.loop)
                cancel_task = Disposable(task.cancel)
                registration.disposable.add(cancel_task)

                def setup_done(t: asyncio.Future) -> None:
                    registration.disposable.remove(cancel_task)
                    if t.cancelled():
                        return
                    if t.exception() is not None:
                        self._report(effect, t.exception())
                        return
                    self._store_cleanup(effect, registration, t.result())

                task.add_done_callback(setup_done)
            else:
                self._store_cleanup(effect, registration, result)

        registration.disposable.add(self.scheduler.schedule(setup))

    def _store_cleanup(self, effect: Subscription, registration: _Registration, cleanup: Any) -> None:
        if cleanup is None:
            return
        if not callable(cleanup):
            self._report(effect, TypeError(f"subscription setup must return a callable, got {cleanup!r}"))
            return
        # Disposable 保證清理函數最多執行一次；已取消的註冊項會立即清理
        registration.disposable.add(Disposable(lambda: self._run_cleanup(effect, cleanup)))

    def _run_cleanup(self, effect: Subscription, cleanup: Callable[[], Any]) -> None:
        logger.debug("running cleanup for subscription %r", effect.id)
        try:
            result = cleanup()
        except Exception as err:
            self._report(effect, err)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result, loop=self.loop)
            task.add_done_callback(lambda t: self._report_task(effect, t))

    # ———— 共用工具 ————

    def _register(self, id: str, kind: str) -> _Registration:
        previous = self._registry.pop(id, None)
        if previous is not None:
            logger.debug("%s effect %r supersedes %s registration", kind, id, previous.kind)
            previous.dispose()
        registration = _Registration(id, kind)
        self._registry[id] = registration
        return registration

    def _guard(self, registration: Optional[_Registration]) -> Dispatch:
        """包裝 dispatch，丟棄已取消的 effect 或已銷毀的管理器送出的 action。"""
        def dispatch(action: Any) -> None:
            if self._disposed or (registration is not None and registration.cancelled):
                logger.debug("dropping stale dispatch of %r", action)
                return
            self._dispatch(action)
        return dispatch

    def _start(
        self,
        effect: Effect,
        call: Callable[[], Any],
        owner: CompositeDisposable,
        on_done: Optional[Callable[[], Any]] = None,
    ) -> None:
        """透過排程器非同步地開始執行，不在 dispatch 中同步執行。"""
        handle = SingleAssignmentDisposable()

        def action(scheduler, state) -> None:
            owner.remove(handle)
            self._invoke(effect, call, owner, on_done)

        owner.add(handle)
        handle.disposable = self.scheduler.schedule(action)

    def _invoke(
        self,
        effect: Effect,
        call: Callable[[], Any],
        owner: CompositeDisposable,
        on_done: Optional[Callable[[], Any]] = None,
    ) -> None:
        try:
            result = call()
        except Exception as err:
            self._report(effect, err)
            if on_done:
                on_done()
            return

        if not inspect.isawaitable(result):
            if on_done:
                on_done()
            return

        task = asyncio.ensure_future(result, loop=self.loop)
        cancel_task = Disposable(task.cancel)
        # owner 已被 dispose 時，add 會立即取消 task
        owner.add(cancel_task)

        def task_done(t: asyncio.Future) -> None:
            owner.remove(cancel_task)
            self._report_task(effect, t)
            if on_done:
                on_done()

        task.add_done_callback(task_done)

    def _report_task(self, effect: Effect, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        if task.exception() is not None:
            self._report(effect, task.exception())

    def _report(self, effect: Effect, err: BaseException) -> None:
        effect_id = getattr(effect, "id", None)
        if isinstance(effect, FireAndForget):
            logger.debug("fire-and-forget effect failed: %r", err)
            return
        error = EffectError(
            f"{effect.kind} effect failed: {err}",
            effect_kind=effect.kind,
            effect_id=effect_id,
            cause=err,
        )
        self._on_error(error)
