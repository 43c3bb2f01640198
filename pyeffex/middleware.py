"""
基於 PyEffeX 的中介軟體定義模組。

中介軟體可以介入動作分發的流程，在 reducer 執行前、
動作處理完成後或出現錯誤時執行自定義邏輯，
實現日誌記錄、時間旅行調試與性能監控等功能。
"""

import contextlib
import datetime
import logging
import time
from typing import Any, Dict, Generator, List, Tuple

from .actions import get_action_type
from .immutable_utils import to_dict

logger = logging.getLogger(__name__)

ActionContext = Dict[str, Any]


# ———— Base Middleware ————
class BaseMiddleware:
    """
    基礎中介類，定義所有中介可能實現的鉤子。
    """

    def on_next(self, action: Any, prev_state: Any) -> None:
        """
        在 action 發送給 reducer 之前調用。

        Args:
            action: 正在 dispatch 的 Action
            prev_state: dispatch 之前的 store.state
        """
        pass

    def on_complete(self, next_state: Any, action: Any) -> None:
        """
        在 reducer 處理完 action 且 effect 已交給解譯器之後調用。

        Args:
            next_state: dispatch 之後的最新 store.state
            action: 剛剛 dispatch 的 Action
        """
        pass

    def on_error(self, error: Exception, action: Any) -> None:
        """
        如果 dispatch 過程中拋出異常，則調用此鉤子。

        Args:
            error: 拋出的異常
            action: 導致異常的 Action
        """
        pass

    def teardown(self) -> None:
        """
        當 Store 銷毀時調用，用於清理中間件持有的資源。
        """
        pass

    @contextlib.contextmanager
    def action_context(self, action: Any, prev_state: Any) -> Generator[ActionContext, None, None]:
        """
        以上下文管理器的形式包住一次 dispatch 的生命週期。

        Store 在 with 區塊內執行下一層 dispatch，並把 `next_state` 寫回 context；
        此方法負責呼叫 on_next、on_complete 與 on_error。

        Args:
            action: 要分發的 Action
            prev_state: 分發前的狀態

        Yields:
            Dict[str, Any]: 在上下文內外之間傳遞數據的字典
        """
        context: ActionContext = {
            'action': action,
            'prev_state': prev_state,
            'next_state': None,
            'result': None,
            'error': None
        }

        self.on_next(action, prev_state)

        try:
            yield context
        except Exception as err:
            context['error'] = err
            self.on_error(err, action)
            raise

        self.on_complete(context['next_state'], action)


# ———— LoggerMiddleware ————
class LoggerMiddleware(BaseMiddleware):
    """
    日誌中介，記錄每個 action 發送前和發送後的 state。

    使用場景:
    - 偵錯時需要觀察每次 state 的變化。
    - 確保 action 的執行順序正確。
    """

    def __init__(self, level: int = logging.INFO, log_state: bool = True):
        self.level = level
        self.log_state = log_state
        self._logger = logging.getLogger(f"{__name__}.LoggerMiddleware")

    def on_next(self, action: Any, prev_state: Any) -> None:
        self._logger.log(self.level, "dispatching %s", get_action_type(action))
        if self.log_state:
            self._logger.debug("state before %s: %s", get_action_type(action), to_dict(prev_state))

    def on_complete(self, next_state: Any, action: Any) -> None:
        if self.log_state:
            self._logger.log(self.level, "state after %s: %s", get_action_type(action), to_dict(next_state))

    def on_error(self, error: Exception, action: Any) -> None:
        self._logger.error("error in %s: %s", get_action_type(action), error)


# ———— DevToolsMiddleware ————
class DevToolsMiddleware(BaseMiddleware):
    """
    記錄每次 action 與 state 快照，支援時間旅行調試。

    使用場景:
    - 當需要回溯 state 的變化歷史以進行調試時。
    """

    def __init__(self, max_entries: int = 1000) -> None:
        self.max_entries = max_entries
        self.history: List[Tuple[Any, Any, Any, datetime.datetime]] = []

    @contextlib.contextmanager
    def action_context(self, action: Any, prev_state: Any) -> Generator[ActionContext, None, None]:
        with super().action_context(action, prev_state) as context:
            yield context
        self.history.append((prev_state, action, context['next_state'], datetime.datetime.now()))
        if len(self.history) > self.max_entries:
            del self.history[0]

    def get_history(self) -> List[Tuple[Any, Any, Any]]:
        """
        返回整個歷史快照列表。

        Returns:
            歷史快照列表，每項為 (prev_state, action, next_state)
        """
        return [(prev, action, nxt) for prev, action, nxt, _ in self.history]

    def state_at(self, index: int) -> Any:
        """回傳第 `index` 個動作處理後的狀態。"""
        return self.history[index][2]

    def teardown(self) -> None:
        self.history.clear()


# ———— PerformanceMonitorMiddleware ————
class PerformanceMonitorMiddleware(BaseMiddleware):
    """
    性能監控中間件，記錄 reducer 與 effect 交付所花的時間。
    """

    def __init__(self, threshold_ms: float = 100, log_all: bool = False):
        """
        初始化 PerformanceMonitorMiddleware。

        Args:
            threshold_ms: 性能警告閾值，單位為毫秒，預設為 100 毫秒
            log_all: 是否記錄所有 action 的性能指標，預設為 False (只記錄超過閾值的)
        """
        self.threshold_ms = threshold_ms
        self.log_all = log_all
        self.metrics: Dict[str, List[float]] = {}

    @contextlib.contextmanager
    def action_context(self, action: Any, prev_state: Any) -> Generator[ActionContext, None, None]:
        start_time = time.perf_counter()
        action_type = get_action_type(action) or repr(action)
        try:
            with super().action_context(action, prev_state) as context:
                yield context
        except Exception as err:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            logger.error("action %s failed after %.2fms: %s", action_type, elapsed_ms, err)
            raise

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.setdefault(action_type, []).append(elapsed_ms)
        if elapsed_ms > self.threshold_ms:
            logger.warning(
                "action %s took %.2fms, exceeding threshold (%sms)",
                action_type, elapsed_ms, self.threshold_ms,
            )
        elif self.log_all:
            logger.info("action %s took %.2fms", action_type, elapsed_ms)

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        """
        獲取性能指標統計信息。
        """
        result = {}
        for action_type, times in self.metrics.items():
            if not times:
                continue
            result[action_type] = {
                'avg': sum(times) / len(times),
                'max': max(times),
                'min': min(times),
                'count': len(times)
            }
        return result

    def teardown(self) -> None:
        self.metrics.clear()
