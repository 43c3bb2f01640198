"""
PyEffeX 錯誤處理模組。

提供統一的異常階層以及集中式的錯誤處理器，
用於記錄 effect 執行失敗、設定錯誤與測試斷言失敗。
"""
import logging
import traceback
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class PyEffexError(Exception):
    """所有 PyEffeX 異常的基礎類。"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.traceback = traceback.format_exc()

    def to_dict(self) -> Dict[str, Any]:
        """
        將錯誤轉為可序列化的字典。

        Returns:
            包含錯誤類型、訊息與細節的字典。
        """
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class EffectError(PyEffexError):
    """Effect 執行時拋出的錯誤，保留原始異常於 `cause`。"""

    def __init__(
        self,
        message: str,
        effect_kind: str,
        effect_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        details = {"effect_kind": effect_kind, "effect_id": effect_id, **kwargs}
        if cause is not None:
            details["cause"] = repr(cause)
        super().__init__(message, details)
        self.effect_kind = effect_kind
        self.effect_id = effect_id
        self.cause = cause


class StoreError(PyEffexError):
    """與 Store 運作相關的錯誤。"""

    def __init__(self, message: str, operation: str, **kwargs: Any) -> None:
        super().__init__(message, {"operation": operation, **kwargs})
        self.operation = operation


class ValidationError(PyEffexError, ValueError):
    """參數驗證錯誤，例如負數的延遲時間。"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, {"field": field, "value": value, **kwargs})
        self.field = field
        self.value = value


class ConfigurationError(PyEffexError):
    """Store 設定錯誤。"""

    def __init__(
        self,
        message: str,
        component: str,
        config_key: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message, {"component": component, "config_key": config_key, **kwargs}
        )
        self.component = component
        self.config_key = config_key


class StoreAssertionError(PyEffexError, AssertionError):
    """TestStore 斷言失敗。"""

    def __init__(self, message: str, expected: Any = None, actual: Any = None) -> None:
        super().__init__(message, {"expected": expected, "actual": actual})
        self.expected = expected
        self.actual = actual

    def __str__(self) -> str:
        return self.message


class ErrorHandler:
    """集中式錯誤處理器，用於捕獲、日誌記錄和錯誤報告。"""

    def __init__(
        self,
        log_to_console: bool = True,
        log_to_file: bool = False,
        log_file: Optional[str] = None,
    ) -> None:
        """
        初始化錯誤處理器。

        Args:
            log_to_console: 是否透過 logging 輸出錯誤
            log_to_file: 是否額外寫入檔案
            log_file: 日誌檔案路徑，預設為 pyeffex_errors.log
        """
        self.log_to_console = log_to_console
        self.log_to_file = log_to_file
        self.log_file = log_file or "pyeffex_errors.log"
        self.handlers: List[Callable[[PyEffexError], None]] = []
        self._file_logger: Optional[logging.Logger] = None

        if log_to_file:
            self._file_logger = logging.getLogger(f"{__name__}.file")
            file_handler = logging.FileHandler(self.log_file)
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s %(levelname)s %(message)s")
            )
            self._file_logger.addHandler(file_handler)
            self._file_logger.propagate = False

    def register_handler(self, handler: Callable[[PyEffexError], None]) -> None:
        """
        註冊自定義錯誤處理函數。

        Args:
            handler: 接收 PyEffexError 的函數
        """
        self.handlers.append(handler)

    def unregister_handler(self, handler: Callable[[PyEffexError], None]) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)

    def handle(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        """
        處理錯誤：非 PyEffexError 會先被包裝，再記錄並交給已註冊的處理函數。

        Args:
            error: 要處理的異常
            context: 附加的上下文資訊
        """
        if not isinstance(error, PyEffexError):
            error = PyEffexError(str(error), {"original_type": type(error).__name__})
        if context:
            error.details.update(context)

        if self.log_to_console:
            logger.error("%s: %s", error.__class__.__name__, error)
        if self._file_logger is not None:
            self._file_logger.error("%s", error.to_dict())

        for handler in list(self.handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("error handler %r failed", handler)


global_error_handler = ErrorHandler()


def handle_error(error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
    """使用全局錯誤處理器處理錯誤。"""
    global_error_handler.handle(error, context)
