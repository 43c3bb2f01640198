"""
PyEffeX: 單向資料流的狀態管理與副作用執行環境。

reducer 是純函數，回傳新狀態與描述副作用的 Effect 資料；
Store 透過 EffectsManager 解譯 Effect（取消、debounce、throttle、批次、訂閱），
並將結果以新的動作回送。TestStore 以虛擬時間確定性地驗證這些行為。
"""
import logging

from .actions import (
    Action,
    create_action,
    dismissal_completed,
    get_action_payload,
    get_action_type,
    presentation_completed,
)
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
    Transition,
)
from .effects_manager import EffectsManager
from .errors import (
    ConfigurationError,
    EffectError,
    ErrorHandler,
    PyEffexError,
    StoreAssertionError,
    StoreError,
    ValidationError,
    global_error_handler,
    handle_error,
)
from .immutable_utils import to_dict, to_immutable
from .middleware import (
    BaseMiddleware,
    DevToolsMiddleware,
    LoggerMiddleware,
    PerformanceMonitorMiddleware,
)
from .navigation import (
    Destination,
    DestinationState,
    PresentationAction,
    StackAction,
    create_destination,
    handle_stack_action,
    if_let_presentation,
)
from .presentation import (
    PresentationMachine,
    PresentationState,
    begin_dismissal,
    begin_presentation,
    create_presentation_reducer,
    dismiss_immediately,
    is_interactive,
    is_visible,
)
from .reducers import (
    IdentifiedItem,
    combine_reducers,
    create_reducer,
    element_action,
    for_each,
    for_each_element,
    if_let,
    on,
    scope,
    scope_action,
)
from .store import Store, StoreConfig, create_store
from .store_selectors import create_selector
from .testing import TestStore, VirtualClock, create_test_store

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    # actions
    "Action", "create_action", "get_action_type", "get_action_payload",
    "presentation_completed", "dismissal_completed",
    # effects
    "Effect", "NoneEffect", "Run", "FireAndForget", "Batch", "Cancellable",
    "Debounced", "Throttled", "AfterDelay", "Subscription", "Cancel", "Transition",
    "EffectsManager",
    # store
    "Store", "StoreConfig", "create_store", "create_selector",
    # composition
    "create_reducer", "on", "scope", "scope_action", "if_let", "combine_reducers",
    "for_each", "for_each_element", "element_action", "IdentifiedItem",
    # navigation
    "PresentationAction", "if_let_presentation", "create_destination", "Destination",
    "DestinationState", "StackAction", "handle_stack_action",
    # presentation
    "PresentationState", "PresentationMachine", "create_presentation_reducer",
    "begin_presentation", "begin_dismissal", "dismiss_immediately",
    "is_visible", "is_interactive",
    # middleware
    "BaseMiddleware", "LoggerMiddleware", "DevToolsMiddleware", "PerformanceMonitorMiddleware",
    # testing
    "TestStore", "VirtualClock", "create_test_store",
    # errors
    "PyEffexError", "EffectError", "StoreError", "ValidationError", "ConfigurationError",
    "StoreAssertionError", "ErrorHandler", "global_error_handler", "handle_error",
    # utils
    "to_immutable", "to_dict",
]
