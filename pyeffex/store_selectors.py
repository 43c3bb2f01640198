import time
from typing import Any, Callable, List, Optional, Tuple


def create_selector(
    *selectors: Callable[[Any], Any],
    result_fn: Optional[Callable[..., Any]] = None,
    deep: bool = False,
    ttl: Optional[float] = None,
    maxsize: int = 128,
) -> Callable[[Any], Any]:
    """
    創建一個複合選擇器，支援記憶化、深淺比較與TTL控制

    可搭配 `store.select(selector)` 或 `store.observe(selector)` 使用。

    Args:
        *selectors: 多個輸入選擇器，這些函數會從 state 中提取對應的值
        result_fn: 處理輸出結果的函數，將多個選擇器的輸出進行處理
        deep: 是否進行深度比較（預設為 False，使用 `is` 比較輸入）
        ttl: 快取有效時間（秒），若超過此時間則重新計算，預設為無限
        maxsize: 緩存的最大條目數，預設為128

    Returns:
        經過快取優化的 selector 函數
    """
    # 如果沒有 result_fn 且只有一個選擇器，直接返回該選擇器
    if not result_fn and len(selectors) == 1:
        return selectors[0]

    if not selectors:
        raise ValueError("create_selector requires at least one input selector")

    # 如果沒有提供 result_fn，預設為返回所有輸入值的函數
    if not result_fn:
        result_fn = lambda *args: args

    # (時間戳, 輸入, 結果)
    cache: List[Tuple[float, Tuple[Any, ...], Any]] = []
    stats = {"hits": 0, "misses": 0}

    def selector(state: Any) -> Any:
        nonlocal cache
        inputs = tuple(select(state) for select in selectors)
        now = time.monotonic()

        if ttl is not None:
            cache = [item for item in cache if now - item[0] <= ttl]

        for _, cached_inputs, cached_result in cache:
            if deep:
                matched = _safe_deep_equals(inputs, cached_inputs)
            else:
                matched = all(a is b for a, b in zip(inputs, cached_inputs))
            if matched:
                stats["hits"] += 1
                return cached_result

        # 緩存未命中，計算新結果
        stats["misses"] += 1
        result = result_fn(*inputs)
        while len(cache) >= maxsize:
            cache.pop(0)
        cache.append((now, inputs, result))
        return result

    def cache_info():
        return (stats["hits"], stats["misses"], maxsize, len(cache))

    def cache_clear():
        cache.clear()
        stats["hits"] = stats["misses"] = 0

    selector.cache_info = cache_info  # type: ignore
    selector.cache_clear = cache_clear  # type: ignore

    return selector


def _safe_deep_equals(a: Any, b: Any) -> bool:
    """安全的深度比較，出錯時返回False"""
    try:
        if a is b:
            return True
        if type(a) != type(b):
            return False
        if isinstance(a, (str, int, float, bool, type(None))):
            return a == b
        if isinstance(a, dict):
            if len(a) != len(b):
                return False
            for key in a:
                if key not in b or not _safe_deep_equals(a[key], b[key]):
                    return False
            return True
        if isinstance(a, (list, tuple)):
            if len(a) != len(b):
                return False
            return all(_safe_deep_equals(x, y) for x, y in zip(a, b))
        return a == b
    except Exception:
        return False
