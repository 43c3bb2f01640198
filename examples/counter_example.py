"""
PyEffeX 範例：計數器，展示 reducer、Effect、selector 與中介軟體的使用
"""
import asyncio
import json
import time
from typing import Optional, Tuple

from pydantic import BaseModel

from pyeffex import (
    Effect,
    LoggerMiddleware,
    PerformanceMonitorMiddleware,
    create_action,
    create_reducer,
    create_selector,
    create_store,
    on,
    to_dict,
)


# ====== 1. 定義狀態模型 ======
class CounterState(BaseModel):
    count: int = 0
    loading: bool = False
    error: Optional[str] = None
    last_updated: Optional[float] = None
    history: Tuple[int, ...] = ()


# ====== 2. 定義 Actions ======
increment = create_action("increment")
decrement = create_action("decrement")
reset = create_action("reset", lambda value: value)
increment_by = create_action("incrementBy", lambda amount: amount)

load_count_request = create_action("loadCountRequest")
load_count_success = create_action("loadCountSuccess", lambda value: value)
load_count_failure = create_action("loadCountFailure", lambda error: error)
cancel_load = create_action("cancelLoad")


# ====== 3. 定義 Reducer ======
def with_count(state: CounterState, count: int) -> CounterState:
    return state.model_copy(update={
        "count": count,
        "last_updated": time.time(),
        "history": state.history + (count,),
    })


async def fetch_count(dispatch, api):
    """模擬 API 請求，成功後 dispatch load_count_success"""
    try:
        value = await api.load_count()
    except ConnectionError as err:
        dispatch(load_count_failure(str(err)))
        return
    dispatch(load_count_success(value))


def load_count_request_handler(state: CounterState, action, api):
    return (
        state.model_copy(update={"loading": True, "error": None}),
        Effect.cancellable("load-count", lambda dispatch: fetch_count(dispatch, api)),
    )


counter_reducer = create_reducer(
    CounterState(),
    on(increment, lambda state, action: with_count(state, state.count + 1)),
    on(decrement, lambda state, action: with_count(state, state.count - 1)),
    on(reset, lambda state, action: with_count(state, action.payload)),
    on(increment_by, lambda state, action: with_count(state, state.count + action.payload)),
    on(load_count_request, load_count_request_handler),
    on(load_count_success, lambda state, action: with_count(
        state.model_copy(update={"loading": False}), action.payload
    )),
    on(load_count_failure, lambda state, action: state.model_copy(
        update={"loading": False, "error": action.payload}
    )),
    on(cancel_load, lambda state, action: (
        state.model_copy(update={"loading": False}),
        Effect.cancel("load-count"),
    )),
)


# ====== 4. 定義 Selectors ======
get_count = lambda state: state.count
get_history = lambda state: state.history
get_counter_info = create_selector(
    get_count,
    get_history,
    result_fn=lambda count, history: {"count": count, "changes": len(history)},
)


# ====== 5. 依賴 ======
class FakeApi:
    async def load_count(self) -> int:
        await asyncio.sleep(1.0)
        return 42


async def main():
    store = create_store(
        reducer=counter_reducer,
        dependencies=FakeApi(),
        middlewares=[LoggerMiddleware, PerformanceMonitorMiddleware(threshold_ms=5)],
    )

    store.observe(get_count).subscribe(lambda count: print(f"計數變化: {count}"))
    store.observe(get_counter_info).subscribe(
        lambda info: print(f"計數器信息更新: {json.dumps(info, ensure_ascii=False)}")
    )

    print("\n==== 開始測試基本操作 ====")
    store.dispatch(increment())
    store.dispatch(increment_by(5))
    store.dispatch(decrement())
    store.dispatch(reset(10))

    print("\n==== 開始測試異步操作 ====")
    store.dispatch(load_count_request())
    await asyncio.sleep(0.2)
    # 第二次請求會取消第一次
    store.dispatch(load_count_request())
    await asyncio.sleep(1.5)

    print("\n==== 取消進行中的請求 ====")
    store.dispatch(load_count_request())
    store.dispatch(cancel_load())
    await asyncio.sleep(1.5)

    print("\n==== 最終狀態 ====")
    print(json.dumps(to_dict(store.state), ensure_ascii=False, indent=2))
    store.destroy()


if __name__ == "__main__":
    asyncio.run(main())
