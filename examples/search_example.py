"""
PyEffeX 範例：即時搜尋

- 輸入以 Effect.debounced 防抖，只有停止輸入 300ms 後才送出請求
- 請求以 Effect.cancellable 執行，新的請求會取消舊的
- 搜尋完成後以呈現狀態機顯示 toast，並在 2 秒後自動關閉
"""
import asyncio
from typing import Tuple

from pydantic import BaseModel, Field

from pyeffex import (
    Action,
    Effect,
    PresentationState,
    begin_dismissal,
    begin_presentation,
    combine_reducers,
    create_action,
    create_presentation_reducer,
    create_reducer,
    create_store,
    on,
    scope_action,
)


# ====== 1. 定義狀態模型 ======
class SearchState(BaseModel):
    query: str = ""
    results: Tuple[str, ...] = ()
    searching: bool = False


class AppState(BaseModel):
    search: SearchState = Field(default_factory=SearchState)
    toast: PresentationState = Field(default_factory=PresentationState)


# ====== 2. 定義 Actions ======
query_changed = create_action("queryChanged", lambda query: query)
search_response = create_action("searchResponse", lambda results: tuple(results))
show_toast = create_action("showToast", lambda message: message)


# ====== 3. 定義 Reducer ======
CATALOG = ("apple", "apricot", "banana", "blackberry", "blueberry", "cherry")


async def search_catalog(dispatch, query: str):
    await asyncio.sleep(0.1)
    dispatch(search_response(item for item in CATALOG if query in item))


def on_query_changed(state: SearchState, action):
    query = action.payload
    if not query:
        return state.model_copy(update={"query": "", "results": ()}), Effect.cancel("search")
    return (
        state.model_copy(update={"query": query, "searching": True}),
        Effect.debounced(
            "search", 300, lambda dispatch: search_catalog(dispatch, query)
        ),
    )


def on_search_response(state: SearchState, action):
    message = f"找到 {len(action.payload)} 筆結果"
    return (
        state.model_copy(update={"results": action.payload, "searching": False}),
        Effect.run(lambda dispatch: dispatch(show_toast(message))),
    )


search_reducer = create_reducer(
    SearchState(),
    on(query_changed, on_query_changed),
    on(search_response, on_search_response),
)

scoped_search = combine_reducers({"search": search_reducer})

toast_machine = create_presentation_reducer(present_duration=150, dismiss_duration=100)
toast_reducer = scope_action(
    lambda state: state.toast,
    lambda state, toast: state.model_copy(update={"toast": toast}),
    "toast",
    toast_machine,
)


def app_reducer(state: AppState, action, deps):
    if show_toast.match(action):
        state, present = toast_reducer(state, Action("toast", begin_presentation(action.payload)), deps)
        hide = Effect.after_delay(2000, lambda dispatch: dispatch(Action("toast", begin_dismissal())))
        return state, Effect.batch(present, hide)

    state, search_effect = scoped_search(state, action, deps)
    state, toast_effect = toast_reducer(state, action, deps)
    return state, Effect.batch(search_effect, toast_effect)


async def main():
    store = create_store(AppState(), app_reducer)
    store.subscribe_to_actions(lambda action, state: print(f"{action.type:<16} {state.toast.status}"))

    for query in ("b", "bl", "blu"):
        store.dispatch(query_changed(query))
        await asyncio.sleep(0.1)

    await asyncio.sleep(3)
    print("結果:", store.state.search.results)
    store.destroy()


if __name__ == "__main__":
    asyncio.run(main())
