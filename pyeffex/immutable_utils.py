# pyeffex/immutable_utils.py
from collections.abc import Mapping
from typing import Any

from immutables import Map
from pydantic import BaseModel


def to_immutable(obj: Any) -> Any:
    """將 dict / list / set（包括 Pydantic 模型）遞迴轉換為不可變形式"""
    if isinstance(obj, BaseModel):
        return Map({k: to_immutable(v) for k, v in obj.model_dump().items()})
    elif isinstance(obj, Map):
        return obj
    elif isinstance(obj, dict):
        return Map({k: to_immutable(v) for k, v in obj.items()})
    elif isinstance(obj, list):
        return tuple(to_immutable(i) for i in obj)
    elif isinstance(obj, set):
        return frozenset(to_immutable(i) for i in obj)
    return obj


def to_dict(obj: Any) -> Any:
    """將 Map、Pydantic 模型及其巢狀結構轉換為普通字典，供日誌與斷言訊息使用"""
    if isinstance(obj, BaseModel):
        return {k: to_dict(v) for k, v in obj.model_dump().items()}
    elif isinstance(obj, (Map, Mapping)):
        return {k: to_dict(v) for k, v in obj.items()}
    elif isinstance(obj, tuple) and not hasattr(obj, "_fields"):
        return [to_dict(i) for i in obj]
    elif isinstance(obj, frozenset):
        return {to_dict(i) for i in obj}
    return obj
