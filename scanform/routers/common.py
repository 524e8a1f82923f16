from typing import Any, Iterable

from fastapi import Request
from pydantic import BaseModel

from scanform.entities import Collections
from scanform.lifecycle import ScanLifecycle
from scanform.settings import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT


def ok(data: Any) -> dict:
    return {"success": True, "data": data}


def dump(record: BaseModel) -> dict:
    return record.model_dump(mode="json", exclude_none=True)


def page_payload(items: Iterable[BaseModel], next_cursor: str | None) -> dict:
    payload: dict[str, Any] = {"items": [dump(item) for item in items]}
    if next_cursor:
        payload["nextCursor"] = next_cursor
    return payload


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIST_LIMIT
    return max(1, min(limit, MAX_LIST_LIMIT))


def get_collections(request: Request) -> Collections:
    return request.app.state.collections


def get_lifecycle(request: Request) -> ScanLifecycle:
    return request.app.state.lifecycle
