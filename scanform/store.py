"""
Keyed store capability used by the entity collections.

A store holds the records of one named collection. Each item carries a
``seq`` (monotonic insertion sequence, used for ordered enumeration and
cursors) and a ``version`` (bumped on every write, used for compare-and-swap
so read-modify-write cycles never overwrite a concurrent update).
"""

from dataclasses import dataclass
from itertools import count
from typing import Protocol
import asyncio
import copy

from scanform.errors import Conflict


@dataclass
class StoredItem:
    key: str
    value: dict
    version: int
    seq: int


class KeyedStore(Protocol):
    name: str

    async def get(self, key: str) -> StoredItem | None: ...

    async def insert(self, key: str, value: dict) -> StoredItem: ...

    async def swap(self, key: str, value: dict, expected_version: int) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def scan(self, after_seq: int | None, limit: int) -> list[StoredItem]: ...

    async def is_empty(self) -> bool: ...


class MemoryKeyedStore:
    """In-process store for tests and local demos. Not shared between processes."""

    def __init__(self, name: str):
        self.name = name
        self._items: dict[str, StoredItem] = {}
        self._seq = count(1)

    async def get(self, key: str) -> StoredItem | None:
        # Yield like a network round trip would, so callers see real interleaving.
        await asyncio.sleep(0)
        item = self._items.get(key)
        return copy.deepcopy(item) if item else None

    async def insert(self, key: str, value: dict) -> StoredItem:
        await asyncio.sleep(0)
        if key in self._items:
            raise Conflict(f"{self.name}: id '{key}' already exists")
        item = StoredItem(key=key, value=copy.deepcopy(value), version=1, seq=next(self._seq))
        self._items[key] = item
        return copy.deepcopy(item)

    async def swap(self, key: str, value: dict, expected_version: int) -> bool:
        await asyncio.sleep(0)
        item = self._items.get(key)
        if item is None or item.version != expected_version:
            return False
        item.value = copy.deepcopy(value)
        item.version += 1
        return True

    async def delete(self, key: str) -> bool:
        await asyncio.sleep(0)
        return self._items.pop(key, None) is not None

    async def scan(self, after_seq: int | None, limit: int) -> list[StoredItem]:
        await asyncio.sleep(0)
        floor = after_seq or 0
        ordered = sorted(
            (item for item in self._items.values() if item.seq > floor),
            key=lambda item: item.seq,
        )
        return [copy.deepcopy(item) for item in ordered[:limit]]

    async def is_empty(self) -> bool:
        await asyncio.sleep(0)
        return not self._items
