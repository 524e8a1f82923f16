"""
Generic entity collection over a keyed store.

``EntityCollection`` is instantiated once per record type (users, chats,
scans); nothing subclasses it. Records are pydantic models; the store only
ever sees their JSON-compatible dumps.
"""

from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterable, TypeVar
import asyncio
import base64
import binascii
import logging

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from scanform.errors import Conflict, NotFound, StorageError, ValidationError
from scanform.models import Chat, ChatMessage, ScanRecord, ScanSummary, User, now_ms
from scanform.settings import DEFAULT_LIST_LIMIT
from scanform.store import KeyedStore, StoredItem

logger = logging.getLogger("scanform.entities")

T = TypeVar("T", bound=BaseModel)

MAX_SWAP_ATTEMPTS = 8
_CURSOR_PREFIX = "seq:"


def encode_cursor(seq: int) -> str:
    raw = f"{_CURSOR_PREFIX}{seq}".encode("ascii")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> int:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("ascii")
        if not raw.startswith(_CURSOR_PREFIX):
            raise ValueError(raw)
        seq = int(raw[len(_CURSOR_PREFIX):])
    except (ValueError, UnicodeError, binascii.Error):
        raise ValidationError("Invalid cursor")
    if seq < 0:
        raise ValidationError("Invalid cursor")
    return seq


@dataclass
class Page(Generic[T]):
    items: list[T]
    next_cursor: str | None = None


def _default_id(record) -> str:
    return record.id


class EntityCollection(Generic[T]):
    def __init__(
        self,
        store: KeyedStore,
        model: type[T],
        seed: Callable[[], Iterable[T]] | None = None,
        id_of: Callable[[T], str] = _default_id,
    ):
        self.store = store
        self.model = model
        self.name = store.name
        self._seed = seed
        self._id_of = id_of
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: Counter[str] = Counter()

    def _load(self, item: StoredItem) -> T:
        return self.model.model_validate(item.value)

    def _dump(self, record: T) -> dict:
        return record.model_dump(mode="json", exclude_none=True)

    @asynccontextmanager
    async def _serialized(self, record_id: str):
        lock = self._locks.setdefault(record_id, asyncio.Lock())
        self._waiters[record_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[record_id] -= 1
            if self._waiters[record_id] <= 0:
                del self._waiters[record_id]
                self._locks.pop(record_id, None)

    async def create(self, record: T) -> T:
        await self.store.insert(self._id_of(record), self._dump(record))
        return record

    async def get(self, record_id: str) -> T | None:
        item = await self.store.get(record_id)
        return self._load(item) if item else None

    async def exists(self, record_id: str) -> bool:
        return await self.store.get(record_id) is not None

    async def mutate(self, record_id: str, transform: Callable[[T], T]) -> T:
        """
        Apply ``transform`` to the current record and persist the result.

        Writers on the same id queue on a per-id lock; the store's version
        check catches writers in other processes, in which case the transform
        is re-run on the fresh value.
        """
        async with self._serialized(record_id):
            for _ in range(MAX_SWAP_ATTEMPTS):
                item = await self.store.get(record_id)
                if item is None:
                    raise NotFound(f"{self.name}: '{record_id}' not found")
                updated = transform(self._load(item))
                try:
                    value = self._dump(self.model.model_validate(self._dump(updated)))
                except ModelValidationError as exc:
                    raise ValidationError(f"{self.name}: invalid update: {exc}") from exc
                if value.get("id", record_id) != record_id:
                    raise ValidationError(f"{self.name}: record id cannot change")
                if await self.store.swap(record_id, value, item.version):
                    return self.model.model_validate(value)
                logger.debug("Version conflict on %s/%s, retrying", self.name, record_id)
        raise StorageError(f"{self.name}: too many concurrent writes to '{record_id}'")

    async def patch(self, record_id: str, fields: dict) -> T:
        def merge(current: T) -> T:
            return self.model.model_validate({**current.model_dump(), **fields})

        try:
            return await self.mutate(record_id, merge)
        except ModelValidationError as exc:
            raise ValidationError(f"{self.name}: invalid patch: {exc}") from exc

    async def delete(self, record_id: str) -> bool:
        return await self.store.delete(record_id)

    async def delete_many(self, record_ids: Iterable[str]) -> dict[str, bool]:
        results: dict[str, bool] = {}
        for record_id in record_ids:
            if record_id in results:
                continue
            results[record_id] = await self.delete(record_id)
        return results

    async def list(self, cursor: str | None = None, limit: int = DEFAULT_LIST_LIMIT) -> Page[T]:
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        after_seq = decode_cursor(cursor) if cursor else None
        # One extra item tells us whether another page exists.
        items = await self.store.scan(after_seq, limit + 1)
        page = items[:limit]
        next_cursor = encode_cursor(page[-1].seq) if len(items) > limit else None
        return Page(items=[self._load(item) for item in page], next_cursor=next_cursor)

    async def ensure_seed(self) -> int:
        if self._seed is None or not await self.store.is_empty():
            return 0
        created = 0
        for record in self._seed():
            try:
                await self.create(record)
                created += 1
            except Conflict:
                # Another request seeded this id first.
                continue
        if created:
            logger.info("Seeded %d %s records", created, self.name)
        return created


def seed_users() -> list[User]:
    return [User(id="u1", name="User A"), User(id="u2", name="User B")]


def seed_chats() -> list[Chat]:
    return [
        Chat(
            id="c1",
            title="General",
            messages=[ChatMessage(id="m1", chatId="c1", userId="u1", text="Hello")],
        )
    ]


def seed_scans() -> list[ScanRecord]:
    return [
        ScanRecord(
            id="s1",
            filename="demo-report.pdf",
            size=123456,
            mime="application/pdf",
            status="completed",
            summary=ScanSummary(verdict="clean", score=98),
            ts=now_ms() - 86_400_000,
        )
    ]


@dataclass
class Collections:
    users: EntityCollection[User]
    chats: EntityCollection[Chat]
    scans: EntityCollection[ScanRecord]
    stores: list[KeyedStore] = field(default_factory=list)


def build_collections(make_store: Callable[[str], KeyedStore]) -> Collections:
    users_store = make_store("users")
    chats_store = make_store("chats")
    scans_store = make_store("scans")
    return Collections(
        users=EntityCollection(users_store, User, seed=seed_users),
        chats=EntityCollection(chats_store, Chat, seed=seed_chats),
        scans=EntityCollection(scans_store, ScanRecord, seed=seed_scans),
        stores=[users_store, chats_store, scans_store],
    )
