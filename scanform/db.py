from contextlib import contextmanager
from functools import lru_cache
import logging
import os

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import ConfigurationError, DuplicateKeyError, PyMongoError

from scanform.errors import Conflict, StorageError
from scanform.store import StoredItem

logger = logging.getLogger("scanform.store")

COUNTERS_COLLECTION = "counters"


@lru_cache
def _mongo_uri() -> str:
    return os.getenv("MONGODB_URI", "mongodb://localhost:27017/scanform")


@lru_cache
def get_mongo_client() -> AsyncIOMotorClient:
    # Singleton – Motor manages its own connection pool internally.
    return AsyncIOMotorClient(_mongo_uri())


def get_db():
    client = get_mongo_client()
    try:
        # Preferred: database name in URI path (e.g. ...mongodb.net/scanform)
        return client.get_default_database()
    except ConfigurationError:
        # Fallback for URIs without db path.
        return client.get_database(os.getenv("MONGO_DB", "scanform"))


@contextmanager
def _storage_errors(operation: str, name: str):
    try:
        yield
    except PyMongoError as exc:
        logger.exception("MongoDB %s failed on collection %s", operation, name)
        raise StorageError("Storage unavailable") from exc


def _to_item(doc: dict) -> StoredItem:
    return StoredItem(
        key=doc["_id"],
        value=doc.get("value") or {},
        version=int(doc.get("version", 1)),
        seq=int(doc.get("seq", 0)),
    )


class MongoKeyedStore:
    """
    One MongoDB collection per entity collection.

    Documents look like ``{_id: key, seq, version, value}``. ``seq`` comes
    from an atomic counter in the ``counters`` collection.
    """

    def __init__(self, db, name: str):
        self.name = name
        self._collection = db[name]
        self._counters = db[COUNTERS_COLLECTION]

    async def _next_seq(self) -> int:
        counter = await self._counters.find_one_and_update(
            {"_id": self.name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(counter["seq"])

    async def get(self, key: str) -> StoredItem | None:
        with _storage_errors("get", self.name):
            doc = await self._collection.find_one({"_id": key})
        return _to_item(doc) if doc else None

    async def insert(self, key: str, value: dict) -> StoredItem:
        with _storage_errors("insert", self.name):
            seq = await self._next_seq()
            doc = {"_id": key, "seq": seq, "version": 1, "value": value}
            try:
                await self._collection.insert_one(doc)
            except DuplicateKeyError as exc:
                raise Conflict(f"{self.name}: id '{key}' already exists") from exc
        return _to_item(doc)

    async def swap(self, key: str, value: dict, expected_version: int) -> bool:
        with _storage_errors("swap", self.name):
            result = await self._collection.update_one(
                {"_id": key, "version": expected_version},
                {"$set": {"value": value}, "$inc": {"version": 1}},
            )
        return result.matched_count == 1

    async def delete(self, key: str) -> bool:
        with _storage_errors("delete", self.name):
            result = await self._collection.delete_one({"_id": key})
        return result.deleted_count == 1

    async def scan(self, after_seq: int | None, limit: int) -> list[StoredItem]:
        query = {} if after_seq is None else {"seq": {"$gt": after_seq}}
        with _storage_errors("scan", self.name):
            cursor = self._collection.find(query).sort("seq", ASCENDING).limit(limit)
            docs = [doc async for doc in cursor]
        return [_to_item(doc) for doc in docs]

    async def is_empty(self) -> bool:
        with _storage_errors("is_empty", self.name):
            doc = await self._collection.find_one({}, {"_id": 1})
        return doc is None

    async def ensure_indexes(self) -> None:
        await self._collection.create_index("seq", unique=True, name=f"{self.name}_seq")
