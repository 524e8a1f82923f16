"""
Integrationstester för ScanForm mot riktig MongoDB-instans.

Kräver att MongoDB körs lokalt på mongodb://localhost:27017
(eller via MONGODB_TEST_URI-miljövariabeln).

Kör med:
    pytest -m integration
    pytest -m integration -v --tb=short

Hoppas över automatiskt om MongoDB inte är tillgänglig.
"""

import asyncio
import os

import pytest
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from scanform.db import MongoKeyedStore
from scanform.entities import EntityCollection, build_collections
from scanform.errors import Conflict
from scanform.lifecycle import ScanLifecycle
from scanform.models import ScanRecord

# ─── Konfiguration ────────────────────────────────────────────────────────────

MONGODB_TEST_URI = os.getenv("MONGODB_TEST_URI", "mongodb://localhost:27017")
TEST_DB_NAME = "scanform_test"

# Pingas bara en gång per session
_mongo_state: dict[str, bool] = {}

# ─── Marker ───────────────────────────────────────────────────────────────────

pytestmark = pytest.mark.integration


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
async def test_db():
    """
    Ger en ren test-databas för varje test.
    Tömmer databasen före och efter testet.
    """
    if _mongo_state.get("available") is False:
        pytest.skip("MongoDB är inte tillgänglig")
    client = AsyncIOMotorClient(MONGODB_TEST_URI, serverSelectionTimeoutMS=2000)
    try:
        await client.admin.command("ping")
    except PyMongoError:
        client.close()
        _mongo_state["available"] = False
        pytest.skip("MongoDB är inte tillgänglig")
    _mongo_state["available"] = True
    await client.drop_database(TEST_DB_NAME)
    yield client[TEST_DB_NAME]
    await client.drop_database(TEST_DB_NAME)
    client.close()


@pytest.fixture
def mongo_collections(test_db):
    return build_collections(lambda name: MongoKeyedStore(test_db, name))


def _scan(scan_id: str) -> ScanRecord:
    return ScanRecord(id=scan_id, filename=f"{scan_id}.txt", size=10, mime="text/plain")


# ─── Tester ───────────────────────────────────────────────────────────────────

async def test_create_get_delete_roundtrip(mongo_collections, test_db):
    """Skapad post ska lagras som {_id, seq, version, value} och kunna tas bort."""
    scans = mongo_collections.scans
    await scans.create(_scan("a"))

    doc = await test_db.scans.find_one({"_id": "a"})
    assert doc["seq"] >= 1
    assert doc["version"] == 1
    assert doc["value"]["filename"] == "a.txt"
    assert "summary" not in doc["value"]

    assert (await scans.get("a")).filename == "a.txt"
    assert await scans.delete("a") is True
    assert await scans.delete("a") is False


async def test_duplicate_create_is_conflict(mongo_collections):
    await mongo_collections.scans.create(_scan("dup"))
    with pytest.raises(Conflict):
        await mongo_collections.scans.create(_scan("dup"))


async def test_pagination_follows_insertion_order(mongo_collections):
    scans = mongo_collections.scans
    for n in range(5):
        await scans.create(_scan(f"p{n}"))

    seen = []
    cursor = None
    while True:
        page = await scans.list(cursor, 2)
        seen.extend(item.id for item in page.items)
        if not page.next_cursor:
            break
        cursor = page.next_cursor
    assert seen == [f"p{n}" for n in range(5)]


async def test_concurrent_mutations_across_collection_instances(test_db):
    """Två instanser (som två processer) ska inte skriva över varandras ändringar."""
    first = EntityCollection(MongoKeyedStore(test_db, "scans"), ScanRecord)
    second = EntityCollection(MongoKeyedStore(test_db, "scans"), ScanRecord)
    await first.create(_scan("race"))

    def bump(record: ScanRecord) -> ScanRecord:
        return record.model_copy(update={"size": record.size + 1})

    await asyncio.gather(*(col.mutate("race", bump) for col in [first, second] * 3))
    assert (await first.get("race")).size == 16


async def test_seed_and_lifecycle_against_mongo(mongo_collections, fake_scheduler, fixed_random):
    scans = mongo_collections.scans
    assert await scans.ensure_seed() == 1
    assert await scans.ensure_seed() == 0

    lifecycle = ScanLifecycle(scans, fake_scheduler, rng=fixed_random(0.8))
    await lifecycle.submit(_scan("life"))
    assert await lifecycle.run_transition("life") == "flagged"
    settled = await scans.get("life")
    assert settled.summary.verdict == "suspicious"


async def test_ensure_indexes_creates_seq_index(test_db):
    store = MongoKeyedStore(test_db, "scans")
    await store.ensure_indexes()
    indexes = await test_db.scans.index_information()
    assert "scans_seq" in indexes
    assert indexes["scans_seq"].get("unique") is True
