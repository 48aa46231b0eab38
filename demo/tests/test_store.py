"""
Store tests: the in-memory backend's query dialect and versioned writes,
the MongoDB backend's update shapes against a stand-in collection, and the
async runner's error mapping.
"""

import time
from datetime import datetime, timedelta, timezone

import pytest
from pymongo import ReturnDocument
from pymongo.errors import ServerSelectionTimeoutError

from lifecycle.errors import TransientError
from lifecycle.store import InMemoryGrievanceStore, MongoGrievanceStore, StoreRunner

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _doc(status="Pending", minutes=0, **extra):
    return {"status": status, "created_at": NOW + timedelta(minutes=minutes),
            "accept_by": NOW + timedelta(hours=24), "version": 0, **extra}


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY
# ═══════════════════════════════════════════════════════════════════════════════

class TestInMemoryStore:
    def test_insert_assigns_id(self):
        store = InMemoryGrievanceStore()
        record_id = store.insert(_doc())
        assert store.find_one(record_id)["_id"] == record_id

    def test_duplicate_id_rejected(self):
        store = InMemoryGrievanceStore()
        store.insert(_doc(_id="a"))
        with pytest.raises(ValueError):
            store.insert(_doc(_id="a"))

    def test_returned_docs_are_copies(self):
        store = InMemoryGrievanceStore()
        record_id = store.insert(_doc())
        store.find_one(record_id)["status"] = "Verified"
        assert store.find_one(record_id)["status"] == "Pending"

    def test_find_operators_and_order(self):
        store = InMemoryGrievanceStore()
        old = store.insert(_doc(minutes=0, resolve_by=NOW))
        new = store.insert(_doc(minutes=5, resolve_by=None))
        store.insert(_doc(status="Verified", minutes=10))
        assert [d["_id"] for d in store.find({"status": "Pending"})] == [new, old]
        assert [d["_id"] for d in store.find({"resolve_by": {"$lt": NOW + timedelta(1)}})] == [old]
        assert len(store.find({"status": {"$in": ["Pending", "Verified"]}})) == 3

    def test_unsupported_operator(self):
        store = InMemoryGrievanceStore()
        store.insert(_doc())
        with pytest.raises(ValueError):
            store.find({"status": {"$ne": "Pending"}})

    def test_update_if_checks_version(self):
        store = InMemoryGrievanceStore()
        record_id = store.insert(_doc())
        updated = store.update_if(record_id, 0, {"status": "Disputed"})
        assert updated["version"] == 1
        assert store.update_if(record_id, 0, {"status": "Verified"}) is None
        assert store.find_one(record_id)["status"] == "Disputed"
        assert store.update_if("missing", 0, {"status": "Verified"}) is None

    def test_update_many_bumps_versions(self):
        store = InMemoryGrievanceStore()
        a = store.insert(_doc())
        b = store.insert(_doc(status="Verified"))
        assert store.update_many({"status": "Pending"}, {"status": "Overdue"}) == 1
        assert store.find_one(a)["version"] == 1
        assert store.find_one(b)["version"] == 0


# ═══════════════════════════════════════════════════════════════════════════════
# MONGODB
# ═══════════════════════════════════════════════════════════════════════════════

class FakeCollection:
    """Records the calls a MongoGrievanceStore makes."""

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def _record(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if self.fail:
            raise ServerSelectionTimeoutError("no servers")

    def find_one_and_update(self, *args, **kwargs):
        self._record("find_one_and_update", *args, **kwargs)
        return {"_id": args[0]["_id"], "version": args[0]["version"] + 1}

    def insert_one(self, doc):
        self._record("insert_one", doc)


class TestMongoStore:
    def test_update_if_is_conditional_on_version(self):
        collection = FakeCollection()
        store = MongoGrievanceStore(collection)
        result = store.update_if("g-1", 3, {"status": "Disputed"})
        name, args, kwargs = collection.calls[0]
        assert name == "find_one_and_update"
        assert args[0] == {"_id": "g-1", "version": 3}
        assert args[1] == {"$set": {"status": "Disputed"}, "$inc": {"version": 1}}
        assert kwargs["return_document"] == ReturnDocument.AFTER
        assert result["version"] == 4

    def test_insert_assigns_id(self):
        collection = FakeCollection()
        record_id = MongoGrievanceStore(collection).insert({"status": "Pending"})
        assert collection.calls[0][1][0]["_id"] == record_id

    def test_driver_errors_become_transient(self):
        store = MongoGrievanceStore(FakeCollection(fail=True))
        with pytest.raises(TransientError):
            store.update_if("g-1", 0, {"status": "Disputed"})

    def test_close_without_client(self):
        MongoGrievanceStore(FakeCollection()).close()


# ═══════════════════════════════════════════════════════════════════════════════
# RUNNER
# ═══════════════════════════════════════════════════════════════════════════════

class TestStoreRunner:
    @pytest.mark.asyncio
    async def test_passes_results_through(self):
        store = InMemoryGrievanceStore()
        runner = StoreRunner(store, timeout=5)
        record_id = await runner.call(store.insert, _doc())
        assert (await runner.call(store.find_one, record_id))["_id"] == record_id

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def slow():
            time.sleep(0.3)
        runner = StoreRunner(InMemoryGrievanceStore(), timeout=0.05)
        with pytest.raises(TransientError, match="timed out"):
            await runner.call(slow)

    @pytest.mark.asyncio
    async def test_driver_error_is_transient(self):
        def down():
            raise ServerSelectionTimeoutError("no servers")
        runner = StoreRunner(InMemoryGrievanceStore(), timeout=5)
        with pytest.raises(TransientError):
            await runner.call(down)

    @pytest.mark.asyncio
    async def test_timed_out_call_keeps_running(self):
        store = InMemoryGrievanceStore()

        def slow_insert(doc):
            time.sleep(0.1)
            return store.insert(doc)
        runner = StoreRunner(store, timeout=0.02)
        with pytest.raises(TransientError) as exc_info:
            await runner.call(slow_insert, _doc(_id="late"))
        record_id = await exc_info.value.pending
        assert record_id == "late"
        assert store.find_one("late") is not None
