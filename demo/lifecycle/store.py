"""Grievance record store.

The lifecycle core needs only a handful of blocking operations from its
store: insert, point lookup, filtered lookup, a compare-and-update on a
single record and a bulk conditional update. Queries use the MongoDB
filter dialect (equality, ``$lt``, ``$in``) so the same predicates run
against both backends.

Every mutation bumps the record's ``version``. Single-record updates only
apply while the stored version still matches the one the caller read;
a mismatch returns ``None`` and the caller decides whether that is a
conflict or a missing record.
"""

import asyncio
import copy
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from pymongo import DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from .config import new_id
from .errors import TransientError

logger = logging.getLogger(__name__)

executor = ThreadPoolExecutor(max_workers=10)


class GrievanceStore(ABC):
    @abstractmethod
    def insert(self, doc: Dict[str, Any]) -> str:
        """Insert a new record, assigning ``_id`` when absent. Returns the id."""

    @abstractmethod
    def find_one(self, record_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def find(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Records matching *query*, newest first."""

    @abstractmethod
    def update_if(self, record_id: str, expected_version: int,
                  changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply *changes* only if the stored version equals *expected_version*."""

    @abstractmethod
    def update_many(self, query: Dict[str, Any], changes: Dict[str, Any]) -> int:
        """Apply *changes* to every record matching *query*. Returns the count."""

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# MongoDB
# ---------------------------------------------------------------------------
class MongoGrievanceStore(GrievanceStore):
    def __init__(self, collection):
        self.collection = collection
        self._client = None

    @classmethod
    def connect(cls, url: str, db_name: str) -> "MongoGrievanceStore":
        client = MongoClient(url, tz_aware=True)
        store = cls(client[db_name].grievances)
        store._client = client
        return store

    def create_indexes(self) -> None:
        for field in ("status", "accept_by", "resolve_by", "verification_deadline", "created_at"):
            self.collection.create_index(field)
        logger.info("Grievance indexes ensured")

    def insert(self, doc):
        doc = dict(doc)
        doc.setdefault("_id", new_id())
        try:
            self.collection.insert_one(doc)
        except PyMongoError as e:
            raise TransientError(f"insert failed: {e}") from e
        return doc["_id"]

    def find_one(self, record_id):
        try:
            return self.collection.find_one({"_id": record_id})
        except PyMongoError as e:
            raise TransientError(f"find_one failed: {e}") from e

    def find(self, query):
        try:
            return list(self.collection.find(query).sort("created_at", DESCENDING))
        except PyMongoError as e:
            raise TransientError(f"find failed: {e}") from e

    def update_if(self, record_id, expected_version, changes):
        try:
            return self.collection.find_one_and_update(
                {"_id": record_id, "version": expected_version},
                {"$set": changes, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER)
        except PyMongoError as e:
            raise TransientError(f"update_if failed: {e}") from e

    def update_many(self, query, changes):
        try:
            result = self.collection.update_many(query, {"$set": changes, "$inc": {"version": 1}})
        except PyMongoError as e:
            raise TransientError(f"update_many failed: {e}") from e
        return result.modified_count

    def ping(self):
        try:
            self.collection.database.command("ping")
            return True
        except PyMongoError as e:
            logger.error("MongoDB ping failed: %s", e)
            return False

    def close(self):
        if self._client is not None:
            self._client.close()


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------
def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for field, cond in query.items():
        value = doc.get(field)
        if isinstance(cond, dict):
            for op, operand in cond.items():
                if op == "$lt":
                    if value is None or not value < operand:
                        return False
                elif op == "$in":
                    if value not in operand:
                        return False
                else:
                    raise ValueError(f"Unsupported query operator: {op}")
        elif value != cond:
            return False
    return True


class InMemoryGrievanceStore(GrievanceStore):
    def __init__(self):
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def insert(self, doc):
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", new_id())
        with self._lock:
            if doc["_id"] in self._docs:
                raise ValueError(f"Duplicate grievance id {doc['_id']}")
            self._docs[doc["_id"]] = doc
        return doc["_id"]

    def find_one(self, record_id):
        with self._lock:
            doc = self._docs.get(record_id)
            return copy.deepcopy(doc) if doc is not None else None

    def find(self, query):
        with self._lock:
            found = [copy.deepcopy(d) for d in self._docs.values() if _matches(d, query)]
        found.sort(key=lambda d: d["created_at"], reverse=True)
        return found

    def update_if(self, record_id, expected_version, changes):
        with self._lock:
            doc = self._docs.get(record_id)
            if doc is None or doc.get("version", 0) != expected_version:
                return None
            doc.update(copy.deepcopy(changes))
            doc["version"] = expected_version + 1
            return copy.deepcopy(doc)

    def update_many(self, query, changes):
        modified = 0
        with self._lock:
            for doc in self._docs.values():
                if _matches(doc, query):
                    doc.update(copy.deepcopy(changes))
                    doc["version"] = doc.get("version", 0) + 1
                    modified += 1
        return modified

    def __len__(self):
        return len(self._docs)


# ---------------------------------------------------------------------------
# Async boundary
# ---------------------------------------------------------------------------
def _log_late_failure(name: str, future: asyncio.Future) -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.warning("Timed-out store call %s failed later: %s", name, future.exception())

class StoreRunner:
    """Runs blocking store calls off the event loop with a deadline."""

    def __init__(self, store: GrievanceStore, timeout: float,
                 pool: Optional[ThreadPoolExecutor] = None):
        self.store = store
        self.timeout = timeout
        self.pool = pool or executor

    async def call(self, fn: Callable[..., Any], *args) -> Any:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self.pool, partial(fn, *args))
        try:
            return await asyncio.wait_for(asyncio.shield(future), self.timeout)
        except asyncio.TimeoutError:
            name = getattr(fn, "__name__", "store call")
            logger.warning("Store call %s timed out after %.1fs", name, self.timeout)
            future.add_done_callback(partial(_log_late_failure, name))
            raise TransientError(f"{name} timed out", pending=future)
        except PyMongoError as e:
            raise TransientError(str(e)) from e
