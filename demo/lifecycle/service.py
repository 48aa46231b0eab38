"""Grievance actions: read, decide, compare-and-update.

Each action fetches one record, lets the engine decide, and writes the
result back only if the record's version is still the one that was read.
A lost write is retried once against a fresh read before the caller sees
a ``ConflictError``.
"""

import logging
from typing import Any, Callable, List, Optional

from .config import STORE_TIMEOUT_SECONDS, now_utc
from .engine import DisputeEscalated, LifecycleEngine, LifecycleEvent, Transition
from .errors import ConflictError, NotFoundError
from .models import (
    GrievanceCreate, GrievanceRecord, GrievanceStatus, doc_to_record, record_to_doc,
)
from .store import GrievanceStore, StoreRunner

logger = logging.getLogger(__name__)

# Status filter behind each dashboard view; None lists everything.
VIEW_FILTERS = {
    "user": None,
    "official": GrievanceStatus.PENDING,
    "community": GrievanceStatus.PENDING_VERIFICATION,
    "disputed": GrievanceStatus.DISPUTED,
    "overdue": GrievanceStatus.OVERDUE,
}


def log_event(event: LifecycleEvent) -> None:
    if isinstance(event, DisputeEscalated):
        logger.warning("Grievance %s has been disputed %d times. Needs Admin review.",
                       event.grievance_id, event.dispute_count)
    else:
        logger.info("Grievance %s: %s", event.grievance_id, type(event).__name__)


class GrievanceService:
    def __init__(self, store: GrievanceStore, engine: Optional[LifecycleEngine] = None, *,
                 clock: Callable[[], Any] = now_utc,
                 timeout: float = STORE_TIMEOUT_SECONDS,
                 on_event: Callable[[LifecycleEvent], None] = log_event,
                 runner: Optional[StoreRunner] = None):
        self.store = store
        self.engine = engine or LifecycleEngine()
        self.clock = clock
        self.runner = runner or StoreRunner(store, timeout)
        self.on_event = on_event

    async def submit(self, data: GrievanceCreate) -> GrievanceRecord:
        record = self.engine.submit(data, self.clock())
        record_id = await self.runner.call(self.store.insert, record_to_doc(record))
        logger.info("Grievance %s submitted", record_id)
        return record.model_copy(update={"id": record_id})

    async def get(self, grievance_id: str) -> GrievanceRecord:
        doc = await self.runner.call(self.store.find_one, grievance_id)
        if doc is None:
            raise NotFoundError()
        return doc_to_record(doc)

    async def accept(self, grievance_id: str) -> GrievanceRecord:
        record = await self.get(grievance_id)
        transition = self.engine.accept(record, self.clock())
        logger.info("Grievance %s accepted by official", grievance_id)
        self._emit(transition)
        return record

    async def set_resolution_deadline(self, grievance_id: str, time_in_days: Any) -> GrievanceRecord:
        # Reject a bad window before touching the store.
        self.engine.check_time_in_days(time_in_days)

        def decide(record, now):
            if record.status != GrievanceStatus.PENDING.value:
                logger.warning("Setting resolution deadline on grievance %s in status %s",
                               grievance_id, record.status)
            return self.engine.set_resolution_deadline(record, time_in_days, now)
        return await self._mutate(grievance_id, decide)

    async def resolve(self, grievance_id: str) -> GrievanceRecord:
        return await self._mutate(grievance_id, self.engine.resolve)

    async def dispute(self, grievance_id: str) -> GrievanceRecord:
        return await self._mutate(grievance_id, self.engine.dispute)

    async def list_view(self, view: str) -> List[GrievanceRecord]:
        if view not in VIEW_FILTERS:
            raise ValueError(f"Unknown view {view!r}")
        status = VIEW_FILTERS[view]
        query = {} if status is None else {"status": status.value}
        docs = await self.runner.call(self.store.find, query)
        return [doc_to_record(d) for d in docs]

    async def _mutate(self, grievance_id: str,
                      decide: Callable[[GrievanceRecord, Any], Transition]) -> GrievanceRecord:
        for attempt in range(2):
            record = await self.get(grievance_id)
            transition = decide(record, self.clock())
            doc = await self.runner.call(
                self.store.update_if, grievance_id, record.version, transition.changes)
            if doc is not None:
                self._emit(transition)
                return doc_to_record(doc)
            logger.info("Grievance %s changed under write (attempt %d)", grievance_id, attempt + 1)
        if await self.runner.call(self.store.find_one, grievance_id) is None:
            raise NotFoundError()
        raise ConflictError()

    def _emit(self, transition: Transition) -> None:
        for event in transition.events:
            try:
                self.on_event(event)
            except Exception as e:
                logger.error("Event listener failed for %s: %s", type(event).__name__, e)
