"""Reconciliation sweep: promote and demote records whose timers lapsed.

Each tick runs three steps in order:

1. acceptance expiry    Pending, ``accept_by`` passed       -> Overdue
2. resolution expiry    Pending, ``resolve_by`` passed      -> Overdue
3. verification expiry  PendingVerification, deadline passed -> Verified,
   then one notarization per record whose write landed

Steps 1 and 2 are single bulk updates guarded by status, so a record is
changed at most once per tick and a second tick finds nothing to do.
Step 3 writes each record with a compare-and-update so that a dispute
racing the sweep is never overwritten. A failing step is logged and
skipped; the next tick picks the work up again.

A verify write that times out may still land after the tick gave up on it.
The sweeper keeps the pending write and, once it has finished, counts the
record as verified and notarizes it in whichever tick first sees it done.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

from .config import STORE_TIMEOUT_SECONDS, now_utc
from .engine import LifecycleEngine
from .errors import TransientError
from .models import GrievanceRecord, doc_to_record
from .notary import LoggingNotary
from .store import GrievanceStore, StoreRunner

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    started_at: datetime
    acceptance_overdue: int = 0
    resolution_overdue: int = 0
    verified: int = 0
    notarized: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def total_changed(self) -> int:
        return self.acceptance_overdue + self.resolution_overdue + self.verified

    def as_dict(self) -> dict:
        return {"started_at": self.started_at,
                "acceptance_overdue": self.acceptance_overdue,
                "resolution_overdue": self.resolution_overdue,
                "verified": self.verified, "notarized": self.notarized,
                "total_changed": self.total_changed, "errors": list(self.errors)}


class ReconciliationSweeper:
    def __init__(self, store: GrievanceStore, engine: Optional[LifecycleEngine] = None, *,
                 notary=None, clock: Callable[[], Any] = now_utc,
                 timeout: float = STORE_TIMEOUT_SECONDS,
                 runner: Optional[StoreRunner] = None):
        self.store = store
        self.engine = engine or LifecycleEngine()
        self.notary = notary or LoggingNotary()
        self.clock = clock
        self.runner = runner or StoreRunner(store, timeout)
        # verify writes that timed out but may still land: (record id, future)
        self._landing: List[Tuple[str, asyncio.Future]] = []

    async def tick(self) -> SweepReport:
        now = self.clock()
        report = SweepReport(started_at=now)

        query, changes = self.engine.acceptance_expiry(now)
        report.acceptance_overdue = await self._bulk_step("acceptance", query, changes, report)
        if report.acceptance_overdue:
            logger.info("Marked %d grievances as Overdue (Acceptance).", report.acceptance_overdue)

        query, changes = self.engine.resolution_expiry(now)
        report.resolution_overdue = await self._bulk_step("resolution", query, changes, report)
        if report.resolution_overdue:
            logger.info("Marked %d grievances as Overdue (Resolution).", report.resolution_overdue)

        verified = await self._verify_step(now, report) + self._collect_landed()
        report.verified = len(verified)
        if verified:
            logger.info("Marked %d grievances as Verified.", len(verified))
            report.notarized = await self._notarize(verified, report)
        return report

    async def _bulk_step(self, name: str, query: dict, changes: dict, report: SweepReport) -> int:
        try:
            return await self.runner.call(self.store.update_many, query, changes)
        except TransientError as e:
            logger.error("Sweep step %s skipped: %s", name, e.message)
            report.errors.append(f"{name}: {e.message}")
            return 0

    async def _verify_step(self, now: datetime, report: SweepReport) -> List[GrievanceRecord]:
        try:
            docs = await self.runner.call(self.store.find, self.engine.verification_expiry(now))
        except TransientError as e:
            logger.error("Sweep step verification skipped: %s", e.message)
            report.errors.append(f"verification: {e.message}")
            return []

        verified = []
        for doc in docs:
            record_id = doc.get("_id")
            try:
                record = doc_to_record(doc)
                transition = self.engine.verify(record, now)
                stored = await self.runner.call(
                    self.store.update_if, record.id, record.version, transition.changes)
            except TransientError as e:
                if e.pending is not None:
                    self._landing.append((record_id, e.pending))
                logger.error("Error verifying grievance %s: %s", record_id, e)
                report.errors.append(f"verification {record_id}: {e}")
                continue
            except Exception as e:
                logger.error("Error verifying grievance %s: %s", record_id, e)
                report.errors.append(f"verification {record_id}: {e}")
                continue
            if stored is None:
                logger.info("Grievance %s changed during sweep, left for next tick", record_id)
                continue
            verified.append(doc_to_record(stored))
        return verified

    def _collect_landed(self) -> List[GrievanceRecord]:
        """Records whose timed-out verify write has since been applied."""
        landed, waiting = [], []
        for record_id, future in self._landing:
            if not future.done():
                waiting.append((record_id, future))
            elif future.cancelled() or future.exception() is not None:
                logger.info("Late verify write for grievance %s failed, left for next tick", record_id)
            elif future.result() is None:
                logger.info("Grievance %s changed during sweep, left for next tick", record_id)
            else:
                logger.info("Late verify write for grievance %s landed", record_id)
                landed.append(doc_to_record(future.result()))
        self._landing = waiting
        return landed

    async def _notarize(self, records: List[GrievanceRecord], report: SweepReport) -> int:
        results = await asyncio.gather(*(self.notary.notarize(r) for r in records),
                                       return_exceptions=True)
        done = 0
        for record, result in zip(records, results):
            if isinstance(result, BaseException):
                # The status change stands; notarization is not rolled back into it.
                logger.error("Notarization failed for grievance %s: %s", record.id, result)
                report.errors.append(f"notarize {record.id}: {result}")
            else:
                done += 1
        return done


class SweepScheduler:
    """Runs ``sweeper.tick()`` every *interval* seconds on the event loop."""

    def __init__(self, sweeper: ReconciliationSweeper, interval: float):
        self.sweeper = sweeper
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Sweep scheduler started (every %.0fs)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sweep scheduler stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            logger.info("Running scheduled tasks...")
            try:
                await self.sweeper.tick()
            except Exception as e:
                logger.error("Error in scheduled tasks: %s", e)
            self.ticks += 1
