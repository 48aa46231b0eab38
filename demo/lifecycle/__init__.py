"""Grievance lifecycle core: engine, store, service, sweeper and notary."""

from .engine import LifecycleEngine, LifecyclePolicy
from .service import GrievanceService
from .store import GrievanceStore, InMemoryGrievanceStore, MongoGrievanceStore
from .sweeper import ReconciliationSweeper, SweepScheduler
