"""
Shared pytest fixtures for the Grievance Lifecycle Service test suite.

Provides an in-memory store, a manually advanced clock, a recording notary,
the service and sweeper built on them, an httpx AsyncClient wired to the app
through dependency overrides, and role headers for each kind of caller.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
import httpx

# Ensure the demo package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from lifecycle.engine import LifecycleEngine
from lifecycle.service import GrievanceService
from lifecycle.store import InMemoryGrievanceStore
from lifecycle.sweeper import ReconciliationSweeper
from ticketer import app, limiter, get_service, get_sweeper, get_scheduler


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotary:
    def __init__(self, fail_for: set | None = None):
        self.calls: list[str] = []
        self.fail_for = fail_for or set()

    async def notarize(self, record):
        self.calls.append(record.id)
        if record.id in self.fail_for:
            raise RuntimeError("ledger unavailable")


@pytest.fixture
def clock():
    return ManualClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryGrievanceStore()


@pytest.fixture
def engine():
    return LifecycleEngine()


@pytest.fixture
def events():
    return []


@pytest.fixture
def notary():
    return RecordingNotary()


@pytest.fixture
def service(store, engine, clock, events):
    return GrievanceService(store, engine, clock=clock, timeout=5, on_event=events.append)


@pytest.fixture
def sweeper(store, engine, clock, notary):
    return ReconciliationSweeper(store, engine, notary=notary, clock=clock, timeout=5)


@pytest_asyncio.fixture
async def client(service, sweeper):
    """In-process httpx AsyncClient against the app, backed by the fixtures above."""
    # Disable rate limiting so repeated submits aren't throttled
    limiter.enabled = False
    app.dependency_overrides[get_service] = lambda: service
    app.dependency_overrides[get_sweeper] = lambda: sweeper
    app.dependency_overrides[get_scheduler] = lambda: None
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def citizen_headers():
    return {"X-Actor-Role": "user"}


@pytest.fixture
def official_headers():
    return {"X-Actor-Role": "official"}


@pytest.fixture
def admin_headers():
    return {"X-Actor-Role": "admin"}
