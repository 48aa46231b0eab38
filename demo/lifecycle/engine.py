"""Grievance lifecycle engine: transitions, timers and the dispute rule.

Pure computation. The engine never touches the store; it receives a record
and the current time and answers with a ``Transition`` (the updated record,
the field changes to persist and any events to announce) or raises a
lifecycle error. The service layer persists transitions, the sweeper uses
the time-driven predicates.

Timers armed by the engine:
- ``accept_by``: creation + 24h, set once at submit and never changed.
- ``resolve_by``: set by an official, at most 30 days out.
- ``verification_deadline``: resolve + 7 days; cleared by a dispute.

Once ``dispute_count`` reaches the dispute threshold the resolve action is
forbidden for good; only an admin path outside this engine may close it.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError, ForbiddenError
from .models import GrievanceCreate, GrievanceRecord, GrievanceStatus

Query = Dict[str, Any]


@dataclass(frozen=True)
class LifecyclePolicy:
    accept_window: timedelta = timedelta(hours=24)
    max_resolution_days: int = 30
    verification_window: timedelta = timedelta(days=7)
    dispute_threshold: int = 2


DEFAULT_POLICY = LifecyclePolicy()

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class LifecycleEvent:
    grievance_id: Optional[str]
    at: datetime


@dataclass(frozen=True)
class GrievanceAccepted(LifecycleEvent):
    pass


@dataclass(frozen=True)
class DisputeEscalated(LifecycleEvent):
    """The dispute threshold was reached; the record needs admin review."""
    dispute_count: int = 0


@dataclass(frozen=True)
class Transition:
    record: GrievanceRecord
    changes: Dict[str, Any] = field(default_factory=dict)
    events: List[LifecycleEvent] = field(default_factory=list)


class LifecycleEngine:
    def __init__(self, policy: LifecyclePolicy = DEFAULT_POLICY):
        self.policy = policy

    # -- caller actions ---------------------------------------------------
    def submit(self, data: GrievanceCreate, now: datetime) -> GrievanceRecord:
        title = (data.title or "").strip()
        description = (data.description or "").strip()
        if not title:
            raise ValidationError("Title is required")
        if not description:
            raise ValidationError("Description is required")
        return GrievanceRecord(
            title=title, description=description, media_url=data.media_url or None,
            status=GrievanceStatus.PENDING,
            accept_by=now + self.policy.accept_window,
            dispute_count=0, version=0,
            created_at=now, updated_at=now)

    def accept(self, record: GrievanceRecord, now: datetime) -> Transition:
        # The acceptance timer runs from creation; accepting only gets recorded.
        return Transition(record=record, events=[GrievanceAccepted(record.id, now)])

    def check_time_in_days(self, time_in_days: Any) -> float:
        """Validate a resolution window in days, returning it as a float."""
        invalid = ValidationError(
            f"Invalid time limit. Max {self.policy.max_resolution_days} days.")
        if time_in_days is None or isinstance(time_in_days, bool):
            raise invalid
        try:
            days = float(time_in_days)
        except (TypeError, ValueError, OverflowError):
            raise invalid
        if not math.isfinite(days) or days <= 0 or days > self.policy.max_resolution_days:
            raise invalid
        return days

    def set_resolution_deadline(self, record: GrievanceRecord, time_in_days: Any,
                                now: datetime) -> Transition:
        days = self.check_time_in_days(time_in_days)
        return self._apply(record, {"resolve_by": now + timedelta(days=days),
                                    "updated_at": now})

    def resolve(self, record: GrievanceRecord, now: datetime) -> Transition:
        if record.dispute_count >= self.policy.dispute_threshold:
            raise ForbiddenError(
                "This grievance has been disputed multiple times and can only be "
                "resolved by an Admin.")
        return self._apply(record, {
            "status": GrievanceStatus.PENDING_VERIFICATION.value,
            "verification_deadline": now + self.policy.verification_window,
            "updated_at": now})

    def dispute(self, record: GrievanceRecord, now: datetime) -> Transition:
        count = record.dispute_count + 1
        transition = self._apply(record, {
            "status": GrievanceStatus.DISPUTED.value,
            "dispute_count": count,
            "verification_deadline": None,
            "updated_at": now})
        if count >= self.policy.dispute_threshold:
            transition.events.append(DisputeEscalated(record.id, now, dispute_count=count))
        return transition

    # -- time-driven rules -------------------------------------------------
    def acceptance_expiry(self, now: datetime) -> Tuple[Query, Dict[str, Any]]:
        return ({"status": GrievanceStatus.PENDING.value, "accept_by": {"$lt": now}},
                {"status": GrievanceStatus.OVERDUE.value, "updated_at": now})

    def resolution_expiry(self, now: datetime) -> Tuple[Query, Dict[str, Any]]:
        # Only Pending records; a resolved or disputed record is past this timer.
        return ({"status": GrievanceStatus.PENDING.value, "resolve_by": {"$lt": now}},
                {"status": GrievanceStatus.OVERDUE.value, "updated_at": now})

    def verification_expiry(self, now: datetime) -> Query:
        return {"status": GrievanceStatus.PENDING_VERIFICATION.value,
                "verification_deadline": {"$lt": now}}

    def verify(self, record: GrievanceRecord, now: datetime) -> Transition:
        if record.status != GrievanceStatus.PENDING_VERIFICATION.value:
            raise ValidationError(f"Cannot verify a grievance in status {record.status}")
        deadline = record.verification_deadline
        if deadline is None or deadline >= now:
            raise ValidationError("Verification window has not lapsed")
        # verification_deadline stays on the record for audit
        return self._apply(record, {"status": GrievanceStatus.VERIFIED.value,
                                    "updated_at": now})

    @staticmethod
    def _apply(record: GrievanceRecord, changes: Dict[str, Any]) -> Transition:
        updated = record.model_validate({**record.model_dump(), **changes})
        return Transition(record=updated, changes=changes)
