# Enums, records and request/response models for the grievance lifecycle

from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class GrievanceStatus(str, Enum):
    PENDING = "Pending"
    OVERDUE = "Overdue"
    PENDING_VERIFICATION = "PendingVerification"
    VERIFIED = "Verified"
    DISPUTED = "Disputed"

class ActorRole(str, Enum):
    USER = "user"
    OFFICIAL = "official"
    ADMIN = "admin"

# ---------------------------------------------------------------------------
# Pydantic Models
# ---------------------------------------------------------------------------
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class GrievanceRecord(CamelModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: Optional[str] = None
    title: str
    description: str
    media_url: Optional[str] = None
    status: GrievanceStatus = GrievanceStatus.PENDING
    accept_by: datetime
    resolve_by: Optional[datetime] = None
    verification_deadline: Optional[datetime] = None
    dispute_count: int = Field(0, ge=0)
    version: int = Field(0, ge=0)
    created_at: datetime
    updated_at: datetime

class GrievanceCreate(CamelModel):
    title: str = Field(..., max_length=200)
    description: str = Field(..., max_length=5000)
    media_url: Optional[str] = Field(None, max_length=2000)

class TimeLimitRequest(CamelModel):
    time_in_days: Optional[Any] = None

class SubmitResponse(CamelModel):
    status: str
    grievance_id: str

class ActionResponse(BaseModel):
    status: str
    grievance: Optional[GrievanceRecord] = None

class SweepResponse(CamelModel):
    started_at: datetime
    acceptance_overdue: int
    resolution_overdue: int
    verified: int
    notarized: int
    total_changed: int
    errors: List[str] = Field(default_factory=list)

# ---------------------------------------------------------------------------
# Stored document conversion
# ---------------------------------------------------------------------------
def record_to_doc(record: GrievanceRecord) -> Dict[str, Any]:
    doc = record.model_dump()
    record_id = doc.pop("id")
    if record_id is not None:
        doc["_id"] = record_id
    return doc

def doc_to_record(doc: Dict[str, Any]) -> GrievanceRecord:
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    return GrievanceRecord(**data)
