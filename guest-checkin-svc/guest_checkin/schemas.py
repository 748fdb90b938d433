from __future__ import annotations
import enum
from pydantic import BaseModel, ConfigDict
from datetime import datetime

class CheckInRecord(BaseModel):
    """Durable proof that a guest code was accepted. Immutable."""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    event_id: str
    code: str
    display_name: str
    accepted_at: datetime
    accepted_by: str | None = None
    attempt_id: str

class ScanOutcome(str, enum.Enum):
    ACCEPTED = "ACCEPTED"
    DUPLICATE = "DUPLICATE"
    INVALID = "INVALID"
    ERROR = "ERROR"  # store unavailable; scan unresolved

class ScanAttempt(BaseModel):
    """One evaluated decode event; feedback/audit only."""
    model_config = ConfigDict(frozen=True)

    raw: str
    code: str | None = None
    outcome: ScanOutcome
    at: datetime
    display_name: str | None = None
    accepted_at: datetime | None = None  # original acceptance time for DUPLICATE
    error: str | None = None
    recovered: bool = False

# --- HTTP bodies

class ScanRequest(BaseModel):
    payload: str
    device_id: str | None = None

class ScanResult(BaseModel):
    outcome: ScanOutcome
    code: str
    display_name: str
    accepted_at: datetime
    accepted_by: str | None = None

class RecordClaim(BaseModel):
    display_name: str
    accepted_at: datetime
    accepted_by: str | None = None
    attempt_id: str
