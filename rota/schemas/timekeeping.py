from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from rota.schemas.common import UtcDatetime


class ClockInRequest(BaseModel):
    shift_id: int
    worker_id: Optional[int] = None
    location: Optional[str] = None


class ClockOutRequest(BaseModel):
    record_id: str
    worker_id: Optional[int] = None
    location: Optional[str] = None


class ManualEntryRequest(BaseModel):
    shift_id: int
    worker_id: Optional[int] = None
    requested_start: UtcDatetime
    requested_end: UtcDatetime
    reason: Optional[str] = Field(default=None, max_length=2000)


class ManualEntryResponse(BaseModel):
    record_id: str
    approval_id: str
    status: str = "pending"


class TimekeepingRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    company_id: int
    shift_id: int
    worker_id: int
    venue_id: int
    clock_in: Optional[UtcDatetime]
    clock_out: Optional[UtcDatetime]
    clock_in_location: Optional[str]
    clock_out_location: Optional[str]
    manual_entry_status: str
    proposed_clock_in: Optional[UtcDatetime]
    proposed_clock_out: Optional[UtcDatetime]
    reason: Optional[str]
    submitted_at: Optional[UtcDatetime]
    status: str
    total_hours: Optional[float]
    notes: Optional[str]
    approved_by: Optional[str]
    approved_at: Optional[UtcDatetime]
    created_at: UtcDatetime
