from datetime import date, time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from rota.schemas.common import UtcDatetime


class ShiftCreate(BaseModel):
    venue_id: int
    role_id: int
    shift_date: date
    start_time: time
    end_time: time
    headcount_needed: int = Field(default=1, ge=1)
    timezone: Optional[str] = None
    notes: Optional[str] = None
    publish: bool = False


class ShiftResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_id: int
    venue_id: int
    role_id: int
    shift_date: date
    start_time: time
    end_time: time
    timezone: str
    headcount_needed: int
    filled_count: int
    open_slots: int = 0
    status: str
    notes: Optional[str]
    published_at: Optional[UtcDatetime]
    created_at: UtcDatetime


class AllocationCreate(BaseModel):
    worker_id: int


class AllocationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_id: int
    shift_id: int
    worker_id: int
    allocation_type: str
    status: str
    invite_id: Optional[int]
    allocated_by: Optional[str]
    allocated_at: UtcDatetime
