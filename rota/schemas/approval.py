from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from rota.schemas.common import UtcDatetime
from rota.schemas.timekeeping import TimekeepingRecordResponse


class ApprovalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    company_id: int
    timekeeping_record_id: str
    requested_start: UtcDatetime
    requested_end: UtcDatetime
    original_shift_start: UtcDatetime
    original_shift_end: UtcDatetime
    reason: Optional[str]
    status: str
    actual_start: Optional[UtcDatetime]
    actual_end: Optional[UtcDatetime]
    manager_notes: Optional[str]
    reviewed_by: Optional[str]
    reviewed_at: Optional[UtcDatetime]
    created_at: UtcDatetime


class PendingApprovalResponse(BaseModel):
    approval: ApprovalResponse
    record: TimekeepingRecordResponse


class ApprovalActionRequest(BaseModel):
    action: Literal["approve", "reject", "modify"]
    notes: Optional[str] = None
    actual_start: Optional[UtcDatetime] = None
    actual_end: Optional[UtcDatetime] = None


class TimesheetReviewRequest(BaseModel):
    notes: Optional[str] = None
