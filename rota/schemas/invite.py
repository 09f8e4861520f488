from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from rota.schemas.common import UtcDatetime
from rota.schemas.shift import AllocationResponse, ShiftResponse


class InviteCreate(BaseModel):
    shift_id: int
    worker_ids: List[int] = Field(min_length=1)


class InviteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_id: int
    shift_id: int
    worker_id: int
    status: str
    invite_code: str
    invited_by: Optional[str]
    invited_at: UtcDatetime
    responded_at: Optional[UtcDatetime]
    expires_at: Optional[UtcDatetime]


class InviteDetailResponse(BaseModel):
    invite: InviteResponse
    shift: ShiftResponse
    effective_status: str


class InviteAcceptRequest(BaseModel):
    worker_id: Optional[int] = None


class InviteAcceptResponse(BaseModel):
    invite: InviteResponse
    allocation: AllocationResponse
