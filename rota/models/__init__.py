from rota.models.event_outbox import EventOutbox
from rota.models.shift import Shift
from rota.models.shift_allocation import ShiftAllocation
from rota.models.shift_invite import ShiftInvite
from rota.models.shift_time_approval import ShiftTimeApproval
from rota.models.timekeeping_record import TimekeepingRecord

__all__ = [
    "EventOutbox",
    "Shift",
    "ShiftAllocation",
    "ShiftInvite",
    "ShiftTimeApproval",
    "TimekeepingRecord",
]
