from typing import Any, Dict, Optional

from fastapi import HTTPException


class RotaError(ValueError):
    """Base class for rule violations surfaced to the caller as typed errors."""

    code = "rota_error"
    status_code = 409
    default_message = "Request could not be completed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        super().__init__(message or self.default_message)
        self.extra: Dict[str, Any] = extra

    def to_detail(self) -> Dict[str, Any]:
        detail = {"code": self.code, "message": str(self)}
        detail.update(self.extra)
        return detail


class NotFound(RotaError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class RecordNotFound(NotFound):
    code = "record_not_found"
    default_message = "Record not found"


class Conflict(RotaError):
    code = "conflict"
    default_message = "Worker already holds an invite or allocation for this shift"


class SlotFilled(RotaError):
    code = "slot_filled"
    default_message = "This shift has already been filled"


class InviteNotPending(RotaError):
    code = "invite_not_pending"
    default_message = "This invite has already been accepted or declined"


class ShiftNotOpen(RotaError):
    code = "shift_not_open"
    default_message = "This shift is not published"


class NotAllocated(RotaError):
    code = "not_allocated"
    status_code = 403
    default_message = "You are not assigned to this shift"


class ShiftNotToday(RotaError):
    code = "shift_not_today"
    default_message = "You can only clock in on the day of your shift"

    def __init__(self, when: str, message: Optional[str] = None):
        if message is None:
            if when == "future":
                message = "Cannot clock in for future shifts"
            else:
                message = "Cannot clock in for past shifts. Submit your times for approval instead"
        super().__init__(message, when=when)
        self.when = when


class AlreadyClockedIn(RotaError):
    code = "already_clocked_in"
    default_message = "You are already clocked in"


class AlreadyClockedOut(RotaError):
    code = "already_clocked_out"
    default_message = "Shift already completed"


class NotClockedOut(RotaError):
    code = "not_clocked_out"
    default_message = "Worker has not clocked out yet"


class InvalidRequest(RotaError):
    code = "invalid_request"
    status_code = 422
    default_message = "Invalid request"


class InvalidRange(InvalidRequest):
    code = "invalid_range"
    default_message = "Start time must be before end time"


class ExceedsMaxDuration(InvalidRequest):
    code = "exceeds_max_duration"
    default_message = "Shift length exceeds the maximum allowed"


class OutsideShiftWindow(InvalidRequest):
    code = "outside_shift_window"
    default_message = "Submitted time is too far from the scheduled shift"


class ReasonRequired(InvalidRequest):
    code = "reason_required"
    default_message = "A reason is required when times differ from the scheduled shift"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, field="reason")


class NotesRequired(InvalidRequest):
    code = "notes_required"
    default_message = "Manager notes are required"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, field="notes")


class AlreadyPending(RotaError):
    code = "already_pending"
    default_message = "A submission is already awaiting approval"


class AlreadyResolved(RotaError):
    code = "already_resolved"
    default_message = "This item has already been resolved"

    def __init__(self, current_status: str, message: Optional[str] = None):
        super().__init__(message, current_status=current_status)
        self.current_status = current_status


def to_http_exception(exc: RotaError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
