import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from rota.models.event_outbox import EventOutbox
from rota.services import events

logger = logging.getLogger(__name__)


def _payload(row: EventOutbox) -> Dict[str, Any]:
    payload: Any = row.payload or {}
    if not isinstance(payload, dict):
        raise ValueError(f"Outbox payload must be an object (event_outbox_id={row.id})")
    return payload


def _notify(row: EventOutbox, audience: str, **fields: Any) -> None:
    logger.info(
        "Notification dispatched",
        extra={
            "event_outbox_id": row.id,
            "event_type": row.event_type,
            "company_id": row.company_id,
            "audience": audience,
            **fields,
        },
    )


def handle_shift_invite_created(row: EventOutbox, db: Session) -> None:
    payload = _payload(row)
    _notify(
        row,
        "worker",
        invite_id=payload.get("invite_id"),
        worker_id=payload.get("worker_id"),
        shift_id=payload.get("shift_id"),
    )


def handle_shift_invite_accepted(row: EventOutbox, db: Session) -> None:
    payload = _payload(row)
    _notify(row, "manager", invite_id=payload.get("invite_id"), shift_id=payload.get("shift_id"))


def handle_time_clocked_out(row: EventOutbox, db: Session) -> None:
    payload = _payload(row)
    _notify(row, "manager", record_id=payload.get("record_id"), total_hours=payload.get("total_hours"))


def handle_manual_entry_submitted(row: EventOutbox, db: Session) -> None:
    payload = _payload(row)
    _notify(row, "manager", approval_id=payload.get("approval_id"), record_id=payload.get("record_id"))


def handle_time_approval_resolved(row: EventOutbox, db: Session) -> None:
    payload = _payload(row)
    _notify(
        row,
        "worker",
        approval_id=payload.get("approval_id"),
        worker_id=payload.get("worker_id"),
        status=payload.get("status"),
    )


def handle_timesheet_reviewed(row: EventOutbox, db: Session) -> None:
    payload = _payload(row)
    _notify(row, "worker", record_id=payload.get("record_id"), worker_id=payload.get("worker_id"))


def default_handlers():
    return {
        events.SHIFT_INVITE_CREATED: handle_shift_invite_created,
        events.SHIFT_INVITE_ACCEPTED: handle_shift_invite_accepted,
        events.TIME_CLOCKED_OUT: handle_time_clocked_out,
        events.MANUAL_ENTRY_SUBMITTED: handle_manual_entry_submitted,
        events.TIME_APPROVAL_RESOLVED: handle_time_approval_resolved,
        events.TIMESHEET_APPROVED: handle_timesheet_reviewed,
        events.TIMESHEET_EDIT_REQUESTED: handle_timesheet_reviewed,
    }
