import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from rota.models.event_outbox import EventOutbox

logger = logging.getLogger(__name__)

SHIFT_INVITE_CREATED = "SHIFT_INVITE_CREATED"
SHIFT_INVITE_ACCEPTED = "SHIFT_INVITE_ACCEPTED"
TIME_CLOCKED_OUT = "TIME_CLOCKED_OUT"
MANUAL_ENTRY_SUBMITTED = "MANUAL_ENTRY_SUBMITTED"
TIME_APPROVAL_RESOLVED = "TIME_APPROVAL_RESOLVED"
TIMESHEET_APPROVED = "TIMESHEET_APPROVED"
TIMESHEET_EDIT_REQUESTED = "TIMESHEET_EDIT_REQUESTED"


def enqueue_event(
    db: Session,
    *,
    company_id: int,
    event_type: str,
    idempotency_key: str,
    payload: Dict[str, Any],
) -> EventOutbox:
    """
    Write an outbox row in the caller's transaction. The row only becomes
    visible to the dispatcher if the state change it describes commits.
    """
    existing = (
        db.query(EventOutbox)
        .filter(
            EventOutbox.company_id == int(company_id),
            EventOutbox.event_type == event_type,
            EventOutbox.idempotency_key == idempotency_key,
        )
        .first()
    )
    if existing is not None:
        return existing

    row = EventOutbox(
        company_id=int(company_id),
        event_type=event_type,
        idempotency_key=idempotency_key,
        payload=payload,
        processed=False,
        retry_count=0,
    )
    db.add(row)
    db.flush()

    logger.info(
        "Outbox event enqueued",
        extra={"event_type": event_type, "idempotency_key": idempotency_key, "company_id": int(company_id)},
    )
    return row
