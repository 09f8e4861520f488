"""
Manager review of captured time.

Two queues feed this module: manual submissions (a ShiftTimeApproval in
'pending' backed by a record whose manual_entry_status is 'pending') and
standard end-of-shift timesheets (a clocked-out record still 'pending').

Every resolution is a guarded UPDATE ... WHERE status = 'pending'. A retried
or concurrent call finds zero rows and fails AlreadyResolved with the status
the winner left behind, so record side effects and outbox events are applied
once.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from rota.core.errors import (
    AlreadyPending,
    AlreadyResolved,
    InvalidRange,
    InvalidRequest,
    NotClockedOut,
    NotesRequired,
    NotFound,
    RecordNotFound,
)
from rota.database import session_scope
from rota.models.shift_time_approval import ShiftTimeApproval
from rota.models.timekeeping_record import TimekeepingRecord
from rota.services import allocation_service, events, time_rules

logger = logging.getLogger(__name__)

APPROVAL_ACTIONS = ("approve", "reject", "modify")


@dataclass(frozen=True)
class PendingApproval:
    approval: ShiftTimeApproval
    record: TimekeepingRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean_notes(notes: Optional[str]) -> Optional[str]:
    return (notes or "").strip() or None


def _load_approval(db: Session, company_id: int, approval_id: str) -> ShiftTimeApproval:
    approval = (
        db.query(ShiftTimeApproval)
        .filter(
            ShiftTimeApproval.id == str(approval_id),
            ShiftTimeApproval.company_id == int(company_id),
        )
        .with_for_update()
        .first()
    )
    if approval is None:
        raise NotFound("Approval not found")
    return approval


def _load_record(db: Session, company_id: int, record_id: str) -> TimekeepingRecord:
    record = (
        db.query(TimekeepingRecord)
        .filter(
            TimekeepingRecord.id == str(record_id),
            TimekeepingRecord.company_id == int(company_id),
        )
        .with_for_update()
        .first()
    )
    if record is None:
        raise RecordNotFound()
    return record


def _close_approval(
    db: Session,
    approval: ShiftTimeApproval,
    *,
    status: str,
    manager_id: Optional[str],
    notes: Optional[str],
    actual_start: Optional[datetime],
    actual_end: Optional[datetime],
    now: datetime,
) -> None:
    if approval.status != "pending":
        raise AlreadyResolved(current_status=approval.status)

    updated = (
        db.query(ShiftTimeApproval)
        .filter(ShiftTimeApproval.id == approval.id, ShiftTimeApproval.status == "pending")
        .update(
            {
                ShiftTimeApproval.status: status,
                ShiftTimeApproval.actual_start: actual_start,
                ShiftTimeApproval.actual_end: actual_end,
                ShiftTimeApproval.manager_notes: notes,
                ShiftTimeApproval.reviewed_by: manager_id,
                ShiftTimeApproval.reviewed_at: now,
            },
            synchronize_session=False,
        )
    )
    db.refresh(approval)
    if updated != 1:
        raise AlreadyResolved(current_status=approval.status)


def _resolve(
    company_id: int,
    approval_id: str,
    *,
    status: str,
    manager_id: Optional[str],
    notes: Optional[str],
    actual_start: Optional[datetime],
    actual_end: Optional[datetime],
    now: Optional[datetime],
    db: Optional[Session],
) -> ShiftTimeApproval:
    now = time_rules.as_utc(now or _utcnow())

    with session_scope(db) as s:
        approval = _load_approval(s, company_id, approval_id)
        _close_approval(
            s,
            approval,
            status=status,
            manager_id=manager_id,
            notes=notes,
            actual_start=actual_start,
            actual_end=actual_end,
            now=now,
        )

        record = _load_record(s, approval.company_id, approval.timekeeping_record_id)
        if notes is not None:
            record.notes = notes

        if status == "rejected" and record.clock_in is not None:
            # Only the proposed correction is refused. The clocked times stand
            # and the record goes back to the timesheet queue.
            record.manual_entry_status = "auto_clocked"
            record.status = "pending"
            if record.clock_out is not None:
                record.total_hours = time_rules.hours_between(record.clock_in, record.clock_out)
        elif status == "rejected":
            record.manual_entry_status = "rejected"
            record.approved_by = manager_id
            record.approved_at = now
            record.status = "rejected"
            record.total_hours = None
        else:
            record.manual_entry_status = status
            record.approved_by = manager_id
            record.approved_at = now
            record.clock_in = actual_start
            record.clock_out = actual_end
            record.status = "approved"
            record.total_hours = time_rules.hours_between(actual_start, actual_end)
            allocation_service.set_allocation_status(s, record.shift_id, record.worker_id, "completed")
        s.flush()

        events.enqueue_event(
            s,
            company_id=approval.company_id,
            event_type=events.TIME_APPROVAL_RESOLVED,
            idempotency_key=f"shift_time_approval:{approval.id}:resolved",
            payload={
                "approval_id": approval.id,
                "record_id": record.id,
                "shift_id": record.shift_id,
                "worker_id": record.worker_id,
                "status": status,
                "total_hours": record.total_hours,
                "manager_notes": notes,
            },
        )

        logger.info(
            "Time approval resolved",
            extra={"approval_id": approval.id, "record_id": record.id, "status": status},
        )
        return approval


def approve(
    company_id: int,
    approval_id: str,
    manager_id: Optional[str],
    notes: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> ShiftTimeApproval:
    """Accept the worker's requested times as submitted."""
    with session_scope(db) as s:
        approval = _load_approval(s, company_id, approval_id)
        return _resolve(
            company_id,
            approval.id,
            status="approved",
            manager_id=manager_id,
            notes=_clean_notes(notes),
            actual_start=time_rules.as_utc(approval.requested_start),
            actual_end=time_rules.as_utc(approval.requested_end),
            now=now,
            db=s,
        )


def reject(
    company_id: int,
    approval_id: str,
    manager_id: Optional[str],
    notes: Optional[str],
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> ShiftTimeApproval:
    notes = _clean_notes(notes)
    if notes is None:
        raise NotesRequired("Please explain why these times are being rejected")
    return _resolve(
        company_id,
        approval_id,
        status="rejected",
        manager_id=manager_id,
        notes=notes,
        actual_start=None,
        actual_end=None,
        now=now,
        db=db,
    )


def modify(
    company_id: int,
    approval_id: str,
    manager_id: Optional[str],
    actual_start: datetime,
    actual_end: datetime,
    notes: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> ShiftTimeApproval:
    """Approve with manager-corrected times in place of the requested ones."""
    actual_start = time_rules.as_utc(actual_start)
    actual_end = time_rules.as_utc(actual_end)
    if actual_end <= actual_start:
        raise InvalidRange()
    return _resolve(
        company_id,
        approval_id,
        status="modified",
        manager_id=manager_id,
        notes=_clean_notes(notes),
        actual_start=actual_start,
        actual_end=actual_end,
        now=now,
        db=db,
    )


def process_time_approval(
    company_id: int,
    approval_id: str,
    action: str,
    manager_id: Optional[str],
    *,
    notes: Optional[str] = None,
    actual_start: Optional[datetime] = None,
    actual_end: Optional[datetime] = None,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> ShiftTimeApproval:
    if action == "approve":
        return approve(company_id, approval_id, manager_id, notes, now=now, db=db)
    if action == "reject":
        return reject(company_id, approval_id, manager_id, notes, now=now, db=db)
    if action == "modify":
        if actual_start is None or actual_end is None:
            raise InvalidRequest("actual_start and actual_end are required to modify times")
        return modify(company_id, approval_id, manager_id, actual_start, actual_end, notes, now=now, db=db)
    raise InvalidRequest(f"Unknown action: {action}. Expected one of {', '.join(APPROVAL_ACTIONS)}")


def review_manual_entry(
    company_id: int,
    record_id: str,
    action: str,
    manager_id: Optional[str],
    *,
    notes: Optional[str] = None,
    actual_start: Optional[datetime] = None,
    actual_end: Optional[datetime] = None,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> ShiftTimeApproval:
    """Resolve a manual submission addressed by its timekeeping record."""
    with session_scope(db) as s:
        record = _load_record(s, company_id, record_id)
        approval = (
            s.query(ShiftTimeApproval)
            .filter(
                ShiftTimeApproval.timekeeping_record_id == record.id,
                ShiftTimeApproval.status == "pending",
            )
            .first()
        )
        if approval is None:
            raise AlreadyResolved(current_status=record.manual_entry_status)

        return process_time_approval(
            company_id,
            approval.id,
            action,
            manager_id,
            notes=notes,
            actual_start=actual_start,
            actual_end=actual_end,
            now=now,
            db=s,
        )


def _check_timesheet_reviewable(record: TimekeepingRecord) -> None:
    if record.clock_out is None:
        raise NotClockedOut()
    if record.manual_entry_status == "pending":
        raise AlreadyPending("A time correction for this shift is awaiting approval")
    if record.status != "pending":
        raise AlreadyResolved(current_status=record.status)


def _set_timesheet_status(db: Session, record: TimekeepingRecord, values: dict) -> None:
    updated = (
        db.query(TimekeepingRecord)
        .filter(
            TimekeepingRecord.id == record.id,
            TimekeepingRecord.status == "pending",
            TimekeepingRecord.clock_out.isnot(None),
        )
        .update(values, synchronize_session=False)
    )
    db.refresh(record)
    if updated != 1:
        raise AlreadyResolved(current_status=record.status)


def approve_timesheet(
    company_id: int,
    record_id: str,
    manager_id: Optional[str],
    notes: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> TimekeepingRecord:
    now = time_rules.as_utc(now or _utcnow())
    notes = _clean_notes(notes)

    with session_scope(db) as s:
        record = _load_record(s, company_id, record_id)
        _check_timesheet_reviewable(record)

        values = {
            TimekeepingRecord.status: "approved",
            TimekeepingRecord.approved_by: manager_id,
            TimekeepingRecord.approved_at: now,
        }
        if notes is not None:
            values[TimekeepingRecord.notes] = notes
        _set_timesheet_status(s, record, values)

        events.enqueue_event(
            s,
            company_id=record.company_id,
            event_type=events.TIMESHEET_APPROVED,
            idempotency_key=f"timekeeping_record:{record.id}:approved",
            payload={
                "record_id": record.id,
                "shift_id": record.shift_id,
                "worker_id": record.worker_id,
                "total_hours": record.total_hours,
            },
        )

        logger.info("Timesheet approved", extra={"record_id": record.id, "approved_by": manager_id})
        return record


def request_timesheet_edit(
    company_id: int,
    record_id: str,
    manager_id: Optional[str],
    notes: Optional[str],
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> TimekeepingRecord:
    notes = _clean_notes(notes)
    if notes is None:
        raise NotesRequired("Please tell the worker what needs to change")
    now = time_rules.as_utc(now or _utcnow())

    with session_scope(db) as s:
        record = _load_record(s, company_id, record_id)
        _check_timesheet_reviewable(record)

        _set_timesheet_status(
            s,
            record,
            {
                TimekeepingRecord.status: "disputed",
                TimekeepingRecord.notes: notes,
                TimekeepingRecord.approved_by: manager_id,
                TimekeepingRecord.approved_at: now,
            },
        )

        events.enqueue_event(
            s,
            company_id=record.company_id,
            event_type=events.TIMESHEET_EDIT_REQUESTED,
            idempotency_key=f"timekeeping_record:{record.id}:edit_requested",
            payload={
                "record_id": record.id,
                "shift_id": record.shift_id,
                "worker_id": record.worker_id,
                "notes": notes,
            },
        )

        logger.info("Timesheet edit requested", extra={"record_id": record.id, "requested_by": manager_id})
        return record


def list_pending_approvals(
    company_id: int,
    venue_id: Optional[int] = None,
    *,
    limit: int = 100,
    offset: int = 0,
    db: Optional[Session] = None,
) -> List[PendingApproval]:
    with session_scope(db) as s:
        q = (
            s.query(ShiftTimeApproval, TimekeepingRecord)
            .join(TimekeepingRecord, TimekeepingRecord.id == ShiftTimeApproval.timekeeping_record_id)
            .filter(
                ShiftTimeApproval.company_id == int(company_id),
                ShiftTimeApproval.status == "pending",
            )
        )
        if venue_id is not None:
            q = q.filter(TimekeepingRecord.venue_id == int(venue_id))

        rows = (
            q.order_by(ShiftTimeApproval.created_at.asc(), ShiftTimeApproval.id.asc())
            .offset(int(offset))
            .limit(int(limit))
            .all()
        )
        return [PendingApproval(approval=a, record=r) for a, r in rows]


def list_pending_manual_submissions(
    company_id: int,
    venue_id: Optional[int] = None,
    worker_id: Optional[int] = None,
    *,
    db: Optional[Session] = None,
) -> List[TimekeepingRecord]:
    with session_scope(db) as s:
        q = s.query(TimekeepingRecord).filter(
            TimekeepingRecord.company_id == int(company_id),
            TimekeepingRecord.manual_entry_status == "pending",
        )
        if venue_id is not None:
            q = q.filter(TimekeepingRecord.venue_id == int(venue_id))
        if worker_id is not None:
            q = q.filter(TimekeepingRecord.worker_id == int(worker_id))
        return q.order_by(TimekeepingRecord.submitted_at.asc()).all()


def list_pending_timesheets(
    company_id: int,
    venue_id: Optional[int] = None,
    worker_id: Optional[int] = None,
    *,
    limit: int = 100,
    offset: int = 0,
    db: Optional[Session] = None,
) -> List[TimekeepingRecord]:
    with session_scope(db) as s:
        q = s.query(TimekeepingRecord).filter(
            TimekeepingRecord.company_id == int(company_id),
            TimekeepingRecord.status == "pending",
            TimekeepingRecord.clock_out.isnot(None),
            TimekeepingRecord.manual_entry_status != "pending",
        )
        if venue_id is not None:
            q = q.filter(TimekeepingRecord.venue_id == int(venue_id))
        if worker_id is not None:
            q = q.filter(TimekeepingRecord.worker_id == int(worker_id))
        return (
            q.order_by(TimekeepingRecord.clock_out.asc(), TimekeepingRecord.id.asc())
            .offset(int(offset))
            .limit(int(limit))
            .all()
        )
