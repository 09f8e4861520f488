import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rota.core.errors import (
    AlreadyClockedIn,
    AlreadyClockedOut,
    AlreadyPending,
    AlreadyResolved,
    NotAllocated,
    RecordNotFound,
    ShiftNotToday,
)
from rota.core.policy import TimePolicy, load_time_policy
from rota.database import session_scope
from rota.models.shift import Shift
from rota.models.shift_allocation import ShiftAllocation
from rota.models.shift_time_approval import ShiftTimeApproval
from rota.models.timekeeping_record import TimekeepingRecord
from rota.services import allocation_service, events, time_rules
from rota.services.shift_service import get_shift, shift_bounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManualEntryResult:
    record_id: str
    approval_id: str


@dataclass(frozen=True)
class ClockContext:
    shift: Shift
    allocation: Optional[ShiftAllocation]
    record: Optional[TimekeepingRecord]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_open_record(db: Session, shift_id: int, worker_id: int) -> Optional[TimekeepingRecord]:
    return (
        db.query(TimekeepingRecord)
        .filter(
            TimekeepingRecord.shift_id == int(shift_id),
            TimekeepingRecord.worker_id == int(worker_id),
            TimekeepingRecord.clock_in.isnot(None),
            TimekeepingRecord.clock_out.is_(None),
        )
        .first()
    )


def _get_latest_record(
    db: Session,
    shift_id: int,
    worker_id: int,
    *,
    for_update: bool = False,
) -> Optional[TimekeepingRecord]:
    q = db.query(TimekeepingRecord).filter(
        TimekeepingRecord.shift_id == int(shift_id),
        TimekeepingRecord.worker_id == int(worker_id),
    )
    if for_update:
        q = q.with_for_update()
    return q.order_by(TimekeepingRecord.created_at.desc()).first()


def _has_pending_manual_entry(db: Session, shift_id: int, worker_id: int) -> bool:
    row = (
        db.query(TimekeepingRecord.id)
        .filter(
            TimekeepingRecord.shift_id == int(shift_id),
            TimekeepingRecord.worker_id == int(worker_id),
            TimekeepingRecord.manual_entry_status == "pending",
        )
        .first()
    )
    return row is not None


def clock_in_auto(
    company_id: int,
    shift_id: int,
    worker_id: int,
    location: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> TimekeepingRecord:
    """
    Same-day, pre-shift-end clock-in. No approval step: the record is
    auto-sourced and only its clock_out is still to come.
    """
    now = time_rules.as_utc(now or _utcnow())

    with session_scope(db) as s:
        shift = get_shift(s, company_id, shift_id)

        allocation = allocation_service.get_live_allocation(s, shift.id, worker_id)
        if allocation is None:
            raise NotAllocated()
        if allocation.status == "completed":
            raise AlreadyClockedOut()

        today = time_rules.local_date(now, shift.timezone)
        if shift.shift_date > today:
            raise ShiftNotToday("future")
        if shift.shift_date < today:
            raise ShiftNotToday("past")

        _, scheduled_end = shift_bounds(shift)
        if now >= scheduled_end:
            raise ShiftNotToday(
                "past",
                "This shift has already ended. Submit your times for approval instead",
            )

        if _has_pending_manual_entry(s, shift.id, worker_id):
            raise AlreadyPending("Your submitted times for this shift are awaiting approval")

        if _get_open_record(s, shift.id, worker_id) is not None:
            raise AlreadyClockedIn()

        record = TimekeepingRecord(
            id=str(uuid4()),
            company_id=shift.company_id,
            shift_id=shift.id,
            worker_id=int(worker_id),
            venue_id=shift.venue_id,
            clock_in=now,
            clock_out=None,
            clock_in_location=location,
            manual_entry_status="auto_clocked",
            status="pending",
            created_at=now,
        )
        s.add(record)
        try:
            s.flush()
        except IntegrityError as exc:
            # Concurrent clock-in for the same shift won the open-record index.
            raise AlreadyClockedIn() from exc

        allocation.status = "in_progress"
        s.flush()

        logger.info(
            "Clocked in",
            extra={"record_id": record.id, "shift_id": shift.id, "worker_id": int(worker_id)},
        )
        return record


def clock_out_auto(
    company_id: int,
    record_id: str,
    worker_id: int,
    location: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> TimekeepingRecord:
    now = time_rules.as_utc(now or _utcnow())

    with session_scope(db) as s:
        record = (
            s.query(TimekeepingRecord)
            .filter(
                TimekeepingRecord.id == str(record_id),
                TimekeepingRecord.company_id == int(company_id),
            )
            .with_for_update()
            .first()
        )
        if record is None or record.worker_id != int(worker_id):
            raise RecordNotFound()
        if record.clock_in is None:
            raise RecordNotFound("No clock-in recorded for this shift")
        if record.clock_out is not None:
            raise AlreadyClockedOut()
        if record.manual_entry_status == "pending":
            raise AlreadyPending("A time correction for this shift is awaiting approval")

        total_hours = time_rules.hours_between(record.clock_in, now)

        updated = (
            s.query(TimekeepingRecord)
            .filter(TimekeepingRecord.id == record.id, TimekeepingRecord.clock_out.is_(None))
            .update(
                {
                    TimekeepingRecord.clock_out: now,
                    TimekeepingRecord.clock_out_location: location,
                    TimekeepingRecord.total_hours: total_hours,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise AlreadyClockedOut()
        s.refresh(record)

        allocation_service.set_allocation_status(s, record.shift_id, record.worker_id, "completed")

        events.enqueue_event(
            s,
            company_id=record.company_id,
            event_type=events.TIME_CLOCKED_OUT,
            idempotency_key=f"timekeeping_record:{record.id}:clock_out",
            payload={
                "record_id": record.id,
                "shift_id": record.shift_id,
                "worker_id": record.worker_id,
                "venue_id": record.venue_id,
                "total_hours": record.total_hours,
            },
        )

        logger.info(
            "Clocked out",
            extra={"record_id": record.id, "total_hours": record.total_hours},
        )
        return record


def submit_manual_entry(
    company_id: int,
    shift_id: int,
    worker_id: int,
    requested_start: datetime,
    requested_end: datetime,
    reason: Optional[str] = None,
    *,
    policy: Optional[TimePolicy] = None,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> ManualEntryResult:
    """
    Worker-proposed start/end for a shift, parked for manager approval.

    The proposal is checked against the scheduled shift first (range,
    duration, window, reason) so a malformed proposal fails the same way
    regardless of the worker's allocation state. An existing record for the
    shift is turned into a correction request; otherwise a new manual record
    is opened. Either way exactly one pending ShiftTimeApproval backs it.
    """
    policy = policy or load_time_policy()
    now = time_rules.as_utc(now or _utcnow())
    requested_start = time_rules.as_utc(requested_start)
    requested_end = time_rules.as_utc(requested_end)
    reason = (reason or "").strip() or None

    with session_scope(db) as s:
        shift = get_shift(s, company_id, shift_id)
        scheduled_start, scheduled_end = shift_bounds(shift)

        time_rules.validate_manual_times(
            requested_start=requested_start,
            requested_end=requested_end,
            scheduled_start=scheduled_start,
            scheduled_end=scheduled_end,
            reason=reason,
            policy=policy,
        )

        # Submissions for one worker and shift queue up behind this row lock.
        if allocation_service.get_live_allocation(s, shift.id, worker_id, for_update=True) is None:
            raise NotAllocated()

        if shift.shift_date > time_rules.local_date(now, shift.timezone):
            raise ShiftNotToday("future", "Times cannot be submitted for future shifts")

        record = _get_latest_record(s, shift.id, worker_id, for_update=True)
        if record is not None:
            if record.manual_entry_status == "pending":
                raise AlreadyPending()
            if record.status == "approved":
                raise AlreadyResolved(
                    current_status=record.status,
                    message="Times for this shift have already been approved",
                )

        if record is None:
            record = TimekeepingRecord(
                id=str(uuid4()),
                company_id=shift.company_id,
                shift_id=shift.id,
                worker_id=int(worker_id),
                venue_id=shift.venue_id,
                clock_in=None,
                clock_out=None,
                created_at=now,
            )
            s.add(record)

        record.manual_entry_status = "pending"
        record.status = "pending"
        record.proposed_clock_in = requested_start
        record.proposed_clock_out = requested_end
        record.reason = reason
        record.submitted_at = now
        try:
            s.flush()
        except IntegrityError as exc:
            raise AlreadyPending() from exc

        approval = ShiftTimeApproval(
            id=str(uuid4()),
            company_id=shift.company_id,
            timekeeping_record_id=record.id,
            requested_start=requested_start,
            requested_end=requested_end,
            original_shift_start=scheduled_start,
            original_shift_end=scheduled_end,
            reason=reason,
            status="pending",
            created_at=now,
        )
        s.add(approval)
        try:
            s.flush()
        except IntegrityError as exc:
            raise AlreadyPending() from exc

        events.enqueue_event(
            s,
            company_id=shift.company_id,
            event_type=events.MANUAL_ENTRY_SUBMITTED,
            idempotency_key=f"shift_time_approval:{approval.id}:submitted",
            payload={
                "approval_id": approval.id,
                "record_id": record.id,
                "shift_id": shift.id,
                "venue_id": shift.venue_id,
                "worker_id": int(worker_id),
            },
        )

        logger.info(
            "Manual time entry submitted",
            extra={"record_id": record.id, "approval_id": approval.id, "shift_id": shift.id},
        )
        return ManualEntryResult(record_id=record.id, approval_id=approval.id)


def get_shift_for_clock(
    company_id: int,
    shift_id: int,
    worker_id: int,
    *,
    db: Optional[Session] = None,
) -> ClockContext:
    with session_scope(db) as s:
        shift = get_shift(s, company_id, shift_id)
        allocation = allocation_service.get_live_allocation(s, shift.id, worker_id)
        if allocation is None:
            raise NotAllocated()
        record = _get_latest_record(s, shift.id, worker_id)
        return ClockContext(shift=shift, allocation=allocation, record=record)
