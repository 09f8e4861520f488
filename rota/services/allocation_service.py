import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rota.core.errors import Conflict, NotFound, ShiftNotOpen, SlotFilled
from rota.database import session_scope
from rota.models.shift import Shift
from rota.models.shift_allocation import ACTIVE_ALLOCATION_STATUSES, ShiftAllocation

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def claim_slot(db: Session, shift_id: int) -> None:
    """
    Atomically take one open slot on a published shift.

    The predicate is evaluated against the row as it stands once the row lock
    is held, so of two callers racing for the last slot exactly one update
    matches. Raises SlotFilled or ShiftNotOpen when no row was updated.
    """
    updated = (
        db.query(Shift)
        .filter(
            Shift.id == int(shift_id),
            Shift.status == "published",
            Shift.filled_count < Shift.headcount_needed,
        )
        .update({Shift.filled_count: Shift.filled_count + 1}, synchronize_session=False)
    )
    if updated == 1:
        return

    shift = db.query(Shift).populate_existing().filter(Shift.id == int(shift_id)).first()
    if shift is None:
        raise NotFound("Shift not found")
    if shift.status != "published":
        raise ShiftNotOpen()
    raise SlotFilled()


def release_slot(db: Session, shift_id: int) -> None:
    (
        db.query(Shift)
        .filter(Shift.id == int(shift_id), Shift.filled_count > 0)
        .update({Shift.filled_count: Shift.filled_count - 1}, synchronize_session=False)
    )


def get_live_allocation(
    db: Session,
    shift_id: int,
    worker_id: int,
    *,
    for_update: bool = False,
) -> Optional[ShiftAllocation]:
    """Any non-cancelled allocation, including completed ones."""
    q = db.query(ShiftAllocation).filter(
        ShiftAllocation.shift_id == int(shift_id),
        ShiftAllocation.worker_id == int(worker_id),
        ShiftAllocation.status != "cancelled",
    )
    if for_update:
        q = q.with_for_update()
    return q.first()


def insert_allocation(
    db: Session,
    *,
    shift: Shift,
    worker_id: int,
    allocation_type: str,
    allocated_by: Optional[str],
    invite_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ShiftAllocation:
    allocation = ShiftAllocation(
        company_id=shift.company_id,
        shift_id=shift.id,
        worker_id=int(worker_id),
        allocation_type=allocation_type,
        status="allocated",
        invite_id=invite_id,
        allocated_by=allocated_by,
        allocated_at=now or _utcnow(),
    )
    db.add(allocation)
    try:
        db.flush()
    except IntegrityError as exc:
        raise Conflict("Worker is already allocated to this shift") from exc
    return allocation


def set_allocation_status(db: Session, shift_id: int, worker_id: int, status: str) -> Optional[ShiftAllocation]:
    allocation = get_live_allocation(db, shift_id, worker_id)
    if allocation is None:
        return None
    if allocation.status != status:
        allocation.status = status
        db.flush()
    return allocation


def allocate_worker(
    company_id: int,
    shift_id: int,
    worker_id: int,
    allocated_by: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> ShiftAllocation:
    """Direct allocation by a manager. Competes for the same slots as invite accepts."""
    with session_scope(db) as s:
        shift = (
            s.query(Shift)
            .filter(Shift.id == int(shift_id), Shift.company_id == int(company_id))
            .first()
        )
        if shift is None:
            raise NotFound("Shift not found")

        if get_live_allocation(s, shift.id, worker_id) is not None:
            raise Conflict("Worker is already allocated to this shift")

        claim_slot(s, shift.id)
        allocation = insert_allocation(
            s,
            shift=shift,
            worker_id=worker_id,
            allocation_type="direct",
            allocated_by=allocated_by,
            now=now,
        )

        logger.info(
            "Worker allocated",
            extra={"shift_id": shift.id, "worker_id": int(worker_id), "allocation_id": allocation.id},
        )
        return allocation


def cancel_allocation(
    company_id: int,
    allocation_id: int,
    *,
    db: Optional[Session] = None,
) -> ShiftAllocation:
    with session_scope(db) as s:
        allocation = (
            s.query(ShiftAllocation)
            .filter(
                ShiftAllocation.id == int(allocation_id),
                ShiftAllocation.company_id == int(company_id),
            )
            .with_for_update()
            .first()
        )
        if allocation is None:
            raise NotFound("Allocation not found")

        if allocation.status == "cancelled":
            return allocation
        if allocation.status not in ("allocated", "confirmed"):
            raise Conflict("Allocation has already started and cannot be cancelled")

        allocation.status = "cancelled"
        release_slot(s, allocation.shift_id)
        s.flush()

        logger.info(
            "Allocation cancelled",
            extra={"allocation_id": allocation.id, "shift_id": allocation.shift_id},
        )
        return allocation


def list_allocations_for_shift(
    company_id: int,
    shift_id: int,
    *,
    include_cancelled: bool = False,
    db: Optional[Session] = None,
) -> List[ShiftAllocation]:
    with session_scope(db) as s:
        q = s.query(ShiftAllocation).filter(
            ShiftAllocation.company_id == int(company_id),
            ShiftAllocation.shift_id == int(shift_id),
        )
        if not include_cancelled:
            q = q.filter(ShiftAllocation.status != "cancelled")
        return q.order_by(ShiftAllocation.allocated_at.asc(), ShiftAllocation.id.asc()).all()


def list_worker_allocations(
    company_id: int,
    worker_id: int,
    *,
    db: Optional[Session] = None,
) -> List[ShiftAllocation]:
    with session_scope(db) as s:
        return (
            s.query(ShiftAllocation)
            .filter(
                ShiftAllocation.company_id == int(company_id),
                ShiftAllocation.worker_id == int(worker_id),
                ShiftAllocation.status.in_(ACTIVE_ALLOCATION_STATUSES),
            )
            .order_by(ShiftAllocation.allocated_at.desc())
            .all()
        )
