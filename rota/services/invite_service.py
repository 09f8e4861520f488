import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rota.core.errors import Conflict, InvalidRequest, InviteNotPending, NotFound, ShiftNotOpen, SlotFilled
from rota.core.policy import invite_ttl
from rota.database import session_scope
from rota.models.shift import Shift
from rota.models.shift_allocation import ShiftAllocation
from rota.models.shift_invite import TERMINAL_INVITE_STATUSES, ShiftInvite
from rota.services import allocation_service, events
from rota.services.shift_service import get_shift, open_slots
from rota.services.time_rules import as_utc

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_LENGTH = 16


@dataclass(frozen=True)
class InviteView:
    invite: ShiftInvite
    shift: Shift
    effective_status: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_invite_code() -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(_CODE_LENGTH))


def is_expired(invite: ShiftInvite, now: datetime) -> bool:
    return invite.expires_at is not None and as_utc(invite.expires_at) <= as_utc(now)


def effective_status(invite: ShiftInvite, shift: Shift, now: datetime) -> str:
    """
    What a pending invite means right now. Stored status wins once terminal;
    a pending invite reads as expired, cancelled (shift withdrawn) or filled
    (no open slots left) so race losers see a clear outcome before they try.
    """
    if invite.status != "pending":
        return invite.status
    if is_expired(invite, now):
        return "expired"
    if shift.status == "cancelled":
        return "cancelled"
    if open_slots(shift) <= 0:
        return "filled"
    return "pending"


def _load_invite(db: Session, company_id: int, invite_id: int, *, for_update: bool = False) -> ShiftInvite:
    q = db.query(ShiftInvite).filter(
        ShiftInvite.id == int(invite_id),
        ShiftInvite.company_id == int(company_id),
    )
    if for_update:
        q = q.with_for_update()
    invite = q.first()
    if invite is None:
        raise NotFound("Invite not found")
    return invite


def create_invites(
    company_id: int,
    shift_id: int,
    worker_ids: Iterable[int],
    invited_by: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> List[ShiftInvite]:
    worker_ids = [int(w) for w in worker_ids]
    if not worker_ids:
        raise InvalidRequest("worker_ids must be a non-empty list")
    if len(set(worker_ids)) != len(worker_ids):
        raise InvalidRequest("worker_ids contains duplicates")

    now = as_utc(now or _utcnow())
    expires_at = now + invite_ttl()

    with session_scope(db) as s:
        shift = get_shift(s, company_id, shift_id)
        if shift.status != "published":
            raise ShiftNotOpen("Invites can only be sent for published shifts")

        already_invited = {
            row.worker_id
            for row in s.query(ShiftInvite.worker_id).filter(
                ShiftInvite.shift_id == shift.id,
                ShiftInvite.worker_id.in_(worker_ids),
                ShiftInvite.status == "pending",
            )
        }
        already_allocated = {
            row.worker_id
            for row in s.query(ShiftAllocation.worker_id).filter(
                ShiftAllocation.shift_id == shift.id,
                ShiftAllocation.worker_id.in_(worker_ids),
                ShiftAllocation.status != "cancelled",
            )
        }
        clashing = sorted(already_invited | already_allocated)
        if clashing:
            raise Conflict(
                "One or more of these workers were already invited to or allocated on this shift",
                worker_ids=clashing,
            )

        invites = []
        for worker_id in worker_ids:
            invite = ShiftInvite(
                company_id=shift.company_id,
                shift_id=shift.id,
                worker_id=worker_id,
                status="pending",
                invite_code=generate_invite_code(),
                invited_by=invited_by,
                invited_at=now,
                expires_at=expires_at,
            )
            s.add(invite)
            invites.append(invite)

        try:
            s.flush()
        except IntegrityError as exc:
            raise Conflict("One or more of these workers were already invited to this shift") from exc

        for invite in invites:
            events.enqueue_event(
                s,
                company_id=invite.company_id,
                event_type=events.SHIFT_INVITE_CREATED,
                idempotency_key=f"shift_invite:{invite.id}:created",
                payload={"invite_id": invite.id, "shift_id": shift.id, "worker_id": invite.worker_id},
            )

        logger.info(
            "Shift invites created",
            extra={"shift_id": shift.id, "count": len(invites)},
        )
        return invites


def accept_invite(
    company_id: int,
    invite_id: int,
    worker_id: int,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> ShiftAllocation:
    """
    Claim a slot through an invite. Everything below commits or rolls back as
    one unit: the slot counter increment, the invite transition and the new
    allocation. When several invitees race for the last slot the first commit
    wins and every other caller gets SlotFilled.
    """
    now = as_utc(now or _utcnow())

    with session_scope(db) as s:
        invite = _load_invite(s, company_id, invite_id, for_update=True)
        if invite.worker_id != int(worker_id):
            raise NotFound("Invite not found")

        if invite.status != "pending":
            raise InviteNotPending(current_status=invite.status)
        if is_expired(invite, now):
            raise InviteNotPending("This invite has expired", current_status="expired")

        shift = s.query(Shift).filter(Shift.id == invite.shift_id).first()
        if shift is None:
            raise NotFound("Shift not found")
        if shift.status != "published":
            raise ShiftNotOpen()

        if allocation_service.get_live_allocation(s, shift.id, invite.worker_id) is not None:
            raise Conflict("Worker is already allocated to this shift")

        try:
            allocation_service.claim_slot(s, shift.id)
        except SlotFilled:
            logger.info(
                "Invite accept lost slot race",
                extra={"invite_id": invite.id, "shift_id": shift.id, "worker_id": invite.worker_id},
            )
            raise

        transitioned = (
            s.query(ShiftInvite)
            .filter(ShiftInvite.id == invite.id, ShiftInvite.status == "pending")
            .update(
                {ShiftInvite.status: "accepted", ShiftInvite.responded_at: now},
                synchronize_session=False,
            )
        )
        if transitioned != 1:
            raise InviteNotPending()
        s.refresh(invite)

        allocation = allocation_service.insert_allocation(
            s,
            shift=shift,
            worker_id=invite.worker_id,
            allocation_type="accepted",
            allocated_by=invite.invited_by,
            invite_id=invite.id,
            now=now,
        )

        events.enqueue_event(
            s,
            company_id=invite.company_id,
            event_type=events.SHIFT_INVITE_ACCEPTED,
            idempotency_key=f"shift_invite:{invite.id}:accepted",
            payload={
                "invite_id": invite.id,
                "shift_id": shift.id,
                "worker_id": invite.worker_id,
                "allocation_id": allocation.id,
                "invited_by": invite.invited_by,
            },
        )

        logger.info(
            "Invite accepted",
            extra={"invite_id": invite.id, "shift_id": shift.id, "allocation_id": allocation.id},
        )
        return allocation


def _resolve(
    company_id: int,
    invite_id: int,
    status: str,
    *,
    worker_id: Optional[int],
    now: Optional[datetime],
    db: Optional[Session],
) -> ShiftInvite:
    now = as_utc(now or _utcnow())

    with session_scope(db) as s:
        invite = _load_invite(s, company_id, invite_id, for_update=True)
        if worker_id is not None and invite.worker_id != int(worker_id):
            raise NotFound("Invite not found")

        if invite.status in TERMINAL_INVITE_STATUSES:
            return invite

        (
            s.query(ShiftInvite)
            .filter(ShiftInvite.id == invite.id, ShiftInvite.status == "pending")
            .update({ShiftInvite.status: status, ShiftInvite.responded_at: now}, synchronize_session=False)
        )
        s.refresh(invite)

        logger.info("Invite resolved", extra={"invite_id": invite.id, "status": invite.status})
        return invite


def decline_invite(
    company_id: int,
    invite_id: int,
    worker_id: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> ShiftInvite:
    return _resolve(company_id, invite_id, "declined", worker_id=worker_id, now=now, db=db)


def cancel_invite(
    company_id: int,
    invite_id: int,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> ShiftInvite:
    return _resolve(company_id, invite_id, "cancelled", worker_id=None, now=now, db=db)


def get_invite(company_id: int, invite_id: int, *, db: Optional[Session] = None) -> ShiftInvite:
    with session_scope(db) as s:
        return _load_invite(s, company_id, invite_id)


def get_invite_by_code(
    company_id: int,
    code: str,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> InviteView:
    raw = (code or "").strip().upper()
    if not raw:
        raise InvalidRequest("Missing invite code")

    now = as_utc(now or _utcnow())
    with session_scope(db) as s:
        row = (
            s.query(ShiftInvite, Shift)
            .join(Shift, Shift.id == ShiftInvite.shift_id)
            .filter(ShiftInvite.invite_code == raw, ShiftInvite.company_id == int(company_id))
            .first()
        )
        if row is None:
            raise NotFound("Invite not found or expired")
        invite, shift = row
        return InviteView(invite=invite, shift=shift, effective_status=effective_status(invite, shift, now))


def list_invites_for_shift(
    company_id: int,
    shift_id: int,
    *,
    status: Optional[str] = None,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> List[InviteView]:
    now = as_utc(now or _utcnow())
    with session_scope(db) as s:
        shift = get_shift(s, company_id, shift_id)
        q = s.query(ShiftInvite).filter(ShiftInvite.shift_id == shift.id)
        if status is not None:
            q = q.filter(ShiftInvite.status == str(status))
        rows = q.order_by(ShiftInvite.invited_at.desc(), ShiftInvite.id.desc()).all()
        return [InviteView(invite=r, shift=shift, effective_status=effective_status(r, shift, now)) for r in rows]


def _pending_for_worker_query(s: Session, company_id: int, worker_id: int, now: datetime):
    return (
        s.query(ShiftInvite, Shift)
        .join(Shift, Shift.id == ShiftInvite.shift_id)
        .filter(
            ShiftInvite.company_id == int(company_id),
            ShiftInvite.worker_id == int(worker_id),
            ShiftInvite.status == "pending",
            (ShiftInvite.expires_at.is_(None)) | (ShiftInvite.expires_at > now),
        )
    )


def list_pending_invites_for_worker(
    company_id: int,
    worker_id: int,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> List[InviteView]:
    now = as_utc(now or _utcnow())
    with session_scope(db) as s:
        rows = (
            _pending_for_worker_query(s, company_id, worker_id, now)
            .order_by(ShiftInvite.invited_at.desc(), ShiftInvite.id.desc())
            .all()
        )
        views = [InviteView(invite=i, shift=sh, effective_status=effective_status(i, sh, now)) for i, sh in rows]
        # Rows can slip through the SQL expiry filter on naive-timestamp stores.
        return [v for v in views if v.effective_status != "expired"]


def count_pending_invites_for_worker(
    company_id: int,
    worker_id: int,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> int:
    return len(list_pending_invites_for_worker(company_id, worker_id, now=now, db=db))


def expire_stale_invites(
    *,
    company_id: Optional[int] = None,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> int:
    now = as_utc(now or _utcnow())
    with session_scope(db) as s:
        q = s.query(ShiftInvite).filter(
            ShiftInvite.status == "pending",
            ShiftInvite.expires_at.isnot(None),
            ShiftInvite.expires_at <= now,
        )
        if company_id is not None:
            q = q.filter(ShiftInvite.company_id == int(company_id))
        expired = q.update(
            {ShiftInvite.status: "expired", ShiftInvite.responded_at: now},
            synchronize_session=False,
        )
        if expired:
            logger.info("Stale invites expired", extra={"count": int(expired)})
        return int(expired)
