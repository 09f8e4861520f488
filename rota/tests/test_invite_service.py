from datetime import timedelta

import pytest

from rota.core.errors import Conflict, InvalidRequest, InviteNotPending, NotFound, ShiftNotOpen
from rota.database import SessionLocal
from rota.models.event_outbox import EventOutbox
from rota.models.shift import Shift
from rota.models.shift_allocation import ShiftAllocation
from rota.models.shift_invite import ShiftInvite
from rota.services import invite_service, shift_service
from rota.tests.helpers import utc

BEFORE_EXPIRY = utc(2026, 3, 2, 10)


def test_create_invites_issues_unique_codes_and_events(shift_factory, invite_factory):
    shift = shift_factory(headcount_needed=2)

    invites = invite_factory(shift, [101, 102, 103])

    assert [i.worker_id for i in invites] == [101, 102, 103]
    assert all(i.status == "pending" for i in invites)
    codes = {i.invite_code for i in invites}
    assert len(codes) == 3
    assert all(len(c) == 16 and c.isalnum() and c.upper() == c for c in codes)
    assert all(invite_service.is_expired(i, utc(2026, 3, 3, 12)) for i in invites)

    db = SessionLocal()
    try:
        events = db.query(EventOutbox).filter(EventOutbox.event_type == "SHIFT_INVITE_CREATED").all()
        assert len(events) == 3
        assert {e.payload["worker_id"] for e in events} == {101, 102, 103}
    finally:
        db.close()


def test_create_invites_requires_published_shift(shift_factory):
    draft = shift_factory(publish=False)
    with pytest.raises(ShiftNotOpen):
        invite_service.create_invites(draft.company_id, draft.id, [101])


def test_create_invites_rejects_empty_and_duplicate_lists(shift_factory):
    shift = shift_factory()
    with pytest.raises(InvalidRequest):
        invite_service.create_invites(shift.company_id, shift.id, [])
    with pytest.raises(InvalidRequest):
        invite_service.create_invites(shift.company_id, shift.id, [101, 101])


def test_second_pending_invite_for_same_worker_conflicts(shift_factory, invite_factory):
    shift = shift_factory(headcount_needed=3)
    invite_factory(shift, [101])

    with pytest.raises(Conflict) as exc:
        invite_factory(shift, [102, 101])
    assert exc.value.extra["worker_ids"] == [101]

    db = SessionLocal()
    try:
        assert db.query(ShiftInvite).count() == 1
    finally:
        db.close()


def test_invite_for_already_allocated_worker_conflicts(shift_factory, allocation_factory, invite_factory):
    shift = shift_factory(headcount_needed=2)
    allocation_factory(shift, 101)

    with pytest.raises(Conflict):
        invite_factory(shift, [101])


def test_accept_creates_allocation_and_fills_slot(shift_factory, invite_factory):
    shift = shift_factory(headcount_needed=2)
    (invite,) = invite_factory(shift, [101])

    allocation = invite_service.accept_invite(shift.company_id, invite.id, 101, now=BEFORE_EXPIRY)

    assert allocation.status == "allocated"
    assert allocation.allocation_type == "accepted"
    assert allocation.invite_id == invite.id

    db = SessionLocal()
    try:
        fresh_invite = db.get(ShiftInvite, invite.id)
        assert fresh_invite.status == "accepted"
        assert fresh_invite.responded_at is not None
        assert db.get(Shift, shift.id).filled_count == 1
        assert db.query(EventOutbox).filter(EventOutbox.event_type == "SHIFT_INVITE_ACCEPTED").count() == 1
    finally:
        db.close()


def test_accept_twice_reports_current_status(shift_factory, invite_factory):
    shift = shift_factory(headcount_needed=2)
    (invite,) = invite_factory(shift, [101])
    invite_service.accept_invite(shift.company_id, invite.id, 101, now=BEFORE_EXPIRY)

    with pytest.raises(InviteNotPending) as exc:
        invite_service.accept_invite(shift.company_id, invite.id, 101, now=BEFORE_EXPIRY)
    assert exc.value.extra["current_status"] == "accepted"


def test_accept_by_other_worker_is_not_found(shift_factory, invite_factory):
    shift = shift_factory()
    (invite,) = invite_factory(shift, [101])

    with pytest.raises(NotFound):
        invite_service.accept_invite(shift.company_id, invite.id, 999, now=BEFORE_EXPIRY)


def test_accept_from_other_company_is_not_found(shift_factory, invite_factory):
    shift = shift_factory(company_id=1)
    (invite,) = invite_factory(shift, [101])

    with pytest.raises(NotFound):
        invite_service.accept_invite(2, invite.id, 101, now=BEFORE_EXPIRY)


def test_accept_after_expiry_fails_and_leaves_slot_open(shift_factory, invite_factory):
    shift = shift_factory()
    (invite,) = invite_factory(shift, [101])

    with pytest.raises(InviteNotPending) as exc:
        invite_service.accept_invite(shift.company_id, invite.id, 101, now=utc(2026, 3, 4, 12))
    assert exc.value.extra["current_status"] == "expired"

    db = SessionLocal()
    try:
        assert db.get(Shift, shift.id).filled_count == 0
        assert db.query(ShiftAllocation).count() == 0
    finally:
        db.close()


def test_decline_is_idempotent(shift_factory, invite_factory):
    shift = shift_factory()
    (invite,) = invite_factory(shift, [101])

    first = invite_service.decline_invite(shift.company_id, invite.id, 101, now=BEFORE_EXPIRY)
    second = invite_service.decline_invite(
        shift.company_id, invite.id, 101, now=BEFORE_EXPIRY + timedelta(hours=1)
    )

    assert first.status == "declined"
    assert second.status == "declined"
    assert second.responded_at == first.responded_at


def test_decline_after_accept_keeps_accepted(shift_factory, invite_factory):
    shift = shift_factory()
    (invite,) = invite_factory(shift, [101])
    invite_service.accept_invite(shift.company_id, invite.id, 101, now=BEFORE_EXPIRY)

    resolved = invite_service.decline_invite(shift.company_id, invite.id, 101, now=BEFORE_EXPIRY)
    assert resolved.status == "accepted"


def test_cancelled_invite_cannot_be_accepted(shift_factory, invite_factory):
    shift = shift_factory()
    (invite,) = invite_factory(shift, [101])
    invite_service.cancel_invite(shift.company_id, invite.id, now=BEFORE_EXPIRY)

    with pytest.raises(InviteNotPending) as exc:
        invite_service.accept_invite(shift.company_id, invite.id, 101, now=BEFORE_EXPIRY)
    assert exc.value.extra["current_status"] == "cancelled"


def test_reinvite_allowed_after_decline(shift_factory, invite_factory):
    shift = shift_factory()
    (invite,) = invite_factory(shift, [101])
    invite_service.decline_invite(shift.company_id, invite.id, 101, now=BEFORE_EXPIRY)

    (again,) = invite_factory(shift, [101], now=BEFORE_EXPIRY)
    assert again.id != invite.id
    assert again.status == "pending"


def test_get_invite_by_code_reports_effective_status(shift_factory, invite_factory):
    shift = shift_factory(headcount_needed=1)
    first, second = invite_factory(shift, [101, 102])

    view = invite_service.get_invite_by_code(shift.company_id, second.invite_code.lower(), now=BEFORE_EXPIRY)
    assert view.invite.id == second.id
    assert view.effective_status == "pending"

    invite_service.accept_invite(shift.company_id, first.id, 101, now=BEFORE_EXPIRY)

    view = invite_service.get_invite_by_code(shift.company_id, second.invite_code, now=BEFORE_EXPIRY)
    assert view.invite.status == "pending"
    assert view.effective_status == "filled"

    view = invite_service.get_invite_by_code(shift.company_id, second.invite_code, now=utc(2026, 3, 5))
    assert view.effective_status == "expired"


def test_get_invite_by_unknown_code_is_not_found(shift_factory):
    shift = shift_factory()
    with pytest.raises(NotFound):
        invite_service.get_invite_by_code(shift.company_id, "NOPE0000NOPE0000", now=BEFORE_EXPIRY)


def test_pending_invites_for_worker_hide_expired(shift_factory, invite_factory):
    early = shift_factory()
    late = shift_factory()
    invite_factory(early, [101], now=utc(2026, 3, 1, 12))
    invite_factory(late, [101], now=utc(2026, 3, 3, 0))

    views = invite_service.list_pending_invites_for_worker(1, 101, now=utc(2026, 3, 4, 0))

    assert [v.shift.id for v in views] == [late.id]
    assert invite_service.count_pending_invites_for_worker(1, 101, now=utc(2026, 3, 4, 0)) == 1


def test_expire_stale_invites_marks_rows(shift_factory, invite_factory):
    shift = shift_factory(headcount_needed=2)
    invite_factory(shift, [101, 102])

    assert invite_service.expire_stale_invites(now=BEFORE_EXPIRY) == 0
    assert invite_service.expire_stale_invites(now=utc(2026, 3, 4)) == 2

    views = invite_service.list_invites_for_shift(shift.company_id, shift.id, now=utc(2026, 3, 4))
    assert {v.invite.status for v in views} == {"expired"}


def test_cancel_shift_cancels_pending_invites_and_allocations(shift_factory, invite_factory, allocation_factory):
    shift = shift_factory(headcount_needed=3)
    allocation_factory(shift, 201)
    invite_factory(shift, [101, 102])

    cancelled = shift_service.cancel_shift(shift.company_id, shift.id, now=BEFORE_EXPIRY)

    assert cancelled.status == "cancelled"
    assert cancelled.filled_count == 0
    views = invite_service.list_invites_for_shift(shift.company_id, shift.id, now=BEFORE_EXPIRY)
    assert {v.invite.status for v in views} == {"cancelled"}

    db = SessionLocal()
    try:
        assert {a.status for a in db.query(ShiftAllocation).all()} == {"cancelled"}
    finally:
        db.close()
