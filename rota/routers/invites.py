from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Request

from rota.core.authorization import Role, require_role
from rota.core.errors import RotaError, to_http_exception
from rota.database import SessionLocal
from rota.deps.auth import resolve_worker_id
from rota.schemas.invite import (
    InviteAcceptRequest,
    InviteAcceptResponse,
    InviteCreate,
    InviteDetailResponse,
    InviteResponse,
)
from rota.schemas.shift import AllocationResponse, ShiftResponse
from rota.services import invite_service, shift_service
from rota.services.invite_service import InviteView

router = APIRouter(prefix="/shift_invites", tags=["Shift Invites"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_detail(view: InviteView) -> InviteDetailResponse:
    shift = ShiftResponse.model_validate(view.shift)
    shift.open_slots = shift_service.open_slots(view.shift)
    return InviteDetailResponse(
        invite=InviteResponse.model_validate(view.invite),
        shift=shift,
        effective_status=view.effective_status,
    )


@router.post("", response_model=List[InviteResponse])
def create_invites_endpoint(
    payload: InviteCreate,
    request: Request,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        invites = invite_service.create_invites(
            int(request.state.company_id),
            payload.shift_id,
            payload.worker_ids,
            invited_by=request.state.user_id,
            now=_utcnow(),
            db=db,
        )
        db.commit()
        return invites
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.get("", response_model=List[InviteDetailResponse])
def list_invites_endpoint(
    shift_id: int,
    request: Request,
    status: Optional[str] = None,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        views = invite_service.list_invites_for_shift(
            int(request.state.company_id),
            shift_id,
            status=status,
            now=_utcnow(),
            db=db,
        )
        return [_to_detail(v) for v in views]
    except RotaError as exc:
        raise to_http_exception(exc) from exc
    finally:
        db.close()


@router.get("/mine", response_model=List[InviteDetailResponse])
def list_my_invites_endpoint(
    request: Request,
    worker_id: Optional[int] = None,
    _role=Depends(require_role(Role.EMPLOYEE)),
):
    worker = resolve_worker_id(request, worker_id)
    db = SessionLocal()
    try:
        views = invite_service.list_pending_invites_for_worker(
            int(request.state.company_id),
            worker,
            now=_utcnow(),
            db=db,
        )
        return [_to_detail(v) for v in views]
    finally:
        db.close()


@router.get("/mine/count")
def count_my_invites_endpoint(
    request: Request,
    worker_id: Optional[int] = None,
    _role=Depends(require_role(Role.EMPLOYEE)),
):
    worker = resolve_worker_id(request, worker_id)
    db = SessionLocal()
    try:
        pending = invite_service.count_pending_invites_for_worker(
            int(request.state.company_id),
            worker,
            now=_utcnow(),
            db=db,
        )
        return {"worker_id": worker, "pending": pending}
    finally:
        db.close()


@router.get("/code/{code}", response_model=InviteDetailResponse)
def get_invite_by_code_endpoint(
    code: str,
    request: Request,
    _role=Depends(require_role(Role.EMPLOYEE)),
):
    db = SessionLocal()
    try:
        view = invite_service.get_invite_by_code(int(request.state.company_id), code, now=_utcnow(), db=db)
        return _to_detail(view)
    except RotaError as exc:
        raise to_http_exception(exc) from exc
    finally:
        db.close()


@router.post("/{invite_id}/accept", response_model=InviteAcceptResponse)
def accept_invite_endpoint(
    invite_id: int,
    request: Request,
    payload: Optional[InviteAcceptRequest] = None,
    _role=Depends(require_role(Role.EMPLOYEE)),
):
    worker = resolve_worker_id(request, payload.worker_id if payload else None)
    company_id = int(request.state.company_id)

    db = SessionLocal()
    try:
        allocation = invite_service.accept_invite(company_id, invite_id, worker, now=_utcnow(), db=db)
        db.commit()
        invite = invite_service.get_invite(company_id, invite_id, db=db)
        return InviteAcceptResponse(
            invite=InviteResponse.model_validate(invite),
            allocation=AllocationResponse.model_validate(allocation),
        )
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/{invite_id}/decline", response_model=InviteResponse)
def decline_invite_endpoint(
    invite_id: int,
    request: Request,
    payload: Optional[InviteAcceptRequest] = None,
    _role=Depends(require_role(Role.EMPLOYEE)),
):
    worker = resolve_worker_id(request, payload.worker_id if payload else None)

    db = SessionLocal()
    try:
        invite = invite_service.decline_invite(
            int(request.state.company_id), invite_id, worker, now=_utcnow(), db=db
        )
        db.commit()
        return invite
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/{invite_id}/cancel", response_model=InviteResponse)
def cancel_invite_endpoint(
    invite_id: int,
    request: Request,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        invite = invite_service.cancel_invite(int(request.state.company_id), invite_id, now=_utcnow(), db=db)
        db.commit()
        return invite
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/expire")
def expire_stale_invites_endpoint(
    request: Request,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        expired = invite_service.expire_stale_invites(
            company_id=int(request.state.company_id),
            now=_utcnow(),
            db=db,
        )
        db.commit()
        return {"expired": expired}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
