from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from rota.core.authorization import Role, require_role
from rota.core.errors import RotaError, to_http_exception
from rota.database import SessionLocal
from rota.schemas.approval import ApprovalActionRequest, ApprovalResponse, PendingApprovalResponse
from rota.schemas.timekeeping import TimekeepingRecordResponse
from rota.services import approval_service

router = APIRouter(prefix="/approvals", tags=["Approvals"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/pending", response_model=List[PendingApprovalResponse])
def list_pending_approvals_endpoint(
    request: Request,
    venue_id: Optional[int] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        items = approval_service.list_pending_approvals(
            int(request.state.company_id),
            venue_id,
            limit=limit,
            offset=offset,
            db=db,
        )
        return [
            PendingApprovalResponse(
                approval=ApprovalResponse.model_validate(i.approval),
                record=TimekeepingRecordResponse.model_validate(i.record),
            )
            for i in items
        ]
    finally:
        db.close()


@router.get("/manual/pending", response_model=List[TimekeepingRecordResponse])
def list_pending_manual_endpoint(
    request: Request,
    venue_id: Optional[int] = None,
    worker_id: Optional[int] = None,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        return approval_service.list_pending_manual_submissions(
            int(request.state.company_id), venue_id, worker_id, db=db
        )
    finally:
        db.close()


@router.post("/{approval_id}/process", response_model=ApprovalResponse)
def process_approval_endpoint(
    approval_id: str,
    payload: ApprovalActionRequest,
    request: Request,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        approval = approval_service.process_time_approval(
            int(request.state.company_id),
            approval_id,
            payload.action,
            request.state.user_id,
            notes=payload.notes,
            actual_start=payload.actual_start,
            actual_end=payload.actual_end,
            now=_utcnow(),
            db=db,
        )
        db.commit()
        return approval
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/records/{record_id}/review", response_model=ApprovalResponse)
def review_manual_entry_endpoint(
    record_id: str,
    payload: ApprovalActionRequest,
    request: Request,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        approval = approval_service.review_manual_entry(
            int(request.state.company_id),
            record_id,
            payload.action,
            request.state.user_id,
            notes=payload.notes,
            actual_start=payload.actual_start,
            actual_end=payload.actual_end,
            now=_utcnow(),
            db=db,
        )
        db.commit()
        return approval
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
