from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Request

from rota.core.authorization import Role, require_role
from rota.core.errors import RotaError, to_http_exception
from rota.database import SessionLocal
from rota.deps.auth import resolve_worker_id
from rota.models.shift import Shift
from rota.schemas.shift import AllocationCreate, AllocationResponse, ShiftCreate, ShiftResponse
from rota.services import allocation_service, shift_service

router = APIRouter(prefix="/shifts", tags=["Shifts"])
allocations_router = APIRouter(prefix="/allocations", tags=["Shifts"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_response(shift: Shift) -> ShiftResponse:
    resp = ShiftResponse.model_validate(shift)
    resp.open_slots = shift_service.open_slots(shift)
    return resp


@router.post("", response_model=ShiftResponse)
def create_shift_endpoint(
    payload: ShiftCreate,
    request: Request,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        shift = shift_service.create_shift(
            company_id=int(request.state.company_id),
            venue_id=payload.venue_id,
            role_id=payload.role_id,
            shift_date=payload.shift_date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            headcount_needed=payload.headcount_needed,
            timezone_name=payload.timezone,
            notes=payload.notes,
            created_by=request.state.user_id,
            publish=payload.publish,
            now=_utcnow(),
            db=db,
        )
        db.commit()
        return _to_response(shift)
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.get("/{shift_id}", response_model=ShiftResponse)
def get_shift_endpoint(
    shift_id: int,
    request: Request,
    _role=Depends(require_role(Role.EMPLOYEE)),
):
    db = SessionLocal()
    try:
        shift = shift_service.get_shift(db, int(request.state.company_id), shift_id)
        return _to_response(shift)
    except RotaError as exc:
        raise to_http_exception(exc) from exc
    finally:
        db.close()


@router.post("/{shift_id}/publish", response_model=ShiftResponse)
def publish_shift_endpoint(
    shift_id: int,
    request: Request,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        shift = shift_service.publish_shift(int(request.state.company_id), shift_id, now=_utcnow(), db=db)
        db.commit()
        return _to_response(shift)
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/{shift_id}/cancel", response_model=ShiftResponse)
def cancel_shift_endpoint(
    shift_id: int,
    request: Request,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        shift = shift_service.cancel_shift(int(request.state.company_id), shift_id, now=_utcnow(), db=db)
        db.commit()
        return _to_response(shift)
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/{shift_id}/allocations", response_model=AllocationResponse)
def allocate_worker_endpoint(
    shift_id: int,
    payload: AllocationCreate,
    request: Request,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        allocation = allocation_service.allocate_worker(
            int(request.state.company_id),
            shift_id,
            payload.worker_id,
            allocated_by=request.state.user_id,
            now=_utcnow(),
            db=db,
        )
        db.commit()
        return allocation
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.get("/{shift_id}/allocations", response_model=List[AllocationResponse])
def list_allocations_endpoint(
    shift_id: int,
    request: Request,
    include_cancelled: bool = False,
    _role=Depends(require_role(Role.EMPLOYEE)),
):
    db = SessionLocal()
    try:
        return allocation_service.list_allocations_for_shift(
            int(request.state.company_id),
            shift_id,
            include_cancelled=include_cancelled,
            db=db,
        )
    finally:
        db.close()


@allocations_router.get("/mine", response_model=List[AllocationResponse])
def list_my_allocations_endpoint(
    request: Request,
    worker_id: Optional[int] = None,
    _role=Depends(require_role(Role.EMPLOYEE)),
):
    worker = resolve_worker_id(request, worker_id)
    db = SessionLocal()
    try:
        return allocation_service.list_worker_allocations(int(request.state.company_id), worker, db=db)
    finally:
        db.close()


@allocations_router.post("/{allocation_id}/cancel", response_model=AllocationResponse)
def cancel_allocation_endpoint(
    allocation_id: int,
    request: Request,
    _role=Depends(require_role(Role.MANAGER)),
):
    db = SessionLocal()
    try:
        allocation = allocation_service.cancel_allocation(int(request.state.company_id), allocation_id, db=db)
        db.commit()
        return allocation
    except RotaError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
