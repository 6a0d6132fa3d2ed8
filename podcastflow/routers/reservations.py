"""
Reservations Router

Hold / confirm / release endpoints over the reservation state machine.
Domain errors propagate to the exception handlers registered in main.py.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.reservation import (
    ConfirmResponse,
    OrderResponse,
    ReservationCreate,
    ReservationRelease,
    ReservationResponse,
)
from ..services.reservation_service import ReservationService
from ..utils.rate_limiter import limiter, get_rate_limit
from ..utils.tenant import TenantContext, get_tenant

router = APIRouter(prefix="/api/reservations", tags=["Reservations"])


@router.post("", response_model=ReservationResponse, status_code=201)
@limiter.limit(get_rate_limit("reservation_create"))
async def create_reservation(
    request: Request,
    data: ReservationCreate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    """Hold every requested slot or none of them."""
    service = ReservationService(db, tenant.organization_id)
    reservation = service.create_reservation(data, tenant.user_id)
    return ReservationResponse.model_validate(reservation)


@router.get("", response_model=List[ReservationResponse])
async def list_reservations(
    status: Optional[str] = None,
    campaign_id: Optional[str] = Query(None, alias="campaignId"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    service = ReservationService(db, tenant.organization_id)
    reservations = service.list_reservations(status=status, campaign_id=campaign_id, limit=limit, offset=offset)
    return [ReservationResponse.model_validate(r) for r in reservations]


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: str,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    service = ReservationService(db, tenant.organization_id)
    return ReservationResponse.model_validate(service.get_reservation(reservation_id))


@router.post("/{reservation_id}/confirm", response_model=ConfirmResponse)
@limiter.limit(get_rate_limit("reservation_transition"))
async def confirm_reservation(
    request: Request,
    reservation_id: str,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    """held/pending -> confirmed; creates the order."""
    service = ReservationService(db, tenant.organization_id)
    reservation, order = service.confirm(reservation_id, tenant.user_id)
    return ConfirmResponse(
        reservation=ReservationResponse.model_validate(reservation),
        order=OrderResponse.model_validate(order),
    )


@router.post("/{reservation_id}/release", response_model=ReservationResponse)
@limiter.limit(get_rate_limit("reservation_transition"))
async def release_reservation(
    request: Request,
    reservation_id: str,
    data: Optional[ReservationRelease] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    """Return held inventory. Releasing twice is a no-op."""
    service = ReservationService(db, tenant.organization_id)
    reservation = service.release(reservation_id, data.reason if data else None, tenant.user_id)
    return ReservationResponse.model_validate(reservation)
