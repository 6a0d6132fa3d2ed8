"""
Inventory Router

Read access to episode slot counters, capacity recalculation after a length
change, and the overbooking / capacity-shrink alert queue.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.episode_inventory import EpisodeInventory, PLACEMENT_COLUMNS
from ..models.show import Episode
from ..schemas.inventory import (
    AlertActionRequest,
    EpisodeInventoryResponse,
    InventoryAlertResponse,
    PlacementCounts,
    RecalculateRequest,
)
from ..services.inventory_ledger import InventoryLedger
from ..utils.tenant import TenantContext, get_tenant, require_admin

router = APIRouter(prefix="/api/inventory", tags=["Inventory"])


def to_response(inventory: EpisodeInventory) -> EpisodeInventoryResponse:
    return EpisodeInventoryResponse(
        episode_id=inventory.episode_id,
        show_id=inventory.show_id,
        air_date=inventory.air_date,
        placements={
            placement: PlacementCounts(**counts)
            for placement, counts in inventory.snapshot().items()
        },
        prices={placement: inventory.price(placement) for placement in PLACEMENT_COLUMNS},
        calculated_from_length=bool(inventory.calculated_from_length),
    )


@router.get("/episodes/{episode_id}", response_model=EpisodeInventoryResponse)
async def get_episode_inventory(
    episode_id: str,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    ledger = InventoryLedger(db, tenant.organization_id)
    return to_response(ledger.get_inventory(episode_id))


@router.post("/episodes/{episode_id}", response_model=EpisodeInventoryResponse)
async def track_episode_inventory(
    episode_id: str,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    """
    Start tracking slots for a scheduled episode. Capacity comes from the
    episode length and the show's spot thresholds; calling it again returns
    the existing counters unchanged.
    """
    episode = db.query(Episode).filter(
        Episode.id == episode_id,
        Episode.organization_id == tenant.organization_id,
    ).first()
    if episode is None:
        raise HTTPException(status_code=404, detail="Episode not found")

    inventory = InventoryLedger(db, tenant.organization_id).ensure_inventory(episode)
    db.commit()
    db.refresh(inventory)
    return to_response(inventory)


@router.post("/episodes/{episode_id}/recalculate",response_model=EpisodeInventoryResponse)
async def recalculate_episode_inventory(
    episode_id: str,
    data: RecalculateRequest,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    """
    Re-derive capacity from a new episode length. Fails with 409 when the
    new capacity would drop below already reserved or booked spots.
    """
    ledger = InventoryLedger(db, tenant.organization_id)
    inventory = ledger.recalculate(episode_id, data.length_minutes)

    episode = db.query(Episode).filter(
        Episode.id == episode_id,
        Episode.organization_id == tenant.organization_id,
    ).first()
    if episode is not None:
        episode.length_minutes = (
            int(round(data.length_minutes)) if data.length_minutes is not None else None
        )
    db.commit()
    db.refresh(inventory)
    return to_response(inventory)


@router.get("/alerts", response_model=List[InventoryAlertResponse])
async def list_inventory_alerts(
    status: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    ledger = InventoryLedger(db, tenant.organization_id)
    return [InventoryAlertResponse.model_validate(a) for a in ledger.list_alerts(status=status, limit=limit)]


@router.post("/alerts/{alert_id}/acknowledge", response_model=InventoryAlertResponse)
async def acknowledge_inventory_alert(
    alert_id: str,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    ledger = InventoryLedger(db, tenant.organization_id)
    alert = ledger.acknowledge_alert(alert_id, tenant.user_id)
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    db.commit()
    return InventoryAlertResponse.model_validate(alert)


@router.post("/alerts/{alert_id}/resolve", response_model=InventoryAlertResponse)
async def resolve_inventory_alert(
    alert_id: str,
    data: Optional[AlertActionRequest] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    require_admin(tenant)
    ledger = InventoryLedger(db, tenant.organization_id)
    alert = ledger.resolve_alert(alert_id, tenant.user_id, data.notes if data else None)
    if not alert:
        raise HTTPException(status_code=404, detail="Alert not found")
    db.commit()
    return InventoryAlertResponse.model_validate(alert)
