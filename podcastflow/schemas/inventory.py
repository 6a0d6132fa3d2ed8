from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime, date
from decimal import Decimal


class PlacementCounts(BaseModel):
    slots: int
    available: int
    reserved: int
    booked: int


class EpisodeInventoryResponse(BaseModel):
    episode_id: str
    show_id: str
    air_date: date
    placements: Dict[str, PlacementCounts]
    prices: Dict[str, Optional[Decimal]]
    calculated_from_length: bool = False


class AlertActionRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class InventoryAlertResponse(BaseModel):
    id: str
    alert_type: str
    severity: str
    status: str
    episode_id: Optional[str] = None
    show_id: Optional[str] = None
    placement_type: Optional[str] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RecalculateRequest(BaseModel):
    length_minutes: Optional[float] = Field(None, ge=0, le=600, alias="lengthMinutes")

    class Config:
        populate_by_name = True
