from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal

from ..models.episode_inventory import normalize_placement
from ..models.reservation import ReservationPriority


class ReservationItemCreate(BaseModel):
    show_id: str = Field(..., min_length=1, max_length=36, alias="showId")
    episode_id: Optional[str] = Field(None, max_length=36, alias="episodeId")
    air_date: date = Field(..., alias="airDate")
    placement_type: str = Field(..., alias="placementType")
    spot_number: int = Field(default=1, ge=1, alias="spotNumber")
    length: int = Field(default=30, ge=1, le=600, description="Spot length in seconds")
    rate: Optional[Decimal] = Field(None, ge=0, description="Defaults to the inventory price")
    notes: Optional[str] = Field(None, max_length=1000)

    class Config:
        populate_by_name = True

    @field_validator("placement_type")
    @classmethod
    def validate_placement(cls, v: str) -> str:
        return normalize_placement(v)


class ReservationCreate(BaseModel):
    items: List[ReservationItemCreate] = Field(..., min_length=1)
    advertiser_id: Optional[str] = Field(None, alias="advertiserId")
    agency_id: Optional[str] = Field(None, alias="agencyId")
    campaign_id: Optional[str] = Field(None, alias="campaignId")
    hold_duration_hours: Optional[int] = Field(None, ge=1, le=720, alias="holdDuration")
    priority: ReservationPriority = ReservationPriority.NORMAL
    notes: Optional[str] = Field(None, max_length=2000)
    source: str = Field(default="web", max_length=30)

    class Config:
        populate_by_name = True


class ReservationRelease(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ReservationItemResponse(BaseModel):
    id: str
    show_id: str
    episode_id: Optional[str] = None
    air_date: date
    placement_type: str
    spot_number: int
    length: int
    rate: Decimal
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class StatusHistoryResponse(BaseModel):
    previous_status: Optional[str] = None
    new_status: str
    reason: Optional[str] = None
    changed_by: Optional[str] = None
    changed_at: datetime

    class Config:
        from_attributes = True


class ReservationResponse(BaseModel):
    id: str
    reservation_number: str
    status: str
    hold_duration: int
    expires_at: datetime
    priority: str
    total_amount: Decimal
    source: Optional[str] = None
    notes: Optional[str] = None
    advertiser_id: Optional[str] = None
    agency_id: Optional[str] = None
    campaign_id: Optional[str] = None
    order_id: Optional[str] = None
    created_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    release_reason: Optional[str] = None
    created_at: datetime
    items: List[ReservationItemResponse] = []
    status_history: List[StatusHistoryResponse] = []

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: str
    order_number: str
    reservation_id: Optional[str] = None
    campaign_id: Optional[str] = None
    status: str
    total_amount: Decimal
    net_amount: Decimal
    submitted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ConfirmResponse(BaseModel):
    reservation: ReservationResponse
    order: OrderResponse
