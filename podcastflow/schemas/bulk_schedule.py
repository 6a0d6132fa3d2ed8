"""
Bulk Schedule Schemas

Request/response shapes for POST /api/schedules/bulk/commit and the
allocation preview. Results are stored verbatim in bulk_schedule_idempotency,
so every field must serialize with model_dump(mode="json").
"""

from datetime import date as date_type
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.episode_inventory import normalize_placement
from ..models.reservation import ReservationPriority
from .workflow import FallbackStrategy


class DateRange(BaseModel):
    start: date_type
    end: date_type

    @model_validator(mode="after")
    def validate_order(self):
        if self.end < self.start:
            raise ValueError("dateRange.end must not be before dateRange.start")
        return self


class BulkCommitRequest(BaseModel):
    campaign_id: Optional[str] = Field(None, alias="campaignId")
    advertiser_id: str = Field(..., alias="advertiserId")
    agency_id: Optional[str] = Field(None, alias="agencyId")
    show_ids: List[str] = Field(..., min_length=1, alias="showIds")
    date_range: DateRange = Field(..., alias="dateRange")
    weekdays: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4, 5, 6], description="0 = Sunday")
    placement_types: List[str] = Field(..., min_length=1, alias="placementTypes")
    spots_requested: int = Field(..., gt=0, le=1000, alias="spotsRequested")
    spots_per_week: Optional[int] = Field(None, gt=0, alias="spotsPerWeek")
    allow_multiple_per_show_per_day: Optional[bool] = Field(None, alias="allowMultiplePerShowPerDay")
    max_spots_per_show_per_day: Optional[int] = Field(None, gt=0, le=10, alias="maxSpotsPerShowPerDay")
    fallback_strategy: Optional[FallbackStrategy] = Field(None, alias="fallbackStrategy")
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=255, alias="idempotencyKey")
    hold_duration_hours: Optional[int] = Field(None, ge=1, le=720, alias="holdDuration")
    priority: ReservationPriority = ReservationPriority.NORMAL
    override_reason: Optional[str] = Field(None, max_length=1000, alias="overrideReason")

    class Config:
        populate_by_name = True

    @field_validator("weekdays")
    @classmethod
    def validate_weekdays(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("at least one weekday is required")
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("weekdays must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(v))

    @field_validator("placement_types")
    @classmethod
    def validate_placements(cls, v: List[str]) -> List[str]:
        normalized = []
        for placement in v:
            value = normalize_placement(placement)
            if value not in normalized:
                normalized.append(value)
        return normalized

    @field_validator("show_ids")
    @classmethod
    def dedupe_shows(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))


class PlacementResult(BaseModel):
    show_id: str = Field(..., alias="showId")
    show_name: Optional[str] = Field(None, alias="showName")
    date: date_type
    placement_type: str = Field(..., alias="placementType")
    rate: float = 0
    episode_id: Optional[str] = Field(None, alias="episodeId")

    class Config:
        populate_by_name = True


class PlacementConflict(BaseModel):
    show_id: str = Field("", alias="showId")
    show_name: Optional[str] = Field(None, alias="showName")
    date: Optional[date_type] = None
    placement_type: str = Field("", alias="placementType")
    reason: str
    conflict_type: Optional[str] = Field(None, alias="conflictType")

    class Config:
        populate_by_name = True


class Tally(BaseModel):
    requested: int = 0
    placed: int = 0


class AllocationSummary(BaseModel):
    requested: int
    placeable: int
    unplaceable: int
    by_placement_type: Dict[str, Tally] = Field(default_factory=dict, alias="byPlacementType")
    by_show: Dict[str, Tally] = Field(default_factory=dict, alias="byShow")
    by_week: Dict[str, Tally] = Field(default_factory=dict, alias="byWeek")

    class Config:
        populate_by_name = True


class AllocationResult(BaseModel):
    would_place: List[PlacementResult] = Field(default_factory=list, alias="wouldPlace")
    conflicts: List[PlacementConflict] = Field(default_factory=list)
    summary: AllocationSummary

    class Config:
        populate_by_name = True


class BulkItemFailure(BaseModel):
    show_id: str = Field(..., alias="showId")
    date: date_type
    placement_type: str = Field(..., alias="placementType")
    reason: str

    class Config:
        populate_by_name = True


class BulkCommitResult(BaseModel):
    reservation_id: Optional[str] = Field(None, alias="reservationId")
    reservation_number: Optional[str] = Field(None, alias="reservationNumber")
    idempotency_key: str = Field(..., alias="idempotencyKey")
    fallback_strategy: str = Field(..., alias="fallbackStrategy")
    requested: int
    placed: int
    failed: List[BulkItemFailure] = Field(default_factory=list)
    placements: List[PlacementResult] = Field(default_factory=list)
    conflicts: List[PlacementConflict] = Field(default_factory=list)
    competitive_warnings: List[dict] = Field(default_factory=list, alias="competitiveWarnings")
    summary: AllocationSummary
    total_amount: float = Field(0, alias="totalAmount")
    message: str

    class Config:
        populate_by_name = True


class BulkCommitResponse(BaseModel):
    success: bool = True
    cached: bool = False
    result: dict
