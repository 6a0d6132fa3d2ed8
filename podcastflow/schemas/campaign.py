"""
Competitive Conflict Schemas
"""

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class CollidingCampaign(BaseModel):
    campaign_id: str = Field(..., alias="campaignId")
    campaign_name: str = Field(..., alias="campaignName")
    advertiser_id: str = Field(..., alias="advertiserId")
    advertiser_name: Optional[str] = Field(None, alias="advertiserName")
    status: Optional[str] = None
    probability: int = 0
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")

    class Config:
        populate_by_name = True


class Conflict(BaseModel):
    """One (category, competitive group) collision with the campaigns involved."""
    category_id: str = Field(..., alias="categoryId")
    category_name: Optional[str] = Field(None, alias="categoryName")
    competitive_group_id: str = Field(..., alias="competitiveGroupId")
    competitive_group_name: Optional[str] = Field(None, alias="competitiveGroupName")
    conflict_mode: str = Field(..., alias="conflictMode")
    campaigns: List[CollidingCampaign] = Field(default_factory=list)

    class Config:
        populate_by_name = True

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ProceedDecision(BaseModel):
    can_proceed: bool = Field(..., alias="canProceed")
    blocked_by: List[Conflict] = Field(default_factory=list, alias="blockedBy")
    warnings: List[Conflict] = Field(default_factory=list)

    class Config:
        populate_by_name = True


class ConflictCheckRequest(BaseModel):
    advertiser_id: Optional[str] = Field(None, alias="advertiserId")
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def validate_range(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


class ConflictCheckResponse(BaseModel):
    conflicts: List[Conflict]
    decision: ProceedDecision


class ConflictOverrideRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)
