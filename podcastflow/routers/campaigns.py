"""
Campaign Conflicts Router
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import CampaignNotFoundError
from ..models.campaign import Campaign
from ..schemas.campaign import ConflictCheckRequest, ConflictCheckResponse, ConflictOverrideRequest
from ..services.conflict_checker import ConflictChecker, can_proceed_with_conflicts
from ..utils.tenant import TenantContext, get_tenant

router = APIRouter(prefix="/api/campaigns", tags=["Campaigns"])


def get_campaign_or_404(db: Session, organization_id: str, campaign_id: str) -> Campaign:
    campaign = db.query(Campaign).filter(
        Campaign.id == campaign_id,
        Campaign.organization_id == organization_id,
    ).first()
    if not campaign:
        raise CampaignNotFoundError(campaign_id)
    return campaign


@router.post("/{campaign_id}/conflicts/check", response_model=ConflictCheckResponse)
async def check_campaign_conflicts(
    campaign_id: str,
    data: Optional[ConflictCheckRequest] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    """
    Run the competitive check for a campaign and store the result on it.

    advertiserId / startDate / endDate in the body replace the campaign's own
    values for this check (what-if before saving an edit).
    """
    campaign = get_campaign_or_404(db, tenant.organization_id, campaign_id)
    checker = ConflictChecker(db, tenant.organization_id)

    advertiser_id = (data and data.advertiser_id) or campaign.advertiser_id
    if not advertiser_id:
        raise HTTPException(status_code=400, detail="Campaign has no advertiser")

    conflicts = checker.check_conflicts(
        advertiser_id,
        (data and data.start_date) or campaign.start_date,
        (data and data.end_date) or campaign.end_date,
        exclude_campaign_id=campaign.id,
    )
    checker.store_conflicts(campaign.id, conflicts)
    db.commit()

    return ConflictCheckResponse(conflicts=conflicts, decision=can_proceed_with_conflicts(conflicts))


@router.post("/{campaign_id}/conflicts/override")
async def override_campaign_conflicts(
    campaign_id: str,
    data: ConflictOverrideRequest,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    """Admin/master only. Lets block-mode conflicts through for this campaign."""
    checker = ConflictChecker(db, tenant.organization_id)
    campaign = checker.record_override(campaign_id, data.reason, tenant.user_id, tenant.role)
    db.commit()

    return {
        "campaignId": campaign.id,
        "conflictOverride": True,
        "reason": campaign.conflict_override_reason,
        "overriddenBy": campaign.conflict_override_by,
        "overriddenAt": campaign.conflict_override_at.isoformat(),
    }
