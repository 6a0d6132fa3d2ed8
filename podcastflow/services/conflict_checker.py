"""
Competitive Conflict Checker

Read-only gate consulted before reservation creation and bulk commit.
Two advertisers conflict when they share a competitive group and the other
advertiser has a live campaign overlapping the requested date range.
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..exceptions import CampaignNotFoundError, ConflictBlockedError, OverrideNotPermittedError
from ..models.campaign import (
    Advertiser,
    AdvertiserCategory,
    Campaign,
    CampaignStatus,
    Category,
    CompetitiveGroup,
    ConflictMode,
)
from ..schemas.campaign import CollidingCampaign, Conflict, ProceedDecision
from ..utils.tenant import ADMIN_ROLES
from .workflow_settings import WorkflowSettingsService

logger = logging.getLogger(__name__)

MIN_CONFLICT_PROBABILITY = 50

CLOSED_STATUSES = (
    CampaignStatus.LOST.value,
    CampaignStatus.CANCELLED.value,
    CampaignStatus.ARCHIVED.value,
    CampaignStatus.COMPLETED.value,
)

COMMITTED_STATUSES = (
    CampaignStatus.ACTIVE.value,
    CampaignStatus.APPROVED.value,
    CampaignStatus.BOOKED.value,
    CampaignStatus.CONFIRMED.value,
)


def can_proceed_with_conflicts(conflicts: List[Conflict]) -> ProceedDecision:
    """Partition conflicts by mode; any block-mode conflict stops the caller."""
    blocked = [c for c in conflicts if c.conflict_mode == ConflictMode.BLOCK.value]
    warnings = [c for c in conflicts if c.conflict_mode != ConflictMode.BLOCK.value]
    return ProceedDecision(canProceed=not blocked, blockedBy=blocked, warnings=warnings)


class ConflictChecker:
    def __init__(self, db: Session, organization_id: str):
        self.db = db
        self.organization_id = organization_id
        self.settings = WorkflowSettingsService(db).get_typed(organization_id).competitive

    def check_conflicts(
        self,
        advertiser_id: str,
        start_date: Optional[date],
        end_date: Optional[date],
        exclude_campaign_id: Optional[str] = None,
    ) -> List[Conflict]:
        """
        One Conflict per (category, competitive group) the advertiser belongs to
        that has colliding campaigns from other advertisers.
        """
        if not self.settings.enabled:
            return []

        assignments = self.db.query(AdvertiserCategory).join(
            Advertiser, Advertiser.id == AdvertiserCategory.advertiser_id
        ).filter(
            AdvertiserCategory.advertiser_id == advertiser_id,
            AdvertiserCategory.competitive_group_id.isnot(None),
            Advertiser.organization_id == self.organization_id,
        ).all()

        if not assignments:
            return []

        window_start, window_end = self._window(start_date, end_date)
        conflicts: List[Conflict] = []
        seen: set = set()

        for assignment in assignments:
            key = (assignment.category_id, assignment.competitive_group_id)
            if key in seen:
                continue
            seen.add(key)

            competitors = [
                row.advertiser_id
                for row in self.db.query(AdvertiserCategory.advertiser_id).filter(
                    AdvertiserCategory.competitive_group_id == assignment.competitive_group_id,
                    AdvertiserCategory.advertiser_id != advertiser_id,
                ).distinct()
            ]
            if not competitors:
                continue

            campaigns = self._colliding_campaigns(competitors, window_start, window_end, exclude_campaign_id)
            if not campaigns:
                continue

            group: CompetitiveGroup = assignment.competitive_group
            category: Category = assignment.category
            conflicts.append(Conflict(
                categoryId=assignment.category_id,
                categoryName=category.name if category else None,
                competitiveGroupId=assignment.competitive_group_id,
                competitiveGroupName=group.name if group else None,
                conflictMode=(group.conflict_mode if group and group.conflict_mode else self.settings.mode),
                campaigns=[self._describe(c) for c in campaigns],
            ))

        if conflicts:
            logger.info(
                f"Advertiser {advertiser_id} has {len(conflicts)} competitive conflict(s) "
                f"between {window_start} and {window_end}"
            )
        return conflicts

    def _window(self, start_date: Optional[date], end_date: Optional[date]) -> Tuple[Optional[date], Optional[date]]:
        buffer = timedelta(days=self.settings.buffer_days)
        return (
            start_date - buffer if start_date else None,
            end_date + buffer if end_date else None,
        )

    def _colliding_campaigns(
        self,
        advertiser_ids: List[str],
        window_start: Optional[date],
        window_end: Optional[date],
        exclude_campaign_id: Optional[str],
    ) -> List[Campaign]:
        query = self.db.query(Campaign).filter(
            Campaign.organization_id == self.organization_id,
            Campaign.advertiser_id.in_(advertiser_ids),
            Campaign.status.notin_(CLOSED_STATUSES),
            or_(
                Campaign.status.in_(COMMITTED_STATUSES),
                Campaign.probability >= MIN_CONFLICT_PROBABILITY,
            ),
        )
        if exclude_campaign_id:
            query = query.filter(Campaign.id != exclude_campaign_id)
        # Open-ended campaigns overlap everything on their open side
        if window_end:
            query = query.filter(or_(Campaign.start_date.is_(None), Campaign.start_date <= window_end))
        if window_start:
            query = query.filter(or_(Campaign.end_date.is_(None), Campaign.end_date >= window_start))
        return query.order_by(Campaign.start_date.asc(), Campaign.name.asc()).all()

    @staticmethod
    def _describe(campaign: Campaign) -> CollidingCampaign:
        return CollidingCampaign(
            campaignId=campaign.id,
            campaignName=campaign.name,
            advertiserId=campaign.advertiser_id,
            advertiserName=campaign.advertiser.name if campaign.advertiser else None,
            status=campaign.status,
            probability=campaign.probability or 0,
            startDate=campaign.start_date,
            endDate=campaign.end_date,
        )

    # ==================
    # Campaign bookkeeping
    # ==================

    def check_campaign(self, campaign: Campaign) -> List[Conflict]:
        if not campaign.advertiser_id:
            return []
        return self.check_conflicts(
            campaign.advertiser_id, campaign.start_date, campaign.end_date, exclude_campaign_id=campaign.id
        )

    def store_conflicts(self, campaign_id: str, conflicts: List[Conflict]) -> Optional[Campaign]:
        """Persist the latest check on the campaign. Does not commit."""
        campaign = self._get_campaign(campaign_id)
        if not campaign:
            return None
        campaign.has_competitive_conflicts = bool(conflicts)
        campaign.competitive_conflicts = [c.to_dict() for c in conflicts] or None
        campaign.updated_at = datetime.utcnow()
        return campaign

    def record_override(self, campaign_id: str, reason: str, user_id: Optional[str], role: Optional[str]) -> Campaign:
        """Admin/master force-through; the reason is kept on the campaign for audit."""
        if role not in ADMIN_ROLES:
            raise OverrideNotPermittedError(campaign_id, role)
        campaign = self._get_campaign(campaign_id)
        if not campaign:
            raise CampaignNotFoundError(campaign_id)

        campaign.conflict_override = True
        campaign.conflict_override_reason = reason
        campaign.conflict_override_by = user_id
        campaign.conflict_override_at = datetime.utcnow()
        logger.warning(f"Competitive conflict override on campaign {campaign_id} by {user_id}: {reason}")
        return campaign

    def enforce(
        self,
        conflicts: List[Conflict],
        override_reason: Optional[str] = None,
        campaign_id: Optional[str] = None,
        user_id: Optional[str] = None,
        role: Optional[str] = None,
    ) -> ProceedDecision:
        """
        Raise ConflictBlockedError for block-mode conflicts unless an admin
        override reason is supplied (or already recorded on the campaign).
        """
        decision = can_proceed_with_conflicts(conflicts)
        if decision.can_proceed:
            return decision

        campaign = self._get_campaign(campaign_id) if campaign_id else None
        if campaign is not None and campaign.conflict_override and not override_reason:
            return decision

        if override_reason and role in ADMIN_ROLES:
            if campaign is not None:
                self.record_override(campaign.id, override_reason, user_id, role)
            else:
                logger.warning(f"Competitive conflict override by {user_id} without campaign: {override_reason}")
            return decision

        raise ConflictBlockedError(decision.blocked_by)

    def _get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        return self.db.query(Campaign).filter(
            Campaign.id == campaign_id,
            Campaign.organization_id == self.organization_id,
        ).first()
