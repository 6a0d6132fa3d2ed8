"""
Campaign Milestone Workflow

Built-in steps for probability_updated events on campaigns. The event data
must carry oldProbability and newProbability (probability is accepted for
the new value). A step runs when the change crosses its threshold upward,
old < threshold <= new:

    schedule_valid            rate card delta check on the held spots
    talent_approval_required  talent approval request per show with talent
    auto_reservation          hold the campaign schedule (bulk fallback strategy)
    admin_approval_required   pending CampaignApproval + admin_approval_requested
    order_creation            confirm the held reservation into an Order

Thresholds come from milestone.thresholds; approval.rules and
rate_card.delta_tracking switch their steps on or off. Each step claims
"milestone:<step>:<campaign>" in trigger_execution_logs, so it runs once per
campaign. A failed step clears its key and runs again on the next crossing.
"""

import logging
from collections import namedtuple
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import PodcastFlowError, TriggerActionError
from ..models.campaign import ApprovalStatus, Campaign, CampaignApproval
from ..models.episode_inventory import EpisodeInventory
from ..models.organization import UserRole
from ..models.reservation import ACTIVE_STATUSES, Reservation
from ..models.show import Show
from ..models.workflow import TriggerEvent, TriggerExecutionLog, TriggerExecutionStatus
from ..schemas.reservation import ReservationCreate
from ..schemas.workflow import TriggerExecutionResult, WorkflowSettings
from ..utils.logging_config import get_logger
from ..utils.tenant import ADMIN_ROLES
from .recipients import RecipientResolver
from .reservation_service import ReservationService
from .workflow_settings import WorkflowSettingsService

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

TALENT_ROLE = UserRole.TALENT.value

MilestoneStep = namedtuple("MilestoneStep", ["name", "threshold", "run"])


def as_probability(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def crossed(old: float, new: float, threshold: int) -> bool:
    return old < threshold <= new


def milestone_key(step: str, campaign_id: str) -> str:
    return f"milestone:{step}:{campaign_id}"


def reserve_campaign_schedule(
    reservations: ReservationService,
    settings_service: WorkflowSettingsService,
    campaign: Campaign,
    items: List[Dict[str, Any]],
    data: Dict[str, Any],
    user_id: Optional[str] = None,
    hold_hours: Optional[int] = None,
    priority: str = "normal",
    fallback_strategy: Optional[str] = None,
    source: str = "workflow_trigger",
) -> Dict[str, Any]:
    """
    Hold schedule items for a campaign under the organization's bulk fallback
    strategy. Raises TriggerActionError when the items do not validate.
    """
    try:
        request = ReservationCreate.model_validate({
            "items": items,
            "campaignId": campaign.id,
            "advertiserId": data.get("advertiserId") or campaign.advertiser_id,
            "agencyId": data.get("agencyId") or campaign.agency_id,
            "holdDuration": hold_hours,
            "priority": priority,
            "source": source,
        })
    except ValueError as e:
        raise TriggerActionError("create_reservation", f"invalid items: {e}")

    strategy = fallback_strategy or \
        settings_service.get_typed(campaign.organization_id).bulk.fallback_strategy.value
    reservation, skipped = reservations.create_with_fallback(request, strategy, user_id)
    return {
        "reservationId": reservation.id,
        "reservationNumber": reservation.reservation_number,
        "items": len(reservation.items),
        "skipped": skipped,
    }


class CampaignMilestoneWorkflow:
    def __init__(
        self,
        db: Session,
        organization_id: str,
        notifier,
        settings_service: WorkflowSettingsService,
        reservations: ReservationService,
        resolver: Optional[RecipientResolver] = None,
    ):
        self.db = db
        self.organization_id = organization_id
        self.notifier = notifier
        self.settings_service = settings_service
        self.reservations = reservations
        self.resolver = resolver or RecipientResolver(db)

    def handle(self, context) -> List[TriggerExecutionResult]:
        if context.event != TriggerEvent.PROBABILITY_UPDATED.value or context.entity_type != "campaign":
            return []

        old = as_probability(context.data.get("oldProbability"))
        new = as_probability(context.data.get("newProbability", context.data.get("probability")))
        if old is None or new is None or new <= old:
            return []

        settings = self.settings_service.get_typed(context.organization_id)
        results = []
        for step in self.steps(settings):
            if crossed(old, new, step.threshold):
                results.append(self.run_step(step, context, settings))
        return results

    def steps(self, settings: WorkflowSettings) -> List[MilestoneStep]:
        """Enabled steps in threshold order; equal thresholds keep this listing order."""
        thresholds = settings.milestones
        steps = []
        if settings.rate_card.enabled:
            steps.append(MilestoneStep("rate_card_delta", thresholds.schedule_valid, self._check_rate_delta))
        if settings.approvals.talentApproval.enabled:
            steps.append(MilestoneStep(
                "talent_approval", thresholds.talent_approval_required, self._request_talent_approval,
            ))
        steps.append(MilestoneStep("auto_reservation", thresholds.auto_reservation, self._auto_reserve))
        if settings.approvals.campaignApproval.enabled:
            steps.append(MilestoneStep(
                "admin_approval", thresholds.admin_approval_required, self._request_admin_approval,
            ))
        steps.append(MilestoneStep("order_creation", thresholds.order_creation, self._create_order))
        return sorted(steps, key=lambda step: step.threshold)

    def run_step(self, step: MilestoneStep, context, settings: WorkflowSettings) -> TriggerExecutionResult:
        name = f"milestone:{step.name}"
        key = milestone_key(step.name, context.entity_id)

        log = self._claim(step, context, key)
        if log is None:
            return TriggerExecutionResult(
                trigger_name=name, status=TriggerExecutionStatus.SKIPPED.value, error="already executed",
            )
        log_id = log.id

        try:
            data = step.run(context, settings)
            outcome = {"type": step.name, "success": True, "data": data}
        except PodcastFlowError as e:
            logger.warning(f"Milestone {step.name} for campaign {context.entity_id} failed: {e.message}")
            self.db.rollback()
            outcome = {"type": step.name, "success": False, "error": e.message}
        except Exception as e:
            logger.exception(f"Milestone {step.name} for campaign {context.entity_id} raised: {e}")
            self.db.rollback()
            outcome = {"type": step.name, "success": False, "error": str(e)[:500]}

        log = self.db.get(TriggerExecutionLog, log_id)
        log.result = [outcome]
        if outcome["success"]:
            log.status = TriggerExecutionStatus.SUCCESS.value
        else:
            log.status = TriggerExecutionStatus.FAILED.value
            log.error = outcome["error"]
            log.dedupe_key = None
        self.db.commit()

        structured_logger.trigger_executed(
            None, name, context.event, context.entity_type, context.entity_id, log.status,
        )
        return TriggerExecutionResult(
            trigger_name=name, status=log.status, actions=[outcome], error=log.error,
        )

    def _claim(self, step: MilestoneStep, context, key: str) -> Optional[TriggerExecutionLog]:
        if self.db.query(TriggerExecutionLog.id).filter(TriggerExecutionLog.dedupe_key == key).first():
            logger.info(f"Milestone {step.name} already ran for campaign {context.entity_id}")
            return None

        log = TriggerExecutionLog(
            organization_id=context.organization_id,
            trigger_id=None,
            entity_type=context.entity_type,
            entity_id=context.entity_id,
            event=context.event,
            status=TriggerExecutionStatus.RUNNING.value,
            dedupe_key=key,
            condition={"milestone": step.name, "threshold": step.threshold},
            executed_by=context.user_id,
        )
        self.db.add(log)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Milestone {step.name} claimed concurrently for campaign {context.entity_id}")
            return None
        return log

    # ==================
    # Lookups
    # ==================

    def _campaign(self, context, step: str) -> Campaign:
        campaign = self.db.query(Campaign).filter(
            Campaign.id == context.entity_id,
            Campaign.organization_id == context.organization_id,
        ).first()
        if campaign is None:
            raise TriggerActionError(step, f"campaign {context.entity_id} not found")
        return campaign

    def _active_reservation(self, campaign_id: str) -> Optional[Reservation]:
        return self.db.query(Reservation).filter(
            Reservation.organization_id == self.organization_id,
            Reservation.campaign_id == campaign_id,
            Reservation.status.in_(ACTIVE_STATUSES),
        ).order_by(Reservation.created_at.desc()).first()

    def rate_variance(self, reservation: Reservation) -> Dict[str, Any]:
        """Percent difference of each held rate from the episode's list price."""
        deltas = []
        for item in reservation.items:
            inventory = self.db.query(EpisodeInventory).filter(
                EpisodeInventory.episode_id == item.episode_id
            ).first()
            list_price = inventory.price(item.placement_type) if inventory else None
            if not list_price:
                continue
            list_price = Decimal(str(list_price))
            deltas.append(float((Decimal(str(item.rate or 0)) - list_price) / list_price * 100))

        if not deltas:
            return {"spots": 0, "averagePercent": 0.0, "maxPercent": 0.0}
        return {
            "spots": len(deltas),
            "averagePercent": round(sum(deltas) / len(deltas), 2),
            "maxPercent": round(max(deltas, key=abs), 2),
        }

    def _payload(self, campaign: Campaign, context, **extra) -> Dict[str, Any]:
        payload = {
            "campaignId": campaign.id,
            "campaignName": campaign.name,
            "advertiserName": campaign.advertiser.name if campaign.advertiser else None,
            "probability": context.data.get("newProbability", context.data.get("probability")),
            "budget": str(campaign.budget) if campaign.budget is not None else None,
            "sellerId": campaign.seller_id,
            "entityType": "campaign",
            "entityId": campaign.id,
            "triggeredBy": context.user_id,
        }
        payload.update(extra)
        return payload

    # ==================
    # Steps
    # ==================

    def _check_rate_delta(self, context, settings: WorkflowSettings) -> Dict[str, Any]:
        campaign = self._campaign(context, "rate_card_delta")
        reservation = self._active_reservation(campaign.id)
        if reservation is None:
            return {"skipped": True, "reason": "no held spots to compare"}

        variance = self.rate_variance(reservation)
        rules = settings.rate_card
        if abs(variance["maxPercent"]) < rules.threshold_percent:
            return {"variance": variance, "flagged": False}

        approval_id = None
        if abs(variance["maxPercent"]) > rules.require_approval_above:
            approval = CampaignApproval(
                organization_id=context.organization_id,
                campaign_id=campaign.id,
                status=ApprovalStatus.PENDING.value,
                required_roles=list(settings.approvals.campaignApproval.roles),
                reason=(
                    f"Rate card variance {variance['maxPercent']}% exceeds "
                    f"{rules.require_approval_above}%"
                ),
                requested_by=context.user_id,
            )
            self.db.add(approval)
            self.db.commit()
            approval_id = approval.id

        self.notifier.emit(
            context.organization_id,
            "rate_delta_detected",
            self._payload(
                campaign, context,
                reservationNumber=reservation.reservation_number,
                variancePercent=variance["maxPercent"],
                thresholdPercent=rules.threshold_percent,
                approvalId=approval_id,
            ),
        )
        return {"variance": variance, "flagged": True, "approvalId": approval_id}

    def _request_talent_approval(self, context, settings: WorkflowSettings) -> Dict[str, Any]:
        campaign = self._campaign(context, "talent_approval")
        reservation = self._active_reservation(campaign.id)
        if reservation is None:
            return {"skipped": True, "reason": "no held spots need talent approval"}

        rule = settings.approvals.talentApproval
        show_ids = list(dict.fromkeys(item.show_id for item in reservation.items))
        shows = self.db.query(Show).filter(Show.id.in_(show_ids)).all() if show_ids else []

        approvals = []
        for show in shows:
            approver_id = show.talent_id
            if approver_id is None and rule.fallback == "producer":
                approver_id = show.producer_id
            if approver_id is None:
                continue

            approval = CampaignApproval(
                organization_id=context.organization_id,
                campaign_id=campaign.id,
                status=ApprovalStatus.PENDING.value,
                required_roles=[TALENT_ROLE],
                reason=f"Talent approval for {show.name} ({', '.join(rule.types)})",
                requested_by=context.user_id,
            )
            self.db.add(approval)
            self.db.commit()
            approvals.append(approval.id)

            self.notifier.emit(
                context.organization_id,
                "talent_approval_requested",
                self._payload(
                    campaign, context,
                    approvalId=approval.id,
                    showId=show.id,
                    showName=show.name,
                    talentId=approver_id,
                    producerId=show.producer_id,
                    adType=" / ".join(rule.types),
                ),
            )

        if not approvals:
            return {"skipped": True, "reason": "no talent assigned to the campaign's shows"}
        return {"approvalIds": approvals}

    def _auto_reserve(self, context, settings: WorkflowSettings) -> Dict[str, Any]:
        campaign = self._campaign(context, "auto_reservation")
        if self.reservations.has_active_reservation(campaign.id):
            return {"skipped": True, "reason": "campaign already has an active reservation"}

        items = context.data.get("items") or context.data.get("scheduleItems")
        if not items:
            return {"skipped": True, "reason": "no schedule items to reserve"}

        return reserve_campaign_schedule(
            self.reservations,
            self.settings_service,
            campaign,
            items,
            context.data,
            user_id=context.user_id,
            fallback_strategy=settings.bulk.fallback_strategy.value,
            source="workflow_milestone",
        )

    def _request_admin_approval(self, context, settings: WorkflowSettings) -> Dict[str, Any]:
        campaign = self._campaign(context, "admin_approval")

        if context.user_role not in ADMIN_ROLES:
            rejected = self.db.query(CampaignApproval).filter(
                CampaignApproval.campaign_id == campaign.id,
                CampaignApproval.status == ApprovalStatus.REJECTED.value,
            ).all()
            rejected = [a for a in rejected if TALENT_ROLE in (a.required_roles or [])]
            if rejected:
                raise TriggerActionError(
                    "admin_approval", f"{len(rejected)} talent approval(s) were rejected",
                )

        rule = settings.approvals.campaignApproval
        reservation = self._active_reservation(campaign.id)
        variance = self.rate_variance(reservation) if reservation else None

        approval = CampaignApproval(
            organization_id=context.organization_id,
            campaign_id=campaign.id,
            status=ApprovalStatus.PENDING.value,
            required_roles=list(rule.roles),
            reason=f"Campaign reached {settings.milestones.admin_approval_required}%",
            requested_by=context.user_id,
        )
        self.db.add(approval)
        self.db.commit()

        approvers = self.resolver.for_roles(context.organization_id, rule.roles)
        if approvers:
            self.notifier.emit(
                context.organization_id,
                "admin_approval_requested",
                self._payload(
                    campaign, context,
                    approvalId=approval.id,
                    reservationId=reservation.id if reservation else None,
                    rateVariance=variance,
                ),
                recipient_ids=[user.id for user in approvers],
                severity="high",
            )
        return {"approvalId": approval.id, "approvers": len(approvers)}

    def _create_order(self, context, settings: WorkflowSettings) -> Dict[str, Any]:
        campaign = self._campaign(context, "order_creation")
        reservation = self._active_reservation(campaign.id)
        if reservation is None:
            return {"skipped": True, "reason": "no held reservation to confirm"}

        reservation, order = self.reservations.confirm(reservation.id, context.user_id)
        return {
            "reservationId": reservation.id,
            "orderId": order.id,
            "orderNumber": order.order_number,
        }
