"""
Workflow Trigger Evaluator

For one domain event:
1. load the organization's enabled triggers for the event (priority asc)
2. skip triggers that already fired for (trigger, entity, event)
3. evaluate the condition tree against the event data
4. claim the dedupe key with a RUNNING execution log row
5. run the actions in order, then record SUCCESS (key kept) or
   FAILED (key cleared so a later event can retry)

Every trigger runs in its own error boundary; one broken trigger never
stops the others or the operation that emitted the event.

After the stored triggers, probability_updated events on campaigns also run
the built-in milestone steps (see campaign_workflow).
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import PodcastFlowError, TriggerActionError
from ..models.campaign import Campaign, CampaignApproval, ApprovalStatus
from ..models.workflow import (
    ActionType, TriggerExecutionLog, TriggerExecutionStatus, WorkflowTrigger
)
from ..schemas.workflow import TriggerExecutionResult
from ..utils.logging_config import get_logger
from .campaign_workflow import CampaignMilestoneWorkflow, reserve_campaign_schedule
from .notification_service import NotificationService
from .recipients import RecipientResolver
from .reservation_service import ReservationService
from .webhook_outbox import enqueue_webhook
from .workflow_settings import WorkflowSettingsService

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)


@dataclass
class TriggerContext:
    organization_id: str
    event: str
    entity_type: str
    entity_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    user_role: Optional[str] = None


# ==================
# Conditions
# ==================

_MISSING = object()


def get_field_value(data: Dict[str, Any], path: str) -> Any:
    """Dot-path lookup: "campaign.probability" -> data["campaign"]["probability"]"""
    value: Any = data
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None or value is _MISSING:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def compare(operator: str, actual: Any, expected: Any) -> bool:
    if operator in ("gt", "gte", "lt", "lte"):
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            return False
        if operator == "gt":
            return left > right
        if operator == "gte":
            return left >= right
        if operator == "lt":
            return left < right
        return left <= right

    if actual is _MISSING:
        # a missing field only satisfies negative operators
        return operator in ("neq", "nin")

    if operator == "eq":
        return actual == expected
    if operator == "neq":
        return actual != expected
    if operator == "in":
        return isinstance(expected, list) and actual in expected
    if operator == "nin":
        return isinstance(expected, list) and actual not in expected
    if operator == "contains":
        if isinstance(actual, (list, tuple, set)):
            return expected in actual
        return str(expected) in str(actual)
    if operator == "regex":
        try:
            return re.search(str(expected), str(actual)) is not None
        except re.error:
            logger.warning(f"Invalid regex in trigger condition: {expected!r}")
            return False

    logger.warning(f"Unknown condition operator: {operator}")
    return False


def evaluate_condition(condition: Optional[Dict[str, Any]], data: Dict[str, Any]) -> bool:
    """AND / OR groups of field comparisons. No condition always matches."""
    if not condition:
        return True
    if "and" in condition:
        return all(evaluate_condition(child, data) for child in condition["and"])
    if "or" in condition:
        return any(evaluate_condition(child, data) for child in condition["or"])
    return compare(
        condition.get("operator"),
        get_field_value(data, condition.get("field", "")),
        condition.get("value"),
    )


def dedupe_key_for(trigger_id: str, entity_id: str, event: str) -> str:
    return f"{trigger_id}:{entity_id}:{event}"


# ==================
# Evaluator
# ==================

class TriggerEvaluator:
    def __init__(
        self,
        db: Session,
        organization_id: str,
        notifier: Optional[NotificationService] = None,
        settings_service: Optional[WorkflowSettingsService] = None,
    ):
        self.db = db
        self.organization_id = organization_id
        self.notifier = notifier or NotificationService(db)
        self.settings_service = settings_service or WorkflowSettingsService(db)
        self.reservations = ReservationService(db, organization_id, notifier=self.notifier)
        self.resolver = RecipientResolver(db)
        self.milestones = CampaignMilestoneWorkflow(
            db, organization_id, self.notifier, self.settings_service, self.reservations, self.resolver,
        )

    def evaluate_event(self, context: TriggerContext) -> List[TriggerExecutionResult]:
        triggers = self.settings_service.get_triggers(context.organization_id, event=context.event, is_enabled=True)
        if not triggers:
            logger.debug(f"No triggers for {context.event} in org {context.organization_id}")

        results = []
        for trigger in triggers:
            trigger_id, trigger_name = trigger.id, trigger.name
            try:
                results.append(self.evaluate_trigger(trigger, context))
            except Exception as e:
                logger.exception(f"Error evaluating trigger {trigger_id} for {context.event}: {e}")
                self.db.rollback()
                results.append(TriggerExecutionResult(
                    trigger_id=trigger_id,
                    trigger_name=trigger_name,
                    status=TriggerExecutionStatus.FAILED.value,
                    error=str(e)[:500],
                ))
        results.extend(self.run_milestones(context))
        return results

    def run_milestones(self, context: TriggerContext) -> List[TriggerExecutionResult]:
        try:
            return self.milestones.handle(context)
        except Exception as e:
            logger.exception(f"Milestone workflow failed for {context.entity_type} {context.entity_id}: {e}")
            self.db.rollback()
            return [TriggerExecutionResult(
                trigger_name="milestones",
                status=TriggerExecutionStatus.FAILED.value,
                error=str(e)[:500],
            )]

    def evaluate_trigger(self, trigger: WorkflowTrigger, context: TriggerContext) -> TriggerExecutionResult:
        key = dedupe_key_for(trigger.id, context.entity_id, context.event)

        if self._already_executed(key):
            logger.info(f"Trigger {trigger.name} already fired for {context.entity_type} {context.entity_id}")
            return TriggerExecutionResult(
                trigger_id=trigger.id, trigger_name=trigger.name,
                status=TriggerExecutionStatus.SKIPPED.value, error="already executed",
            )

        if not evaluate_condition(trigger.condition, context.data):
            self._log(trigger, context, TriggerExecutionStatus.SKIPPED.value, error="Condition not met")
            self.db.commit()
            return TriggerExecutionResult(
                trigger_id=trigger.id, trigger_name=trigger.name,
                status=TriggerExecutionStatus.SKIPPED.value, error="Condition not met",
            )

        log = self._claim(trigger, context, key)
        if log is None:
            return TriggerExecutionResult(
                trigger_id=trigger.id, trigger_name=trigger.name,
                status=TriggerExecutionStatus.SKIPPED.value, error="already executed",
            )

        action_results = []
        failed = False
        for action in trigger.actions or []:
            outcome = self.execute_action(action, context, trigger)
            action_results.append(outcome)
            if not outcome["success"]:
                failed = True

        log = self.db.get(TriggerExecutionLog, log.id)
        log.result = action_results
        if failed:
            log.status = TriggerExecutionStatus.FAILED.value
            log.error = "One or more actions failed"
            log.dedupe_key = None
        else:
            log.status = TriggerExecutionStatus.SUCCESS.value

        trigger = self.db.get(WorkflowTrigger, trigger.id)
        trigger.execution_count = (trigger.execution_count or 0) + 1
        trigger.last_executed_at = datetime.utcnow()
        self.db.commit()

        structured_logger.trigger_executed(
            trigger.id, trigger.name, context.event, context.entity_type, context.entity_id, log.status,
        )
        return TriggerExecutionResult(
            trigger_id=trigger.id,
            trigger_name=trigger.name,
            status=log.status,
            actions=action_results,
            error=log.error,
        )

    def _already_executed(self, key: str) -> bool:
        return self.db.query(TriggerExecutionLog.id).filter(TriggerExecutionLog.dedupe_key == key).first() is not None

    def _log(
        self,
        trigger: WorkflowTrigger,
        context: TriggerContext,
        status: str,
        dedupe_key: Optional[str] = None,
        error: Optional[str] = None,
    ) -> TriggerExecutionLog:
        log = TriggerExecutionLog(
            organization_id=context.organization_id,
            trigger_id=trigger.id,
            entity_type=context.entity_type,
            entity_id=context.entity_id,
            event=context.event,
            status=status,
            dedupe_key=dedupe_key,
            condition=trigger.condition,
            actions=trigger.actions,
            error=error,
            executed_by=context.user_id,
        )
        self.db.add(log)
        return log

    def _claim(self, trigger: WorkflowTrigger, context: TriggerContext, key: str) -> Optional[TriggerExecutionLog]:
        """Insert the RUNNING row; the unique dedupe key admits one winner."""
        log = self._log(trigger, context, TriggerExecutionStatus.RUNNING.value, dedupe_key=key)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Trigger {trigger.id} claimed concurrently for {context.entity_id}")
            return None
        return log

    # ==================
    # Actions
    # ==================

    def execute_action(self, action: Dict[str, Any], context: TriggerContext, trigger: WorkflowTrigger) -> Dict[str, Any]:
        action_type = action.get("type")
        config = action.get("config") or {}
        handlers = {
            ActionType.SEND_NOTIFICATION.value: self._send_notification,
            ActionType.CREATE_RESERVATION.value: self._create_reservation,
            ActionType.REQUIRE_APPROVAL.value: self._require_approval,
            ActionType.CHANGE_PROBABILITY.value: self._change_probability,
            ActionType.CHANGE_STATUS.value: self._change_status,
            ActionType.TRANSITION_STATUS.value: self._change_status,
            ActionType.EMIT_WEBHOOK.value: self._emit_webhook,
        }
        handler = handlers.get(action_type)
        if handler is None:
            return {"type": action_type, "success": False, "error": f"Unknown action type: {action_type}"}

        try:
            data = handler(config, context, trigger)
            return {"type": action_type, "success": True, "data": data}
        except PodcastFlowError as e:
            logger.warning(f"Action {action_type} of trigger {trigger.id} failed: {e.message}")
            self.db.rollback()
            return {"type": action_type, "success": False, "error": e.message}
        except Exception as e:
            logger.exception(f"Action {action_type} of trigger {trigger.id} raised: {e}")
            self.db.rollback()
            return {"type": action_type, "success": False, "error": str(e)[:500]}

    def _campaign(self, context: TriggerContext, action_type: str) -> Campaign:
        if context.entity_type != "campaign":
            raise TriggerActionError(action_type, f"only applies to campaigns, not {context.entity_type}")
        campaign = self.db.query(Campaign).filter(
            Campaign.id == context.entity_id,
            Campaign.organization_id == context.organization_id,
        ).first()
        if campaign is None:
            raise TriggerActionError(action_type, f"campaign {context.entity_id} not found")
        return campaign

    def _send_notification(self, config: Dict[str, Any], context: TriggerContext, trigger: WorkflowTrigger) -> Dict[str, Any]:
        event_type = config.get("eventType") or context.event
        payload = {
            **context.data,
            **(config.get("data") or {}),
            "entityType": context.entity_type,
            "entityId": context.entity_id,
            "triggerId": trigger.id,
            "triggeredBy": context.user_id,
        }
        payload.setdefault("title", f"Workflow event: {context.event}")
        payload.setdefault("message", f"Trigger {trigger.name} ran for {context.entity_type} {context.entity_id}")

        to_users = config.get("toUsers") or []
        to_roles = config.get("toRoles") or []
        recipient_ids = None
        if to_users or to_roles:
            users = self.resolver.for_users(context.organization_id, to_users) + \
                self.resolver.for_roles(context.organization_id, to_roles)
            recipient_ids = list(dict.fromkeys(user.id for user in users))
            if not recipient_ids:
                return {"recipients": 0}

        result = self.notifier.emit(
            context.organization_id, event_type, payload,
            recipient_ids=recipient_ids, severity=config.get("severity"),
        )
        if result.status == "error":
            raise TriggerActionError(ActionType.SEND_NOTIFICATION.value, result.reason or "emission failed")
        return {"status": result.status, "recipients": len(result.recipient_ids)}

    def _create_reservation(self, config: Dict[str, Any], context: TriggerContext, trigger: WorkflowTrigger) -> Dict[str, Any]:
        action_type = ActionType.CREATE_RESERVATION.value
        campaign = self._campaign(context, action_type)

        if self.reservations.has_active_reservation(campaign.id):
            return {"skipped": True, "reason": "campaign already has an active reservation"}

        items = config.get("items") or context.data.get("items") or context.data.get("scheduleItems")
        if not items:
            raise TriggerActionError(action_type, "no schedule items to reserve")

        return reserve_campaign_schedule(
            self.reservations,
            self.settings_service,
            campaign,
            items,
            context.data,
            user_id=context.user_id,
            hold_hours=config.get("holdDurationHours"),
            priority=config.get("priority", "normal"),
            fallback_strategy=config.get("fallbackStrategy"),
        )

    def _require_approval(self, config: Dict[str, Any], context: TriggerContext, trigger: WorkflowTrigger) -> Dict[str, Any]:
        campaign = self._campaign(context, ActionType.REQUIRE_APPROVAL.value)
        roles = config.get("roles") or ["admin"]

        approval = CampaignApproval(
            organization_id=context.organization_id,
            campaign_id=campaign.id,
            status=ApprovalStatus.PENDING.value,
            required_roles=roles,
            reason=config.get("reason") or f"Required by trigger {trigger.name}",
            trigger_id=trigger.id,
            requested_by=context.user_id,
        )
        self.db.add(approval)
        self.db.commit()

        approvers = self.resolver.for_roles(context.organization_id, roles)
        if approvers:
            self.notifier.emit(
                context.organization_id,
                config.get("eventType") or "campaign_approval_requested",
                {
                    **context.data,
                    "campaignId": campaign.id,
                    "campaignName": campaign.name,
                    "probability": campaign.probability,
                    "approvalId": approval.id,
                    "entityType": "campaign",
                    "entityId": campaign.id,
                    "sellerId": campaign.seller_id,
                },
                recipient_ids=[user.id for user in approvers],
                severity=config.get("severity", "high"),
            )
        return {"approvalId": approval.id, "approvers": len(approvers)}

    def _change_probability(self, config: Dict[str, Any], context: TriggerContext, trigger: WorkflowTrigger) -> Dict[str, Any]:
        action_type = ActionType.CHANGE_PROBABILITY.value
        campaign = self._campaign(context, action_type)

        amount = config.get("to", config.get("value"))
        if _as_number(amount) is None:
            raise TriggerActionError(action_type, "config.to must be a number")
        amount = int(_as_number(amount))

        operation = config.get("operation", "set")
        current = campaign.probability or 0
        if operation == "add":
            target = current + amount
        elif operation == "subtract":
            target = current - amount
        elif operation == "set":
            target = amount
        else:
            raise TriggerActionError(action_type, f"unknown operation {operation}")

        campaign.probability = max(0, min(100, target))
        self.db.commit()
        return {"previous": current, "probability": campaign.probability}

    def _change_status(self, config: Dict[str, Any], context: TriggerContext, trigger: WorkflowTrigger) -> Dict[str, Any]:
        action_type = ActionType.CHANGE_STATUS.value
        target = config.get("to") or config.get("status")
        if not target:
            raise TriggerActionError(action_type, "config.to is required")

        if context.entity_type == "reservation":
            reservation = self.reservations.transition(
                context.entity_id, target, reason=config.get("reason") or f"Trigger {trigger.name}",
                user_id=context.user_id,
            )
            return {"status": reservation.status}

        campaign = self._campaign(context, action_type)
        previous = campaign.status
        campaign.status = target
        self.db.commit()
        return {"previous": previous, "status": target}

    def _emit_webhook(self, config: Dict[str, Any], context: TriggerContext, trigger: WorkflowTrigger) -> Dict[str, Any]:
        url = config.get("url")
        if not url:
            raise TriggerActionError(ActionType.EMIT_WEBHOOK.value, "config.url is required")

        body = {
            "event": context.event,
            "entityType": context.entity_type,
            "entityId": context.entity_id,
            "organizationId": context.organization_id,
            "triggeredBy": context.user_id,
            "timestamp": datetime.utcnow().isoformat(),
            "data": config.get("payload") or context.data,
        }
        entry = enqueue_webhook(
            self.db,
            context.organization_id,
            url,
            body,
            event_type=context.event,
            secret=config.get("secret"),
            headers=config.get("headers"),
            trigger_id=trigger.id,
        )
        self.db.commit()
        return {"outboxId": entry.id}
