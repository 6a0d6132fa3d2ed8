"""
Workflow Automation Schemas

Typed organization settings (stored as JSON per key in
workflow_automation_settings) and trigger definitions.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.workflow import ActionType, TriggerEvent


class FallbackStrategy(str, Enum):
    STRICT = "strict"
    RELAXED = "relaxed"
    FILL_ANYWHERE = "fill_anywhere"


# ==================
# Settings
# ==================

class MilestoneThresholds(BaseModel):
    pre_sale_active: int = Field(default=10, ge=0, le=100)
    schedule_available: int = Field(default=10, ge=0, le=100)
    schedule_valid: int = Field(default=35, ge=0, le=100)
    talent_approval_required: int = Field(default=65, ge=0, le=100)
    admin_approval_required: int = Field(default=90, ge=0, le=100)
    auto_reservation: int = Field(default=90, ge=0, le=100)
    order_creation: int = Field(default=100, ge=0, le=100)


class CampaignApprovalRule(BaseModel):
    enabled: bool = True
    at: int = Field(default=90, ge=0, le=100)
    roles: List[str] = Field(default_factory=lambda: ["admin", "master"])


class TalentApprovalRule(BaseModel):
    enabled: bool = True
    at: int = Field(default=65, ge=0, le=100)
    types: List[str] = Field(default_factory=lambda: ["host_read", "endorsement"])
    fallback: str = "producer"


class ApprovalRules(BaseModel):
    campaignApproval: CampaignApprovalRule = Field(default_factory=CampaignApprovalRule)
    talentApproval: TalentApprovalRule = Field(default_factory=TalentApprovalRule)


class NotificationToggles(BaseModel):
    email: bool = True
    inApp: bool = True
    webhook: bool = False


class RateCardDeltaTracking(BaseModel):
    enabled: bool = True
    threshold_percent: float = Field(default=10, ge=0, le=100)
    require_approval_above: float = Field(default=20, ge=0, le=100)


class CompetitiveCategoryChecking(BaseModel):
    enabled: bool = True
    mode: str = Field(default="warn", pattern="^(warn|block)$")
    buffer_days: int = Field(default=30, ge=0, le=365)


class BulkSchedulingDefaults(BaseModel):
    fallback_strategy: FallbackStrategy = FallbackStrategy.STRICT
    allow_multiple_per_show_per_day: bool = False
    max_spots_per_show_per_day: int = Field(default=1, ge=1, le=10)


class ReservationHoldSettings(BaseModel):
    hold_duration_hours: int = Field(default=48, ge=1, le=720)


# setting key -> model
SETTINGS_MODELS = {
    "milestone.thresholds": MilestoneThresholds,
    "approval.rules": ApprovalRules,
    "notifications.enabled": NotificationToggles,
    "rate_card.delta_tracking": RateCardDeltaTracking,
    "competitive.category_checking": CompetitiveCategoryChecking,
    "bulk.defaults": BulkSchedulingDefaults,
    "reservation.hold": ReservationHoldSettings,
}


class WorkflowSettings(BaseModel):
    """All typed settings for one organization, defaults filled in."""
    milestones: MilestoneThresholds = Field(default_factory=MilestoneThresholds)
    approvals: ApprovalRules = Field(default_factory=ApprovalRules)
    notifications: NotificationToggles = Field(default_factory=NotificationToggles)
    rate_card: RateCardDeltaTracking = Field(default_factory=RateCardDeltaTracking)
    competitive: CompetitiveCategoryChecking = Field(default_factory=CompetitiveCategoryChecking)
    bulk: BulkSchedulingDefaults = Field(default_factory=BulkSchedulingDefaults)
    reservation: ReservationHoldSettings = Field(default_factory=ReservationHoldSettings)
    custom: Dict[str, Any] = Field(default_factory=dict)

    def as_keyed_dict(self) -> Dict[str, Any]:
        data = {
            "milestone.thresholds": self.milestones.model_dump(mode="json"),
            "approval.rules": self.approvals.model_dump(mode="json"),
            "notifications.enabled": self.notifications.model_dump(mode="json"),
            "rate_card.delta_tracking": self.rate_card.model_dump(mode="json"),
            "competitive.category_checking": self.competitive.model_dump(mode="json"),
            "bulk.defaults": self.bulk.model_dump(mode="json"),
            "reservation.hold": self.reservation.model_dump(mode="json"),
        }
        data.update(self.custom)
        return data


class WorkflowSettingsUpdate(BaseModel):
    """PUT body: {"settings": {"milestone.thresholds": {...}, ...}}"""
    settings: Dict[str, Any] = Field(..., min_length=1)


# ==================
# Triggers
# ==================

CONDITION_OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte", "in", "nin", "contains", "regex")


def validate_condition_tree(node: Any, path: str = "condition") -> None:
    """Raise ValueError when a condition tree is malformed."""
    if not isinstance(node, dict):
        raise ValueError(f"{path} must be an object")

    for group in ("and", "or"):
        if group in node:
            children = node[group]
            if not isinstance(children, list) or not children:
                raise ValueError(f"{path}.{group} must be a non-empty list")
            for index, child in enumerate(children):
                validate_condition_tree(child, f"{path}.{group}[{index}]")

    if "field" in node or "operator" in node:
        if not node.get("field"):
            raise ValueError(f"{path}.field is required")
        operator = node.get("operator")
        if operator not in CONDITION_OPERATORS:
            raise ValueError(f"{path}.operator must be one of {', '.join(CONDITION_OPERATORS)}")
        if operator in ("in", "nin") and not isinstance(node.get("value"), list):
            raise ValueError(f"{path}.value must be a list for {operator}")
        if operator == "regex":
            try:
                re.compile(str(node.get("value")))
            except re.error as e:
                raise ValueError(f"{path}.value is not a valid pattern: {e}")
    elif "and" not in node and "or" not in node:
        raise ValueError(f"{path} needs a field comparison or an and/or group")


class TriggerAction(BaseModel):
    type: ActionType
    config: Dict[str, Any] = Field(default_factory=dict)


class TriggerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    event: str
    condition: Optional[Dict[str, Any]] = None
    actions: List[TriggerAction] = Field(..., min_length=1)
    is_enabled: bool = Field(default=True, alias="isEnabled")
    priority: int = Field(default=100, ge=0, le=1000)

    class Config:
        populate_by_name = True

    @field_validator("event", mode="before")
    @classmethod
    def validate_event(cls, v):
        if isinstance(v, TriggerEvent):
            return v.value
        if v not in {e.value for e in TriggerEvent}:
            raise ValueError(f"Unknown trigger event: {v}")
        return v

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, v):
        if v is not None:
            validate_condition_tree(v)
        return v


class TriggerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    event: Optional[str] = None
    condition: Optional[Dict[str, Any]] = None
    actions: Optional[List[TriggerAction]] = None
    is_enabled: Optional[bool] = Field(None, alias="isEnabled")
    priority: Optional[int] = Field(None, ge=0, le=1000)

    class Config:
        populate_by_name = True

    @field_validator("event")
    @classmethod
    def validate_event(cls, v):
        if v is not None and v not in {e.value for e in TriggerEvent}:
            raise ValueError(f"Unknown trigger event: {v}")
        return v

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, v):
        if v is not None:
            validate_condition_tree(v)
        return v


class TriggerResponse(BaseModel):
    id: str
    name: str
    event: str
    condition: Optional[Dict[str, Any]] = None
    actions: List[Dict[str, Any]]
    is_enabled: bool
    priority: int
    execution_count: int = 0
    last_executed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class WorkflowEventRequest(BaseModel):
    """Evaluate a domain event against the organization's triggers."""
    event: str = Field(..., min_length=1, max_length=50)
    entity_type: str = Field(default="campaign", alias="entityType")
    entity_id: str = Field(..., alias="entityId")
    data: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def default_entity_in_data(self):
        self.data.setdefault("entityId", self.entity_id)
        return self


class TriggerExecutionResult(BaseModel):
    """One stored trigger or built-in milestone step (trigger_id None, name "milestone:<step>")."""
    trigger_id: Optional[str] = None
    trigger_name: str
    status: str
    actions: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None
