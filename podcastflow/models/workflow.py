"""
Workflow Automation Models

WorkflowTrigger: organization rule bound to one event, with an optional
condition tree and an ordered list of actions.
TriggerExecutionLog: audit + idempotency. A successful execution keeps
dedupe_key = "trigger:entity:event" so the same state change never fires the
same trigger twice. Built-in milestone steps log with trigger_id NULL and
dedupe_key = "milestone:step:campaign".
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, DateTime, ForeignKey, Integer, Boolean, Text, JSON, Index, UniqueConstraint
)
import enum

from ..database import Base


class TriggerEvent(str, enum.Enum):
    # Workflow events
    CAMPAIGN_CREATED = "campaign_created"
    SCHEDULE_CREATED = "schedule_created"
    SCHEDULE_VALIDATED = "schedule_validated"
    PROBABILITY_UPDATED = "probability_updated"
    INVENTORY_RESERVED = "inventory_reserved"
    CONTRACT_GENERATED = "contract_generated"
    IO_UPLOADED = "io_uploaded"
    INVOICE_GENERATED = "invoice_generated"
    RATE_DELTA_DETECTED = "rate_delta_detected"
    BUDGET_THRESHOLD_CROSSED = "budget_threshold_crossed"
    FIRST_SPOT_BOOKED = "first_spot_booked"
    # Built-in notification events that may also drive triggers
    ADMIN_APPROVAL_REQUESTED = "admin_approval_requested"
    CAMPAIGN_APPROVAL_REQUESTED = "campaign_approval_requested"
    TALENT_APPROVAL_REQUESTED = "talent_approval_requested"
    SCHEDULE_BUILT = "schedule_built"
    SCHEDULE_COMMITTED = "schedule_committed"
    RESERVATION_CONFIRMED = "reservation_confirmed"
    RESERVATION_EXPIRED = "reservation_expired"


class ActionType(str, enum.Enum):
    SEND_NOTIFICATION = "send_notification"
    CREATE_RESERVATION = "create_reservation"
    REQUIRE_APPROVAL = "require_approval"
    CHANGE_PROBABILITY = "change_probability"
    CHANGE_STATUS = "change_status"
    TRANSITION_STATUS = "transition_status"
    EMIT_WEBHOOK = "emit_webhook"


class TriggerExecutionStatus(str, enum.Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class WorkflowTrigger(Base):
    __tablename__ = "workflow_triggers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    event = Column(String(50), nullable=False)
    condition = Column(JSON, nullable=True)
    actions = Column(JSON, nullable=False, default=list)
    is_enabled = Column(Boolean, default=True)
    priority = Column(Integer, default=100)  # lower number = evaluated first

    execution_count = Column(Integer, default=0)
    last_executed_at = Column(DateTime, nullable=True)

    created_by = Column(String(36), nullable=True)
    updated_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_trigger_org_event", "organization_id", "event", "is_enabled"),
    )

    def __repr__(self):
        return f"<WorkflowTrigger {self.name} on {self.event} p={self.priority}>"


class TriggerExecutionLog(Base):
    __tablename__ = "trigger_execution_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), nullable=False)
    # NULL for built-in campaign milestone steps
    trigger_id = Column(String(36), ForeignKey("workflow_triggers.id", ondelete="CASCADE"), nullable=True)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(36), nullable=True)
    event = Column(String(50), nullable=False)

    status = Column(String(20), default=TriggerExecutionStatus.RUNNING.value)
    dedupe_key = Column(String(200), nullable=True)
    condition = Column(JSON, nullable=True)
    actions = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)

    executed_by = Column(String(36), nullable=True)
    executed_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_trigger_execution_dedupe"),
        Index("ix_trigger_execution_lookup", "trigger_id", "entity_id", "event"),
    )

    def __repr__(self):
        return f"<TriggerExecutionLog {self.trigger_id} {self.entity_id} {self.status}>"


class WorkflowAutomationSetting(Base):
    __tablename__ = "workflow_automation_settings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    key = Column(String(100), nullable=False)
    value = Column(JSON, nullable=False)
    updated_by = Column(String(36), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("organization_id", "key", name="uq_workflow_setting_org_key"),
    )

    def __repr__(self):
        return f"<WorkflowAutomationSetting {self.key}>"
