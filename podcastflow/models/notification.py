"""
Notification Pipeline Models

NotificationQueue: emitted events waiting for async fan-out. Claimed by the
queue processor with an atomic pending -> processing status update.
NotificationDelivery: one row per (event, recipient, channel), unique on the
idempotency key so a duplicate send is detected instead of re-delivered.
Notification: in-app inbox row.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, Integer, Text, JSON, Index, UniqueConstraint
)
import enum

from ..database import Base


class Channel(str, enum.Enum):
    EMAIL = "email"
    IN_APP = "inApp"
    SLACK = "slack"
    WEBHOOK = "webhook"


class Severity(str, enum.Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


# severity -> queue priority (1 = most urgent)
SEVERITY_PRIORITY = {
    Severity.URGENT.value: 1,
    Severity.HIGH.value: 3,
    Severity.NORMAL.value: 5,
    Severity.LOW.value: 7,
}


class QueueStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class DeliveryStatus(str, enum.Enum):
    SENT = "sent"
    QUEUED = "queued"      # handed to the webhook outbox
    SKIPPED = "skipped"    # preferences, quiet hours, missing template
    FAILED = "failed"


class NotificationQueue(Base):
    __tablename__ = "notification_queue"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(String(100), nullable=False)
    event_payload = Column(JSON, nullable=False)
    recipient_ids = Column(JSON, nullable=False, default=list)

    priority = Column(Integer, nullable=False, default=5)  # 1..10, lower = more urgent
    scheduled_for = Column(DateTime, nullable=False, default=datetime.utcnow)

    status = Column(String(20), nullable=False, default=QueueStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)
    meta = Column("metadata", JSON, nullable=True)

    claimed_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_notification_queue_poll", "status", "scheduled_for", "priority", "created_at"),
        Index("ix_notification_queue_org", "organization_id", "status"),
    )

    def __repr__(self):
        return f"<NotificationQueue {self.event_type} {self.status} p={self.priority}>"


class NotificationDelivery(Base):
    __tablename__ = "notification_deliveries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    idempotency_key = Column(String(64), nullable=False)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(String(100), nullable=False)
    event_payload = Column(JSON, nullable=True)
    recipient_id = Column(String(36), nullable=False)
    channel = Column(String(20), nullable=False)

    status = Column(String(20), nullable=False, default=DeliveryStatus.SENT.value)
    attempts = Column(Integer, nullable=False, default=1)
    error = Column(Text, nullable=True)
    meta = Column("metadata", JSON, nullable=True)  # provider message id, outbox id, skip reason

    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_notification_delivery_key"),
        Index("ix_notification_delivery_recipient", "organization_id", "recipient_id", "created_at"),
    )

    def __repr__(self):
        return f"<NotificationDelivery {self.event_type} {self.channel} {self.status}>"


class NotificationTemplate(Base):
    __tablename__ = "notification_templates"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True)  # null = global
    event_type = Column(String(100), nullable=False)
    channel = Column(String(20), nullable=False)
    subject = Column(String(300), nullable=True)
    body = Column(Text, nullable=False)
    variables = Column(JSON, nullable=True)
    is_default = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_notification_template_lookup", "event_type", "channel", "organization_id"),
    )

    def __repr__(self):
        return f"<NotificationTemplate {self.event_type}/{self.channel}>"


class UserNotificationPreference(Base):
    __tablename__ = "user_notification_preferences"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(String(100), nullable=False)
    enabled = Column(Boolean, default=True)
    channels = Column(JSON, nullable=True)     # {"email": true, "inApp": false}
    quiet_hours = Column(JSON, nullable=True)  # {"enabled": true, "start": "22:00", "end": "07:00", "timezone": "..."}

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", "event_type", name="uq_user_notification_pref"),
    )


class Notification(Base):
    """In-app inbox entry"""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(100), nullable=False, index=True)
    title = Column(String(300), nullable=False)
    message = Column(Text, nullable=True)
    action_url = Column(String(500), nullable=True)
    priority = Column(String(20), default=Severity.NORMAL.value)

    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(36), nullable=True)

    is_read = Column(Boolean, default=False, index=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<Notification {self.type} - {self.title}>"

    def mark_as_read(self):
        self.is_read = True
        self.read_at = datetime.utcnow()
