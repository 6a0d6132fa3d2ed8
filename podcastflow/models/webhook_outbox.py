"""
Webhook Outbox Model

Outbound HTTP posts (Slack incoming webhooks, organization webhooks, trigger
emit_webhook actions) are written here inside the business transaction and
delivered later by WebhookOutboxProcessor with retry and backoff.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text, JSON, Index, ForeignKey
import enum

from ..database import Base


class OutboxStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


class OutboxChannel(str, enum.Enum):
    SLACK = "slack"
    WEBHOOK = "webhook"


class WebhookOutbox(Base):
    __tablename__ = "webhook_outbox"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    channel = Column(String(20), nullable=False, default=OutboxChannel.WEBHOOK.value)
    event_type = Column(String(100), nullable=True)
    url = Column(String(1000), nullable=False)
    payload = Column(JSON, nullable=False)
    headers = Column(JSON, nullable=True)

    # Idempotency / origin
    delivery_id = Column(String(36), nullable=True)  # NotificationDelivery.id
    trigger_id = Column(String(36), nullable=True)

    # Processing
    status = Column(String(20), default=OutboxStatus.PENDING.value)
    attempts = Column(Integer, default=0)
    max_attempts = Column(Integer, default=5)
    next_attempt_at = Column(DateTime, default=datetime.utcnow)
    last_error = Column(Text, nullable=True)
    response_status = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_webhook_outbox_status_next", "status", "next_attempt_at"),
        Index("ix_webhook_outbox_org", "organization_id", "created_at"),
    )

    def __repr__(self):
        return f"<WebhookOutbox {self.channel} {self.status} attempts={self.attempts}>"
