"""
Notification Emission

Entry point used by reservations, bulk scheduling and workflow triggers.
Urgent and high severity events (priority <= 3) are delivered in-process;
everything else is written to notification_queue for the queue processor.
Emission is best-effort: it logs and returns, it never raises into the
business operation that produced the event.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.notification import NotificationQueue, QueueStatus, SEVERITY_PRIORITY, Severity
from ..schemas.notification import DeliveryResult
from .delivery_service import NotificationDeliveryService
from .recipients import RecipientResolver

logger = logging.getLogger(__name__)


@dataclass
class EmissionResult:
    status: str  # immediate | queued | skipped | error
    priority: int = SEVERITY_PRIORITY[Severity.NORMAL.value]
    recipient_ids: List[str] = field(default_factory=list)
    queue_entry_id: Optional[str] = None
    deliveries: List[DeliveryResult] = field(default_factory=list)
    reason: Optional[str] = None


def severity_priority(severity: Optional[str]) -> int:
    return SEVERITY_PRIORITY.get(severity or Severity.NORMAL.value, SEVERITY_PRIORITY[Severity.NORMAL.value])


class NotificationService:
    def __init__(
        self,
        db: Session,
        delivery: Optional[NotificationDeliveryService] = None,
        resolver: Optional[RecipientResolver] = None,
    ):
        self.db = db
        self._delivery = delivery
        self.resolver = resolver or RecipientResolver(db)

    @property
    def delivery(self) -> NotificationDeliveryService:
        if self._delivery is None:
            self._delivery = NotificationDeliveryService(self.db)
        return self._delivery

    def emit(
        self,
        organization_id: str,
        event_type: str,
        payload: Dict[str, Any],
        recipient_ids: Optional[List[str]] = None,
        severity: Optional[str] = None,
    ) -> EmissionResult:
        try:
            return self._emit(organization_id, event_type, payload, recipient_ids, severity)
        except Exception as e:
            logger.exception(f"Failed to emit {event_type} for org {organization_id}: {e}")
            self.db.rollback()
            return EmissionResult(status="error", reason=str(e)[:500])

    def _emit(
        self,
        organization_id: str,
        event_type: str,
        payload: Dict[str, Any],
        recipient_ids: Optional[List[str]],
        severity: Optional[str],
    ) -> EmissionResult:
        org, org_settings = self.delivery.organization_settings(organization_id)
        event_config = org_settings.event_config(event_type)
        if not org_settings.enabled or not event_config.enabled:
            logger.debug(f"{event_type} disabled for org {organization_id}")
            return EmissionResult(status="skipped", reason="event disabled")

        if recipient_ids:
            recipients = self.resolver.for_users(organization_id, recipient_ids)
        else:
            recipients = self.resolver.resolve(organization_id, event_type, payload)
        if not recipients:
            return EmissionResult(status="skipped", reason="no recipients")

        enriched = dict(payload)
        enriched["organizationId"] = organization_id
        enriched.setdefault("organizationName", org.name if org else None)
        enriched.setdefault("timestamp", datetime.utcnow().isoformat())

        priority = severity_priority(severity or event_config.severity.value)
        ids = [user.id for user in recipients]

        if priority <= settings.immediate_dispatch_max_priority:
            results = self.delivery.send_bulk(organization_id, event_type, enriched, recipients)
            retry = [r for r in results if not r.success and r.retryable]
            if not retry:
                logger.info(f"Dispatched {event_type} immediately to {len(ids)} recipient(s)")
                return EmissionResult(status="immediate", priority=priority, recipient_ids=ids, deliveries=results)
            # settled deliveries are suppressed by their idempotency keys on retry
            logger.warning(f"{len(retry)} immediate deliveries of {event_type} failed, queueing retry")
            entry = self._enqueue(organization_id, event_type, enriched, ids, priority)
            return EmissionResult(
                status="queued", priority=priority, recipient_ids=ids,
                queue_entry_id=entry.id, deliveries=results,
            )

        entry = self._enqueue(organization_id, event_type, enriched, ids, priority)
        return EmissionResult(status="queued", priority=priority, recipient_ids=ids, queue_entry_id=entry.id)

    def _enqueue(
        self,
        organization_id: str,
        event_type: str,
        payload: Dict[str, Any],
        recipient_ids: List[str],
        priority: int,
    ) -> NotificationQueue:
        entry = NotificationQueue(
            organization_id=organization_id,
            event_type=event_type,
            event_payload=payload,
            recipient_ids=recipient_ids,
            priority=priority,
            scheduled_for=datetime.utcnow(),
            status=QueueStatus.PENDING.value,
            attempts=0,
            max_attempts=settings.notification_max_attempts,
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        logger.debug(f"Queued {event_type} (priority {priority}) for {len(recipient_ids)} recipient(s)")
        return entry
