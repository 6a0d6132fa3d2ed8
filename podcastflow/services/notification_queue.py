"""
Notification Queue Processor

Polling consumer of notification_queue:
- claim: UPDATE ... SET status='processing', attempts=attempts+1
  WHERE id=:id AND status='pending' (exactly one worker wins a row)
- success -> completed; no remaining recipients -> skipped
- failure -> pending again after retry_delay * attempts (linear backoff),
  or failed once attempts reach max_attempts
- processing rows abandoned by a crashed worker are returned to pending
  after the stale-claim window
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import NotificationDeliveryError
from ..models.notification import NotificationQueue, QueueStatus
from ..utils.db_helpers import claim_by_status
from .delivery_service import NotificationDeliveryService
from .recipients import RecipientResolver

logger = logging.getLogger(__name__)


class NotificationQueueProcessor:
    """
    Drains notification_queue. Should be run periodically by a background task.
    """

    def __init__(
        self,
        db: Session,
        delivery: Optional[NotificationDeliveryService] = None,
        resolver: Optional[RecipientResolver] = None,
    ):
        self.db = db
        self.delivery = delivery or NotificationDeliveryService(db)
        self.resolver = resolver or RecipientResolver(db)
        self.retry_delay = settings.notification_retry_delay

    def claim_batch(self, limit: Optional[int] = None, now: Optional[datetime] = None) -> List[NotificationQueue]:
        """Claim up to `limit` due rows, ordered by priority then age."""
        now = now or datetime.utcnow()
        limit = limit or settings.notification_batch_size

        candidate_ids = [
            row.id for row in self.db.query(NotificationQueue.id).filter(
                NotificationQueue.status == QueueStatus.PENDING.value,
                NotificationQueue.scheduled_for <= now,
            ).order_by(
                NotificationQueue.priority.asc(),
                NotificationQueue.created_at.asc(),
            ).limit(limit).all()
        ]

        claimed = []
        for entry_id in candidate_ids:
            won = claim_by_status(
                self.db, NotificationQueue, entry_id, [QueueStatus.PENDING.value],
                {
                    "status": QueueStatus.PROCESSING.value,
                    "attempts": NotificationQueue.attempts + 1,
                    "claimed_at": now,
                    "updated_at": now,
                },
            )
            if won:
                claimed.append(entry_id)
        self.db.commit()

        if not claimed:
            return []
        return self.db.query(NotificationQueue).filter(
            NotificationQueue.id.in_(claimed)
        ).order_by(
            NotificationQueue.priority.asc(),
            NotificationQueue.created_at.asc(),
        ).all()

    def process_entry(self, entry: NotificationQueue) -> bool:
        """Deliver one claimed row. Returns True when the row is settled."""
        try:
            recipients = self.resolver.for_users(entry.organization_id, entry.recipient_ids or [])
            if not recipients:
                entry.status = QueueStatus.SKIPPED.value
                entry.processed_at = datetime.utcnow()
                entry.meta = {**(entry.meta or {}), "reason": "no active recipients"}
                self.db.commit()
                return True

            results = self.delivery.send_bulk(
                entry.organization_id, entry.event_type, entry.event_payload or {}, recipients
            )
            retryable = [r for r in results if not r.success and r.retryable]
            if retryable:
                first = retryable[0]
                raise NotificationDeliveryError(
                    first.channel,
                    f"{len(retryable)} delivery(ies) failed: " + "; ".join(r.error or "" for r in retryable),
                )

            entry.status = QueueStatus.COMPLETED.value
            entry.processed_at = datetime.utcnow()
            entry.last_error = None
            entry.meta = {
                **(entry.meta or {}),
                "delivered": sum(1 for r in results if r.success and not r.duplicate),
                "duplicates": sum(1 for r in results if r.duplicate),
                "permanentFailures": [r.error for r in results if not r.success],
            }
            self.db.commit()
            return True

        except Exception as e:
            logger.error(f"Error processing notification {entry.id} ({entry.event_type}): {e}")
            self.db.rollback()
            self._handle_failure(entry, str(e))
            self.db.commit()
            return False

    def _handle_failure(self, entry: NotificationQueue, error: str):
        """Linear backoff: retry_delay * attempts seconds"""
        entry.last_error = error[:1000]
        entry.claimed_at = None

        if entry.attempts >= entry.max_attempts:
            entry.status = QueueStatus.FAILED.value
            entry.processed_at = datetime.utcnow()
            logger.error(f"Notification {entry.id} permanently failed after {entry.attempts} attempts")
        else:
            entry.status = QueueStatus.PENDING.value
            delay = self.retry_delay * entry.attempts
            entry.scheduled_for = datetime.utcnow() + timedelta(seconds=delay)
            logger.warning(f"Notification {entry.id} will retry in {delay} seconds")

    def process_batch(self, limit: Optional[int] = None) -> Tuple[int, int]:
        """Returns: (success_count, failure_count)"""
        success_count = 0
        failure_count = 0
        for entry in self.claim_batch(limit):
            if self.process_entry(entry):
                success_count += 1
            else:
                failure_count += 1
        return success_count, failure_count

    def release_stale_claims(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=settings.notification_stale_claim_seconds)
        result = self.db.execute(
            update(NotificationQueue)
            .where(
                NotificationQueue.status == QueueStatus.PROCESSING.value,
                NotificationQueue.claimed_at < cutoff,
            )
            .values(status=QueueStatus.PENDING.value, claimed_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            logger.warning(f"Released {result.rowcount} stale notification claim(s)")
        return result.rowcount

    def get_failed_entries(self, organization_id: Optional[str] = None, limit: int = 100) -> List[NotificationQueue]:
        query = self.db.query(NotificationQueue).filter(NotificationQueue.status == QueueStatus.FAILED.value)
        if organization_id:
            query = query.filter(NotificationQueue.organization_id == organization_id)
        return query.order_by(NotificationQueue.updated_at.desc()).limit(limit).all()

    def retry_failed_entry(self, entry_id: str, organization_id: Optional[str] = None) -> bool:
        query = self.db.query(NotificationQueue).filter(NotificationQueue.id == entry_id)
        if organization_id:
            query = query.filter(NotificationQueue.organization_id == organization_id)
        entry = query.first()
        if not entry or entry.status != QueueStatus.FAILED.value:
            return False

        entry.status = QueueStatus.PENDING.value
        entry.attempts = 0
        entry.scheduled_for = datetime.utcnow()
        entry.last_error = None
        entry.processed_at = None
        self.db.commit()
        return True
