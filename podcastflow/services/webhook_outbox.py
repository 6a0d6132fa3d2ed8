"""
Webhook Outbox

Slack messages, organization webhooks and trigger emit_webhook actions are
written to webhook_outbox in the caller's transaction and posted later by
WebhookOutboxProcessor:
- skip_locked reads so several workers can drain the table
- exponential backoff (1, 2, 4, ... minutes, capped at 60)
- FAILED after max_attempts, visible to operators and manually retryable
"""

import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import httpx
from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..config import settings
from ..models.webhook_outbox import WebhookOutbox, OutboxStatus, OutboxChannel
from ..utils.db_helpers import get_pending_with_skip_locked

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


def sign_payload(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def serialize_payload(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


def enqueue_webhook(
    db: Session,
    organization_id: str,
    url: str,
    payload: Dict[str, Any],
    channel: str = OutboxChannel.WEBHOOK.value,
    event_type: Optional[str] = None,
    secret: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    delivery_id: Optional[str] = None,
    trigger_id: Optional[str] = None,
) -> WebhookOutbox:
    """
    Add an outbound POST to the outbox. Does not commit; the row is
    published together with the business change that produced it.
    """
    all_headers = {"Content-Type": "application/json"}
    if event_type:
        all_headers["X-PodcastFlow-Event"] = event_type
    if secret:
        all_headers[SIGNATURE_HEADER] = sign_payload(secret, serialize_payload(payload))
    if headers:
        all_headers.update(headers)

    entry = WebhookOutbox(
        organization_id=organization_id,
        channel=channel,
        event_type=event_type,
        url=url,
        payload=payload,
        headers=all_headers,
        delivery_id=delivery_id,
        trigger_id=trigger_id,
        status=OutboxStatus.PENDING.value,
        max_attempts=settings.webhook_max_attempts,
        next_attempt_at=datetime.utcnow(),
    )
    db.add(entry)
    db.flush()
    return entry


class WebhookOutboxProcessor:
    """
    Posts pending outbox rows. Should be run periodically by a background task.
    """

    def __init__(self, db: Session, client: Optional[httpx.Client] = None):
        self.db = db
        self.client = client
        self.timeout = settings.webhook_timeout_seconds

    def get_pending(self, limit: int = 50) -> List[WebhookOutbox]:
        now = datetime.utcnow()
        return get_pending_with_skip_locked(
            self.db,
            WebhookOutbox,
            and_(
                WebhookOutbox.status.in_([OutboxStatus.PENDING.value, OutboxStatus.RETRYING.value]),
                WebhookOutbox.next_attempt_at <= now,
                WebhookOutbox.attempts < WebhookOutbox.max_attempts,
            ),
            order_by=(WebhookOutbox.next_attempt_at,),
            limit=limit,
        )

    def get_failed(self, organization_id: Optional[str] = None, limit: int = 100) -> List[WebhookOutbox]:
        query = self.db.query(WebhookOutbox).filter(WebhookOutbox.status == OutboxStatus.FAILED.value)
        if organization_id:
            query = query.filter(WebhookOutbox.organization_id == organization_id)
        return query.order_by(WebhookOutbox.created_at.desc()).limit(limit).all()

    def retry_failed(self, entry_id: str, organization_id: Optional[str] = None) -> bool:
        query = self.db.query(WebhookOutbox).filter(WebhookOutbox.id == entry_id)
        if organization_id:
            query = query.filter(WebhookOutbox.organization_id == organization_id)
        entry = query.first()
        if not entry or entry.status != OutboxStatus.FAILED.value:
            return False

        entry.status = OutboxStatus.PENDING.value
        entry.attempts = 0
        entry.next_attempt_at = datetime.utcnow()
        entry.last_error = None
        self.db.commit()
        return True

    def _post(self, entry: WebhookOutbox) -> httpx.Response:
        body = serialize_payload(entry.payload or {})
        headers = dict(entry.headers or {"Content-Type": "application/json"})
        if self.client is not None:
            return self.client.post(entry.url, content=body, headers=headers, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(entry.url, content=body, headers=headers)

    def process_entry(self, entry: WebhookOutbox) -> bool:
        entry.status = OutboxStatus.PROCESSING.value
        entry.attempts = (entry.attempts or 0) + 1
        self.db.commit()

        try:
            response = self._post(entry)
            entry.response_status = response.status_code
            if response.status_code < 300:
                entry.status = OutboxStatus.COMPLETED.value
                entry.completed_at = datetime.utcnow()
                entry.last_error = None
                self.db.commit()
                return True

            if 400 <= response.status_code < 500 and response.status_code != 429:
                # The receiver rejected the request; retrying will not help
                entry.attempts = entry.max_attempts
            self._handle_failure(entry, f"HTTP {response.status_code}: {response.text[:500]}")
            self.db.commit()
            return False

        except httpx.HTTPError as e:
            logger.error(f"Error posting outbox entry {entry.id} to {entry.url}: {e}")
            self._handle_failure(entry, str(e))
            self.db.commit()
            return False

    def _handle_failure(self, entry: WebhookOutbox, error: str):
        """Exponential backoff: 1, 2, 4, 8, ... minutes, capped at 60"""
        entry.last_error = error[:1000]

        if entry.attempts >= entry.max_attempts:
            entry.status = OutboxStatus.FAILED.value
            logger.error(f"Outbox entry {entry.id} permanently failed after {entry.attempts} attempts")
        else:
            entry.status = OutboxStatus.RETRYING.value
            delay_minutes = min(2 ** (entry.attempts - 1), 60)
            entry.next_attempt_at = datetime.utcnow() + timedelta(minutes=delay_minutes)
            logger.warning(f"Outbox entry {entry.id} will retry in {delay_minutes} minutes")

    def process_batch(self, limit: int = 50) -> Tuple[int, int]:
        """Returns: (success_count, failure_count)"""
        success_count = 0
        failure_count = 0
        for entry in self.get_pending(limit):
            if self.process_entry(entry):
                success_count += 1
            else:
                failure_count += 1
        return success_count, failure_count
