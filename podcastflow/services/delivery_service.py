"""
Notification Delivery Service

Idempotent per-(recipient, channel) sender:
1. organization / event / user preference filtering, quiet hours
2. idempotency key lookup (duplicate sends are reported, not repeated)
3. template lookup and rendering
4. channel dispatch: inApp row, mail gateway, Slack / webhook outbox
5. NotificationDelivery row with status and provider metadata
"""

import hashlib
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import NotificationDeliveryError, TemplateNotFoundError
from ..models.notification import (
    Channel, DeliveryStatus, Notification, NotificationDelivery, Severity, UserNotificationPreference
)
from ..models.organization import Organization, User
from ..models.webhook_outbox import OutboxChannel
from ..schemas.notification import (
    DeliveryResult, EventConfig, OrganizationNotificationSettings, QuietHours, UserPreferenceUpdate
)
from ..utils.logging_config import get_logger
from .channels import MailGateway, MailMessage, get_mail_gateway
from .template_renderer import TemplateStore, render_message
from .webhook_outbox import enqueue_webhook

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

# rows in these states are never re-sent for the same key
SETTLED_STATUSES = (DeliveryStatus.SENT.value, DeliveryStatus.QUEUED.value, DeliveryStatus.SKIPPED.value)

# quiet hours hold back push channels only; the in-app inbox is silent
QUIET_HOUR_CHANNELS = (Channel.EMAIL.value, Channel.SLACK.value, Channel.WEBHOOK.value)


def event_minute(payload: Dict[str, Any], now: Optional[datetime] = None) -> str:
    """Minute bucket for the idempotency key, taken from the emission timestamp."""
    stamp = payload.get("timestamp")
    moment = None
    if isinstance(stamp, datetime):
        moment = stamp
    elif isinstance(stamp, str):
        try:
            moment = datetime.fromisoformat(stamp.replace("Z", "+00:00"))
        except ValueError:
            moment = None
    if moment is None:
        moment = now or datetime.utcnow()
    return moment.strftime("%Y-%m-%dT%H:%M")


def compute_idempotency_key(
    organization_id: str,
    event_type: str,
    recipient_id: str,
    payload: Dict[str, Any],
    channel: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    # the emission timestamp only contributes its minute bucket
    hashed = {k: v for k, v in payload.items() if k != "timestamp"}
    body = json.dumps(hashed, sort_keys=True, separators=(",", ":"), default=str)
    parts = [organization_id, event_type, recipient_id, body, event_minute(payload, now)]
    if channel:
        parts.append(channel)
    return hashlib.sha256(":".join(parts).encode("utf-8")).hexdigest()


def in_quiet_hours(quiet: Optional[QuietHours], now: Optional[datetime] = None) -> bool:
    """
    True when `now` (naive UTC) falls inside the window in the window's own
    timezone. A start later than the end wraps past midnight (22:00-07:00).
    """
    if quiet is None or not quiet.enabled:
        return False

    try:
        zone = ZoneInfo(quiet.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown quiet hours timezone {quiet.timezone!r}, using UTC")
        zone = ZoneInfo("UTC")

    now = now or datetime.utcnow()
    local = now.replace(tzinfo=ZoneInfo("UTC")).astimezone(zone)
    minute_of_day = local.hour * 60 + local.minute

    start_h, start_m = (int(p) for p in quiet.start.split(":"))
    end_h, end_m = (int(p) for p in quiet.end.split(":"))
    start = start_h * 60 + start_m
    end = end_h * 60 + end_m

    if start == end:
        return False
    if start < end:
        return start <= minute_of_day < end
    return minute_of_day >= start or minute_of_day < end


def should_send(
    org_settings: OrganizationNotificationSettings,
    event_config: EventConfig,
    channel: str,
    preference: Optional[UserNotificationPreference] = None,
    now: Optional[datetime] = None,
) -> Tuple[bool, Optional[str]]:
    """
    Returns (send, reason). `reason` names the first filter that rejected
    the delivery.
    """
    if not org_settings.enabled:
        return False, "notifications disabled for organization"
    if not event_config.enabled:
        return False, "event disabled"
    if channel not in event_config.channels:
        return False, f"channel {channel} not configured for event"
    if not org_settings.channels.is_enabled(channel):
        return False, f"channel {channel} disabled for organization"

    mandatory = event_config.mandatory
    if preference is not None and not mandatory:
        if preference.enabled is False:
            return False, "recipient opted out"
        if (preference.channels or {}).get(channel) is False:
            return False, f"recipient disabled {channel}"

    bypass = mandatory or event_config.quietHourBypass or event_config.severity == Severity.URGENT
    if channel in QUIET_HOUR_CHANNELS and not bypass:
        quiet = org_settings.quietHours
        if preference is not None and preference.quiet_hours:
            quiet = QuietHours.model_validate(preference.quiet_hours)
        if in_quiet_hours(quiet, now):
            return False, "quiet hours"

    return True, None


class NotificationDeliveryService:
    def __init__(
        self,
        db: Session,
        mail_gateway: Optional[MailGateway] = None,
        templates: Optional[TemplateStore] = None,
    ):
        self.db = db
        self.mail_gateway = mail_gateway or get_mail_gateway()
        self.templates = templates or TemplateStore(db)
        self._org_cache: Dict[str, Tuple[Optional[Organization], OrganizationNotificationSettings]] = {}

    # ==================
    # Lookups
    # ==================

    def organization_settings(self, organization_id: str) -> Tuple[Optional[Organization], OrganizationNotificationSettings]:
        if organization_id not in self._org_cache:
            org = self.db.query(Organization).filter(Organization.id == organization_id).first()
            try:
                parsed = OrganizationNotificationSettings.from_org_settings(org.settings if org else None)
            except ValueError as e:
                logger.warning(f"Invalid notification settings for org {organization_id}, using defaults: {e}")
                parsed = OrganizationNotificationSettings()
            self._org_cache[organization_id] = (org, parsed)
        return self._org_cache[organization_id]

    def user_preference(self, user_id: str, organization_id: str, event_type: str) -> Optional[UserNotificationPreference]:
        return self.db.query(UserNotificationPreference).filter(
            UserNotificationPreference.user_id == user_id,
            UserNotificationPreference.organization_id == organization_id,
            UserNotificationPreference.event_type == event_type,
        ).first()

    def set_preference(self, organization_id: str, user_id: str, update: UserPreferenceUpdate) -> UserNotificationPreference:
        preference = self.user_preference(user_id, organization_id, update.event_type)
        if preference is None:
            preference = UserNotificationPreference(
                user_id=user_id, organization_id=organization_id, event_type=update.event_type
            )
            self.db.add(preference)
        preference.enabled = update.enabled
        preference.channels = update.channels or None
        preference.quiet_hours = update.quiet_hours.model_dump() if update.quiet_hours else None
        self.db.commit()
        return preference

    def find_delivery(self, idempotency_key: str) -> Optional[NotificationDelivery]:
        return self.db.query(NotificationDelivery).filter(
            NotificationDelivery.idempotency_key == idempotency_key
        ).first()

    # ==================
    # Delivery
    # ==================

    def send_notification(
        self,
        organization_id: str,
        event_type: str,
        payload: Dict[str, Any],
        recipient: User,
        channel: str,
        now: Optional[datetime] = None,
    ) -> DeliveryResult:
        org, org_settings = self.organization_settings(organization_id)
        event_config = org_settings.event_config(event_type)
        preference = self.user_preference(recipient.id, organization_id, event_type)

        send, reason = should_send(org_settings, event_config, channel, preference, now)
        if not send:
            logger.debug(f"Skipping {event_type} via {channel} for {recipient.id}: {reason}")
            return DeliveryResult(
                success=True, channel=channel, recipient_id=recipient.id,
                status=DeliveryStatus.SKIPPED.value, reason=reason,
            )

        key = compute_idempotency_key(organization_id, event_type, recipient.id, payload, channel, now)
        delivery = self.find_delivery(key)
        if delivery is not None and delivery.status in SETTLED_STATUSES:
            logger.info(f"Duplicate delivery suppressed: {event_type} via {channel} to {recipient.id}")
            return DeliveryResult(
                success=True, channel=channel, recipient_id=recipient.id, status=delivery.status,
                delivery_id=delivery.id, duplicate=True,
            )

        if delivery is None:
            delivery = NotificationDelivery(
                id=str(uuid.uuid4()),
                idempotency_key=key,
                organization_id=organization_id,
                event_type=event_type,
                event_payload=payload,
                recipient_id=recipient.id,
                channel=channel,
                attempts=1,
            )
            self.db.add(delivery)
        else:
            delivery.attempts = (delivery.attempts or 0) + 1
            delivery.error = None

        variables = dict(payload)
        variables.setdefault("recipientName", recipient.name or recipient.email)
        variables.setdefault("recipientEmail", recipient.email)
        if org is not None:
            variables.setdefault("organizationName", org.name)

        error = None
        retryable = False
        try:
            template = self.templates.find_template(event_type, channel, organization_id)
            message = render_message(template, channel, variables)
            status, meta = self._dispatch(
                channel, organization_id, event_type, payload, recipient, message, org_settings, event_config, delivery.id
            )
        except TemplateNotFoundError as e:
            logger.warning(f"{e.message}; delivery to {recipient.id} skipped")
            status, meta = DeliveryStatus.SKIPPED.value, {"reason": "template_not_found"}
        except NotificationDeliveryError as e:
            logger.error(f"Delivery of {event_type} to {recipient.id} failed: {e.message}")
            status, meta = DeliveryStatus.FAILED.value, None
            error = e.message
            retryable = e.retryable

        delivery.status = status
        delivery.meta = meta
        delivery.error = error[:1000] if error else None
        if status == DeliveryStatus.SENT.value:
            delivery.sent_at = datetime.utcnow()

        try:
            self.db.commit()
        except IntegrityError:
            # another worker recorded the same key first
            self.db.rollback()
            winner = self.find_delivery(key)
            return DeliveryResult(
                success=True, channel=channel, recipient_id=recipient.id,
                status=winner.status if winner else DeliveryStatus.SENT.value,
                delivery_id=winner.id if winner else None, duplicate=True,
            )

        structured_logger.notification_delivered(delivery.id, event_type, channel, status)
        return DeliveryResult(
            success=status != DeliveryStatus.FAILED.value,
            channel=channel,
            recipient_id=recipient.id,
            status=status,
            delivery_id=delivery.id,
            reason=(meta or {}).get("reason") if status == DeliveryStatus.SKIPPED.value else None,
            error=error,
            retryable=retryable,
        )

    def _dispatch(
        self,
        channel: str,
        organization_id: str,
        event_type: str,
        payload: Dict[str, Any],
        recipient: User,
        message,
        org_settings: OrganizationNotificationSettings,
        event_config: EventConfig,
        delivery_id: str,
    ) -> Tuple[str, Dict[str, Any]]:
        if channel == Channel.IN_APP.value:
            notification = Notification(
                organization_id=organization_id,
                user_id=recipient.id,
                type=event_type,
                title=(message.subject or event_type)[:300],
                message=message.text_body,
                action_url=payload.get("actionUrl"),
                priority=event_config.severity.value,
                entity_type=payload.get("entityType"),
                entity_id=payload.get("entityId"),
            )
            self.db.add(notification)
            self.db.flush()
            return DeliveryStatus.SENT.value, {"notificationId": notification.id}

        if channel == Channel.EMAIL.value:
            if not recipient.email:
                raise NotificationDeliveryError(channel, f"User {recipient.id} has no email address", retryable=False)
            message_id = self.mail_gateway.send_email(MailMessage(
                to=recipient.email,
                subject=message.subject,
                html_body=message.html_body or message.body,
                text_body=message.text_body,
            ))
            return DeliveryStatus.SENT.value, {"messageId": message_id}

        if channel == Channel.SLACK.value:
            url = org_settings.channels.slack.webhookUrl
            if not url:
                raise NotificationDeliveryError(channel, "Slack webhook URL is not configured", retryable=False)
            text = f"*{message.subject}*\n{message.text_body}" if message.subject else message.text_body
            entry = enqueue_webhook(
                self.db, organization_id, url, {"text": text},
                channel=OutboxChannel.SLACK.value, event_type=event_type, delivery_id=delivery_id,
            )
            return DeliveryStatus.QUEUED.value, {"outboxId": entry.id}

        if channel == Channel.WEBHOOK.value:
            webhook = org_settings.channels.webhook
            if not webhook.url:
                raise NotificationDeliveryError(channel, "Webhook URL is not configured", retryable=False)
            body = {
                "event": event_type,
                "organizationId": organization_id,
                "recipientId": recipient.id,
                "subject": message.subject,
                "message": message.text_body,
                "data": payload,
            }
            entry = enqueue_webhook(
                self.db, organization_id, webhook.url, body,
                channel=OutboxChannel.WEBHOOK.value, event_type=event_type,
                secret=webhook.secret, delivery_id=delivery_id,
            )
            return DeliveryStatus.QUEUED.value, {"outboxId": entry.id}

        raise NotificationDeliveryError(channel, "Unsupported channel", retryable=False)

    def send_bulk(
        self,
        organization_id: str,
        event_type: str,
        payload: Dict[str, Any],
        recipients: Iterable[User],
        channels: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> List[DeliveryResult]:
        """Fan out over recipients x channels; one failure never stops the rest."""
        if channels is None:
            _, org_settings = self.organization_settings(organization_id)
            channels = org_settings.event_config(event_type).channels

        results = []
        for recipient in recipients:
            for channel in channels:
                results.append(self.send_notification(organization_id, event_type, payload, recipient, channel, now))
        return results

    # ==================
    # Inbox
    # ==================

    def list_inbox(self, organization_id: str, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        query = self.db.query(Notification).filter(
            Notification.organization_id == organization_id,
            Notification.user_id == user_id,
        )
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        return query.order_by(Notification.created_at.desc()).limit(limit).all()

    def mark_read(self, organization_id: str, user_id: str, notification_id: str) -> Optional[Notification]:
        notification = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.organization_id == organization_id,
            Notification.user_id == user_id,
        ).first()
        if notification is None:
            return None
        if not notification.is_read:
            notification.mark_as_read()
            self.db.commit()
        return notification

