"""
Notifications Router

Failed queue entries (admin view + manual retry), the in-app inbox, and
per-user delivery preferences.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.notification import FailedQueueEntryResponse, NotificationResponse, UserPreferenceUpdate
from ..services.delivery_service import NotificationDeliveryService
from ..services.notification_queue import NotificationQueueProcessor
from ..services.webhook_outbox import WebhookOutboxProcessor
from ..utils.rate_limiter import limiter, get_rate_limit
from ..utils.tenant import TenantContext, get_tenant, require_admin

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


def require_user(tenant: TenantContext) -> str:
    if not tenant.user_id:
        raise HTTPException(status_code=400, detail="X-User-Id header is required")
    return tenant.user_id


# ==================
# Failed deliveries
# ==================

@router.get("/failed", response_model=List[FailedQueueEntryResponse])
async def list_failed_notifications(
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    """Queue entries that exhausted their attempts."""
    require_admin(tenant)
    processor = NotificationQueueProcessor(db)
    return [
        FailedQueueEntryResponse.model_validate(entry)
        for entry in processor.get_failed_entries(tenant.organization_id, limit)
    ]


@router.post("/failed/{entry_id}/retry")
@limiter.limit(get_rate_limit("notification_retry"))
async def retry_failed_notification(
    request: Request,
    entry_id: str,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    """Reset a failed entry to pending with a fresh attempt budget."""
    require_admin(tenant)
    if not NotificationQueueProcessor(db).retry_failed_entry(entry_id, tenant.organization_id):
        raise HTTPException(status_code=404, detail="Failed notification not found")
    return {"success": True, "entryId": entry_id}


@router.get("/webhooks/failed")
async def list_failed_webhooks(
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    require_admin(tenant)
    entries = WebhookOutboxProcessor(db).get_failed(tenant.organization_id, limit)
    return [
        {
            "id": entry.id,
            "url": entry.url,
            "channel": entry.channel,
            "attempts": entry.attempts,
            "maxAttempts": entry.max_attempts,
            "lastError": entry.last_error,
            "createdAt": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in entries
    ]


@router.post("/webhooks/failed/{entry_id}/retry")
@limiter.limit(get_rate_limit("notification_retry"))
async def retry_failed_webhook(
    request: Request,
    entry_id: str,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    require_admin(tenant)
    if not WebhookOutboxProcessor(db).retry_failed(entry_id, tenant.organization_id):
        raise HTTPException(status_code=404, detail="Failed webhook not found")
    return {"success": True, "entryId": entry_id}


# ==================
# Inbox
# ==================

@router.get("/inbox", response_model=List[NotificationResponse])
async def list_inbox(
    unread_only: bool = Query(False, alias="unreadOnly"),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    user_id = require_user(tenant)
    service = NotificationDeliveryService(db)
    return [
        NotificationResponse.model_validate(n)
        for n in service.list_inbox(tenant.organization_id, user_id, unread_only=unread_only, limit=limit)
    ]


@router.post("/inbox/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    user_id = require_user(tenant)
    notification = NotificationDeliveryService(db).mark_read(tenant.organization_id, user_id, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return NotificationResponse.model_validate(notification)


# ==================
# Preferences
# ==================

@router.put("/preferences")
async def update_preference(
    data: UserPreferenceUpdate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    user_id = require_user(tenant)
    preference = NotificationDeliveryService(db).set_preference(tenant.organization_id, user_id, data)
    return {
        "eventType": preference.event_type,
        "enabled": preference.enabled,
        "channels": preference.channels or {},
        "quietHours": preference.quiet_hours,
    }
