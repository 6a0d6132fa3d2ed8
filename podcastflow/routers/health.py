"""
Health Check Endpoints

- /health        - process is up, no database access
- /health/ready  - database reachable; reports the oldest due queue work
- /health/queues - notification queue and webhook outbox counts by status
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..models.notification import NotificationQueue, QueueStatus
from ..models.webhook_outbox import OutboxStatus, WebhookOutbox

router = APIRouter(prefix="/health", tags=["Health"])


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def ping_database(db: Session) -> dict:
    started = time.perf_counter()
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        return {"status": "down", "error": str(e)[:100]}
    return {
        "status": "up",
        "dialect": db.bind.dialect.name if db.bind is not None else None,
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
    }


def oldest_due_age_seconds(db: Session) -> dict:
    """Age of the oldest work the background cycles should already have picked up."""
    now = datetime.utcnow()
    oldest_queue = db.query(func.min(NotificationQueue.scheduled_for)).filter(
        NotificationQueue.status == QueueStatus.PENDING.value,
        NotificationQueue.scheduled_for <= now,
    ).scalar()
    oldest_outbox = db.query(func.min(WebhookOutbox.next_attempt_at)).filter(
        WebhookOutbox.status.in_([OutboxStatus.PENDING.value, OutboxStatus.RETRYING.value]),
        WebhookOutbox.next_attempt_at <= now,
    ).scalar()
    return {
        "notificationQueue": int((now - oldest_queue).total_seconds()) if oldest_queue else 0,
        "webhookOutbox": int((now - oldest_outbox).total_seconds()) if oldest_outbox else 0,
    }


@router.get("")
@router.get("/")
async def liveness():
    return {
        "status": "healthy",
        "timestamp": utc_now_iso(),
        "environment": settings.environment,
    }


@router.get("/ready")
async def readiness(db: Session = Depends(get_db)):
    database = ping_database(db)
    if database["status"] != "up":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "not_ready", "reason": "database_unavailable", "timestamp": utc_now_iso()},
        )

    return {
        "status": "ready",
        "database": database,
        "oldestDueSeconds": oldest_due_age_seconds(db),
        "timestamp": utc_now_iso(),
    }


@router.get("/queues")
async def queue_health(db: Session = Depends(get_db)):
    queue_counts = dict(
        db.query(NotificationQueue.status, func.count(NotificationQueue.id))
        .group_by(NotificationQueue.status)
        .all()
    )
    outbox_counts = dict(
        db.query(WebhookOutbox.status, func.count(WebhookOutbox.id))
        .group_by(WebhookOutbox.status)
        .all()
    )
    return {
        "notificationQueue": {s.value: queue_counts.get(s.value, 0) for s in QueueStatus},
        "webhookOutbox": {s.value: outbox_counts.get(s.value, 0) for s in OutboxStatus},
        "workersEnabled": settings.workers_enabled,
    }
