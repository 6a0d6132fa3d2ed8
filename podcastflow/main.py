import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from .config import settings
from .database import SessionLocal, create_tables
from .exceptions import (
    BulkCommitError,
    CampaignNotFoundError,
    ConflictBlockedError,
    InventoryNotFoundError,
    InventoryOverbookError,
    OverrideNotPermittedError,
    PodcastFlowError,
    ReservationNotFoundError,
    ReservationTerminalStateError,
)
from .utils.logging_config import clear_request_context, set_request_context, setup_logging
from .utils.rate_limiter import limiter

from .routers import campaigns, health, inventory, notifications, reservations, schedules, workflow

logger = logging.getLogger("podcastflow")
worker_logger = logging.getLogger("podcastflow.worker")


# ================================
# BACKGROUND CYCLES
# ================================

def run_notification_cycle() -> dict:
    """One pass over the notification queue and the webhook outbox."""
    from .services.notification_queue import NotificationQueueProcessor
    from .services.webhook_outbox import WebhookOutboxProcessor

    db = SessionLocal()
    try:
        queue = NotificationQueueProcessor(db)
        released = queue.release_stale_claims()
        queue_success, queue_failed = queue.process_batch(settings.notification_batch_size)
        outbox_success, outbox_failed = WebhookOutboxProcessor(db).process_batch()
        return {
            "released": released,
            "queue_success": queue_success,
            "queue_failed": queue_failed,
            "outbox_success": outbox_success,
            "outbox_failed": outbox_failed,
        }
    finally:
        db.close()


def run_expiry_cycle() -> int:
    from .services.reservation_service import expire_stale_holds

    db = SessionLocal()
    try:
        return expire_stale_holds(db)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    setup_logging(level=settings.log_level, json_format=settings.log_json or settings.is_production)
    logger.info(f"Starting PodcastFlow core ({settings.environment})")
    logger.info(f"CORS origins: {settings.cors_origins}")

    create_tables()

    running = True
    tasks = []

    async def notification_loop():
        worker_logger.info(f"Notification worker started (interval: {settings.notification_poll_interval}s)")
        while running:
            try:
                stats = await asyncio.to_thread(run_notification_cycle)
                # Log only if something happened
                if any(stats.values()):
                    worker_logger.info(
                        f"Queue {stats['queue_success']}✓/{stats['queue_failed']}✗ | "
                        f"Outbox {stats['outbox_success']}✓/{stats['outbox_failed']}✗ | "
                        f"released {stats['released']}"
                    )
            except Exception as e:
                worker_logger.error(f"Notification worker error: {e}")
            await asyncio.sleep(settings.notification_poll_interval)

    async def expiry_loop():
        worker_logger.info(f"Expiry sweep started (interval: {settings.expiry_sweep_interval}s)")
        while running:
            try:
                expired = await asyncio.to_thread(run_expiry_cycle)
                if expired:
                    worker_logger.info(f"Expiry sweep: {expired} reservation(s) expired")
            except Exception as e:
                worker_logger.error(f"Expiry sweep error: {e}")
            await asyncio.sleep(settings.expiry_sweep_interval)

    if settings.workers_enabled:
        tasks.append(asyncio.create_task(notification_loop()))
        tasks.append(asyncio.create_task(expiry_loop()))
    else:
        logger.info("Background workers disabled")

    yield

    logger.info("Shutting down PodcastFlow core")
    running = False
    for task in tasks:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title="PodcastFlow Pro Core",
    description="Inventory, reservations, competitive conflicts, workflow triggers and notifications",
    version="1.0.0",
    lifespan=lifespan
)

app.state.limiter = limiter


# ================================
# MIDDLEWARE
# ================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request.state.request_id = request_id
        set_request_context(
            request_id,
            user_id=request.headers.get("X-User-Id"),
            organization_id=request.headers.get("X-Organization-Id"),
        )
        start = time.time()
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{(time.time() - start) * 1000:.1f}"
        return response


app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


# ================================
# ERROR HANDLERS
# ================================

def status_for(exc: PodcastFlowError) -> int:
    if isinstance(exc, (InventoryNotFoundError, ReservationNotFoundError, CampaignNotFoundError)):
        return 404
    if isinstance(exc, OverrideNotPermittedError):
        return 403
    if isinstance(exc, BulkCommitError):
        return 409 if exc.code == "E_INV_AVAIL" else 400
    if isinstance(exc, (InventoryOverbookError, ReservationTerminalStateError, ConflictBlockedError)):
        return 409
    return 422


@app.exception_handler(PodcastFlowError)
async def domain_error_handler(request: Request, exc: PodcastFlowError):
    status_code = status_for(exc)
    if status_code >= 409:
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests, try again later"}
    )


app.include_router(health.router)
app.include_router(reservations.router)
app.include_router(schedules.router)
app.include_router(inventory.router)
app.include_router(campaigns.router)
app.include_router(workflow.router)
app.include_router(notifications.router)


@app.get("/")
async def root():
    return {
        "service": "podcastflow-core",
        "version": "1.0.0",
        "docs": "/docs",
        "status": "running"
    }
