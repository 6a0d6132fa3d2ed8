"""
Rate Limiter Configuration

Storage backend comes from RATE_LIMIT_STORAGE_URI: memory:// for a single
instance, redis://host:port when several API instances share limits.
"""

import logging

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from ..config import settings

logger = logging.getLogger(__name__)


def get_rate_limit_key(request: Request) -> str:
    """Limit per organization when the tenant header is present, else per client IP"""
    organization_id = request.headers.get("X-Organization-Id")
    if organization_id:
        return f"org:{organization_id}"

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    return get_remote_address(request)


def create_limiter() -> Limiter:
    """Create a rate limiter bound to the configured storage backend."""
    logger.info(f"Rate limiter storage: {settings.rate_limit_storage_uri.split('://')[0]}")
    return Limiter(
        key_func=get_rate_limit_key,
        storage_uri=settings.rate_limit_storage_uri,
        default_limits=["100/minute"]
    )


# Global rate limiter instance
limiter = create_limiter()


RATE_LIMITS = {
    "bulk_commit": settings.bulk_commit_rate_limit,
    "reservation_create": "60/minute",
    "reservation_transition": "120/minute",
    "workflow_event": "120/minute",
    "notification_retry": "30/minute",
}


def get_rate_limit(operation: str) -> str:
    """Get rate limit for a specific operation."""
    return RATE_LIMITS.get(operation, "100/minute")
