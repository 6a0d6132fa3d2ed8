"""
Bulk Schedule Router
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.bulk_schedule import BulkCommitRequest, BulkCommitResponse
from ..services.bulk_allocator import BulkScheduleService
from ..utils.rate_limiter import limiter, get_rate_limit
from ..utils.tenant import TenantContext, get_tenant

router = APIRouter(prefix="/api/schedules", tags=["Schedules"])


@router.post("/bulk/commit", response_model=BulkCommitResponse)
@limiter.limit(get_rate_limit("bulk_commit"))
async def commit_bulk_schedule(
    request: Request,
    data: BulkCommitRequest,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    """
    Allocate and hold a bulk schedule.

    Repeating a request with the same idempotencyKey within 24 hours returns
    the stored result with cached=true and holds nothing new.
    """
    service = BulkScheduleService(db, tenant.organization_id)
    return service.commit(data, user_id=tenant.user_id, role=tenant.role)
