"""
Workflow Automation Router

Organization settings, trigger CRUD, and event evaluation.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.workflow import (
    TriggerCreate,
    TriggerExecutionResult,
    TriggerResponse,
    TriggerUpdate,
    WorkflowEventRequest,
    WorkflowSettingsUpdate,
)
from ..services.trigger_evaluator import TriggerContext, TriggerEvaluator
from ..services.workflow_settings import WorkflowSettingsService
from ..utils.rate_limiter import limiter, get_rate_limit
from ..utils.tenant import TenantContext, get_tenant, require_admin

router = APIRouter(prefix="/api/workflow", tags=["Workflow"])


# ==================
# Settings
# ==================

@router.get("/settings")
async def get_workflow_settings(
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
) -> Dict[str, Any]:
    """All settings keys with defaults filled in."""
    return WorkflowSettingsService(db).get_settings(tenant.organization_id)


@router.put("/settings")
async def update_workflow_settings(
    data: WorkflowSettingsUpdate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
) -> Dict[str, Any]:
    require_admin(tenant)
    return WorkflowSettingsService(db).update_settings(tenant.organization_id, data.settings, tenant.user_id)


# ==================
# Triggers
# ==================

@router.get("/triggers", response_model=List[TriggerResponse])
async def list_triggers(
    event: Optional[str] = None,
    enabled: Optional[bool] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    triggers = WorkflowSettingsService(db).get_triggers(tenant.organization_id, event=event, is_enabled=enabled)
    return [TriggerResponse.model_validate(t) for t in triggers]


@router.post("/triggers", response_model=TriggerResponse, status_code=201)
async def create_trigger(
    data: TriggerCreate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    require_admin(tenant)
    trigger = WorkflowSettingsService(db).create_trigger(tenant.organization_id, data, tenant.user_id)
    return TriggerResponse.model_validate(trigger)


@router.patch("/triggers/{trigger_id}", response_model=TriggerResponse)
async def update_trigger(
    trigger_id: str,
    data: TriggerUpdate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    require_admin(tenant)
    trigger = WorkflowSettingsService(db).update_trigger(tenant.organization_id, trigger_id, data, tenant.user_id)
    if not trigger:
        raise HTTPException(status_code=404, detail="Trigger not found")
    return TriggerResponse.model_validate(trigger)


@router.delete("/triggers/{trigger_id}")
async def delete_trigger(
    trigger_id: str,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    """Disables the trigger; execution history is kept."""
    require_admin(tenant)
    if not WorkflowSettingsService(db).delete_trigger(tenant.organization_id, trigger_id, tenant.user_id):
        raise HTTPException(status_code=404, detail="Trigger not found")
    return {"success": True, "triggerId": trigger_id}


# ==================
# Events
# ==================

@router.post("/events", response_model=List[TriggerExecutionResult])
@limiter.limit(get_rate_limit("workflow_event"))
async def evaluate_workflow_event(
    request: Request,
    data: WorkflowEventRequest,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
):
    """
    Evaluate a domain event against the organization's enabled triggers and,
    for campaign probability changes, the built-in milestone steps.
    Failures are reported per trigger or step, never as an HTTP error.
    """
    context = TriggerContext(
        organization_id=tenant.organization_id,
        event=data.event,
        entity_type=data.entity_type,
        entity_id=data.entity_id,
        data=data.data,
        user_id=tenant.user_id,
        user_role=tenant.role,
    )
    return TriggerEvaluator(db, tenant.organization_id).evaluate_event(context)
