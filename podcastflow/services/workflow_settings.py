"""
Workflow Settings & Trigger Configuration

Organization settings are stored one JSON value per key in
workflow_automation_settings and parsed into typed models with defaults.
Reads are cached per organization for WORKFLOW_SETTINGS_CACHE_TTL seconds;
any write through this service clears that organization's entry.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import WorkflowError
from ..models.workflow import WorkflowTrigger, WorkflowAutomationSetting
from ..schemas.workflow import (
    SETTINGS_MODELS,
    WorkflowSettings,
    TriggerCreate,
    TriggerUpdate,
)

logger = logging.getLogger(__name__)

# settings key -> WorkflowSettings attribute
SETTINGS_ATTRIBUTES = {
    "milestone.thresholds": "milestones",
    "approval.rules": "approvals",
    "notifications.enabled": "notifications",
    "rate_card.delta_tracking": "rate_card",
    "competitive.category_checking": "competitive",
    "bulk.defaults": "bulk",
    "reservation.hold": "reservation",
}


class SettingsCache:
    """Per-organization TTL cache shared by every service instance in the process."""

    def __init__(self, ttl_seconds: float):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, Tuple[float, WorkflowSettings]] = {}
        self._lock = threading.Lock()

    def get(self, organization_id: str) -> Optional[WorkflowSettings]:
        with self._lock:
            entry = self._entries.get(organization_id)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._entries[organization_id]
                return None
            return value

    def set(self, organization_id: str, value: WorkflowSettings) -> None:
        with self._lock:
            self._entries[organization_id] = (time.monotonic() + self.ttl_seconds, value)

    def invalidate(self, organization_id: Optional[str] = None) -> None:
        with self._lock:
            if organization_id is None:
                self._entries.clear()
            else:
                self._entries.pop(organization_id, None)


settings_cache = SettingsCache(settings.workflow_settings_cache_ttl)


class WorkflowSettingsService:
    def __init__(self, db: Session, cache: Optional[SettingsCache] = None):
        self.db = db
        self.cache = cache or settings_cache

    # ==================
    # Settings
    # ==================

    def get_typed(self, organization_id: str) -> WorkflowSettings:
        cached = self.cache.get(organization_id)
        if cached is not None:
            return cached

        rows = self.db.query(WorkflowAutomationSetting).filter(
            WorkflowAutomationSetting.organization_id == organization_id
        ).all()

        values: Dict[str, Any] = {}
        custom: Dict[str, Any] = {}
        for row in rows:
            attribute = SETTINGS_ATTRIBUTES.get(row.key)
            if attribute is None:
                custom[row.key] = row.value
                continue
            try:
                values[attribute] = SETTINGS_MODELS[row.key].model_validate(row.value or {})
            except ValidationError as e:
                # Stored value predates a schema change; defaults apply for this key
                logger.warning(f"Invalid workflow setting {row.key} for org {organization_id}: {e}")

        typed = WorkflowSettings(custom=custom, **values)
        self.cache.set(organization_id, typed)
        return typed

    def get_settings(self, organization_id: str) -> Dict[str, Any]:
        return self.get_typed(organization_id).as_keyed_dict()

    def update_settings(
        self,
        organization_id: str,
        updates: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Upsert one or more keys. Known keys are validated against their model
        (a partial value is merged over the current one); unknown keys are
        stored as custom JSON.
        """
        current = self.get_typed(organization_id)
        validated: Dict[str, Any] = {}

        for key, value in updates.items():
            model = SETTINGS_MODELS.get(key)
            if model is None:
                validated[key] = value
                continue
            if not isinstance(value, dict):
                raise WorkflowError(f"Setting {key} must be an object", {"key": key})
            merged = getattr(current, SETTINGS_ATTRIBUTES[key]).model_dump(mode="json")
            merged.update(value)
            try:
                validated[key] = model.model_validate(merged).model_dump(mode="json")
            except ValidationError as e:
                raise WorkflowError(f"Invalid value for {key}", {"key": key, "errors": e.errors(include_url=False)})

        for key, value in validated.items():
            row = self.db.query(WorkflowAutomationSetting).filter(
                WorkflowAutomationSetting.organization_id == organization_id,
                WorkflowAutomationSetting.key == key,
            ).first()
            if row:
                row.value = value
                row.updated_by = user_id
                row.updated_at = datetime.utcnow()
            else:
                self.db.add(WorkflowAutomationSetting(
                    organization_id=organization_id,
                    key=key,
                    value=value,
                    updated_by=user_id,
                ))

        self.db.commit()
        self.cache.invalidate(organization_id)
        logger.info(f"Updated workflow settings {sorted(validated)} for org {organization_id}")
        return self.get_settings(organization_id)

    # ==================
    # Triggers
    # ==================

    def get_triggers(
        self,
        organization_id: str,
        event: Optional[str] = None,
        is_enabled: Optional[bool] = None,
    ) -> List[WorkflowTrigger]:
        """Triggers in evaluation order: priority ascending, then oldest first."""
        query = self.db.query(WorkflowTrigger).filter(WorkflowTrigger.organization_id == organization_id)
        if event:
            query = query.filter(WorkflowTrigger.event == event)
        if is_enabled is not None:
            query = query.filter(WorkflowTrigger.is_enabled == is_enabled)
        return query.order_by(WorkflowTrigger.priority.asc(), WorkflowTrigger.created_at.asc()).all()

    def get_trigger(self, organization_id: str, trigger_id: str) -> Optional[WorkflowTrigger]:
        return self.db.query(WorkflowTrigger).filter(
            WorkflowTrigger.id == trigger_id,
            WorkflowTrigger.organization_id == organization_id,
        ).first()

    def create_trigger(
        self,
        organization_id: str,
        data: TriggerCreate,
        user_id: Optional[str] = None,
    ) -> WorkflowTrigger:
        trigger = WorkflowTrigger(
            organization_id=organization_id,
            name=data.name,
            event=data.event,
            condition=data.condition,
            actions=[action.model_dump(mode="json") for action in data.actions],
            is_enabled=data.is_enabled,
            priority=data.priority,
            created_by=user_id,
            updated_by=user_id,
        )
        self.db.add(trigger)
        self.db.commit()
        self.db.refresh(trigger)
        logger.info(f"Created trigger {trigger.name} ({trigger.event}) for org {organization_id}")
        return trigger

    def update_trigger(
        self,
        organization_id: str,
        trigger_id: str,
        data: TriggerUpdate,
        user_id: Optional[str] = None,
    ) -> Optional[WorkflowTrigger]:
        trigger = self.get_trigger(organization_id, trigger_id)
        if not trigger:
            return None

        changes = data.model_dump(exclude_unset=True)
        if "actions" in changes and data.actions is not None:
            changes["actions"] = [action.model_dump(mode="json") for action in data.actions]
        for field, value in changes.items():
            setattr(trigger, field, value)

        trigger.updated_by = user_id
        trigger.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(trigger)
        return trigger

    def delete_trigger(self, organization_id: str, trigger_id: str, user_id: Optional[str] = None) -> bool:
        """Soft delete: the trigger is disabled, execution history is kept."""
        trigger = self.get_trigger(organization_id, trigger_id)
        if not trigger:
            return False
        trigger.is_enabled = False
        trigger.updated_by = user_id
        trigger.updated_at = datetime.utcnow()
        self.db.commit()
        logger.info(f"Disabled trigger {trigger.name} for org {organization_id}")
        return True
