"""
Notification Schemas

Organization notification settings live in organizations.settings["notifications"]
as JSON; they are parsed into these models before any business logic reads them.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models.notification import Channel, Severity

DEFAULT_EVENT_CHANNELS = [Channel.EMAIL.value, Channel.IN_APP.value]


def _validate_hhmm(value: str) -> str:
    parts = value.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError("time must be HH:MM")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError("time must be HH:MM")
    return f"{hours:02d}:{minutes:02d}"


class QuietHours(BaseModel):
    enabled: bool = False
    start: str = "22:00"
    end: str = "08:00"
    timezone: str = "UTC"

    @field_validator("start", "end")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return _validate_hhmm(v)


class SlackChannelConfig(BaseModel):
    enabled: bool = False
    webhookUrl: Optional[str] = None


class WebhookChannelConfig(BaseModel):
    enabled: bool = False
    url: Optional[str] = None
    secret: Optional[str] = None


class ChannelSettings(BaseModel):
    email: bool = True
    inApp: bool = True
    slack: SlackChannelConfig = Field(default_factory=SlackChannelConfig)
    webhook: WebhookChannelConfig = Field(default_factory=WebhookChannelConfig)

    def is_enabled(self, channel: str) -> bool:
        if channel == Channel.EMAIL.value:
            return self.email
        if channel == Channel.IN_APP.value:
            return self.inApp
        if channel == Channel.SLACK.value:
            return self.slack.enabled
        if channel == Channel.WEBHOOK.value:
            return self.webhook.enabled
        return False


class EventConfig(BaseModel):
    enabled: bool = True
    channels: List[str] = Field(default_factory=lambda: list(DEFAULT_EVENT_CHANNELS))
    mandatory: bool = False
    severity: Severity = Severity.NORMAL
    quietHourBypass: bool = False

    @field_validator("channels")
    @classmethod
    def validate_channels(cls, v: List[str]) -> List[str]:
        allowed = {c.value for c in Channel}
        unknown = [c for c in v if c not in allowed]
        if unknown:
            raise ValueError(f"Unknown channels: {', '.join(unknown)}")
        return v


class OrganizationNotificationSettings(BaseModel):
    enabled: bool = True
    channels: ChannelSettings = Field(default_factory=ChannelSettings)
    quietHours: QuietHours = Field(default_factory=QuietHours)
    events: Dict[str, EventConfig] = Field(default_factory=dict)

    def event_config(self, event_type: str) -> EventConfig:
        """Unconfigured events are enabled on email + in-app at normal severity."""
        return self.events.get(event_type) or EventConfig()

    @classmethod
    def from_org_settings(cls, org_settings: Optional[Dict[str, Any]]) -> "OrganizationNotificationSettings":
        return cls.model_validate((org_settings or {}).get("notifications") or {})


class UserPreferenceUpdate(BaseModel):
    event_type: str = Field(..., alias="eventType", min_length=1, max_length=100)
    enabled: bool = True
    channels: Dict[str, bool] = Field(default_factory=dict)
    quiet_hours: Optional[QuietHours] = Field(None, alias="quietHours")

    class Config:
        populate_by_name = True


class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: Optional[str] = None
    action_url: Optional[str] = None
    priority: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class FailedQueueEntryResponse(BaseModel):
    id: str
    event_type: str
    priority: int
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    recipient_ids: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DeliveryResult(BaseModel):
    """Outcome of one (recipient, channel) delivery attempt."""
    success: bool
    channel: str
    recipient_id: str
    status: str
    delivery_id: Optional[str] = None
    duplicate: bool = False
    reason: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False
