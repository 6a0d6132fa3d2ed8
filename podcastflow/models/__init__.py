# Models package
from .organization import Organization, User, UserRole
from .show import Show, Episode, EpisodeStatus
from .episode_inventory import (
    EpisodeInventory,
    PlacementType,
    PLACEMENT_COLUMNS,
    COUNTER_SUFFIXES,
    normalize_placement
)
from .inventory_alert import InventoryAlert, InventoryAlertType, AlertSeverity, AlertStatus
from .campaign import (
    Advertiser,
    Category,
    CompetitiveGroup,
    AdvertiserCategory,
    Campaign,
    CampaignApproval,
    CampaignStatus,
    ApprovalStatus,
    ConflictMode
)
from .reservation import (
    Reservation,
    ReservationItem,
    ReservationStatusHistory,
    ReservationStatus,
    ReservationPriority,
    ALLOWED_TRANSITIONS,
    ACTIVE_STATUSES
)
from .order import Order, OrderItem, OrderStatus
from .bulk_schedule import BulkScheduleIdempotency
from .workflow import (
    WorkflowTrigger,
    TriggerExecutionLog,
    WorkflowAutomationSetting,
    TriggerEvent,
    ActionType,
    TriggerExecutionStatus
)
from .notification import (
    Notification,
    NotificationQueue,
    NotificationDelivery,
    NotificationTemplate,
    UserNotificationPreference,
    Channel,
    Severity,
    SEVERITY_PRIORITY,
    QueueStatus,
    DeliveryStatus
)
from .webhook_outbox import WebhookOutbox, OutboxStatus, OutboxChannel

__all__ = [
    "Organization", "User", "UserRole",
    "Show", "Episode", "EpisodeStatus",
    "EpisodeInventory", "PlacementType", "PLACEMENT_COLUMNS", "COUNTER_SUFFIXES", "normalize_placement",
    "InventoryAlert", "InventoryAlertType", "AlertSeverity", "AlertStatus",
    "Advertiser", "Category", "CompetitiveGroup", "AdvertiserCategory",
    "Campaign", "CampaignApproval", "CampaignStatus", "ApprovalStatus", "ConflictMode",
    "Reservation", "ReservationItem", "ReservationStatusHistory",
    "ReservationStatus", "ReservationPriority", "ALLOWED_TRANSITIONS", "ACTIVE_STATUSES",
    "Order", "OrderItem", "OrderStatus",
    "BulkScheduleIdempotency",
    "WorkflowTrigger", "TriggerExecutionLog", "WorkflowAutomationSetting",
    "TriggerEvent", "ActionType", "TriggerExecutionStatus",
    "Notification", "NotificationQueue", "NotificationDelivery", "NotificationTemplate",
    "UserNotificationPreference", "Channel", "Severity", "SEVERITY_PRIORITY",
    "QueueStatus", "DeliveryStatus",
    "WebhookOutbox", "OutboxStatus", "OutboxChannel"
]
