# Services package
from .inventory_ledger import InventoryLedger, derive_slot_counts
from .reservation_service import ReservationService, expire_stale_holds
from .bulk_allocator import BulkAllocator, BulkScheduleService
from .conflict_checker import ConflictChecker, can_proceed_with_conflicts
from .workflow_settings import WorkflowSettingsService, SettingsCache
from .trigger_evaluator import TriggerEvaluator, TriggerContext, evaluate_condition
from .notification_service import NotificationService, EmissionResult
from .delivery_service import NotificationDeliveryService, compute_idempotency_key, should_send
from .notification_queue import NotificationQueueProcessor
from .webhook_outbox import WebhookOutboxProcessor, enqueue_webhook, sign_payload
from .channels import MailGateway, HttpMailGateway, LogOnlyMailGateway, get_mail_gateway
from .recipients import RecipientResolver, UserDirectory
from .template_renderer import TemplateStore, render_message

__all__ = [
    "InventoryLedger", "derive_slot_counts",
    "ReservationService", "expire_stale_holds",
    "BulkAllocator", "BulkScheduleService",
    "ConflictChecker", "can_proceed_with_conflicts",
    "WorkflowSettingsService", "SettingsCache",
    "TriggerEvaluator", "TriggerContext", "evaluate_condition",
    "NotificationService", "EmissionResult",
    "NotificationDeliveryService", "compute_idempotency_key", "should_send",
    "NotificationQueueProcessor",
    "WebhookOutboxProcessor", "enqueue_webhook", "sign_payload",
    "MailGateway", "HttpMailGateway", "LogOnlyMailGateway", "get_mail_gateway",
    "RecipientResolver", "UserDirectory",
    "TemplateStore", "render_message"
]
