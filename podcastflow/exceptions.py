"""
Domain Error Taxonomy

Ledger and reservation errors are synchronous and propagate to the caller
(API layer or trigger evaluator). Notification errors are contained by the
delivery pipeline and surface through the failed-notifications view.
"""

from typing import Any, Dict, List, Optional


class PodcastFlowError(Exception):
    """Base class for every domain error raised by the core."""

    code = "E_DOMAIN"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.details}


# ==================
# Inventory Ledger
# ==================

class LedgerError(PodcastFlowError):
    code = "E_LEDGER"


class InventoryNotFoundError(LedgerError):
    code = "E_NOT_FOUND"

    def __init__(self, episode_id: str):
        super().__init__(
            f"No inventory tracked for episode {episode_id}",
            {"episodeId": episode_id},
        )
        self.episode_id = episode_id


class InventoryOverbookError(LedgerError):
    """Adjustment would exceed capacity for one (episode, placement) slot."""

    code = "E_INV_AVAIL"

    def __init__(
        self,
        episode_id: str,
        placement_type: str,
        requested: int = 1,
        available: int = 0,
        reason: Optional[str] = None,
    ):
        message = reason or (
            f"Overbooking rejected for episode {episode_id} {placement_type}: "
            f"requested {requested}, available {available}"
        )
        super().__init__(message, {
            "episodeId": episode_id,
            "placementType": placement_type,
            "requested": requested,
            "available": available,
        })
        self.episode_id = episode_id
        self.placement_type = placement_type
        self.requested = requested
        self.available = available


class InventoryInvariantError(LedgerError):
    code = "E_INVARIANT"


# ==================
# Reservations
# ==================

class ReservationError(PodcastFlowError):
    code = "E_RESERVATION"


class ReservationNotFoundError(ReservationError):
    code = "E_NOT_FOUND"

    def __init__(self, reservation_id: str):
        super().__init__(f"Reservation {reservation_id} not found", {"reservationId": reservation_id})
        self.reservation_id = reservation_id


class ReservationTerminalStateError(ReservationError):
    code = "E_TERMINAL_STATE"

    def __init__(self, reservation_id: str, status: str, attempted: str, message: Optional[str] = None):
        super().__init__(
            message or f"Reservation {reservation_id} is {status} and cannot be {attempted}",
            {"reservationId": reservation_id, "status": status, "attempted": attempted},
        )
        self.reservation_id = reservation_id
        self.status = status
        self.attempted = attempted


class ReservationExpiredError(ReservationTerminalStateError):
    code = "E_EXPIRED"

    def __init__(self, reservation_id: str, status: str, attempted: str = "confirmed"):
        super().__init__(
            reservation_id,
            status,
            attempted,
            message=f"Reservation {reservation_id} hold has expired",
        )


# ==================
# Competitive conflicts
# ==================

class ConflictBlockedError(PodcastFlowError):
    code = "E_CONFLICT_BLOCKED"

    def __init__(self, conflicts: List[Any]):
        super().__init__(
            "Blocked by competitive conflicts",
            {"conflicts": [c.to_dict() if hasattr(c, "to_dict") else c for c in conflicts]},
        )
        self.conflicts = conflicts


class CampaignNotFoundError(PodcastFlowError):
    code = "E_NOT_FOUND"

    def __init__(self, campaign_id: str):
        super().__init__(f"Campaign {campaign_id} not found", {"campaignId": campaign_id})
        self.campaign_id = campaign_id


class OverrideNotPermittedError(PodcastFlowError):
    code = "E_FORBIDDEN"

    def __init__(self, campaign_id: str, role: Optional[str]):
        super().__init__(
            "Only admin or master users can override competitive conflicts",
            {"campaignId": campaign_id, "role": role},
        )


# ==================
# Bulk scheduling
# ==================

class BulkCommitError(PodcastFlowError):
    code = "E_INV_AVAIL"

    def __init__(self, message: str, code: str = "E_INV_AVAIL", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = code


# ==================
# Notifications
# ==================

class NotificationError(PodcastFlowError):
    code = "E_NOTIFICATION"


class NotificationDeliveryError(NotificationError):
    code = "E_DELIVERY"

    def __init__(self, channel: str, message: str, retryable: bool = True):
        super().__init__(f"[{channel}] {message}", {"channel": channel})
        self.channel = channel
        self.retryable = retryable


class TemplateNotFoundError(NotificationError):
    code = "E_TEMPLATE"

    def __init__(self, event_type: str, channel: str):
        super().__init__(
            f"No template for {event_type} on channel {channel}",
            {"eventType": event_type, "channel": channel},
        )
        self.event_type = event_type
        self.channel = channel


# ==================
# Workflow
# ==================

class WorkflowError(PodcastFlowError):
    code = "E_WORKFLOW"


class TriggerActionError(WorkflowError):
    code = "E_TRIGGER_ACTION"

    def __init__(self, action_type: str, message: str):
        super().__init__(f"{action_type}: {message}", {"action": action_type})
        self.action_type = action_type
