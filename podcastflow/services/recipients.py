"""
Recipient Resolution

Built-in events carry a fixed rule (seller, show producer/talent, org
admins). Anything else falls back to a role matrix. Recipients are always
de-duplicated by user id, preserving first-seen order.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..models.organization import User, UserRole

logger = logging.getLogger(__name__)

ADMIN_ROLE_VALUES = [UserRole.ADMIN.value, UserRole.MASTER.value]

SELLER_EVENTS = {
    "campaign_created",
    "campaign_approved",
    "campaign_rejected",
    "inventory_released",
    "bulk_placement_failed",
}
ADMIN_EVENTS = {
    "admin_approval_requested",
    "order_created",
    "invoice_generated",
    "payment_received",
    "invoice_overdue",
    # system events
    "youtube_quota_reached",
    "integration_sync_failed",
    "backup_completed",
    "backup_failed",
    "security_policy_changed",
    "api_key_rotated",
}
SELLER_AND_ADMIN_EVENTS = {"schedule_built", "inventory_conflict", "category_conflict", "rate_delta_detected"}

DEFAULT_RECIPIENT_MATRIX: Dict[str, List[str]] = {
    # campaigns
    "campaign_status_changed": ["admin", "sales"],
    "campaign_approval_requested": ["admin"],
    # scheduling
    "schedule_saved": ["admin", "producer"],
    "schedule_committed": ["admin", "producer", "sales"],
    "schedule_commit_failed": ["admin", "producer"],
    "inventory_reserved": ["admin", "producer"],
    "inventory_conflict_detected": ["admin", "producer"],
    "reservation_confirmed": ["admin", "producer", "sales"],
    "reservation_expired": ["admin", "sales"],
    # approvals
    "talent_approval_granted": ["admin", "producer", "sales"],
    "talent_approval_denied": ["admin", "producer", "sales"],
    "producer_approval_requested": ["producer"],
    "producer_approval_granted": ["admin", "sales"],
    "producer_approval_denied": ["admin", "sales"],
    # billing
    "prebill_generated": ["admin", "sales"],
    "payment_overdue": ["admin"],
}


class UserDirectory:
    """Read access to users of one organization."""

    def __init__(self, db: Session):
        self.db = db

    def find_user(self, user_id: Optional[str], organization_id: Optional[str] = None) -> Optional[User]:
        if not user_id:
            return None
        query = self.db.query(User).filter(User.id == user_id, User.is_active.is_(True))
        if organization_id:
            query = query.filter(User.organization_id == organization_id)
        return query.first()

    def find_users(self, organization_id: str, roles: Iterable[str]) -> List[User]:
        roles = list(roles)
        if not roles:
            return []
        return self.db.query(User).filter(
            User.organization_id == organization_id,
            User.role.in_(roles),
            User.is_active.is_(True),
        ).order_by(User.created_at.asc()).all()

    def find_by_ids(self, organization_id: str, user_ids: Iterable[str]) -> List[User]:
        user_ids = [uid for uid in user_ids if uid]
        if not user_ids:
            return []
        users = self.db.query(User).filter(
            User.organization_id == organization_id,
            User.id.in_(user_ids),
            User.is_active.is_(True),
        ).all()
        by_id = {u.id: u for u in users}
        return [by_id[uid] for uid in user_ids if uid in by_id]


def dedupe_users(users: Iterable[Optional[User]]) -> List[User]:
    seen = set()
    unique = []
    for user in users:
        if user is None or user.id in seen:
            continue
        seen.add(user.id)
        unique.append(user)
    return unique


class RecipientResolver:
    def __init__(self, db: Session, directory: Optional[UserDirectory] = None):
        self.directory = directory or UserDirectory(db)

    def resolve(self, organization_id: str, event_type: str, payload: Dict[str, Any]) -> List[User]:
        d = self.directory

        def seller():
            return d.find_user(payload.get("sellerId"), organization_id)

        def admins():
            return d.find_users(organization_id, ADMIN_ROLE_VALUES)

        if event_type in SELLER_EVENTS:
            recipients = [seller()]
        elif event_type in SELLER_AND_ADMIN_EVENTS:
            recipients = [seller()] + admins()
        elif event_type in ADMIN_EVENTS:
            recipients = admins()
        elif event_type == "talent_approval_requested":
            recipients = [d.find_user(payload.get("talentId"), organization_id)]
            recipients += d.find_users(organization_id, [UserRole.PRODUCER.value])
        elif event_type == "ad_request_created":
            recipients = [
                d.find_user(payload.get("producerId"), organization_id),
                d.find_user(payload.get("talentId"), organization_id),
            ]
        else:
            roles = DEFAULT_RECIPIENT_MATRIX.get(event_type, [])
            recipients = d.find_users(organization_id, roles)

        unique = dedupe_users(recipients)
        if not unique:
            logger.debug(f"No recipients for {event_type} in org {organization_id}")
        return unique

    def for_roles(self, organization_id: str, roles: Iterable[str]) -> List[User]:
        return dedupe_users(self.directory.find_users(organization_id, roles))

    def for_users(self, organization_id: str, user_ids: Iterable[str]) -> List[User]:
        return dedupe_users(self.directory.find_by_ids(organization_id, user_ids))
