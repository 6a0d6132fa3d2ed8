"""
Bulk Schedule Idempotency Model

Maps a client-supplied idempotency key to the stored bulk-commit result.
Same key within the expiry window returns the stored result without
re-running holds. Guarded by a unique constraint (insert-or-fetch).
"""

import uuid
from datetime import datetime, timedelta
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, UniqueConstraint, Index

from ..database import Base


def _default_expiry():
    return datetime.utcnow() + timedelta(hours=24)


class BulkScheduleIdempotency(Base):
    __tablename__ = "bulk_schedule_idempotency"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    key = Column(String(255), nullable=False)
    result = Column(JSON, nullable=False)
    reservation_id = Column(String(36), nullable=True)
    created_by = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False, default=_default_expiry)

    __table_args__ = (
        UniqueConstraint("organization_id", "key", name="uq_bulk_idempotency_org_key"),
        Index("ix_bulk_idempotency_expires", "expires_at"),
    )

    def is_expired(self, now: datetime = None) -> bool:
        return self.expires_at <= (now or datetime.utcnow())

    def __repr__(self):
        return f"<BulkScheduleIdempotency {self.key}>"
