"""
Inventory Alert Model

Recorded when the ledger detects capacity problems instead of letting counts
silently drift. Visible to operators through /api/inventory/alerts.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, JSON, Index, ForeignKey
import enum

from ..database import Base


class InventoryAlertType(str, enum.Enum):
    OVERBOOKING = "overbooking"          # reserved + booked > slots
    CAPACITY_SHRINK = "capacity_shrink"  # recalculated slots below committed spots


class AlertSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, enum.Enum):
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class InventoryAlert(Base):
    __tablename__ = "inventory_alerts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)

    alert_type = Column(String(50), nullable=False)
    severity = Column(String(20), default=AlertSeverity.HIGH.value)
    status = Column(String(20), default=AlertStatus.OPEN.value)

    episode_id = Column(String(36), nullable=True)
    show_id = Column(String(36), nullable=True)
    placement_type = Column(String(20), nullable=True)
    message = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)

    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_by = Column(String(36), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String(36), nullable=True)
    resolution_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_inventory_alert_status", "organization_id", "status", "created_at"),
        Index("ix_inventory_alert_episode", "episode_id", "placement_type"),
    )

    def __repr__(self):
        return f"<InventoryAlert {self.alert_type} {self.severity} {self.status}>"
