"""
Reservation Models

A Reservation holds inventory slots for a bounded time. Lifecycle:
held -> {pending, confirmed, released, expired}; pending -> {confirmed, released}.
Every other status is terminal.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Date, DateTime, ForeignKey, Integer, Numeric, Text, Index
)
from sqlalchemy.orm import relationship
import enum

from ..database import Base


class ReservationStatus(str, enum.Enum):
    HELD = "held"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    EXPIRED = "expired"
    CONVERTED = "converted"


class ReservationPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


ALLOWED_TRANSITIONS = {
    ReservationStatus.HELD.value: {
        ReservationStatus.PENDING.value,
        ReservationStatus.CONFIRMED.value,
        ReservationStatus.RELEASED.value,
        ReservationStatus.EXPIRED.value,
    },
    ReservationStatus.PENDING.value: {
        ReservationStatus.CONFIRMED.value,
        ReservationStatus.RELEASED.value,
    },
}

# Statuses that still hold inventory
ACTIVE_STATUSES = (ReservationStatus.HELD.value, ReservationStatus.PENDING.value)


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    reservation_number = Column(String(30), nullable=False, unique=True)

    status = Column(String(20), nullable=False, default=ReservationStatus.HELD.value)
    hold_duration = Column(Integer, nullable=False, default=48)  # hours
    expires_at = Column(DateTime, nullable=False)
    priority = Column(String(10), nullable=False, default=ReservationPriority.NORMAL.value)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    source = Column(String(30), default="web")  # web, bulk, trigger, api

    advertiser_id = Column(String(36), ForeignKey("advertisers.id", ondelete="SET NULL"), nullable=True)
    agency_id = Column(String(36), nullable=True)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True)
    order_id = Column(String(36), nullable=True)

    created_by = Column(String(36), nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    confirmed_by = Column(String(36), nullable=True)
    released_at = Column(DateTime, nullable=True)
    released_by = Column(String(36), nullable=True)
    release_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "ReservationItem",
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReservationItem.created_at",
    )
    status_history = relationship(
        "ReservationStatusHistory",
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReservationStatusHistory.changed_at",
    )

    __table_args__ = (
        Index("ix_reservation_status_expires", "status", "expires_at"),
        Index("ix_reservation_org_status", "organization_id", "status"),
        Index("ix_reservation_campaign", "campaign_id"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status not in ALLOWED_TRANSITIONS

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in ALLOWED_TRANSITIONS.get(self.status, set())

    def __repr__(self):
        return f"<Reservation {self.reservation_number} {self.status}>"


class ReservationItem(Base):
    __tablename__ = "reservation_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    reservation_id = Column(String(36), ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False)
    show_id = Column(String(36), ForeignKey("shows.id", ondelete="CASCADE"), nullable=False)
    episode_id = Column(String(36), ForeignKey("episodes.id", ondelete="SET NULL"), nullable=True)
    air_date = Column(Date, nullable=False)
    placement_type = Column(String(20), nullable=False)
    spot_number = Column(Integer, nullable=False, default=1)
    length = Column(Integer, nullable=False, default=30)  # seconds
    rate = Column(Numeric(10, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    reservation = relationship("Reservation", back_populates="items")

    __table_args__ = (
        Index("ix_reservation_item_episode", "episode_id", "placement_type"),
        Index("ix_reservation_item_show_date", "show_id", "air_date"),
    )

    def __repr__(self):
        return f"<ReservationItem {self.show_id} {self.air_date} {self.placement_type}>"


class ReservationStatusHistory(Base):
    __tablename__ = "reservation_status_history"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    reservation_id = Column(String(36), ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False)
    previous_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=False)
    reason = Column(Text, nullable=True)
    changed_by = Column(String(36), nullable=True)
    changed_at = Column(DateTime, default=datetime.utcnow)

    reservation = relationship("Reservation", back_populates="status_history")

    def __repr__(self):
        return f"<ReservationStatusHistory {self.previous_status} -> {self.new_status}>"
