import uuid
from datetime import datetime
from sqlalchemy import Column, String, Date, DateTime, ForeignKey, Integer, Numeric, Index, UniqueConstraint
from sqlalchemy.orm import relationship
import enum

from ..database import Base


class OrderStatus(str, enum.Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    order_number = Column(String(30), nullable=False)  # ORD-2025-000001, per organization
    reservation_id = Column(String(36), ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True)
    campaign_id = Column(String(36), nullable=True)
    advertiser_id = Column(String(36), nullable=True)
    agency_id = Column(String(36), nullable=True)

    status = Column(String(20), default=OrderStatus.CONFIRMED.value)
    total_amount = Column(Numeric(12, 2), default=0)
    net_amount = Column(Numeric(12, 2), default=0)

    submitted_by = Column(String(36), nullable=True)
    submitted_at = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("organization_id", "order_number", name="uq_order_org_number"),
        Index("ix_order_org_created", "organization_id", "created_at"),
    )

    def __repr__(self):
        return f"<Order {self.order_number} {self.status}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    show_id = Column(String(36), nullable=False)
    episode_id = Column(String(36), nullable=True)
    air_date = Column(Date, nullable=False)
    placement_type = Column(String(20), nullable=False)
    spot_number = Column(Integer, default=1)
    length = Column(Integer, default=30)
    rate = Column(Numeric(10, 2), default=0)
    actual_rate = Column(Numeric(10, 2), default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="items")
