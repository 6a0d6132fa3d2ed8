"""
Campaign, Advertiser and Competitive Category Models

Advertisers are assigned categories; a category assignment may place the
advertiser in a competitive group. Two advertisers in the same group compete,
and the group's conflict_mode decides whether overlap warns or blocks.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Date, DateTime, ForeignKey, Integer, Numeric, Boolean, Text, JSON,
    Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
import enum

from ..database import Base


class ConflictMode(str, enum.Enum):
    WARN = "warn"
    BLOCK = "block"


class CampaignStatus(str, enum.Enum):
    DRAFT = "draft"
    PROPOSAL = "proposal"
    ACTIVE = "active"
    APPROVED = "approved"
    BOOKED = "booked"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    LOST = "lost"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Advertiser(Base):
    __tablename__ = "advertisers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    categories = relationship("AdvertiserCategory", back_populates="advertiser", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Advertiser {self.name}>"


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)


class CompetitiveGroup(Base):
    __tablename__ = "competitive_groups"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    conflict_mode = Column(String(10), nullable=True)  # None -> organization default


class AdvertiserCategory(Base):
    __tablename__ = "advertiser_categories"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    advertiser_id = Column(String(36), ForeignKey("advertisers.id", ondelete="CASCADE"), nullable=False)
    category_id = Column(String(36), ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)
    competitive_group_id = Column(String(36), ForeignKey("competitive_groups.id", ondelete="SET NULL"), nullable=True)

    advertiser = relationship("Advertiser", back_populates="categories")
    category = relationship("Category")
    competitive_group = relationship("CompetitiveGroup")

    __table_args__ = (
        UniqueConstraint("advertiser_id", "category_id", name="uq_advertiser_category"),
        Index("ix_advertiser_category_group", "competitive_group_id"),
    )


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(200), nullable=False)
    advertiser_id = Column(String(36), ForeignKey("advertisers.id", ondelete="SET NULL"), nullable=True)
    agency_id = Column(String(36), nullable=True)
    seller_id = Column(String(36), nullable=True)

    status = Column(String(20), default=CampaignStatus.DRAFT.value)
    probability = Column(Integer, default=10)  # 0..100
    budget = Column(Numeric(12, 2), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    # Competitive conflict audit
    has_competitive_conflicts = Column(Boolean, default=False)
    competitive_conflicts = Column(JSON, nullable=True)
    conflict_override = Column(Boolean, default=False)
    conflict_override_reason = Column(Text, nullable=True)
    conflict_override_by = Column(String(36), nullable=True)
    conflict_override_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    advertiser = relationship("Advertiser")

    __table_args__ = (
        Index("ix_campaign_org_status", "organization_id", "status"),
        Index("ix_campaign_dates", "start_date", "end_date"),
    )

    def __repr__(self):
        return f"<Campaign {self.name} {self.status} {self.probability}%>"


class CampaignApproval(Base):
    __tablename__ = "campaign_approvals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), default=ApprovalStatus.PENDING.value)
    required_roles = Column(JSON, nullable=True)
    reason = Column(Text, nullable=True)
    trigger_id = Column(String(36), nullable=True)

    requested_by = Column(String(36), nullable=True)
    requested_at = Column(DateTime, default=datetime.utcnow)
    decided_by = Column(String(36), nullable=True)
    decided_at = Column(DateTime, nullable=True)
    decision_notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_campaign_approval_status", "campaign_id", "status"),
    )

    def __repr__(self):
        return f"<CampaignApproval {self.campaign_id} {self.status}>"
