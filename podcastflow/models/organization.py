"""
Organization and User Models

Tenancy is a shared schema: every tenant-owned row carries organization_id.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, JSON, Index
import enum

from ..database import Base


class UserRole(str, enum.Enum):
    MASTER = "master"
    ADMIN = "admin"
    SALES = "sales"
    PRODUCER = "producer"
    TALENT = "talent"
    CLIENT = "client"


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False)
    slug = Column(String(100), nullable=False, unique=True)

    # {"notifications": {...}} - parsed into OrganizationNotificationSettings
    settings = Column(JSON, nullable=True, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Organization {self.slug}>"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    email = Column(String(255), nullable=False)
    name = Column(String(200), nullable=True)
    role = Column(String(30), nullable=False, default=UserRole.SALES.value)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_user_org_role", "organization_id", "role"),
    )

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
