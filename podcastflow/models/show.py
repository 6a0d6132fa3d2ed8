import uuid
from datetime import datetime
from sqlalchemy import Column, String, Date, DateTime, ForeignKey, Integer, Numeric, JSON, Index
from sqlalchemy.orm import relationship
import enum

from ..database import Base


class EpisodeStatus(str, enum.Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    CANCELLED = "cancelled"


class Show(Base):
    __tablename__ = "shows"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(200), nullable=False)
    category = Column(String(50), nullable=True)  # technology, business, health, ...

    # [{"minLength": 0, "maxLength": 15, "preRoll": 1, "midRoll": 0, "postRoll": 0}, ...]
    spot_thresholds = Column(JSON, nullable=True)

    # Assigned people, used for recipient resolution
    producer_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    talent_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Rate card
    pre_roll_rate = Column(Numeric(10, 2), nullable=True)
    mid_roll_rate = Column(Numeric(10, 2), nullable=True)
    post_roll_rate = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    episodes = relationship("Episode", back_populates="show")

    def __repr__(self):
        return f"<Show {self.name}>"


class Episode(Base):
    __tablename__ = "episodes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    show_id = Column(String(36), ForeignKey("shows.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(300), nullable=False)
    air_date = Column(Date, nullable=False)
    length_minutes = Column(Integer, nullable=True)
    status = Column(String(20), default=EpisodeStatus.SCHEDULED.value)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    show = relationship("Show", back_populates="episodes")

    __table_args__ = (
        Index("ix_episode_show_air_date", "show_id", "air_date"),
    )

    def __repr__(self):
        return f"<Episode {self.title} {self.air_date}>"
