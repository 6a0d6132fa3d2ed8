"""
Episode Inventory Model

One row per episode with slot counters per placement type. For every
placement type: available + reserved + booked == slots, all counts >= 0.
Rows are mutated only through InventoryLedger.adjust().
"""

import uuid
from datetime import datetime
from typing import Dict, Tuple
from sqlalchemy import (
    Column, String, Date, DateTime, ForeignKey, Integer, Numeric, Boolean, JSON,
    Index, CheckConstraint
)
import enum

from ..database import Base


class PlacementType(str, enum.Enum):
    PRE_ROLL = "pre-roll"
    MID_ROLL = "mid-roll"
    POST_ROLL = "post-roll"


# placement type -> column prefix
PLACEMENT_COLUMNS: Dict[str, str] = {
    PlacementType.PRE_ROLL.value: "pre_roll",
    PlacementType.MID_ROLL.value: "mid_roll",
    PlacementType.POST_ROLL.value: "post_roll",
}

COUNTER_SUFFIXES = ("slots", "available", "reserved", "booked")


def normalize_placement(placement_type: str) -> str:
    """Accept pre-roll / preRoll / pre_roll / preroll spellings."""
    key = placement_type.strip().lower().replace("_", "-")
    if key in PLACEMENT_COLUMNS:
        return key
    compact = key.replace("-", "")
    for value in PLACEMENT_COLUMNS:
        if value.replace("-", "") == compact:
            return value
    raise ValueError(f"Unknown placement type: {placement_type}")


def _non_negative_checks():
    checks = []
    for prefix in PLACEMENT_COLUMNS.values():
        for suffix in COUNTER_SUFFIXES:
            column = f"{prefix}_{suffix}"
            checks.append(CheckConstraint(f"{column} >= 0", name=f"ck_inventory_{column}_non_negative"))
    return checks


class EpisodeInventory(Base):
    __tablename__ = "episode_inventory"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    episode_id = Column(String(36), ForeignKey("episodes.id", ondelete="CASCADE"), nullable=False, unique=True)
    show_id = Column(String(36), ForeignKey("shows.id", ondelete="CASCADE"), nullable=False)
    air_date = Column(Date, nullable=False)

    pre_roll_slots = Column(Integer, nullable=False, default=1)
    pre_roll_available = Column(Integer, nullable=False, default=1)
    pre_roll_reserved = Column(Integer, nullable=False, default=0)
    pre_roll_booked = Column(Integer, nullable=False, default=0)

    mid_roll_slots = Column(Integer, nullable=False, default=2)
    mid_roll_available = Column(Integer, nullable=False, default=2)
    mid_roll_reserved = Column(Integer, nullable=False, default=0)
    mid_roll_booked = Column(Integer, nullable=False, default=0)

    post_roll_slots = Column(Integer, nullable=False, default=1)
    post_roll_available = Column(Integer, nullable=False, default=1)
    post_roll_reserved = Column(Integer, nullable=False, default=0)
    post_roll_booked = Column(Integer, nullable=False, default=0)

    pre_roll_price = Column(Numeric(10, 2), nullable=True)
    mid_roll_price = Column(Numeric(10, 2), nullable=True)
    post_roll_price = Column(Numeric(10, 2), nullable=True)

    calculated_from_length = Column(Boolean, default=False)
    spot_configuration = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = tuple(_non_negative_checks()) + (
        Index("ix_inventory_show_air_date", "show_id", "air_date"),
        Index("ix_inventory_org_air_date", "organization_id", "air_date"),
    )

    def counts(self, placement_type: str) -> Tuple[int, int, int, int]:
        """(slots, available, reserved, booked) for one placement type"""
        prefix = PLACEMENT_COLUMNS[normalize_placement(placement_type)]
        return tuple(getattr(self, f"{prefix}_{suffix}") or 0 for suffix in COUNTER_SUFFIXES)

    def set_counts(self, placement_type: str, **values: int) -> None:
        prefix = PLACEMENT_COLUMNS[normalize_placement(placement_type)]
        for suffix, value in values.items():
            if suffix not in COUNTER_SUFFIXES:
                raise ValueError(f"Unknown counter: {suffix}")
            setattr(self, f"{prefix}_{suffix}", value)

    def price(self, placement_type: str):
        prefix = PLACEMENT_COLUMNS[normalize_placement(placement_type)]
        return getattr(self, f"{prefix}_price")

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        return {
            placement: dict(zip(COUNTER_SUFFIXES, self.counts(placement)))
            for placement in PLACEMENT_COLUMNS
        }

    def __repr__(self):
        return f"<EpisodeInventory episode={self.episode_id} air_date={self.air_date}>"
