"""
Inventory Ledger

Authoritative slot counters per episode and placement type. For every
placement: available + reserved + booked == slots, all counts >= 0.

All mutations go through InventoryLedger.adjust(), which locks the episode
row (SELECT ... FOR UPDATE on PostgreSQL) for the read-modify-write. The
ledger never commits; the caller owns the transaction so a batch of holds is
all-or-nothing.
"""

import logging
from collections import namedtuple
from datetime import datetime, date
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from ..exceptions import InventoryNotFoundError, InventoryOverbookError, InventoryInvariantError
from ..models.episode_inventory import EpisodeInventory, PLACEMENT_COLUMNS, normalize_placement
from ..models.inventory_alert import InventoryAlert, InventoryAlertType, AlertSeverity, AlertStatus
from ..models.show import Show, Episode
from ..utils.db_helpers import acquire_row_lock, compare_and_set
from ..utils.logging_config import get_logger

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)


SlotCounts = namedtuple("SlotCounts", ["pre_roll", "mid_roll", "post_roll"])

DEFAULT_EPISODE_LENGTH = 30  # minutes

DEFAULT_SPOT_THRESHOLDS = [
    {"minLength": 0, "maxLength": 15, "preRoll": 1, "midRoll": 0, "postRoll": 0},
    {"minLength": 15, "maxLength": 30, "preRoll": 1, "midRoll": 1, "postRoll": 1},
    {"minLength": 30, "maxLength": 60, "preRoll": 1, "midRoll": 2, "postRoll": 1},
    {"minLength": 60, "maxLength": 120, "preRoll": 2, "midRoll": 3, "postRoll": 1},
]

FALLBACK_SLOT_COUNTS = SlotCounts(1, 2, 1)

ADJUST_ATTEMPTS = 5

# show category -> (pre, mid, post) default spot prices
CATEGORY_PRICES = {
    "technology": (Decimal("500"), Decimal("750"), Decimal("300")),
    "business": (Decimal("450"), Decimal("700"), Decimal("275")),
    "health": (Decimal("400"), Decimal("650"), Decimal("250")),
}
DEFAULT_PRICES = (Decimal("350"), Decimal("600"), Decimal("225"))


def derive_slot_counts(length_minutes: Optional[float], thresholds: Optional[List[dict]] = None) -> SlotCounts:
    """
    Map an episode length to ad slots per placement type.

    The first threshold row with minLength <= length <= maxLength wins.
    A missing length counts as 30 minutes; no matching row gives (1, 2, 1).
    """
    length = DEFAULT_EPISODE_LENGTH if length_minutes is None else length_minutes
    rows = thresholds or DEFAULT_SPOT_THRESHOLDS

    for row in rows:
        low = row.get("minLength", 0)
        high = row.get("maxLength", float("inf"))
        if low <= length <= high:
            return SlotCounts(
                int(row.get("preRoll", 0)),
                int(row.get("midRoll", 0)),
                int(row.get("postRoll", 0)),
            )

    return FALLBACK_SLOT_COUNTS


def default_prices(category: Optional[str]):
    return CATEGORY_PRICES.get((category or "").strip().lower(), DEFAULT_PRICES)


class InventoryLedger:
    """
    Slot counter ledger for one organization.

    Key responsibilities:
    - Create inventory rows when episodes are scheduled
    - Re-derive capacity when episode length changes
    - Apply locked, invariant-checked counter adjustments
    - Record overbooking / capacity alerts for operators
    """

    def __init__(self, db: Session, organization_id: Optional[str] = None):
        self.db = db
        self.organization_id = organization_id

    def _scoped(self, query, model):
        if self.organization_id:
            query = query.filter(model.organization_id == self.organization_id)
        return query

    # ==================
    # Lookup
    # ==================

    def get_inventory(self, episode_id: str) -> EpisodeInventory:
        query = self.db.query(EpisodeInventory).filter(EpisodeInventory.episode_id == episode_id)
        inventory = self._scoped(query, EpisodeInventory).first()
        if not inventory:
            raise InventoryNotFoundError(episode_id)
        return inventory

    def find_by_show_date(self, show_id: str, air_date: date) -> Optional[EpisodeInventory]:
        """Inventory row for the episode a show airs on a date, if any."""
        query = self.db.query(EpisodeInventory).filter(
            EpisodeInventory.show_id == show_id,
            EpisodeInventory.air_date == air_date,
        )
        return self._scoped(query, EpisodeInventory).order_by(EpisodeInventory.created_at).first()

    def lock_inventory(self, episode_id: str) -> EpisodeInventory:
        """Load the episode row under a row lock for the rest of the transaction."""
        condition = EpisodeInventory.episode_id == episode_id
        if self.organization_id:
            condition = condition & (EpisodeInventory.organization_id == self.organization_id)
        inventory = acquire_row_lock(self.db, EpisodeInventory, condition)
        if not inventory:
            raise InventoryNotFoundError(episode_id)
        return inventory

    # ==================
    # Capacity
    # ==================

    def ensure_inventory(self, episode: Episode) -> EpisodeInventory:
        """Create the inventory row for a scheduled episode (no-op if it exists)."""
        existing = self.db.query(EpisodeInventory).filter(
            EpisodeInventory.episode_id == episode.id
        ).first()
        if existing:
            return existing

        show = episode.show or self.db.query(Show).filter(Show.id == episode.show_id).first()
        thresholds = show.spot_thresholds if show else None
        counts = derive_slot_counts(episode.length_minutes, thresholds)
        pre_price, mid_price, post_price = default_prices(show.category if show else None)

        inventory = EpisodeInventory(
            organization_id=episode.organization_id,
            episode_id=episode.id,
            show_id=episode.show_id,
            air_date=episode.air_date,
            pre_roll_slots=counts.pre_roll,
            pre_roll_available=counts.pre_roll,
            pre_roll_reserved=0,
            pre_roll_booked=0,
            mid_roll_slots=counts.mid_roll,
            mid_roll_available=counts.mid_roll,
            mid_roll_reserved=0,
            mid_roll_booked=0,
            post_roll_slots=counts.post_roll,
            post_roll_available=counts.post_roll,
            post_roll_reserved=0,
            post_roll_booked=0,
            pre_roll_price=(show.pre_roll_rate if show and show.pre_roll_rate is not None else pre_price),
            mid_roll_price=(show.mid_roll_rate if show and show.mid_roll_rate is not None else mid_price),
            post_roll_price=(show.post_roll_rate if show and show.post_roll_rate is not None else post_price),
            calculated_from_length=episode.length_minutes is not None,
            spot_configuration={"lengthMinutes": episode.length_minutes, "counts": counts._asdict()},
        )
        self.db.add(inventory)
        self.db.flush()

        logger.info(
            f"Created inventory for episode {episode.id}: "
            f"pre={counts.pre_roll} mid={counts.mid_roll} post={counts.post_roll}"
        )
        return inventory

    def recalculate(self, episode_id: str, length_minutes: Optional[float]) -> EpisodeInventory:
        """
        Re-derive capacity after an episode length change.

        Every placement is checked before anything is written. If the new
        capacity is below reserved + booked for any placement, a
        capacity_shrink alert is committed and InventoryOverbookError raised;
        counts are left untouched.
        """
        inventory = self.lock_inventory(episode_id)
        show = self.db.query(Show).filter(Show.id == inventory.show_id).first()
        counts = derive_slot_counts(length_minutes, show.spot_thresholds if show else None)
        new_slots = dict(zip(PLACEMENT_COLUMNS.keys(), counts))

        for placement, slots in new_slots.items():
            _, _, reserved, booked = inventory.counts(placement)
            committed = reserved + booked
            if slots < committed:
                self._record_alert(
                    inventory,
                    placement,
                    InventoryAlertType.CAPACITY_SHRINK,
                    f"Recalculated capacity {slots} is below {committed} committed spots",
                    {"newSlots": slots, "reserved": reserved, "booked": booked,
                     "lengthMinutes": length_minutes},
                )
                self.db.commit()
                raise InventoryOverbookError(
                    episode_id,
                    placement,
                    requested=committed,
                    available=slots,
                    reason=(
                        f"Cannot shrink {placement} capacity for episode {episode_id} to {slots}: "
                        f"{committed} spots already reserved or booked"
                    ),
                )

        for placement, slots in new_slots.items():
            _, _, reserved, booked = inventory.counts(placement)
            inventory.set_counts(placement, slots=slots, available=slots - reserved - booked)

        inventory.calculated_from_length = length_minutes is not None
        inventory.spot_configuration = {"lengthMinutes": length_minutes, "counts": counts._asdict()}
        inventory.updated_at = datetime.utcnow()
        self.db.flush()

        logger.info(f"Recalculated inventory for episode {episode_id}: {counts._asdict()}")
        return inventory

    # ==================
    # Adjustment
    # ==================

    def adjust(
        self,
        episode_id: str,
        placement_type: str,
        delta_available: int = 0,
        delta_reserved: int = 0,
        delta_booked: int = 0,
    ) -> EpisodeInventory:
        """
        The only mutation entrypoint for slot counters.

        Deltas must sum to zero (capacity is changed only by recalculate).
        A negative resulting count raises InventoryOverbookError naming the slot.
        The counters are written with a compare-and-set on the values read, so a
        concurrent writer the row lock did not stop (SQLite) forces a re-read.
        """
        placement = normalize_placement(placement_type)

        if delta_available + delta_reserved + delta_booked != 0:
            raise InventoryInvariantError(
                f"Adjustment for episode {episode_id} {placement} does not preserve capacity "
                f"({delta_available:+d}/{delta_reserved:+d}/{delta_booked:+d})",
                {"episodeId": episode_id, "placementType": placement},
            )

        prefix = PLACEMENT_COLUMNS[placement]
        for _ in range(ADJUST_ATTEMPTS):
            inventory = self.lock_inventory(episode_id)
            slots, available, reserved, booked = inventory.counts(placement)

            new_available = available + delta_available
            new_reserved = reserved + delta_reserved
            new_booked = booked + delta_booked

            if new_available < 0 or new_reserved < 0 or new_booked < 0:
                raise InventoryOverbookError(
                    episode_id,
                    placement,
                    requested=max(-delta_available, -delta_reserved, -delta_booked, 1),
                    available=available if new_available < 0 else (reserved if new_reserved < 0 else booked),
                )

            seen = {f"{prefix}_available": available, f"{prefix}_reserved": reserved, f"{prefix}_booked": booked}
            written = {
                f"{prefix}_available": new_available,
                f"{prefix}_reserved": new_reserved,
                f"{prefix}_booked": new_booked,
                "updated_at": datetime.utcnow(),
            }
            if compare_and_set(self.db, EpisodeInventory, inventory.id, seen, written):
                for column, value in written.items():
                    set_committed_value(inventory, column, value)
                break

            logger.debug(f"Counters for episode {episode_id} {placement} moved underneath us, re-reading")
            self.db.expire(inventory)
        else:
            raise InventoryInvariantError(
                f"Could not adjust episode {episode_id} {placement} after {ADJUST_ATTEMPTS} attempts",
                {"episodeId": episode_id, "placementType": placement},
            )

        if new_reserved + new_booked > slots:
            self._record_alert(
                inventory,
                placement,
                InventoryAlertType.OVERBOOKING,
                f"reserved + booked ({new_reserved + new_booked}) exceeds capacity ({slots})",
                {"slots": slots, "available": new_available, "reserved": new_reserved, "booked": new_booked},
            )

        self.db.flush()
        structured_logger.inventory_adjusted(episode_id, placement, new_available, new_reserved, new_booked)
        return inventory

    def hold(self, episode_id: str, placement_type: str, count: int = 1) -> EpisodeInventory:
        """available -> reserved"""
        return self.adjust(episode_id, placement_type, delta_available=-count, delta_reserved=count)

    def confirm(self, episode_id: str, placement_type: str, count: int = 1) -> EpisodeInventory:
        """reserved -> booked"""
        return self.adjust(episode_id, placement_type, delta_reserved=-count, delta_booked=count)

    def release(self, episode_id: str, placement_type: str, count: int = 1) -> EpisodeInventory:
        """reserved -> available"""
        return self.adjust(episode_id, placement_type, delta_available=count, delta_reserved=-count)

    # ==================
    # Alerts
    # ==================

    def _record_alert(
        self,
        inventory: EpisodeInventory,
        placement: str,
        alert_type: InventoryAlertType,
        message: str,
        details: Dict,
    ) -> InventoryAlert:
        alert = InventoryAlert(
            organization_id=inventory.organization_id,
            alert_type=alert_type.value,
            severity=AlertSeverity.HIGH.value if alert_type == InventoryAlertType.OVERBOOKING else AlertSeverity.CRITICAL.value,
            status=AlertStatus.OPEN.value,
            episode_id=inventory.episode_id,
            show_id=inventory.show_id,
            placement_type=placement,
            message=message,
            details=details,
        )
        self.db.add(alert)
        logger.warning(f"Inventory alert ({alert_type.value}) for episode {inventory.episode_id} {placement}: {message}")
        return alert

    def list_alerts(self, status: Optional[str] = None, limit: int = 100) -> List[InventoryAlert]:
        query = self._scoped(self.db.query(InventoryAlert), InventoryAlert)
        if status:
            query = query.filter(InventoryAlert.status == status)
        return query.order_by(InventoryAlert.created_at.desc()).limit(limit).all()

    def _get_alert(self, alert_id: str) -> Optional[InventoryAlert]:
        query = self.db.query(InventoryAlert).filter(InventoryAlert.id == alert_id)
        return self._scoped(query, InventoryAlert).first()

    def acknowledge_alert(self, alert_id: str, user_id: Optional[str] = None) -> Optional[InventoryAlert]:
        alert = self._get_alert(alert_id)
        if not alert:
            return None
        if alert.status == AlertStatus.OPEN.value:
            alert.status = AlertStatus.ACKNOWLEDGED.value
            alert.acknowledged_at = datetime.utcnow()
            alert.acknowledged_by = user_id
        return alert

    def resolve_alert(
        self,
        alert_id: str,
        user_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[InventoryAlert]:
        alert = self._get_alert(alert_id)
        if not alert:
            return None
        alert.status = AlertStatus.RESOLVED.value
        alert.resolved_at = datetime.utcnow()
        alert.resolved_by = user_id
        alert.resolution_notes = notes
        return alert
