"""
Reservation State Machine

Lifecycle:
    held -> {pending, confirmed, released, expired}
    pending -> {confirmed, released}
    released / expired / confirmed / converted are terminal.

Every transition is a status-guarded UPDATE (claim_by_status) so a user
confirm/release racing the expiry sweep has exactly one winner; only the
winner touches the ledger. Each public operation is one transaction: a
failure on any item rolls back every hold made for the reservation.
"""

import logging
import random
import string
from datetime import datetime, timedelta, date
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import (
    InventoryOverbookError,
    LedgerError,
    ReservationNotFoundError,
    ReservationTerminalStateError,
    ReservationExpiredError,
)
from ..models.reservation import (
    Reservation,
    ReservationItem,
    ReservationStatusHistory,
    ReservationStatus,
    ACTIVE_STATUSES,
)
from ..models.episode_inventory import EpisodeInventory, PLACEMENT_COLUMNS
from ..models.order import Order, OrderItem, OrderStatus
from ..schemas.reservation import ReservationCreate, ReservationItemCreate
from ..schemas.workflow import FallbackStrategy
from ..utils.db_helpers import acquire_row_lock, claim_by_status, get_pending_with_skip_locked
from ..utils.logging_config import get_logger
from .inventory_ledger import InventoryLedger
from .notification_service import NotificationService
from .workflow_settings import WorkflowSettingsService

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

RESERVATION_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


class ReservationService:
    """
    Creates, confirms, releases and expires reservations against the
    Inventory Ledger for one organization.
    """

    def __init__(
        self,
        db: Session,
        organization_id: str,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.organization_id = organization_id
        self.ledger = InventoryLedger(db, organization_id)
        self.notifier = notifier or NotificationService(db)

    # ==================
    # Lookup
    # ==================

    def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = self.db.query(Reservation).filter(
            Reservation.id == reservation_id,
            Reservation.organization_id == self.organization_id,
        ).first()
        if not reservation:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    def list_reservations(
        self,
        status: Optional[str] = None,
        campaign_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Reservation]:
        query = self.db.query(Reservation).filter(Reservation.organization_id == self.organization_id)
        if status:
            query = query.filter(Reservation.status == status)
        if campaign_id:
            query = query.filter(Reservation.campaign_id == campaign_id)
        return query.order_by(Reservation.created_at.desc()).offset(offset).limit(limit).all()

    def has_active_reservation(self, campaign_id: str) -> bool:
        return self.db.query(Reservation.id).filter(
            Reservation.organization_id == self.organization_id,
            Reservation.campaign_id == campaign_id,
            Reservation.status.in_(ACTIVE_STATUSES),
        ).first() is not None

    # ==================
    # Numbering
    # ==================

    def generate_reservation_number(self, now: Optional[datetime] = None) -> str:
        """RES-YYYYMMDD-XXXX, retried until unused."""
        stamp = (now or datetime.utcnow()).strftime("%Y%m%d")
        while True:
            suffix = "".join(random.choices(RESERVATION_SUFFIX_ALPHABET, k=4))
            number = f"RES-{stamp}-{suffix}"
            taken = self.db.query(Reservation.id).filter(Reservation.reservation_number == number).first()
            if not taken:
                return number

    def generate_order_number(self, now: Optional[datetime] = None) -> str:
        """ORD-YYYY-NNNNNN, sequential per organization and year."""
        year = (now or datetime.utcnow()).year
        prefix = f"ORD-{year}-"
        count = self.db.query(func.count(Order.id)).filter(
            Order.organization_id == self.organization_id,
            Order.order_number.like(f"{prefix}%"),
        ).scalar() or 0
        return f"{prefix}{count + 1:06d}"

    # ==================
    # Create / hold
    # ==================

    def new_reservation(
        self,
        hold_duration_hours: Optional[int] = None,
        advertiser_id: Optional[str] = None,
        agency_id: Optional[str] = None,
        campaign_id: Optional[str] = None,
        priority: str = "normal",
        notes: Optional[str] = None,
        source: str = "web",
        created_by: Optional[str] = None,
    ) -> Reservation:
        """Add an empty held reservation to the session (no items, no commit)."""
        hours = hold_duration_hours or self._default_hold_hours()
        now = datetime.utcnow()
        reservation = Reservation(
            organization_id=self.organization_id,
            reservation_number=self.generate_reservation_number(now),
            status=ReservationStatus.HELD.value,
            hold_duration=hours,
            expires_at=now + timedelta(hours=hours),
            priority=priority.value if hasattr(priority, "value") else priority,
            total_amount=Decimal("0"),
            notes=notes,
            source=source,
            advertiser_id=advertiser_id,
            agency_id=agency_id,
            campaign_id=campaign_id,
            created_by=created_by,
        )
        self.db.add(reservation)
        self.db.flush()
        self._record_transition(reservation, None, ReservationStatus.HELD.value, "Reservation created", created_by)
        return reservation

    def hold_item(
        self,
        reservation: Reservation,
        show_id: str,
        air_date: date,
        placement_type: str,
        episode_id: Optional[str] = None,
        spot_number: int = 1,
        length: int = 30,
        rate: Optional[Decimal] = None,
        notes: Optional[str] = None,
    ) -> ReservationItem:
        """
        Hold one slot (available -> reserved) and attach the line to the reservation.

        Raises InventoryOverbookError naming the slot when nothing is available.
        """
        if episode_id:
            inventory = self.ledger.get_inventory(episode_id)
        else:
            inventory = self.ledger.find_by_show_date(show_id, air_date)
            if inventory is None:
                raise InventoryOverbookError(
                    f"{show_id}@{air_date.isoformat()}",
                    placement_type,
                    reason=f"No episode inventory for show {show_id} on {air_date.isoformat()}",
                )

        self.ledger.hold(inventory.episode_id, placement_type)

        if rate is None:
            rate = inventory.price(placement_type) or Decimal("0")

        item = ReservationItem(
            show_id=inventory.show_id,
            episode_id=inventory.episode_id,
            air_date=inventory.air_date,
            placement_type=placement_type,
            spot_number=spot_number,
            length=length,
            rate=Decimal(str(rate)),
            notes=notes,
        )
        reservation.items.append(item)
        reservation.total_amount = Decimal(str(reservation.total_amount or 0)) + item.rate
        return item

    def create_reservation(self, request: ReservationCreate, user_id: Optional[str] = None) -> Reservation:
        """
        All-or-nothing hold for every requested item.

        Any InventoryOverbookError rolls the whole batch back and propagates.
        """
        try:
            reservation = self.new_reservation(
                hold_duration_hours=request.hold_duration_hours,
                advertiser_id=request.advertiser_id,
                agency_id=request.agency_id,
                campaign_id=request.campaign_id,
                priority=request.priority,
                notes=request.notes,
                source=request.source,
                created_by=user_id,
            )
            for item in request.items:
                self._hold_request_item(reservation, item)
            self.db.flush()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Reservation {reservation.reservation_number} held {len(reservation.items)} item(s) "
            f"until {reservation.expires_at.isoformat()}"
        )
        self._notify("inventory_reserved", reservation)
        return reservation

    def _hold_request_item(self, reservation: Reservation, item: ReservationItemCreate) -> ReservationItem:
        return self.hold_item(
            reservation,
            show_id=item.show_id,
            air_date=item.air_date,
            placement_type=item.placement_type,
            episode_id=item.episode_id,
            spot_number=item.spot_number,
            length=item.length,
            rate=item.rate,
            notes=item.notes,
        )

    def create_with_fallback(
        self,
        request: ReservationCreate,
        fallback_strategy: str,
        user_id: Optional[str] = None,
    ) -> Tuple[Reservation, List[str]]:
        """
        Hold under an organization fallback strategy.

        strict: same as create_reservation.
        relaxed: lines that cannot be held (no room, unknown episode) are skipped.
        fill_anywhere: a failed line moves to the next air date of the same
        show that still has the placement available.

        Returns the reservation and one message per skipped line. Re-raises the
        last ledger error when no line could be held at all.
        """
        if fallback_strategy == FallbackStrategy.STRICT.value:
            return self.create_reservation(request, user_id), []

        skipped = []
        last_error = None
        try:
            reservation = self.new_reservation(
                hold_duration_hours=request.hold_duration_hours,
                advertiser_id=request.advertiser_id,
                agency_id=request.agency_id,
                campaign_id=request.campaign_id,
                priority=request.priority,
                notes=request.notes,
                source=request.source,
                created_by=user_id,
            )
            for item in request.items:
                try:
                    with self.db.begin_nested():
                        self._hold_request_item(reservation, item)
                    continue
                except LedgerError as e:
                    last_error = e

                if fallback_strategy == FallbackStrategy.FILL_ANYWHERE.value:
                    alternate = self._alternate_inventory(item)
                    if alternate is not None:
                        with self.db.begin_nested():
                            self._hold_request_item(reservation, item.model_copy(update={
                                "episode_id": alternate.episode_id,
                                "air_date": alternate.air_date,
                                "rate": None,
                            }))
                        continue
                skipped.append(last_error.message)

            if not reservation.items:
                raise last_error
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Reservation {reservation.reservation_number} held {len(reservation.items)} item(s) "
            f"({fallback_strategy}), skipped {len(skipped)}"
        )
        self._notify("inventory_reserved", reservation, skipped=len(skipped))
        return reservation, skipped

    def _alternate_inventory(self, item: ReservationItemCreate) -> Optional[EpisodeInventory]:
        prefix = PLACEMENT_COLUMNS[item.placement_type]
        available = getattr(EpisodeInventory, f"{prefix}_available")
        query = self.db.query(EpisodeInventory).filter(
            EpisodeInventory.organization_id == self.organization_id,
            EpisodeInventory.show_id == item.show_id,
            EpisodeInventory.air_date >= item.air_date,
            available > 0,
        )
        if item.episode_id:
            query = query.filter(EpisodeInventory.episode_id != item.episode_id)
        return query.order_by(EpisodeInventory.air_date.asc()).first()

    # ==================
    # Transitions
    # ==================

    def confirm(self, reservation_id: str, user_id: Optional[str] = None) -> Tuple[Reservation, Order]:
        """
        held/pending -> confirmed: reserved -> booked for every line and an Order is created.

        A held reservation past its expiry is expired on the spot and
        ReservationExpiredError raised.
        """
        reservation = self._lock(reservation_id)
        now = datetime.utcnow()

        if reservation.status == ReservationStatus.EXPIRED.value:
            raise ReservationExpiredError(reservation.id, reservation.status)

        if reservation.status == ReservationStatus.HELD.value and reservation.expires_at <= now:
            if self._expire_one(reservation, now):
                self.db.commit()
                self._notify("reservation_expired", reservation)
            raise ReservationExpiredError(reservation.id, ReservationStatus.EXPIRED.value)

        if not reservation.can_transition_to(ReservationStatus.CONFIRMED.value):
            raise ReservationTerminalStateError(reservation.id, reservation.status, "confirmed")

        previous = reservation.status
        claimed = claim_by_status(
            self.db, Reservation, reservation.id, ACTIVE_STATUSES,
            {"status": ReservationStatus.CONFIRMED.value, "confirmed_at": now,
             "confirmed_by": user_id, "updated_at": now},
        )
        if not claimed:
            self.db.rollback()
            current = self.get_reservation(reservation_id)
            if current.status == ReservationStatus.EXPIRED.value:
                raise ReservationExpiredError(current.id, current.status)
            raise ReservationTerminalStateError(current.id, current.status, "confirmed")

        try:
            self.db.refresh(reservation)
            for item in reservation.items:
                self.ledger.confirm(item.episode_id, item.placement_type)

            order = self._create_order(reservation, user_id, now)
            reservation.order_id = order.id
            self._record_transition(reservation, previous, ReservationStatus.CONFIRMED.value, "Confirmed", user_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self._notify("reservation_confirmed", reservation, orderNumber=order.order_number)
        self._notify("order_created", reservation, orderId=order.id, orderNumber=order.order_number)
        return reservation, order

    def release(
        self,
        reservation_id: str,
        reason: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Reservation:
        """
        held/pending -> released: reserved -> available for every line.

        Releasing an already released reservation is a no-op.
        """
        reservation = self._lock(reservation_id)

        if reservation.status == ReservationStatus.RELEASED.value:
            return reservation
        if not reservation.can_transition_to(ReservationStatus.RELEASED.value):
            raise ReservationTerminalStateError(reservation.id, reservation.status, "released")

        previous = reservation.status
        now = datetime.utcnow()
        claimed = claim_by_status(
            self.db, Reservation, reservation.id, ACTIVE_STATUSES,
            {"status": ReservationStatus.RELEASED.value, "released_at": now,
             "released_by": user_id, "release_reason": reason, "updated_at": now},
        )
        if not claimed:
            self.db.rollback()
            current = self.get_reservation(reservation_id)
            if current.status == ReservationStatus.RELEASED.value:
                return current
            raise ReservationTerminalStateError(current.id, current.status, "released")

        try:
            self.db.refresh(reservation)
            for item in reservation.items:
                self.ledger.release(item.episode_id, item.placement_type)
            self._record_transition(reservation, previous, ReservationStatus.RELEASED.value, reason, user_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self._notify("inventory_released", reservation, reason=reason)
        return reservation

    def mark_pending(
        self,
        reservation_id: str,
        reason: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Reservation:
        """held -> pending (awaiting approval); inventory stays reserved."""
        reservation = self._lock(reservation_id)
        if not reservation.can_transition_to(ReservationStatus.PENDING.value):
            raise ReservationTerminalStateError(reservation.id, reservation.status, "pending")

        claimed = claim_by_status(
            self.db, Reservation, reservation.id, [ReservationStatus.HELD.value],
            {"status": ReservationStatus.PENDING.value, "updated_at": datetime.utcnow()},
        )
        if not claimed:
            self.db.rollback()
            current = self.get_reservation(reservation_id)
            raise ReservationTerminalStateError(current.id, current.status, "pending")

        self.db.refresh(reservation)
        self._record_transition(reservation, ReservationStatus.HELD.value, ReservationStatus.PENDING.value, reason, user_id)
        self.db.commit()
        return reservation

    def transition(
        self,
        reservation_id: str,
        new_status: str,
        reason: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Reservation:
        """Dispatch a target status to the matching transition."""
        if new_status == ReservationStatus.CONFIRMED.value:
            return self.confirm(reservation_id, user_id)[0]
        if new_status == ReservationStatus.RELEASED.value:
            return self.release(reservation_id, reason, user_id)
        if new_status == ReservationStatus.PENDING.value:
            return self.mark_pending(reservation_id, reason, user_id)
        reservation = self.get_reservation(reservation_id)
        raise ReservationTerminalStateError(reservation.id, reservation.status, new_status)

    # ==================
    # Expiry sweep
    # ==================

    def expire_stale(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
        """
        Move held reservations past expires_at to expired and release their inventory.

        Safe to run concurrently with user confirm/release: each candidate is
        claimed with UPDATE ... WHERE status = 'held' and only the winner
        touches the ledger. Each reservation commits on its own.
        """
        now = now or datetime.utcnow()
        candidates = get_pending_with_skip_locked(
            self.db,
            Reservation,
            (Reservation.organization_id == self.organization_id)
            & (Reservation.status == ReservationStatus.HELD.value)
            & (Reservation.expires_at < now),
            order_by=(Reservation.expires_at,),
            limit=limit or settings.expiry_sweep_batch_size,
        )

        expired = []
        for reservation in candidates:
            try:
                if self._expire_one(reservation, now):
                    self.db.commit()
                    expired.append(reservation)
                else:
                    self.db.rollback()
            except Exception as e:
                logger.error(f"Failed to expire reservation {reservation.id}: {e}")
                self.db.rollback()

        for reservation in expired:
            self._notify("reservation_expired", reservation)

        if expired:
            logger.info(f"Expired {len(expired)} reservation(s) for organization {self.organization_id}")
        return len(expired)

    def _expire_one(self, reservation: Reservation, now: datetime) -> bool:
        claimed = claim_by_status(
            self.db, Reservation, reservation.id, [ReservationStatus.HELD.value],
            {"status": ReservationStatus.EXPIRED.value, "released_at": now,
             "release_reason": "Hold expired", "updated_at": now},
        )
        if not claimed:
            return False

        self.db.refresh(reservation)
        for item in reservation.items:
            self.ledger.release(item.episode_id, item.placement_type)
        self._record_transition(
            reservation, ReservationStatus.HELD.value, ReservationStatus.EXPIRED.value, "Hold expired", None
        )
        return True

    # ==================
    # Internals
    # ==================

    def _lock(self, reservation_id: str) -> Reservation:
        reservation = acquire_row_lock(
            self.db,
            Reservation,
            (Reservation.id == reservation_id) & (Reservation.organization_id == self.organization_id),
        )
        if not reservation:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    def _default_hold_hours(self) -> int:
        try:
            return WorkflowSettingsService(self.db).get_typed(self.organization_id).reservation.hold_duration_hours
        except Exception as e:
            logger.warning(f"Falling back to default hold duration: {e}")
            return settings.default_hold_hours

    def _create_order(self, reservation: Reservation, user_id: Optional[str], now: datetime) -> Order:
        total = sum((Decimal(str(item.rate or 0)) for item in reservation.items), Decimal("0"))
        order = Order(
            organization_id=self.organization_id,
            order_number=self.generate_order_number(now),
            reservation_id=reservation.id,
            campaign_id=reservation.campaign_id,
            advertiser_id=reservation.advertiser_id,
            agency_id=reservation.agency_id,
            status=OrderStatus.CONFIRMED.value,
            total_amount=total,
            net_amount=total,
            submitted_by=user_id,
            submitted_at=now,
        )
        for item in reservation.items:
            order.items.append(OrderItem(
                show_id=item.show_id,
                episode_id=item.episode_id,
                air_date=item.air_date,
                placement_type=item.placement_type,
                spot_number=item.spot_number,
                length=item.length,
                rate=item.rate,
                actual_rate=item.rate,
            ))
        self.db.add(order)
        self.db.flush()
        logger.info(f"Created order {order.order_number} from reservation {reservation.reservation_number}")
        return order

    def _record_transition(
        self,
        reservation: Reservation,
        previous: Optional[str],
        new_status: str,
        reason: Optional[str],
        user_id: Optional[str],
    ) -> None:
        self.db.add(ReservationStatusHistory(
            reservation_id=reservation.id,
            previous_status=previous,
            new_status=new_status,
            reason=reason,
            changed_by=user_id,
        ))
        structured_logger.reservation_status_changed(
            reservation.id, reservation.reservation_number, previous, new_status, reason
        )

    def _notify(self, event_type: str, reservation: Reservation, **extra) -> None:
        payload = {
            "reservationId": reservation.id,
            "reservationNumber": reservation.reservation_number,
            "status": reservation.status,
            "campaignId": reservation.campaign_id,
            "advertiserId": reservation.advertiser_id,
            "totalAmount": float(reservation.total_amount or 0),
            "itemCount": len(reservation.items),
            "expiresAt": reservation.expires_at.isoformat() if reservation.expires_at else None,
            "actionUrl": f"{settings.app_base_url}/reservations/{reservation.id}",
        }
        if reservation.created_by:
            payload["sellerId"] = reservation.created_by
        payload.update(extra)
        self.notifier.emit(self.organization_id, event_type, payload)


def expire_stale_holds(db: Session, now: Optional[datetime] = None) -> int:
    """Run the expiry sweep for every organization that has overdue holds."""
    now = now or datetime.utcnow()
    organization_ids = [
        row.organization_id
        for row in db.query(Reservation.organization_id).filter(
            Reservation.status == ReservationStatus.HELD.value,
            Reservation.expires_at < now,
        ).distinct()
    ]

    expired = 0
    for organization_id in organization_ids:
        expired += ReservationService(db, organization_id).expire_stale(now)
    return expired
