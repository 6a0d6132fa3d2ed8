"""
Bulk Schedule Allocator & Commit

BulkAllocator produces a deterministic placement preview:
- Candidates = selected weekdays x shows x placement types, ordered by
  date, then show order, then placement order
- Round-robin placement with per-placement-type and per-show caps
  (ceil(requested / n)), per-show-per-day limits and an optional weekly cap
- A second phase for relaxed (same weekdays, caps lifted) and
  fill_anywhere (any day in range, cheapest slot first)

BulkScheduleService turns a preview into one held reservation inside a
single transaction, keyed by an idempotency key with a 24 hour TTL.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import BulkCommitError, InventoryOverbookError
from ..models.bulk_schedule import BulkScheduleIdempotency
from ..models.campaign import Advertiser, Campaign
from ..models.episode_inventory import EpisodeInventory, PLACEMENT_COLUMNS
from ..models.show import Show
from ..schemas.bulk_schedule import (
    AllocationResult,
    AllocationSummary,
    BulkCommitRequest,
    BulkCommitResponse,
    BulkCommitResult,
    BulkItemFailure,
    PlacementConflict,
    PlacementResult,
    Tally,
)
from ..schemas.workflow import FallbackStrategy
from .conflict_checker import ConflictChecker
from .notification_service import NotificationService
from .reservation_service import ReservationService
from .workflow_settings import WorkflowSettingsService

logger = logging.getLogger(__name__)

DEFAULT_MULTIPLE_SPOTS_PER_DAY = 3


def sunday_weekday(day: date) -> int:
    """0 = Sunday ... 6 = Saturday"""
    return (day.weekday() + 1) % 7


def week_key(day: date) -> str:
    """Monday of the week, ISO formatted."""
    return (day - timedelta(days=day.weekday())).isoformat()


def each_day(start: date, end: date):
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


@dataclass
class AllocationInput:
    show_ids: List[str]
    start: date
    end: date
    weekdays: List[int]
    placement_types: List[str]
    spots_requested: int
    fallback_strategy: str = FallbackStrategy.STRICT.value
    spots_per_week: Optional[int] = None
    allow_multiple_per_show_per_day: bool = False
    max_spots_per_show_per_day: Optional[int] = None

    @property
    def daily_limit(self) -> int:
        if not self.allow_multiple_per_show_per_day:
            return 1
        return self.max_spots_per_show_per_day or DEFAULT_MULTIPLE_SPOTS_PER_DAY


@dataclass
class Candidate:
    show_id: str
    day: date
    placement_type: str

    @property
    def spot_key(self) -> str:
        return f"{self.show_id}:{self.day.isoformat()}:{self.placement_type}"

    @property
    def daily_key(self) -> str:
        return f"{self.show_id}:{self.day.isoformat()}"


@dataclass
class Availability:
    available: bool
    rate: float = 0
    episode_id: Optional[str] = None
    reason: Optional[str] = None
    conflict_type: Optional[str] = None


@dataclass
class _AllocationState:
    placements: List[PlacementResult] = field(default_factory=list)
    conflicts: List[PlacementConflict] = field(default_factory=list)
    placed_keys: Set[str] = field(default_factory=set)
    conflict_keys: Set[str] = field(default_factory=set)
    daily_counts: Dict[str, int] = field(default_factory=dict)
    placement_counts: Dict[str, int] = field(default_factory=dict)
    show_counts: Dict[str, int] = field(default_factory=dict)


class BulkAllocator:
    """
    Inventory-aware placement planner. Read-only: nothing is held here.
    """

    def __init__(self, db: Session, organization_id: str):
        self.db = db
        self.organization_id = organization_id
        self._shows: Dict[str, Show] = {}
        self._inventory: Dict[Tuple[str, date], Optional[EpisodeInventory]] = {}

    def _show(self, show_id: str) -> Optional[Show]:
        if show_id not in self._shows:
            self._shows[show_id] = self.db.query(Show).filter(
                Show.id == show_id,
                Show.organization_id == self.organization_id,
            ).first()
        return self._shows[show_id]

    def show_name(self, show_id: str) -> Optional[str]:
        show = self._show(show_id)
        return show.name if show else None

    def _find_inventory(self, show_id: str, day: date) -> Optional[EpisodeInventory]:
        key = (show_id, day)
        if key not in self._inventory:
            self._inventory[key] = self.db.query(EpisodeInventory).filter(
                EpisodeInventory.organization_id == self.organization_id,
                EpisodeInventory.show_id == show_id,
                EpisodeInventory.air_date == day,
            ).first()
        return self._inventory[key]

    def rate_for(self, show_id: str, placement_type: str, inventory: Optional[EpisodeInventory] = None) -> float:
        if inventory is not None and inventory.price(placement_type) is not None:
            return float(inventory.price(placement_type))
        show = self._show(show_id)
        if show is not None:
            rate = getattr(show, f"{PLACEMENT_COLUMNS[placement_type]}_rate")
            if rate is not None:
                return float(rate)
        return 0.0

    def check_availability(self, candidate: Candidate) -> Availability:
        inventory = self._find_inventory(candidate.show_id, candidate.day)
        if inventory is None:
            return Availability(
                False,
                reason=f"No episode scheduled on {candidate.day.isoformat()}",
                conflict_type="no_inventory",
            )

        slots, available, reserved, booked = inventory.counts(candidate.placement_type)
        if available > 0:
            return Availability(
                True,
                rate=self.rate_for(candidate.show_id, candidate.placement_type, inventory),
                episode_id=inventory.episode_id,
            )
        if slots == 0:
            return Availability(False, reason=f"No {candidate.placement_type} slots on this episode", conflict_type="no_inventory")
        if booked >= slots:
            return Availability(False, reason="Slot already sold", conflict_type="sold")
        return Availability(False, reason="Slot is on hold for another reservation", conflict_type="held")

    # ==================
    # Allocation
    # ==================

    def allocate(self, plan: AllocationInput) -> AllocationResult:
        state = _AllocationState()
        days = list(each_day(plan.start, plan.end))
        selected_days = [d for d in days if sunday_weekday(d) in plan.weekdays]

        by_placement = {pt: Tally() for pt in plan.placement_types}
        by_show = {sid: Tally() for sid in plan.show_ids}
        by_week: Dict[str, Tally] = {}
        for day in selected_days:
            by_week.setdefault(week_key(day), Tally())

        per_placement_cap = math.ceil(plan.spots_requested / len(plan.placement_types))
        per_show_cap = math.ceil(plan.spots_requested / len(plan.show_ids))
        if by_week:
            per_week = plan.spots_per_week or math.ceil(plan.spots_requested / len(by_week))
            for tally in by_week.values():
                tally.requested = per_week
        for tally in by_placement.values():
            tally.requested = per_placement_cap
        for tally in by_show.values():
            tally.requested = per_show_cap

        candidates = self._candidates(plan, selected_days)

        # Phase 1: round-robin over the primary candidates
        placed = 0
        index = 0
        max_iterations = len(candidates) * 2
        iterations = 0
        while candidates and placed < plan.spots_requested and iterations < max_iterations:
            iterations += 1
            candidate = candidates[index % len(candidates)]
            index += 1

            if candidate.spot_key in state.placed_keys or candidate.spot_key in state.conflict_keys:
                continue
            if state.daily_counts.get(candidate.daily_key, 0) >= plan.daily_limit:
                continue
            if state.placement_counts.get(candidate.placement_type, 0) >= per_placement_cap:
                continue
            if state.show_counts.get(candidate.show_id, 0) >= per_show_cap:
                continue
            wk = week_key(candidate.day)
            if plan.spots_per_week and by_week[wk].placed >= plan.spots_per_week:
                continue

            availability = self.check_availability(candidate)
            if availability.available:
                self._place(state, candidate, availability, by_placement, by_show, by_week)
                placed += 1
            else:
                state.conflict_keys.add(candidate.spot_key)
                if plan.fallback_strategy == FallbackStrategy.STRICT.value:
                    state.conflicts.append(self._conflict(candidate, availability))

        # Phase 2: fallback for what is left
        if placed < plan.spots_requested and plan.fallback_strategy != FallbackStrategy.STRICT.value:
            for candidate in self._fallback_candidates(plan, days, selected_days, state):
                if placed >= plan.spots_requested:
                    break
                if state.daily_counts.get(candidate.daily_key, 0) >= plan.daily_limit:
                    continue
                availability = self.check_availability(candidate)
                if availability.available:
                    self._place(state, candidate, availability, by_placement, by_show, by_week)
                    placed += 1

        remaining = plan.spots_requested - placed
        if remaining > 0:
            state.conflicts.append(PlacementConflict(
                reason=f"Could not place {remaining} spot(s) due to inventory constraints",
                conflictType="no_inventory",
            ))

        return AllocationResult(
            wouldPlace=state.placements,
            conflicts=state.conflicts,
            summary=AllocationSummary(
                requested=plan.spots_requested,
                placeable=len(state.placements),
                unplaceable=plan.spots_requested - len(state.placements),
                byPlacementType=by_placement,
                byShow=by_show,
                byWeek=by_week,
            ),
        )

    def _candidates(self, plan: AllocationInput, days: List[date]) -> List[Candidate]:
        # Built in (date, show order, placement order) order already
        return [
            Candidate(show_id, day, placement)
            for day in days
            for show_id in plan.show_ids
            for placement in plan.placement_types
        ]

    def _fallback_candidates(
        self,
        plan: AllocationInput,
        days: List[date],
        selected_days: List[date],
        state: _AllocationState,
    ) -> List[Candidate]:
        if plan.fallback_strategy == FallbackStrategy.RELAXED.value:
            pool = self._candidates(plan, selected_days)
            return [c for c in pool if c.spot_key not in state.placed_keys]

        # fill_anywhere: any day in range, earliest date then lowest rate,
        # then show order, then placement order
        pool = [c for c in self._candidates(plan, days) if c.spot_key not in state.placed_keys]
        show_order = {sid: i for i, sid in enumerate(plan.show_ids)}
        placement_order = {pt: i for i, pt in enumerate(plan.placement_types)}

        def sort_key(c: Candidate):
            inventory = self._find_inventory(c.show_id, c.day)
            return (
                c.day,
                self.rate_for(c.show_id, c.placement_type, inventory),
                show_order[c.show_id],
                placement_order[c.placement_type],
            )

        return sorted(pool, key=sort_key)

    def _place(self, state, candidate, availability, by_placement, by_show, by_week) -> None:
        state.placements.append(PlacementResult(
            showId=candidate.show_id,
            showName=self.show_name(candidate.show_id),
            date=candidate.day,
            placementType=candidate.placement_type,
            rate=availability.rate,
            episodeId=availability.episode_id,
        ))
        state.placed_keys.add(candidate.spot_key)
        state.daily_counts[candidate.daily_key] = state.daily_counts.get(candidate.daily_key, 0) + 1
        state.placement_counts[candidate.placement_type] = state.placement_counts.get(candidate.placement_type, 0) + 1
        state.show_counts[candidate.show_id] = state.show_counts.get(candidate.show_id, 0) + 1

        by_placement[candidate.placement_type].placed += 1
        by_show[candidate.show_id].placed += 1
        by_week.setdefault(week_key(candidate.day), Tally()).placed += 1

    def _conflict(self, candidate: Candidate, availability: Availability) -> PlacementConflict:
        return PlacementConflict(
            showId=candidate.show_id,
            showName=self.show_name(candidate.show_id),
            date=candidate.day,
            placementType=candidate.placement_type,
            reason=availability.reason or "Inventory not available",
            conflictType=availability.conflict_type,
        )

    def find_alternate(
        self,
        plan: AllocationInput,
        taken: Set[str],
        daily_counts: Dict[str, int],
    ) -> Optional[Tuple[Candidate, Availability]]:
        """Cheapest open slot on the earliest day in range not already taken by this batch."""
        state = _AllocationState(placed_keys=set(taken))
        for candidate in self._fallback_candidates(plan, list(each_day(plan.start, plan.end)), [], state):
            if daily_counts.get(candidate.daily_key, 0) >= plan.daily_limit:
                continue
            availability = self.check_availability(candidate)
            if availability.available:
                return candidate, availability
        return None

    def forget(self, show_id: str, day: date) -> None:
        """Drop a cached inventory row so the next check re-reads it."""
        self._inventory.pop((show_id, day), None)


class BulkScheduleService:
    """
    Idempotent bulk commit: preview, competitive gate, then one transaction
    that holds every placement and stores the result under the idempotency key.
    """

    def __init__(
        self,
        db: Session,
        organization_id: str,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.organization_id = organization_id
        self.notifier = notifier or NotificationService(db)
        self.reservations = ReservationService(db, organization_id, notifier=self.notifier)
        self.allocator = BulkAllocator(db, organization_id)

    def find_cached(self, key: str, now: Optional[datetime] = None) -> Optional[BulkScheduleIdempotency]:
        row = self.db.query(BulkScheduleIdempotency).filter(
            BulkScheduleIdempotency.organization_id == self.organization_id,
            BulkScheduleIdempotency.key == key,
        ).first()
        if row is None:
            return None
        if row.is_expired(now):
            self.db.delete(row)
            self.db.flush()
            return None
        return row

    def resolve_input(self, request: BulkCommitRequest) -> AllocationInput:
        """Fill unspecified knobs from the organization's bulk defaults."""
        defaults = WorkflowSettingsService(self.db).get_typed(self.organization_id).bulk

        strategy = (request.fallback_strategy or defaults.fallback_strategy).value
        allow_multiple = (
            request.allow_multiple_per_show_per_day
            if request.allow_multiple_per_show_per_day is not None
            else defaults.allow_multiple_per_show_per_day
        )
        max_per_day = request.max_spots_per_show_per_day
        if not max_per_day:
            if not allow_multiple:
                max_per_day = 1
            elif defaults.max_spots_per_show_per_day > 1:
                max_per_day = defaults.max_spots_per_show_per_day
            else:
                max_per_day = DEFAULT_MULTIPLE_SPOTS_PER_DAY

        return AllocationInput(
            show_ids=request.show_ids,
            start=request.date_range.start,
            end=request.date_range.end,
            weekdays=request.weekdays,
            placement_types=request.placement_types,
            spots_requested=request.spots_requested,
            fallback_strategy=strategy,
            spots_per_week=request.spots_per_week,
            allow_multiple_per_show_per_day=allow_multiple,
            max_spots_per_show_per_day=max_per_day,
        )

    def validate_references(self, request: BulkCommitRequest) -> Optional[Campaign]:
        campaign = None
        if request.campaign_id:
            campaign = self.db.query(Campaign).filter(
                Campaign.id == request.campaign_id,
                Campaign.organization_id == self.organization_id,
            ).first()
            if not campaign:
                raise BulkCommitError(
                    "Campaign not found or does not belong to organization",
                    code="E_FK",
                    details={"campaignId": request.campaign_id},
                )
            if campaign.advertiser_id != request.advertiser_id:
                raise BulkCommitError(
                    "Advertiser does not match campaign",
                    code="E_FK",
                    details={
                        "campaignAdvertiserId": campaign.advertiser_id,
                        "requestAdvertiserId": request.advertiser_id,
                    },
                )

        advertiser = self.db.query(Advertiser).filter(
            Advertiser.id == request.advertiser_id,
            Advertiser.organization_id == self.organization_id,
        ).first()
        if not advertiser:
            raise BulkCommitError(
                "Advertiser not found in organization",
                code="E_FK",
                details={"advertiserId": request.advertiser_id},
            )

        shows = self.db.query(Show).filter(
            Show.id.in_(request.show_ids),
            Show.organization_id == self.organization_id,
        ).all()
        found = {show.id for show in shows}
        missing = [sid for sid in request.show_ids if sid not in found]
        if missing:
            raise BulkCommitError("Some shows not found", code="E_FK", details={"missingShowIds": missing})

        missing_rates = []
        for show in shows:
            for placement in request.placement_types:
                column = f"{PLACEMENT_COLUMNS[placement]}_rate"
                if getattr(show, column) is None:
                    missing_rates.append({
                        "showId": show.id,
                        "showName": show.name,
                        "placementType": placement,
                        "rateColumn": column,
                    })
        if missing_rates:
            raise BulkCommitError(
                "Missing rate information for some shows",
                code="E_RATE",
                details={"missingRates": missing_rates},
            )
        return campaign

    def commit(
        self,
        request: BulkCommitRequest,
        user_id: Optional[str] = None,
        role: Optional[str] = None,
    ) -> BulkCommitResponse:
        key = request.idempotency_key or str(uuid.uuid4())

        cached = self.find_cached(key)
        if cached is not None:
            logger.info(f"Returning cached bulk result for idempotency key {key}")
            return BulkCommitResponse(success=True, cached=True, result=cached.result)

        campaign = self.validate_references(request)
        plan = self.resolve_input(request)

        logger.info(
            f"Bulk commit {key}: {plan.spots_requested} spot(s) across {len(plan.show_ids)} show(s) "
            f"{plan.start} to {plan.end}, strategy {plan.fallback_strategy}"
        )

        checker = ConflictChecker(self.db, self.organization_id)
        conflicts = checker.check_conflicts(request.advertiser_id, plan.start, plan.end, request.campaign_id)
        decision = checker.enforce(
            conflicts,
            override_reason=request.override_reason,
            campaign_id=campaign.id if campaign else None,
            user_id=user_id,
            role=role,
        )
        if campaign is not None:
            checker.store_conflicts(campaign.id, conflicts)

        allocation = self.allocator.allocate(plan)

        if not allocation.would_place:
            self.db.rollback()
            raise BulkCommitError(
                "No spots could be placed with the given constraints",
                details={
                    "result": allocation.model_dump(mode="json", by_alias=True),
                    "conflicts": [c.model_dump(mode="json", by_alias=True) for c in allocation.conflicts],
                },
            )

        if plan.fallback_strategy == FallbackStrategy.STRICT.value and len(allocation.would_place) < plan.spots_requested:
            self.db.rollback()
            raise BulkCommitError(
                f"Strict mode: Only {len(allocation.would_place)} of {plan.spots_requested} spots available",
                details={
                    "requested": plan.spots_requested,
                    "available": len(allocation.would_place),
                    "conflicts": [c.model_dump(mode="json", by_alias=True) for c in allocation.conflicts],
                },
            )

        try:
            result = self._hold_all(request, plan, allocation, key, user_id)
            result.competitive_warnings = [c.to_dict() for c in decision.warnings]
            payload = result.model_dump(mode="json", by_alias=True)

            self.db.add(BulkScheduleIdempotency(
                organization_id=self.organization_id,
                key=key,
                result=payload,
                reservation_id=result.reservation_id,
                created_by=user_id,
                expires_at=datetime.utcnow() + timedelta(hours=settings.bulk_idempotency_ttl_hours),
            ))
            self.db.commit()
        except IntegrityError:
            # Another request committed the same key first; its result wins
            self.db.rollback()
            winner = self.find_cached(key)
            if winner is None:
                raise
            logger.info(f"Idempotency key {key} committed concurrently, returning stored result")
            return BulkCommitResponse(success=True, cached=True, result=winner.result)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Bulk commit {key}: {result.message}")
        self._notify(result, request, user_id)
        return BulkCommitResponse(success=True, cached=False, result=payload)

    def _hold_all(
        self,
        request: BulkCommitRequest,
        plan: AllocationInput,
        allocation: AllocationResult,
        key: str,
        user_id: Optional[str],
    ) -> BulkCommitResult:
        reservation = self.reservations.new_reservation(
            hold_duration_hours=request.hold_duration_hours,
            advertiser_id=request.advertiser_id,
            agency_id=request.agency_id,
            campaign_id=request.campaign_id,
            priority=request.priority,
            notes=f"Bulk schedule {key}",
            source="bulk",
            created_by=user_id,
        )

        placed: List[PlacementResult] = []
        failed: List[BulkItemFailure] = []
        relocations: List[PlacementConflict] = []
        taken = {f"{p.show_id}:{p.date.isoformat()}:{p.placement_type}" for p in allocation.would_place}
        daily_counts: Dict[str, int] = {}

        for placement in allocation.would_place:
            try:
                if plan.fallback_strategy == FallbackStrategy.STRICT.value:
                    self._hold(reservation, placement)
                else:
                    with self.db.begin_nested():
                        self._hold(reservation, placement)
                placed.append(placement)
                daily = f"{placement.show_id}:{placement.date.isoformat()}"
                daily_counts[daily] = daily_counts.get(daily, 0) + 1
                continue
            except InventoryOverbookError as e:
                if plan.fallback_strategy == FallbackStrategy.STRICT.value:
                    raise BulkCommitError(
                        f"Inventory became unavailable during commit: {e.message}",
                        details={"placement": placement.model_dump(mode="json", by_alias=True), **e.details},
                    )
                reason = e.message

            if plan.fallback_strategy == FallbackStrategy.FILL_ANYWHERE.value:
                alternate = self._hold_alternate(reservation, plan, taken, daily_counts)
                if alternate is not None:
                    placed.append(alternate)
                    relocations.append(PlacementConflict(
                        showId=placement.show_id,
                        showName=placement.show_name,
                        date=placement.date,
                        placementType=placement.placement_type,
                        reason=(
                            f"Moved to {alternate.show_name or alternate.show_id} "
                            f"{alternate.date.isoformat()} {alternate.placement_type}"
                        ),
                        conflictType="relocated",
                    ))
                    continue

            failed.append(BulkItemFailure(
                showId=placement.show_id,
                date=placement.date,
                placementType=placement.placement_type,
                reason=reason,
            ))

        if not placed:
            raise BulkCommitError(
                "No spots could be placed with the given constraints",
                details={"failed": [f.model_dump(mode="json", by_alias=True) for f in failed]},
            )

        self.db.flush()
        total = sum((Decimal(str(item.rate or 0)) for item in reservation.items), Decimal("0"))
        message = f"{len(placed)} of {plan.spots_requested} slots placed"
        if failed:
            message += f", {len(failed)} failed: " + "; ".join(f.reason for f in failed)

        return BulkCommitResult(
            reservationId=reservation.id,
            reservationNumber=reservation.reservation_number,
            idempotencyKey=key,
            fallbackStrategy=plan.fallback_strategy,
            requested=plan.spots_requested,
            placed=len(placed),
            failed=failed,
            placements=placed,
            conflicts=list(allocation.conflicts) + relocations,
            summary=allocation.summary,
            totalAmount=float(total),
            message=message,
        )

    def _hold(self, reservation, placement: PlacementResult):
        return self.reservations.hold_item(
            reservation,
            show_id=placement.show_id,
            air_date=placement.date,
            placement_type=placement.placement_type,
            episode_id=placement.episode_id,
            rate=Decimal(str(placement.rate)),
        )

    def _hold_alternate(self, reservation, plan, taken: Set[str], daily_counts: Dict[str, int]) -> Optional[PlacementResult]:
        while True:
            found = self.allocator.find_alternate(plan, taken, daily_counts)
            if found is None:
                return None
            candidate, availability = found
            taken.add(candidate.spot_key)
            alternate = PlacementResult(
                showId=candidate.show_id,
                showName=self.allocator.show_name(candidate.show_id),
                date=candidate.day,
                placementType=candidate.placement_type,
                rate=availability.rate,
                episodeId=availability.episode_id,
            )
            try:
                with self.db.begin_nested():
                    self._hold(reservation, alternate)
            except InventoryOverbookError:
                self.allocator.forget(candidate.show_id, candidate.day)
                continue
            daily_counts[candidate.daily_key] = daily_counts.get(candidate.daily_key, 0) + 1
            return alternate

    def _notify(self, result: BulkCommitResult, request: BulkCommitRequest, user_id: Optional[str]) -> None:
        payload = {
            "reservationId": result.reservation_id,
            "reservationNumber": result.reservation_number,
            "campaignId": request.campaign_id,
            "advertiserId": request.advertiser_id,
            "requested": result.requested,
            "placed": result.placed,
            "failedCount": len(result.failed),
            "message": result.message,
            "sellerId": user_id,
            "actionUrl": f"{settings.app_base_url}/reservations/{result.reservation_id}",
        }
        self.notifier.emit(self.organization_id, "schedule_committed", payload)
        if result.failed:
            self.notifier.emit(self.organization_id, "bulk_placement_failed", payload)
