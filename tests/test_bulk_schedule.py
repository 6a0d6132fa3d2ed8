"""
Bulk Schedule Tests

Tests cover:
- Deterministic round-robin allocation across shows and days
- strict / relaxed / fill_anywhere behaviour
- Reference and rate validation (E_FK / E_RATE)
- Idempotency key: same key returns the stored result, expired key re-runs
- Competitive gate: warn passes through, block needs an admin override
"""

from datetime import timedelta

import pytest


WEEKDAYS = [1, 2, 3, 4, 5]  # Monday..Friday, 0 = Sunday


def week_of_episodes(make_episode, show, monday, days=5):
    return [make_episode(show, monday + timedelta(days=offset)) for offset in range(days)]


def commit_request(advertiser, shows, monday, spots, **extra):
    from podcastflow.schemas.bulk_schedule import BulkCommitRequest

    payload = {
        "advertiserId": advertiser.id,
        "showIds": [show.id for show in shows],
        "dateRange": {"start": monday.isoformat(), "end": (monday + timedelta(days=6)).isoformat()},
        "weekdays": WEEKDAYS,
        "placementTypes": ["pre-roll"],
        "spotsRequested": spots,
    }
    payload.update(extra)
    return BulkCommitRequest.model_validate(payload)


class TestBulkAllocator:
    """Read-only placement preview"""

    def test_round_robin_across_shows(self, db, org, make_show, make_episode, next_monday):
        """Spots alternate shows day by day, respecting the per-show cap"""
        from podcastflow.services.bulk_allocator import AllocationInput, BulkAllocator

        show_a = make_show("Show A")
        show_b = make_show("Show B")
        week_of_episodes(make_episode, show_a, next_monday)
        week_of_episodes(make_episode, show_b, next_monday)

        result = BulkAllocator(db, org.id).allocate(AllocationInput(
            show_ids=[show_a.id, show_b.id],
            start=next_monday,
            end=next_monday + timedelta(days=6),
            weekdays=WEEKDAYS,
            placement_types=["pre-roll"],
            spots_requested=4,
        ))

        placed = [(p.show_id, p.date) for p in result.would_place]
        assert placed == [
            (show_a.id, next_monday),
            (show_b.id, next_monday),
            (show_a.id, next_monday + timedelta(days=1)),
            (show_b.id, next_monday + timedelta(days=1)),
        ]
        assert result.summary.placeable == 4
        assert result.summary.unplaceable == 0
        assert result.summary.by_show[show_a.id].placed == 2
        assert result.conflicts == []

    def test_only_selected_weekdays_are_used(self, db, org, make_show, make_episode, next_monday):
        from podcastflow.services.bulk_allocator import AllocationInput, BulkAllocator

        show = make_show()
        week_of_episodes(make_episode, show, next_monday)

        result = BulkAllocator(db, org.id).allocate(AllocationInput(
            show_ids=[show.id],
            start=next_monday,
            end=next_monday + timedelta(days=6),
            weekdays=[3],  # Wednesday
            placement_types=["pre-roll"],
            spots_requested=1,
        ))

        assert [p.date for p in result.would_place] == [next_monday + timedelta(days=2)]

    def test_strict_reports_each_unavailable_candidate(self, db, org, make_show, make_episode, next_monday):
        from podcastflow.services.bulk_allocator import AllocationInput, BulkAllocator

        show = make_show()
        make_episode(show, next_monday)

        result = BulkAllocator(db, org.id).allocate(AllocationInput(
            show_ids=[show.id],
            start=next_monday,
            end=next_monday + timedelta(days=6),
            weekdays=WEEKDAYS,
            placement_types=["pre-roll"],
            spots_requested=3,
        ))

        assert len(result.would_place) == 1
        reasons = [c.conflict_type for c in result.conflicts]
        assert reasons.count("no_inventory") == 5  # Tue..Fri plus the summary entry
        assert result.conflicts[-1].reason == "Could not place 2 spot(s) due to inventory constraints"

    def test_fill_anywhere_uses_any_day_in_range(self, db, org, make_show, make_episode, next_monday, quiet_notifier):
        """Monday is sold out, Wednesday (not a selected weekday) is used instead"""
        from podcastflow.services.bulk_allocator import AllocationInput, BulkAllocator
        from podcastflow.services.reservation_service import ReservationService
        from podcastflow.schemas.reservation import ReservationCreate

        show = make_show()
        make_episode(show, next_monday)
        make_episode(show, next_monday + timedelta(days=2))
        ReservationService(db, org.id, notifier=quiet_notifier).create_reservation(ReservationCreate.model_validate({
            "items": [{"showId": show.id, "airDate": next_monday.isoformat(), "placementType": "pre-roll"}],
        }))

        result = BulkAllocator(db, org.id).allocate(AllocationInput(
            show_ids=[show.id],
            start=next_monday,
            end=next_monday + timedelta(days=6),
            weekdays=[1],
            placement_types=["pre-roll"],
            spots_requested=1,
            fallback_strategy="fill_anywhere",
        ))

        assert [p.date for p in result.would_place] == [next_monday + timedelta(days=2)]

    def test_held_slot_reported_as_held(self, db, org, make_show, make_episode, next_monday, quiet_notifier):
        from podcastflow.services.bulk_allocator import BulkAllocator, Candidate
        from podcastflow.services.reservation_service import ReservationService
        from podcastflow.schemas.reservation import ReservationCreate

        show = make_show()
        make_episode(show, next_monday)
        ReservationService(db, org.id, notifier=quiet_notifier).create_reservation(ReservationCreate.model_validate({
            "items": [{"showId": show.id, "airDate": next_monday.isoformat(), "placementType": "pre-roll"}],
        }))

        availability = BulkAllocator(db, org.id).check_availability(Candidate(show.id, next_monday, "pre-roll"))

        assert availability.available is False
        assert availability.conflict_type == "held"


class TestBulkCommit:
    """Idempotent bulk commit"""

    def test_strict_commit_holds_every_placement(self, db, org, make_show, make_episode, make_advertiser,
                                                 next_monday, quiet_notifier):
        from podcastflow.models import Reservation
        from podcastflow.services.bulk_allocator import BulkScheduleService

        show = make_show(rates=(500, 750, 300))
        week_of_episodes(make_episode, show, next_monday)
        advertiser = make_advertiser()

        response = BulkScheduleService(db, org.id, notifier=quiet_notifier).commit(
            commit_request(advertiser, [show], next_monday, 3, idempotencyKey="bulk-1"),
            user_id="seller-1",
        )

        assert response.success is True
        assert response.cached is False
        result = response.result
        assert result["placed"] == 3
        assert result["requested"] == 3
        assert result["totalAmount"] == 1500
        assert result["message"] == "3 of 3 slots placed"

        reservation = db.query(Reservation).one()
        assert reservation.id == result["reservationId"]
        assert reservation.source == "bulk"
        assert len(reservation.items) == 3
        assert quiet_notifier.emit.call_args_list[-1][0][1] == "schedule_committed"

    def test_same_key_returns_cached_result(self, db, org, make_show, make_episode, make_advertiser,
                                            next_monday, quiet_notifier):
        """A replay holds nothing and returns the stored result"""
        from podcastflow.models import Reservation
        from podcastflow.services.bulk_allocator import BulkScheduleService

        show = make_show()
        week_of_episodes(make_episode, show, next_monday)
        advertiser = make_advertiser()
        service = BulkScheduleService(db, org.id, notifier=quiet_notifier)
        request = commit_request(advertiser, [show], next_monday, 2, idempotencyKey="bulk-replay")

        first = service.commit(request)
        second = service.commit(request)

        assert second.cached is True
        assert second.result == first.result
        assert db.query(Reservation).count() == 1

    def test_expired_key_runs_again(self, db, org, make_show, make_episode, make_advertiser,
                                    next_monday, quiet_notifier):
        from datetime import datetime
        from podcastflow.models import BulkScheduleIdempotency, Reservation
        from podcastflow.services.bulk_allocator import BulkScheduleService

        show = make_show()
        week_of_episodes(make_episode, show, next_monday)
        advertiser = make_advertiser()
        service = BulkScheduleService(db, org.id, notifier=quiet_notifier)
        request = commit_request(advertiser, [show], next_monday, 2, idempotencyKey="bulk-ttl")

        first = service.commit(request)
        stored = db.query(BulkScheduleIdempotency).one()
        stored.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.commit()

        second = service.commit(request)

        assert second.cached is False
        assert second.result["reservationId"] != first.result["reservationId"]
        assert db.query(Reservation).count() == 2

    def test_strict_shortfall_rejected(self, db, org, make_show, make_episode, make_advertiser,
                                       next_monday, quiet_notifier):
        from podcastflow.exceptions import BulkCommitError
        from podcastflow.models import Reservation
        from podcastflow.services.bulk_allocator import BulkScheduleService

        show = make_show()
        make_episode(show, next_monday)
        advertiser = make_advertiser()

        with pytest.raises(BulkCommitError) as exc_info:
            BulkScheduleService(db, org.id, notifier=quiet_notifier).commit(
                commit_request(advertiser, [show], next_monday, 3)
            )

        assert exc_info.value.code == "E_INV_AVAIL"
        assert "Only 1 of 3" in exc_info.value.message
        assert db.query(Reservation).count() == 0

    def test_nothing_placeable_rejected(self, db, org, make_show, make_advertiser, next_monday, quiet_notifier):
        from podcastflow.exceptions import BulkCommitError
        from podcastflow.services.bulk_allocator import BulkScheduleService

        show = make_show()
        advertiser = make_advertiser()

        with pytest.raises(BulkCommitError) as exc_info:
            BulkScheduleService(db, org.id, notifier=quiet_notifier).commit(
                commit_request(advertiser, [show], next_monday, 1, fallbackStrategy="relaxed")
            )
        assert exc_info.value.message == "No spots could be placed with the given constraints"

    def test_relaxed_accepts_partial_placement(self, db, org, make_show, make_episode, make_advertiser,
                                               next_monday, quiet_notifier):
        from podcastflow.services.bulk_allocator import BulkScheduleService

        show = make_show()
        make_episode(show, next_monday)
        make_episode(show, next_monday + timedelta(days=1))
        advertiser = make_advertiser()

        response = BulkScheduleService(db, org.id, notifier=quiet_notifier).commit(
            commit_request(advertiser, [show], next_monday, 4, fallbackStrategy="relaxed")
        )

        assert response.result["placed"] == 2
        assert response.result["fallbackStrategy"] == "relaxed"

    def test_unknown_advertiser_is_fk_error(self, db, org, make_show, next_monday, quiet_notifier):
        from unittest.mock import MagicMock
        from podcastflow.exceptions import BulkCommitError
        from podcastflow.services.bulk_allocator import BulkScheduleService

        show = make_show()
        ghost = MagicMock()
        ghost.id = "no-such-advertiser"

        with pytest.raises(BulkCommitError) as exc_info:
            BulkScheduleService(db, org.id, notifier=quiet_notifier).commit(
                commit_request(ghost, [show], next_monday, 1)
            )
        assert exc_info.value.code == "E_FK"

    def test_missing_rates_rejected(self, db, org, make_show, make_episode, make_advertiser,
                                    next_monday, quiet_notifier):
        from podcastflow.exceptions import BulkCommitError
        from podcastflow.services.bulk_allocator import BulkScheduleService

        show = make_show(rates=None)
        make_episode(show, next_monday)
        advertiser = make_advertiser()

        with pytest.raises(BulkCommitError) as exc_info:
            BulkScheduleService(db, org.id, notifier=quiet_notifier).commit(
                commit_request(advertiser, [show], next_monday, 1)
            )
        assert exc_info.value.code == "E_RATE"
        assert exc_info.value.details["missingRates"][0]["rateColumn"] == "pre_roll_rate"

    def test_campaign_advertiser_mismatch(self, db, org, make_show, make_advertiser, make_campaign,
                                          next_monday, quiet_notifier):
        from podcastflow.exceptions import BulkCommitError
        from podcastflow.services.bulk_allocator import BulkScheduleService

        show = make_show()
        campaign = make_campaign(make_advertiser("Owner"))
        other = make_advertiser("Other")

        with pytest.raises(BulkCommitError) as exc_info:
            BulkScheduleService(db, org.id, notifier=quiet_notifier).commit(
                commit_request(other, [show], next_monday, 1, campaignId=campaign.id)
            )
        assert exc_info.value.code == "E_FK"


class TestBulkCompetitiveGate:
    """Competitive conflicts during bulk commit"""

    def _rival_campaign(self, make_advertiser, make_campaign, competitive_group, monday, mode):
        ours = make_advertiser("Cola One")
        rival = make_advertiser("Cola Two")
        competitive_group([ours, rival], conflict_mode=mode)
        make_campaign(rival, name="Rival Summer", status="active",
                      start_date=monday, end_date=monday + timedelta(days=30))
        return ours

    def test_warn_mode_commits_with_warnings(self, db, org, make_show, make_episode, make_advertiser,
                                             make_campaign, competitive_group, next_monday, quiet_notifier):
        from podcastflow.services.bulk_allocator import BulkScheduleService

        show = make_show()
        make_episode(show, next_monday)
        ours = self._rival_campaign(make_advertiser, make_campaign, competitive_group, next_monday, None)

        response = BulkScheduleService(db, org.id, notifier=quiet_notifier).commit(
            commit_request(ours, [show], next_monday, 1)
        )

        warnings = response.result["competitiveWarnings"]
        assert len(warnings) == 1
        assert warnings[0]["conflictMode"] == "warn"
        assert warnings[0]["campaigns"][0]["campaignName"] == "Rival Summer"

    def test_block_mode_requires_override(self, db, org, make_show, make_episode, make_advertiser,
                                          make_campaign, competitive_group, next_monday, quiet_notifier):
        from podcastflow.exceptions import ConflictBlockedError
        from podcastflow.models import Reservation
        from podcastflow.services.bulk_allocator import BulkScheduleService

        show = make_show()
        make_episode(show, next_monday)
        ours = self._rival_campaign(make_advertiser, make_campaign, competitive_group, next_monday, "block")
        service = BulkScheduleService(db, org.id, notifier=quiet_notifier)

        with pytest.raises(ConflictBlockedError):
            service.commit(commit_request(ours, [show], next_monday, 1), user_id="seller-1", role="sales")
        assert db.query(Reservation).count() == 0

        response = service.commit(
            commit_request(ours, [show], next_monday, 1, overrideReason="Category exclusivity waived"),
            user_id="admin-1",
            role="admin",
        )
        assert response.result["placed"] == 1

    def test_non_admin_override_is_ignored(self, db, org, make_show, make_episode, make_advertiser,
                                           make_campaign, competitive_group, next_monday, quiet_notifier):
        from podcastflow.exceptions import ConflictBlockedError
        from podcastflow.services.bulk_allocator import BulkScheduleService

        show = make_show()
        make_episode(show, next_monday)
        ours = self._rival_campaign(make_advertiser, make_campaign, competitive_group, next_monday, "block")

        with pytest.raises(ConflictBlockedError):
            BulkScheduleService(db, org.id, notifier=quiet_notifier).commit(
                commit_request(ours, [show], next_monday, 1, overrideReason="please"),
                role="sales",
            )
