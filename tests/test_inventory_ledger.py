"""
Inventory Ledger Tests

Tests cover:
- Slot derivation from episode length and show thresholds
- Inventory row creation with category prices and show rate overrides
- hold / confirm / release counter movements
- Invariant: available + reserved + booked == slots under random operations
- Overbooking rejection and capacity shrink alerts
- Alert acknowledge / resolve
"""

import random
from datetime import timedelta
from decimal import Decimal

import pytest


def assert_balanced(inventory):
    from podcastflow.models import PLACEMENT_COLUMNS

    for placement in PLACEMENT_COLUMNS:
        slots, available, reserved, booked = inventory.counts(placement)
        assert available + reserved + booked == slots, placement
        assert min(slots, available, reserved, booked) >= 0, placement


class TestSlotDerivation:
    """Episode length -> (pre, mid, post) slot counts"""

    @pytest.mark.parametrize("length,expected", [
        (10, (1, 0, 0)),
        (15, (1, 0, 0)),
        (20, (1, 1, 1)),
        (45, (1, 2, 1)),
        (90, (2, 3, 1)),
        (120, (2, 3, 1)),
    ])
    def test_default_thresholds(self, length, expected):
        """Bounds are inclusive and the first matching row wins"""
        from podcastflow.services.inventory_ledger import derive_slot_counts

        assert tuple(derive_slot_counts(length)) == expected

    def test_missing_length_counts_as_thirty_minutes(self):
        """No length -> treated as a 30 minute episode"""
        from podcastflow.services.inventory_ledger import derive_slot_counts

        assert tuple(derive_slot_counts(None)) == (1, 1, 1)

    def test_no_matching_row_falls_back(self):
        """Lengths past every row get the (1, 2, 1) fallback"""
        from podcastflow.services.inventory_ledger import derive_slot_counts

        assert tuple(derive_slot_counts(240)) == (1, 2, 1)

    def test_show_thresholds_override_defaults(self):
        """A show's own threshold table replaces the defaults"""
        from podcastflow.services.inventory_ledger import derive_slot_counts

        thresholds = [{"minLength": 0, "maxLength": 600, "preRoll": 3, "midRoll": 4, "postRoll": 2}]
        assert tuple(derive_slot_counts(45, thresholds)) == (3, 4, 2)


class TestPlacementNames:
    """Placement spellings normalize to the canonical value"""

    @pytest.mark.parametrize("raw", ["pre-roll", "preRoll", "pre_roll", "preroll", " PRE-ROLL "])
    def test_pre_roll_spellings(self, raw):
        from podcastflow.models import normalize_placement

        assert normalize_placement(raw) == "pre-roll"

    def test_unknown_placement_rejected(self):
        from podcastflow.models import normalize_placement

        with pytest.raises(ValueError):
            normalize_placement("banner")


class TestEnsureInventory:
    """Inventory rows for scheduled episodes"""

    def test_creates_counts_from_length(self, db, make_show, make_episode, next_monday):
        """A 45 minute episode gets 1/2/1 slots, all available"""
        from podcastflow.services.inventory_ledger import InventoryLedger

        show = make_show()
        episode = make_episode(show, next_monday, length_minutes=45)
        inventory = InventoryLedger(db).get_inventory(episode.id)

        assert inventory.counts("pre-roll") == (1, 1, 0, 0)
        assert inventory.counts("mid-roll") == (2, 2, 0, 0)
        assert inventory.counts("post-roll") == (1, 1, 0, 0)
        assert inventory.calculated_from_length is True

    def test_show_rates_win_over_category_prices(self, db, make_show, make_episode, next_monday):
        """Show rate card is used when present"""
        from podcastflow.services.inventory_ledger import InventoryLedger

        show = make_show(rates=(111, 222, 333))
        episode = make_episode(show, next_monday)
        inventory = InventoryLedger(db).get_inventory(episode.id)

        assert inventory.price("pre-roll") == Decimal("111")
        assert inventory.price("mid-roll") == Decimal("222")
        assert inventory.price("post-roll") == Decimal("333")

    def test_category_prices_when_show_has_no_rates(self, db, make_show, make_episode, next_monday):
        """Without a rate card the category defaults apply"""
        from podcastflow.services.inventory_ledger import InventoryLedger

        show = make_show(category="Business", rates=None)
        episode = make_episode(show, next_monday)
        inventory = InventoryLedger(db).get_inventory(episode.id)

        assert inventory.price("pre-roll") == Decimal("450")
        assert inventory.price("mid-roll") == Decimal("700")
        assert inventory.price("post-roll") == Decimal("275")

    def test_ensure_is_idempotent(self, db, org, make_show, make_episode, next_monday):
        """Calling ensure twice returns the same row"""
        from podcastflow.models import EpisodeInventory
        from podcastflow.services.inventory_ledger import InventoryLedger

        show = make_show()
        episode = make_episode(show, next_monday)
        InventoryLedger(db, org.id).ensure_inventory(episode)

        assert db.query(EpisodeInventory).filter(EpisodeInventory.episode_id == episode.id).count() == 1

    def test_unknown_episode_raises_not_found(self, db, org):
        from podcastflow.exceptions import InventoryNotFoundError
        from podcastflow.services.inventory_ledger import InventoryLedger

        with pytest.raises(InventoryNotFoundError):
            InventoryLedger(db, org.id).get_inventory("missing")


class TestLedgerAdjustments:
    """hold / confirm / release"""

    def test_hold_confirm_release_cycle(self, db, org, make_show, make_episode, next_monday):
        """Counters move between buckets and capacity stays constant"""
        from podcastflow.services.inventory_ledger import InventoryLedger

        episode = make_episode(make_show(), next_monday, length_minutes=45)
        ledger = InventoryLedger(db, org.id)

        inventory = ledger.hold(episode.id, "mid-roll")
        assert inventory.counts("mid-roll") == (2, 1, 1, 0)

        inventory = ledger.hold(episode.id, "midRoll")
        assert inventory.counts("mid-roll") == (2, 0, 2, 0)

        inventory = ledger.confirm(episode.id, "mid-roll")
        assert inventory.counts("mid-roll") == (2, 0, 1, 1)

        inventory = ledger.release(episode.id, "mid-roll")
        assert inventory.counts("mid-roll") == (2, 1, 0, 1)
        assert_balanced(inventory)

    def test_hold_past_capacity_raises_overbook(self, db, org, make_show, make_episode, next_monday):
        """The slot that would go negative is named in the error"""
        from podcastflow.exceptions import InventoryOverbookError
        from podcastflow.services.inventory_ledger import InventoryLedger

        episode = make_episode(make_show(), next_monday, length_minutes=45)
        ledger = InventoryLedger(db, org.id)
        ledger.hold(episode.id, "pre-roll")

        with pytest.raises(InventoryOverbookError) as exc_info:
            ledger.hold(episode.id, "pre-roll")

        assert exc_info.value.episode_id == episode.id
        assert exc_info.value.placement_type == "pre-roll"
        assert exc_info.value.code == "E_INV_AVAIL"
        assert ledger.get_inventory(episode.id).counts("pre-roll") == (1, 0, 1, 0)

    def test_release_without_hold_raises(self, db, org, make_show, make_episode, next_monday):
        """Nothing reserved -> release is rejected, counts untouched"""
        from podcastflow.exceptions import InventoryOverbookError
        from podcastflow.services.inventory_ledger import InventoryLedger

        episode = make_episode(make_show(), next_monday)
        ledger = InventoryLedger(db, org.id)

        with pytest.raises(InventoryOverbookError):
            ledger.release(episode.id, "post-roll")
        assert ledger.get_inventory(episode.id).counts("post-roll") == (1, 1, 0, 0)

    def test_unbalanced_deltas_rejected(self, db, org, make_show, make_episode, next_monday):
        """Deltas that do not sum to zero would change capacity"""
        from podcastflow.exceptions import InventoryInvariantError
        from podcastflow.services.inventory_ledger import InventoryLedger

        episode = make_episode(make_show(), next_monday)

        with pytest.raises(InventoryInvariantError):
            InventoryLedger(db, org.id).adjust(episode.id, "pre-roll", delta_available=-1)

    def test_other_organization_cannot_touch_inventory(self, db, org, make_show, make_episode, next_monday):
        """Ledger scoped to another org does not see the row"""
        from podcastflow.exceptions import InventoryNotFoundError
        from podcastflow.services.inventory_ledger import InventoryLedger

        episode = make_episode(make_show(), next_monday)

        with pytest.raises(InventoryNotFoundError):
            InventoryLedger(db, "other-org").hold(episode.id, "pre-roll")

    def test_random_operations_keep_invariant(self, db, org, make_show, make_episode, next_monday):
        """Any sequence of accepted and rejected operations keeps every placement balanced"""
        from podcastflow.exceptions import InventoryOverbookError
        from podcastflow.services.inventory_ledger import InventoryLedger

        episode = make_episode(make_show(), next_monday, length_minutes=90)
        ledger = InventoryLedger(db, org.id)
        rng = random.Random(42)
        operations = [ledger.hold, ledger.confirm, ledger.release]

        for _ in range(300):
            operation = rng.choice(operations)
            placement = rng.choice(["pre-roll", "mid-roll", "post-roll"])
            try:
                operation(episode.id, placement)
            except InventoryOverbookError:
                pass
            assert_balanced(ledger.get_inventory(episode.id))


class TestRecalculate:
    """Capacity changes after an episode length edit"""

    def test_grow_capacity(self, db, org, make_show, make_episode, next_monday):
        """Longer episode -> more slots, reserved spots preserved"""
        from podcastflow.services.inventory_ledger import InventoryLedger

        episode = make_episode(make_show(), next_monday, length_minutes=45)
        ledger = InventoryLedger(db, org.id)
        ledger.hold(episode.id, "mid-roll")

        inventory = ledger.recalculate(episode.id, 90)

        assert inventory.counts("pre-roll") == (2, 2, 0, 0)
        assert inventory.counts("mid-roll") == (3, 2, 1, 0)
        assert_balanced(inventory)

    def test_shrink_below_committed_raises_and_alerts(self, db, org, make_show, make_episode, next_monday):
        """Shrinking under reserved + booked is refused with a critical alert"""
        from podcastflow.exceptions import InventoryOverbookError
        from podcastflow.models import InventoryAlert
        from podcastflow.services.inventory_ledger import InventoryLedger

        episode = make_episode(make_show(), next_monday, length_minutes=45)
        ledger = InventoryLedger(db, org.id)
        ledger.hold(episode.id, "mid-roll")
        ledger.hold(episode.id, "mid-roll")
        db.commit()

        with pytest.raises(InventoryOverbookError):
            ledger.recalculate(episode.id, 10)

        alert = db.query(InventoryAlert).one()
        assert alert.alert_type == "capacity_shrink"
        assert alert.severity == "critical"
        assert alert.placement_type == "mid-roll"
        assert ledger.get_inventory(episode.id).counts("mid-roll") == (2, 0, 2, 0)


class TestInventoryAlerts:
    """Operator alert workflow"""

    def _shrink_alert(self, db, org, make_show, make_episode, day):
        from podcastflow.exceptions import InventoryOverbookError
        from podcastflow.services.inventory_ledger import InventoryLedger

        episode = make_episode(make_show(), day, length_minutes=45)
        ledger = InventoryLedger(db, org.id)
        ledger.hold(episode.id, "mid-roll")
        ledger.hold(episode.id, "mid-roll")
        db.commit()
        with pytest.raises(InventoryOverbookError):
            ledger.recalculate(episode.id, 10)
        return ledger, ledger.list_alerts()[0]

    def test_acknowledge_then_resolve(self, db, org, make_show, make_episode, next_monday):
        ledger, alert = self._shrink_alert(db, org, make_show, make_episode, next_monday)

        acknowledged = ledger.acknowledge_alert(alert.id, "user-1")
        assert acknowledged.status == "acknowledged"
        assert acknowledged.acknowledged_by == "user-1"

        resolved = ledger.resolve_alert(alert.id, "user-2", notes="moved spots")
        assert resolved.status == "resolved"
        assert resolved.resolution_notes == "moved spots"

    def test_acknowledge_only_moves_open_alerts(self, db, org, make_show, make_episode, next_monday):
        """A resolved alert stays resolved"""
        ledger, alert = self._shrink_alert(db, org, make_show, make_episode, next_monday + timedelta(days=1))
        ledger.resolve_alert(alert.id, "user-2")

        assert ledger.acknowledge_alert(alert.id, "user-1").status == "resolved"

    def test_unknown_alert_returns_none(self, db, org):
        from podcastflow.services.inventory_ledger import InventoryLedger

        assert InventoryLedger(db, org.id).acknowledge_alert("missing") is None
