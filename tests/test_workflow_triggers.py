"""
Workflow Settings & Trigger Evaluator Tests

Tests cover:
- Condition operators, dot paths, and/or groups, missing fields
- Settings defaults, partial updates, validation and cache invalidation
- Trigger CRUD and evaluation order
- Once-per-(trigger, entity, event) execution, failure clears the key
- Actions: send_notification, require_approval, change_probability,
  change_status, emit_webhook
- Built-in campaign milestones: rate card delta, talent approval,
  auto-reservation, admin approval and order creation on threshold crossings
"""

import pytest


def make_trigger(db, org, name="Approval at 90", event="probability_updated", condition=None,
                 actions=None, priority=100):
    from podcastflow.schemas.workflow import TriggerCreate
    from podcastflow.services.workflow_settings import WorkflowSettingsService

    return WorkflowSettingsService(db).create_trigger(org.id, TriggerCreate.model_validate({
        "name": name,
        "event": event,
        "condition": condition,
        "actions": actions or [{"type": "send_notification", "config": {}}],
        "priority": priority,
    }))


def campaign_event(org, campaign, data, event="probability_updated", user_id=None):
    from podcastflow.services.trigger_evaluator import TriggerContext

    return TriggerContext(
        organization_id=org.id,
        event=event,
        entity_type="campaign",
        entity_id=campaign.id,
        data=data,
        user_id=user_id,
    )


class TestConditions:
    """Pure condition evaluation"""

    @pytest.mark.parametrize("operator,actual,expected,result", [
        ("eq", "active", "active", True),
        ("neq", "active", "draft", True),
        ("gt", 91, 90, True),
        ("gte", 90, 90, True),
        ("gte", "90", 90, True),
        ("lt", 10, 90, True),
        ("lte", 91, 90, False),
        ("in", "booked", ["booked", "confirmed"], True),
        ("nin", "draft", ["booked", "confirmed"], True),
        ("contains", ["host_read", "produced"], "host_read", True),
        ("contains", "Summer Launch", "Launch", True),
        ("regex", "SPR-2030", r"^SPR-\d+$", True),
        ("regex", "FALL-2030", r"^SPR-\d+$", False),
    ])
    def test_operators(self, operator, actual, expected, result):
        from podcastflow.services.trigger_evaluator import evaluate_condition

        condition = {"field": "value", "operator": operator, "value": expected}
        assert evaluate_condition(condition, {"value": actual}) is result

    def test_numeric_comparison_rejects_bool_and_text(self):
        from podcastflow.services.trigger_evaluator import evaluate_condition

        assert evaluate_condition({"field": "x", "operator": "gt", "value": 0}, {"x": True}) is False
        assert evaluate_condition({"field": "x", "operator": "gt", "value": 0}, {"x": "lots"}) is False

    def test_missing_field_only_satisfies_negative_operators(self):
        from podcastflow.services.trigger_evaluator import evaluate_condition

        data = {"other": 1}
        assert evaluate_condition({"field": "status", "operator": "eq", "value": None}, data) is False
        assert evaluate_condition({"field": "status", "operator": "neq", "value": "lost"}, data) is True
        assert evaluate_condition({"field": "status", "operator": "nin", "value": ["lost"]}, data) is True
        assert evaluate_condition({"field": "status", "operator": "lt", "value": 5}, data) is False

    def test_dot_path_and_groups(self):
        from podcastflow.services.trigger_evaluator import evaluate_condition

        data = {"campaign": {"probability": 90, "status": "proposal"}, "budget": 25000}
        condition = {"and": [
            {"field": "campaign.probability", "operator": "gte", "value": 90},
            {"or": [
                {"field": "campaign.status", "operator": "eq", "value": "active"},
                {"field": "budget", "operator": "gt", "value": 10000},
            ]},
        ]}
        assert evaluate_condition(condition, data) is True

        data["budget"] = 500
        assert evaluate_condition(condition, data) is False

    def test_no_condition_always_matches(self):
        from podcastflow.services.trigger_evaluator import evaluate_condition

        assert evaluate_condition(None, {}) is True
        assert evaluate_condition({}, {"x": 1}) is True


class TestTriggerValidation:

    def test_unknown_event_rejected(self):
        from pydantic import ValidationError
        from podcastflow.schemas.workflow import TriggerCreate

        with pytest.raises(ValidationError):
            TriggerCreate(name="x", event="made_up_event", actions=[{"type": "send_notification"}])

    def test_bad_operator_rejected(self):
        from pydantic import ValidationError
        from podcastflow.schemas.workflow import TriggerCreate

        with pytest.raises(ValidationError):
            TriggerCreate(
                name="x", event="probability_updated",
                condition={"field": "probability", "operator": "approximately", "value": 90},
                actions=[{"type": "send_notification"}],
            )

    def test_in_requires_list(self):
        from pydantic import ValidationError
        from podcastflow.schemas.workflow import TriggerCreate

        with pytest.raises(ValidationError):
            TriggerCreate(
                name="x", event="probability_updated",
                condition={"field": "status", "operator": "in", "value": "booked"},
                actions=[{"type": "send_notification"}],
            )

    def test_unknown_action_type_rejected(self):
        from pydantic import ValidationError
        from podcastflow.schemas.workflow import TriggerCreate

        with pytest.raises(ValidationError):
            TriggerCreate(name="x", event="probability_updated", actions=[{"type": "launch_rocket"}])


class TestWorkflowSettings:
    """Typed settings with defaults"""

    def test_defaults(self, db, org):
        from podcastflow.services.workflow_settings import WorkflowSettingsService

        values = WorkflowSettingsService(db).get_settings(org.id)

        assert values["competitive.category_checking"] == {"enabled": True, "mode": "warn", "buffer_days": 30}
        assert values["bulk.defaults"]["fallback_strategy"] == "strict"
        assert values["reservation.hold"]["hold_duration_hours"] == 48
        assert values["milestone.thresholds"]["admin_approval_required"] == 90

    def test_partial_update_merges(self, db, org):
        from podcastflow.services.workflow_settings import WorkflowSettingsService

        service = WorkflowSettingsService(db)
        service.get_typed(org.id)  # warm the cache

        values = service.update_settings(org.id, {"competitive.category_checking": {"mode": "block"}}, user_id="admin-1")

        assert values["competitive.category_checking"] == {"enabled": True, "mode": "block", "buffer_days": 30}
        assert service.get_typed(org.id).competitive.mode == "block"

    def test_invalid_value_rejected(self, db, org):
        from podcastflow.exceptions import WorkflowError
        from podcastflow.services.workflow_settings import WorkflowSettingsService

        with pytest.raises(WorkflowError):
            WorkflowSettingsService(db).update_settings(org.id, {"competitive.category_checking": {"mode": "shout"}})
        with pytest.raises(WorkflowError):
            WorkflowSettingsService(db).update_settings(org.id, {"reservation.hold": 12})

    def test_unknown_keys_stored_as_custom(self, db, org):
        from podcastflow.services.workflow_settings import WorkflowSettingsService

        values = WorkflowSettingsService(db).update_settings(org.id, {"sales.quota": {"monthly": 50000}})

        assert values["sales.quota"] == {"monthly": 50000}

    def test_settings_are_per_organization(self, db, org):
        from podcastflow.models import Organization
        from podcastflow.services.workflow_settings import WorkflowSettingsService

        other = Organization(name="Other", slug="other-network", settings={})
        db.add(other)
        db.commit()
        service = WorkflowSettingsService(db)

        service.update_settings(org.id, {"reservation.hold": {"hold_duration_hours": 12}})

        assert service.get_typed(other.id).reservation.hold_duration_hours == 48


class TestTriggerCrud:

    def test_triggers_ordered_by_priority(self, db, org):
        from podcastflow.services.workflow_settings import WorkflowSettingsService

        late = make_trigger(db, org, name="Late", priority=200)
        early = make_trigger(db, org, name="Early", priority=10)
        make_trigger(db, org, name="Other event", event="campaign_created")

        triggers = WorkflowSettingsService(db).get_triggers(org.id, event="probability_updated")
        assert [t.id for t in triggers] == [early.id, late.id]

    def test_update_and_soft_delete(self, db, org):
        from podcastflow.schemas.workflow import TriggerUpdate
        from podcastflow.services.workflow_settings import WorkflowSettingsService

        service = WorkflowSettingsService(db)
        trigger = make_trigger(db, org)

        updated = service.update_trigger(org.id, trigger.id, TriggerUpdate(priority=5, isEnabled=False))
        assert updated.priority == 5
        assert updated.is_enabled is False
        assert updated.name == "Approval at 90"

        assert service.update_trigger(org.id, "missing", TriggerUpdate(priority=1)) is None

        service.update_trigger(org.id, trigger.id, TriggerUpdate(isEnabled=True))
        assert service.delete_trigger(org.id, trigger.id) is True
        assert service.get_triggers(org.id, is_enabled=True) == []
        assert service.get_trigger(org.id, trigger.id) is not None
        assert service.delete_trigger(org.id, "missing") is False


class TestTriggerExecution:
    """Evaluate events against stored triggers"""

    def test_approval_notification_fires_once(self, db, org, admin, make_advertiser, make_campaign):
        """
        Probability moves 85 -> 90 -> 90. The trigger is skipped at 85,
        fires at 90 and is not repeated for the second 90.
        """
        from podcastflow.models import NotificationQueue, TriggerExecutionLog, WorkflowTrigger
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        campaign = make_campaign(make_advertiser(), probability=85)
        trigger = make_trigger(
            db, org,
            condition={"field": "probability", "operator": "gte", "value": 90},
            actions=[{
                "type": "send_notification",
                "config": {"eventType": "admin_approval_requested", "toRoles": ["admin"]},
            }],
        )
        evaluator = TriggerEvaluator(db, org.id)

        first = evaluator.evaluate_event(campaign_event(org, campaign, {"probability": 85}))
        second = evaluator.evaluate_event(campaign_event(org, campaign, {"probability": 90}))
        third = evaluator.evaluate_event(campaign_event(org, campaign, {"probability": 90}))

        assert first[0].status == "skipped"
        assert first[0].error == "Condition not met"
        assert second[0].status == "success"
        assert second[0].actions[0]["data"] == {"status": "queued", "recipients": 1}
        assert third[0].status == "skipped"
        assert third[0].error == "already executed"

        queued = db.query(NotificationQueue).all()
        assert len(queued) == 1
        assert queued[0].event_type == "admin_approval_requested"
        assert queued[0].recipient_ids == [admin.id]
        assert queued[0].event_payload["entityId"] == campaign.id

        statuses = [log.status for log in db.query(TriggerExecutionLog)]
        assert sorted(statuses) == ["skipped", "success"]
        assert db.get(WorkflowTrigger, trigger.id).execution_count == 1

    def test_other_entities_fire_independently(self, db, org, make_advertiser, make_campaign, quiet_notifier):
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        advertiser = make_advertiser()
        first = make_campaign(advertiser, name="One")
        second = make_campaign(advertiser, name="Two")
        make_trigger(db, org)
        evaluator = TriggerEvaluator(db, org.id, notifier=quiet_notifier)

        assert evaluator.evaluate_event(campaign_event(org, first, {}))[0].status == "success"
        assert evaluator.evaluate_event(campaign_event(org, second, {}))[0].status == "success"
        assert quiet_notifier.emit.call_count == 2

    def test_disabled_triggers_do_not_run(self, db, org, make_advertiser, make_campaign, quiet_notifier):
        from podcastflow.services.trigger_evaluator import TriggerEvaluator
        from podcastflow.services.workflow_settings import WorkflowSettingsService

        campaign = make_campaign(make_advertiser())
        trigger = make_trigger(db, org)
        WorkflowSettingsService(db).delete_trigger(org.id, trigger.id)

        results = TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(campaign_event(org, campaign, {}))
        assert results == []

    def test_failed_action_clears_dedupe_key(self, db, org, make_advertiser, make_campaign):
        """A failed execution does not count; the next event retries"""
        from podcastflow.models import TriggerExecutionLog
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        campaign = make_campaign(make_advertiser())
        make_trigger(db, org, actions=[{"type": "change_probability", "config": {}}])
        evaluator = TriggerEvaluator(db, org.id)

        first = evaluator.evaluate_event(campaign_event(org, campaign, {}))
        second = evaluator.evaluate_event(campaign_event(org, campaign, {}))

        assert first[0].status == "failed"
        assert first[0].error == "One or more actions failed"
        assert "config.to must be a number" in first[0].actions[0]["error"]
        assert second[0].status == "failed"
        logs = db.query(TriggerExecutionLog).all()
        assert len(logs) == 2
        assert all(log.dedupe_key is None for log in logs)

    def test_unknown_stored_action_fails_trigger(self, db, org, make_advertiser, make_campaign, quiet_notifier):
        from podcastflow.models import WorkflowTrigger
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        campaign = make_campaign(make_advertiser())
        db.add(WorkflowTrigger(
            organization_id=org.id, name="Legacy", event="probability_updated",
            actions=[{"type": "fax_someone", "config": {}}],
        ))
        db.commit()

        results = TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(campaign_event(org, campaign, {}))

        assert results[0].status == "failed"
        assert results[0].actions[0] == {
            "type": "fax_someone", "success": False, "error": "Unknown action type: fax_someone",
        }

    def test_one_failing_trigger_does_not_stop_others(self, db, org, make_advertiser, make_campaign, quiet_notifier):
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        campaign = make_campaign(make_advertiser(), probability=40)
        make_trigger(db, org, name="Broken", priority=10,
                     actions=[{"type": "change_status", "config": {}}])
        make_trigger(db, org, name="Bump", priority=20,
                     actions=[{"type": "change_probability", "config": {"to": 10, "operation": "add"}}])

        results = TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(campaign_event(org, campaign, {}))

        assert [(r.trigger_name, r.status) for r in results] == [("Broken", "failed"), ("Bump", "success")]
        db.refresh(campaign)
        assert campaign.probability == 50


class TestTriggerActions:

    @pytest.mark.parametrize("config,expected", [
        ({"to": 65}, 65),
        ({"value": 30, "operation": "add"}, 100),
        ({"to": 90, "operation": "subtract"}, 0),
        ({"to": 150}, 100),
    ])
    def test_change_probability(self, db, org, make_advertiser, make_campaign, quiet_notifier, config, expected):
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        campaign = make_campaign(make_advertiser(), probability=75)
        make_trigger(db, org, actions=[{"type": "change_probability", "config": config}])

        TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(campaign_event(org, campaign, {}))

        db.refresh(campaign)
        assert campaign.probability == expected

    def test_change_status(self, db, org, make_advertiser, make_campaign, quiet_notifier):
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        campaign = make_campaign(make_advertiser(), status="proposal")
        make_trigger(db, org, actions=[{"type": "change_status", "config": {"to": "approved"}}])

        results = TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(campaign_event(org, campaign, {}))

        assert results[0].actions[0]["data"] == {"previous": "proposal", "status": "approved"}
        db.refresh(campaign)
        assert campaign.status == "approved"

    def test_require_approval(self, db, org, admin, make_advertiser, make_campaign, quiet_notifier):
        from podcastflow.models import CampaignApproval
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        campaign = make_campaign(make_advertiser(), probability=90, seller_id="seller-9")
        trigger = make_trigger(db, org, actions=[{"type": "require_approval", "config": {"roles": ["admin"]}}])

        TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(
            campaign_event(org, campaign, {"probability": 90}, user_id="seller-9")
        )

        approval = db.query(CampaignApproval).one()
        assert approval.campaign_id == campaign.id
        assert approval.status == "pending"
        assert approval.trigger_id == trigger.id
        assert approval.required_roles == ["admin"]

        args, kwargs = quiet_notifier.emit.call_args
        assert args[1] == "campaign_approval_requested"
        assert args[2]["approvalId"] == approval.id
        assert kwargs["recipient_ids"] == [admin.id]
        assert kwargs["severity"] == "high"

    def test_emit_webhook_writes_outbox(self, db, org, make_advertiser, make_campaign, quiet_notifier):
        from podcastflow.models import WebhookOutbox
        from podcastflow.services.trigger_evaluator import TriggerEvaluator
        from podcastflow.services.webhook_outbox import serialize_payload, sign_payload

        campaign = make_campaign(make_advertiser())
        trigger = make_trigger(db, org, actions=[{
            "type": "emit_webhook",
            "config": {"url": "https://crm.example.com/hooks/pf", "secret": "shh"},
        }])

        TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(
            campaign_event(org, campaign, {"probability": 90})
        )

        entry = db.query(WebhookOutbox).one()
        assert entry.trigger_id == trigger.id
        assert entry.status == "pending"
        assert entry.payload["entityId"] == campaign.id
        assert entry.payload["data"] == {"probability": 90}
        assert entry.headers["X-PodcastFlow-Event"] == "probability_updated"
        assert entry.headers["X-Webhook-Signature"] == sign_payload("shh", serialize_payload(entry.payload))

    def test_emit_webhook_without_url_fails(self, db, org, make_advertiser, make_campaign, quiet_notifier):
        from podcastflow.models import WebhookOutbox
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        campaign = make_campaign(make_advertiser())
        make_trigger(db, org, actions=[{"type": "emit_webhook", "config": {}}])

        results = TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(campaign_event(org, campaign, {}))

        assert results[0].status == "failed"
        assert db.query(WebhookOutbox).count() == 0

    def test_send_notification_to_named_users(self, db, org, make_user, make_advertiser, make_campaign, quiet_notifier):
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        seller = make_user("sales")
        producer = make_user("producer")
        campaign = make_campaign(make_advertiser())
        make_trigger(db, org, actions=[{
            "type": "send_notification",
            "config": {
                "eventType": "campaign_status_changed",
                "toUsers": [seller.id, "someone-else"],
                "toRoles": ["producer", "sales"],
                "data": {"title": "Heads up"},
                "severity": "low",
            },
        }])

        TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(campaign_event(org, campaign, {}))

        args, kwargs = quiet_notifier.emit.call_args
        assert args[1] == "campaign_status_changed"
        assert args[2]["title"] == "Heads up"
        assert kwargs["recipient_ids"] == [seller.id, producer.id]
        assert kwargs["severity"] == "low"

    def test_create_reservation_from_schedule(self, db, org, make_advertiser, make_campaign, make_show,
                                              make_episode, next_monday, quiet_notifier):
        from podcastflow.models import Reservation
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        show = make_show()
        make_episode(show, next_monday)
        campaign = make_campaign(make_advertiser(), probability=90)
        make_trigger(db, org, actions=[{"type": "create_reservation", "config": {}}])
        items = [{"showId": show.id, "airDate": next_monday.isoformat(), "placementType": "pre-roll"}]

        evaluator = TriggerEvaluator(db, org.id, notifier=quiet_notifier)
        results = evaluator.evaluate_event(campaign_event(org, campaign, {"items": items}))

        assert results[0].status == "success"
        reservation = db.query(Reservation).one()
        assert reservation.campaign_id == campaign.id
        assert reservation.source == "workflow_trigger"
        assert len(reservation.items) == 1


def hold_for_campaign(db, org, campaign, show, air_date, notifier, rate=None):
    from podcastflow.schemas.reservation import ReservationCreate
    from podcastflow.services.reservation_service import ReservationService

    item = {"showId": show.id, "airDate": air_date.isoformat(), "placementType": "pre-roll"}
    if rate is not None:
        item["rate"] = rate
    return ReservationService(db, org.id, notifier=notifier).create_reservation(
        ReservationCreate.model_validate({"campaignId": campaign.id, "items": [item]})
    )


def probability_change(org, campaign, old, new, user_role=None, **data):
    context = campaign_event(org, campaign, {"oldProbability": old, "newProbability": new, **data})
    context.user_role = user_role
    return context


class TestCampaignMilestones:
    """Built-in steps run on upward threshold crossings with default settings"""

    def test_crossing_90_requests_admin_approval_once(self, db, org, admin, make_advertiser, make_campaign,
                                                     quiet_notifier):
        from podcastflow.models import CampaignApproval, TriggerExecutionLog
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        campaign = make_campaign(make_advertiser(), probability=85)
        evaluator = TriggerEvaluator(db, org.id, notifier=quiet_notifier)

        results = evaluator.evaluate_event(probability_change(org, campaign, 85, 90))

        assert [(r.trigger_name, r.status) for r in results] == [
            ("milestone:auto_reservation", "success"),
            ("milestone:admin_approval", "success"),
        ]
        assert results[0].actions[0]["data"]["reason"] == "no schedule items to reserve"
        approval = db.query(CampaignApproval).one()
        assert approval.status == "pending"
        assert approval.required_roles == ["admin", "master"]

        args, kwargs = quiet_notifier.emit.call_args
        assert args[1] == "admin_approval_requested"
        assert args[2]["approvalId"] == approval.id
        assert kwargs["recipient_ids"] == [admin.id]

        again = evaluator.evaluate_event(probability_change(org, campaign, 85, 90))
        assert [r.error for r in again] == ["already executed", "already executed"]
        assert db.query(CampaignApproval).count() == 1
        keys = {log.dedupe_key for log in db.query(TriggerExecutionLog)}
        assert f"milestone:admin_approval:{campaign.id}" in keys

    def test_changes_without_a_crossing_run_nothing(self, db, org, make_advertiser, make_campaign, quiet_notifier):
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        campaign = make_campaign(make_advertiser(), probability=40)
        evaluator = TriggerEvaluator(db, org.id, notifier=quiet_notifier)

        assert evaluator.evaluate_event(probability_change(org, campaign, 40, 60)) == []
        assert evaluator.evaluate_event(probability_change(org, campaign, 95, 60)) == []
        assert evaluator.evaluate_event(campaign_event(org, campaign, {"probability": 90})) == []
        quiet_notifier.emit.assert_not_called()

    def test_crossing_65_asks_show_talent(self, db, org, make_user, make_advertiser, make_campaign, make_show,
                                          make_episode, next_monday, quiet_notifier):
        from podcastflow.models import CampaignApproval
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        talent = make_user("talent")
        show = make_show()
        show.talent_id = talent.id
        db.commit()
        make_episode(show, next_monday)
        campaign = make_campaign(make_advertiser(), probability=50)
        hold_for_campaign(db, org, campaign, show, next_monday, quiet_notifier)
        quiet_notifier.reset_mock()

        results = TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(
            probability_change(org, campaign, 50, 65)
        )

        assert [(r.trigger_name, r.status) for r in results] == [("milestone:talent_approval", "success")]
        approval = db.query(CampaignApproval).one()
        assert approval.required_roles == ["talent"]
        assert show.name in approval.reason

        args, _ = quiet_notifier.emit.call_args
        assert args[1] == "talent_approval_requested"
        assert args[2]["talentId"] == talent.id
        assert args[2]["showName"] == show.name

    def test_crossing_90_holds_the_schedule(self, db, org, make_advertiser, make_campaign, make_show, make_episode,
                                            next_monday, quiet_notifier):
        from podcastflow.models import Reservation
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        show = make_show()
        make_episode(show, next_monday)
        campaign = make_campaign(make_advertiser(), probability=80)
        items = [{"showId": show.id, "airDate": next_monday.isoformat(), "placementType": "pre-roll"}]

        results = TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(
            probability_change(org, campaign, 80, 90, items=items)
        )

        assert results[0].trigger_name == "milestone:auto_reservation"
        assert results[0].actions[0]["data"]["items"] == 1
        reservation = db.query(Reservation).one()
        assert reservation.campaign_id == campaign.id
        assert reservation.status == "held"
        assert reservation.source == "workflow_milestone"

    def test_crossing_100_confirms_into_order(self, db, org, make_advertiser, make_campaign, make_show,
                                              make_episode, next_monday, quiet_notifier):
        from podcastflow.models import Order
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        show = make_show()
        make_episode(show, next_monday)
        campaign = make_campaign(make_advertiser(), probability=90)
        reservation = hold_for_campaign(db, org, campaign, show, next_monday, quiet_notifier)

        results = TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(
            probability_change(org, campaign, 90, 100)
        )

        assert [(r.trigger_name, r.status) for r in results] == [("milestone:order_creation", "success")]
        order = db.query(Order).one()
        assert order.reservation_id == reservation.id
        assert results[0].actions[0]["data"]["orderNumber"] == order.order_number
        db.refresh(reservation)
        assert reservation.status == "confirmed"

    def test_jump_crosses_every_step_in_order(self, db, org, admin, make_advertiser, make_campaign, quiet_notifier):
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        campaign = make_campaign(make_advertiser(), probability=10)

        results = TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(
            probability_change(org, campaign, 10, 100)
        )

        assert [r.trigger_name for r in results] == [
            "milestone:rate_card_delta",
            "milestone:talent_approval",
            "milestone:auto_reservation",
            "milestone:admin_approval",
            "milestone:order_creation",
        ]
        assert all(r.status == "success" for r in results)

    def test_disabled_approval_rule_drops_its_step(self, db, org, make_advertiser, make_campaign, quiet_notifier):
        from podcastflow.models import CampaignApproval
        from podcastflow.services.trigger_evaluator import TriggerEvaluator
        from podcastflow.services.workflow_settings import WorkflowSettingsService

        WorkflowSettingsService(db).update_settings(org.id, {"approval.rules": {"campaignApproval": {"enabled": False}}})
        campaign = make_campaign(make_advertiser(), probability=85)

        results = TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(
            probability_change(org, campaign, 85, 90)
        )

        assert [r.trigger_name for r in results] == ["milestone:auto_reservation"]
        assert db.query(CampaignApproval).count() == 0

    def test_rate_card_delta_flags_discounted_spots(self, db, org, admin, make_advertiser, make_campaign, make_show,
                                                    make_episode, next_monday, quiet_notifier):
        """Pre-roll lists at 500; a 300 hold is 40% under, past the 20% approval line"""
        from podcastflow.models import CampaignApproval
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        show = make_show()
        make_episode(show, next_monday)
        campaign = make_campaign(make_advertiser(), probability=30)
        hold_for_campaign(db, org, campaign, show, next_monday, quiet_notifier, rate="300")
        quiet_notifier.reset_mock()

        results = TriggerEvaluator(db, org.id, notifier=quiet_notifier).evaluate_event(
            probability_change(org, campaign, 30, 40)
        )

        data = results[0].actions[0]["data"]
        assert results[0].trigger_name == "milestone:rate_card_delta"
        assert data["flagged"] is True
        assert data["variance"]["maxPercent"] == -40.0
        assert db.get(CampaignApproval, data["approvalId"]).status == "pending"
        assert quiet_notifier.emit.call_args[0][1] == "rate_delta_detected"

    def test_rejected_talent_blocks_sales_but_not_admin(self, db, org, make_advertiser, make_campaign,
                                                        quiet_notifier):
        from podcastflow.models import CampaignApproval, TriggerExecutionLog
        from podcastflow.services.trigger_evaluator import TriggerEvaluator

        campaign = make_campaign(make_advertiser(), probability=85)
        db.add(CampaignApproval(organization_id=org.id, campaign_id=campaign.id, status="rejected",
                                required_roles=["talent"], reason="Host declined"))
        db.commit()
        evaluator = TriggerEvaluator(db, org.id, notifier=quiet_notifier)

        blocked = evaluator.evaluate_event(probability_change(org, campaign, 85, 90, user_role="sales"))
        admin_step = [r for r in blocked if r.trigger_name == "milestone:admin_approval"][0]
        assert admin_step.status == "failed"
        assert "talent approval(s) were rejected" in admin_step.error
        failed_log = db.query(TriggerExecutionLog).filter(TriggerExecutionLog.status == "failed").one()
        assert failed_log.dedupe_key is None
        assert failed_log.trigger_id is None

        forced = evaluator.evaluate_event(probability_change(org, campaign, 85, 90, user_role="admin"))
        admin_step = [r for r in forced if r.trigger_name == "milestone:admin_approval"][0]
        assert admin_step.status == "success"
        assert db.query(CampaignApproval).filter(CampaignApproval.status == "pending").count() == 1
