"""
Webhook Outbox Tests

Tests cover:
- HMAC signature and canonical JSON body
- Enqueue joins the caller's transaction
- Delivery outcomes: 2xx, permanent 4xx, 429/5xx and transport errors
- Exponential backoff, terminal failure and manual retry
"""

import hashlib
import hmac
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import httpx
import pytest


def response(status_code, text="ok"):
    r = MagicMock()
    r.status_code = status_code
    r.text = text
    return r


def client_returning(*responses):
    client = MagicMock()
    client.post.side_effect = list(responses)
    return client


def enqueue(db, org, **kwargs):
    from podcastflow.services.webhook_outbox import enqueue_webhook

    entry = enqueue_webhook(
        db, org.id, kwargs.pop("url", "https://crm.example.com/hooks"),
        kwargs.pop("payload", {"event": "order_created", "orderNumber": "ORD-1"}),
        **kwargs,
    )
    db.commit()
    return entry


class TestSigning:

    def test_signature_is_hmac_sha256_of_body(self):
        from podcastflow.services.webhook_outbox import serialize_payload, sign_payload

        body = serialize_payload({"b": 1, "a": [1, 2]})
        expected = hmac.new(b"topsecret", body, hashlib.sha256).hexdigest()

        assert body == b'{"a":[1,2],"b":1}'
        assert sign_payload("topsecret", body) == f"sha256={expected}"

    def test_enqueue_sets_headers(self, db, org):
        from podcastflow.services.webhook_outbox import serialize_payload, sign_payload

        entry = enqueue(db, org, event_type="order_created", secret="s3", headers={"X-Tenant": "net-1"})

        assert entry.headers["Content-Type"] == "application/json"
        assert entry.headers["X-PodcastFlow-Event"] == "order_created"
        assert entry.headers["X-Tenant"] == "net-1"
        assert entry.headers["X-Webhook-Signature"] == sign_payload("s3", serialize_payload(entry.payload))
        assert entry.status == "pending"
        assert entry.max_attempts == 5

    def test_unsigned_without_secret(self, db, org):
        entry = enqueue(db, org)
        assert "X-Webhook-Signature" not in entry.headers

    def test_enqueue_does_not_commit(self, db, org):
        from podcastflow.models import WebhookOutbox
        from podcastflow.services.webhook_outbox import enqueue_webhook

        enqueue_webhook(db, org.id, "https://crm.example.com/hooks", {"x": 1})
        db.rollback()

        assert db.query(WebhookOutbox).count() == 0


class TestOutboxProcessor:
    """Posting outbox rows"""

    def test_success_completes(self, db, org):
        from podcastflow.services.webhook_outbox import WebhookOutboxProcessor, serialize_payload

        entry = enqueue(db, org, secret="s3")
        client = client_returning(response(204))

        assert WebhookOutboxProcessor(db, client=client).process_entry(entry) is True

        db.refresh(entry)
        assert entry.status == "completed"
        assert entry.attempts == 1
        assert entry.response_status == 204
        assert entry.completed_at is not None

        args, kwargs = client.post.call_args
        assert args[0] == "https://crm.example.com/hooks"
        assert kwargs["content"] == serialize_payload(entry.payload)
        assert kwargs["headers"]["X-Webhook-Signature"].startswith("sha256=")

    @pytest.mark.parametrize("status_code", [400, 404, 410])
    def test_client_error_fails_immediately(self, db, org, status_code):
        from podcastflow.services.webhook_outbox import WebhookOutboxProcessor

        entry = enqueue(db, org)

        assert WebhookOutboxProcessor(db, client=client_returning(response(status_code, "gone"))).process_entry(entry) is False

        db.refresh(entry)
        assert entry.status == "failed"
        assert entry.attempts == entry.max_attempts
        assert entry.last_error.startswith(f"HTTP {status_code}")

    @pytest.mark.parametrize("status_code", [429, 500, 502])
    def test_retryable_statuses_back_off(self, db, org, status_code):
        from podcastflow.services.webhook_outbox import WebhookOutboxProcessor

        entry = enqueue(db, org)
        before = datetime.utcnow()

        WebhookOutboxProcessor(db, client=client_returning(response(status_code))).process_entry(entry)

        db.refresh(entry)
        assert entry.status == "retrying"
        assert before + timedelta(seconds=59) <= entry.next_attempt_at <= datetime.utcnow() + timedelta(minutes=1)

    def test_backoff_doubles_then_fails(self, db, org):
        from podcastflow.services.webhook_outbox import WebhookOutboxProcessor

        entry = enqueue(db, org)
        processor = WebhookOutboxProcessor(db, client=client_returning(*[response(503)] * 5))

        delays = []
        for _ in range(4):
            before = datetime.utcnow()
            processor.process_entry(entry)
            db.refresh(entry)
            delays.append(round((entry.next_attempt_at - before).total_seconds() / 60))
        assert delays == [1, 2, 4, 8]

        processor.process_entry(entry)
        db.refresh(entry)
        assert entry.status == "failed"
        assert entry.attempts == 5

    def test_transport_error_retries(self, db, org):
        from podcastflow.services.webhook_outbox import WebhookOutboxProcessor

        entry = enqueue(db, org)
        client = MagicMock()
        client.post.side_effect = httpx.ConnectTimeout("timed out")

        assert WebhookOutboxProcessor(db, client=client).process_entry(entry) is False

        db.refresh(entry)
        assert entry.status == "retrying"
        assert "timed out" in entry.last_error

    def test_batch_only_takes_due_rows(self, db, org):
        from podcastflow.models import WebhookOutbox
        from podcastflow.services.webhook_outbox import WebhookOutboxProcessor

        due = enqueue(db, org)
        later = enqueue(db, org)
        later.next_attempt_at = datetime.utcnow() + timedelta(minutes=30)
        db.commit()

        assert WebhookOutboxProcessor(db, client=client_returning(response(200))).process_batch() == (1, 0)

        assert db.get(WebhookOutbox, due.id).status == "completed"
        assert db.get(WebhookOutbox, later.id).status == "pending"

    def test_failed_rows_can_be_retried(self, db, org):
        from podcastflow.services.webhook_outbox import WebhookOutboxProcessor

        entry = enqueue(db, org)
        processor = WebhookOutboxProcessor(db, client=client_returning(response(400), response(200)))
        processor.process_entry(entry)

        assert [e.id for e in processor.get_failed(org.id)] == [entry.id]
        assert processor.retry_failed(entry.id, "another-org") is False
        assert processor.retry_failed(entry.id, org.id) is True
        assert processor.retry_failed(entry.id, org.id) is False

        db.refresh(entry)
        assert entry.status == "pending"
        assert entry.attempts == 0
        assert processor.process_batch() == (1, 0)
