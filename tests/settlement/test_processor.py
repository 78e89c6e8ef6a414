"""Processor: claim → route → mark, plus reconciliation on charge failures."""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from app.core.config import settings
from app.models.reconciliation import PaymentReconciliationEntry
from app.models.webhook_event import WebhookEvent
from app.settlement.errors import AuthenticationFailure, MalformedPayload
from app.settlement.processor import WebhookProcessor
from app.utils.dates import as_utc, utcnow


def _failing_router(error=RuntimeError("database went away")):
    router = MagicMock()
    router.group_for.return_value = "charge"
    router.route.side_effect = error
    return router


class TestRejections:
    def test_bad_signature_writes_nothing(self, db, processor, encode_event):
        raw = encode_event("charge.success", {"reference": "ref_1"}, "evt_1")
        with pytest.raises(AuthenticationFailure):
            processor.process(raw, "0" * 128)
        assert db.query(WebhookEvent).count() == 0

    def test_malformed_body_writes_nothing(self, db, processor, sign_body):
        raw = b'{"event": "charge.success"}'
        with pytest.raises(MalformedPayload):
            processor.process(raw, sign_body(raw))
        assert db.query(WebhookEvent).count() == 0


class TestClaimAndMark:
    def test_unhandled_event_marked_processed(self, db, deliver):
        assert deliver("paymentrequest.success", {"id": 5}) == {"received": True}
        row = db.query(WebhookEvent).one()
        assert row.status == "processed"
        assert row.event_id == "paymentrequest.success:5"

    def test_duplicate_not_routed_again(self, db, encode_event, sign_body):
        router = MagicMock()
        router.group_for.return_value = "charge"
        processor = WebhookProcessor(db, router=router)
        raw = encode_event("charge.success", {"reference": "ref_1"}, "evt_1")

        processor.process(raw, sign_body(raw))
        processor.process(raw, sign_body(raw))

        assert router.route.call_count == 1

    def test_untracked_event_still_routed(self, db, encode_event, sign_body):
        router = MagicMock()
        router.group_for.return_value = "charge"
        processor = WebhookProcessor(db, router=router)
        raw = encode_event("charge.success", {"amount": 100})

        assert processor.process(raw, sign_body(raw)) == {"received": True}
        router.route.assert_called_once()
        assert db.query(WebhookEvent).count() == 0

    def test_stored_payload_allows_redrive(self, db, deliver):
        deliver("charge.success", {"reference": "ref_1", "metadata": {}}, "evt_1")
        row = db.query(WebhookEvent).one()
        assert row.payload == {"event": "charge.success", "data": {"reference": "ref_1", "metadata": {}}, "id": "evt_1"}


class TestHandlerFailure:
    def test_failure_acknowledged_and_queued(self, db, encode_event, sign_body):
        processor = WebhookProcessor(db, router=_failing_router())
        data = {"reference": "ref_boom", "metadata": {"booking_id": "b42"}}
        raw = encode_event("charge.success", data, "evt_boom")

        before = utcnow()
        assert processor.process(raw, sign_body(raw)) == {"received": True}
        after = utcnow()

        row = db.query(WebhookEvent).one()
        assert row.status == "failed"
        assert "database went away" in row.error_message

        entry = db.query(PaymentReconciliationEntry).one()
        assert entry.status == "pending"
        assert entry.booking_id == "b42"
        assert entry.payment_reference == "ref_boom"
        assert entry.webhook_event_id == row.id
        delay = timedelta(seconds=settings.reconciliation_initial_delay_seconds)
        assert before + delay <= as_utc(entry.next_retry_at) <= after + delay

    def test_failed_event_retried_on_redelivery(self, db, encode_event, sign_body):
        router = _failing_router()
        processor = WebhookProcessor(db, router=router)
        raw = encode_event("charge.success", {"reference": "ref_boom"}, "evt_boom")

        processor.process(raw, sign_body(raw))
        router.route.side_effect = None
        processor.process(raw, sign_body(raw))

        row = db.query(WebhookEvent).one()
        assert row.status == "processed"
        assert row.attempts == 2
        # One open entry per reference, never a second.
        assert db.query(PaymentReconciliationEntry).count() == 1

    def test_non_charge_failure_not_queued(self, db, encode_event, sign_body):
        router = _failing_router()
        router.group_for.return_value = "payout"
        processor = WebhookProcessor(db, router=router)
        raw = encode_event("transfer.success", {"transfer_code": "TRF_1"}, "evt_t")

        processor.process(raw, sign_body(raw))

        assert db.query(WebhookEvent).one().status == "failed"
        assert db.query(PaymentReconciliationEntry).count() == 0
