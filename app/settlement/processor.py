"""
Webhook processor: verify → parse → claim → route → mark processed/failed.

Once the signature and the body check out, the caller always answers 200.
Failures after the claim are recorded on the idempotency row and, for charge
events, queued for reconciliation; the gateway's own retries are not relied on.
"""
import json
import logging
import time

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.webhook_event import WebhookEvent
from app.services.idempotency import ClaimOutcome, IdempotencyLedger
from app.services.reconciliation.service import ReconciliationService
from app.settlement.effects import best_effort
from app.settlement.errors import MalformedEvent, UnknownEntity
from app.settlement.events import InboundEvent, parse_event
from app.settlement.metadata import decode_metadata
from app.settlement.router import EventRouter
from app.settlement.signature import verify_signature
from app.utils.metrics import (
    webhook_handler_failures_total,
    webhook_processing_seconds,
    webhooks_received_total,
)

logger = logging.getLogger(__name__)

OUTCOME_PROCESSED = "processed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IN_FLIGHT = "in_flight"
OUTCOME_UNTRACKED = "untracked"


def stored_payload(event: InboundEvent) -> dict:
    """What the idempotency row keeps so the event can be re-driven later."""
    body = {"event": event.event_type, "data": event.data}
    if event.provider_event_id:
        body["id"] = event.provider_event_id
    return body


class WebhookProcessor:
    def __init__(
        self,
        db: Session,
        router: EventRouter | None = None,
        secret: str | None = None,
        source: str | None = None,
    ) -> None:
        self.db = db
        self.router = router or EventRouter(db)
        self.secret = secret
        self.source = source or settings.webhook_source
        self.ledger = IdempotencyLedger(db)

    def process(self, raw_body: bytes, signature: str | None) -> dict:
        """Raises AuthenticationFailure / MalformedPayload; everything later is absorbed."""
        verify_signature(raw_body, signature, self.secret)
        event = parse_event(raw_body)

        start = time.time()
        try:
            outcome = self.handle(event)
        except Exception as e:
            # Claim or bookkeeping failed; the gateway still gets its 200.
            self.db.rollback()
            webhook_handler_failures_total.labels(handler="processor").inc()
            logger.exception(
                "webhook_processing_failed",
                extra={
                    "event_id": event.provider_event_id,
                    "event_type": event.event_type,
                    "error": f"{type(e).__name__}: {e}",
                },
            )
            outcome = OUTCOME_FAILED
        finally:
            webhook_processing_seconds.labels(event_type=event.kind.value).observe(time.time() - start)
        webhooks_received_total.labels(event_type=event.kind.value, outcome=outcome).inc()
        return {"received": True}

    def handle(self, event: InboundEvent) -> str:
        if event.provider_event_id is None:
            # No id to key on: processed without duplicate protection, domain guards only.
            logger.warning("webhook_event_untracked", extra={"event_type": event.event_type})
            outcome = self.dispatch(event, None)
            return OUTCOME_UNTRACKED if outcome == OUTCOME_PROCESSED else outcome

        claim = self.ledger.claim(
            self.source,
            event.provider_event_id,
            event.event_type,
            stored_payload(event),
        )
        if claim.outcome is ClaimOutcome.ALREADY_PROCESSED:
            logger.info(
                "webhook_event_duplicate",
                extra={"event_id": event.provider_event_id, "event_type": event.event_type},
            )
            return OUTCOME_DUPLICATE
        if claim.outcome is ClaimOutcome.ALREADY_IN_FLIGHT:
            logger.info(
                "webhook_event_in_flight",
                extra={"event_id": event.provider_event_id, "event_type": event.event_type},
            )
            return OUTCOME_IN_FLIGHT
        return self.dispatch(event, claim.event)

    def dispatch(self, event: InboundEvent, row: WebhookEvent | None, enqueue_on_failure: bool = True) -> str:
        group = self.router.group_for(event.kind)
        try:
            self.router.route(event)
        except (UnknownEntity, MalformedEvent) as e:
            # Re-delivery cannot fix a missing entity or unusable metadata.
            self.db.rollback()
            logger.warning(
                "webhook_event_skipped",
                extra={
                    "event_id": event.provider_event_id,
                    "event_type": event.event_type,
                    "handler": group,
                    "error": str(e),
                },
            )
            if row is not None:
                best_effort("mark_processed", self.ledger.mark_processed, row, db=self.db)
            return OUTCOME_SKIPPED
        except Exception as e:
            self.db.rollback()
            error = f"{type(e).__name__}: {e}"
            webhook_handler_failures_total.labels(handler=group).inc()
            logger.exception(
                "webhook_handler_failed",
                extra={
                    "event_id": event.provider_event_id,
                    "event_type": event.event_type,
                    "reference": event.reference,
                    "handler": group,
                    "error": error,
                },
            )
            if row is not None:
                best_effort("mark_failed", self.ledger.mark_failed, row, error, db=self.db)
            if enqueue_on_failure and event.kind.is_charge:
                best_effort("reconciliation_enqueue", self._enqueue, event, row, error, db=self.db)
            return OUTCOME_FAILED

        if row is not None:
            best_effort("mark_processed", self.ledger.mark_processed, row, db=self.db)
        return OUTCOME_PROCESSED

    def _enqueue(self, event: InboundEvent, row: WebhookEvent | None, error: str) -> None:
        metadata = decode_metadata(event.data.get("metadata"))
        booking_id = metadata.get("booking_id")
        reference = event.reference or event.provider_event_id or "unknown"
        ReconciliationService(self.db).enqueue(
            booking_id=str(booking_id) if booking_id else None,
            payment_reference=reference,
            error=error,
            webhook_event_id=row.id if row is not None else None,
        )

    def redrive(self, row: WebhookEvent) -> str:
        """Re-run a stored event (reconciliation). Never enqueues again."""
        claim = self.ledger.claim(row.source, row.event_id, row.event_type, row.payload)
        if claim.outcome is ClaimOutcome.ALREADY_PROCESSED:
            return OUTCOME_DUPLICATE
        if claim.outcome is ClaimOutcome.ALREADY_IN_FLIGHT:
            return OUTCOME_IN_FLIGHT
        event = parse_event(json.dumps(claim.event.payload).encode("utf-8"))
        return self.dispatch(event, claim.event, enqueue_on_failure=False)
