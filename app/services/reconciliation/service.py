"""
Reconciliation queue: durable retry list for charge events whose processing
failed after the idempotency claim. Entries are re-driven by the Celery beat
task in app.settlement.tasks.
"""
import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.reconciliation import PaymentReconciliationEntry
from app.utils.dates import utcnow
from app.utils.metrics import reconciliation_total

logger = logging.getLogger(__name__)

OPEN_STATUSES = ("pending", "processing")


class ReconciliationService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_open(self, payment_reference: str) -> PaymentReconciliationEntry | None:
        return (
            self.db.query(PaymentReconciliationEntry)
            .filter(
                PaymentReconciliationEntry.payment_reference == payment_reference,
                PaymentReconciliationEntry.status.in_(OPEN_STATUSES),
            )
            .first()
        )

    def enqueue(
        self,
        booking_id: str | None,
        payment_reference: str,
        error: str,
        webhook_event_id: str | None = None,
    ) -> PaymentReconciliationEntry:
        """One open entry per reference; a repeat failure refreshes its error and event."""
        entry = self.get_open(payment_reference)
        if entry is not None:
            entry.error_message = error[:2000]
            if webhook_event_id:
                entry.webhook_event_id = webhook_event_id
            if booking_id and not entry.booking_id:
                entry.booking_id = booking_id
            self.db.add(entry)
            self.db.commit()
            return entry

        entry = PaymentReconciliationEntry(
            booking_id=booking_id,
            payment_reference=payment_reference,
            payment_provider="paystack",
            webhook_event_id=webhook_event_id,
            status="pending",
            error_message=error[:2000],
            attempt_count=0,
            max_attempts=settings.reconciliation_max_attempts,
            next_retry_at=utcnow() + timedelta(seconds=settings.reconciliation_initial_delay_seconds),
        )
        self.db.add(entry)
        self.db.commit()
        reconciliation_total.labels(outcome="enqueued").inc()
        logger.warning(
            "reconciliation_enqueued",
            extra={"entry_id": entry.id, "booking_id": booking_id, "reference": payment_reference, "error": error},
        )
        return entry

    def due(self, limit: int | None = None) -> list[PaymentReconciliationEntry]:
        """Pending entries whose retry time has come, plus processing entries whose lease ran out."""
        return (
            self.db.query(PaymentReconciliationEntry)
            .filter(
                PaymentReconciliationEntry.status.in_(OPEN_STATUSES),
                PaymentReconciliationEntry.next_retry_at <= utcnow(),
            )
            .order_by(PaymentReconciliationEntry.next_retry_at)
            .limit(limit or settings.reconciliation_batch_size)
            .all()
        )

    def mark_processing(self, entry: PaymentReconciliationEntry) -> None:
        """Take the entry for one run; next_retry_at doubles as the lease expiry."""
        if entry.status == "processing":
            logger.warning(
                "reconciliation_lease_expired",
                extra={"entry_id": entry.id, "reference": entry.payment_reference},
            )
        entry.status = "processing"
        entry.next_retry_at = utcnow() + timedelta(seconds=settings.reconciliation_processing_lease_seconds)
        self.db.add(entry)
        self.db.commit()

    def mark_deferred(self, entry: PaymentReconciliationEntry) -> None:
        """Hand the entry back for the next run without spending an attempt."""
        entry.status = "pending"
        entry.next_retry_at = utcnow()
        self.db.add(entry)
        self.db.commit()

    def mark_resolved(self, entry: PaymentReconciliationEntry) -> None:
        entry.status = "resolved"
        entry.resolved_at = utcnow()
        entry.error_message = None
        self.db.add(entry)
        self.db.commit()
        reconciliation_total.labels(outcome="resolved").inc()
        logger.info("reconciliation_resolved", extra={"entry_id": entry.id, "reference": entry.payment_reference})

    def mark_retry(self, entry: PaymentReconciliationEntry, error: str) -> None:
        """Back off exponentially from the initial delay; give up after max_attempts."""
        entry.attempt_count = (entry.attempt_count or 0) + 1
        entry.error_message = error[:2000]
        if entry.attempt_count >= (entry.max_attempts or settings.reconciliation_max_attempts):
            entry.status = "failed"
            entry.next_retry_at = None
            outcome = "exhausted"
        else:
            delay = settings.reconciliation_initial_delay_seconds * (2 ** entry.attempt_count)
            entry.status = "pending"
            entry.next_retry_at = utcnow() + timedelta(seconds=delay)
            outcome = "retry"
        self.db.add(entry)
        self.db.commit()
        reconciliation_total.labels(outcome=outcome).inc()
        logger.warning(
            "reconciliation_retry_scheduled" if outcome == "retry" else "reconciliation_exhausted",
            extra={
                "entry_id": entry.id,
                "reference": entry.payment_reference,
                "attempt": entry.attempt_count,
                "error": error,
            },
        )
