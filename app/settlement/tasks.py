"""
Reconciliation re-drive: Celery beat picks up charge events whose processing
failed after the claim and runs them through the charge handlers again.
"""
import logging

from sqlalchemy.orm import Session

from app.core.celery_app import celery_app
from app.db.session import session_scope
from app.models.reconciliation import PaymentReconciliationEntry
from app.models.webhook_event import WebhookEvent
from app.services.reconciliation.service import ReconciliationService
from app.settlement.processor import (
    OUTCOME_DUPLICATE,
    OUTCOME_FAILED,
    OUTCOME_IN_FLIGHT,
    WebhookProcessor,
)
from app.utils.metrics import reconciliation_pending

logger = logging.getLogger("reconciliation")


def redrive_entry(db: Session, entry: PaymentReconciliationEntry, processor: WebhookProcessor) -> str:
    """Re-run one queue entry. Returns resolved / retry / deferred."""
    service = ReconciliationService(db)
    service.mark_processing(entry)

    row = None
    if entry.webhook_event_id:
        row = db.query(WebhookEvent).filter(WebhookEvent.id == entry.webhook_event_id).one_or_none()
    if row is None:
        service.mark_retry(entry, "stored webhook event not found")
        return "retry"

    try:
        outcome = processor.redrive(row)
    except Exception as e:
        db.rollback()
        logger.exception("reconciliation_redrive_error", extra={"entry_id": entry.id, "error": str(e)})
        service.mark_retry(entry, f"{type(e).__name__}: {e}")
        return "retry"

    if outcome == OUTCOME_IN_FLIGHT:
        # A live delivery holds the claim; look again next run without spending an attempt.
        service.mark_deferred(entry)
        return "deferred"
    if outcome == OUTCOME_FAILED:
        db.refresh(row)
        service.mark_retry(entry, row.error_message or "handler failed")
        return "retry"

    if outcome == OUTCOME_DUPLICATE:
        logger.info("reconciliation_already_processed", extra={"entry_id": entry.id, "event_id": row.event_id})
    service.mark_resolved(entry)
    return "resolved"


def redrive_due(db: Session, processor: WebhookProcessor | None = None, limit: int | None = None) -> dict:
    processor = processor or WebhookProcessor(db)
    entries = ReconciliationService(db).due(limit)
    counts = {"resolved": 0, "retry": 0, "deferred": 0}
    for entry in entries:
        counts[redrive_entry(db, entry, processor)] += 1

    pending = (
        db.query(PaymentReconciliationEntry)
        .filter(PaymentReconciliationEntry.status.in_(("pending", "processing")))
        .count()
    )
    reconciliation_pending.set(pending)
    return {**counts, "count": len(entries), "pending": pending}


@celery_app.task(name="app.settlement.tasks.redrive_pending_payments")
def redrive_pending_payments() -> dict:
    """Beat entry point: re-drive every due reconciliation entry."""
    with session_scope() as db:
        result = redrive_due(db)
    if result["count"]:
        logger.info("reconciliation_run_completed", extra=result)
    return result
