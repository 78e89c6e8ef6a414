"""
Idempotency ledger for inbound webhooks, backed by the webhook_events table.

claim() is an insert-if-absent guarded by the (source, event_id) unique
constraint. A duplicate delivery observes the existing row instead of
reprocessing. Claims older than the lease, and failed rows, can be taken over
with a conditional UPDATE so that exactly one concurrent delivery wins the retry.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.webhook_event import WebhookEvent
from app.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)


class ClaimOutcome(str, Enum):
    CLAIMED = "claimed"
    ALREADY_PROCESSED = "already_processed"
    ALREADY_IN_FLIGHT = "already_in_flight"


@dataclass(frozen=True)
class ClaimResult:
    outcome: ClaimOutcome
    event: WebhookEvent | None

    @property
    def claimed(self) -> bool:
        return self.outcome is ClaimOutcome.CLAIMED


class IdempotencyLedger:
    def __init__(self, db: Session, lease_seconds: int | None = None) -> None:
        self.db = db
        self.lease = timedelta(
            seconds=lease_seconds if lease_seconds is not None else settings.webhook_claim_lease_seconds
        )

    def get(self, source: str, event_id: str) -> WebhookEvent | None:
        return (
            self.db.query(WebhookEvent)
            .filter(WebhookEvent.source == source, WebhookEvent.event_id == event_id)
            .one_or_none()
        )

    def claim(self, source: str, event_id: str, event_type: str, payload: dict[str, Any]) -> ClaimResult:
        row = WebhookEvent(
            source=source,
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            status="claimed",
            attempts=1,
            claimed_at=utcnow(),
        )
        try:
            self.db.add(row)
            self.db.commit()
            return ClaimResult(ClaimOutcome.CLAIMED, row)
        except IntegrityError:
            self.db.rollback()

        existing = self.get(source, event_id)
        if existing is None:
            # Unique violation but the row is gone again: treat as someone else's claim.
            return ClaimResult(ClaimOutcome.ALREADY_IN_FLIGHT, None)

        if existing.status == "processed":
            return ClaimResult(ClaimOutcome.ALREADY_PROCESSED, existing)

        if existing.status == "claimed" and not self._lease_expired(existing):
            return ClaimResult(ClaimOutcome.ALREADY_IN_FLIGHT, existing)

        return self._reclaim(existing)

    def _lease_expired(self, row: WebhookEvent) -> bool:
        claimed_at = as_utc(row.claimed_at)
        return claimed_at is None or utcnow() - claimed_at >= self.lease

    def _reclaim(self, row: WebhookEvent) -> ClaimResult:
        """Take over a stale or failed claim. attempts doubles as the optimistic version."""
        seen_status = row.status
        seen_attempts = row.attempts
        result = self.db.execute(
            sa_update(WebhookEvent)
            .where(
                WebhookEvent.id == row.id,
                WebhookEvent.status == seen_status,
                WebhookEvent.attempts == seen_attempts,
            )
            .values(
                status="claimed",
                attempts=seen_attempts + 1,
                claimed_at=utcnow(),
                error_message=None,
            )
        )
        self.db.commit()
        if result.rowcount != 1:
            self.db.refresh(row)
            return ClaimResult(ClaimOutcome.ALREADY_IN_FLIGHT, row)

        self.db.refresh(row)
        logger.info(
            "webhook_event_reclaimed",
            extra={"event_id": row.event_id, "event_type": row.event_type, "effect": seen_status},
        )
        return ClaimResult(ClaimOutcome.CLAIMED, row)

    def mark_processed(self, row: WebhookEvent) -> None:
        row.status = "processed"
        row.processed_at = utcnow()
        row.error_message = None
        self.db.add(row)
        self.db.commit()

    def mark_failed(self, row: WebhookEvent, error: str) -> None:
        row.status = "failed"
        row.error_message = error[:2000]
        self.db.add(row)
        self.db.commit()
