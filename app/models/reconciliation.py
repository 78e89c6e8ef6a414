from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text

from app.db.base import Base


class PaymentReconciliationEntry(Base):
    """Charge events whose processing failed after the idempotency claim.
    Re-driven out-of-band by app.settlement.tasks."""

    __tablename__ = "payment_reconciliation_queue"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    booking_id = Column(String, nullable=True, index=True)
    payment_reference = Column(String, nullable=False, index=True)
    payment_provider = Column(String, nullable=False, default="paystack")
    webhook_event_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending / processing / resolved / failed
    error_message = Column(Text, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
