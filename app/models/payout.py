from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Numeric, String, Text

from app.db.base import Base

PAYOUT_TERMINAL_STATUSES = frozenset({"completed", "failed"})


class Payout(Base):
    """Transfer of provider earnings. completed / failed are final."""

    __tablename__ = "payouts"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    provider_id = Column(String, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="ZAR")
    transfer_code = Column(String, nullable=True, index=True)
    payment_provider_transaction_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="processing")  # processing / completed / failed
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
