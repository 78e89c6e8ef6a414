"""
WebhookEvent: idempotency ledger for inbound gateway notifications.
One row per (source, event_id); status claimed → processed | failed.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from app.db.base import Base, JSONType


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    __table_args__ = (UniqueConstraint("source", "event_id", name="webhook_events_event_id_source_key"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    source = Column(String, nullable=False)                  # "paystack"
    event_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False)
    payload = Column(JSONType, nullable=False, default=dict)
    status = Column(String, nullable=False, default="claimed")  # claimed / processed / failed
    attempts = Column(Integer, nullable=False, default=1)
    error_message = Column(Text, nullable=True)
    claimed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
