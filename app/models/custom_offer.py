"""
Custom requests (customer asks a provider for a bespoke service) and the offers
that answer them. A paid offer becomes a normal booking.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text

from app.db.base import Base, JSONType


class CustomRequest(Base):
    __tablename__ = "custom_requests"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    customer_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    service_category_id = Column(String, nullable=True)
    location_type = Column(String, nullable=False, default="at_salon")
    preferred_start_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending / offered / fulfilled
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class CustomOffer(Base):
    __tablename__ = "custom_offers"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    request_id = Column(String, nullable=False, index=True)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="ZAR")
    duration_minutes = Column(Integer, nullable=False, default=60)
    staff_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending / accepted / paid
    booking_id = Column(String, nullable=True)
    payment_url = Column(String, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class Offering(Base):
    """Service catalogue entry. Custom offers get a hidden (inactive) one."""

    __tablename__ = "offerings"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    provider_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category_id = Column(String, nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=60)
    buffer_minutes = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="ZAR")
    supports_at_home = Column(Boolean, nullable=False, default=False)
    supports_at_salon = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    customer_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=False, index=True)
    booking_id = Column(String, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    conversation_id = Column(String, nullable=False, index=True)
    sender_id = Column(String, nullable=False)
    sender_role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    attachments = Column(JSONType, nullable=False, default=list)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
