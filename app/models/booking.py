"""
Booking aggregate: owned by the booking subsystem.
This service reads it and flips payment_status (pending → paid → refunded, pending → failed).
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text

from app.db.base import Base, JSONType


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    booking_number = Column(String, nullable=False, default="")
    customer_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="pending")
    location_type = Column(String, nullable=False, default="at_salon")
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    tip_amount = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    travel_fee = Column(Numeric(12, 2), nullable=False, default=0)
    service_fee_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="ZAR")
    payment_status = Column(String, nullable=False, default="pending")  # pending / paid / failed / refunded
    payment_reference = Column(String, nullable=True, index=True)
    payment_provider = Column(String, nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    gift_card_id = Column(String, nullable=True)
    gift_card_amount = Column(Numeric(12, 2), nullable=False, default=0)
    wallet_amount = Column(Numeric(12, 2), nullable=False, default=0)
    promotion_id = Column(String, nullable=True)
    promotion_discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    special_requests = Column(Text, nullable=True)
    loyalty_points_earned = Column(Integer, nullable=False, default=0)
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


class BookingServiceLine(Base):
    __tablename__ = "booking_services"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    booking_id = Column(String, nullable=False, index=True)
    offering_id = Column(String, nullable=False)
    staff_id = Column(String, nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=60)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="ZAR")
    scheduled_start_at = Column(DateTime(timezone=True), nullable=False)
    scheduled_end_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class BookingEvent(Base):
    """Booking timeline entry."""

    __tablename__ = "booking_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    booking_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False)
    event_data = Column(JSONType, nullable=False, default=dict)
    created_by = Column(String, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class AdditionalCharge(Base):
    """Extra charge raised against an already-paid booking (damages, extras)."""

    __tablename__ = "additional_charges"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    booking_id = Column(String, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending / paid
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
