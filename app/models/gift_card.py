from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text

from app.db.base import Base, JSONType


class GiftCard(Base):
    __tablename__ = "gift_cards"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    code = Column(String, unique=True, nullable=False, index=True)
    currency = Column(String, nullable=False, default="ZAR")
    initial_balance = Column(Numeric(12, 2), nullable=False, default=0)
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class GiftCardRedemption(Base):
    """Balance reserved against a booking at checkout; captured or voided by the webhook."""

    __tablename__ = "gift_card_redemptions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    gift_card_id = Column(String, nullable=False, index=True)
    booking_id = Column(String, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String, nullable=False, default="reserved")  # reserved / captured / voided
    captured_at = Column(DateTime(timezone=True), nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class GiftCardOrder(Base):
    __tablename__ = "gift_card_orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    purchaser_user_id = Column(String, nullable=True, index=True)
    recipient_email = Column(String, nullable=True)
    recipient_name = Column(String, nullable=True)
    message = Column(Text, nullable=True)
    currency = Column(String, nullable=False, default="ZAR")
    amount = Column(Numeric(12, 2), nullable=False, default=0)   # value of one card
    quantity = Column(Integer, nullable=False, default=1)
    total_amount = Column(Numeric(12, 2), nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending / paid / failed
    gift_card_id = Column(String, nullable=True)
    paystack_reference = Column(String, nullable=True)
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
