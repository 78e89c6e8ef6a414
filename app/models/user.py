from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, UniqueConstraint

from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, unique=True, nullable=True, index=True)
    full_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class Provider(Base):
    """Business account owned by a user."""

    __tablename__ = "providers"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    business_name = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class PaymentMethod(Base):
    """Reusable card authorization saved at the payer's request."""

    __tablename__ = "payment_methods"
    __table_args__ = (UniqueConstraint("user_id", "authorization_code", name="uq_payment_method_authorization"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False, default="paystack")
    email = Column(String, nullable=True)
    authorization_code = Column(String, nullable=False)
    last_four = Column(String, nullable=True)
    expiry_month = Column(String, nullable=True)
    expiry_year = Column(String, nullable=True)
    card_brand = Column(String, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
