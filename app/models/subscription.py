"""
Provider (business) subscriptions to platform plans, billed through the gateway.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Numeric, String

from app.db.base import Base


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    name = Column(String, nullable=False)
    currency = Column(String, nullable=False, default="ZAR")
    price_monthly = Column(Numeric(12, 2), nullable=True)
    price_yearly = Column(Numeric(12, 2), nullable=True)
    paystack_plan_code_monthly = Column(String, nullable=True, index=True)
    paystack_plan_code_yearly = Column(String, nullable=True, index=True)


class ProviderSubscription(Base):
    """One logical subscription per provider (upserts key on provider_id)."""

    __tablename__ = "provider_subscriptions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    provider_id = Column(String, unique=True, nullable=False, index=True)
    plan_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending / trialing / active / past_due / cancelled
    paystack_subscription_code = Column(String, nullable=True, index=True)
    paystack_customer_code = Column(String, nullable=True)
    paystack_authorization_code = Column(String, nullable=True)
    billing_period = Column(String, nullable=False, default="monthly")  # monthly / yearly
    auto_renew = Column(Boolean, nullable=False, default=False)
    next_payment_date = Column(DateTime(timezone=True), nullable=True)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class ProviderSubscriptionOrder(Base):
    __tablename__ = "provider_subscription_orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    provider_id = Column(String, nullable=False, index=True)
    plan_id = Column(String, nullable=False)
    billing_period = Column(String, nullable=False, default="monthly")
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String, nullable=False, default="pending")  # pending / paid / failed
    paystack_reference = Column(String, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
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
