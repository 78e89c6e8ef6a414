"""
Append-only money tables.
payment_transactions: one row per monetary movement seen at the gateway.
finance_transactions: platform/provider ledger split of those movements.
Rows are never updated after insert; a refund is a new row.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Numeric, String, Text

from app.db.base import Base, JSONType


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    booking_id = Column(String, nullable=True, index=True)
    reference = Column(String, nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    fees = Column(Numeric(12, 2), nullable=False, default=0)
    net_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String, nullable=False)                  # success / failed / refunded
    provider = Column(String, nullable=False, default="paystack")
    transaction_type = Column(String, nullable=False, default="charge")
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class FinanceTransaction(Base):
    __tablename__ = "finance_transactions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    booking_id = Column(String, nullable=True, index=True)
    provider_id = Column(String, nullable=True, index=True)
    # payment / provider_earnings / service_fee / tip / tax / travel_fee / refund /
    # gift_card_sale / membership_sale / provider_subscription_payment / provider_expense /
    # additional_charge_payment
    transaction_type = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    fees = Column(Numeric(12, 2), nullable=False, default=0)
    commission = Column(Numeric(12, 2), nullable=False, default=0)
    net = Column(Numeric(12, 2), nullable=False, default=0)
    description = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
