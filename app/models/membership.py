from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Numeric, String, UniqueConstraint

from app.db.base import Base, JSONType


class MembershipOrder(Base):
    __tablename__ = "membership_orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=True, index=True)
    plan_id = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="ZAR")
    status = Column(String, nullable=False, default="pending")  # pending / paid / failed
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


class UserMembership(Base):
    """One membership per (user, provider)."""

    __tablename__ = "user_memberships"
    __table_args__ = (UniqueConstraint("user_id", "provider_id", name="uq_user_membership_provider"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=True)
    plan_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    started_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
