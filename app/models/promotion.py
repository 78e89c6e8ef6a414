from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, Numeric, String, UniqueConstraint

from app.db.base import Base


class Promotion(Base):
    __tablename__ = "promotions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    code = Column(String, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)


class PromotionUsage(Base):
    __tablename__ = "promotion_usage"
    __table_args__ = (UniqueConstraint("promotion_id", "booking_id", name="uq_promotion_usage_booking"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    promotion_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False)
    booking_id = Column(String, nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    used_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
