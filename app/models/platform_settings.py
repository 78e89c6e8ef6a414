from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String

from app.db.base import Base, JSONType


class PlatformSettings(Base):
    """Versioned platform settings from admin; the newest active row wins.
    settings["payouts"] carries commission_enabled / platform_commission_percentage."""

    __tablename__ = "platform_settings"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    settings = Column(JSONType, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
