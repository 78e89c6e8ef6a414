"""Platform settings from admin: the newest active row wins."""
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.platform_settings import PlatformSettings
from app.utils.currency import to_decimal


class PlatformSettingsService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_active(self) -> PlatformSettings | None:
        return (
            self.db.query(PlatformSettings)
            .filter(PlatformSettings.is_active.is_(True))
            .order_by(PlatformSettings.created_at.desc())
            .first()
        )

    def payouts(self) -> dict[str, Any]:
        row = self.get_active()
        if row is None or not isinstance(row.settings, dict):
            return {}
        payouts = row.settings.get("payouts")
        return payouts if isinstance(payouts, dict) else {}

    def commission_config(self) -> tuple[bool, Decimal]:
        """
        (enabled, rate) for standard bookings.
        Commission is on unless explicitly disabled; a missing rate means 0.
        """
        payouts = self.payouts()
        enabled = payouts.get("commission_enabled") is not False
        if not enabled:
            return False, Decimal("0")
        return True, to_decimal(payouts.get("platform_commission_percentage"))

    def commission_rate_or_default(self) -> Decimal:
        """Rate for custom offers and additional charges, falling back to the configured default."""
        rate = self.payouts().get("platform_commission_percentage")
        if rate is None:
            return to_decimal(settings.default_commission_percentage)
        return to_decimal(rate)
