"""Shared plumbing for settlement handlers: session, ledger, outbound effects."""
import logging
from typing import Any

from sqlalchemy.orm import Session

from app.models.user import Provider
from app.services.analytics.client import AnalyticsClient, analytics_client
from app.services.ledger.service import LedgerService
from app.services.notifications.client import NotificationClient, notification_client
from app.settlement.effects import best_effort

logger = logging.getLogger(__name__)


class SettlementHandler:
    def __init__(
        self,
        db: Session,
        notifier: NotificationClient | None = None,
        analytics: AnalyticsClient | None = None,
    ) -> None:
        self.db = db
        self.ledger = LedgerService(db)
        self.notifier = notifier or notification_client
        self.analytics = analytics or analytics_client

    def provider_user_id(self, provider_id: str | None) -> str | None:
        if not provider_id:
            return None
        return self.db.query(Provider.user_id).filter(Provider.id == provider_id).scalar()

    def notify(
        self,
        user_id: str | None,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
        url: str | None = None,
    ) -> None:
        if not user_id:
            return
        best_effort(
            "notify",
            self.notifier.notify,
            user_id,
            {"title": title, "message": message, "data": data or {}, "url": url},
        )

    def notify_many(self, user_ids: list[str | None], title: str, message: str, data=None, url=None) -> None:
        recipients = [u for u in user_ids if u]
        if not recipients:
            return
        best_effort(
            "notify",
            self.notifier.notify_many,
            recipients,
            {"title": title, "message": message, "data": data or {}, "url": url},
        )

    def track(self, name: str, properties: dict[str, Any], user_id: str | None = None) -> None:
        best_effort("analytics", self.analytics.track, name, properties, user_id)
