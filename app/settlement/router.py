"""
Event router: an explicit EventKind → handler map built once per processor.
Anything the gateway adds later lands on UNHANDLED and is acknowledged.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.services.analytics.client import AnalyticsClient
from app.services.notifications.client import NotificationClient
from app.services.paystack.client import PaystackClient
from app.settlement.events import EventKind, InboundEvent
from app.settlement.handlers import ChargeDispatcher, PayoutHandler, RefundHandler, SubscriptionLifecycleHandler

logger = logging.getLogger(__name__)

GROUP_CHARGE = "charge"
GROUP_PAYOUT = "payout"
GROUP_SUBSCRIPTION = "subscription"
GROUP_REFUND = "refund"
GROUP_UNHANDLED = "unhandled"


@dataclass(frozen=True)
class RouteResult:
    group: str
    result: Any = None


class EventRouter:
    def __init__(
        self,
        db: Session,
        notifier: NotificationClient | None = None,
        analytics: AnalyticsClient | None = None,
        paystack: PaystackClient | None = None,
    ) -> None:
        deps = {"notifier": notifier, "analytics": analytics}
        self.charges = ChargeDispatcher(db, paystack=paystack, **deps)
        payouts = PayoutHandler(db, **deps)
        subscriptions = SubscriptionLifecycleHandler(db, **deps)
        refunds = RefundHandler(db, **deps)

        charge = (GROUP_CHARGE, self.charges.handle)
        payout = (GROUP_PAYOUT, payouts.handle)
        subscription = (GROUP_SUBSCRIPTION, subscriptions.handle)
        refund = (GROUP_REFUND, refunds.handle)

        self._routes: dict[EventKind, tuple[str, Callable[[InboundEvent], Any]]] = {
            EventKind.CHARGE_SUCCESS: charge,
            EventKind.CHARGE_FAILED: charge,
            EventKind.TRANSFER_SUCCESS: payout,
            EventKind.TRANSFER_FAILED: payout,
            EventKind.TRANSFER_REVERSED: payout,
            EventKind.TRANSFER_OTHER: payout,
            EventKind.SUBSCRIPTION_CREATE: subscription,
            EventKind.SUBSCRIPTION_DISABLE: subscription,
            EventKind.SUBSCRIPTION_ENABLE: subscription,
            EventKind.SUBSCRIPTION_NOT_RENEW: subscription,
            EventKind.INVOICE_CREATE: subscription,
            EventKind.INVOICE_UPDATE: subscription,
            EventKind.INVOICE_PAYMENT_FAILED: subscription,
            EventKind.REFUND_PROCESSED: refund,
            EventKind.REFUND_PENDING: refund,
            EventKind.REFUND_FAILED: refund,
            EventKind.REFUND_OTHER: refund,
            EventKind.UNHANDLED: (GROUP_UNHANDLED, self._unhandled),
        }

    def group_for(self, kind: EventKind) -> str:
        return self._routes[kind][0]

    def route(self, event: InboundEvent) -> RouteResult:
        group, handler = self._routes[event.kind]
        return RouteResult(group=group, result=handler(event))

    @staticmethod
    def _unhandled(event: InboundEvent) -> None:
        logger.info("webhook_event_unhandled", extra={"event_type": event.event_type})
