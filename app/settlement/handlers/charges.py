"""
charge.success / charge.failed: resolve the metadata to one ChargeTarget variant
and hand it to the flow that owns it. Each variant maps to a (success, failure) pair.
"""
import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.services.analytics.client import AnalyticsClient
from app.services.notifications.client import NotificationClient
from app.services.paystack.client import PaystackClient
from app.settlement.events import EventKind, InboundEvent
from app.settlement.handlers.additional_charge import AdditionalChargeHandler
from app.settlement.handlers.booking import BookingPaymentHandler
from app.settlement.handlers.custom_offer import CustomOfferHandler
from app.settlement.handlers.orders import (
    GiftCardOrderHandler,
    MembershipOrderHandler,
    ProviderSubscriptionOrderHandler,
    SubscriptionAuthorizationHandler,
    WalletTopupHandler,
)
from app.settlement.metadata import (
    AdditionalChargePayment,
    BookingPayment,
    ChargeData,
    ChargeTarget,
    CustomOfferPayment,
    GiftCardOrderPayment,
    MembershipOrderPayment,
    ProviderSubscriptionOrderPayment,
    SubscriptionAuthorizationPayment,
    WalletTopupPayment,
    parse_charge_metadata,
)

logger = logging.getLogger(__name__)


class ChargeDispatcher:
    def __init__(
        self,
        db: Session,
        notifier: NotificationClient | None = None,
        analytics: AnalyticsClient | None = None,
        paystack: PaystackClient | None = None,
    ) -> None:
        self.db = db
        deps = {"notifier": notifier, "analytics": analytics}
        self._handlers: dict[type, Any] = {
            BookingPayment: BookingPaymentHandler(db, **deps),
            AdditionalChargePayment: AdditionalChargeHandler(db, **deps),
            CustomOfferPayment: CustomOfferHandler(db, **deps),
            WalletTopupPayment: WalletTopupHandler(db, **deps),
            GiftCardOrderPayment: GiftCardOrderHandler(db, **deps),
            MembershipOrderPayment: MembershipOrderHandler(db, **deps),
            ProviderSubscriptionOrderPayment: ProviderSubscriptionOrderHandler(db, **deps),
            SubscriptionAuthorizationPayment: SubscriptionAuthorizationHandler(db, paystack=paystack, **deps),
        }

    def resolve(self, kind: EventKind, target: ChargeTarget) -> Callable[[ChargeData, ChargeTarget], Any]:
        handler = self._handlers[type(target)]
        return handler.succeeded if kind is EventKind.CHARGE_SUCCESS else handler.failed

    def handle(self, event: InboundEvent) -> Any:
        charge = ChargeData.from_payload(event.data)
        target = parse_charge_metadata(charge.metadata)
        logger.info(
            "charge_dispatched",
            extra={
                "event_type": event.event_type,
                "reference": charge.reference,
                "handler": type(target).__name__,
            },
        )
        return self.resolve(event.kind, target)(charge, target)
