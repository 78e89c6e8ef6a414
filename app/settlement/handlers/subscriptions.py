"""
Provider subscription lifecycle: subscription.* and invoice.* events.

Events for one subscription can arrive in any order, so every transition checks
the current row instead of assuming a sequence. invoice.create only moves the
due date; it never touches status, so a payment_failed seen first is not undone.
"""
import logging
from decimal import Decimal

from sqlalchemy import or_

from app.core.config import settings
from app.models.ledger import PaymentTransaction
from app.models.subscription import ProviderSubscription, SubscriptionPlan
from app.models.user import Provider, User
from app.settlement.effects import non_critical
from app.settlement.events import EventKind, InboundEvent
from app.settlement.handlers.base import SettlementHandler
from app.utils.currency import format_amount, from_minor_units, to_decimal
from app.utils.dates import add_billing_period, parse_gateway_datetime, utcnow

logger = logging.getLogger(__name__)

_GATEWAY_STATUS = {
    "active": "active",
    "non-renewing": "active",
    "attention": "past_due",
    "cancelled": "cancelled",
    "complete": "cancelled",
}


def map_gateway_status(status: str | None) -> str:
    return _GATEWAY_STATUS.get((status or "").lower(), "pending")


def subscription_code_of(data: dict) -> str | None:
    nested = data.get("subscription")
    code = (nested.get("subscription_code") if isinstance(nested, dict) else None) or data.get("subscription_code")
    return str(code) if code else None


class SubscriptionLifecycleHandler(SettlementHandler):
    def __init__(self, db, **kwargs) -> None:
        super().__init__(db, **kwargs)
        self._routes = {
            EventKind.SUBSCRIPTION_CREATE: self.created,
            EventKind.SUBSCRIPTION_DISABLE: self.disabled,
            EventKind.SUBSCRIPTION_ENABLE: self.enabled,
            EventKind.SUBSCRIPTION_NOT_RENEW: self.not_renewing,
            EventKind.INVOICE_CREATE: self.invoice_created,
            EventKind.INVOICE_UPDATE: self.invoice_updated,
            EventKind.INVOICE_PAYMENT_FAILED: self.invoice_payment_failed,
        }

    def handle(self, event: InboundEvent) -> None:
        route = self._routes.get(event.kind)
        if route is None:
            logger.info("subscription_event_unhandled", extra={"event_type": event.event_type})
            return
        route(event.data)

    def _by_code(self, subscription_code: str) -> ProviderSubscription | None:
        return (
            self.db.query(ProviderSubscription)
            .filter(ProviderSubscription.paystack_subscription_code == subscription_code)
            .with_for_update()
            .one_or_none()
        )

    def _require_code(self, data: dict, event_type: str) -> str | None:
        code = subscription_code_of(data)
        if not code:
            logger.error("subscription_code_missing", extra={"event_type": event_type})
        return code

    # ------------------------------------------------------------------
    # subscription.*
    # ------------------------------------------------------------------

    def created(self, data: dict) -> ProviderSubscription | None:
        code = self._require_code(data, "subscription.create")
        if not code:
            return None
        customer = data.get("customer") or {}
        customer_code = customer.get("customer_code") or data.get("customer_code")
        plan = data.get("plan") or {}
        plan_code = plan.get("plan_code") or data.get("plan_code")

        email = customer.get("email")
        user = self.db.query(User).filter(User.email == email).one_or_none() if email else None
        if user is None:
            logger.error("subscription_customer_not_found", extra={"subscription_code": code})
            return None
        provider = self.db.query(Provider).filter(Provider.user_id == user.id).first()
        if provider is None:
            logger.error("subscription_provider_not_found", extra={"subscription_code": code, "user_id": user.id})
            return None
        plan_row = (
            self.db.query(SubscriptionPlan)
            .filter(
                or_(
                    SubscriptionPlan.paystack_plan_code_monthly == plan_code,
                    SubscriptionPlan.paystack_plan_code_yearly == plan_code,
                )
            )
            .first()
            if plan_code
            else None
        )
        if plan_row is None:
            logger.error("subscription_plan_not_found", extra={"subscription_code": code})
            return None

        sub = (
            self.db.query(ProviderSubscription)
            .filter(ProviderSubscription.provider_id == provider.id)
            .with_for_update()
            .one_or_none()
        )
        if sub is None:
            sub = ProviderSubscription(provider_id=provider.id, plan_id=plan_row.id)
            self.db.add(sub)

        now = utcnow()
        authorization = data.get("authorization") or {}
        sub.plan_id = plan_row.id
        sub.status = map_gateway_status(data.get("status"))
        sub.paystack_subscription_code = code
        sub.paystack_customer_code = customer_code
        if authorization.get("authorization_code"):
            sub.paystack_authorization_code = authorization["authorization_code"]
        sub.billing_period = "monthly" if plan_row.paystack_plan_code_monthly == plan_code else "yearly"
        sub.auto_renew = True
        sub.next_payment_date = parse_gateway_datetime(data.get("next_payment_date"))
        sub.started_at = parse_gateway_datetime(data.get("createdAt") or data.get("created_at")) or now
        if sub.status != "cancelled":
            sub.cancelled_at = None
        sub.updated_at = now
        self.db.commit()
        logger.info(
            "subscription_created",
            extra={"subscription_code": code, "provider_id": provider.id, "status": sub.status},
        )
        return sub

    def disabled(self, data: dict) -> None:
        code = self._require_code(data, "subscription.disable")
        sub = self._by_code(code) if code else None
        if sub is None:
            logger.warning("subscription_not_found", extra={"subscription_code": code, "event_type": "subscription.disable"})
            return
        now = utcnow()
        sub.status = "cancelled"
        sub.auto_renew = False
        sub.cancelled_at = now
        sub.updated_at = now
        self.db.commit()
        logger.info("subscription_disabled", extra={"subscription_code": code, "provider_id": sub.provider_id})

    def enabled(self, data: dict) -> None:
        code = self._require_code(data, "subscription.enable")
        sub = self._by_code(code) if code else None
        if sub is None:
            logger.warning("subscription_not_found", extra={"subscription_code": code, "event_type": "subscription.enable"})
            return
        sub.status = "active"
        sub.auto_renew = True
        next_payment = parse_gateway_datetime(data.get("next_payment_date"))
        if next_payment is not None:
            sub.next_payment_date = next_payment
        sub.cancelled_at = None
        sub.updated_at = utcnow()
        self.db.commit()
        logger.info("subscription_enabled", extra={"subscription_code": code, "provider_id": sub.provider_id})

    def not_renewing(self, data: dict) -> None:
        code = self._require_code(data, "subscription.not_renew")
        sub = self._by_code(code) if code else None
        if sub is None:
            logger.warning(
                "subscription_not_found", extra={"subscription_code": code, "event_type": "subscription.not_renew"}
            )
            return
        sub.auto_renew = False
        sub.updated_at = utcnow()
        self.db.commit()
        logger.info("subscription_not_renewing", extra={"subscription_code": code, "provider_id": sub.provider_id})

    # ------------------------------------------------------------------
    # invoice.*
    # ------------------------------------------------------------------

    @staticmethod
    def _invoice_code(data: dict) -> str | None:
        code = data.get("invoice_code") or data.get("code")
        return str(code) if code else None

    def _invoice_recorded(self, invoice_code: str | None, status: str) -> bool:
        if not invoice_code:
            return False
        return (
            self.db.query(PaymentTransaction.id)
            .filter(
                PaymentTransaction.reference == invoice_code,
                PaymentTransaction.status == status,
                PaymentTransaction.transaction_type == "provider_subscription_payment",
            )
            .first()
            is not None
        )

    def invoice_created(self, data: dict) -> None:
        code = self._require_code(data, "invoice.create")
        sub = self._by_code(code) if code else None
        if sub is None:
            logger.warning("subscription_not_found", extra={"subscription_code": code, "event_type": "invoice.create"})
            return
        due = parse_gateway_datetime(data.get("due_date"))
        if due is not None:
            sub.next_payment_date = due
        sub.updated_at = utcnow()
        self.db.commit()
        logger.info("subscription_invoice_created", extra={"subscription_code": code, "provider_id": sub.provider_id})

    def invoice_payment_failed(self, data: dict) -> None:
        code = self._require_code(data, "invoice.payment_failed")
        sub = self._by_code(code) if code else None
        if sub is None:
            logger.warning(
                "subscription_not_found", extra={"subscription_code": code, "event_type": "invoice.payment_failed"}
            )
            return
        invoice_code = self._invoice_code(data)
        if sub.status != "cancelled":
            sub.status = "past_due"
        sub.updated_at = utcnow()

        if not self._invoice_recorded(invoice_code, "failed"):
            amount = from_minor_units(data.get("amount") or 0)
            fees = from_minor_units(data.get("fees") or 0)
            self.ledger.record_payment(
                reference=invoice_code,
                amount=amount,
                fees=fees,
                status="failed",
                transaction_type="provider_subscription_payment",
                metadata={"subscription_code": code, "invoice_code": invoice_code, "kind": "subscription_renewal"},
            )
        self.db.commit()
        logger.info(
            "subscription_invoice_payment_failed",
            extra={"subscription_code": code, "provider_id": sub.provider_id, "status": sub.status},
        )

    def invoice_updated(self, data: dict) -> None:
        if (data.get("status") or "").lower() != "success" or not data.get("paid_at"):
            logger.info("subscription_invoice_update_noted", extra={"subscription_code": subscription_code_of(data)})
            return
        self.renewed(data)

    def renewed(self, data: dict) -> None:
        code = self._require_code(data, "invoice.update")
        sub = self._by_code(code) if code else None
        if sub is None:
            logger.warning("subscription_not_found", extra={"subscription_code": code, "event_type": "invoice.update"})
            return
        invoice_code = self._invoice_code(data)
        if self._invoice_recorded(invoice_code, "success"):
            logger.info("subscription_renewal_duplicate", extra={"subscription_code": code, "reference": invoice_code})
            self.db.rollback()
            return

        amount = from_minor_units(data.get("amount") or 0)
        fees = from_minor_units(data.get("fees") or 0)
        net = amount - fees
        now = utcnow()
        paid_at = parse_gateway_datetime(data.get("paid_at")) or now
        billing_period = sub.billing_period or "monthly"

        sub.status = "active"
        sub.last_payment_date = paid_at
        sub.expires_at = add_billing_period(now, billing_period)
        sub.next_payment_date = parse_gateway_datetime(data.get("next_payment_date")) or sub.expires_at
        sub.updated_at = now

        self.ledger.record_payment(
            reference=invoice_code,
            amount=amount,
            fees=fees,
            status="success",
            transaction_type="provider_subscription_payment",
            metadata={"subscription_code": code, "invoice_code": invoice_code, "kind": "subscription_renewal"},
        )
        self.ledger.record_finance(
            transaction_type="provider_subscription_payment",
            provider_id=sub.provider_id,
            amount=net,
            fees=fees,
            net=net,
            description="Provider subscription renewal payment",
        )
        self.db.commit()
        logger.info("subscription_renewed", extra={"subscription_code": code, "provider_id": sub.provider_id})

        self.send_renewal_notice(sub, net)

    @non_critical("renewal_notification")
    def send_renewal_notice(self, sub: ProviderSubscription, net: Decimal) -> None:
        plan = self.db.query(SubscriptionPlan).filter(SubscriptionPlan.id == sub.plan_id).one_or_none()
        provider = self.db.query(Provider).filter(Provider.id == sub.provider_id).one_or_none()
        if plan is None or provider is None or not provider.user_id:
            return
        billing_period = sub.billing_period or "monthly"
        price = plan.price_yearly if billing_period == "yearly" else plan.price_monthly
        amount = to_decimal(price) if price is not None else net
        next_payment = sub.next_payment_date
        self.notifier.send_template(
            provider.user_id,
            "subscription_renewed",
            {
                "business_name": provider.business_name or "Provider",
                "plan_name": plan.name or "Current Plan",
                "amount": format_amount(amount, plan.currency or "ZAR"),
                "billing_period": billing_period,
                "next_payment_date": next_payment.strftime("%d %b %Y") if next_payment else "",
                "app_url": settings.app_url,
                "year": str(utcnow().year),
            },
        )
