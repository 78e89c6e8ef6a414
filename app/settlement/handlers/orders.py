"""
Order flows paid through the gateway: wallet top-ups, gift-card orders,
memberships, provider subscription orders and subscription authorization charges.

Each success handler follows the same template: guard on the order's own status,
fulfil, flip the order to paid, append ledger rows, commit, then notify.
"""
import logging
from decimal import Decimal

from app.models.gift_card import GiftCardOrder
from app.models.membership import MembershipOrder, UserMembership
from app.models.subscription import ProviderSubscription, ProviderSubscriptionOrder, SubscriptionPlan
from app.models.wallet import WalletTopup
from app.services.gift_cards.service import GiftCardService
from app.services.paystack.client import PaystackClient
from app.services.wallet.service import WalletService
from app.settlement.effects import non_critical
from app.settlement.errors import HandlerFailure, MalformedEvent, UnknownEntity
from app.settlement.handlers.base import SettlementHandler
from app.settlement.metadata import (
    ChargeData,
    GiftCardOrderPayment,
    MembershipOrderPayment,
    ProviderSubscriptionOrderPayment,
    SubscriptionAuthorizationPayment,
    WalletTopupPayment,
)
from app.utils.currency import format_amount, to_decimal
from app.utils.dates import add_billing_period, add_months, parse_gateway_datetime, utcnow

logger = logging.getLogger(__name__)


def _locked(db, model, order_id: str, entity: str):
    row = db.query(model).filter(model.id == order_id).with_for_update().one_or_none()
    if row is None:
        raise UnknownEntity(entity, order_id)
    return row


class WalletTopupHandler(SettlementHandler):
    def succeeded(self, charge: ChargeData, target: WalletTopupPayment) -> None:
        topup = _locked(self.db, WalletTopup, target.wallet_topup_id, "wallet_topup")
        if topup.status == "paid":
            logger.info("wallet_topup_already_paid", extra={"order_id": topup.id})
            self.db.rollback()
            return

        currency = topup.currency or "ZAR"
        WalletService(self.db).credit(
            topup.user_id,
            charge.amount,
            currency=currency,
            description=f"Wallet top up ({format_amount(charge.amount, currency)})",
            reference_id=topup.id,
            reference_type="wallet_topup",
        )
        now = utcnow()
        topup.status = "paid"
        topup.paid_at = now
        topup.paystack_reference = charge.reference
        self.db.commit()
        logger.info(
            "wallet_topup_paid",
            extra={"order_id": topup.id, "user_id": topup.user_id, "amount": str(charge.amount)},
        )

    def failed(self, charge: ChargeData, target: WalletTopupPayment) -> None:
        topup = _locked(self.db, WalletTopup, target.wallet_topup_id, "wallet_topup")
        if topup.status == "paid":
            self.db.rollback()
            return
        topup.status = "failed"
        topup.failed_at = utcnow()
        topup.failure_reason = charge.message or charge.gateway_response or "Payment failed"
        topup.paystack_reference = charge.reference
        self.db.commit()
        logger.info("wallet_topup_failed", extra={"order_id": topup.id, "error": topup.failure_reason})


class GiftCardOrderHandler(SettlementHandler):
    def succeeded(self, charge: ChargeData, target: GiftCardOrderPayment) -> list[str]:
        order = _locked(self.db, GiftCardOrder, target.gift_card_order_id, "gift_card_order")
        if order.status == "paid" and order.gift_card_id:
            logger.info("gift_card_order_already_paid", extra={"order_id": order.id})
            self.db.rollback()
            return []

        currency = order.currency or "ZAR"
        value = to_decimal(order.amount)
        quantity = int(order.quantity or target.quantity or 1)
        total = to_decimal(order.total_amount) if order.total_amount is not None else value * quantity

        service = GiftCardService(self.db)
        cards = []
        for index in range(quantity):
            card = service.issue_card(
                value,
                currency=currency,
                metadata={
                    "source": "purchase",
                    "order_id": order.id,
                    "purchaser_user_id": order.purchaser_user_id,
                    "recipient_email": order.recipient_email,
                    "paystack_reference": charge.reference,
                    "bulk_order_index": index + 1 if quantity > 1 else None,
                    "bulk_order_total": quantity if quantity > 1 else None,
                },
            )
            if card is None:
                # Nothing is committed yet; the whole order goes to reconciliation.
                logger.error("gift_card_issue_failed", extra={"order_id": order.id, "count": index + 1})
                raise HandlerFailure(f"issued {len(cards)} of {quantity} gift cards for order {order.id}")
            cards.append(card)

        order.status = "paid"
        order.gift_card_id = cards[0].id
        order.paystack_reference = charge.reference

        self.ledger.record_payment(
            reference=charge.reference,
            amount=total,
            status="success",
            metadata={
                "kind": "gift_card_order",
                "gift_card_order_id": order.id,
                "gift_card_ids": [c.id for c in cards],
                "quantity": quantity,
            },
        )
        self.ledger.record_finance(
            transaction_type="gift_card_sale",
            amount=total,
            net=total,
            description=(
                f"Platform gift card sale ({quantity} card{'s' if quantity > 1 else ''}) "
                "- liability until redemption"
            ),
        )
        codes = [c.code for c in cards]
        self.db.commit()
        logger.info("gift_card_order_paid", extra={"order_id": order.id, "count": len(codes)})

        self.notify(
            order.purchaser_user_id,
            "Gift Card Purchased" if quantity == 1 else f"{quantity} Gift Cards Purchased",
            f"Your gift card code is {codes[0]}."
            if quantity == 1
            else f"You purchased {quantity} gift cards. Codes: {', '.join(codes)}",
            {"type": "gift_card_issued", "codes": codes, "quantity": quantity},
            "/account-settings/payments",
        )
        return codes

    def failed(self, charge: ChargeData, target: GiftCardOrderPayment) -> None:
        order = _locked(self.db, GiftCardOrder, target.gift_card_order_id, "gift_card_order")
        if order.status == "paid":
            self.db.rollback()
            return
        order.status = "failed"
        self.db.commit()
        logger.info("gift_card_order_failed", extra={"order_id": order.id, "reference": charge.reference})


class MembershipOrderHandler(SettlementHandler):
    def succeeded(self, charge: ChargeData, target: MembershipOrderPayment) -> None:
        order = _locked(self.db, MembershipOrder, target.membership_order_id, "membership_order")
        if order.status == "paid":
            logger.info("membership_order_already_paid", extra={"order_id": order.id})
            self.db.rollback()
            return

        now = utcnow()
        membership = (
            self.db.query(UserMembership)
            .filter(UserMembership.user_id == order.user_id, UserMembership.provider_id == order.provider_id)
            .one_or_none()
        )
        if membership is None:
            membership = UserMembership(user_id=order.user_id, provider_id=order.provider_id)
            self.db.add(membership)
        membership.plan_id = order.plan_id
        membership.status = "active"
        membership.started_at = now
        membership.expires_at = add_months(now, 1)
        membership.metadata_ = {"source": "purchase", "membership_order_id": order.id}
        membership.updated_at = now

        order.status = "paid"
        amount = to_decimal(order.amount)
        self.ledger.record_payment(
            reference=charge.reference,
            amount=amount,
            status="success",
            metadata={
                "kind": "membership_order",
                "membership_order_id": order.id,
                "plan_id": order.plan_id,
                "provider_id": order.provider_id,
            },
        )
        self.ledger.record_finance(
            transaction_type="membership_sale",
            provider_id=order.provider_id,
            amount=amount,
            net=Decimal("0"),
            description="Membership sale (gross)",
        )
        if order.provider_id:
            self.ledger.record_finance(
                transaction_type="provider_earnings",
                provider_id=order.provider_id,
                amount=amount,
                net=amount,
                description="Provider earnings from membership sale",
            )
        self.db.commit()
        logger.info("membership_activated", extra={"order_id": order.id, "user_id": order.user_id})

        self.notify(
            order.user_id,
            "Membership Activated",
            "Your membership has been activated.",
            {"type": "membership_activated", "provider_id": order.provider_id, "plan_id": order.plan_id},
            "/account-settings",
        )

    def failed(self, charge: ChargeData, target: MembershipOrderPayment) -> None:
        order = _locked(self.db, MembershipOrder, target.membership_order_id, "membership_order")
        if order.status == "paid":
            self.db.rollback()
            return
        order.status = "failed"
        self.db.commit()
        logger.info("membership_order_failed", extra={"order_id": order.id, "reference": charge.reference})


def _upsert_provider_subscription(db, provider_id: str, plan_id: str) -> tuple[ProviderSubscription, bool]:
    sub = (
        db.query(ProviderSubscription)
        .filter(ProviderSubscription.provider_id == provider_id)
        .with_for_update()
        .one_or_none()
    )
    if sub is not None:
        return sub, False
    sub = ProviderSubscription(provider_id=provider_id, plan_id=plan_id, status="pending")
    db.add(sub)
    return sub, True


class ProviderSubscriptionOrderHandler(SettlementHandler):
    """One-time (non-recurring) subscription purchase."""

    def succeeded(self, charge: ChargeData, target: ProviderSubscriptionOrderPayment) -> None:
        order = _locked(
            self.db, ProviderSubscriptionOrder, target.provider_subscription_order_id, "provider_subscription_order"
        )
        if order.status == "paid":
            logger.info("provider_subscription_order_already_paid", extra={"order_id": order.id})
            self.db.rollback()
            return

        now = utcnow()
        billing_period = order.billing_period or "monthly"
        order.status = "paid"
        order.paystack_reference = charge.reference
        order.paid_at = now

        sub, _ = _upsert_provider_subscription(self.db, order.provider_id, order.plan_id)
        sub.plan_id = order.plan_id
        sub.status = "active"
        sub.started_at = now
        sub.expires_at = add_billing_period(now, billing_period)
        sub.cancelled_at = None
        sub.billing_period = billing_period
        sub.auto_renew = False
        sub.updated_at = now

        self.ledger.record_payment(
            reference=charge.reference,
            amount=charge.amount,
            fees=charge.fees,
            status="success",
            metadata={
                "kind": "provider_subscription_order",
                "provider_subscription_order_id": order.id,
                "provider_id": order.provider_id,
                "plan_id": order.plan_id,
            },
        )
        self.ledger.record_finance(
            transaction_type="provider_subscription_payment",
            provider_id=order.provider_id,
            amount=charge.net_amount,
            fees=charge.fees,
            net=charge.net_amount,
            description="Provider subscription payment",
        )
        self.ledger.record_finance(
            transaction_type="provider_expense",
            provider_id=order.provider_id,
            amount=charge.amount,
            net=-charge.amount,
            description="Provider subscription fee",
        )
        self.db.commit()
        logger.info("provider_subscription_order_paid", extra={"order_id": order.id, "provider_id": order.provider_id})

    def failed(self, charge: ChargeData, target: ProviderSubscriptionOrderPayment) -> None:
        order = _locked(
            self.db, ProviderSubscriptionOrder, target.provider_subscription_order_id, "provider_subscription_order"
        )
        if order.status == "paid":
            self.db.rollback()
            return
        order.status = "failed"
        self.db.commit()
        logger.info("provider_subscription_order_failed", extra={"order_id": order.id, "reference": charge.reference})


class SubscriptionAuthorizationHandler(SettlementHandler):
    """
    First charge of a recurring subscription: it exists to capture a reusable card
    authorization. Once captured, the recurring subscription is created at the gateway.
    """

    def __init__(self, db, paystack: PaystackClient | None = None, **kwargs) -> None:
        super().__init__(db, **kwargs)
        self._paystack = paystack

    @property
    def paystack(self) -> PaystackClient:
        if self._paystack is None:
            self._paystack = PaystackClient()
        return self._paystack

    def succeeded(self, charge: ChargeData, target: SubscriptionAuthorizationPayment) -> None:
        if not (target.provider_id and target.plan_id):
            raise MalformedEvent("subscription authorization metadata lacks provider_id or plan_id")
        auth_code = charge.authorization.get("authorization_code")
        if not auth_code or not charge.authorization.get("reusable"):
            raise MalformedEvent("subscription authorization charge carried no reusable authorization")

        order = _locked(
            self.db, ProviderSubscriptionOrder, target.provider_subscription_order_id, "provider_subscription_order"
        )
        if order.status == "paid":
            logger.info("subscription_authorization_already_paid", extra={"order_id": order.id})
            self.db.rollback()
            return

        now = utcnow()
        order.status = "paid"
        order.paystack_reference = charge.reference
        order.paid_at = now

        sub, created = _upsert_provider_subscription(self.db, target.provider_id, target.plan_id)
        if created:
            sub.billing_period = target.billing_period
            sub.auto_renew = False
        sub.paystack_authorization_code = auth_code
        customer_code = target.customer_code or charge.customer.get("customer_code")
        if customer_code:
            sub.paystack_customer_code = customer_code
        sub.updated_at = now

        self.ledger.record_payment(
            reference=charge.reference,
            amount=charge.amount,
            fees=charge.fees,
            status="success",
            metadata={
                "kind": "subscription_authorization",
                "provider_subscription_order_id": order.id,
                "provider_id": target.provider_id,
                "plan_id": target.plan_id,
                "authorization_code": auth_code,
            },
        )
        self.db.commit()
        logger.info(
            "subscription_authorization_captured",
            extra={"order_id": order.id, "provider_id": target.provider_id},
        )

        self.start_recurring_subscription(charge, target, auth_code)

    def _plan_code(self, plan_id: str, billing_period: str) -> str | None:
        plan = self.db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).one_or_none()
        if plan is None:
            return None
        if billing_period == "yearly":
            return plan.paystack_plan_code_yearly
        return plan.paystack_plan_code_monthly

    @non_critical("create_gateway_subscription")
    def start_recurring_subscription(
        self, charge: ChargeData, target: SubscriptionAuthorizationPayment, auth_code: str
    ) -> bool:
        plan_code = self._plan_code(target.plan_id, target.billing_period)
        if not plan_code:
            # First charge still counts; the provider just has no recurring billing yet.
            logger.warning(
                "subscription_plan_code_missing",
                extra={"provider_id": target.provider_id, "order_id": target.provider_subscription_order_id},
            )
            return False

        sub = (
            self.db.query(ProviderSubscription)
            .filter(ProviderSubscription.provider_id == target.provider_id)
            .one()
        )
        customer_code = sub.paystack_customer_code
        if not customer_code:
            if not charge.customer_email:
                logger.warning("subscription_customer_unknown", extra={"provider_id": target.provider_id})
                return False
            customer_code = self.paystack.create_customer(
                charge.customer_email,
                " ".join(filter(None, [charge.customer.get("first_name"), charge.customer.get("last_name")])) or None,
                charge.customer.get("phone"),
            )
            sub.paystack_customer_code = customer_code

        data = self.paystack.create_subscription(customer=customer_code, plan=plan_code, authorization=auth_code)
        now = utcnow()
        sub.status = "active"
        sub.paystack_subscription_code = data.get("subscription_code")
        sub.next_payment_date = parse_gateway_datetime(data.get("next_payment_date"))
        sub.started_at = now
        sub.auto_renew = True
        sub.updated_at = now
        self.db.commit()
        logger.info(
            "gateway_subscription_created",
            extra={"provider_id": target.provider_id, "subscription_code": sub.paystack_subscription_code},
        )
        return True

    def failed(self, charge: ChargeData, target: SubscriptionAuthorizationPayment) -> None:
        ProviderSubscriptionOrderHandler(self.db, notifier=self.notifier, analytics=self.analytics).failed(
            charge,
            ProviderSubscriptionOrderPayment(provider_subscription_order_id=target.provider_subscription_order_id),
        )
