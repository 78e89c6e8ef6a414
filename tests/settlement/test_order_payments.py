"""Non-booking charge flows: top-ups, gift cards, memberships, subscriptions, custom offers, extras."""
import re
from decimal import Decimal
from unittest.mock import patch

from app.models.booking import AdditionalCharge, Booking, BookingEvent, BookingServiceLine
from app.models.custom_offer import Conversation, CustomOffer, CustomRequest, Message, Offering
from app.models.gift_card import GiftCard, GiftCardOrder
from app.models.ledger import FinanceTransaction, PaymentTransaction
from app.models.membership import MembershipOrder, UserMembership
from app.models.reconciliation import PaymentReconciliationEntry
from app.models.subscription import ProviderSubscription, ProviderSubscriptionOrder, SubscriptionPlan
from app.models.user import Provider, User
from app.models.wallet import Wallet, WalletTopup, WalletTransaction
from app.models.webhook_event import WebhookEvent
from app.services.gift_cards.service import GiftCardService

CODE_PATTERN = re.compile(r"^[A-HJ-NP-Z2-9]{4}-[A-HJ-NP-Z2-9]{4}-[A-HJ-NP-Z2-9]{4}$")


def _charge(metadata, reference="ref_order", amount=60000, fees=0, **extra):
    return {
        "reference": reference,
        "amount": amount,
        "fees": fees,
        "customer": {"email": "buyer@example.com", "customer_code": "CUS_9"},
        "metadata": metadata,
        **extra,
    }


def _provider(db, email="owner@example.com"):
    user = User(email=email)
    db.add(user)
    db.flush()
    provider = Provider(user_id=user.id, business_name="Glow Salon")
    db.add(provider)
    db.flush()
    return provider


class TestWalletTopup:
    def test_credits_wallet_once(self, db, deliver):
        topup = WalletTopup(user_id="u1", amount=Decimal("150"))
        db.add(topup)
        db.commit()

        data = _charge({"wallet_topup_id": topup.id}, amount=15000)
        deliver("charge.success", data, event_id="evt_1")
        deliver("charge.success", data, event_id="evt_2")

        db.refresh(topup)
        assert topup.status == "paid"
        assert topup.paystack_reference == "ref_order"
        assert db.query(Wallet).one().balance == Decimal("150.00")
        assert db.query(WalletTransaction).one().reference_type == "wallet_topup"

    def test_failure_recorded(self, db, deliver):
        topup = WalletTopup(user_id="u1", amount=Decimal("150"))
        db.add(topup)
        db.commit()

        deliver("charge.failed", _charge({"wallet_topup_id": topup.id}, gateway_response="Insufficient Funds"))

        db.refresh(topup)
        assert topup.status == "failed"
        assert topup.failure_reason == "Insufficient Funds"
        assert topup.failed_at is not None


class TestGiftCardOrder:
    def test_bulk_order_mints_every_card(self, db, deliver, notifier):
        order = GiftCardOrder(purchaser_user_id="buyer", amount=Decimal("200"), quantity=3)
        db.add(order)
        db.commit()

        deliver("charge.success", _charge({"gift_card_order_id": order.id, "quantity": 3}))

        cards = db.query(GiftCard).all()
        assert len(cards) == 3
        assert len({c.code for c in cards}) == 3
        assert all(CODE_PATTERN.match(c.code) for c in cards)
        assert all(c.balance == Decimal("200.00") for c in cards)

        db.refresh(order)
        assert order.status == "paid"
        assert order.gift_card_id in {c.id for c in cards}

        sale = db.query(FinanceTransaction).one()
        assert sale.transaction_type == "gift_card_sale"
        assert sale.amount == Decimal("600.00")
        assert db.query(PaymentTransaction).one().amount == Decimal("600.00")

        notification = notifier.notify.call_args.args[1]
        assert sorted(notification["data"]["codes"]) == sorted(c.code for c in cards)

    def test_partial_issue_leaves_order_for_reconciliation(self, db, deliver):
        order = GiftCardOrder(purchaser_user_id="buyer", amount=Decimal("200"), quantity=3)
        db.add(order)
        db.commit()

        real_issue = GiftCardService.issue_card
        calls = []

        def second_one_exhausted(service, *args, **kwargs):
            calls.append(1)
            if len(calls) == 2:
                return None
            return real_issue(service, *args, **kwargs)

        with patch.object(GiftCardService, "issue_card", autospec=True, side_effect=second_one_exhausted):
            assert deliver("charge.success", _charge({"gift_card_order_id": order.id, "quantity": 3})) == {
                "received": True
            }

        db.refresh(order)
        assert order.status == "pending"
        assert order.gift_card_id is None
        assert db.query(GiftCard).count() == 0
        assert db.query(FinanceTransaction).count() == 0
        assert db.query(PaymentTransaction).count() == 0
        assert db.query(WebhookEvent).one().status == "failed"
        entry = db.query(PaymentReconciliationEntry).one()
        assert entry.payment_reference == "ref_order"

    def test_paid_order_not_reissued(self, db, deliver):
        order = GiftCardOrder(purchaser_user_id="buyer", amount=Decimal("200"), quantity=1)
        db.add(order)
        db.commit()

        deliver("charge.success", _charge({"gift_card_order_id": order.id}), event_id="evt_1")
        deliver("charge.success", _charge({"gift_card_order_id": order.id}), event_id="evt_2")

        assert db.query(GiftCard).count() == 1


class TestMembershipOrder:
    def test_activates_membership(self, db, deliver):
        provider = _provider(db)
        order = MembershipOrder(user_id="member", provider_id=provider.id, plan_id="gold", amount=Decimal("99"))
        db.add(order)
        db.commit()

        deliver("charge.success", _charge({"membership_order_id": order.id}, amount=9900))

        membership = db.query(UserMembership).one()
        assert membership.status == "active"
        assert membership.plan_id == "gold"
        assert membership.expires_at is not None
        types = {row.transaction_type: row for row in db.query(FinanceTransaction).all()}
        assert types["membership_sale"].net == Decimal("0")
        assert types["provider_earnings"].net == Decimal("99.00")


class TestProviderSubscriptionOrder:
    def test_one_time_purchase(self, db, deliver):
        provider = _provider(db)
        order = ProviderSubscriptionOrder(provider_id=provider.id, plan_id="pro", billing_period="yearly")
        db.add(order)
        db.commit()

        deliver("charge.success", _charge({"provider_subscription_order_id": order.id}, amount=120000, fees=1500))

        sub = db.query(ProviderSubscription).one()
        assert sub.status == "active"
        assert sub.billing_period == "yearly"
        assert sub.auto_renew is False
        types = {row.transaction_type: row for row in db.query(FinanceTransaction).all()}
        assert types["provider_subscription_payment"].net == Decimal("1185.00")
        assert types["provider_expense"].net == Decimal("-1200.00")


class TestSubscriptionAuthorization:
    def _setup(self, db, plan_code="PLN_monthly"):
        provider = _provider(db)
        plan = SubscriptionPlan(name="Pro", price_monthly=Decimal("300"), paystack_plan_code_monthly=plan_code)
        db.add(plan)
        db.flush()
        order = ProviderSubscriptionOrder(provider_id=provider.id, plan_id=plan.id)
        db.add(order)
        db.commit()
        metadata = {
            "provider_subscription_order_id": order.id,
            "kind": "subscription_authorization",
            "provider_id": provider.id,
            "plan_id": plan.id,
        }
        return provider, order, metadata

    def test_creates_gateway_subscription(self, db, deliver, paystack):
        provider, order, metadata = self._setup(db)
        paystack.create_subscription.return_value = {
            "subscription_code": "SUB_new",
            "next_payment_date": "2030-01-01T00:00:00.000Z",
        }

        deliver(
            "charge.success",
            _charge(metadata, amount=30000, authorization={"authorization_code": "AUTH_S", "reusable": True}),
        )

        paystack.create_subscription.assert_called_once_with(
            customer="CUS_9", plan="PLN_monthly", authorization="AUTH_S"
        )
        paystack.create_customer.assert_not_called()
        sub = db.query(ProviderSubscription).one()
        assert sub.status == "active"
        assert sub.paystack_subscription_code == "SUB_new"
        assert sub.paystack_authorization_code == "AUTH_S"
        assert sub.auto_renew is True
        db.refresh(order)
        assert order.status == "paid"

    def test_gateway_failure_keeps_captured_authorization(self, db, deliver, paystack):
        provider, order, metadata = self._setup(db)
        paystack.create_subscription.side_effect = RuntimeError("gateway down")

        deliver(
            "charge.success",
            _charge(metadata, amount=30000, authorization={"authorization_code": "AUTH_S", "reusable": True}),
        )

        db.refresh(order)
        assert order.status == "paid"
        sub = db.query(ProviderSubscription).one()
        assert sub.status == "pending"
        assert sub.paystack_authorization_code == "AUTH_S"

    def test_non_reusable_authorization_skipped(self, db, deliver, paystack):
        provider, order, metadata = self._setup(db)

        deliver("charge.success", _charge(metadata, authorization={"authorization_code": "AUTH_S"}))

        db.refresh(order)
        assert order.status == "pending"
        paystack.create_subscription.assert_not_called()


class TestCustomOffer:
    def test_paid_offer_becomes_booking(self, db, deliver, notifier):
        provider = _provider(db)
        request = CustomRequest(customer_id="cust", provider_id=provider.id, description="Bridal makeup")
        db.add(request)
        db.flush()
        offer = CustomOffer(request_id=request.id, price=Decimal("800"), duration_minutes=90, status="accepted")
        db.add(offer)
        db.add(Conversation(customer_id="cust", provider_id=provider.id))
        db.commit()

        deliver("charge.success", _charge({"custom_offer_id": offer.id}, amount=80000))

        booking = db.query(Booking).one()
        assert booking.payment_status == "paid"
        assert booking.status == "confirmed"
        assert booking.booking_number.startswith("BK-")
        assert db.query(Offering).one().is_active is False
        assert db.query(BookingServiceLine).one().duration_minutes == 90

        db.refresh(offer)
        db.refresh(request)
        assert offer.status == "paid"
        assert offer.booking_id == booking.id
        assert request.status == "fulfilled"

        types = {row.transaction_type: row for row in db.query(FinanceTransaction).all()}
        # No configured rate: the default 15% applies.
        assert types["payment"].commission == Decimal("120.00")
        assert types["provider_earnings"].net == Decimal("680.00")
        assert db.query(Message).one().sender_role == "provider_owner"
        notifier.notify_many.assert_called_once()

    def test_failed_offer_reopens(self, db, deliver):
        offer = CustomOffer(request_id="r1", price=Decimal("800"), status="accepted", payment_url="https://pay")
        db.add(offer)
        db.commit()

        deliver("charge.failed", _charge({"custom_offer_id": offer.id}))

        db.refresh(offer)
        assert offer.status == "pending"
        assert offer.payment_url is None


class TestAdditionalCharge:
    def test_extra_paid(self, db, deliver):
        provider = _provider(db)
        booking = Booking(
            booking_number="BK-1",
            customer_id="cust",
            provider_id=provider.id,
            total_amount=Decimal("500"),
            payment_status="paid",
        )
        db.add(booking)
        db.flush()
        extra = AdditionalCharge(booking_id=booking.id, amount=Decimal("100"), description="Extra nail art")
        db.add(extra)
        db.commit()

        data = _charge({"booking_id": booking.id, "additional_charge_id": extra.id}, amount=10000)
        deliver("charge.success", data, event_id="evt_1")
        deliver("charge.success", data, event_id="evt_2")

        db.refresh(booking)
        db.refresh(extra)
        assert extra.status == "paid"
        assert booking.total_amount == Decimal("600.00")
        types = {row.transaction_type: row for row in db.query(FinanceTransaction).all()}
        assert types["additional_charge_payment"].commission == Decimal("15.00")
        assert types["provider_earnings"].net == Decimal("85.00")
        assert db.query(BookingEvent).one().event_type == "additional_payment_paid"
