"""Booking charge.success / charge.failed end to end through the processor."""
from datetime import timedelta
from decimal import Decimal

import pytest

from app.models.booking import Booking
from app.models.gift_card import GiftCard, GiftCardRedemption
from app.models.ledger import FinanceTransaction, PaymentTransaction
from app.models.platform_settings import PlatformSettings
from app.models.promotion import Promotion, PromotionUsage
from app.models.user import PaymentMethod, Provider, User
from app.models.wallet import Wallet, WalletTransaction
from app.services.analytics.client import EVENT_PAYMENT_FAILED, EVENT_PAYMENT_SUCCESS
from app.utils.dates import utcnow


@pytest.fixture
def booking(db):
    provider_user = User(email="salon@example.com", full_name="Salon Owner")
    customer = User(email="client@example.com", full_name="Client")
    db.add_all([provider_user, customer])
    db.flush()
    provider = Provider(user_id=provider_user.id, business_name="Glow Salon")
    db.add(provider)
    db.flush()
    booking = Booking(
        booking_number="BK-20250101-ABC123",
        customer_id=customer.id,
        provider_id=provider.id,
        subtotal=Decimal("450"),
        total_amount=Decimal("500"),
        tip_amount=Decimal("50"),
    )
    db.add(booking)
    db.add(PlatformSettings(settings={"payouts": {"platform_commission_percentage": 15}}))
    db.commit()
    return booking


def _charge(booking, reference="ref_500", **metadata):
    return {
        "id": 1001,
        "reference": reference,
        "amount": 50000,
        "fees": 750,
        "currency": "ZAR",
        "customer": {"email": "client@example.com", "customer_code": "CUS_1"},
        "authorization": {
            "authorization_code": "AUTH_1",
            "reusable": True,
            "last4": "4081",
            "exp_month": "12",
            "exp_year": "2030",
            "brand": "visa",
        },
        "metadata": {"booking_id": booking.id, "customer_id": booking.customer_id, **metadata},
    }


def _finance(db, booking_id):
    rows = db.query(FinanceTransaction).filter(FinanceTransaction.booking_id == booking_id).all()
    return {row.transaction_type: row for row in rows}


class TestBookingPaid:
    def test_flip_and_split(self, db, deliver, booking, notifier, analytics):
        assert deliver("charge.success", _charge(booking, tip_amount=50)) == {"received": True}

        db.refresh(booking)
        assert booking.payment_status == "paid"
        assert booking.status == "confirmed"
        assert booking.payment_reference == "ref_500"
        assert booking.payment_provider == "paystack"

        payment = db.query(PaymentTransaction).one()
        assert payment.amount == Decimal("500.00")
        assert payment.fees == Decimal("7.50")
        assert payment.net_amount == Decimal("492.50")
        assert payment.status == "success"

        finance = _finance(db, booking.id)
        assert set(finance) == {"payment", "provider_earnings", "tip"}
        assert finance["payment"].amount == Decimal("450.00")
        assert finance["payment"].commission == Decimal("67.50")
        assert finance["provider_earnings"].net == Decimal("432.50")
        assert finance["tip"].net == Decimal("0")
        assert finance["payment"].commission + finance["provider_earnings"].net == Decimal("500.00")

        assert notifier.notify.call_count == 2
        analytics.track.assert_called_once()
        assert analytics.track.call_args.args[0] == EVENT_PAYMENT_SUCCESS

    def test_redelivery_is_noop(self, db, deliver, booking):
        deliver("charge.success", _charge(booking), event_id="evt_1")
        deliver("charge.success", _charge(booking), event_id="evt_1")

        assert db.query(PaymentTransaction).count() == 1
        assert db.query(FinanceTransaction).count() == 3

    def test_same_reference_new_event_id_is_noop(self, db, deliver, booking):
        deliver("charge.success", _charge(booking), event_id="evt_1")
        deliver("charge.success", _charge(booking), event_id="evt_2")

        assert db.query(PaymentTransaction).count() == 1

    def test_missing_booking_is_skipped(self, db, deliver, booking):
        data = _charge(booking)
        data["metadata"]["booking_id"] = "does-not-exist"
        assert deliver("charge.success", data, event_id="evt_1") == {"received": True}
        assert db.query(PaymentTransaction).count() == 0

    def test_saves_default_card(self, db, deliver, booking):
        db.add(PaymentMethod(user_id=booking.customer_id, authorization_code="OLD", is_default=True))
        db.commit()

        deliver("charge.success", _charge(booking, save_card=True, set_as_default=True))

        methods = {m.authorization_code: m for m in db.query(PaymentMethod).all()}
        assert methods["AUTH_1"].is_default is True
        assert methods["AUTH_1"].last_four == "4081"
        assert methods["OLD"].is_default is False

    def test_promotion_usage_recorded_once(self, db, deliver, booking):
        promotion = Promotion(code="WELCOME", usage_count=0)
        db.add(promotion)
        db.flush()
        booking.promotion_id = promotion.id
        booking.promotion_discount_amount = Decimal("25")
        db.commit()

        deliver("charge.success", _charge(booking))

        assert db.query(PromotionUsage).count() == 1
        db.refresh(promotion)
        assert promotion.usage_count == 1

    def test_gift_card_captured(self, db, deliver, booking):
        card = GiftCard(code="AAAA-BBBB-CCCC", initial_balance=Decimal("100"), balance=Decimal("0"))
        db.add(card)
        db.flush()
        db.add(GiftCardRedemption(gift_card_id=card.id, booking_id=booking.id, amount=Decimal("100")))
        db.commit()

        deliver("charge.success", _charge(booking))

        assert db.query(GiftCardRedemption).one().status == "captured"

    @pytest.mark.parametrize(
        "card_state",
        [
            {"expires_at": utcnow() - timedelta(days=1)},
            {"is_active": False},
        ],
    )
    def test_lapsed_gift_card_released_booking_still_paid(self, db, deliver, booking, card_state):
        card = GiftCard(
            code="GGGG-HHHH-JJJJ",
            initial_balance=Decimal("100"),
            balance=Decimal("0"),
            **card_state,
        )
        db.add(card)
        db.flush()
        db.add(GiftCardRedemption(gift_card_id=card.id, booking_id=booking.id, amount=Decimal("100")))
        booking.gift_card_id = card.id
        booking.gift_card_amount = Decimal("100")
        db.commit()

        assert deliver("charge.success", _charge(booking), event_id="evt_1") == {"received": True}

        db.refresh(booking)
        db.refresh(card)
        assert booking.payment_status == "paid"
        assert booking.gift_card_id is None
        assert booking.gift_card_amount == Decimal("0")
        assert card.balance == Decimal("100.00")
        assert db.query(GiftCardRedemption).one().status == "voided"
        assert db.query(PaymentTransaction).count() == 1

    def test_notification_failure_does_not_undo_payment(self, db, deliver, booking, notifier):
        notifier.notify.side_effect = RuntimeError("notifications down")

        deliver("charge.success", _charge(booking))

        db.refresh(booking)
        assert booking.payment_status == "paid"
        assert db.query(PaymentTransaction).count() == 1


class TestBookingFailed:
    def test_marks_failed_and_refunds_wallet(self, db, deliver, booking, analytics):
        booking.wallet_amount = Decimal("40")
        db.commit()
        data = _charge(booking, reference="ref_fail", wallet_amount_applied=40, amount_to_collect=460)
        data["message"] = "Declined"

        deliver("charge.failed", data)

        db.refresh(booking)
        assert booking.payment_status == "failed"
        assert booking.wallet_amount == Decimal("0")
        wallet = db.query(Wallet).filter(Wallet.user_id == booking.customer_id).one()
        assert wallet.balance == Decimal("40.00")
        tx = db.query(WalletTransaction).one()
        assert tx.reference_type == "booking_payment_failed"

        failed = db.query(PaymentTransaction).one()
        assert failed.status == "failed"
        assert failed.amount == Decimal("0")
        assert failed.metadata_["failure_reason"] == "Declined"
        assert analytics.track.call_args.args[0] == EVENT_PAYMENT_FAILED

    def test_repeat_failure_refunds_once(self, db, deliver, booking):
        booking.wallet_amount = Decimal("40")
        db.commit()
        data = _charge(booking, reference="ref_fail", wallet_amount_applied=40)

        deliver("charge.failed", data, event_id="evt_a")
        deliver("charge.failed", data, event_id="evt_b")

        assert db.query(WalletTransaction).count() == 1
        assert db.query(PaymentTransaction).count() == 1

    def test_voids_gift_card_reservation(self, db, deliver, booking):
        card = GiftCard(code="DDDD-EEEE-FFFF", initial_balance=Decimal("100"), balance=Decimal("60"))
        db.add(card)
        db.flush()
        db.add(GiftCardRedemption(gift_card_id=card.id, booking_id=booking.id, amount=Decimal("40")))
        db.commit()

        deliver("charge.failed", _charge(booking, reference="ref_fail"))

        assert db.query(GiftCardRedemption).one().status == "voided"
        db.refresh(card)
        assert card.balance == Decimal("100.00")

    def test_late_failure_never_unpays(self, db, deliver, booking):
        booking.payment_status = "paid"
        booking.payment_reference = "ref_500"
        booking.payment_date = utcnow()
        db.commit()

        deliver("charge.failed", _charge(booking, reference="ref_old_attempt"))

        db.refresh(booking)
        assert booking.payment_status == "paid"
        assert db.query(PaymentTransaction).count() == 0
