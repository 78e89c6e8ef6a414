"""
Standard booking payment: charge.success / charge.failed with metadata.booking_id.

Critical path (one commit): duplicate guard, split, booking flip, ledger rows.
After that commit, gift-card capture, card saving, promotion usage, notifications
and analytics each run as non-critical effects with their own commit.
"""
import logging
from decimal import Decimal

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError

from app.core.config import settings
from app.models.booking import Booking
from app.models.promotion import Promotion, PromotionUsage
from app.models.user import PaymentMethod
from app.services.analytics.client import EVENT_PAYMENT_FAILED, EVENT_PAYMENT_SUCCESS
from app.services.gift_cards.service import GiftCardService
from app.services.ledger.service import BookingSplit, compute_booking_split
from app.services.platform_settings.settings_service import PlatformSettingsService
from app.services.wallet.service import WalletService
from app.settlement.effects import non_critical
from app.settlement.errors import GiftCardExpired, UnknownEntity
from app.settlement.handlers.base import SettlementHandler
from app.settlement.metadata import BookingPayment, ChargeData
from app.utils.currency import to_decimal
from app.utils.dates import utcnow

logger = logging.getLogger(__name__)


def _passthrough(from_metadata: Decimal | None, from_booking) -> Decimal:
    return from_metadata if from_metadata is not None else to_decimal(from_booking)


class BookingPaymentHandler(SettlementHandler):
    def _get_booking(self, booking_id: str) -> Booking:
        booking = (
            self.db.query(Booking)
            .filter(Booking.id == booking_id)
            .with_for_update()
            .one_or_none()
        )
        if booking is None:
            raise UnknownEntity("booking", booking_id)
        return booking

    def split_for(self, booking: Booking, target: BookingPayment) -> BookingSplit:
        enabled, rate = PlatformSettingsService(self.db).commission_config()
        return compute_booking_split(
            total=booking.total_amount,
            tip=_passthrough(target.tip_amount, booking.tip_amount),
            tax=_passthrough(target.tax_amount, booking.tax_amount),
            travel_fee=_passthrough(target.travel_fee, booking.travel_fee),
            service_fee=_passthrough(target.service_fee_amount, booking.service_fee_amount),
            rate=rate,
            commission_enabled=enabled,
            commission_base=target.commission_base,
        )

    # ------------------------------------------------------------------
    # charge.success
    # ------------------------------------------------------------------

    def succeeded(self, charge: ChargeData, target: BookingPayment) -> None:
        booking = self._get_booking(target.booking_id)

        if booking.payment_status == "paid" and booking.payment_reference == charge.reference:
            logger.info(
                "booking_payment_duplicate",
                extra={"booking_id": booking.id, "reference": charge.reference},
            )
            self.db.rollback()
            return

        split = self.split_for(booking, target)

        booking.payment_status = "paid"
        booking.status = "confirmed"
        booking.payment_reference = charge.reference
        booking.payment_date = utcnow()
        booking.payment_provider = "paystack"

        self.ledger.record_payment(
            booking_id=booking.id,
            reference=charge.reference,
            amount=charge.amount,
            fees=charge.fees,
            status="success",
            metadata={
                "paystack_reference": charge.reference,
                "customer_email": charge.customer_email,
                "customer_code": charge.customer.get("customer_code"),
            },
        )
        self.ledger.record_booking_split(
            booking_id=booking.id,
            provider_id=booking.provider_id,
            booking_number=booking.booking_number,
            split=split,
            fees=charge.fees,
        )
        self.db.commit()
        logger.info(
            "booking_payment_confirmed",
            extra={
                "booking_id": booking.id,
                "reference": charge.reference,
                "amount": str(charge.amount),
                "commission": str(split.platform_commission),
                "provider_earnings": str(split.provider_earnings),
            },
        )

        self.capture_gift_card(booking)
        self.save_card(charge, target)
        self.record_promotion_usage(booking)
        self._notify_paid(booking)
        self.track(
            EVENT_PAYMENT_SUCCESS,
            {
                "portal": "client",
                "booking_id": booking.id,
                "amount": float(charge.amount),
                "currency": target.currency or booking.currency or settings.default_currency,
                "payment_method": "saved_card" if target.save_card else "new_card",
                "payment_provider": "paystack",
                "transaction_id": charge.reference,
            },
            booking.customer_id,
        )

    @non_critical("gift_card_capture")
    def capture_gift_card(self, booking: Booking) -> None:
        try:
            GiftCardService(self.db).capture_redemption(booking.id)
        except GiftCardExpired as e:
            # Redemption is already voided; the booking must stop claiming the gift-card cover.
            booking.gift_card_id = None
            booking.gift_card_amount = Decimal("0")
            logger.warning("gift_card_expired_at_capture", extra={"booking_id": booking.id, "error": str(e)})
        self.db.commit()

    @non_critical("save_card")
    def save_card(self, charge: ChargeData, target: BookingPayment) -> PaymentMethod | None:
        auth = charge.authorization
        code = auth.get("authorization_code")
        user_id = target.customer_id
        if not (target.save_card and code and auth.get("reusable") and charge.customer_email and user_id):
            return None

        if target.set_as_default:
            self.db.execute(
                sa_update(PaymentMethod)
                .where(PaymentMethod.user_id == user_id, PaymentMethod.authorization_code != code)
                .values(is_default=False)
            )

        method = (
            self.db.query(PaymentMethod)
            .filter(PaymentMethod.user_id == user_id, PaymentMethod.authorization_code == code)
            .one_or_none()
        )
        if method is None:
            method = PaymentMethod(user_id=user_id, authorization_code=code)
            self.db.add(method)
        method.provider = "paystack"
        method.email = charge.customer_email
        method.last_four = auth.get("last4")
        method.expiry_month = str(auth.get("exp_month") or "") or None
        method.expiry_year = str(auth.get("exp_year") or "") or None
        method.card_brand = auth.get("brand") or auth.get("card_type") or "unknown"
        method.is_default = target.set_as_default
        self.db.commit()
        logger.info("payment_method_saved", extra={"user_id": user_id})
        return method

    @non_critical("promotion_usage")
    def record_promotion_usage(self, booking: Booking) -> bool:
        """True when a new usage row was written; a repeat is 'already recorded', not an error."""
        discount = to_decimal(booking.promotion_discount_amount)
        if not booking.promotion_id or discount <= 0:
            return False
        try:
            self.db.add(
                PromotionUsage(
                    promotion_id=booking.promotion_id,
                    user_id=booking.customer_id,
                    booking_id=booking.id,
                    discount_amount=discount,
                    used_at=utcnow(),
                )
            )
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info("promotion_usage_already_recorded", extra={"booking_id": booking.id})
            return False
        self.db.execute(
            sa_update(Promotion)
            .where(Promotion.id == booking.promotion_id)
            .values(usage_count=Promotion.usage_count + 1)
        )
        self.db.commit()
        return True

    def _notify_paid(self, booking: Booking) -> None:
        self.notify(
            booking.customer_id,
            "Payment Confirmed",
            f"Your payment for booking {booking.booking_number} has been confirmed.",
            {"type": "payment_success", "booking_id": booking.id},
            "/account-settings/bookings",
        )
        self.notify(
            self.provider_user_id(booking.provider_id),
            "New Booking Payment",
            f"Payment received for booking {booking.booking_number}.",
            {"type": "booking_payment", "booking_id": booking.id},
            f"/provider/bookings/{booking.id}",
        )

    # ------------------------------------------------------------------
    # charge.failed
    # ------------------------------------------------------------------

    def failed(self, charge: ChargeData, target: BookingPayment) -> None:
        booking = self._get_booking(target.booking_id)

        if booking.payment_status == "paid":
            # A late failure for an earlier attempt never un-pays a booking.
            logger.warning(
                "booking_failure_ignored_already_paid",
                extra={"booking_id": booking.id, "reference": charge.reference},
            )
            self.db.rollback()
            return
        if booking.payment_status == "failed" and booking.payment_reference == charge.reference:
            logger.info("booking_failure_duplicate", extra={"booking_id": booking.id, "reference": charge.reference})
            self.db.rollback()
            return

        currency = target.currency or booking.currency or settings.default_currency
        wallet_applied = target.wallet_amount_applied
        if wallet_applied > 0 and to_decimal(booking.wallet_amount) > 0:
            WalletService(self.db).credit(
                booking.customer_id,
                wallet_applied,
                currency=currency,
                description=f"Wallet refund (payment failed) for booking {booking.booking_number}",
                reference_id=booking.id,
                reference_type="booking_payment_failed",
            )
            booking.wallet_amount = Decimal("0")

        booking.payment_status = "failed"
        booking.payment_reference = charge.reference
        booking.payment_provider = "paystack"

        GiftCardService(self.db).void_redemption(booking.id)

        self.ledger.record_payment(
            booking_id=booking.id,
            reference=charge.reference,
            amount=0,
            status="failed",
            metadata={"paystack_reference": charge.reference, "failure_reason": charge.failure_reason},
        )
        self.db.commit()
        logger.info(
            "booking_payment_failed",
            extra={"booking_id": booking.id, "reference": charge.reference, "error": charge.failure_reason},
        )

        self.notify(
            booking.customer_id,
            "Payment Failed",
            f"Your payment for booking {booking.booking_number} could not be processed. Please try again.",
            {"type": "payment_failed", "booking_id": booking.id},
            "/checkout",
        )
        self.track(
            EVENT_PAYMENT_FAILED,
            {
                "portal": "client",
                "booking_id": booking.id,
                "amount": float(target.amount_to_collect),
                "currency": currency,
                "payment_method": "saved_card" if target.save_card else "new_card",
                "payment_provider": "paystack",
                "error_code": charge.failure_reason,
            },
            booking.customer_id,
        )
