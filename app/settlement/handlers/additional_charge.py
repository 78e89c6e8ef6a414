"""Extra charges (damages, extras) raised against an already-paid booking."""
import logging

from app.models.booking import AdditionalCharge, Booking, BookingEvent
from app.services.platform_settings.settings_service import PlatformSettingsService
from app.settlement.errors import UnknownEntity
from app.settlement.handlers.base import SettlementHandler
from app.settlement.metadata import AdditionalChargePayment, ChargeData
from app.utils.currency import format_amount, quantize, to_decimal
from app.utils.dates import utcnow

logger = logging.getLogger(__name__)


class AdditionalChargeHandler(SettlementHandler):
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

    def _get_charge(self, target: AdditionalChargePayment) -> AdditionalCharge:
        charge = (
            self.db.query(AdditionalCharge)
            .filter(
                AdditionalCharge.id == target.additional_charge_id,
                AdditionalCharge.booking_id == target.booking_id,
            )
            .with_for_update()
            .one_or_none()
        )
        if charge is None:
            raise UnknownEntity("additional_charge", target.additional_charge_id)
        return charge

    def succeeded(self, charge: ChargeData, target: AdditionalChargePayment) -> None:
        booking = self._get_booking(target.booking_id)
        extra = self._get_charge(target)
        if extra.status == "paid":
            logger.info("additional_charge_already_paid", extra={"booking_id": booking.id, "order_id": extra.id})
            self.db.rollback()
            return

        # Commission applies to the incremental amount only.
        net_amount = charge.net_amount
        rate = PlatformSettingsService(self.db).commission_rate_or_default()
        commission = quantize(net_amount * rate / 100)
        earnings = net_amount - commission

        now = utcnow()
        extra.status = "paid"
        extra.paid_at = now
        booking.total_amount = to_decimal(booking.total_amount) + to_decimal(extra.amount)
        booking.updated_at = now

        self.ledger.record_payment(
            booking_id=booking.id,
            reference=charge.reference,
            amount=charge.amount,
            fees=charge.fees,
            status="success",
            transaction_type="additional_charge",
            metadata={"additional_charge_id": extra.id, "customer_email": charge.customer_email},
        )
        self.ledger.record_finance(
            transaction_type="additional_charge_payment",
            booking_id=booking.id,
            provider_id=booking.provider_id,
            amount=net_amount,
            fees=charge.fees,
            commission=commission,
            net=commission,
            description=f"Additional charge payment for booking {booking.booking_number}",
        )
        self.ledger.record_finance(
            transaction_type="provider_earnings",
            booking_id=booking.id,
            provider_id=booking.provider_id,
            amount=earnings,
            net=earnings,
            description=f"Provider earnings (additional charge) for booking {booking.booking_number}",
        )
        self.db.add(
            BookingEvent(
                booking_id=booking.id,
                event_type="additional_payment_paid",
                event_data={"charge_id": extra.id, "reference": charge.reference, "amount": str(charge.amount)},
                created_by=booking.customer_id,
            )
        )
        self.db.commit()
        logger.info(
            "additional_charge_paid",
            extra={"booking_id": booking.id, "order_id": extra.id, "amount": str(charge.amount)},
        )

        self.notify(
            booking.customer_id,
            "Additional Payment Confirmed",
            f"Your additional payment of {format_amount(charge.amount, booking.currency or 'ZAR')} was successful.",
            {"type": "additional_payment_paid", "booking_id": booking.id, "charge_id": extra.id},
            f"/account-settings/bookings/{booking.id}",
        )
        self.notify(
            self.provider_user_id(booking.provider_id),
            "Additional Payment Received",
            f"Additional payment received for booking {booking.booking_number}.",
            {"type": "additional_payment_paid_provider", "booking_id": booking.id, "charge_id": extra.id},
            f"/provider/bookings/{booking.id}",
        )

    def failed(self, charge: ChargeData, target: AdditionalChargePayment) -> None:
        booking = self._get_booking(target.booking_id)
        status = (
            self.db.query(AdditionalCharge.status)
            .filter(AdditionalCharge.id == target.additional_charge_id)
            .scalar()
        )
        if status == "paid":
            logger.warning(
                "additional_charge_failure_ignored_already_paid",
                extra={"booking_id": booking.id, "order_id": target.additional_charge_id},
            )
            self.db.rollback()
            return

        self.ledger.record_payment(
            booking_id=booking.id,
            reference=charge.reference,
            amount=0,
            status="failed",
            transaction_type="additional_charge",
            metadata={"additional_charge_id": target.additional_charge_id, "failure_reason": charge.failure_reason},
        )
        self.db.add(
            BookingEvent(
                booking_id=booking.id,
                event_type="additional_payment_failed",
                event_data={"charge_id": target.additional_charge_id, "reference": charge.reference},
                created_by=booking.customer_id,
            )
        )
        self.db.commit()
        logger.info(
            "additional_charge_failed",
            extra={"booking_id": booking.id, "order_id": target.additional_charge_id, "error": charge.failure_reason},
        )

        self.notify(
            booking.customer_id,
            "Additional Payment Failed",
            "Your additional payment could not be processed. Please try again.",
            {"type": "additional_payment_failed", "booking_id": booking.id, "charge_id": target.additional_charge_id},
            f"/account-settings/bookings/{booking.id}",
        )
