"""
Custom offer → booking. A paid offer is turned into an ordinary booking backed by
a hidden offering row, so the rest of the platform needs no special case for it.
"""
import logging
import secrets
from datetime import timedelta

from app.models.booking import Booking, BookingServiceLine
from app.models.custom_offer import Conversation, CustomOffer, CustomRequest, Message, Offering
from app.services.ledger.service import compute_booking_split
from app.services.platform_settings.settings_service import PlatformSettingsService
from app.settlement.effects import non_critical
from app.settlement.errors import UnknownEntity
from app.settlement.handlers.base import SettlementHandler
from app.settlement.metadata import ChargeData, CustomOfferPayment
from app.utils.currency import to_decimal
from app.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)


def generate_booking_number() -> str:
    """BK-YYYYMMDD-XXXXXX"""
    return f"BK-{utcnow():%Y%m%d}-{secrets.token_hex(3).upper()}"


class CustomOfferHandler(SettlementHandler):
    def _get_offer(self, offer_id: str) -> CustomOffer:
        offer = (
            self.db.query(CustomOffer)
            .filter(CustomOffer.id == offer_id)
            .with_for_update()
            .one_or_none()
        )
        if offer is None:
            raise UnknownEntity("custom_offer", offer_id)
        return offer

    def succeeded(self, charge: ChargeData, target: CustomOfferPayment) -> Booking | None:
        offer = self._get_offer(target.custom_offer_id)
        if offer.status == "paid" and offer.booking_id:
            logger.info("custom_offer_already_paid", extra={"order_id": offer.id, "booking_id": offer.booking_id})
            self.db.rollback()
            return None

        request = self.db.query(CustomRequest).filter(CustomRequest.id == offer.request_id).one_or_none()
        if request is None:
            raise UnknownEntity("custom_request", offer.request_id)

        now = utcnow()
        price = to_decimal(offer.price)
        currency = offer.currency or "ZAR"
        duration = int(offer.duration_minutes or 60)
        location_type = request.location_type or "at_salon"

        offering = Offering(
            provider_id=request.provider_id,
            title="Custom Service",
            description=request.description,
            category_id=request.service_category_id,
            duration_minutes=duration,
            buffer_minutes=0,
            price=price,
            currency=currency,
            supports_at_home=location_type == "at_home",
            supports_at_salon=location_type == "at_salon",
            is_active=False,
        )
        self.db.add(offering)

        start = as_utc(request.preferred_start_at) or now
        booking = Booking(
            booking_number=generate_booking_number(),
            customer_id=request.customer_id,
            provider_id=request.provider_id,
            status="confirmed",
            location_type=location_type,
            scheduled_at=start,
            subtotal=price,
            total_amount=price,
            currency=currency,
            payment_status="paid",
            payment_reference=charge.reference,
            payment_date=now,
            payment_provider="paystack",
            special_requests=f"Custom order: {request.description}",
        )
        self.db.add(booking)
        self.db.flush()

        self.db.add(
            BookingServiceLine(
                booking_id=booking.id,
                offering_id=offering.id,
                staff_id=offer.staff_id,
                duration_minutes=duration,
                price=price,
                currency=currency,
                scheduled_start_at=start,
                scheduled_end_at=start + timedelta(minutes=duration),
            )
        )

        offer.status = "paid"
        offer.booking_id = booking.id
        offer.paid_at = now
        offer.updated_at = now

        rate = PlatformSettingsService(self.db).commission_rate_or_default()
        split = compute_booking_split(total=price, rate=rate)

        self.ledger.record_payment(
            booking_id=booking.id,
            reference=charge.reference,
            amount=charge.amount,
            fees=charge.fees,
            status="success",
            metadata={"custom_offer_id": offer.id, "customer_email": charge.customer_email},
        )
        self.ledger.record_finance(
            transaction_type="payment",
            booking_id=booking.id,
            provider_id=request.provider_id,
            amount=split.commission_base,
            fees=charge.fees,
            commission=split.platform_commission,
            net=split.platform_commission,
            description="Custom order payment",
        )
        self.ledger.record_finance(
            transaction_type="provider_earnings",
            booking_id=booking.id,
            provider_id=request.provider_id,
            amount=split.provider_earnings,
            net=split.provider_earnings,
            description="Provider earnings (custom order)",
        )

        request.status = "fulfilled"
        request.updated_at = now
        self.db.commit()
        logger.info(
            "custom_offer_paid",
            extra={"order_id": offer.id, "booking_id": booking.id, "reference": charge.reference},
        )

        provider_user_id = self.provider_user_id(request.provider_id)
        self.post_conversation_message(request, offer, booking, provider_user_id)
        self.notify_many(
            [request.customer_id, provider_user_id],
            "Custom Order Paid",
            "Your custom order has been paid and a booking has been created.",
            {"type": "custom_order_paid", "custom_offer_id": offer.id, "booking_id": booking.id},
            "/account-settings/bookings",
        )
        return booking

    @non_critical("conversation_message")
    def post_conversation_message(
        self,
        request: CustomRequest,
        offer: CustomOffer,
        booking: Booking,
        provider_user_id: str | None,
    ) -> Message | None:
        conversation = (
            self.db.query(Conversation)
            .filter(
                Conversation.customer_id == request.customer_id,
                Conversation.provider_id == request.provider_id,
            )
            .order_by(Conversation.created_at.asc())
            .first()
        )
        if conversation is None:
            return None
        if not conversation.booking_id:
            conversation.booking_id = booking.id
            conversation.updated_at = utcnow()

        message = None
        if provider_user_id:
            message = Message(
                conversation_id=conversation.id,
                sender_id=provider_user_id,
                sender_role="provider_owner",
                content=f"Payment received. Booking created (#{booking.booking_number}).",
                attachments=[
                    {
                        "type": "custom_offer_paid",
                        "offer_id": offer.id,
                        "booking_id": booking.id,
                        "booking_number": booking.booking_number,
                    }
                ],
                is_read=False,
            )
            self.db.add(message)
        self.db.commit()
        return message

    def failed(self, charge: ChargeData, target: CustomOfferPayment) -> None:
        offer = self._get_offer(target.custom_offer_id)
        if offer.status == "paid":
            logger.warning("custom_offer_failure_ignored_already_paid", extra={"order_id": offer.id})
            self.db.rollback()
            return
        offer.status = "pending"
        offer.payment_url = None
        offer.updated_at = utcnow()
        self.db.commit()
        logger.info("custom_offer_payment_failed", extra={"order_id": offer.id, "reference": charge.reference})
