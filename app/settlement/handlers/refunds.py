"""
Refund events. Keyed by the original transaction reference: the refund becomes a
new refunded-status row next to the original, never an edit of it.
"""
import logging

from app.models.booking import Booking
from app.models.ledger import PaymentTransaction
from app.settlement.events import EventKind, InboundEvent
from app.settlement.handlers.base import SettlementHandler
from app.utils.currency import from_minor_units, to_decimal

logger = logging.getLogger(__name__)


def original_reference(data: dict) -> str | None:
    transaction = data.get("transaction")
    nested = transaction.get("reference") if isinstance(transaction, dict) else None
    ref = data.get("transaction_reference") or nested or data.get("reference")
    return str(ref) if ref else None


class RefundHandler(SettlementHandler):
    def handle(self, event: InboundEvent) -> None:
        if event.kind is not EventKind.REFUND_PROCESSED:
            logger.info(
                "refund_event_noted",
                extra={"event_type": event.event_type, "reference": original_reference(event.data)},
            )
            return
        self.processed(event.data)

    def processed(self, data: dict) -> PaymentTransaction | None:
        reference = original_reference(data)
        if not reference:
            logger.warning("refund_without_reference")
            return None

        original = (
            self.db.query(PaymentTransaction)
            .filter(PaymentTransaction.reference == reference, PaymentTransaction.status == "success")
            .order_by(PaymentTransaction.created_at.asc())
            .first()
        )
        if original is None:
            # The refund may predate our transaction table.
            logger.warning("refund_original_not_found", extra={"reference": reference})
            return None

        already = (
            self.db.query(PaymentTransaction.id)
            .filter(PaymentTransaction.reference == reference, PaymentTransaction.status == "refunded")
            .first()
        )
        if already is not None:
            logger.info("refund_already_recorded", extra={"reference": reference})
            return None

        amount = from_minor_units(data["amount"]) if data.get("amount") else to_decimal(original.amount)
        row = self.ledger.record_payment(
            booking_id=original.booking_id,
            reference=reference,
            amount=amount,
            status="refunded",
            transaction_type="refund",
            net_amount=-amount,
            metadata={
                "original_transaction_id": original.id,
                "refund_id": data.get("id"),
                "currency": data.get("currency"),
            },
        )

        provider_id = None
        if original.booking_id:
            booking = (
                self.db.query(Booking)
                .filter(Booking.id == original.booking_id)
                .with_for_update()
                .one_or_none()
            )
            if booking is not None:
                booking.payment_status = "refunded"
                provider_id = booking.provider_id

        self.ledger.record_finance(
            transaction_type="refund",
            booking_id=original.booking_id,
            provider_id=provider_id,
            amount=amount,
            net=-amount,
            description=f"Refund for {reference}",
        )
        self.db.commit()
        logger.info(
            "refund_recorded",
            extra={"reference": reference, "booking_id": original.booking_id, "amount": str(amount)},
        )
        return row
