"""
Payout (transfer) events. A payout is found by transfer_code or, failing that, by
the gateway's transaction id, since different subtypes fill different fields.
completed and failed are terminal.
"""
import logging

from app.models.payout import PAYOUT_TERMINAL_STATUSES, Payout
from app.settlement.events import EventKind, InboundEvent
from app.settlement.handlers.base import SettlementHandler
from app.utils.currency import format_amount
from app.utils.dates import utcnow

logger = logging.getLogger(__name__)


class PayoutHandler(SettlementHandler):
    def find_payout(self, data: dict) -> Payout | None:
        transfer_code = data.get("transfer_code")
        if transfer_code:
            payout = (
                self.db.query(Payout)
                .filter(Payout.transfer_code == str(transfer_code))
                .with_for_update()
                .one_or_none()
            )
            if payout is not None:
                return payout
        transaction_id = data.get("id")
        if transaction_id not in (None, ""):
            return (
                self.db.query(Payout)
                .filter(Payout.payment_provider_transaction_id == str(transaction_id))
                .with_for_update()
                .one_or_none()
            )
        return None

    def handle(self, event: InboundEvent) -> None:
        data = event.data
        transfer_code = data.get("transfer_code")
        if event.kind is EventKind.TRANSFER_OTHER:
            logger.info("transfer_event_noted", extra={"event_type": event.event_type, "transfer_code": transfer_code})
            return

        payout = self.find_payout(data)
        if payout is None:
            logger.warning("payout_not_found", extra={"event_type": event.event_type, "transfer_code": transfer_code})
            return

        if payout.status in PAYOUT_TERMINAL_STATUSES:
            logger.info(
                "payout_terminal_ignored",
                extra={"transfer_code": payout.transfer_code, "status": payout.status, "event_type": event.event_type},
            )
            self.db.rollback()
            return

        now = utcnow()
        if event.kind is EventKind.TRANSFER_SUCCESS:
            payout.status = "completed"
            payout.completed_at = now
            title, message = (
                "Payout Completed",
                f"Your payout of {format_amount(payout.amount, payout.currency or 'ZAR')} has been sent.",
            )
        else:
            payout.status = "failed"
            payout.failed_at = now
            if event.kind is EventKind.TRANSFER_REVERSED:
                payout.failure_reason = "reversed"
            else:
                payout.failure_reason = data.get("reason") or data.get("gateway_response") or "transfer_failed"
            title, message = (
                "Payout Failed",
                f"Your payout of {format_amount(payout.amount, payout.currency or 'ZAR')} could not be completed.",
            )
        if transfer_code and not payout.transfer_code:
            payout.transfer_code = str(transfer_code)
        self.db.commit()
        logger.info(
            "payout_status_updated",
            extra={"transfer_code": payout.transfer_code, "provider_id": payout.provider_id, "status": payout.status},
        )

        self.notify(
            self.provider_user_id(payout.provider_id),
            title,
            message,
            {"type": f"payout_{payout.status}", "payout_id": payout.id},
            "/provider/finance/payouts",
        )
