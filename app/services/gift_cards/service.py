"""
Gift cards: minting codes for paid orders and settling checkout reservations.

A reservation (gift_card_redemptions.status=reserved) holds balance against a
booking until the payment webhook either captures it (charge succeeded) or voids
it (charge failed / card lapsed), which returns the amount to the card.
"""
import logging
import secrets
from datetime import timedelta

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.gift_card import GiftCard, GiftCardRedemption
from app.settlement.errors import GiftCardExpired
from app.utils.currency import quantize, to_decimal
from app.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)

# No 0/O/1/I so codes survive being read aloud
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CARD_VALIDITY = timedelta(days=365)


def generate_code() -> str:
    """XXXX-XXXX-XXXX"""
    chars = "".join(secrets.choice(CODE_ALPHABET) for _ in range(12))
    return f"{chars[0:4]}-{chars[4:8]}-{chars[8:12]}"


class GiftCardService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def issue_card(
        self,
        amount,
        currency: str | None = None,
        metadata: dict | None = None,
        attempts: int | None = None,
    ) -> GiftCard | None:
        """Mint one card, retrying on code collision. None when every attempt collided."""
        amount = quantize(to_decimal(amount))
        attempts = attempts or settings.gift_card_code_attempts
        for _ in range(attempts):
            card = GiftCard(
                code=generate_code(),
                currency=currency or settings.default_currency,
                initial_balance=amount,
                balance=amount,
                is_active=True,
                expires_at=utcnow() + CARD_VALIDITY,
                metadata_=metadata or {},
            )
            try:
                with self.db.begin_nested():
                    self.db.add(card)
                return card
            except IntegrityError:
                logger.warning("gift_card_code_collision")
        logger.error("gift_card_issue_exhausted", extra={"count": attempts})
        return None

    def _reserved(self, booking_id: str) -> list[GiftCardRedemption]:
        return (
            self.db.query(GiftCardRedemption)
            .filter(
                GiftCardRedemption.booking_id == booking_id,
                GiftCardRedemption.status == "reserved",
            )
            .all()
        )

    def _restore_balance(self, redemption: GiftCardRedemption) -> None:
        self.db.execute(
            sa_update(GiftCard)
            .where(GiftCard.id == redemption.gift_card_id)
            .values(balance=GiftCard.balance + to_decimal(redemption.amount))
        )

    def _void(self, redemption: GiftCardRedemption) -> None:
        redemption.status = "voided"
        redemption.voided_at = utcnow()
        self._restore_balance(redemption)

    def capture_redemption(self, booking_id: str) -> int:
        """
        Capture every reserved redemption for the booking. Returns how many were captured.
        If a card lapsed since checkout the reservations are voided and GiftCardExpired is raised.
        """
        redemptions = self._reserved(booking_id)
        if not redemptions:
            return 0

        now = utcnow()
        lapsed = []
        for redemption in redemptions:
            card = self.db.query(GiftCard).filter(GiftCard.id == redemption.gift_card_id).one_or_none()
            expires_at = as_utc(card.expires_at) if card else None
            if card is None or not card.is_active or (expires_at is not None and expires_at <= now):
                lapsed.append(redemption)

        if lapsed:
            for redemption in redemptions:
                self._void(redemption)
            self.db.flush()
            raise GiftCardExpired(f"gift card expired or no longer active for booking {booking_id}")

        for redemption in redemptions:
            redemption.status = "captured"
            redemption.captured_at = now
        self.db.flush()
        logger.info("gift_card_redemption_captured", extra={"booking_id": booking_id, "count": len(redemptions)})
        return len(redemptions)

    def void_redemption(self, booking_id: str) -> int:
        redemptions = self._reserved(booking_id)
        for redemption in redemptions:
            self._void(redemption)
        if redemptions:
            self.db.flush()
            logger.info("gift_card_redemption_voided", extra={"booking_id": booking_id, "count": len(redemptions)})
        return len(redemptions)
