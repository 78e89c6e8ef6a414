"""
Customer wallet. Credits are a single server-side UPDATE (balance = balance + :amount)
so a top-up and a concurrent refund-to-wallet can never lose each other's write.
"""
import logging
from decimal import Decimal

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.wallet import Wallet, WalletTransaction
from app.utils.currency import quantize, to_decimal
from app.utils.dates import utcnow

logger = logging.getLogger(__name__)


class WalletService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_wallet(self, user_id: str) -> Wallet | None:
        return self.db.query(Wallet).filter(Wallet.user_id == user_id).one_or_none()

    def _ensure_wallet(self, user_id: str, currency: str) -> None:
        if self.get_wallet(user_id) is not None:
            return
        try:
            with self.db.begin_nested():
                self.db.add(Wallet(user_id=user_id, currency=currency, balance=Decimal("0")))
        except IntegrityError:
            # Created concurrently; the UPDATE below applies to that row.
            pass

    def credit(
        self,
        user_id: str,
        amount,
        currency: str | None = None,
        description: str | None = None,
        reference_id: str | None = None,
        reference_type: str | None = None,
    ) -> WalletTransaction:
        amount = quantize(to_decimal(amount))
        if amount <= 0:
            raise ValueError("wallet credit must be positive")
        currency = currency or settings.default_currency

        self._ensure_wallet(user_id, currency)
        self.db.execute(
            sa_update(Wallet)
            .where(Wallet.user_id == user_id)
            .values(balance=Wallet.balance + amount, updated_at=utcnow())
        )
        wallet = self.get_wallet(user_id)
        self.db.refresh(wallet)

        tx = WalletTransaction(
            wallet_id=wallet.id,
            user_id=user_id,
            type="credit",
            amount=amount,
            currency=currency,
            description=description,
            reference_id=reference_id,
            reference_type=reference_type,
        )
        self.db.add(tx)
        self.db.flush()
        logger.info(
            "wallet_credited",
            extra={"user_id": user_id, "amount": str(amount), "currency": currency},
        )
        return tx
