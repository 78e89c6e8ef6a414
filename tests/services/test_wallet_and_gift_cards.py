"""Wallet credits and gift-card reservations."""
from datetime import timedelta
from decimal import Decimal

import pytest

from app.models.gift_card import GiftCard, GiftCardRedemption
from app.models.wallet import Wallet, WalletTransaction
from app.services.gift_cards.service import CODE_ALPHABET, GiftCardService, generate_code
from app.services.wallet.service import WalletService
from app.settlement.errors import GiftCardExpired
from app.utils.dates import utcnow


class TestWalletService:
    def test_credit_creates_wallet(self, db):
        WalletService(db).credit("u1", Decimal("25.50"), currency="ZAR", reference_type="wallet_topup")
        db.commit()
        assert db.query(Wallet).one().balance == Decimal("25.50")

    def test_credits_accumulate(self, db):
        service = WalletService(db)
        service.credit("u1", 10)
        service.credit("u1", Decimal("5.25"))
        db.commit()
        assert db.query(Wallet).one().balance == Decimal("15.25")
        assert db.query(WalletTransaction).count() == 2

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_rejected(self, db, amount):
        with pytest.raises(ValueError):
            WalletService(db).credit("u1", amount)


class TestGiftCardService:
    def test_code_format(self):
        code = generate_code()
        groups = code.split("-")
        assert [len(g) for g in groups] == [4, 4, 4]
        assert all(ch in CODE_ALPHABET for ch in "".join(groups))

    def test_issue_card(self, db):
        card = GiftCardService(db).issue_card(Decimal("200"), currency="ZAR", metadata={"source": "purchase"})
        db.commit()
        assert card.balance == Decimal("200.00")
        assert card.initial_balance == Decimal("200.00")
        assert card.expires_at is not None

    def _reserve(self, db, **card_fields):
        card = GiftCard(code=generate_code(), initial_balance=Decimal("100"), balance=Decimal("60"), **card_fields)
        db.add(card)
        db.flush()
        db.add(GiftCardRedemption(gift_card_id=card.id, booking_id="b1", amount=Decimal("40")))
        db.commit()
        return card

    def test_capture(self, db):
        self._reserve(db)
        assert GiftCardService(db).capture_redemption("b1") == 1
        assert db.query(GiftCardRedemption).one().status == "captured"

    def test_lapsed_card_voided_on_capture(self, db):
        card = self._reserve(db, expires_at=utcnow() - timedelta(days=1))
        with pytest.raises(GiftCardExpired):
            GiftCardService(db).capture_redemption("b1")
        db.commit()
        assert db.query(GiftCardRedemption).one().status == "voided"
        db.refresh(card)
        assert card.balance == Decimal("100.00")

    def test_void_returns_balance(self, db):
        card = self._reserve(db)
        assert GiftCardService(db).void_redemption("b1") == 1
        db.commit()
        db.refresh(card)
        assert card.balance == Decimal("100.00")
