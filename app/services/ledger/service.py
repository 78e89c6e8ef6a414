"""
Ledger writer: commission/earnings split and append-only money rows.

Rows in payment_transactions and finance_transactions are only ever inserted.
State changes live on the owning aggregate (booking, order), never on a ledger row.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.models.ledger import FinanceTransaction, PaymentTransaction
from app.utils.currency import quantize, to_decimal
from app.utils.metrics import ledger_rows_total

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class BookingSplit:
    total: Decimal
    tip: Decimal
    tax: Decimal
    travel_fee: Decimal
    service_fee: Decimal
    commission_base: Decimal
    commission_rate: Decimal
    platform_commission: Decimal
    provider_earnings: Decimal

    @property
    def accounted_total(self) -> Decimal:
        """commission + earnings + service fee + tax; equals total when nothing leaked."""
        return self.platform_commission + self.provider_earnings + self.service_fee + self.tax


def compute_booking_split(
    total,
    tip=ZERO,
    tax=ZERO,
    travel_fee=ZERO,
    service_fee=ZERO,
    rate=ZERO,
    commission_enabled: bool = True,
    commission_base=None,
) -> BookingSplit:
    """
    Tip, tax, travel fee and service fee pass through to the provider or a third
    party, so commission is charged on what is left. Provider earnings get the
    travel fee and tip back on top of the post-commission base.
    """
    total = quantize(to_decimal(total))
    tip = quantize(to_decimal(tip))
    tax = quantize(to_decimal(tax))
    travel_fee = quantize(to_decimal(travel_fee))
    service_fee = quantize(to_decimal(service_fee))
    rate = to_decimal(rate) if commission_enabled else ZERO

    if commission_base is None:
        base = total - tip - tax - travel_fee - service_fee
    else:
        base = to_decimal(commission_base)
    base = quantize(base)

    commission = quantize(base * rate / 100) if rate > 0 else ZERO
    earnings = quantize(base - commission + travel_fee + tip)

    return BookingSplit(
        total=total,
        tip=tip,
        tax=tax,
        travel_fee=travel_fee,
        service_fee=service_fee,
        commission_base=base,
        commission_rate=rate,
        platform_commission=commission,
        provider_earnings=earnings,
    )


class LedgerService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def record_payment(
        self,
        *,
        reference: str | None,
        amount,
        fees=ZERO,
        status: str,
        booking_id: str | None = None,
        transaction_type: str = "charge",
        metadata: dict[str, Any] | None = None,
        net_amount=None,
    ) -> PaymentTransaction:
        amount = quantize(to_decimal(amount))
        fees = quantize(to_decimal(fees))
        row = PaymentTransaction(
            booking_id=booking_id,
            reference=reference,
            amount=amount,
            fees=fees,
            net_amount=quantize(to_decimal(net_amount)) if net_amount is not None else amount - fees,
            status=status,
            provider="paystack",
            transaction_type=transaction_type,
            metadata_=metadata or {},
        )
        self.db.add(row)
        self.db.flush()
        ledger_rows_total.labels(table="payment_transactions", transaction_type=transaction_type).inc()
        return row

    def record_finance(
        self,
        *,
        transaction_type: str,
        amount,
        net,
        booking_id: str | None = None,
        provider_id: str | None = None,
        fees=ZERO,
        commission=ZERO,
        description: str | None = None,
    ) -> FinanceTransaction:
        row = FinanceTransaction(
            booking_id=booking_id,
            provider_id=provider_id,
            transaction_type=transaction_type,
            amount=quantize(to_decimal(amount)),
            fees=quantize(to_decimal(fees)),
            commission=quantize(to_decimal(commission)),
            net=quantize(to_decimal(net)),
            description=description,
        )
        self.db.add(row)
        self.db.flush()
        ledger_rows_total.labels(table="finance_transactions", transaction_type=transaction_type).inc()
        return row

    def record_booking_split(
        self,
        *,
        booking_id: str,
        provider_id: str | None,
        booking_number: str,
        split: BookingSplit,
        fees=ZERO,
    ) -> list[FinanceTransaction]:
        """payment + provider_earnings always; service_fee/travel_fee when positive; tip/tax when non-zero."""
        rows = [
            self.record_finance(
                transaction_type="payment",
                booking_id=booking_id,
                provider_id=provider_id,
                amount=split.commission_base,
                fees=fees,
                commission=split.platform_commission,
                net=split.platform_commission,
                description=f"Payment for booking {booking_number}",
            ),
            self.record_finance(
                transaction_type="provider_earnings",
                booking_id=booking_id,
                provider_id=provider_id,
                amount=split.provider_earnings,
                net=split.provider_earnings,
                description=f"Provider earnings for booking {booking_number}",
            ),
        ]
        if split.service_fee > 0:
            rows.append(
                self.record_finance(
                    transaction_type="service_fee",
                    booking_id=booking_id,
                    provider_id=provider_id,
                    amount=split.service_fee,
                    net=split.service_fee,
                    description=f"Service fee for booking {booking_number}",
                )
            )
        # Reporting rows: tip and travel fee are already inside provider earnings,
        # tax is remitted elsewhere.
        for transaction_type, amount in (
            ("tip", split.tip),
            ("tax", split.tax),
            ("travel_fee", split.travel_fee),
        ):
            if amount == 0:
                continue
            rows.append(
                self.record_finance(
                    transaction_type=transaction_type,
                    booking_id=booking_id,
                    provider_id=provider_id,
                    amount=amount,
                    net=ZERO,
                    description=f"{transaction_type.replace('_', ' ').capitalize()} for booking {booking_number}",
                )
            )
        logger.info(
            "booking_split_recorded",
            extra={
                "booking_id": booking_id,
                "provider_id": provider_id,
                "rows": len(rows),
                "commission": str(split.platform_commission),
                "provider_earnings": str(split.provider_earnings),
            },
        )
        return rows
