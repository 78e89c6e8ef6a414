"""Money helpers: gateway minor units ↔ Decimal, cents rounding, display strings."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Coerce an int/float/str/None from a payload or row into Decimal (None/garbage → 0)."""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def from_minor_units(amount) -> Decimal:
    """Paystack amounts are in the smallest currency unit (cents/kobo)."""
    return quantize(to_decimal(amount) / 100)


def format_amount(amount, currency: str) -> str:
    """«ZAR 1,250.00»"""
    return f"{currency} {quantize(to_decimal(amount)):,.2f}"
