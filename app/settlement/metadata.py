"""
Charge payload normalisation and metadata discrimination.

The gateway echoes back the metadata bag we attached when initiating the payment.
Exactly one kind of id in it says what the money was for; parse_charge_metadata
turns that open map into one variant of ChargeTarget so handlers never re-inspect
the bag to find out which flow they are in.

Precedence (first match wins):
    booking_id (+ additional_charge_id → AdditionalChargePayment)
    custom_offer_id → wallet_topup_id → gift_card_order_id → membership_order_id
    → provider_subscription_order_id (+ kind=subscription_authorization)
"""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Union

from pydantic import BaseModel, Field

from app.settlement.errors import MalformedEvent
from app.utils.currency import from_minor_units, to_decimal

logger = logging.getLogger(__name__)


def _optional_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return to_decimal(value)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class ChargeData(BaseModel):
    """Fields every charge handler needs, with amounts already in currency units."""

    reference: str | None = None
    amount: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    currency: str | None = None
    customer: dict[str, Any] = Field(default_factory=dict)
    authorization: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    message: str | None = None
    gateway_response: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def net_amount(self) -> Decimal:
        return self.amount - self.fees

    @property
    def failure_reason(self) -> str:
        return self.message or self.gateway_response or "paystack_charge_failed"

    @property
    def customer_email(self) -> str | None:
        return self.customer.get("email")

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ChargeData":
        return cls(
            reference=str(data["reference"]) if data.get("reference") else None,
            amount=from_minor_units(data.get("amount") or 0),
            fees=from_minor_units(data.get("fees") or 0),
            currency=data.get("currency"),
            customer=data.get("customer") or {},
            authorization=data.get("authorization") or {},
            metadata=decode_metadata(data.get("metadata")),
            message=data.get("message"),
            gateway_response=data.get("gateway_response"),
            raw=data,
        )


def decode_metadata(metadata: Any) -> dict[str, Any]:
    """Metadata can arrive as an object or as a JSON-encoded string."""
    if isinstance(metadata, dict):
        return metadata
    if isinstance(metadata, str) and metadata.strip():
        try:
            decoded = json.loads(metadata)
        except (json.JSONDecodeError, TypeError, ValueError):
            logger.warning("charge_metadata_not_json")
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


# ----- Variants -----


class BookingPayment(BaseModel):
    booking_id: str
    customer_id: str | None = None
    tip_amount: Decimal | None = None
    tax_amount: Decimal | None = None
    travel_fee: Decimal | None = None
    service_fee_amount: Decimal | None = None
    commission_base: Decimal | None = None
    wallet_amount_applied: Decimal = Decimal("0")
    amount_to_collect: Decimal = Decimal("0")
    save_card: bool = False
    set_as_default: bool = False
    currency: str | None = None

    model_config = {"frozen": True}


class AdditionalChargePayment(BaseModel):
    booking_id: str
    additional_charge_id: str

    model_config = {"frozen": True}


class CustomOfferPayment(BaseModel):
    custom_offer_id: str

    model_config = {"frozen": True}


class WalletTopupPayment(BaseModel):
    wallet_topup_id: str

    model_config = {"frozen": True}


class GiftCardOrderPayment(BaseModel):
    gift_card_order_id: str
    quantity: int | None = None

    model_config = {"frozen": True}


class MembershipOrderPayment(BaseModel):
    membership_order_id: str

    model_config = {"frozen": True}


class ProviderSubscriptionOrderPayment(BaseModel):
    provider_subscription_order_id: str

    model_config = {"frozen": True}


class SubscriptionAuthorizationPayment(BaseModel):
    provider_subscription_order_id: str
    provider_id: str | None = None
    plan_id: str | None = None
    billing_period: str = "monthly"
    customer_code: str | None = None

    model_config = {"frozen": True}


ChargeTarget = Union[
    BookingPayment,
    AdditionalChargePayment,
    CustomOfferPayment,
    WalletTopupPayment,
    GiftCardOrderPayment,
    MembershipOrderPayment,
    ProviderSubscriptionOrderPayment,
    SubscriptionAuthorizationPayment,
]


def _id(metadata: dict[str, Any], key: str) -> str | None:
    value = metadata.get(key)
    if value in (None, ""):
        return None
    return str(value)


def _quantity(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        raise MalformedEvent(f"gift card order quantity is not a number: {value!r}")
    if quantity < 1:
        raise MalformedEvent(f"gift card order quantity must be positive: {quantity}")
    return quantity


def parse_charge_metadata(metadata: dict[str, Any]) -> ChargeTarget:
    """Resolve the metadata bag to exactly one variant. Raises MalformedEvent if none matches."""
    booking_id = _id(metadata, "booking_id")
    if booking_id:
        charge_id = _id(metadata, "additional_charge_id")
        if charge_id:
            return AdditionalChargePayment(booking_id=booking_id, additional_charge_id=charge_id)
        return BookingPayment(
            booking_id=booking_id,
            customer_id=_id(metadata, "customer_id"),
            tip_amount=_optional_decimal(metadata.get("tip_amount")),
            tax_amount=_optional_decimal(metadata.get("tax_amount")),
            travel_fee=_optional_decimal(metadata.get("travel_fee")),
            service_fee_amount=_optional_decimal(metadata.get("service_fee_amount")),
            commission_base=_optional_decimal(metadata.get("commission_base")),
            wallet_amount_applied=to_decimal(metadata.get("wallet_amount_applied")),
            amount_to_collect=to_decimal(metadata.get("amount_to_collect")),
            save_card=_truthy(metadata.get("save_card")),
            set_as_default=_truthy(metadata.get("set_as_default")),
            currency=metadata.get("currency"),
        )

    offer_id = _id(metadata, "custom_offer_id")
    if offer_id:
        return CustomOfferPayment(custom_offer_id=offer_id)

    topup_id = _id(metadata, "wallet_topup_id")
    if topup_id:
        return WalletTopupPayment(wallet_topup_id=topup_id)

    gift_order_id = _id(metadata, "gift_card_order_id")
    if gift_order_id:
        return GiftCardOrderPayment(
            gift_card_order_id=gift_order_id,
            quantity=_quantity(metadata.get("quantity")),
        )

    membership_order_id = _id(metadata, "membership_order_id")
    if membership_order_id:
        return MembershipOrderPayment(membership_order_id=membership_order_id)

    sub_order_id = _id(metadata, "provider_subscription_order_id")
    if sub_order_id:
        if metadata.get("kind") == "subscription_authorization":
            return SubscriptionAuthorizationPayment(
                provider_subscription_order_id=sub_order_id,
                provider_id=_id(metadata, "provider_id"),
                plan_id=_id(metadata, "plan_id"),
                billing_period=metadata.get("billing_period") or "monthly",
                customer_code=_id(metadata, "customer_code"),
            )
        return ProviderSubscriptionOrderPayment(provider_subscription_order_id=sub_order_id)

    raise MalformedEvent("charge metadata carries no recognised order id")
