"""Charge metadata → ChargeTarget variant resolution."""
from decimal import Decimal

import pytest

from app.settlement.errors import MalformedEvent
from app.settlement.metadata import (
    AdditionalChargePayment,
    BookingPayment,
    ChargeData,
    CustomOfferPayment,
    GiftCardOrderPayment,
    MembershipOrderPayment,
    ProviderSubscriptionOrderPayment,
    SubscriptionAuthorizationPayment,
    WalletTopupPayment,
    decode_metadata,
    parse_charge_metadata,
)


class TestPrecedence:
    def test_booking_wins_over_everything(self):
        target = parse_charge_metadata({"booking_id": "b1", "custom_offer_id": "o1", "wallet_topup_id": "w1"})
        assert isinstance(target, BookingPayment)
        assert target.booking_id == "b1"

    def test_additional_charge_needs_booking(self):
        target = parse_charge_metadata({"booking_id": "b1", "additional_charge_id": "c1"})
        assert target == AdditionalChargePayment(booking_id="b1", additional_charge_id="c1")

    @pytest.mark.parametrize(
        "metadata,variant",
        [
            ({"custom_offer_id": "o1", "wallet_topup_id": "w1"}, CustomOfferPayment),
            ({"wallet_topup_id": "w1", "gift_card_order_id": "g1"}, WalletTopupPayment),
            ({"gift_card_order_id": "g1", "membership_order_id": "m1"}, GiftCardOrderPayment),
            ({"membership_order_id": "m1", "provider_subscription_order_id": "s1"}, MembershipOrderPayment),
            ({"provider_subscription_order_id": "s1"}, ProviderSubscriptionOrderPayment),
        ],
    )
    def test_first_match_wins(self, metadata, variant):
        assert isinstance(parse_charge_metadata(metadata), variant)

    def test_subscription_authorization_kind(self):
        target = parse_charge_metadata(
            {
                "provider_subscription_order_id": "s1",
                "kind": "subscription_authorization",
                "provider_id": "p1",
                "plan_id": "plan1",
                "billing_period": "yearly",
            }
        )
        assert isinstance(target, SubscriptionAuthorizationPayment)
        assert target.billing_period == "yearly"
        assert target.customer_code is None

    @pytest.mark.parametrize("metadata", [{}, {"booking_id": ""}, {"unrelated": "x"}])
    def test_no_recognised_id(self, metadata):
        with pytest.raises(MalformedEvent):
            parse_charge_metadata(metadata)


class TestBookingPaymentFields:
    def test_amounts_and_flags(self):
        target = parse_charge_metadata(
            {
                "booking_id": "b1",
                "tip_amount": "50",
                "wallet_amount_applied": 20,
                "save_card": "true",
                "set_as_default": "true",
            }
        )
        assert target.tip_amount == Decimal("50")
        assert target.tax_amount is None
        assert target.wallet_amount_applied == Decimal("20")
        assert target.save_card is True
        assert target.set_as_default is True

    def test_flags_default_off(self):
        target = parse_charge_metadata({"booking_id": "b1", "save_card": "false"})
        assert target.save_card is False
        assert target.set_as_default is False

    def test_gift_card_quantity(self):
        target = parse_charge_metadata({"gift_card_order_id": "g1", "quantity": "3"})
        assert target.quantity == 3

    def test_gift_card_quantity_missing(self):
        target = parse_charge_metadata({"gift_card_order_id": "g1"})
        assert target.quantity is None

    @pytest.mark.parametrize("quantity", ["three", "1.5", 0, -2, [3]])
    def test_gift_card_quantity_unusable(self, quantity):
        with pytest.raises(MalformedEvent):
            parse_charge_metadata({"gift_card_order_id": "g1", "quantity": quantity})


class TestDecodeMetadata:
    def test_json_string(self):
        assert decode_metadata('{"booking_id": "b1"}') == {"booking_id": "b1"}

    @pytest.mark.parametrize("value", [None, "", "not json", "[1]", 5])
    def test_unusable_is_empty(self, value):
        assert decode_metadata(value) == {}


class TestChargeData:
    def test_minor_units_converted(self):
        charge = ChargeData.from_payload(
            {"reference": "r1", "amount": 50000, "fees": 750, "metadata": '{"booking_id": "b1"}'}
        )
        assert charge.amount == Decimal("500.00")
        assert charge.fees == Decimal("7.50")
        assert charge.net_amount == Decimal("492.50")
        assert charge.metadata == {"booking_id": "b1"}

    def test_failure_reason_fallbacks(self):
        assert ChargeData.from_payload({"message": "Declined"}).failure_reason == "Declined"
        assert ChargeData.from_payload({"gateway_response": "Insufficient"}).failure_reason == "Insufficient"
        assert ChargeData.from_payload({}).failure_reason == "paystack_charge_failed"
