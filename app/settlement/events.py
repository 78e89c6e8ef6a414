"""
Inbound gateway event: parsing and classification.
Known event types form a closed enum; anything else is UNHANDLED (or the generic
member of a known family) so new gateway event types never break ingestion.
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel

from app.settlement.errors import MalformedPayload


class EventKind(str, Enum):
    CHARGE_SUCCESS = "charge.success"
    CHARGE_FAILED = "charge.failed"
    TRANSFER_SUCCESS = "transfer.success"
    TRANSFER_FAILED = "transfer.failed"
    TRANSFER_REVERSED = "transfer.reversed"
    TRANSFER_OTHER = "transfer.*"
    SUBSCRIPTION_CREATE = "subscription.create"
    SUBSCRIPTION_DISABLE = "subscription.disable"
    SUBSCRIPTION_ENABLE = "subscription.enable"
    SUBSCRIPTION_NOT_RENEW = "subscription.not_renew"
    INVOICE_CREATE = "invoice.create"
    INVOICE_UPDATE = "invoice.update"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    REFUND_PROCESSED = "refund.processed"
    REFUND_PENDING = "refund.pending"
    REFUND_FAILED = "refund.failed"
    REFUND_OTHER = "refund.*"
    UNHANDLED = "unhandled"

    @classmethod
    def from_event_type(cls, event_type: str) -> "EventKind":
        normalized = (event_type or "").strip().lower()
        if normalized in _ALIASES:
            return _ALIASES[normalized]
        for member in cls:
            if member.value == normalized and not member.value.endswith("*"):
                return member
        if normalized.startswith("transfer."):
            return cls.TRANSFER_OTHER
        if normalized.startswith("refund."):
            return cls.REFUND_OTHER
        return cls.UNHANDLED

    @property
    def is_charge(self) -> bool:
        return self in (EventKind.CHARGE_SUCCESS, EventKind.CHARGE_FAILED)


_ALIASES = {
    "charge.succeeded": EventKind.CHARGE_SUCCESS,
}

# Fields in `data` that identify the underlying object, in preference order
_ID_FIELDS = ("reference", "transfer_code", "subscription_code", "invoice_code")


class InboundEvent(BaseModel):
    event_type: str
    kind: EventKind
    data: dict[str, Any]
    provider_event_id: str | None = None

    model_config = {"frozen": True}

    @property
    def reference(self) -> str | None:
        ref = self.data.get("reference")
        return str(ref) if ref else None


def derive_event_id(body: dict[str, Any], event_type: str, data: dict[str, Any]) -> str | None:
    """
    Top-level `id` when the gateway sends one; otherwise scope the object's own id
    (or reference/transfer/subscription/invoice code) by event type, so that e.g.
    charge.success and refund.processed for the same reference stay distinct.
    None means the event cannot be tracked for idempotency.
    """
    top_level = body.get("id")
    if top_level not in (None, ""):
        return str(top_level)
    object_id = data.get("id")
    if object_id not in (None, ""):
        return f"{event_type}:{object_id}"
    for field in _ID_FIELDS:
        value = data.get(field)
        if value:
            return f"{event_type}:{value}"
    return None


def parse_event(raw_body: bytes) -> InboundEvent:
    """Decode the raw webhook body. Raises MalformedPayload on anything unusable."""
    try:
        body = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedPayload(f"invalid JSON: {e}") from e

    if not isinstance(body, dict):
        raise MalformedPayload("payload must be a JSON object")

    event_type = body.get("event")
    data = body.get("data")
    if not isinstance(event_type, str) or not event_type.strip():
        raise MalformedPayload("missing event")
    if not isinstance(data, dict):
        raise MalformedPayload("missing data")

    return InboundEvent(
        event_type=event_type,
        kind=EventKind.from_event_type(event_type),
        data=data,
        provider_event_id=derive_event_id(body, event_type, data),
    )
