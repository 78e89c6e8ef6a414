"""
Failure taxonomy for webhook ingestion.

HTTP layer:   AuthenticationFailure → 401, MalformedPayload → 400.
Handlers:     UnknownEntity / MalformedEvent → logged, event still marked processed.
              HandlerFailure (or any other exception) → event marked failed,
              charge events enqueued for reconciliation, response still 200.
"""


class SettlementError(Exception):
    """Base class for every error raised by the settlement pipeline."""


class AuthenticationFailure(SettlementError):
    """Missing or invalid gateway signature."""


class MalformedPayload(SettlementError):
    """Body is not JSON or lacks event/data."""


class MalformedEvent(SettlementError):
    """Event parsed but carries nothing we can act on (e.g. no order id in metadata).
    Re-delivery would not help, so it is not retried."""


class UnknownEntity(SettlementError):
    """Referenced booking/order/provider does not exist."""

    def __init__(self, entity: str, entity_id: str | None) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class HandlerFailure(SettlementError):
    """A critical-path step (state transition, ledger write, fulfilment) failed."""


class GiftCardExpired(SettlementError):
    """Reserved gift-card redemption could not be captured: card expired or deactivated.
    The redemption has already been voided and the balance restored."""
