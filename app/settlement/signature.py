"""
Webhook signature check: hex HMAC-SHA512 of the exact raw body, keyed with the
Paystack secret key. Must run on the raw bytes; re-serialising parsed JSON changes
key order/whitespace and breaks the digest.
"""
import hashlib
import hmac
import logging

from app.core.config import settings
from app.settlement.errors import AuthenticationFailure
from app.utils.metrics import webhook_signature_rejected_total

logger = logging.getLogger(__name__)


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None = None) -> None:
    """Raise AuthenticationFailure unless signature matches raw_body."""
    if not signature or not signature.strip():
        webhook_signature_rejected_total.inc()
        logger.warning("webhook_missing_signature")
        raise AuthenticationFailure("missing signature")

    expected = compute_signature(raw_body, secret or settings.paystack_secret_key)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        webhook_signature_rejected_total.inc()
        logger.warning("webhook_invalid_signature", extra={"error": signature[:8] + "..."})
        raise AuthenticationFailure("invalid signature")
