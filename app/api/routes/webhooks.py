"""
Paystack webhook endpoint. The signature is checked against the raw request
bytes before anything is parsed; the JSON is never re-serialised for the check.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.schemas.webhooks import WebhookAck, WebhookError
from app.settlement.errors import AuthenticationFailure, MalformedPayload
from app.settlement.processor import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

_ERROR_RESPONSES = {401: {"model": WebhookError}, 400: {"model": WebhookError}}


def signature_from(request: Request) -> str | None:
    return request.headers.get(settings.webhook_signature_header) or request.headers.get("X-Signature")


@router.post("/webhook", response_model=WebhookAck, responses=_ERROR_RESPONSES)
@router.post("/payments/webhook", response_model=WebhookAck, responses=_ERROR_RESPONSES)
async def paystack_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAck:
    raw_body = await request.body()
    try:
        await run_in_threadpool(WebhookProcessor(db).process, raw_body, signature_from(request))
    except AuthenticationFailure as e:
        raise HTTPException(status_code=401, detail=str(e))
    except MalformedPayload as e:
        logger.warning("webhook_malformed_payload", extra={"error": str(e)})
        raise HTTPException(status_code=400, detail=str(e))
    return WebhookAck()
