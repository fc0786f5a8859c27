import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from config import settings
from schemas.webhook import WebhookPayload
from services.sync_runtime import SyncRuntime, get_runtime
from services.webhook_service import verify_signature
from utils.constants import (
    DELIVERY_HEADER,
    EMPTY_BODY,
    INVALID_SIGNATURE,
    MALFORMED_PAYLOAD,
    MISSING_SIGNATURE,
    SIGNATURE_HEADER,
)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/zammad", status_code=status.HTTP_202_ACCEPTED)
async def zammad_webhook(
    request: Request,
    runtime: SyncRuntime = Depends(get_runtime),
):
    """
    Zammad trigger webhook.

    Verifies the HMAC-SHA1 signature over the raw body, validates the
    payload and acknowledges before any processing happens.
    """
    raw_body = await request.body()
    if not raw_body:
        raise HTTPException(status_code=400, detail=EMPTY_BODY)

    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning("Webhook without signature rejected")
        raise HTTPException(status_code=401, detail=MISSING_SIGNATURE)
    if not verify_signature(
        raw_body, signature, settings.zammad_webhook_secret
    ):
        logger.warning("Webhook with invalid signature rejected")
        raise HTTPException(status_code=401, detail=INVALID_SIGNATURE)

    try:
        payload = WebhookPayload.model_validate_json(raw_body)
    except ValidationError as e:
        logger.warning(f"Malformed webhook payload: {e.error_count()} errors")
        raise HTTPException(status_code=400, detail=MALFORMED_PAYLOAD)

    delivery_id = request.headers.get(DELIVERY_HEADER)
    runtime.submit_webhook(payload, delivery_id)
    logger.debug(
        f"Webhook accepted delivery={delivery_id} ticket={payload.ticket.id}"
    )
    return {"ok": True}
