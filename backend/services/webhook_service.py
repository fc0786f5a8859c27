import hashlib
import hmac
import logging
from typing import Optional

from schemas.webhook import WebhookPayload
from services.state_store import StateStore
from services.ticket_sync_service import TicketSyncService

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha1="


def verify_signature(
    raw_body: bytes, signature: Optional[str], secret: str
) -> bool:
    """Check Zammad's X-Hub-Signature (HMAC-SHA1 over the raw body)"""
    if not signature or not raw_body or not secret:
        return False
    signature = signature.strip()
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]
    expected = hmac.new(
        secret.encode("utf-8"), raw_body, hashlib.sha1
    ).hexdigest()
    return hmac.compare_digest(expected, signature.lower())


class WebhookService:
    """Dedup by delivery id, then hand the ticket to its resource lane"""

    def __init__(self, store: StateStore, ticket_sync: TicketSyncService):
        self.store = store
        self.ticket_sync = ticket_sync

    async def handle_delivery(
        self, payload: WebhookPayload, delivery_id: Optional[str] = None
    ) -> bool:
        """
        Process one webhook delivery.

        The delivery id is recorded before processing and removed again if
        processing fails, so Zammad's retry of the same delivery can run.

        Returns:
            False when the delivery was a duplicate and was skipped
        """
        if delivery_id:
            if not self.store.mark_delivery_processed(delivery_id):
                logger.debug(f"Duplicate delivery {delivery_id}, skipping")
                return False

        ticket_id = payload.ticket.id
        logger.info(
            f"Processing webhook delivery={delivery_id} ticket={ticket_id} "
            f"kind={payload.kind.value}"
        )
        try:
            await self.ticket_sync.process_ticket(
                ticket_id,
                article_sender=payload.article_sender,
                has_article=payload.article is not None,
            )
        except Exception:
            if delivery_id:
                self.store.unmark_delivery_processed(delivery_id)
                logger.warning(
                    f"Delivery {delivery_id} failed, unmarked for retry"
                )
            raise
        return True
