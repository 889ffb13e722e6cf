"""
LemonSqueezy Webhook API Endpoint
Handles incoming webhook events from the payment processor
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from socialpulse.api.deps import get_webhook_handler
from socialpulse.services.lemonsqueezy_webhook import (
    OUTCOME_FAILED,
    PROCESSING_FAILED,
    LemonSqueezyWebhookHandler,
)
from socialpulse.utils.database import get_db
from socialpulse.utils.exceptions import BillingError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payments")
async def payments_webhook(
    request: Request,
    handler: LemonSqueezyWebhookHandler = Depends(get_webhook_handler),
    db: AsyncSession = Depends(get_db),
):
    """
    Receive a LemonSqueezy event.

    Signature failures are 401. A handler failure is recorded on the event row
    and then acknowledged (200) or refused (500) depending on
    WEBHOOK_FAILURE_POLICY, so the processor either stops or keeps redelivering.
    """
    payload = await request.body()
    signature = request.headers.get("X-Signature")

    outcome = await handler.ingest(db, payload, signature)

    if outcome == OUTCOME_FAILED and handler.failure_policy == "retry":
        raise BillingError(PROCESSING_FAILED, status_code=500)

    return {"received": True}
