"""
Admin Webhooks API endpoints
Inspect and replay webhook events that failed processing
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from socialpulse.api.deps import get_webhook_handler, require_admin
from socialpulse.services.lemonsqueezy_webhook import LemonSqueezyWebhookHandler
from socialpulse.utils.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/webhooks", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("")
async def list_webhooks(
    limit: int = 100,
    handler: LemonSqueezyWebhookHandler = Depends(get_webhook_handler),
    db: AsyncSession = Depends(get_db),
):
    """Unprocessed events, oldest first"""
    events = await handler.list_unprocessed(db, limit=limit)
    return {
        "events": [
            {
                "eventId": event.event_id,
                "eventType": event.event_type,
                "resourceId": event.resource_id,
                "error": event.error,
                "createdAt": event.created_at.isoformat() if event.created_at else None,
            }
            for event in events
        ]
    }


@router.post("/{event_id}/replay")
async def replay_webhook(
    event_id: str,
    handler: LemonSqueezyWebhookHandler = Depends(get_webhook_handler),
    db: AsyncSession = Depends(get_db),
):
    outcome = await handler.replay(db, event_id)
    logger.info(f"Admin replay of {event_id}: {outcome}")
    return {"eventId": event_id, "outcome": outcome}
