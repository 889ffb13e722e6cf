"""
LemonSqueezy Webhook Handler
Verifies, records and applies payment processor events to subscription state
"""

import hashlib
import hmac
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from socialpulse.config.plan_limits import plan_for_variant
from socialpulse.config.settings import Settings
from socialpulse.models.webhook_event import WebhookEvent
from socialpulse.services import subscription_store
from socialpulse.services.usage_tracker import utc_now
from socialpulse.utils.database import upsert_insert
from socialpulse.utils.exceptions import NotFoundError, SignatureError, WebhookPayloadError

logger = logging.getLogger(__name__)

PROCESSING_FAILED = "Webhook processing failed"

OUTCOME_PROCESSED = "processed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_FAILED = "failed"


class ParsedEvent(NamedTuple):
    event_id: str
    event_name: str
    resource_id: str
    body: Dict[str, Any]


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """ISO 8601 from the processor (trailing Z allowed) -> aware datetime"""
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable timestamp in webhook: {value!r}")
        return None


class LemonSqueezyWebhookHandler:
    """Handles LemonSqueezy webhook events"""

    def __init__(self, settings: Settings, clock: Optional[Callable[[], datetime]] = None):
        self.webhook_secret = settings.lemonsqueezy_webhook_secret
        self.failure_policy = settings.webhook_failure_policy
        self.variant_map = settings.variant_to_plan()
        self._clock = clock or utc_now

        self.handlers = {
            "subscription_created": self.handle_subscription_upsert,
            "subscription_updated": self.handle_subscription_upsert,
            "subscription_cancelled": self.handle_subscription_cancelled,
            "subscription_payment_success": self.handle_payment_success,
            "subscription_payment_failed": self.handle_payment_failed,
            "order_created": self.handle_order_created,
        }

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> None:
        """HMAC-SHA256 hex digest of the raw body must match X-Signature"""
        if not self.webhook_secret:
            logger.warning("Webhook signature NOT verified: LEMONSQUEEZY_WEBHOOK_SECRET is not set")
            return

        digest = hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()
        if not signature or not hmac.compare_digest(digest.encode(), signature.strip().encode()):
            logger.error("Invalid webhook signature")
            raise SignatureError("Invalid signature")

    def parse_event(self, payload: bytes) -> ParsedEvent:
        try:
            body = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as e:
            logger.error(f"Webhook body is not valid JSON: {e}")
            raise WebhookPayloadError(PROCESSING_FAILED) from e

        if not isinstance(body, dict):
            logger.error("Webhook body is not a JSON object")
            raise WebhookPayloadError(PROCESSING_FAILED)

        meta = body.get("meta") or {}
        data = body.get("data") or {}
        event_name = meta.get("event_name") if isinstance(meta, dict) else None
        resource_id = data.get("id") if isinstance(data, dict) else None
        if not event_name or resource_id is None:
            logger.error("Webhook missing meta.event_name or data.id")
            raise WebhookPayloadError(PROCESSING_FAILED)

        event_id = meta.get("event_id") or hashlib.sha256(payload).hexdigest()
        return ParsedEvent(
            event_id=str(event_id),
            event_name=str(event_name),
            resource_id=str(resource_id),
            body=body,
        )

    async def ingest(self, db: AsyncSession, payload: bytes, signature: Optional[str]) -> str:
        """Full delivery path: verify, parse, record, dispatch"""
        self.verify_signature(payload, signature)
        event = self.parse_event(payload)
        logger.info(f"Processing LemonSqueezy event: {event.event_name} ({event.event_id})")

        row = await self.record_event(db, event)
        if row is None:
            logger.info(f"Duplicate delivery of processed event {event.event_id}; acknowledged")
            return OUTCOME_DUPLICATE

        return await self.process(db, row)

    async def record_event(self, db: AsyncSession, event: ParsedEvent) -> Optional[WebhookEvent]:
        """
        Persist the audit row before any handler runs.

        Returns None when the event was already processed; an existing
        unprocessed row is returned so it can be dispatched again.
        """
        await db.execute(
            upsert_insert(db, WebhookEvent)
            .values(
                event_id=event.event_id,
                event_type=event.event_name,
                resource_id=event.resource_id,
                payload=event.body,
                processed=False,
            )
            .on_conflict_do_nothing(index_elements=["event_id"])
        )
        await db.commit()

        result = await db.execute(select(WebhookEvent).where(WebhookEvent.event_id == event.event_id))
        row = result.scalar_one()
        if row.processed:
            return None
        return row

    async def process(self, db: AsyncSession, row: WebhookEvent) -> str:
        """Run the handler; its writes and processed=true commit together"""
        pk, event_id, event_name, body = row.id, row.event_id, row.event_type, row.payload
        now = self._clock()

        try:
            await self.dispatch(db, event_name, body, now)
            await db.execute(
                update(WebhookEvent)
                .where(WebhookEvent.id == pk)
                .values(processed=True, processed_at=now, error=None)
            )
            await db.commit()
        except Exception as e:
            logger.exception(f"Error handling event {event_name} ({event_id})")
            await db.rollback()
            await db.execute(
                update(WebhookEvent).where(WebhookEvent.id == pk).values(error=f"{type(e).__name__}: {e}")
            )
            await db.commit()
            return OUTCOME_FAILED

        return OUTCOME_PROCESSED

    async def dispatch(self, db: AsyncSession, event_name: str, body: Dict[str, Any], now: datetime) -> None:
        handler = self.handlers.get(event_name)
        if handler is None:
            logger.info(f"Unhandled event type: {event_name}")
            return
        await handler(db, body, now)

    async def list_unprocessed(self, db: AsyncSession, limit: int = 100) -> List[WebhookEvent]:
        result = await db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.processed.is_(False))
            .order_by(WebhookEvent.created_at, WebhookEvent.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def replay(self, db: AsyncSession, event_id: str) -> str:
        """Re-dispatch a stored event by its key; processed events are left alone"""
        result = await db.execute(select(WebhookEvent).where(WebhookEvent.event_id == event_id))
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError(f"Webhook event {event_id} not found")
        if row.processed:
            return OUTCOME_DUPLICATE
        logger.info(f"Replaying webhook event {event_id} ({row.event_type})")
        return await self.process(db, row)

    async def handle_subscription_upsert(self, db: AsyncSession, body: Dict[str, Any], now: datetime) -> None:
        """subscription_created / subscription_updated"""
        custom_data = (body.get("meta") or {}).get("custom_data") or {}
        user_id = custom_data.get("user_id")
        data = body["data"]
        if not user_id:
            logger.error(f"No user_id in custom data for subscription {data['id']}")
            return

        attributes = data.get("attributes") or {}
        plan_id = plan_for_variant(attributes.get("variant_id"), self.variant_map)
        status = attributes.get("status")
        if not status:
            raise WebhookPayloadError(f"Subscription {data['id']} is missing attributes.status")
        renews_at = _parse_timestamp(attributes.get("renews_at"))
        period_start = _parse_timestamp(attributes.get("created_at")) if renews_at else None

        user_id = str(user_id)
        if not await subscription_store.sync_profile(db, user_id, status=status, tier=plan_id):
            raise NotFoundError(f"No profile for user {user_id}")

        await subscription_store.upsert_for_user(
            db,
            user_id=user_id,
            external_id=str(data["id"]),
            plan_id=plan_id,
            status=status,
            current_period_start=period_start,
            current_period_end=renews_at,
            cancel_at_period_end=bool(attributes.get("cancelled", False)),
            now=now,
        )
        logger.info(f"Updated subscription for user {user_id}: {plan_id} ({status})")

    async def handle_subscription_cancelled(self, db: AsyncSession, body: Dict[str, Any], now: datetime) -> None:
        subscription_id = str(body["data"]["id"])
        user_ids = await subscription_store.mark_cancelled(db, subscription_id, now)
        if not user_ids:
            logger.warning(f"No subscription found for cancelled subscription {subscription_id}")
            return
        logger.info(f"Cancelled subscription {subscription_id} for user(s) {', '.join(user_ids)}")

    async def handle_payment_success(self, db: AsyncSession, body: Dict[str, Any], now: datetime) -> None:
        logger.info(f"Payment successful for subscription: {body['data']['id']}")

    async def handle_payment_failed(self, db: AsyncSession, body: Dict[str, Any], now: datetime) -> None:
        subscription_id = str(body["data"]["id"])
        logger.warning(f"Payment failed for subscription: {subscription_id}")
        user_ids = await subscription_store.mark_past_due(db, subscription_id, now)
        if not user_ids:
            logger.warning(f"No subscription found for failed payment {subscription_id}")

    async def handle_order_created(self, db: AsyncSession, body: Dict[str, Any], now: datetime) -> None:
        logger.info(f"Order created: {body['data']['id']}")
