"""
Billing Management Service
Hosted checkout creation and subscription cancellation against LemonSqueezy
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, NamedTuple, Optional
from urllib.parse import quote

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from socialpulse.config.settings import Settings
from socialpulse.services import subscription_store
from socialpulse.services.usage_tracker import utc_now
from socialpulse.utils.exceptions import NotFoundError, UpstreamError, require_fields

logger = logging.getLogger(__name__)

JSON_API = "application/vnd.api+json"


class CheckoutSession(NamedTuple):
    checkout_url: str
    order_id: str


class BillingService:
    """Manages LemonSqueezy billing operations"""

    def __init__(self, settings: Settings, http: httpx.AsyncClient, clock: Optional[Callable[[], datetime]] = None):
        self.settings = settings
        self.http = http
        self._clock = clock or utc_now

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": JSON_API,
            "Content-Type": JSON_API,
            "Authorization": f"Bearer {self.settings.lemonsqueezy_api_key}",
        }

    def demo_checkout(self, variant_id: str, user_id: str, email: str) -> CheckoutSession:
        """Offline checkout link used when processor credentials are absent"""
        url = (
            f"https://{self.settings.lemonsqueezy_store_slug}.lemonsqueezy.com/checkout/buy/{variant_id}"
            f"?checkout[custom][user_id]={user_id}&checkout[email]={quote(email, safe='')}"
        )
        return CheckoutSession(checkout_url=url, order_id=f"demo_{uuid.uuid4().hex}")

    async def create_checkout(self, variant_id: Any, user_id: Optional[str], email: Optional[str]) -> CheckoutSession:
        """Create a hosted checkout tagged with our user id for webhook correlation"""
        require_fields(variantId=variant_id, userId=user_id, email=email)
        variant_id = str(variant_id)

        if not self.settings.checkout_configured:
            logger.info(f"Demo checkout for user {user_id}, variant {variant_id}")
            return self.demo_checkout(variant_id, user_id, email)

        body = {
            "data": {
                "type": "checkouts",
                "attributes": {
                    "checkout_data": {
                        "custom": {"user_id": user_id},
                        "email": email,
                    },
                },
                "relationships": {
                    "store": {"data": {"type": "stores", "id": str(self.settings.lemonsqueezy_store_id)}},
                    "variant": {"data": {"type": "variants", "id": variant_id}},
                },
            }
        }

        try:
            response = await self.http.post(
                f"{self.settings.lemonsqueezy_api_base}/v1/checkouts",
                json=body,
                headers=self._headers(),
                timeout=self.settings.payments_timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"LemonSqueezy checkout request failed: {e!r}")
            raise UpstreamError("Failed to create checkout") from e

        if not response.is_success:
            logger.error(f"LemonSqueezy API error: {response.status_code} {response.text}")
            raise UpstreamError("Failed to create checkout")

        try:
            data = response.json()["data"]
            session = CheckoutSession(checkout_url=data["attributes"]["url"], order_id=str(data["id"]))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Unexpected LemonSqueezy checkout response: {response.text}")
            raise UpstreamError("Failed to create checkout") from e

        logger.info(f"Created checkout {session.order_id} for user {user_id}, variant {variant_id}")
        return session

    async def cancel_subscription(self, db: AsyncSession, subscription_id: Optional[str]) -> datetime:
        """
        Cancel at period end: processor first, then the local record.

        A processor failure aborts before any local write.
        """
        require_fields(subscriptionId=subscription_id)
        subscription_id = str(subscription_id)

        if self.settings.lemonsqueezy_api_key:
            try:
                response = await self.http.delete(
                    f"{self.settings.lemonsqueezy_api_base}/v1/subscriptions/{subscription_id}",
                    headers=self._headers(),
                    timeout=self.settings.payments_timeout,
                )
            except httpx.HTTPError as e:
                logger.error(f"LemonSqueezy cancel request failed: {e!r}")
                raise UpstreamError("Failed to cancel subscription") from e

            if not response.is_success:
                logger.error(f"LemonSqueezy cancel error: {response.status_code} {response.text}")
                raise UpstreamError("Failed to cancel subscription")

        canceled_at = self._clock()
        matched = await subscription_store.flag_cancel_at_period_end(db, subscription_id, canceled_at)
        if not matched:
            await db.rollback()
            logger.warning(f"Cancel requested for unknown subscription {subscription_id}")
            raise NotFoundError(f"Subscription {subscription_id} not found")

        await db.commit()
        logger.info(f"Subscription {subscription_id} will cancel at period end")
        return canceled_at
