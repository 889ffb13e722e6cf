"""
Runtime configuration
Reads environment variables once per application lifespan
"""

import os
import logging
from typing import Optional

logger = logging.getLogger(__name__)

PERIOD_ALIGNMENTS = ("calendar", "billing_cycle")
WEBHOOK_FAILURE_POLICIES = ("acknowledge", "retry")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


class Settings:
    """Environment-backed settings for the billing core"""

    def __init__(self):
        # Payment processor (LemonSqueezy)
        self.lemonsqueezy_api_key = _env("LEMONSQUEEZY_API_KEY")
        self.lemonsqueezy_store_id = _env("LEMONSQUEEZY_STORE_ID")
        self.lemonsqueezy_store_slug = _env("LEMONSQUEEZY_STORE_SLUG", "socialpulse")
        self.lemonsqueezy_webhook_secret = _env("LEMONSQUEEZY_WEBHOOK_SECRET")
        self.lemonsqueezy_api_base = _env("LEMONSQUEEZY_API_BASE", "https://api.lemonsqueezy.com").rstrip("/")
        self.starter_variant_id = _env("LEMONSQUEEZY_STARTER_VARIANT_ID")
        self.pro_variant_id = _env("LEMONSQUEEZY_PRO_VARIANT_ID")
        self.payments_timeout = float(_env("PAYMENTS_TIMEOUT_SECONDS", "10"))

        # Usage metering
        self.usage_period_alignment = _env("USAGE_PERIOD_ALIGNMENT", "calendar").lower()
        self.usage_period_timezone = _env("USAGE_PERIOD_TIMEZONE", "UTC")

        # Webhook handling
        self.webhook_failure_policy = _env("WEBHOOK_FAILURE_POLICY", "acknowledge").lower()
        self.admin_api_key = _env("ADMIN_API_KEY")

        # AI content generation
        self.openai_api_key = _env("OPENAI_API_KEY")
        self.openai_model = _env("OPENAI_MODEL", "gpt-4o-mini")
        self.ai_timeout = float(_env("AI_TIMEOUT_SECONDS", "20"))

        if self.usage_period_alignment not in PERIOD_ALIGNMENTS:
            raise ValueError(
                f"USAGE_PERIOD_ALIGNMENT must be one of {PERIOD_ALIGNMENTS}, got {self.usage_period_alignment!r}"
            )
        if self.webhook_failure_policy not in WEBHOOK_FAILURE_POLICIES:
            raise ValueError(
                f"WEBHOOK_FAILURE_POLICY must be one of {WEBHOOK_FAILURE_POLICIES}, got {self.webhook_failure_policy!r}"
            )

    @property
    def checkout_configured(self) -> bool:
        return bool(self.lemonsqueezy_api_key and self.lemonsqueezy_store_id)

    @property
    def verify_webhooks(self) -> bool:
        return bool(self.lemonsqueezy_webhook_secret)

    def variant_to_plan(self) -> dict:
        """Static variant id -> plan id lookup (unset variants are skipped)"""
        return {
            str(variant): plan
            for plan, variant in (("starter", self.starter_variant_id), ("pro", self.pro_variant_id))
            if variant
        }

    def log_warnings(self) -> None:
        if not self.checkout_configured:
            logger.warning("LEMONSQUEEZY_API_KEY/LEMONSQUEEZY_STORE_ID not configured - checkout runs in demo mode")
        if not self.lemonsqueezy_api_key:
            logger.warning("LEMONSQUEEZY_API_KEY not configured - cancellations only update the local record")
        if not self.verify_webhooks:
            logger.warning(
                "LEMONSQUEEZY_WEBHOOK_SECRET not configured - webhook signatures will NOT be verified. "
                "Do not run this configuration outside local development."
            )
        if not self.openai_api_key:
            logger.warning("OPENAI_API_KEY not configured - AI generation returns fallback suggestions")
