"""
Request-scoped access to services built in the application lifespan
"""

import hmac
from typing import Optional

from fastapi import Depends, Header, Request

from socialpulse.config.settings import Settings
from socialpulse.services.ai_content import ContentGenerator
from socialpulse.services.billing import BillingService
from socialpulse.services.entitlements import EntitlementGate
from socialpulse.services.lemonsqueezy_webhook import LemonSqueezyWebhookHandler
from socialpulse.services.usage_tracker import UsageTracker
from socialpulse.utils.exceptions import BillingError


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_billing_service(request: Request) -> BillingService:
    return request.app.state.billing_service


def get_webhook_handler(request: Request) -> LemonSqueezyWebhookHandler:
    return request.app.state.webhook_handler


def get_usage_tracker(request: Request) -> UsageTracker:
    return request.app.state.usage_tracker


def get_entitlement_gate(request: Request) -> EntitlementGate:
    return request.app.state.entitlement_gate


def get_content_generator(request: Request) -> ContentGenerator:
    return request.app.state.content_generator


def require_admin(
    settings: Settings = Depends(get_settings),
    x_admin_key: Optional[str] = Header(default=None),
) -> None:
    """Admin routes are closed unless ADMIN_API_KEY is set and matches"""
    expected = settings.admin_api_key
    if not expected or not x_admin_key or not hmac.compare_digest(x_admin_key.encode(), expected.encode()):
        raise BillingError("Admin access required", status_code=403)
