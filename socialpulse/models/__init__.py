"""
Model package initialization
"""

from .profile import Profile, PlanTier, SubscriptionStatus
from .subscription import Subscription
from .usage import UsageRecord
from .webhook_event import WebhookEvent

__all__ = [
    # Core models
    "Profile",
    "Subscription",
    "UsageRecord",
    "WebhookEvent",

    # Enums
    "PlanTier",
    "SubscriptionStatus",
]
