"""
API package initialization
"""

# Import all routers to make them available
from . import checkout, subscriptions, usage, lemonsqueezy_webhook, plans, ai

__all__ = ["checkout", "subscriptions", "usage", "lemonsqueezy_webhook", "plans", "ai"]
