"""
Plan Limits Configuration
Defines price and monthly feature limits for each subscription tier
"""

from decimal import Decimal
from typing import Dict, Any, List, Optional
from socialpulse.models.profile import PlanTier

# Sentinel limit meaning "no cap"
UNLIMITED = -1

# Metered feature keys
FEATURE_SOCIAL_ACCOUNTS = "socialAccounts"
FEATURE_SCHEDULED_POSTS = "scheduledPosts"
FEATURE_AI_GENERATIONS = "aiGenerations"
FEATURE_TEAM_MEMBERS = "teamMembers"

FEATURE_KEYS = (
    FEATURE_SOCIAL_ACCOUNTS,
    FEATURE_SCHEDULED_POSTS,
    FEATURE_AI_GENERATIONS,
    FEATURE_TEAM_MEMBERS,
)

# Plan catalog, fixed at deploy time
PLANS: Dict[str, Dict[str, Any]] = {
    PlanTier.FREE.value: {
        "name": "Free",
        "price_month_usd": Decimal("0.00"),
        "features": [
            "2 social accounts",
            "10 scheduled posts per month",
            "5 AI generations per month",
        ],
        "limits": {
            FEATURE_SOCIAL_ACCOUNTS: 2,
            FEATURE_SCHEDULED_POSTS: 10,
            FEATURE_AI_GENERATIONS: 5,
            FEATURE_TEAM_MEMBERS: 1,
        },
    },
    PlanTier.STARTER.value: {
        "name": "Starter",
        "price_month_usd": Decimal("19.00"),
        "features": [
            "5 social accounts",
            "100 scheduled posts per month",
            "50 AI generations per month",
            "Hashtag research",
        ],
        "limits": {
            FEATURE_SOCIAL_ACCOUNTS: 5,
            FEATURE_SCHEDULED_POSTS: 100,
            FEATURE_AI_GENERATIONS: 50,
            FEATURE_TEAM_MEMBERS: 1,
        },
    },
    PlanTier.PRO.value: {
        "name": "Pro",
        "price_month_usd": Decimal("49.00"),
        "features": [
            "15 social accounts",
            "Unlimited scheduled posts",
            "Unlimited AI generations",
            "Team collaboration (5 seats)",
        ],
        "limits": {
            FEATURE_SOCIAL_ACCOUNTS: 15,
            FEATURE_SCHEDULED_POSTS: UNLIMITED,
            FEATURE_AI_GENERATIONS: UNLIMITED,
            FEATURE_TEAM_MEMBERS: 5,
        },
    },
}

# Percentage of a limit at which usage is reported as "near_limit"
NEAR_LIMIT_THRESHOLD = 80.0


def normalize_tier(plan_tier: Optional[str]) -> str:
    """Map any stored tier value onto a catalog key, falling back to free"""
    if not plan_tier:
        return PlanTier.FREE.value
    tier = str(plan_tier).strip().lower()
    return tier if tier in PLANS else PlanTier.FREE.value


def get_plan(plan_tier: Optional[str]) -> Dict[str, Any]:
    """Get the plan for a tier; unknown or missing tiers get the free plan"""
    tier = normalize_tier(plan_tier)
    return {"id": tier, **PLANS[tier]}


def get_limit_for_feature(plan_tier: Optional[str], feature_key: str) -> int:
    """Get a specific feature limit (0 for features the plan does not list)"""
    return get_plan(plan_tier)["limits"].get(feature_key, 0)


def is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED


def list_plans() -> List[Dict[str, Any]]:
    return [get_plan(tier) for tier in PLANS]


def calculate_usage_percentage(current: int, limit: int) -> float:
    """Calculate usage as percentage of limit"""
    if limit == UNLIMITED:
        return 0.0
    if limit == 0:
        return 100.0 if current > 0 else 0.0
    return (current / limit) * 100


def usage_status(current: int, limit: int) -> str:
    """ok | near_limit | at_limit, as shown on the usage indicator"""
    if limit == UNLIMITED:
        return "ok"
    if current >= limit:
        return "at_limit"
    if calculate_usage_percentage(current, limit) >= NEAR_LIMIT_THRESHOLD:
        return "near_limit"
    return "ok"


def get_upgrade_message(plan_tier: Optional[str], feature_key: str) -> str:
    """Get upgrade prompt message for a specific feature"""
    tier = normalize_tier(plan_tier)
    messages = {
        PlanTier.FREE.value: f"Upgrade to Starter (${PLANS[PlanTier.STARTER.value]['price_month_usd']}/mo) for more {feature_key}",
        PlanTier.STARTER.value: f"Upgrade to Pro (${PLANS[PlanTier.PRO.value]['price_month_usd']}/mo) for more {feature_key}",
    }
    return messages.get(tier, "Contact support to raise your limits")


def plan_for_variant(variant_id: Any, variant_map: Dict[str, str]) -> str:
    """Map a processor variant id to a plan tier, defaulting to free"""
    if variant_id is None:
        return PlanTier.FREE.value
    return variant_map.get(str(variant_id), PlanTier.FREE.value)
