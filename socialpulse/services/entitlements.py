"""
Entitlement Gate
Yes/no decisions for gated features, built on the usage tracker and plan catalog
"""

import logging
from sqlalchemy.ext.asyncio import AsyncSession

from socialpulse.config.plan_limits import get_upgrade_message
from socialpulse.services.usage_tracker import UsageTracker, UsageCheck
from socialpulse.utils.exceptions import UsageLimitExceeded

logger = logging.getLogger(__name__)


class EntitlementGate:

    def __init__(self, usage_tracker: UsageTracker):
        self.usage_tracker = usage_tracker

    async def is_allowed(self, db: AsyncSession, user_id: str, feature_key: str) -> bool:
        """Read-only check; the caller increments usage after acting"""
        check = await self.usage_tracker.check_usage(db, user_id, feature_key)
        return check.allowed

    async def consume(self, db: AsyncSession, user_id: str, feature_key: str) -> UsageCheck:
        """Reserve one unit of the feature or raise UsageLimitExceeded"""
        check = await self.usage_tracker.reserve(db, user_id, feature_key)
        if not check.allowed:
            tier = await self.usage_tracker.resolve_tier(db, user_id)
            raise UsageLimitExceeded(
                f"Usage limit reached for {feature_key} ({check.used}/{check.limit}). "
                f"{get_upgrade_message(tier, feature_key)}",
                feature_key=feature_key,
                used=check.used,
                limit=check.limit,
                plan_id=tier,
            )
        return check
