"""
Usage Tracker Service
Records per-user, per-feature consumption for each usage period and answers
whether a user is still under their plan's limit.

Counting is always done inside the database (INSERT ... ON CONFLICT DO UPDATE
and conditional UPDATE ... RETURNING) so concurrent requests from the same user
never lose increments.
"""

import logging
from calendar import monthrange
from datetime import datetime, timezone
from typing import Callable, Dict, Any, NamedTuple, Optional
from zoneinfo import ZoneInfo
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from socialpulse.config.settings import Settings
from socialpulse.config.plan_limits import (
    UNLIMITED,
    get_plan,
    get_limit_for_feature,
    is_unlimited,
    normalize_tier,
    calculate_usage_percentage,
    usage_status,
)
from socialpulse.models.profile import Profile
from socialpulse.models.usage import UsageRecord
from socialpulse.services import subscription_store
from socialpulse.utils.database import upsert_insert

logger = logging.getLogger(__name__)

USAGE_KEY = ["user_id", "feature_key", "period_start"]


class UsageCheck(NamedTuple):
    allowed: bool
    used: int
    limit: int

    def to_dict(self) -> Dict[str, Any]:
        return {"allowed": self.allowed, "used": self.used, "limit": self.limit}


class UsagePeriod(NamedTuple):
    start: datetime
    end: datetime


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a stored timestamp; naive values are taken to be UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def month_bounds(now: datetime, tz: ZoneInfo) -> UsagePeriod:
    """[first instant of the month, first instant of next month) in tz, as UTC"""
    local = now.astimezone(tz)
    start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return UsagePeriod(start.astimezone(timezone.utc), end.astimezone(timezone.utc))


def month_before(value: datetime) -> datetime:
    """Same instant one calendar month earlier, clamped to the shorter month's last day"""
    year, month = (value.year - 1, 12) if value.month == 1 else (value.year, value.month - 1)
    return value.replace(year=year, month=month, day=min(value.day, monthrange(year, month)[1]))


class UsageTracker:
    """Service for tracking usage and checking it against plan limits"""

    def __init__(self, settings: Settings, clock: Optional[Callable[[], datetime]] = None):
        self.alignment = settings.usage_period_alignment
        self.tz = ZoneInfo(settings.usage_period_timezone)
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return as_utc(self._clock())

    async def current_period(self, db: AsyncSession, user_id: str, now: Optional[datetime] = None) -> UsagePeriod:
        """
        Resolve the usage period containing `now`.

        calendar: calendar month in the reference timezone.
        billing_cycle: the monthly cycle ending at the subscription's next
        renewal, [renews_at - 1 month, renews_at), when it brackets `now`;
        otherwise the calendar month. The stored period start is the
        subscription's creation time and is not used as the cycle start.
        """
        now = now or self.now()
        if self.alignment == "billing_cycle":
            subscription = await subscription_store.get_for_user(db, user_id)
            end = as_utc(subscription.current_period_end) if subscription else None
            if end:
                start = month_before(end)
                if start <= now < end:
                    return UsagePeriod(start, end)
        return month_bounds(now, self.tz)

    async def resolve_tier(self, db: AsyncSession, user_id: str) -> str:
        result = await db.execute(select(Profile.subscription_tier).where(Profile.id == user_id))
        return normalize_tier(result.scalar_one_or_none())

    async def check_usage(self, db: AsyncSession, user_id: str, feature_key: str) -> UsageCheck:
        """Is the user under their limit for this feature in the current period?"""
        tier = await self.resolve_tier(db, user_id)
        limit = get_limit_for_feature(tier, feature_key)

        if is_unlimited(limit):
            return UsageCheck(allowed=True, used=0, limit=UNLIMITED)

        period = await self.current_period(db, user_id)
        used = await self._read_count(db, user_id, feature_key, period)
        return UsageCheck(allowed=used < limit, used=used, limit=limit)

    async def increment_usage(self, db: AsyncSession, user_id: str, feature_key: str) -> int:
        """
        Record one unit of consumption and return the new count.

        Does not look at limits; call check_usage first (or use reserve).
        """
        now = self.now()
        period = await self.current_period(db, user_id, now)

        stmt = upsert_insert(db, UsageRecord).values(
            user_id=user_id,
            feature_key=feature_key,
            period_start=period.start,
            period_end=period.end,
            count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=USAGE_KEY,
            set_={"count": UsageRecord.count + 1, "updated_at": now},
        ).returning(UsageRecord.count)

        result = await db.execute(stmt)
        new_count = result.scalar_one()
        await db.commit()

        logger.info(f"Usage tracked: user={user_id}, feature={feature_key}, count={new_count}")
        return new_count

    async def reserve(self, db: AsyncSession, user_id: str, feature_key: str) -> UsageCheck:
        """
        Atomically consume one unit if (and only if) it stays within the limit.

        Closes the window between check_usage and increment_usage: the limit is
        enforced by the UPDATE's WHERE clause, so two racing requests can never
        both take the last unit.
        """
        now = self.now()
        tier = await self.resolve_tier(db, user_id)
        limit = get_limit_for_feature(tier, feature_key)
        period = await self.current_period(db, user_id, now)

        if is_unlimited(limit):
            used = await self.increment_usage(db, user_id, feature_key)
            return UsageCheck(allowed=True, used=used, limit=UNLIMITED)

        if limit <= 0:
            used = await self._read_count(db, user_id, feature_key, period)
            return UsageCheck(allowed=False, used=used, limit=limit)

        await db.execute(
            upsert_insert(db, UsageRecord)
            .values(
                user_id=user_id,
                feature_key=feature_key,
                period_start=period.start,
                period_end=period.end,
                count=0,
            )
            .on_conflict_do_nothing(index_elements=USAGE_KEY)
        )
        result = await db.execute(
            update(UsageRecord)
            .where(
                UsageRecord.user_id == user_id,
                UsageRecord.feature_key == feature_key,
                UsageRecord.period_start == period.start,
                UsageRecord.count < limit,
            )
            .values(count=UsageRecord.count + 1, updated_at=now)
            .returning(UsageRecord.count)
        )
        new_count = result.scalar_one_or_none()
        await db.commit()

        if new_count is None:
            used = await self._read_count(db, user_id, feature_key, period)
            logger.warning(
                f"Usage limit reached: user={user_id}, feature={feature_key}, "
                f"used={used}, limit={limit}, plan={tier}"
            )
            return UsageCheck(allowed=False, used=used, limit=limit)

        if usage_status(new_count, limit) != "ok":
            logger.info(
                f"Usage warning: user={user_id}, feature={feature_key}, "
                f"usage={new_count}/{limit} ({calculate_usage_percentage(new_count, limit):.1f}%)"
            )
        return UsageCheck(allowed=True, used=new_count, limit=limit)

    async def get_usage_summary(self, db: AsyncSession, user_id: str) -> Dict[str, Any]:
        """Current-period usage for every feature on the user's plan"""
        tier = await self.resolve_tier(db, user_id)
        plan = get_plan(tier)
        period = await self.current_period(db, user_id)

        result = await db.execute(
            select(UsageRecord.feature_key, UsageRecord.count).where(
                UsageRecord.user_id == user_id,
                UsageRecord.period_start == period.start,
            )
        )
        counts = {feature_key: count for feature_key, count in result.all()}

        features = []
        for feature_key, limit in plan["limits"].items():
            used = counts.get(feature_key, 0)
            features.append({
                "featureKey": feature_key,
                "used": used,
                "limit": limit,
                "percentage": round(calculate_usage_percentage(used, limit), 1),
                "status": usage_status(used, limit),
            })

        return {
            "planId": plan["id"],
            "periodStart": period.start.isoformat(),
            "periodEnd": period.end.isoformat(),
            "features": features,
        }

    async def _read_count(self, db: AsyncSession, user_id: str, feature_key: str, period: UsagePeriod) -> int:
        result = await db.execute(
            select(UsageRecord.count).where(
                UsageRecord.user_id == user_id,
                UsageRecord.feature_key == feature_key,
                UsageRecord.period_start == period.start,
            )
        )
        return result.scalar_one_or_none() or 0
