"""
Subscription Record Store
Owns every write to the subscriptions table and to the denormalized
tier/status columns on profiles. Callers own the transaction (commit/rollback).
"""

import logging
from datetime import datetime
from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from socialpulse.models.profile import Profile, SubscriptionStatus
from socialpulse.models.subscription import Subscription
from socialpulse.utils.database import upsert_insert

logger = logging.getLogger(__name__)


async def get_for_user(db: AsyncSession, user_id: str) -> Optional[Subscription]:
    result = await db.execute(select(Subscription).where(Subscription.user_id == user_id))
    return result.scalar_one_or_none()


async def upsert_for_user(
    db: AsyncSession,
    *,
    user_id: str,
    external_id: str,
    plan_id: str,
    status: str,
    current_period_start: Optional[datetime],
    current_period_end: Optional[datetime],
    cancel_at_period_end: bool,
    now: datetime,
) -> None:
    """Insert or update the single subscription row for a user"""
    values = {
        "external_id": external_id,
        "plan_id": plan_id,
        "status": status,
        "current_period_start": current_period_start,
        "current_period_end": current_period_end,
        "cancel_at_period_end": cancel_at_period_end,
        "updated_at": now,
    }
    stmt = upsert_insert(db, Subscription).values(user_id=user_id, **values)
    stmt = stmt.on_conflict_do_update(index_elements=["user_id"], set_=values)
    await db.execute(stmt)


async def sync_profile(
    db: AsyncSession,
    user_id: str,
    *,
    status: str,
    tier: Optional[str] = None,
) -> bool:
    """Copy subscription tier/status onto the profile; False if no profile exists"""
    values = {"subscription_status": status}
    if tier is not None:
        values["subscription_tier"] = tier
    result = await db.execute(update(Profile).where(Profile.id == user_id).values(**values))
    if result.rowcount == 0:
        logger.warning(f"No profile found for user {user_id}; subscription state not mirrored")
        return False
    return True


async def _set_status(db: AsyncSession, external_id: str, values: dict) -> List[str]:
    result = await db.execute(
        update(Subscription)
        .where(Subscription.external_id == external_id)
        .values(**values)
        .returning(Subscription.user_id)
    )
    user_ids = list(result.scalars().all())
    for user_id in user_ids:
        await sync_profile(db, user_id, status=values["status"])
    return user_ids


async def mark_cancelled(db: AsyncSession, external_id: str, now: datetime) -> List[str]:
    """Processor confirmed cancellation; the plan itself is left untouched"""
    return await _set_status(db, external_id, {
        "status": SubscriptionStatus.CANCELED.value,
        "cancel_at_period_end": True,
        "updated_at": now,
    })


async def mark_past_due(db: AsyncSession, external_id: str, now: datetime) -> List[str]:
    return await _set_status(db, external_id, {
        "status": SubscriptionStatus.PAST_DUE.value,
        "updated_at": now,
    })


async def flag_cancel_at_period_end(db: AsyncSession, external_id: str, now: datetime) -> int:
    """Local half of a user-requested cancellation; returns matched row count"""
    result = await db.execute(
        update(Subscription)
        .where(Subscription.external_id == external_id)
        .values(cancel_at_period_end=True, updated_at=now)
    )
    return result.rowcount
