"""
Usage API endpoints
Check, record and summarize plan usage
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from socialpulse.api.deps import get_usage_tracker
from socialpulse.services.usage_tracker import UsageTracker
from socialpulse.utils.database import get_db
from socialpulse.utils.exceptions import require_fields

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/usage", tags=["usage"])


class UsageRequest(BaseModel):
    userId: Optional[str] = None
    featureKey: Optional[str] = None


@router.get("/check")
async def check_usage(
    userId: Optional[str] = None,
    feature: Optional[str] = None,
    tracker: UsageTracker = Depends(get_usage_tracker),
    db: AsyncSession = Depends(get_db),
):
    require_fields(userId=userId, feature=feature)
    check = await tracker.check_usage(db, userId, feature)
    return check.to_dict()


@router.post("/increment")
async def increment_usage(
    body: UsageRequest,
    tracker: UsageTracker = Depends(get_usage_tracker),
    db: AsyncSession = Depends(get_db),
):
    """Unconditional +1; callers are expected to have checked first"""
    require_fields(userId=body.userId, featureKey=body.featureKey)
    new_count = await tracker.increment_usage(db, body.userId, body.featureKey)
    return {"newCount": new_count}


@router.post("/reserve")
async def reserve_usage(
    body: UsageRequest,
    tracker: UsageTracker = Depends(get_usage_tracker),
    db: AsyncSession = Depends(get_db),
):
    """Atomic check-and-increment"""
    require_fields(userId=body.userId, featureKey=body.featureKey)
    check = await tracker.reserve(db, body.userId, body.featureKey)
    return check.to_dict()


@router.get("/summary")
async def usage_summary(
    userId: Optional[str] = None,
    tracker: UsageTracker = Depends(get_usage_tracker),
    db: AsyncSession = Depends(get_db),
):
    require_fields(userId=userId)
    return await tracker.get_usage_summary(db, userId)
