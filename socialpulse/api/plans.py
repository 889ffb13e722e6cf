"""
Plan catalog API
"""

from fastapi import APIRouter

from socialpulse.config.plan_limits import list_plans

router = APIRouter(prefix="/plans", tags=["plans"])


@router.get("")
async def get_plans():
    return {"plans": list_plans()}
