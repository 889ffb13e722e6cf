"""
Subscription management API endpoints
"""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from socialpulse.api.deps import get_billing_service
from socialpulse.services.billing import BillingService
from socialpulse.utils.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


class CancelRequest(BaseModel):
    subscriptionId: Optional[Union[str, int]] = None


@router.post("/cancel")
async def cancel_subscription(
    body: CancelRequest,
    billing: BillingService = Depends(get_billing_service),
    db: AsyncSession = Depends(get_db),
):
    """Cancel at the end of the current billing period"""
    canceled_at = await billing.cancel_subscription(db, body.subscriptionId)
    return {
        "canceledAt": canceled_at.isoformat(),
        "message": "Subscription will be canceled at the end of the billing period",
    }
