"""
Checkout API
Starts a hosted LemonSqueezy checkout for a plan variant
"""

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr

from socialpulse.api.deps import get_billing_service
from socialpulse.services.billing import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


class CheckoutRequest(BaseModel):
    variantId: Optional[Union[str, int]] = None
    userId: Optional[str] = None
    email: Optional[EmailStr] = None


@router.post("/create")
async def create_checkout(
    body: CheckoutRequest,
    billing: BillingService = Depends(get_billing_service),
):
    """Returns the hosted checkout URL; the user id rides along as custom data"""
    session = await billing.create_checkout(body.variantId, body.userId, body.email)
    return {"checkoutUrl": session.checkout_url, "orderId": session.order_id}
