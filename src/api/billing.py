# coding: utf-8
"""
Billing API endpoints

Handles:
- Payment history with stats (own payments)
- Checkout creation
- Payment status updates (PAID creates the subscriptions)
"""

from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_actor
from src.core.actor import Actor
from src.database.engine import get_session
from src.services.billing_service import BillingService

# Create router
router = APIRouter(prefix="/billing", tags=["billing"])


# ===========================
# REQUEST MODELS
# ===========================


class CreatePaymentRequest(BaseModel):
    """Checkout request"""

    items: Optional[List[Dict[str, Any]]] = None  # [{pairId, period, basePrice?, discountRate?}]
    network: Optional[str] = None  # "USDT" | "BTC" | "ETH" | "USDT_TRC20" ...
    userId: Optional[str] = None  # staff only, defaults to the caller
    orderId: Optional[str] = None
    invoiceId: Optional[str] = None
    expiresAt: Optional[str] = None
    orderData: Optional[Any] = None


class UpdatePaymentRequest(BaseModel):
    """Payment status change"""

    id: Optional[str] = None
    status: Optional[str] = None
    actuallyPaid: Optional[Union[float, str]] = None
    txHash: Optional[str] = None


# ===========================
# ENDPOINTS
# ===========================


@router.get("")
async def get_billing(
    status: Optional[str] = Query(None),
    dateRange: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Payment history of the current user

    Query:
        status: PENDING | PAID | UNDERPAID | EXPIRED | FAILED | all
        dateRange: 7d | 30d | 90d
        search: pair symbol/timeframe, order ID or invoice ID

    Returns:
        {
            "payments": [...],
            "stats": {"totalSpent": 270.0, "totalPayments": 3,
                      "activeSubscriptions": 2, "pendingPayments": 1}
        }
    """
    return await BillingService(session).list_payments(
        actor, status=status, date_range=dateRange, search=search
    )


@router.post("", status_code=201)
async def create_payment(
    request: CreatePaymentRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Create a PENDING checkout
    """
    payload = request.model_dump(exclude_unset=True)
    return await BillingService(session).create_payment(actor, payload)


@router.patch("")
async def update_payment(
    request: UpdatePaymentRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Update payment status

    Only ADMIN/MANAGER may confirm (PAID / UNDERPAID).
    """
    payload = request.model_dump(exclude_unset=True)
    return await BillingService(session).update_payment(actor, payload)
