# coding: utf-8
"""
Subscription API endpoints for the admin dashboard

Handles:
- Listing / single fetch with search and pagination
- Batch (multi-pair) and legacy single-pair creation
- Updates (status, invite status, dates, prices)
- Deletion
"""

from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import DEFAULT_PAGE_SIZE
from src.api.auth import get_current_actor
from src.core.actor import Actor
from src.database.engine import get_session
from src.services.subscription_service import SubscriptionService

# Create router
router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


# ===========================
# REQUEST MODELS
# ===========================


class UpdateSubscriptionRequest(BaseModel):
    """PATCH body - every field except id is optional"""

    id: Optional[str] = None
    status: Optional[str] = None
    inviteStatus: Optional[str] = None
    inviteState: Optional[str] = None  # legacy name of inviteStatus
    startDate: Optional[str] = None
    expiryDate: Optional[str] = None
    basePrice: Optional[Union[float, str]] = None
    discountRate: Optional[Union[float, str]] = None
    period: Optional[str] = None


# ===========================
# ENDPOINTS
# ===========================


@router.get("")
async def get_subscriptions(
    id: Optional[str] = Query(None),
    userId: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    List subscriptions (or fetch one with ?id=)

    Returns:
        {
            "subscriptions": [...],
            "pagination": {"page": 1, "limit": 50, "totalCount": 3, "totalPages": 1},
            "stats": {"byStatus": {"ACTIVE": 2, "PENDING": 1}, "totalRevenue": 540.0}
        }
    """
    service = SubscriptionService(session)

    if id:
        return await service.get_subscription(actor, id)

    return await service.list_subscriptions(
        actor,
        user_id=userId,
        status=status,
        search=search,
        page=page,
        limit=limit,
    )


@router.post("")
async def create_subscriptions(
    payload: Dict[str, Any] = Body(...),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Create subscriptions

    Body (multi-pair):
        {"userId": "...", "startDate": "2025-01-01T00:00:00Z",
         "pairs": [{"pairId": "...", "period": "THREE_MONTHS", "endDate": "...",
                    "basePrice": 100, "discountRate": 10}]}

    Body (legacy single pair):
        {"userId": "...", "pairId": "...", "period": "ONE_MONTH",
         "startDate": "...", "expiryDate": "..."}
    """
    return await SubscriptionService(session).create(actor, payload)


@router.patch("")
async def update_subscription(
    request: UpdateSubscriptionRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Update a subscription

    Completing the invite (inviteStatus=COMPLETED) restarts the dates: startDate
    becomes now and expiryDate is recomputed from the period. Status only
    changes when it is sent. USER callers may only cancel their own rows.
    """
    payload = request.model_dump(exclude_unset=True)
    return await SubscriptionService(session).update_subscription(actor, payload)


@router.delete("")
async def delete_subscription(
    id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, str]:
    """
    Delete a subscription (?id=)
    """
    return await SubscriptionService(session).delete_subscription(actor, id)
