# coding: utf-8
"""
Affiliate API endpoints: commission overview and payouts
"""

from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_actor
from src.core.actor import Actor
from src.database.engine import get_session
from src.services.commission_service import get_commission_summary, process_payout

router = APIRouter(prefix="/affiliates", tags=["affiliates"])


class PayoutRequest(BaseModel):
    affiliateId: Optional[str] = None
    amount: Optional[Union[float, str]] = None


@router.get("/{affiliate_id}/commissions")
async def get_commissions(
    affiliate_id: str,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Commissions of an affiliate with pending/paid totals (staff or owner)
    """
    return await get_commission_summary(session, actor, affiliate_id)


@router.post("/payout")
async def create_payout(
    request: PayoutRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Pay out pending commissions (ADMIN only)

    Body:
        {"affiliateId": "...", "amount": 125.5}
    """
    return await process_payout(session, actor, request.affiliateId, request.amount)
