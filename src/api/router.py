"""
FastAPI Router for the AlgoMakers dashboard API
"""

from fastapi import APIRouter

# Import sub-routers
from src.api.subscriptions import router as subscriptions_router
from src.api.billing import router as billing_router
from src.api.affiliates import router as affiliates_router


# Main router
router = APIRouter()

# Include sub-routers (they already carry their prefixes)
router.include_router(subscriptions_router)  # /subscriptions
router.include_router(billing_router)  # /billing
router.include_router(affiliates_router)  # /affiliates (commissions, payouts)
