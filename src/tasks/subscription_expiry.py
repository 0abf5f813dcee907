# coding: utf-8
"""
Subscription Expiry Cron Job - moves overdue ACTIVE subscriptions to EXPIRED.

Run: python -m src.tasks.subscription_expiry

Crontab (hourly):
    0 * * * * cd /path && .venv/bin/python -m src.tasks.subscription_expiry
"""

import asyncio
from datetime import datetime, UTC
from typing import Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.actor import SYSTEM_ACTOR
from src.core.enums import AuditAction, AuditTargetType, SubscriptionStatus
from src.database.crud import get_overdue_subscriptions
from src.database.engine import dispose_engine, get_session_maker
from src.services.audit_service import create_audit_log
from src.services.subscription_lifecycle import SubscriptionUpdate, resolve_update


async def expire_overdue_subscriptions(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Expire every ACTIVE subscription whose expiry date has passed

    Args:
        session: Database session
        now: Reference instant (defaults to current UTC time)

    Returns:
        Number of expired subscriptions
    """
    now = now or datetime.now(UTC)
    overdue = await get_overdue_subscriptions(session, now)
    if not overdue:
        logger.info("No overdue subscriptions")
        return 0

    update = SubscriptionUpdate(status=SubscriptionStatus.EXPIRED.value)
    for subscription in overdue:
        resolve_update(subscription, update, now).apply(subscription)

    expired_ids = [s.id for s in overdue]
    await session.commit()

    logger.info(f"Expired {len(expired_ids)} subscriptions")

    await create_audit_log(
        session,
        SYSTEM_ACTOR,
        AuditAction.UPDATE_SUBSCRIPTION,
        AuditTargetType.SYSTEM,
        details={"reason": "expired", "subscriptionIds": expired_ids, "count": len(expired_ids)},
    )
    return len(expired_ids)


async def main():
    """
    Main cron job entry point
    """
    logger.info("=" * 80)
    logger.info("Subscription Expiry Cron Job - Starting")
    logger.info("=" * 80)

    SessionLocal = get_session_maker()

    try:
        async with SessionLocal() as session:
            expired = await expire_overdue_subscriptions(session)
            logger.info(f"Subscription Expiry Cron Job - {expired} subscriptions expired")
    except Exception as e:
        logger.error(f"Error in subscription expiry cron job: {e}", exc_info=True)
        raise
    finally:
        await dispose_engine()


if __name__ == "__main__":
    from config.logging import setup_logging

    setup_logging()
    asyncio.run(main())
