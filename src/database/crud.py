"""
CRUD operations for AlgoMakers subscription API

Async database operations using SQLAlchemy 2.0.
Lookups return None when a row is missing; services decide what that means.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.enums import SubscriptionStatus, PaymentStatus, CommissionStatus
from src.database.models import (
    User,
    Pair,
    Subscription,
    Payment,
    PaymentItem,
    Affiliate,
    Commission,
    AuditLog,
    Event,
    Stats,
)

logger = logging.getLogger(__name__)


# ===========================
# USERS & PAIRS
# ===========================


async def get_user_by_id(
    session: AsyncSession, user_id: str, for_update: bool = False
) -> Optional[User]:
    """
    Get user by ID

    Args:
        session: Database session
        user_id: User ID
        for_update: Lock the user row until the transaction ends
            (serializes subscription creation per user on PostgreSQL)

    Returns:
        User or None if not found
    """
    stmt = select(User).where(User.id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def get_pair_by_id(session: AsyncSession, pair_id: str) -> Optional[Pair]:
    result = await session.execute(select(Pair).where(Pair.id == pair_id))
    return result.scalar_one_or_none()


async def get_pairs_by_ids(session: AsyncSession, pair_ids: Sequence[str]) -> List[Pair]:
    """
    Get all pairs whose ID is in pair_ids (missing IDs are simply absent)
    """
    if not pair_ids:
        return []
    result = await session.execute(select(Pair).where(Pair.id.in_(set(pair_ids))))
    return list(result.scalars().all())


# ===========================
# SUBSCRIPTIONS
# ===========================


def _subscription_query():
    return select(Subscription).options(
        selectinload(Subscription.user),
        selectinload(Subscription.pair),
        selectinload(Subscription.payment),
    )


async def get_subscription(session: AsyncSession, subscription_id: str) -> Optional[Subscription]:
    """
    Get subscription with user, pair and payment loaded

    Args:
        session: Database session
        subscription_id: Subscription ID

    Returns:
        Subscription or None if not found
    """
    result = await session.execute(
        _subscription_query().where(Subscription.id == subscription_id)
    )
    return result.scalar_one_or_none()


async def find_active_subscriptions(
    session: AsyncSession, user_id: str, pair_ids: Sequence[str]
) -> List[Subscription]:
    """
    ACTIVE subscriptions of a user for any of the given pairs

    Args:
        session: Database session
        user_id: User ID
        pair_ids: Pair IDs to check

    Returns:
        List of conflicting subscriptions (pair loaded)
    """
    if not pair_ids:
        return []

    stmt = (
        select(Subscription)
        .options(selectinload(Subscription.pair))
        .where(Subscription.user_id == user_id)
        .where(Subscription.pair_id.in_(set(pair_ids)))
        .where(Subscription.status == SubscriptionStatus.ACTIVE.value)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


def _subscription_filters(
    user_id: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> list:
    conditions = []
    if user_id:
        conditions.append(Subscription.user_id == user_id)
    if status:
        conditions.append(Subscription.status == status)
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(
                User.email.ilike(pattern),
                User.name.ilike(pattern),
                Pair.symbol.ilike(pattern),
                Pair.timeframe.ilike(pattern),
                Pair.version.ilike(pattern),
                Pair.strategy.ilike(pattern),
                Subscription.status.ilike(pattern),
            )
        )
    return conditions


async def list_subscriptions(
    session: AsyncSession,
    user_id: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    offset: int = 0,
    limit: int = 50,
) -> Tuple[List[Subscription], int]:
    """
    Filtered page of subscriptions, newest first

    Args:
        session: Database session
        user_id: Only this user's subscriptions
        status: Exact status (already upper-cased)
        search: Case-insensitive text over user email/name and pair fields
        offset: Rows to skip
        limit: Page size

    Returns:
        (subscriptions, total_count)
    """
    conditions = _subscription_filters(user_id, status, search)

    count_stmt = (
        select(func.count(Subscription.id))
        .join(User, Subscription.user_id == User.id)
        .join(Pair, Subscription.pair_id == Pair.id)
        .where(*conditions)
    )
    total = (await session.execute(count_stmt)).scalar_one()

    stmt = (
        _subscription_query()
        .join(User, Subscription.user_id == User.id)
        .join(Pair, Subscription.pair_id == Pair.id)
        .where(*conditions)
        .order_by(Subscription.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all()), total


async def count_subscriptions_by_status(
    session: AsyncSession,
    user_id: Optional[str] = None,
    search: Optional[str] = None,
) -> Dict[str, int]:
    """
    Number of subscriptions per status for the same filters as the listing
    """
    stmt = (
        select(Subscription.status, func.count(Subscription.id))
        .join(User, Subscription.user_id == User.id)
        .join(Pair, Subscription.pair_id == Pair.id)
        .where(*_subscription_filters(user_id, None, search))
        .group_by(Subscription.status)
    )
    result = await session.execute(stmt)
    return {status: count for status, count in result.all()}


async def get_total_revenue(session: AsyncSession, user_id: Optional[str] = None) -> float:
    """
    Sum of actually paid amounts over PAID payments
    """
    stmt = select(func.coalesce(func.sum(Payment.actually_paid), 0.0)).where(
        Payment.status == PaymentStatus.PAID.value
    )
    if user_id:
        stmt = stmt.where(Payment.user_id == user_id)
    return float((await session.execute(stmt)).scalar_one())


async def get_overdue_subscriptions(session: AsyncSession, now: datetime) -> List[Subscription]:
    """
    ACTIVE subscriptions whose expiry date has passed
    """
    stmt = (
        select(Subscription)
        .where(Subscription.status == SubscriptionStatus.ACTIVE.value)
        .where(Subscription.expiry_date < now)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ===========================
# PAYMENTS
# ===========================


def _payment_query():
    return select(Payment).options(
        selectinload(Payment.items).selectinload(PaymentItem.pair),
        selectinload(Payment.subscriptions),
        selectinload(Payment.user),
    )


async def get_payment(session: AsyncSession, payment_id: str) -> Optional[Payment]:
    """
    Get payment with items (and their pairs), subscriptions and user loaded
    """
    result = await session.execute(_payment_query().where(Payment.id == payment_id))
    return result.scalar_one_or_none()


async def list_user_payments(
    session: AsyncSession,
    user_id: str,
    status: Optional[str] = None,
    since: Optional[datetime] = None,
    search: Optional[str] = None,
) -> List[Payment]:
    """
    Payments of a user, newest first

    Args:
        session: Database session
        user_id: Owner
        status: Exact payment status
        since: Only payments created at or after this instant
        search: Matches pair symbol/timeframe of any item, order ID or invoice ID

    Returns:
        List of payments with items, pairs and subscriptions loaded
    """
    stmt = _payment_query().where(Payment.user_id == user_id)

    if status:
        stmt = stmt.where(Payment.status == status)
    if since:
        stmt = stmt.where(Payment.created_at >= since)
    if search:
        pattern = f"%{search}%"
        item_match = (
            select(PaymentItem.payment_id)
            .join(Pair, PaymentItem.pair_id == Pair.id)
            .where(or_(Pair.symbol.ilike(pattern), Pair.timeframe.ilike(pattern)))
        )
        stmt = stmt.where(
            or_(
                Payment.id.in_(item_match),
                Payment.order_id.ilike(pattern),
                Payment.invoice_id.ilike(pattern),
            )
        )

    result = await session.execute(stmt.order_by(Payment.created_at.desc()))
    return list(result.scalars().all())


# ===========================
# AFFILIATES & COMMISSIONS
# ===========================


async def get_affiliate(session: AsyncSession, affiliate_id: str) -> Optional[Affiliate]:
    result = await session.execute(select(Affiliate).where(Affiliate.id == affiliate_id))
    return result.scalar_one_or_none()


async def get_affiliate_commissions(
    session: AsyncSession, affiliate_id: str, status: Optional[str] = None
) -> List[Commission]:
    """
    Commissions of an affiliate, oldest first

    Args:
        session: Database session
        affiliate_id: Affiliate ID
        status: Optional status filter

    Returns:
        List of Commission models
    """
    stmt = (
        select(Commission)
        .where(Commission.affiliate_id == affiliate_id)
        .order_by(Commission.created_at.asc(), Commission.id.asc())
    )
    if status:
        stmt = stmt.where(Commission.status == status)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_pending_commissions(session: AsyncSession, affiliate_id: str) -> List[Commission]:
    return await get_affiliate_commissions(session, affiliate_id, CommissionStatus.PENDING.value)


# ===========================
# AUDIT & EVENTS
# ===========================


async def get_audit_logs(
    session: AsyncSession,
    limit: int = 50,
    actor_id: Optional[str] = None,
    action: Optional[str] = None,
    target_id: Optional[str] = None,
) -> List[AuditLog]:
    """
    Get audit logs, newest first

    Args:
        session: Database session
        limit: Maximum number of logs
        actor_id: Filter by actor
        action: Filter by action
        target_id: Filter by target entity

    Returns:
        List of AuditLog models
    """
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit)

    if actor_id:
        stmt = stmt.where(AuditLog.actor_id == actor_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if target_id:
        stmt = stmt.where(AuditLog.target_id == target_id)

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_events(
    session: AsyncSession,
    limit: int = 50,
    user_id: Optional[str] = None,
    event_type: Optional[str] = None,
) -> List[Event]:
    stmt = select(Event).order_by(Event.created_at.desc()).limit(limit)

    if user_id:
        stmt = stmt.where(Event.user_id == user_id)
    if event_type:
        stmt = stmt.where(Event.event_type == event_type)

    result = await session.execute(stmt)
    return list(result.scalars().all())


# ===========================
# STATS
# ===========================


async def get_stats(session: AsyncSession, stats_type: str) -> Optional[Stats]:
    result = await session.execute(select(Stats).where(Stats.type == stats_type))
    return result.scalar_one_or_none()
