"""
Tests for the subscription expiry cron job
"""

from datetime import datetime, UTC

import pytest

from src.core.enums import InviteStatus, SubscriptionStatus
from src.database.crud import get_audit_logs, get_subscription
from src.tasks.subscription_expiry import expire_overdue_subscriptions


@pytest.mark.asyncio
async def test_expires_only_overdue_active_subscriptions(
    db_session, customer, btc_pair, eth_pair, make_subscription, clock
):
    overdue = await make_subscription(
        customer,
        btc_pair,
        status=SubscriptionStatus.ACTIVE.value,
        invite_status=InviteStatus.COMPLETED.value,
        expiry_date=datetime(2025, 3, 1, tzinfo=UTC),
    )
    still_running = await make_subscription(
        customer,
        eth_pair,
        status=SubscriptionStatus.ACTIVE.value,
        expiry_date=datetime(2025, 4, 1, tzinfo=UTC),
    )
    never_activated = await make_subscription(
        customer,
        eth_pair,
        status=SubscriptionStatus.PENDING.value,
        expiry_date=datetime(2025, 2, 1, tzinfo=UTC),
    )

    expired = await expire_overdue_subscriptions(db_session, now=clock())

    assert expired == 1
    assert (await get_subscription(db_session, overdue.id)).status == SubscriptionStatus.EXPIRED.value
    assert (await get_subscription(db_session, still_running.id)).status == SubscriptionStatus.ACTIVE.value
    assert (await get_subscription(db_session, never_activated.id)).status == SubscriptionStatus.PENDING.value

    logs = await get_audit_logs(db_session, actor_id="system")
    assert len(logs) == 1
    assert logs[0].target_type == "SYSTEM"
    assert logs[0].details["subscriptionIds"] == [overdue.id]
    assert logs[0].details["count"] == 1


@pytest.mark.asyncio
async def test_nothing_to_expire(db_session, customer, btc_pair, make_subscription, clock):
    await make_subscription(
        customer,
        btc_pair,
        status=SubscriptionStatus.ACTIVE.value,
        expiry_date=datetime(2025, 6, 1, tzinfo=UTC),
    )

    assert await expire_overdue_subscriptions(db_session, now=clock()) == 0
    assert await get_audit_logs(db_session) == []
