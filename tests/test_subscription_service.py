"""
Tests for subscription create / update / delete / listing
"""

from datetime import datetime, UTC
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from src.core.actor import Actor
from src.core.enums import AuditAction, Role, StatsType
from src.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from src.database.crud import get_audit_logs, get_events, get_stats, get_subscription
from src.database.models import Subscription
from src.services.subscription_lifecycle import ensure_utc
from src.services.subscription_service import SubscriptionService


async def count_subscriptions(session) -> int:
    return (await session.execute(select(func.count(Subscription.id)))).scalar_one()


# ===========================
# UPDATE
# ===========================


@pytest.mark.asyncio
async def test_update_completing_invite_recomputes_dates(
    db_session, admin_actor, customer, btc_pair, make_subscription, email_service, clock
):
    subscription = await make_subscription(customer, btc_pair, period="THREE_MONTHS")
    service = SubscriptionService(db_session, email_service=email_service, clock=clock)

    result = await service.update_subscription(
        admin_actor,
        {
            "id": subscription.id,
            "status": "ACTIVE",
            "inviteStatus": "COMPLETED",
            "startDate": "2020-01-01T00:00:00Z",  # ignored on completion
        },
    )

    assert result["message"] == "Subscription updated successfully"
    assert result["subscription"]["status"] == "ACTIVE"
    assert result["subscription"]["inviteStatus"] == "COMPLETED"
    assert result["subscription"]["startDate"] == clock().isoformat()
    assert result["subscription"]["expiryDate"] == datetime(2025, 6, 15, 12, 0, tzinfo=UTC).isoformat()

    stored = await get_subscription(db_session, subscription.id)
    assert stored.status == "ACTIVE"
    assert stored.invite_status == "COMPLETED"


@pytest.mark.asyncio
async def test_update_writes_exactly_one_audit_log_and_one_email(
    db_session, admin_actor, customer, btc_pair, make_subscription, email_service, clock
):
    subscription = await make_subscription(customer, btc_pair)
    service = SubscriptionService(db_session, email_service=email_service, clock=clock)

    await service.update_subscription(admin_actor, {"id": subscription.id, "inviteStatus": "SENT"})

    logs = await get_audit_logs(db_session)
    assert len(logs) == 1
    assert logs[0].action == AuditAction.UPDATE_SUBSCRIPTION.value
    assert logs[0].response_status == "SUCCESS"
    assert logs[0].target_id == subscription.id
    assert logs[0].details["updatedFields"] == ["invite_status"]
    assert logs[0].details["previousValues"] == {"status": "PENDING", "inviteStatus": "PENDING"}
    assert logs[0].details["newValues"]["inviteStatus"] == "SENT"
    assert logs[0].details["targetUser"]["email"] == "trader@example.com"
    assert logs[0].details["pair"]["symbol"] == "BTCUSDT"

    email_service.send_email.assert_awaited_once()
    template, recipient, params = email_service.send_email.await_args.args
    assert template == "invite_sent"
    assert recipient == "trader@example.com"
    assert params["firstName"] == "Alice"
    assert params["tradingViewUsername"] == "alice_tv"
    assert params["pair"].startswith("BTCUSDT")


@pytest.mark.asyncio
async def test_update_by_owner_still_goes_to_audit_log(
    db_session, customer_actor, customer, btc_pair, make_subscription, email_service, clock
):
    subscription = await make_subscription(customer, btc_pair)
    service = SubscriptionService(db_session, email_service=email_service, clock=clock)

    await service.update_subscription(customer_actor, {"id": subscription.id, "inviteState": "CANCELED"})

    logs = await get_audit_logs(db_session)
    assert len(logs) == 1
    assert logs[0].actor_role == Role.USER.value
    assert await get_events(db_session) == []
    assert email_service.send_email.await_args.args[0] == "invite_canceled"


@pytest.mark.asyncio
async def test_update_patches_subscription_metrics(
    db_session, admin_actor, customer, btc_pair, make_subscription, email_service, clock
):
    subscription = await make_subscription(customer, btc_pair)
    service = SubscriptionService(db_session, email_service=email_service, clock=clock)

    await service.update_subscription(admin_actor, {"id": subscription.id, "status": "CANCELLED"})

    stats = await get_stats(db_session, StatsType.SUBSCRIPTION_METRICS.value)
    assert stats is not None
    item = next(m for m in stats.stats_metadata if m["id"] == subscription.id)
    assert item["status"] == "CANCELLED"


@pytest.mark.asyncio
async def test_cancelling_active_subscription_keeps_dates(
    db_session, admin_actor, customer, btc_pair, make_subscription, email_service, clock
):
    subscription = await make_subscription(
        customer, btc_pair, period="THREE_MONTHS", status="ACTIVE", invite_status="SENT",
        start_date=datetime(2025, 1, 10, tzinfo=UTC), expiry_date=datetime(2025, 4, 10, tzinfo=UTC),
    )
    service = SubscriptionService(db_session, email_service=email_service, clock=clock)

    result = await service.update_subscription(admin_actor, {"id": subscription.id, "status": "CANCELLED"})

    assert result["subscription"]["status"] == "CANCELLED"
    assert result["subscription"]["inviteStatus"] == "SENT"

    stored = await get_subscription(db_session, subscription.id)
    assert stored.status == "CANCELLED"
    assert ensure_utc(stored.start_date) == datetime(2025, 1, 10, tzinfo=UTC)
    assert ensure_utc(stored.expiry_date) == datetime(2025, 4, 10, tzinfo=UTC)

    logs = await get_audit_logs(db_session)
    assert len(logs) == 1
    assert logs[0].details["updatedFields"] == ["status"]
    assert logs[0].details["previousValues"] == {"status": "ACTIVE", "inviteStatus": "SENT"}

    email_service.send_email.assert_awaited_once()
    assert email_service.send_email.await_args.args[0] == "invite_sent"


@pytest.mark.asyncio
async def test_update_survives_email_failure(
    db_session, admin_actor, customer, btc_pair, make_subscription, email_service, clock
):
    email_service.send_email.return_value = False
    subscription = await make_subscription(customer, btc_pair)
    service = SubscriptionService(db_session, email_service=email_service, clock=clock)

    result = await service.update_subscription(admin_actor, {"id": subscription.id, "status": "ACTIVE"})

    assert result["subscription"]["status"] == "ACTIVE"


@pytest.mark.asyncio
async def test_update_survives_audit_write_failure(
    db_session, admin_actor, customer, btc_pair, make_subscription, email_service, clock
):
    subscription = await make_subscription(customer, btc_pair)
    service = SubscriptionService(db_session, email_service=email_service, clock=clock)

    with patch("src.services.audit_service.to_json", side_effect=RuntimeError("audit down")):
        result = await service.update_subscription(
            admin_actor, {"id": subscription.id, "status": "ACTIVE"}
        )

    assert result["subscription"]["status"] == "ACTIVE"
    email_service.send_email.assert_awaited_once()

    stored = await get_subscription(db_session, subscription.id)
    assert stored.status == "ACTIVE"
    assert await get_audit_logs(db_session) == []


@pytest.mark.asyncio
async def test_update_requires_id(db_session, admin_actor, email_service):
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(ValidationError) as exc_info:
        await service.update_subscription(admin_actor, {"status": "ACTIVE"})

    assert exc_info.value.message == "Subscription ID is required"
    email_service.send_email.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_unknown_subscription_records_failure(db_session, admin_actor, email_service):
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(NotFoundError):
        await service.update_subscription(admin_actor, {"id": "missing", "status": "ACTIVE"})

    logs = await get_audit_logs(db_session)
    assert len(logs) == 1
    assert logs[0].response_status == "FAILURE"
    assert logs[0].details["reason"] == "Subscription not found"
    assert logs[0].details["email"] == "admin@example.com"
    email_service.send_email.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_rejects_unknown_status(
    db_session, admin_actor, customer, btc_pair, make_subscription, email_service
):
    subscription = await make_subscription(customer, btc_pair)
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(ValidationError):
        await service.update_subscription(admin_actor, {"id": subscription.id, "status": "PAUSED"})


@pytest.mark.asyncio
async def test_user_cannot_update_someone_elses_subscription(
    db_session, admin_user, customer, btc_pair, make_subscription, email_service
):
    subscription = await make_subscription(admin_user, btc_pair)
    stranger = Actor(id=customer.id, role=Role.USER.value, email=customer.email)
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(ForbiddenError):
        await service.update_subscription(stranger, {"id": subscription.id, "status": "ACTIVE"})

    stored = await get_subscription(db_session, subscription.id)
    assert stored.status == "PENDING"


@pytest.mark.asyncio
async def test_owner_cannot_reactivate_own_subscription(
    db_session, customer_actor, customer, btc_pair, make_subscription, email_service, clock
):
    subscription = await make_subscription(
        customer, btc_pair, period="TWELVE_MONTHS", status="EXPIRED", invite_status="COMPLETED"
    )
    service = SubscriptionService(db_session, email_service=email_service, clock=clock)

    with pytest.raises(ForbiddenError):
        await service.update_subscription(
            customer_actor, {"id": subscription.id, "status": "ACTIVE", "inviteStatus": "COMPLETED"}
        )

    stored = await get_subscription(db_session, subscription.id)
    assert stored.status == "EXPIRED"
    assert stored.expiry_date.replace(tzinfo=UTC) == datetime(2025, 2, 1, tzinfo=UTC)
    email_service.send_email.assert_not_awaited()

    logs = await get_audit_logs(db_session)
    assert len(logs) == 1
    assert logs[0].response_status == "FAILURE"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "changes",
    [
        {"expiryDate": "2030-01-01T00:00:00Z"},
        {"basePrice": 0},
        {"discountRate": 100},
        {"period": "TWELVE_MONTHS"},
    ],
)
async def test_owner_cannot_change_terms_of_own_subscription(
    db_session, customer_actor, customer, btc_pair, make_subscription, email_service, changes
):
    subscription = await make_subscription(customer, btc_pair, status="ACTIVE")
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(ForbiddenError):
        await service.update_subscription(customer_actor, {"id": subscription.id, **changes})

    stored = await get_subscription(db_session, subscription.id)
    assert stored.period == "ONE_MONTH"
    assert stored.base_price == 100.0
    assert stored.discount_rate == 0.0


@pytest.mark.asyncio
async def test_owner_can_cancel_own_subscription(
    db_session, customer_actor, customer, btc_pair, make_subscription, email_service
):
    subscription = await make_subscription(customer, btc_pair, status="ACTIVE")
    service = SubscriptionService(db_session, email_service=email_service)

    result = await service.update_subscription(
        customer_actor, {"id": subscription.id, "status": "CANCELLED"}
    )

    assert result["subscription"]["status"] == "CANCELLED"


# ===========================
# CREATE (MULTI-PAIR)
# ===========================


@pytest.mark.asyncio
async def test_create_batch(db_session, admin_actor, customer, btc_pair, eth_pair, email_service):
    service = SubscriptionService(db_session, email_service=email_service)

    result = await service.create(
        admin_actor,
        {
            "userId": customer.id,
            "startDate": "2025-01-31T00:00:00Z",
            "pairs": [
                {"pairId": btc_pair.id, "period": "ONE_MONTH", "basePrice": 100, "discountRate": 0},
                {"pairId": eth_pair.id, "period": "THREE_MONTHS", "endDate": "2025-05-01T00:00:00Z"},
            ],
        },
    )

    assert result["message"] == "2 subscriptions created successfully"
    created = {s["pairId"]: s for s in result["subscriptions"]}
    assert created[btc_pair.id]["status"] == "PENDING"
    assert created[btc_pair.id]["inviteStatus"] == "PENDING"
    # computed from startDate + period (clamped)
    assert created[btc_pair.id]["expiryDate"] == datetime(2025, 2, 28, tzinfo=UTC).isoformat()
    # explicit endDate
    assert created[eth_pair.id]["expiryDate"] == datetime(2025, 5, 1, tzinfo=UTC).isoformat()

    assert await count_subscriptions(db_session) == 2

    logs = await get_audit_logs(db_session)
    assert len(logs) == 1
    assert logs[0].action == AuditAction.CREATE_SUBSCRIPTION.value
    assert logs[0].details["subscriptionCount"] == 2
    assert {p["symbol"] for p in logs[0].details["pairs"]} == {"BTCUSDT", "ETHUSDT"}


@pytest.mark.asyncio
async def test_create_batch_with_empty_pairs_fails_before_lookup(db_session, admin_actor, email_service):
    service = SubscriptionService(db_session, email_service=email_service)

    with patch("src.database.crud.get_user_by_id", new=AsyncMock()) as get_user, \
            patch("src.database.crud.get_pairs_by_ids", new=AsyncMock()) as get_pairs:
        with pytest.raises(ValidationError) as exc_info:
            await service.create(
                admin_actor, {"userId": "u1", "startDate": "2025-01-01T00:00:00Z", "pairs": []}
            )

    assert exc_info.value.message == "Missing required fields: userId, startDate, and pairs array"
    get_user.assert_not_awaited()
    get_pairs.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_batch_conflict_creates_nothing(
    db_session, admin_actor, customer, btc_pair, eth_pair, make_subscription, email_service
):
    await make_subscription(customer, btc_pair, status="ACTIVE")
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(ConflictError) as exc_info:
        await service.create(
            admin_actor,
            {
                "userId": customer.id,
                "startDate": "2025-01-01T00:00:00Z",
                "pairs": [
                    {"pairId": eth_pair.id, "period": "ONE_MONTH"},
                    {"pairId": btc_pair.id, "period": "ONE_MONTH"},
                ],
            },
        )

    assert exc_info.value.message == "User already has active subscriptions for: BTCUSDT"
    assert await count_subscriptions(db_session) == 1


@pytest.mark.asyncio
async def test_create_batch_allows_pair_with_expired_subscription(
    db_session, admin_actor, customer, btc_pair, make_subscription, email_service
):
    await make_subscription(customer, btc_pair, status="EXPIRED")
    service = SubscriptionService(db_session, email_service=email_service)

    result = await service.create(
        admin_actor,
        {
            "userId": customer.id,
            "startDate": "2025-01-01T00:00:00Z",
            "pairs": [{"pairId": btc_pair.id, "period": "ONE_MONTH"}],
        },
    )

    assert result["message"] == "1 subscriptions created successfully"


@pytest.mark.asyncio
async def test_create_batch_unknown_pair(db_session, admin_actor, customer, btc_pair, email_service):
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(NotFoundError) as exc_info:
        await service.create(
            admin_actor,
            {
                "userId": customer.id,
                "startDate": "2025-01-01T00:00:00Z",
                "pairs": [
                    {"pairId": btc_pair.id, "period": "ONE_MONTH"},
                    {"pairId": "no-such-pair", "period": "ONE_MONTH"},
                ],
            },
        )

    assert exc_info.value.message == "One or more trading pairs not found"
    assert await count_subscriptions(db_session) == 0


@pytest.mark.asyncio
async def test_create_batch_unknown_user(db_session, admin_actor, btc_pair, email_service):
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(NotFoundError) as exc_info:
        await service.create(
            admin_actor,
            {
                "userId": "ghost",
                "startDate": "2025-01-01T00:00:00Z",
                "pairs": [{"pairId": btc_pair.id, "period": "ONE_MONTH"}],
            },
        )

    assert exc_info.value.message == "User not found"


@pytest.mark.asyncio
async def test_create_batch_invalid_period(db_session, admin_actor, customer, btc_pair, email_service):
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(ValidationError):
        await service.create(
            admin_actor,
            {
                "userId": customer.id,
                "startDate": "2025-01-01T00:00:00Z",
                "pairs": [{"pairId": btc_pair.id, "period": "FOREVER"}],
            },
        )


@pytest.mark.asyncio
async def test_create_requires_staff(db_session, customer_actor, customer, btc_pair, email_service):
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(ForbiddenError):
        await service.create(
            customer_actor,
            {
                "userId": customer.id,
                "startDate": "2025-01-01T00:00:00Z",
                "pairs": [{"pairId": btc_pair.id, "period": "ONE_MONTH"}],
            },
        )

    logs = await get_audit_logs(db_session)
    assert logs[0].response_status == "FAILURE"


# ===========================
# CREATE (LEGACY SINGLE PAIR)
# ===========================


@pytest.mark.asyncio
async def test_create_single(db_session, admin_actor, customer, btc_pair, email_service):
    service = SubscriptionService(db_session, email_service=email_service)

    result = await service.create(
        admin_actor,
        {
            "userId": customer.id,
            "pairId": btc_pair.id,
            "period": "ONE_MONTH",
            "startDate": "2025-01-01T00:00:00Z",
            "expiryDate": "2025-02-01T00:00:00Z",
        },
    )

    assert result["message"] == "Subscription created successfully"
    assert result["subscription"]["pair"]["symbol"] == "BTCUSDT"
    assert result["subscription"]["status"] == "PENDING"


@pytest.mark.asyncio
async def test_create_single_missing_fields(db_session, admin_actor, customer, email_service):
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(ValidationError) as exc_info:
        await service.create(admin_actor, {"userId": customer.id, "period": "ONE_MONTH"})

    assert exc_info.value.message == "Missing required fields"


@pytest.mark.asyncio
async def test_create_single_conflict(
    db_session, admin_actor, customer, btc_pair, make_subscription, email_service
):
    await make_subscription(customer, btc_pair, status="ACTIVE")
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(ConflictError) as exc_info:
        await service.create(
            admin_actor,
            {
                "userId": customer.id,
                "pairId": btc_pair.id,
                "period": "ONE_MONTH",
                "startDate": "2025-01-01T00:00:00Z",
                "expiryDate": "2025-02-01T00:00:00Z",
            },
        )

    assert exc_info.value.message == "User already has an active subscription for this pair"


# ===========================
# DELETE
# ===========================


@pytest.mark.asyncio
async def test_delete_keeps_snapshot_in_audit_log(
    db_session, admin_actor, customer, btc_pair, make_subscription, email_service
):
    subscription = await make_subscription(customer, btc_pair, status="ACTIVE")
    service = SubscriptionService(db_session, email_service=email_service)

    result = await service.delete_subscription(admin_actor, subscription.id)

    assert result == {"message": "Subscription deleted successfully"}
    assert await get_subscription(db_session, subscription.id) is None

    logs = await get_audit_logs(db_session)
    assert len(logs) == 1
    assert logs[0].action == AuditAction.CANCEL_SUBSCRIPTION.value
    snapshot = logs[0].details["deletedSubscription"]
    assert snapshot["status"] == "ACTIVE"
    assert snapshot["pair"]["symbol"] == "BTCUSDT"
    assert snapshot["targetUser"]["email"] == "trader@example.com"


@pytest.mark.asyncio
async def test_delete_removes_subscription_from_metrics(
    db_session, admin_actor, customer, btc_pair, make_subscription, email_service
):
    kept = await make_subscription(customer, btc_pair, status="EXPIRED")
    subscription = await make_subscription(customer, btc_pair, status="ACTIVE")
    service = SubscriptionService(db_session, email_service=email_service)
    await service.update_subscription(admin_actor, {"id": kept.id, "inviteStatus": "SENT"})
    await service.update_subscription(admin_actor, {"id": subscription.id, "inviteStatus": "SENT"})

    await service.delete_subscription(admin_actor, subscription.id)

    stats = await get_stats(db_session, StatsType.SUBSCRIPTION_METRICS.value)
    assert [item["id"] for item in stats.stats_metadata] == [kept.id]


@pytest.mark.asyncio
async def test_delete_requires_id(db_session, admin_actor, email_service):
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(ValidationError) as exc_info:
        await service.delete_subscription(admin_actor, None)

    assert exc_info.value.message == "Subscription ID is required"


@pytest.mark.asyncio
async def test_delete_unknown(db_session, admin_actor, email_service):
    service = SubscriptionService(db_session, email_service=email_service)

    with pytest.raises(NotFoundError):
        await service.delete_subscription(admin_actor, "missing")


# ===========================
# READ
# ===========================


@pytest.mark.asyncio
async def test_listing_with_search_and_stats(
    db_session, admin_actor, customer, admin_user, btc_pair, eth_pair, make_subscription, email_service
):
    await make_subscription(customer, btc_pair, status="ACTIVE")
    await make_subscription(customer, eth_pair)
    await make_subscription(admin_user, eth_pair)
    service = SubscriptionService(db_session, email_service=email_service)

    everything = await service.list_subscriptions(admin_actor)
    assert everything["pagination"]["totalCount"] == 3
    assert everything["stats"]["byStatus"] == {"ACTIVE": 1, "PENDING": 2}

    eth_only = await service.list_subscriptions(admin_actor, search="ethusdt")
    assert eth_only["pagination"]["totalCount"] == 2
    assert {s["pair"]["symbol"] for s in eth_only["subscriptions"]} == {"ETHUSDT"}

    by_email = await service.list_subscriptions(admin_actor, search="TRADER@")
    assert by_email["pagination"]["totalCount"] == 2

    paged = await service.list_subscriptions(admin_actor, page=2, limit=2)
    assert len(paged["subscriptions"]) == 1
    assert paged["pagination"]["totalPages"] == 2


@pytest.mark.asyncio
async def test_user_listing_is_scoped_to_own_subscriptions(
    db_session, customer_actor, customer, admin_user, btc_pair, make_subscription, email_service
):
    own = await make_subscription(customer, btc_pair)
    other = await make_subscription(admin_user, btc_pair)
    service = SubscriptionService(db_session, email_service=email_service)

    listing = await service.list_subscriptions(customer_actor, user_id=admin_user.id)
    assert [s["id"] for s in listing["subscriptions"]] == [own.id]

    single = await service.get_subscription(customer_actor, own.id)
    assert single["totalCount"] == 1

    with pytest.raises(NotFoundError):
        await service.get_subscription(customer_actor, other.id)
