# coding: utf-8
"""
Subscription Service

Admin-console operations on subscriptions:
- listing with search/pagination and status stats
- batch (multi-pair) and legacy single-pair creation
- updates through the lifecycle rules (invite completion, manual dates)
- hard delete with an audit snapshot

Every failed operation leaves a FAILURE audit entry (best effort).
"""

import math
from datetime import datetime, UTC
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.billing_config import get_period_label
from config.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, TRADINGVIEW_URL, WEBAPP_URL
from src.core.actor import Actor
from src.core.enums import (
    AuditAction,
    AuditTargetType,
    EventType,
    InviteStatus,
    StatsType,
    SubscriptionStatus,
)
from src.core.exceptions import (
    AppError,
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from src.database import crud
from src.database.models import Subscription, User
from src.services.audit_service import create_audit_log, record, record_failure
from src.services.email_service import EmailService, get_email_service
from src.services.posthog_service import track_subscription_updated, track_subscriptions_created
from src.services.serializers import iso, pair_summary, subscription_to_dict, user_summary
from src.services.stats_service import try_patch_metrics_stats, try_remove_metrics_item
from src.services.subscription_lifecycle import (
    SubscriptionUpdate,
    compute_expiry,
    ensure_utc,
    parse_datetime,
    parse_decimal,
    resolve_update,
    validate_period,
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def invite_email_params(subscription: Subscription) -> Dict[str, Any]:
    """Parameter bag for the invite_* templates"""
    user = subscription.user
    pair = subscription.pair
    expiry = ensure_utc(subscription.expiry_date)
    return {
        "firstName": user.name or user.email.split("@")[0],
        "tradingViewUsername": user.tradingview_username or "",
        "pair": pair.name if pair else subscription.pair_id,
        "period": get_period_label(subscription.period),
        "expiryDate": expiry.strftime("%Y-%m-%d") if expiry else "",
        "tradingViewUrl": TRADINGVIEW_URL,
        "dashboardUrl": f"{WEBAPP_URL}/dashboard",
    }


class SubscriptionService:
    """Subscription operations bound to one database session"""

    def __init__(
        self,
        session: AsyncSession,
        email_service: Optional[EmailService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.email_service = email_service or get_email_service()
        self.clock = clock or utcnow

    # ===========================
    # ERROR HANDLING
    # ===========================

    async def _run(
        self,
        actor: Actor,
        action: AuditAction,
        operation: Callable[[], Awaitable[Dict[str, Any]]],
        target_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Run an operation; on failure record it and re-raise as AppError
        """
        try:
            return await operation()

        except AppError as e:
            await record_failure(
                self.session, actor, action, AuditTargetType.SUBSCRIPTION,
                reason=e.message, target_id=target_id,
            )
            raise

        except SQLAlchemyError as e:
            logger.exception(f"Database error during {action.value}: {e}")
            await self.session.rollback()
            await record_failure(
                self.session, actor, action, AuditTargetType.SUBSCRIPTION,
                reason=f"database_error: {e.__class__.__name__}", target_id=target_id,
            )
            raise InternalError(f"Failed to {action.value.lower().replace('_', ' ')}") from e

    @staticmethod
    def _require_staff(actor: Actor) -> None:
        if not actor.is_staff:
            raise ForbiddenError("Only staff can manage subscriptions")

    # ===========================
    # READ
    # ===========================

    async def get_subscription(self, actor: Actor, subscription_id: str) -> Dict[str, Any]:
        """
        Single fetch in listing shape: {subscriptions: [s], totalCount: 1}

        Raises:
            NotFoundError: unknown ID (or another user's subscription for USER callers)
        """
        subscription = await crud.get_subscription(self.session, subscription_id)
        if subscription is None or (not actor.is_staff and subscription.user_id != actor.id):
            raise NotFoundError("Subscription not found")

        return {"subscriptions": [subscription_to_dict(subscription)], "totalCount": 1}

    async def list_subscriptions(
        self,
        actor: Actor,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """
        Paginated listing with per-status counts and total revenue

        USER callers always see only their own subscriptions.
        """
        if not actor.is_staff:
            user_id = actor.id

        page = max(int(page or 1), 1)
        limit = min(max(int(limit or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
        status = status.strip().upper() if status else None
        search = search.strip() if search else None

        subscriptions, total = await crud.list_subscriptions(
            self.session,
            user_id=user_id,
            status=status,
            search=search,
            offset=(page - 1) * limit,
            limit=limit,
        )
        by_status = await crud.count_subscriptions_by_status(
            self.session, user_id=user_id, search=search
        )
        total_revenue = await crud.get_total_revenue(self.session, user_id=user_id)

        return {
            "subscriptions": [subscription_to_dict(s) for s in subscriptions],
            "pagination": {
                "page": page,
                "limit": limit,
                "totalCount": total,
                "totalPages": math.ceil(total / limit) if total else 0,
            },
            "stats": {
                "byStatus": by_status,
                "totalRevenue": total_revenue,
            },
        }

    # ===========================
    # CREATE
    # ===========================

    async def create(self, actor: Actor, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Dispatch on payload shape: `pairs` array -> batch, otherwise legacy single pair
        """
        if "pairs" in payload:
            return await self.create_subscriptions(actor, payload)
        return await self.create_subscription(actor, payload)

    async def create_subscriptions(self, actor: Actor, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Create one PENDING subscription per requested pair, all or nothing

        Payload: {userId, startDate, pairs: [{pairId, period, endDate, basePrice, discountRate}]}

        Raises:
            ValidationError: missing userId/startDate/pairs or malformed item (before any lookup)
            NotFoundError: unknown user or pair
            ConflictError: user already has an ACTIVE subscription for a requested pair
        """
        return await self._run(
            actor,
            AuditAction.CREATE_SUBSCRIPTION,
            lambda: self._create_batch(actor, payload),
            target_id=payload.get("userId"),
        )

    async def _create_batch(self, actor: Actor, payload: Mapping[str, Any]) -> Dict[str, Any]:
        self._require_staff(actor)

        user_id = payload.get("userId")
        start_value = payload.get("startDate")
        pairs = payload.get("pairs")

        if not user_id or not start_value or not isinstance(pairs, list) or not pairs:
            raise ValidationError("Missing required fields: userId, startDate, and pairs array")

        start_date = parse_datetime(start_value, "startDate")
        items = [self._parse_batch_item(item, start_date) for item in pairs]

        # Row lock on the user serializes concurrent batches for the same user
        user = await crud.get_user_by_id(self.session, user_id, for_update=True)
        if user is None:
            raise NotFoundError("User not found")

        pair_ids = [item["pair_id"] for item in items]
        found_pairs = {pair.id: pair for pair in await crud.get_pairs_by_ids(self.session, pair_ids)}
        if len(found_pairs) != len(set(pair_ids)):
            raise NotFoundError("One or more trading pairs not found")

        await self._reject_active(user, pair_ids, batch=True)

        subscriptions = [
            Subscription(
                user=user,
                pair=found_pairs[item["pair_id"]],
                period=item["period"],
                start_date=start_date,
                expiry_date=item["expiry_date"],
                status=SubscriptionStatus.PENDING.value,
                invite_status=InviteStatus.PENDING.value,
                base_price=item["base_price"],
                discount_rate=item["discount_rate"],
            )
            for item in items
        ]
        self.session.add_all(subscriptions)
        await self.session.commit()

        logger.info(f"{len(subscriptions)} subscriptions created for user {user.id} by {actor.id}")

        # Everything read from the models is captured before the side effects:
        # a failed log write rolls the session back and expires all instances
        response = {
            "message": f"{len(subscriptions)} subscriptions created successfully",
            "subscriptions": [subscription_to_dict(s) for s in subscriptions],
        }
        details = {
            "subscriptionCount": len(subscriptions),
            "subscriptionIds": [s.id for s in subscriptions],
            "targetUser": {"id": user.id, "email": user.email, "name": user.name},
            "pairs": [
                {"symbol": s.pair.symbol, "timeframe": s.pair.timeframe, "period": s.period}
                for s in subscriptions
            ],
        }
        metrics = [self._metrics_item(s) for s in subscriptions]
        periods = [s.period for s in subscriptions]
        target_user_id = user.id

        await record(
            self.session,
            actor,
            AuditAction.CREATE_SUBSCRIPTION,
            EventType.MULTI_SUBSCRIPTION_CREATED,
            AuditTargetType.SUBSCRIPTION,
            target_id=target_user_id,
            details=details,
        )
        await self._patch_metrics(metrics)
        track_subscriptions_created(target_user_id, len(periods), periods)

        return response

    @staticmethod
    def _parse_batch_item(item: Any, start_date: datetime) -> Dict[str, Any]:
        if not isinstance(item, Mapping) or not item.get("pairId"):
            raise ValidationError("Each pair requires pairId and period")

        period = validate_period(item.get("period"))

        end_value = item.get("endDate")
        expiry_date = (
            parse_datetime(end_value, "endDate") if end_value else compute_expiry(start_date, period)
        )

        base_price = item.get("basePrice")
        discount_rate = item.get("discountRate")
        return {
            "pair_id": item["pairId"],
            "period": period,
            "expiry_date": expiry_date,
            "base_price": parse_decimal(base_price, "basePrice") if base_price is not None else None,
            "discount_rate": (
                parse_decimal(discount_rate, "discountRate") if discount_rate is not None else None
            ),
        }

    async def create_subscription(self, actor: Actor, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Legacy single-pair creation

        Payload: {userId, pairId, period, startDate, expiryDate, basePrice?, discountRate?}
        """
        return await self._run(
            actor,
            AuditAction.CREATE_SUBSCRIPTION,
            lambda: self._create_single(actor, payload),
            target_id=payload.get("userId"),
        )

    async def _create_single(self, actor: Actor, payload: Mapping[str, Any]) -> Dict[str, Any]:
        self._require_staff(actor)

        required = ("userId", "pairId", "period", "startDate", "expiryDate")
        if any(not payload.get(name) for name in required):
            raise ValidationError("Missing required fields")

        period = validate_period(payload["period"])
        start_date = parse_datetime(payload["startDate"], "startDate")
        expiry_date = parse_datetime(payload["expiryDate"], "expiryDate")
        base_price = payload.get("basePrice")
        discount_rate = payload.get("discountRate")

        user = await crud.get_user_by_id(self.session, payload["userId"], for_update=True)
        if user is None:
            raise NotFoundError("User not found")

        pair = await crud.get_pair_by_id(self.session, payload["pairId"])
        if pair is None:
            raise NotFoundError("Trading pair not found")

        await self._reject_active(user, [pair.id], batch=False)

        subscription = Subscription(
            user=user,
            pair=pair,
            period=period,
            start_date=start_date,
            expiry_date=expiry_date,
            status=SubscriptionStatus.PENDING.value,
            invite_status=InviteStatus.PENDING.value,
            base_price=parse_decimal(base_price, "basePrice") if base_price is not None else None,
            discount_rate=(
                parse_decimal(discount_rate, "discountRate") if discount_rate is not None else None
            ),
        )
        self.session.add(subscription)
        await self.session.commit()

        logger.info(f"Subscription {subscription.id} created for user {user.id} ({pair.symbol})")

        response = {
            "message": "Subscription created successfully",
            "subscription": subscription_to_dict(subscription),
        }
        details = {
            "subscriptionCount": 1,
            "targetUser": {"id": user.id, "email": user.email, "name": user.name},
            "pairs": [{"symbol": pair.symbol, "timeframe": pair.timeframe, "period": period}],
        }
        metrics = [self._metrics_item(subscription)]
        subscription_id = subscription.id

        await record(
            self.session,
            actor,
            AuditAction.CREATE_SUBSCRIPTION,
            EventType.SUBSCRIPTION_CREATED,
            AuditTargetType.SUBSCRIPTION,
            target_id=subscription_id,
            details=details,
        )
        await self._patch_metrics(metrics)

        return response

    async def _reject_active(self, user: User, pair_ids: List[str], batch: bool) -> None:
        conflicts = await crud.find_active_subscriptions(self.session, user.id, pair_ids)
        if not conflicts:
            return

        if not batch:
            raise ConflictError("User already has an active subscription for this pair")

        symbols = list(dict.fromkeys(s.pair.symbol for s in conflicts))
        raise ConflictError(f"User already has active subscriptions for: {', '.join(symbols)}")

    # ===========================
    # UPDATE
    # ===========================

    async def update_subscription(self, actor: Actor, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Apply a partial update through the lifecycle rules

        Body: {id, status?, inviteStatus?|inviteState?, startDate?, expiryDate?,
        basePrice?, discountRate?, period?}

        Side effects after the commit: one audit entry (any role), one invite
        email keyed by the resulting invite status, subscription metrics.

        Raises:
            ValidationError: missing id or malformed field
            NotFoundError: unknown subscription
            ForbiddenError: USER touching another user's subscription, or
                anything but a cancellation of their own
            InternalError: persistence failure
        """
        return await self._run(
            actor,
            AuditAction.UPDATE_SUBSCRIPTION,
            lambda: self._update(actor, payload),
            target_id=payload.get("id"),
        )

    @staticmethod
    def _check_owner_update(update: SubscriptionUpdate) -> None:
        """
        Owners may only cancel; activation, invite progress and terms are staff changes
        """
        if update.touches_terms:
            raise ForbiddenError("Only staff can change dates, prices or period")
        if update.status not in (None, SubscriptionStatus.CANCELLED.value):
            raise ForbiddenError("You can only cancel your own subscriptions")
        if update.invite_status not in (None, InviteStatus.CANCELLED.value):
            raise ForbiddenError("You can only cancel your own subscriptions")

    async def _update(self, actor: Actor, payload: Mapping[str, Any]) -> Dict[str, Any]:
        update = SubscriptionUpdate.from_payload(payload)
        if not update.subscription_id:
            raise ValidationError("Subscription ID is required")

        subscription = await crud.get_subscription(self.session, update.subscription_id)
        if subscription is None:
            raise NotFoundError("Subscription not found")
        if not actor.is_staff and subscription.user_id != actor.id:
            raise ForbiddenError("You can only update your own subscriptions")
        if not actor.is_staff:
            self._check_owner_update(update)

        result = resolve_update(subscription, update, self.clock())
        if result.ignored_fields:
            logger.debug(
                f"Subscription {subscription.id}: {result.ignored_fields} ignored (invite completed)"
            )

        result.apply(subscription)
        await self.session.commit()

        logger.info(
            f"Subscription {subscription.id} updated by {actor.id}: "
            f"{result.previous} -> status={result.status}, invite={result.invite_status}"
        )

        response = {
            "message": "Subscription updated successfully",
            "subscription": subscription_to_dict(subscription),
        }
        details = {
            "updatedFields": result.updated_fields,
            "targetUser": user_summary(subscription.user),
            "pair": pair_summary(subscription.pair),
            "previousValues": result.previous,
            "newValues": {
                "status": result.status,
                "inviteStatus": result.invite_status,
                "startDate": iso(subscription.start_date),
                "expiryDate": iso(subscription.expiry_date),
            },
        }
        recipient = subscription.user.email
        email_params = invite_email_params(subscription)
        metrics = [self._metrics_item(subscription)]
        subscription_id = subscription.id
        user_id = subscription.user_id

        await create_audit_log(
            self.session,
            actor,
            AuditAction.UPDATE_SUBSCRIPTION,
            AuditTargetType.SUBSCRIPTION,
            target_id=subscription_id,
            details=details,
        )
        await self.email_service.send_email(
            result.email_template, recipient, email_params, session=self.session
        )
        await self._patch_metrics(metrics)
        track_subscription_updated(user_id, result.status, result.invite_status, result.invite_completed)

        return response

    # ===========================
    # DELETE
    # ===========================

    async def delete_subscription(self, actor: Actor, subscription_id: Optional[str]) -> Dict[str, Any]:
        """
        Hard delete (commissions cascade); the audit entry keeps a snapshot
        """
        return await self._run(
            actor,
            AuditAction.CANCEL_SUBSCRIPTION,
            lambda: self._delete(actor, subscription_id),
            target_id=subscription_id,
        )

    async def _delete(self, actor: Actor, subscription_id: Optional[str]) -> Dict[str, Any]:
        self._require_staff(actor)

        if not subscription_id:
            raise ValidationError("Subscription ID is required")

        subscription = await crud.get_subscription(self.session, subscription_id)
        if subscription is None:
            raise NotFoundError("Subscription not found")

        snapshot = {
            "id": subscription.id,
            "targetUser": user_summary(subscription.user),
            "pair": pair_summary(subscription.pair),
            "period": subscription.period,
            "status": subscription.status,
            "inviteStatus": subscription.invite_status,
            "startDate": iso(subscription.start_date),
            "expiryDate": iso(subscription.expiry_date),
        }

        await self.session.delete(subscription)
        await self.session.commit()

        logger.info(f"Subscription {subscription_id} deleted by {actor.id}")

        await record(
            self.session,
            actor,
            AuditAction.CANCEL_SUBSCRIPTION,
            EventType.SUBSCRIPTION_DELETED,
            AuditTargetType.SUBSCRIPTION,
            target_id=subscription_id,
            details={"deletedSubscription": snapshot},
        )
        await try_remove_metrics_item(
            self.session, StatsType.SUBSCRIPTION_METRICS.value, subscription_id
        )

        return {"message": "Subscription deleted successfully"}

    # ===========================
    # METRICS
    # ===========================

    @staticmethod
    def _metrics_item(subscription: Subscription) -> Dict[str, Any]:
        return {
            "id": subscription.id,
            "userId": subscription.user_id,
            "pairId": subscription.pair_id,
            "status": subscription.status,
            "inviteStatus": subscription.invite_status,
            "expiryDate": iso(subscription.expiry_date),
        }

    async def _patch_metrics(self, items: List[Dict[str, Any]]) -> None:
        for item in items:
            await try_patch_metrics_stats(self.session, StatsType.SUBSCRIPTION_METRICS.value, item)
