# coding: utf-8
"""
Billing Service

- Billing statistics (pure fold over a user's payments)
- Payment listing with status/date/search filters
- Checkout creation (payment + items priced from the pair catalog)
- Payment status transitions; the first transition to PAID creates one
  subscription per item plus affiliate commissions
"""

from datetime import datetime, timedelta, UTC
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.billing_config import BILLING_DATE_RANGES, PAYMENT_MANAGER_ROLES, get_period_label
from config.config import WEBAPP_URL
from src.core.actor import Actor
from src.core.enums import (
    AuditAction,
    AuditTargetType,
    EmailTemplate,
    EventType,
    InviteStatus,
    PaymentNetwork,
    PaymentStatus,
    StatsType,
    SubscriptionStatus,
)
from src.core.exceptions import (
    AppError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from src.database import crud
from src.database.models import Pair, Payment, PaymentItem, Subscription
from src.services.audit_service import record, record_failure
from src.services.commission_service import create_commissions_for_payment, to_money
from src.services.email_service import EmailService, get_email_service
from src.services.posthog_service import track_payment_completed, track_payment_started
from src.services.serializers import iso, payment_to_dict
from src.services.stats_service import try_patch_metrics_stats
from src.services.subscription_lifecycle import (
    compute_expiry,
    parse_datetime,
    parse_decimal,
    validate_period,
)


# Statuses only payment managers may set
CONFIRMATION_STATUSES = (PaymentStatus.PAID.value, PaymentStatus.UNDERPAID.value)


def compute_billing_stats(payments: Iterable[Any]) -> Dict[str, Any]:
    """
    Summary of a payment collection (recomputed on every read)

    - totalSpent: actuallyPaid (or totalAmount when not set) over PAID payments
    - totalPayments: every payment, whatever the status
    - activeSubscriptions: linked subscriptions with status ACTIVE
    - pendingPayments: payments with status PENDING

    Args:
        payments: Payment models (or objects with status, actually_paid,
            total_amount and subscriptions)
    """
    total_spent = 0.0
    total_payments = 0
    active_subscriptions = 0
    pending_payments = 0

    for payment in payments:
        total_payments += 1

        if payment.status == PaymentStatus.PAID.value:
            total_spent += float(payment.actually_paid or payment.total_amount or 0)
        elif payment.status == PaymentStatus.PENDING.value:
            pending_payments += 1

        active_subscriptions += sum(
            1
            for subscription in (payment.subscriptions or [])
            if subscription.status == SubscriptionStatus.ACTIVE.value
        )

    return {
        "totalSpent": round(total_spent, 2),
        "totalPayments": total_payments,
        "activeSubscriptions": active_subscriptions,
        "pendingPayments": pending_payments,
    }


def catalog_price(pair: Pair, period: str) -> tuple:
    """(base price, discount %) of a pair for a period from the price list"""
    suffix = period.lower()
    return (
        float(getattr(pair, f"price_{suffix}", 0.0) or 0.0),
        float(getattr(pair, f"discount_{suffix}", 0.0) or 0.0),
    )


def final_price(base_price: float, discount_rate: float) -> float:
    return float(to_money(base_price * (1 - discount_rate / 100)))


def utcnow() -> datetime:
    return datetime.now(UTC)


class BillingService:
    """Payment operations bound to one database session"""

    def __init__(
        self,
        session: AsyncSession,
        email_service: Optional[EmailService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.email_service = email_service or get_email_service()
        self.clock = clock or utcnow

    async def _run(self, actor: Actor, action: AuditAction, operation, target_id: Optional[str] = None):
        try:
            return await operation()

        except AppError as e:
            await record_failure(
                self.session, actor, action, AuditTargetType.PAYMENT,
                reason=e.message, target_id=target_id,
            )
            raise

        except SQLAlchemyError as e:
            logger.exception(f"Database error during {action.value}: {e}")
            await self.session.rollback()
            await record_failure(
                self.session, actor, action, AuditTargetType.PAYMENT,
                reason=f"database_error: {e.__class__.__name__}", target_id=target_id,
            )
            raise InternalError(f"Failed to {action.value.lower().replace('_', ' ')}") from e

    # ===========================
    # LIST
    # ===========================

    async def list_payments(
        self,
        actor: Actor,
        status: Optional[str] = None,
        date_range: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        The caller's payments and their stats

        Args:
            actor: Session user (always scoped to own payments)
            status: PaymentStatus value or "all"
            date_range: 7d / 30d / 90d (anything else: no date filter)
            search: Pair symbol/timeframe, orderId or invoiceId

        Raises:
            ValidationError: unknown status
        """
        status_filter = None
        if status and status.lower() != "all":
            status_filter = status.strip().upper()
            if status_filter not in PaymentStatus.__members__:
                raise ValidationError(f"Invalid status: {status}")

        since = None
        if date_range in BILLING_DATE_RANGES:
            since = self.clock() - timedelta(days=BILLING_DATE_RANGES[date_range])

        payments = await crud.list_user_payments(
            self.session,
            actor.id,
            status=status_filter,
            since=since,
            search=search.strip() if search else None,
        )

        return {
            "payments": [payment_to_dict(p) for p in payments],
            "stats": compute_billing_stats(payments),
        }

    # ===========================
    # CREATE
    # ===========================

    async def create_payment(self, actor: Actor, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Create a PENDING checkout with one item per pair/period

        Payload: {items: [{pairId, period, basePrice?, discountRate?}], network,
        userId?, orderId?, invoiceId?, expiresAt?, orderData?}
        Missing prices are taken from the pair's price list.
        """
        return await self._run(
            actor,
            AuditAction.CREATE_PAYMENT,
            lambda: self._create(actor, payload),
            target_id=payload.get("userId") or actor.id,
        )

    async def _create(self, actor: Actor, payload: Mapping[str, Any]) -> Dict[str, Any]:
        items = payload.get("items")
        if not isinstance(items, list) or not items:
            raise ValidationError("Missing required fields: items")

        network = str(payload.get("network") or "").strip().upper()
        if network not in PaymentNetwork.__members__:
            raise ValidationError("Invalid network")

        user_id = payload.get("userId") or actor.id
        if user_id != actor.id and not actor.has_role(*PAYMENT_MANAGER_ROLES):
            raise ForbiddenError("You can only create payments for yourself")

        for item in items:
            if not isinstance(item, Mapping) or not item.get("pairId"):
                raise ValidationError("Each item requires pairId and period")
        periods = [validate_period(item.get("period")) for item in items]

        expires_value = payload.get("expiresAt")
        expires_at = parse_datetime(expires_value, "expiresAt") if expires_value else None

        order_data = payload.get("orderData")
        if order_data is not None and not isinstance(order_data, (dict, list)):
            raise ValidationError("Invalid orderData")

        user = await crud.get_user_by_id(self.session, user_id)
        if user is None:
            raise NotFoundError("User not found")

        pairs = {p.id: p for p in await crud.get_pairs_by_ids(self.session, [i["pairId"] for i in items])}
        if len(pairs) != len({i["pairId"] for i in items}):
            raise NotFoundError("One or more trading pairs not found")

        payment_items = []
        for item, period in zip(items, periods):
            pair = pairs[item["pairId"]]
            list_price, list_discount = catalog_price(pair, period)
            base_price = (
                parse_decimal(item["basePrice"], "basePrice")
                if item.get("basePrice") is not None else list_price
            )
            discount_rate = (
                parse_decimal(item["discountRate"], "discountRate")
                if item.get("discountRate") is not None else list_discount
            )
            if base_price < 0 or not 0 <= discount_rate <= 100:
                raise ValidationError("Invalid price or discount")

            payment_items.append(
                PaymentItem(
                    pair=pair,
                    period=period,
                    base_price=base_price,
                    discount_rate=discount_rate,
                    final_price=final_price(base_price, discount_rate),
                )
            )

        total_amount = float(sum((to_money(i.final_price) for i in payment_items), to_money(0)))
        if total_amount <= 0:
            raise ValidationError("Total amount must be greater than zero")

        payment = Payment(
            user=user,
            status=PaymentStatus.PENDING.value,
            network=network,
            total_amount=total_amount,
            order_id=payload.get("orderId"),
            invoice_id=payload.get("invoiceId"),
            order_data=order_data,
            expires_at=expires_at,
            items=payment_items,
            subscriptions=[],
        )
        self.session.add(payment)
        await self.session.commit()

        logger.info(f"Payment {payment.id} created for user {user.id}: {total_amount} {network}")

        response = {"message": "Payment created successfully", "payment": payment_to_dict(payment)}
        details = {
            "userId": user.id,
            "totalAmount": total_amount,
            "network": network,
            "items": [
                {"pair": i.pair.symbol, "period": i.period, "finalPrice": i.final_price}
                for i in payment_items
            ],
        }
        payment_id = payment.id

        await record(
            self.session,
            actor,
            AuditAction.CREATE_PAYMENT,
            EventType.PAYMENT_CREATED,
            AuditTargetType.PAYMENT,
            target_id=payment_id,
            details=details,
        )
        await try_patch_metrics_stats(
            self.session,
            StatsType.PAYMENT_METRICS.value,
            {"id": payment_id, "status": PaymentStatus.PENDING.value, "totalAmount": total_amount},
        )
        track_payment_started(user_id, total_amount, network, len(payment_items))

        return response

    # ===========================
    # STATUS UPDATE
    # ===========================

    async def update_payment(self, actor: Actor, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Change a payment's status (and paid amount / tx hash)

        Payload: {id, status, actuallyPaid?, txHash?}
        """
        return await self._run(
            actor,
            AuditAction.UPDATE_PAYMENT,
            lambda: self._update(actor, payload),
            target_id=payload.get("id"),
        )

    async def _update(self, actor: Actor, payload: Mapping[str, Any]) -> Dict[str, Any]:
        payment_id = payload.get("id")
        if not payment_id:
            raise ValidationError("Payment ID is required")

        status = str(payload.get("status") or "").strip().upper()
        if status not in PaymentStatus.__members__:
            raise ValidationError("Invalid status")

        actually_paid_value = payload.get("actuallyPaid")
        actually_paid = (
            parse_decimal(actually_paid_value, "actuallyPaid")
            if actually_paid_value is not None else None
        )

        payment = await crud.get_payment(self.session, payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")

        if not actor.is_staff and payment.user_id != actor.id:
            raise ForbiddenError("You can only update your own payments")
        is_manager = actor.has_role(*PAYMENT_MANAGER_ROLES)
        if status in CONFIRMATION_STATUSES and not is_manager:
            raise ForbiddenError("Only ADMIN or MANAGER can confirm payments")
        if payment.status in CONFIRMATION_STATUSES and not is_manager:
            raise ForbiddenError("Only ADMIN or MANAGER can change a confirmed payment")

        previous_status = payment.status
        # Subscriptions are granted once per payment, whatever the status history
        newly_paid = status == PaymentStatus.PAID.value and not payment.subscriptions

        payment.status = status
        if actually_paid is not None:
            payment.actually_paid = actually_paid
        if payload.get("txHash"):
            payment.tx_hash = payload["txHash"]

        created = []
        commissions = []
        if newly_paid:
            now = self.clock()
            for item in payment.items:
                subscription = Subscription(
                    user_id=payment.user_id,
                    pair_id=item.pair_id,
                    payment=payment,
                    period=item.period,
                    start_date=now,
                    expiry_date=compute_expiry(now, item.period),
                    status=SubscriptionStatus.PENDING.value,
                    invite_status=InviteStatus.PENDING.value,
                    base_price=item.base_price,
                    discount_rate=item.discount_rate,
                )
                self.session.add(subscription)
                created.append((item, subscription))

            commissions = await create_commissions_for_payment(self.session, payment, created)

        # Payment, subscriptions and commissions commit together
        await self.session.commit()

        logger.info(
            f"Payment {payment.id}: {previous_status} -> {status} by {actor.id} "
            f"({len(created)} subscriptions, {len(commissions)} commissions)"
        )

        response = {"message": "Payment updated successfully", "payment": payment_to_dict(payment)}
        details = {
            "previousStatus": previous_status,
            "newStatus": status,
            "actuallyPaid": payment.actually_paid,
            "txHash": payment.tx_hash,
            "subscriptionIds": [s.id for _, s in created],
            "commissionsCreated": len(commissions),
        }
        receipt = self._receipt(payment, created) if newly_paid else None
        metrics = {
            "id": payment.id,
            "status": status,
            "totalAmount": payment.total_amount,
            "actuallyPaid": payment.actually_paid,
        }
        user_id = payment.user_id

        await record(
            self.session,
            actor,
            AuditAction.UPDATE_PAYMENT,
            EventType.PAYMENT_UPDATED,
            AuditTargetType.PAYMENT,
            target_id=payment_id,
            details=details,
        )

        if receipt is not None:
            recipient, params = receipt
            await self.email_service.send_email(
                EmailTemplate.PAYMENT_RECEIPT, recipient, params, session=self.session
            )
            track_payment_completed(user_id, metrics["actuallyPaid"] or metrics["totalAmount"],
                                    params["network"], len(created))

        await try_patch_metrics_stats(self.session, StatsType.PAYMENT_METRICS.value, metrics)

        return response

    @staticmethod
    def _receipt(payment: Payment, created) -> tuple:
        user = payment.user
        first_expiry = min((s.expiry_date for _, s in created if s.expiry_date), default=None)
        params = {
            "firstName": user.name or user.email.split("@")[0],
            "pair": ", ".join(item.pair.name for item, _ in created),
            "period": ", ".join(get_period_label(item.period) for item, _ in created),
            "amount": payment.actually_paid or payment.total_amount,
            "network": payment.network,
            "txHash": payment.tx_hash or "",
            "expiryDate": iso(first_expiry)[:10] if first_expiry else "",
            "tradingViewUsername": user.tradingview_username or "",
            "dashboardUrl": f"{WEBAPP_URL}/dashboard/billing",
        }
        return user.email, params
