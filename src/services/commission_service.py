# coding: utf-8
"""
Affiliate Commission Service

- Commission per subscription created from a paid checkout
  (buyer referred by an affiliate)
- Payouts: PENDING commissions are paid oldest first; the last one is
  split when the payout does not cover it completely
"""

from datetime import datetime, UTC
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from config.billing_config import PAYOUT_ROLES
from src.core.actor import Actor
from src.core.enums import AuditAction, AuditTargetType, CommissionStatus
from src.core.exceptions import AppError, ForbiddenError, NotFoundError, ValidationError
from src.database import crud
from src.database.models import Commission, Payment, PaymentItem, Subscription
from src.services.audit_service import create_audit_log, record_failure
from src.services.serializers import commission_to_dict


CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def commission_amount(final_price: float, commission_rate: float) -> float:
    """Commission for one item: final price * rate% (rounded to cents)"""
    return float(to_money(Decimal(str(final_price)) * Decimal(str(commission_rate)) / 100))


async def create_commissions_for_payment(
    session: AsyncSession,
    payment: Payment,
    items: Sequence[Tuple[PaymentItem, Subscription]],
) -> List[Commission]:
    """
    PENDING commission per (item, subscription) for the buyer's referrer

    Rows are added to the session; the caller commits them together with
    the subscriptions.

    Args:
        session: Database session
        payment: Paid checkout (user loaded)
        items: Payment items with the subscriptions created from them

    Returns:
        Created commissions (empty when the buyer was not referred)
    """
    buyer = payment.user
    if not buyer or not buyer.referred_by_id:
        return []

    affiliate = await crud.get_affiliate(session, buyer.referred_by_id)
    if affiliate is None:
        logger.warning(f"User {buyer.id} referred by unknown affiliate {buyer.referred_by_id}")
        return []
    if affiliate.user_id == buyer.id:
        logger.warning(f"Self-referral ignored for user {buyer.id}")
        return []

    commissions = []
    for item, subscription in items:
        amount = commission_amount(item.final_price, affiliate.commission_rate)
        if amount <= 0:
            continue
        commission = Commission(
            affiliate_id=affiliate.id,
            subscription=subscription,
            payment_id=payment.id,
            amount=amount,
            status=CommissionStatus.PENDING.value,
        )
        session.add(commission)
        commissions.append(commission)

    logger.info(
        f"{len(commissions)} commissions for affiliate {affiliate.id} on payment {payment.id}"
    )
    return commissions


async def get_commission_summary(
    session: AsyncSession, actor: Actor, affiliate_id: str
) -> Dict[str, Any]:
    """
    Commission list with pending/paid totals (staff or the affiliate owner)

    Raises:
        NotFoundError: unknown affiliate
        ForbiddenError: another user's affiliate account
    """
    affiliate = await crud.get_affiliate(session, affiliate_id)
    if affiliate is None:
        raise NotFoundError("Affiliate not found")
    if not actor.is_staff and affiliate.user_id != actor.id:
        raise ForbiddenError("Forbidden")

    commissions = await crud.get_affiliate_commissions(session, affiliate_id)
    pending = sum(
        (to_money(c.amount) for c in commissions if c.status == CommissionStatus.PENDING.value),
        Decimal("0"),
    )
    paid = sum(
        (to_money(c.amount) for c in commissions if c.status == CommissionStatus.PAID.value),
        Decimal("0"),
    )

    return {
        "affiliateId": affiliate.id,
        "referralCode": affiliate.referral_code,
        "commissionRate": affiliate.commission_rate,
        "commissions": [commission_to_dict(c) for c in commissions],
        "pendingTotal": float(pending),
        "paidTotal": float(paid),
    }


class PayoutError(AppError):
    """AppError carrying a machine-readable reason for the audit log"""

    def __init__(self, error: AppError, reason: str):
        super().__init__(error.message)
        self.status_code = error.status_code
        self.reason = reason


def _parse_amount(amount: Any) -> Optional[Decimal]:
    if isinstance(amount, bool) or amount is None:
        return None
    try:
        value = to_money(amount)
    except (ArithmeticError, ValueError):
        return None
    return value if value > 0 else None


async def process_payout(
    session: AsyncSession,
    actor: Actor,
    affiliate_id: Optional[str],
    amount: Any,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Pay out `amount` of an affiliate's PENDING commissions (ADMIN only)

    Args:
        session: Database session
        actor: Caller
        affiliate_id: Affiliate ID
        amount: Payout amount (> 0, at most the pending total)
        now: Payout instant

    Returns:
        {message, paidAmount, commissionsPaid}

    Raises:
        ForbiddenError / ValidationError / NotFoundError
    """
    try:
        return await _process_payout(session, actor, affiliate_id, amount, now or datetime.now(UTC))
    except PayoutError as e:
        await record_failure(
            session,
            actor,
            AuditAction.INITIATE_PAYOUT,
            AuditTargetType.PAYOUT,
            reason=e.reason,
            target_id=affiliate_id,
            details={"message": e.message, "amount": str(amount)},
        )
        raise


async def _process_payout(
    session: AsyncSession,
    actor: Actor,
    affiliate_id: Optional[str],
    amount: Any,
    now: datetime,
) -> Dict[str, Any]:
    if not actor.has_role(*PAYOUT_ROLES):
        raise PayoutError(ForbiddenError("Only admins can process payouts"), "forbidden_role")

    payout_amount = _parse_amount(amount)
    if not affiliate_id or payout_amount is None:
        raise PayoutError(ValidationError("Invalid payout amount"), "invalid_amount")

    affiliate = await crud.get_affiliate(session, affiliate_id)
    if affiliate is None:
        raise PayoutError(NotFoundError("Affiliate not found"), "affiliate_not_found")

    pending = await crud.get_pending_commissions(session, affiliate_id)
    pending_total = sum((to_money(c.amount) for c in pending), Decimal("0"))
    if payout_amount > pending_total:
        raise PayoutError(
            ValidationError("Payout amount exceeds pending commissions"), "insufficient_pending"
        )

    remaining = payout_amount
    paid_ids = []
    split = None

    for commission in pending:
        if remaining <= 0:
            break

        commission_value = to_money(commission.amount)
        if commission_value <= remaining:
            commission.status = CommissionStatus.PAID.value
            commission.paid_at = now
            remaining -= commission_value
            paid_ids.append(commission.id)
            continue

        # Partial: pay `remaining` of this one, keep the rest pending
        rest = Commission(
            affiliate_id=commission.affiliate_id,
            subscription_id=commission.subscription_id,
            payment_id=commission.payment_id,
            amount=float(commission_value - remaining),
            status=CommissionStatus.PENDING.value,
        )
        session.add(rest)

        commission.amount = float(remaining)
        commission.status = CommissionStatus.PAID.value
        commission.paid_at = now
        paid_ids.append(commission.id)
        split = {
            "commissionId": commission.id,
            "paidAmount": float(remaining),
            "newPendingAmount": rest.amount,
        }
        remaining = Decimal("0")

    await session.commit()

    logger.info(
        f"Payout {payout_amount} to affiliate {affiliate_id} by {actor.id}: "
        f"{len(paid_ids)} commissions paid"
    )

    await create_audit_log(
        session,
        actor,
        AuditAction.CREATE_PAYOUT,
        AuditTargetType.PAYOUT,
        target_id=affiliate_id,
        details={
            "email": actor.email,
            "amount": float(payout_amount),
            "walletAddress": affiliate.wallet_address,
            "commissionIds": paid_ids,
            "split": split,
        },
    )

    return {
        "message": "Payout processed successfully",
        "paidAmount": float(payout_amount),
        "commissionsPaid": len(paid_ids),
    }
