"""
Response payloads (camelCase, ISO-8601 dates) for the dashboard
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import inspect

from src.database.models import (
    User,
    Pair,
    Subscription,
    Payment,
    PaymentItem,
    Commission,
)
from src.services.subscription_lifecycle import ensure_utc


def iso(value: Optional[datetime]) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value else None


def _loaded(obj, attr: str) -> bool:
    """Relationship already loaded (async sessions cannot lazy load)"""
    return attr not in inspect(obj).unloaded


def user_summary(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "tradingviewUsername": user.tradingview_username,
    }


def pair_summary(pair: Optional[Pair]) -> Optional[Dict[str, Any]]:
    if pair is None:
        return None
    return {
        "id": pair.id,
        "symbol": pair.symbol,
        "timeframe": pair.timeframe,
        "strategy": pair.strategy,
        "version": pair.version,
    }


def subscription_to_dict(subscription: Subscription) -> Dict[str, Any]:
    data = {
        "id": subscription.id,
        "userId": subscription.user_id,
        "pairId": subscription.pair_id,
        "paymentId": subscription.payment_id,
        "period": subscription.period,
        "startDate": iso(subscription.start_date),
        "expiryDate": iso(subscription.expiry_date),
        "status": subscription.status,
        "inviteStatus": subscription.invite_status,
        "basePrice": subscription.base_price,
        "discountRate": subscription.discount_rate,
        "createdAt": iso(subscription.created_at),
        "updatedAt": iso(subscription.updated_at),
    }
    if _loaded(subscription, "user"):
        data["user"] = user_summary(subscription.user)
    if _loaded(subscription, "pair"):
        data["pair"] = pair_summary(subscription.pair)
    return data


def payment_item_to_dict(item: PaymentItem) -> Dict[str, Any]:
    data = {
        "id": item.id,
        "pairId": item.pair_id,
        "period": item.period,
        "basePrice": item.base_price,
        "discountRate": item.discount_rate,
        "finalPrice": item.final_price,
    }
    if _loaded(item, "pair"):
        data["pair"] = pair_summary(item.pair)
    return data


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    data = {
        "id": payment.id,
        "userId": payment.user_id,
        "status": payment.status,
        "network": payment.network,
        "totalAmount": payment.total_amount,
        "actuallyPaid": payment.actually_paid,
        "txHash": payment.tx_hash,
        "invoiceId": payment.invoice_id,
        "orderId": payment.order_id,
        "orderData": payment.order_data,
        "expiresAt": iso(payment.expires_at),
        "createdAt": iso(payment.created_at),
        "updatedAt": iso(payment.updated_at),
    }
    if _loaded(payment, "items"):
        data["items"] = [payment_item_to_dict(item) for item in payment.items]
    if _loaded(payment, "subscriptions"):
        data["subscriptions"] = [
            {
                "id": s.id,
                "pairId": s.pair_id,
                "status": s.status,
                "inviteStatus": s.invite_status,
                "expiryDate": iso(s.expiry_date),
            }
            for s in payment.subscriptions
        ]
    return data


def commission_to_dict(commission: Commission) -> Dict[str, Any]:
    return {
        "id": commission.id,
        "affiliateId": commission.affiliate_id,
        "subscriptionId": commission.subscription_id,
        "paymentId": commission.payment_id,
        "amount": commission.amount,
        "status": commission.status,
        "paidAt": iso(commission.paid_at),
        "createdAt": iso(commission.created_at),
    }
