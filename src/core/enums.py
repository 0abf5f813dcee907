"""
Core Enums - shared value types for subscriptions, billing and audit.

Defines:
- Role: dashboard user roles
- SubscriptionStatus / InviteStatus / SubscriptionPeriod: subscription lifecycle
- PaymentStatus / PaymentNetwork: checkout state
- CommissionStatus: affiliate commission state
- AuditAction / AuditTargetType / EventType: audit and event log vocabulary
"""

from enum import Enum
from typing import Optional

from config.billing_config import STAFF_ROLES


class Role(str, Enum):
    """Dashboard user roles"""

    USER = "USER"
    ADMIN = "ADMIN"
    SUPPORT = "SUPPORT"
    MANAGER = "MANAGER"

    @classmethod
    def is_staff(cls, role: Optional[str]) -> bool:
        """ADMIN, SUPPORT and MANAGER act on behalf of the platform."""
        return role in STAFF_ROLES


class SubscriptionStatus(str, Enum):
    """Billing state of a subscription"""

    PENDING = "PENDING"  # Created, access not granted yet
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"  # expiryDate passed
    CANCELLED = "CANCELLED"


class InviteStatus(str, Enum):
    """TradingView invite state of a subscription"""

    PENDING = "PENDING"
    SENT = "SENT"
    COMPLETED = "COMPLETED"  # Access granted, dates recomputed
    CANCELLED = "CANCELLED"


class SubscriptionPeriod(str, Enum):
    """Billing periods"""

    ONE_MONTH = "ONE_MONTH"
    THREE_MONTHS = "THREE_MONTHS"
    SIX_MONTHS = "SIX_MONTHS"
    TWELVE_MONTHS = "TWELVE_MONTHS"


class PaymentStatus(str, Enum):
    """Checkout payment status"""

    PENDING = "PENDING"  # Invoice created, awaiting funds
    PAID = "PAID"
    UNDERPAID = "UNDERPAID"  # Partially paid
    EXPIRED = "EXPIRED"  # Invoice expired
    FAILED = "FAILED"


class PaymentNetwork(str, Enum):
    """Crypto networks accepted at checkout"""

    USDT = "USDT"
    BTC = "BTC"
    ETH = "ETH"
    USDT_TRC20 = "USDT_TRC20"
    USDT_ERC20 = "USDT_ERC20"
    USDT_BEP20 = "USDT_BEP20"


class CommissionStatus(str, Enum):
    """Affiliate commission status"""

    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class AuditAction(str, Enum):
    """Actions recorded in the audit log"""

    # Users / auth
    CREATE_USER = "CREATE_USER"
    UPDATE_USER = "UPDATE_USER"
    DELETE_USER = "DELETE_USER"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    FAILED_LOGIN = "FAILED_LOGIN"
    PASSWORD_RESET = "PASSWORD_RESET"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"

    # Pairs
    CREATE_PAIR = "CREATE_PAIR"
    UPDATE_PAIR = "UPDATE_PAIR"
    DELETE_PAIR = "DELETE_PAIR"

    # Subscriptions
    CREATE_SUBSCRIPTION = "CREATE_SUBSCRIPTION"
    UPDATE_SUBSCRIPTION = "UPDATE_SUBSCRIPTION"
    CANCEL_SUBSCRIPTION = "CANCEL_SUBSCRIPTION"

    # Payments
    PROCESS_PAYMENT = "PROCESS_PAYMENT"
    REFUND_PAYMENT = "REFUND_PAYMENT"
    CREATE_PAYMENT = "CREATE_PAYMENT"
    UPDATE_PAYMENT = "UPDATE_PAYMENT"
    DELETE_PAYMENT = "DELETE_PAYMENT"

    # Affiliate payouts
    INITIATE_PAYOUT = "INITIATE_PAYOUT"
    CREATE_PAYOUT = "CREATE_PAYOUT"
    UPDATE_PAYOUT = "UPDATE_PAYOUT"

    # Email
    EMAIL_SENT = "EMAIL_SENT"
    EMAIL_FAILED = "EMAIL_FAILED"

    # System
    SYSTEM_MAINTENANCE = "SYSTEM_MAINTENANCE"
    CONFIG_UPDATE = "CONFIG_UPDATE"
    DATA_EXPORT = "DATA_EXPORT"
    DATA_IMPORT = "DATA_IMPORT"
    ROLE_CHANGE = "ROLE_CHANGE"
    PERMISSION_CHANGE = "PERMISSION_CHANGE"


class AuditTargetType(str, Enum):
    """Entity kinds an audit entry can point at"""

    USER = "USER"
    PAIR = "PAIR"
    SUBSCRIPTION = "SUBSCRIPTION"
    PAYMENT = "PAYMENT"
    SYSTEM = "SYSTEM"
    CONFIG = "CONFIG"
    PAYOUT = "PAYOUT"
    EMAIL = "EMAIL"


class ResponseStatus(str, Enum):
    """Outcome recorded on audit entries"""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class EventType(str, Enum):
    """User-initiated events (event log)"""

    SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
    MULTI_SUBSCRIPTION_CREATED = "MULTI_SUBSCRIPTION_CREATED"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"
    SUBSCRIPTION_DELETED = "SUBSCRIPTION_DELETED"
    SUBSCRIPTIONS_EXPIRED = "SUBSCRIPTIONS_EXPIRED"
    PAYMENT_CREATED = "PAYMENT_CREATED"
    PAYMENT_UPDATED = "PAYMENT_UPDATED"


class StatsType(str, Enum):
    """Metrics documents patched by the stats service"""

    SUBSCRIPTION_METRICS = "SUBSCRIPTION_METRICS"
    EMAIL_METRICS = "EMAIL_METRICS"
    PAYMENT_METRICS = "PAYMENT_METRICS"


class EmailTemplate(str, Enum):
    """Email template keys"""

    INVITE_PENDING = "invite_pending"
    INVITE_SENT = "invite_sent"
    INVITE_COMPLETED = "invite_completed"
    INVITE_CANCELED = "invite_canceled"
    PAYMENT_RECEIPT = "payment_receipt"
    RENEWAL_REMINDER = "renewal_reminder"
    CUSTOM = "custom"
