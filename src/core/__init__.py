"""
Core module - shared enums and errors.
"""

from src.core.enums import (
    Role,
    SubscriptionStatus,
    InviteStatus,
    SubscriptionPeriod,
    PaymentStatus,
    PaymentNetwork,
    CommissionStatus,
    AuditAction,
    AuditTargetType,
    ResponseStatus,
    EventType,
    StatsType,
    EmailTemplate,
)
from src.core.actor import Actor, SYSTEM_ACTOR, UNKNOWN_ACTOR
from src.core.exceptions import (
    AppError,
    ValidationError,
    UnauthorizedError,
    ForbiddenError,
    NotFoundError,
    ConflictError,
    InternalError,
)

__all__ = [
    "Actor",
    "SYSTEM_ACTOR",
    "UNKNOWN_ACTOR",
    "Role",
    "SubscriptionStatus",
    "InviteStatus",
    "SubscriptionPeriod",
    "PaymentStatus",
    "PaymentNetwork",
    "CommissionStatus",
    "AuditAction",
    "AuditTargetType",
    "ResponseStatus",
    "EventType",
    "StatsType",
    "EmailTemplate",
    "AppError",
    "ValidationError",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "InternalError",
]
