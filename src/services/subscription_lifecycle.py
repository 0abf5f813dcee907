"""
Subscription lifecycle rules

Pure functions (no I/O, the clock is passed in) that decide how a
subscription changes when an update is applied:

- period -> calendar month offset
- request normalization (legacy inviteState alias, upper-casing, parsing)
- invite completion recomputes startDate/expiryDate from the period
- which invite email template goes out after the change
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Dict, Mapping, Optional

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from config.billing_config import PERIOD_MONTHS
from src.core.enums import (
    SubscriptionStatus,
    InviteStatus,
    SubscriptionPeriod,
    EmailTemplate,
)
from src.core.exceptions import ValidationError


INVITE_TEMPLATES = {
    InviteStatus.COMPLETED.value: EmailTemplate.INVITE_COMPLETED.value,
    InviteStatus.SENT.value: EmailTemplate.INVITE_SENT.value,
    InviteStatus.PENDING.value: EmailTemplate.INVITE_PENDING.value,
    InviteStatus.CANCELLED.value: EmailTemplate.INVITE_CANCELED.value,
    "CANCELED": EmailTemplate.INVITE_CANCELED.value,
}


# ===========================
# DATES & PERIODS
# ===========================


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC (SQLite returns naive values)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_datetime(value: Any, field_name: str) -> datetime:
    """
    Parse an ISO-8601 string (or pass through a datetime) as a UTC instant

    Raises:
        ValidationError: value is not a date
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Invalid {field_name}")
    try:
        return ensure_utc(isoparse(value.strip()))
    except ValueError:
        raise ValidationError(f"Invalid {field_name}")


def parse_decimal(value: Any, field_name: str) -> float:
    """
    Parse a price/percent given as number or numeric string

    Raises:
        ValidationError: value is not numeric
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field_name}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field_name}")


def normalize_period(period: Any) -> Optional[str]:
    if period is None:
        return None
    return str(period).strip().upper() or None


def period_to_months(period: Any) -> int:
    """
    Calendar months granted by a billing period

    ONE_MONTH -> 1, THREE_MONTHS -> 3, SIX_MONTHS -> 6, TWELVE_MONTHS -> 12,
    anything else -> 0.
    """
    return PERIOD_MONTHS.get(normalize_period(period) or "", 0)


def is_known_period(period: Any) -> bool:
    return period_to_months(period) > 0


def add_months(start: datetime, months: int) -> datetime:
    """
    Advance by calendar months

    Day of month is kept; when the target month is shorter the result is
    clamped to its last day (Jan 31 + 1 month -> Feb 28/29).
    """
    return start + relativedelta(months=months)


def compute_expiry(start: datetime, period: Any) -> Optional[datetime]:
    """
    start + duration(period), or None for an unrecognized period
    """
    months = period_to_months(period)
    if months <= 0:
        return None
    return add_months(start, months)


def select_invite_template(invite_status: Optional[str]) -> str:
    """Email template sent after a subscription update"""
    return INVITE_TEMPLATES.get(
        (invite_status or "").upper(), EmailTemplate.INVITE_PENDING.value
    )


# ===========================
# UPDATE REQUEST
# ===========================


def _normalize_choice(value: Any, allowed: type, field_name: str) -> Optional[str]:
    if value is None or value == "":
        return None
    normalized = str(value).strip().upper()
    if normalized == "CANCELED":
        normalized = "CANCELLED"
    if normalized not in allowed.__members__:
        raise ValidationError(f"Invalid {field_name}: {value}")
    return normalized


@dataclass
class SubscriptionUpdate:
    """
    Canonical partial update of a subscription

    Only fields that are not None are applied.
    """

    subscription_id: Optional[str] = None
    status: Optional[str] = None
    invite_status: Optional[str] = None
    start_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    base_price: Optional[float] = None
    discount_rate: Optional[float] = None
    period: Optional[str] = None
    ignored_fields: list = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SubscriptionUpdate":
        """
        Build from the PATCH body (camelCase keys)

        `inviteStatus` wins over the legacy `inviteState` alias. Status,
        invite status and period are upper-cased; unknown status values
        are rejected, unknown periods are kept (they resolve to 0 months).
        Client dates are not parsed when the invite is being completed.

        Raises:
            ValidationError: malformed status, date or number
        """
        invite_value = payload.get("inviteStatus") or payload.get("inviteState")
        invite_status = _normalize_choice(invite_value, InviteStatus, "inviteStatus")

        start_date = payload.get("startDate")
        expiry_date = payload.get("expiryDate")
        base_price = payload.get("basePrice")
        discount_rate = payload.get("discountRate")

        ignored = []
        if invite_status == InviteStatus.COMPLETED.value:
            if start_date:
                ignored.append("start_date")
            if expiry_date:
                ignored.append("expiry_date")
            start_date = expiry_date = None

        return cls(
            subscription_id=payload.get("id") or None,
            status=_normalize_choice(payload.get("status"), SubscriptionStatus, "status"),
            invite_status=invite_status,
            start_date=parse_datetime(start_date, "startDate") if start_date else None,
            expiry_date=parse_datetime(expiry_date, "expiryDate") if expiry_date else None,
            base_price=parse_decimal(base_price, "basePrice") if base_price is not None else None,
            discount_rate=(
                parse_decimal(discount_rate, "discountRate") if discount_rate is not None else None
            ),
            period=normalize_period(payload.get("period")),
            ignored_fields=ignored,
        )

    @property
    def touches_terms(self) -> bool:
        """Dates, prices or period are being changed"""
        return any(
            value is not None
            for value in (
                self.start_date,
                self.expiry_date,
                self.base_price,
                self.discount_rate,
                self.period,
            )
        )

    @property
    def completes_invite(self) -> bool:
        return self.invite_status == InviteStatus.COMPLETED.value


@dataclass
class TransitionResult:
    """Outcome of applying a SubscriptionUpdate to a subscription"""

    changes: Dict[str, Any]
    previous: Dict[str, Any]
    status: str
    invite_status: str
    invite_completed: bool
    email_template: str
    ignored_fields: list = field(default_factory=list)

    @property
    def updated_fields(self) -> list:
        return list(self.changes.keys())

    def apply(self, subscription) -> None:
        """Write the changes onto the subscription model"""
        for name, value in self.changes.items():
            setattr(subscription, name, value)


# ===========================
# TRANSITION
# ===========================


def resolve_update(current, update: SubscriptionUpdate, now: datetime) -> TransitionResult:
    """
    Compute the new persisted fields of a subscription

    Args:
        current: Subscription (or any object with status, invite_status,
            period, start_date, expiry_date)
        update: Normalized update
        now: Server instant of the transition

    Returns:
        TransitionResult; the subscription itself is not modified

    Completing the invite sets start_date to `now` and expiry_date to
    now + duration(period), where period is the request value or the
    stored one. Client dates sent in the same request are ignored then.
    """
    changes: Dict[str, Any] = {}
    ignored = list(update.ignored_fields)

    if update.status:
        changes["status"] = update.status
    if update.invite_status:
        changes["invite_status"] = update.invite_status
    if update.period and is_known_period(update.period):
        changes["period"] = update.period

    if update.completes_invite:
        start = ensure_utc(now)
        changes["start_date"] = start

        expiry = compute_expiry(start, update.period or current.period)
        if expiry is not None:
            changes["expiry_date"] = expiry

        if update.start_date:
            ignored.append("start_date")
        if update.expiry_date:
            ignored.append("expiry_date")
    else:
        if update.start_date:
            changes["start_date"] = update.start_date
        if update.expiry_date:
            changes["expiry_date"] = update.expiry_date

    if update.base_price is not None:
        changes["base_price"] = update.base_price
    if update.discount_rate is not None:
        changes["discount_rate"] = update.discount_rate

    new_invite_status = changes.get("invite_status", current.invite_status)

    return TransitionResult(
        changes=changes,
        previous={"status": current.status, "inviteStatus": current.invite_status},
        status=changes.get("status", current.status),
        invite_status=new_invite_status,
        invite_completed=update.completes_invite,
        email_template=select_invite_template(new_invite_status),
        ignored_fields=ignored,
    )


def validate_period(period: Any) -> str:
    """
    Upper-cased period for new subscriptions/payment items

    Raises:
        ValidationError: not one of the billing periods
    """
    normalized = normalize_period(period)
    if normalized not in SubscriptionPeriod.__members__:
        raise ValidationError(f"Invalid period: {period}")
    return normalized
