"""
Database models for AlgoMakers subscription API

SQLAlchemy 2.0 models with full type hints
"""

import uuid
from datetime import datetime, UTC
from typing import Optional, List

from sqlalchemy import (
    JSON,
    String,
    Float,
    DateTime,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB

from config.billing_config import DEFAULT_COMMISSION_RATE
from src.core.enums import (
    Role,
    SubscriptionStatus,
    InviteStatus,
    PaymentStatus,
    CommissionStatus,
    ResponseStatus,
)


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def generate_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


# ===========================
# USERS & CATALOG
# ===========================


class User(Base):
    """
    Dashboard user

    Subscriptions and payments are removed together with the user.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True, comment="Login email"
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tradingview_username: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="TradingView username the invite goes to"
    )
    role: Mapped[str] = mapped_column(
        String(20), default=Role.USER.value, nullable=False, comment="USER/ADMIN/SUPPORT/MANAGER"
    )
    referred_by_id: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True, index=True, comment="Affiliate ID that referred this user"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # Relationships
    subscriptions: Mapped[List["Subscription"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    payments: Mapped[List["Payment"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class Pair(Base):
    """
    Trading pair (TradingView strategy) that can be subscribed to
    """

    __tablename__ = "pairs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    symbol: Mapped[str] = mapped_column(String(50), nullable=False, index=True, comment="e.g. BTCUSDT")
    timeframe: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, comment="e.g. 4h")
    strategy: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    version: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Price list per period (USD)
    price_one_month: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    price_three_months: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    price_six_months: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    price_twelve_months: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    # Discount per period (percent)
    discount_one_month: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    discount_three_months: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    discount_six_months: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    discount_twelve_months: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    subscriptions: Mapped[List["Subscription"]] = relationship(
        back_populates="pair", cascade="all, delete-orphan"
    )

    @property
    def name(self) -> str:
        """Display name, e.g. 'BTCUSDT 4h'"""
        return " ".join(part for part in (self.symbol, self.timeframe) if part)

    def __repr__(self) -> str:
        return f"<Pair(id={self.id}, symbol={self.symbol}, timeframe={self.timeframe})>"


# ===========================
# SUBSCRIPTIONS
# ===========================


class Subscription(Base):
    """
    Access of one user to one pair for one billing period

    status/invite_status/start_date/expiry_date are only changed through
    src.services.subscription_lifecycle.resolve_update.
    """

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pair_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pairs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    payment_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("payments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Checkout that produced this subscription",
    )
    period: Mapped[str] = mapped_column(String(20), nullable=False, comment="ONE_MONTH..TWELVE_MONTHS")
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=SubscriptionStatus.PENDING.value, nullable=False, index=True
    )
    invite_status: Mapped[str] = mapped_column(
        String(20), default=InviteStatus.PENDING.value, nullable=False
    )
    base_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    discount_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="Percent")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="subscriptions")
    pair: Mapped["Pair"] = relationship(back_populates="subscriptions")
    payment: Mapped[Optional["Payment"]] = relationship(back_populates="subscriptions")
    commissions: Mapped[List["Commission"]] = relationship(
        back_populates="subscription", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_subscriptions_user_pair_status", "user_id", "pair_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, pair_id={self.pair_id}, "
            f"status={self.status}, invite={self.invite_status})>"
        )


# ===========================
# PAYMENTS
# ===========================


class Payment(Base):
    """
    One checkout (crypto invoice)
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING.value, nullable=False, index=True
    )
    network: Mapped[str] = mapped_column(String(20), nullable=False, comment="USDT/BTC/ETH/...")
    total_amount: Mapped[float] = mapped_column(Float, nullable=False, comment="Invoice amount (USD)")
    actually_paid: Mapped[Optional[float]] = mapped_column(
        Float, nullable=True, comment="Amount received"
    )
    tx_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    invoice_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    order_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    order_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    user: Mapped["User"] = relationship(back_populates="payments")
    items: Mapped[List["PaymentItem"]] = relationship(
        back_populates="payment", cascade="all, delete-orphan"
    )
    subscriptions: Mapped[List["Subscription"]] = relationship(back_populates="payment")

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, user_id={self.user_id}, status={self.status}, total={self.total_amount})>"


class PaymentItem(Base):
    """
    One pair/period line of a checkout
    """

    __tablename__ = "payment_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    payment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pair_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pairs.id", ondelete="CASCADE"), nullable=False
    )
    period: Mapped[str] = mapped_column(String(20), nullable=False)
    base_price: Mapped[float] = mapped_column(Float, nullable=False)
    discount_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    final_price: Mapped[float] = mapped_column(Float, nullable=False)

    payment: Mapped["Payment"] = relationship(back_populates="items")
    pair: Mapped["Pair"] = relationship()

    def __repr__(self) -> str:
        return f"<PaymentItem(payment_id={self.payment_id}, pair_id={self.pair_id}, final={self.final_price})>"


# ===========================
# AFFILIATES
# ===========================


class Affiliate(Base):
    """
    Referral partner
    """

    __tablename__ = "affiliates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    referral_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    commission_rate: Mapped[float] = mapped_column(
        Float, default=DEFAULT_COMMISSION_RATE, nullable=False, comment="Percent of item final price"
    )
    wallet_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    user: Mapped["User"] = relationship()
    commissions: Mapped[List["Commission"]] = relationship(
        back_populates="affiliate", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Affiliate(id={self.id}, code={self.referral_code}, rate={self.commission_rate})>"


class Commission(Base):
    """
    Commission earned by an affiliate on a subscription

    Lifecycle (PENDING -> PAID/CANCELLED) is independent of the subscription.
    """

    __tablename__ = "commissions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    affiliate_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subscription_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=True, index=True
    )
    payment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("payments.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=CommissionStatus.PENDING.value, nullable=False, index=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    affiliate: Mapped["Affiliate"] = relationship(back_populates="commissions")
    subscription: Mapped[Optional["Subscription"]] = relationship(back_populates="commissions")

    def __repr__(self) -> str:
        return f"<Commission(id={self.id}, affiliate_id={self.affiliate_id}, amount={self.amount}, status={self.status})>"


# ===========================
# AUDIT / EVENTS / STATS
# ===========================


class AuditLog(Base):
    """
    Audit trail of staff actions (ADMIN/SUPPORT/MANAGER) and failures

    Append-only.
    """

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    actor_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    target_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    target_type: Mapped[str] = mapped_column(String(20), nullable=False)
    response_status: Mapped[str] = mapped_column(
        String(10), default=ResponseStatus.SUCCESS.value, nullable=False
    )
    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, actor={self.actor_id}, action={self.action}, status={self.response_status})>"


class Event(Base):
    """
    Event log of USER-initiated actions

    Append-only.
    """

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, user_id={self.user_id}, type={self.event_type})>"


class Stats(Base):
    """
    Metrics document per type (list of {id, ...} items)
    """

    __tablename__ = "stats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    type: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    stats_metadata: Mapped[Optional[list]] = mapped_column("metadata", JSONType, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Stats(type={self.type}, items={len(self.stats_metadata or [])})>"
