"""
Pytest configuration and fixtures for AlgoMakers API tests
"""

from datetime import datetime, UTC
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.actor import Actor
from src.core.enums import InviteStatus, Role, SubscriptionStatus
from src.database.models import Affiliate, Base, Pair, Subscription, User
from src.services.email_service import EmailService


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture(scope="function")
async def test_db_engine():
    """
    Create test database engine
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(test_db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async_session_maker = async_sessionmaker(
        test_db_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


# ===========================
# SEED DATA
# ===========================


@pytest.fixture
async def customer(db_session) -> User:
    user = User(
        email="trader@example.com",
        name="Alice",
        tradingview_username="alice_tv",
        role=Role.USER.value,
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def admin_user(db_session) -> User:
    user = User(email="admin@example.com", name="Admin", role=Role.ADMIN.value)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def btc_pair(db_session) -> Pair:
    pair = Pair(
        symbol="BTCUSDT",
        timeframe="4h",
        strategy="Trend",
        version="v2",
        price_one_month=100.0,
        price_three_months=270.0,
        price_six_months=500.0,
        price_twelve_months=900.0,
        discount_three_months=10.0,
    )
    db_session.add(pair)
    await db_session.commit()
    return pair


@pytest.fixture
async def eth_pair(db_session) -> Pair:
    pair = Pair(
        symbol="ETHUSDT",
        timeframe="1h",
        strategy="Breakout",
        version="v1",
        price_one_month=80.0,
        price_three_months=220.0,
    )
    db_session.add(pair)
    await db_session.commit()
    return pair


@pytest.fixture
def make_subscription(db_session):
    """Factory: persisted subscription with sensible defaults"""

    async def _make(user, pair, **overrides) -> Subscription:
        values = {
            "user_id": user.id,
            "pair_id": pair.id,
            "period": "ONE_MONTH",
            "start_date": datetime(2025, 1, 1, tzinfo=UTC),
            "expiry_date": datetime(2025, 2, 1, tzinfo=UTC),
            "status": SubscriptionStatus.PENDING.value,
            "invite_status": InviteStatus.PENDING.value,
            "base_price": 100.0,
            "discount_rate": 0.0,
        }
        values.update(overrides)
        subscription = Subscription(**values)
        db_session.add(subscription)
        await db_session.commit()
        return subscription

    return _make


@pytest.fixture
async def affiliate(db_session) -> Affiliate:
    owner = User(email="partner@example.com", name="Partner", role=Role.USER.value)
    db_session.add(owner)
    await db_session.commit()

    affiliate = Affiliate(
        user_id=owner.id,
        referral_code="PARTNER10",
        commission_rate=10.0,
        wallet_address="TXYZ-wallet",
    )
    db_session.add(affiliate)
    await db_session.commit()
    return affiliate


# ===========================
# ACTORS & SINKS
# ===========================


@pytest.fixture
def admin_actor(admin_user) -> Actor:
    return Actor(id=admin_user.id, role=Role.ADMIN.value, email=admin_user.email, name=admin_user.name)


@pytest.fixture
def customer_actor(customer) -> Actor:
    return Actor(id=customer.id, role=Role.USER.value, email=customer.email, name=customer.name)


@pytest.fixture
def email_service():
    """EmailService double: every send succeeds"""
    service = MagicMock(spec=EmailService)
    service.send_email = AsyncMock(return_value=True)
    return service


@pytest.fixture
def clock():
    return lambda: NOW


# ===========================
# HTTP
# ===========================


@pytest.fixture
def current_actor():
    """Mutable holder: tests set `current_actor["actor"]` before calling the API"""
    return {"actor": None}


async def _http_client(db_session, actor_holder=None):
    from api_server import app
    from src.api.auth import get_current_actor
    from src.database.engine import get_session

    async def override_session():
        yield db_session

    async def override_actor():
        return actor_holder["actor"]

    app.state.limiter.reset()
    app.dependency_overrides[get_session] = override_session
    if actor_holder is not None:
        app.dependency_overrides[get_current_actor] = override_actor

    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
            yield http_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
async def client(db_session, current_actor) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    HTTP client against the real app: test session + injectable actor
    """
    async for http_client in _http_client(db_session, current_actor):
        yield http_client


@pytest.fixture
async def auth_client(db_session) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    HTTP client going through the real NextAuth JWT dependency
    """
    async for http_client in _http_client(db_session):
        yield http_client
