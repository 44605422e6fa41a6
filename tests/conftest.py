"""
Pytest fixtures for test database, client, and authentication.

Each test gets its own SQLite database file, so sessions opened concurrently
by the race tests contend on a real write lock. The payment gateway and the
notifier are replaced by in-memory fakes that record every call.
"""

import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("PAYMENT_GATEWAY", "disabled")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./ticketing-dev.db")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from ticketing.core.errors import ExternalServiceError
from ticketing.core.security import create_access_token, hash_password
from ticketing.db.base import Base
from ticketing.db.session import build_engine, get_db
from ticketing.infrastructure.notifications import Notifier, get_notifier
from ticketing.infrastructure.payment_gateway import PaymentGateway, RefundReceipt, get_payment_gateway
from ticketing.main import app
from ticketing.models.event import Event, TicketCategory
from ticketing.models.user import ROLE_ADMIN, ROLE_ATTENDEE, ROLE_ORGANIZER, User


class FakePaymentGateway(PaymentGateway):
    """Records refunds; set `fail` to make every call raise."""

    def __init__(self):
        self.refunds = []
        self.status_lookups = []
        self.fail = False
        self.refund_status = "succeeded"

    async def issue_refund(self, payment_reference, amount, reason="requested_by_customer"):
        if self.fail:
            raise ExternalServiceError("Refund failed: card_declined")
        self.refunds.append((payment_reference, Decimal(amount)))
        return RefundReceipt(reference=f"re_{len(self.refunds)}", amount=Decimal(amount), status="pending")

    async def get_refund_status(self, refund_reference):
        self.status_lookups.append(refund_reference)
        if self.fail:
            raise ExternalServiceError("Could not retrieve refund status")
        return self.refund_status


class FakeNotifier(Notifier):
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, notification):
        if self.fail:
            raise ConnectionError("SMTP server unavailable")
        self.sent.append(notification)


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Fresh database per test, tables created up front (TEST_DATABASE_URL to use PostgreSQL)."""
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    test_engine = build_engine(url, poolclass=NullPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def payment_gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, payment_gateway, notifier) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with a fresh session per request and fake integrations."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: payment_gateway
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def create_user(db: AsyncSession, username: str, role: str = ROLE_ATTENDEE) -> User:
    user = User(
        email=f"{username}@example.com",
        username=username,
        hashed_password=hash_password("testpassword123"),
        role=role,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def create_event(
    db: AsyncSession,
    organizer: User,
    *,
    seats: int = 100,
    price: str = "50.00",
    days_ahead: float = 30,
    categories: Optional[list] = None,
    refund_policy: Optional[tuple] = None,
    title: str = "Test Concert",
) -> Event:
    """Insert an event directly. `categories` is a list of (name, price, seats)."""
    event = Event(
        title=title,
        description="A test event",
        date=datetime.now(timezone.utc) + timedelta(days=days_ahead),
        location="Test Venue",
        organizer_id=organizer.id,
        cancelled=False,
        version=1,
    )
    if categories:
        event.has_ticket_categories = True
        event.ticket_categories = [
            TicketCategory(name=name, price=Decimal(cat_price), total_seats=cat_seats)
            for name, cat_price, cat_seats in categories
        ]
        event.total_seats = sum(c[2] for c in categories)
        event.price = min(Decimal(c[1]) for c in categories)
    else:
        event.has_ticket_categories = False
        event.ticket_categories = []
        event.total_seats = seats
        event.price = Decimal(price)

    if refund_policy:
        full, partial, none = refund_policy
        event.refund_full_percentage = full
        event.refund_partial_percentage = partial
        event.refund_none_percentage = none

    db.add(event)
    await db.commit()
    await db.refresh(event)
    return event


def headers_for(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """An attendee."""
    return await create_user(db_session, "testuser")


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await create_user(db_session, "otheruser")


@pytest_asyncio.fixture
async def organizer(db_session: AsyncSession) -> User:
    return await create_user(db_session, "organizer", ROLE_ORGANIZER)


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    return await create_user(db_session, "admin", ROLE_ADMIN)


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Authorization headers with Bearer token."""
    return headers_for(test_user)


@pytest.fixture
def other_headers(other_user: User) -> dict:
    return headers_for(other_user)


@pytest.fixture
def organizer_headers(organizer: User) -> dict:
    return headers_for(organizer)


@pytest.fixture
def admin_headers(admin: User) -> dict:
    return headers_for(admin)


@pytest_asyncio.fixture
async def test_event(db_session: AsyncSession, organizer: User) -> Event:
    """Flat event: 100 seats at 50.00, 30 days out."""
    return await create_event(db_session, organizer)


@pytest_asyncio.fixture
async def categorized_event(db_session: AsyncSession, organizer: User) -> Event:
    """VIP (2 seats at 150.00) and General (5 seats at 50.00)."""
    return await create_event(
        db_session,
        organizer,
        categories=[("VIP", "150.00", 2), ("General", "50.00", 5)],
        title="Tiered Festival",
    )
