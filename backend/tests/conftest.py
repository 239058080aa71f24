"""
Pytest fixtures for test database, client, and authentication.

Every test gets its own SQLite file database (aiosqlite) with the schema
created from the models, so tests are isolated and need no running
Postgres or Redis.
"""

import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("NOTIFIER", "none")

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from reservations.main import app
from reservations.db.base import Base
from reservations.db.session import get_db
from reservations.core.security import create_access_token
from reservations.models.user import User
from reservations.models.listing import Listing
from reservations.services import listing_service
from reservations.services.context import ROLE_ADMIN, ROLE_GUEST, Actor, BookingPolicy, OperationContext
from reservations.services.notifications import RecordingNotifier


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Fresh SQLite database file per test."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose requests each get their own session on the test database."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    user = User(email="admin@example.com", name="Ada Admin", role="admin", status="active")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def guest_user(db_session: AsyncSession) -> User:
    user = User(email="guest@example.com", name="Gus Guest", role="guest", status="active")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    user = User(email="olive@example.com", name="Olive Other", role="guest", status="active")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


def _headers(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id), "name": user.name, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def staff_headers(admin_user: User) -> dict:
    return _headers(admin_user)


@pytest.fixture
def guest_headers(guest_user: User) -> dict:
    return _headers(guest_user)


@pytest.fixture
def other_headers(other_user: User) -> dict:
    return _headers(other_user)


@pytest.fixture
def staff_ctx(admin_user: User) -> OperationContext:
    """Admin acting with the default policy (deposit and balance gates on)."""
    return OperationContext(actor=Actor(admin_user.id, admin_user.name, ROLE_ADMIN), policy=BookingPolicy())


@pytest.fixture
def lenient_ctx(admin_user: User) -> OperationContext:
    """Admin acting with the financial gates switched off."""
    policy = BookingPolicy(require_deposit_to_confirm=False, require_zero_balance_to_complete=False)
    return OperationContext(actor=Actor(admin_user.id, admin_user.name, ROLE_ADMIN), policy=policy)


@pytest.fixture
def guest_ctx(guest_user: User) -> OperationContext:
    return OperationContext(actor=Actor(guest_user.id, guest_user.name, ROLE_GUEST), policy=BookingPolicy())


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_listing(db_session: AsyncSession, staff_ctx: OperationContext):
    """Factory creating a listing with `units` default-named inventory units."""

    async def _make(
        units: int = 2,
        name: str = "Harbor Hotel",
        type: str = "hotel",
        price: str = "100.00",
        price_unit: str = "night",
        max_guests: int = 2,
        location: str = "Lisbon",
    ) -> Listing:
        data = {
            "name": name,
            "type": type,
            "location": location,
            "description": "",
            "price": Decimal(price),
            "price_unit": price_unit,
            "currency": "USD",
            "max_guests": max_guests,
            "features": [],
        }
        result = await listing_service.create_listing(db_session, staff_ctx, data, units)
        assert result.ok, result.message
        return result.value

    return _make
