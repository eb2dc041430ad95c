"""Shared test fixtures for the support desk test suite."""

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from supportdesk.common.models import Base, Customer, Organization, Ticket

ORG_A = uuid.UUID("00000000-0000-4000-8000-0000000000aa")
ORG_B = uuid.UUID("00000000-0000-4000-8000-0000000000bb")
USER_A = uuid.UUID("00000000-0000-4000-8000-00000000a001")

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture
def mock_db_session():
    """Mock async SQLAlchemy session."""
    session = AsyncMock(spec=AsyncSession)
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.execute = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def mock_redis():
    """Mock async Redis client."""
    client = AsyncMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock()
    client.delete = AsyncMock(return_value=0)
    client.rpush = AsyncMock(return_value=1)
    client.ping = AsyncMock(return_value=True)
    return client


class DictRedis:
    """Just enough of the async Redis API for ListCache, backed by a dict."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value

    async def delete(self, *keys):
        return sum(self.store.pop(k, None) is not None for k in keys)

    async def scan_iter(self, match):
        prefix = match.rstrip("*")
        for key in [k for k in self.store if k.startswith(prefix)]:
            yield key


@pytest.fixture
def dict_redis():
    return DictRedis()


@pytest.fixture
async def engine():
    """In-memory SQLite database with foreign keys enforced."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def orgs(session_factory):
    """Two organizations; most tests act as ORG_A and use ORG_B as the outsider."""
    async with session_factory() as session:
        session.add_all([Organization(id=ORG_A, name="Acme"), Organization(id=ORG_B, name="Globex")])
        await session.commit()
    return ORG_A, ORG_B


@pytest.fixture
def seed(session_factory, orgs):
    """Insert rows in their own committed transaction and return them."""

    async def _seed(*rows):
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()
        return rows

    return _seed


def make_customer(org_id=ORG_A, n=0, **overrides) -> Customer:
    stamp = BASE_TIME + timedelta(minutes=n)
    values = {
        "id": uuid.uuid4(),
        "org_id": org_id,
        "name": f"Customer {n:03d}",
        "email": f"customer{n}@example.com",
        "orders": 0,
        "ltv": Decimal("0"),
        "created_at": stamp,
        "updated_at": stamp,
    }
    values.update(overrides)
    return Customer(**values)


def make_ticket(customer: Customer, n=0, **overrides) -> Ticket:
    stamp = BASE_TIME + timedelta(minutes=n)
    values = {
        "id": uuid.uuid4(),
        "org_id": customer.org_id,
        "ticket_number": f"TCK-{n + 1:05d}",
        "customer_id": customer.id,
        "subject": f"Ticket subject {n}",
        "excerpt": f"Body {n}",
        "content": f"Body {n}",
        "category": "general",
        "priority": "medium",
        "status": "open",
        "created_at": stamp,
        "updated_at": stamp,
    }
    values.update(overrides)
    return Ticket(**values)


@pytest.fixture
def new_customer():
    """Factory for unsaved ``Customer`` rows with distinct, increasing timestamps."""
    return make_customer


@pytest.fixture
def new_ticket():
    """Factory for unsaved ``Ticket`` rows belonging to a given customer."""
    return make_ticket
