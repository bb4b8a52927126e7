"""
Centralized Test Configuration.
"""

import os
import tempfile

import pytest
from datetime import date, timedelta
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy import select
from sqlalchemy.pool import NullPool

from urbancleanse.app.main import app
from urbancleanse.app.db.session import get_db, Base
from urbancleanse.app.core.jwt import create_access_token
from urbancleanse.app.core.redis_client import get_redis
from urbancleanse.app.core.reliability import CircuitBreaker
from urbancleanse.app.domain.scheduling.identifiers import new_bin_id
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.enums import UserRole
from urbancleanse.app.models.user import User
from urbancleanse.app.services.cache import CacheService
from urbancleanse.app.services.catalog import seed_waste_types
from urbancleanse.app.services.notification_service import NotificationDispatcher, get_dispatcher
from urbancleanse.app.services.scheduling_locks import SchedulingLocks, get_scheduling_locks
import urbancleanse.app.core.redis_client as redis_client_module

# Setup File-Backed Test Database (one connection per session, so concurrent sessions don't share one)
TEST_DATABASE_URL = "sqlite+aiosqlite:///" + os.path.join(tempfile.mkdtemp(), "test.db")

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=NullPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)

# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """

    # Patch the global redis client used by the health check
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture
def dispatcher():
    """Dispatcher writing through the test database with a fresh breaker."""
    return NotificationDispatcher(
        session_factory=TestingSessionLocal,
        breaker=CircuitBreaker("test-notifications", failure_threshold=5, reset_timeout=30),
        timeout=2.0,
    )


@pytest.fixture
def locks():
    return SchedulingLocks(backend="memory", acquire_timeout=2.0)


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session, dispatcher, locks):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()
    await CacheService.clear()
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_scheduling_locks] = lambda: locks

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# --- Scheduling data ---

def auth_headers(user: User) -> dict:
    """Bearer token for a principal, as issued by Identity & Access."""
    token = create_access_token(data={
        "sub": user.username,
        "user_id": user.id,
        "role": user.role.value,
        "is_active": user.is_active,
    })
    return {"Authorization": f"Bearer {token}"}


async def make_user(db, username: str, role: UserRole, is_active: bool = True) -> User:
    user = User(
        email=f"{username}@test.com",
        username=username,
        name=username.title(),
        role=role,
        is_active=is_active,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def make_bin(db, owner: User, area: str = "Colombo 03", approved: bool = True, fill_level: int = 0) -> Bin:
    bin = Bin(
        bin_id=new_bin_id(),
        owner_id=owner.id,
        area=area,
        address={"street": "12 Galle Road", "city": "Colombo"},
        fill_level=fill_level,
        is_active=True,
        is_approved=approved,
    )
    db.add(bin)
    await db.commit()
    await db.refresh(bin)
    return bin


@pytest.fixture
def tomorrow():
    return date.today() + timedelta(days=1)


@pytest.fixture
async def waste_types(db_session):
    await seed_waste_types(db_session)


@pytest.fixture
async def operator(db_session):
    return await make_user(db_session, "operator", UserRole.OPERATOR)


@pytest.fixture
async def customer(db_session):
    return await make_user(db_session, "customer", UserRole.CUSTOMER)


@pytest.fixture
async def other_customer(db_session):
    return await make_user(db_session, "neighbour", UserRole.CUSTOMER)


@pytest.fixture
async def collectors(db_session):
    """One collector of each tier, ids ascending WC1 < WC2 < WC3."""
    return [
        await make_user(db_session, "collector1", UserRole.WC1),
        await make_user(db_session, "collector2", UserRole.WC2),
        await make_user(db_session, "collector3", UserRole.WC3),
    ]


@pytest.fixture
async def customer_bin(db_session, customer):
    return await make_bin(db_session, customer)


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def bin_factory(db_session):
    async def _make(owner: User, **kwargs) -> Bin:
        return await make_bin(db_session, owner, **kwargs)
    return _make


@pytest.fixture
def user_factory(db_session):
    async def _make(username: str, role: UserRole, is_active: bool = True) -> User:
        return await make_user(db_session, username, role, is_active)
    return _make


@pytest.fixture
def fetch():
    """Read rows through a fresh session so API-side commits are visible."""
    async def _fetch(model, **filters):
        async with TestingSessionLocal() as session:
            result = await session.execute(select(model).filter_by(**filters).order_by(model.id))
            return list(result.scalars().all())
    return _fetch


# --- Request flow helpers ---

@pytest.fixture
def submit(client, waste_types):
    """Customer submits a request; returns the response JSON."""
    async def _submit(user: User, bin: Bin, day: date, collection_type: str = "food",
                      slot: str = "08:00-10:00", expect: int = 201):
        response = await client.post("/v1/waste/requests", json={
            "bin_id": bin.bin_id,
            "collection_type": collection_type,
            "preferred_date": day.isoformat(),
            "preferred_time_slot": slot,
        }, headers=auth_headers(user))
        assert response.status_code == expect, response.text
        return response.json()
    return _submit


@pytest.fixture
def pay(client, operator):
    """Payment gateway reports the request as paid."""
    async def _pay(request_id: str, payment_status: str = "paid"):
        response = await client.put(
            f"/v1/admin/requests/{request_id}/payment",
            json={"payment_status": payment_status},
            headers=auth_headers(operator),
        )
        assert response.status_code == 200, response.text
        return response.json()
    return _pay


@pytest.fixture
def set_status(client, operator):
    """Operator status change; returns the raw response."""
    async def _set_status(request_id: str, status: str, **fields):
        body = {"status": status}
        for key, value in fields.items():
            body[key] = value.isoformat() if isinstance(value, date) else value
        return await client.put(
            f"/v1/admin/requests/{request_id}/status", json=body, headers=auth_headers(operator)
        )
    return _set_status


@pytest.fixture
def approve(submit, pay, set_status):
    """Submit, pay and approve a request onto a worker's route; returns the approved request JSON."""
    async def _approve(user: User, bin: Bin, worker: User, day: date,
                       slot: str = "08:00-10:00", collection_type: str = "food"):
        request = await submit(user, bin, day, collection_type, slot)
        await pay(request["request_id"])
        response = await set_status(
            request["request_id"], "approved",
            worker_id=worker.id, scheduled_date=day, scheduled_time_slot=slot,
        )
        assert response.status_code == 200, response.text
        return response.json()
    return _approve
